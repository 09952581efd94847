"""
Volledige ingest-scenario's: upload -> confirm -> scan + derivatives -> CLEAN,
inclusief de twee volgordes waarin scan en derivatives tegelijk afronden.
"""
import pytest

from assetflow.collaborators import Identity
from assetflow.errors import RateLimited
from assetflow.models import JobKind, QuotaCounter, ScanStatus
from assetflow.scanning import CLEAN, Verdict
from assetflow.workers.scan import ScanWorker

PORTRAIT_SIZE = 2_048_576


def test_portrait_upload_becomes_clean_with_previews(pipeline, image_bytes):
    u1 = Identity("U1")
    data = image_bytes(1200, 1600, pad_to=PORTRAIT_SIZE)
    assert len(data) == PORTRAIT_SIZE

    ticket = pipeline.initiate_upload(u1, "portrait.jpg", PORTRAIT_SIZE, "image/jpeg")
    assert ticket.credential.max_bytes == PORTRAIT_SIZE
    pipeline.store.put(ticket.storage_key, data, "image/jpeg")

    confirmed = pipeline.confirm_upload(u1, ticket.asset_id, "Portrait")
    assert confirmed.status == "PROCESSING"
    assert pipeline.get_asset(ticket.asset_id, u1).status == "PROCESSING"

    pipeline.run_until_idle()

    asset = pipeline.get_asset(ticket.asset_id, u1)
    assert asset.status == "CLEAN"
    assert asset.title == "Portrait"
    assert asset.file_size == PORTRAIT_SIZE
    assert asset.scan_status == "clean"
    assert asset.preview_keys["medium"]
    assert pipeline.store.stat(asset.preview_keys["medium"]).exists
    assert pipeline.preview_url(asset.id, "medium", u1).url


def test_delete_clean_asset_returns_exact_bytes(pipeline, ingest, alice, image_bytes):
    keep = ingest(alice, data=b"k" * 700)
    gone = ingest(alice, data=image_bytes(), file_name="photo.jpg", content_type="image/jpeg")
    pipeline.run_until_idle()

    with pipeline.session_factory() as db:
        before = db.get(QuotaCounter, "alice").stored_bytes
    pipeline.delete_asset(gone.id, alice)
    with pipeline.session_factory() as db:
        after = db.get(QuotaCounter, "alice").stored_bytes

    assert before - after == gone.file_size
    assert after == keep.file_size


def test_rate_limit_window_end_to_end(make_pipeline, upload, alice, clock):
    p = make_pipeline(upload_rate_limit=3, upload_rate_window_seconds=600)
    for _ in range(3):
        upload(alice, target=p)
    with pytest.raises(RateLimited) as exc:
        upload(alice, target=p)
    assert exc.value.code == "RATE_LIMITED"

    clock.advance(seconds=600)
    assert upload(alice, target=p).asset_id


# -------------------------
# gelijktijdige afronding van scan en derivatives
# -------------------------
def _interleave(monkeypatch, pipeline, when, intruder):
    """Laat `intruder` committen vlak voordat de eerste CAS die aan `when` voldoet wordt uitgevoerd."""
    original = pipeline.state.compare_and_set
    fired = []

    def cas(db, asset, values):
        if not fired and when(values):
            fired.append(True)
            intruder()
        return original(db, asset, values)

    monkeypatch.setattr(pipeline.state, "compare_and_set", cas)
    return fired


@pytest.fixture
def gated(make_pipeline):
    p = make_pipeline(require_derivatives_for_clean=True)
    yield p
    p.runner.shutdown()


def _assert_complete(pipeline, asset_id):
    asset = pipeline.state.get(asset_id)
    assert asset.status == "CLEAN"
    assert asset.scan_status == "clean"
    assert asset.derivatives_status == "done"
    assert set(asset.preview_keys) == {"small", "medium", "large"}
    assert asset.meta["scan"]["verdict"] == "clean"
    assert asset.meta["derivatives"]["width"] == 640
    assert asset.meta["custom"] == "kept"


def test_scan_lands_while_derivatives_commit(gated, upload, alice, monkeypatch, image_bytes):
    ticket = upload(alice, target=gated, data=image_bytes(), file_name="photo.jpg", content_type="image/jpeg")
    gated.confirm_upload(alice, ticket.asset_id, "Race", metadata={"custom": "kept"})
    gated.state.mutate(ticket.asset_id, ScanWorker._start)

    fired = _interleave(
        monkeypatch,
        gated,
        when=lambda values: "derivatives_status" in values,
        intruder=lambda: gated.scan_worker.record(ticket.asset_id, Verdict(verdict=CLEAN, engine="fake-av")),
    )
    gated.process_jobs(JobKind.DERIVATIVES)

    assert fired
    _assert_complete(gated, ticket.asset_id)


def test_derivatives_land_while_scan_commits(gated, upload, alice, monkeypatch, image_bytes):
    ticket = upload(alice, target=gated, data=image_bytes(), file_name="photo.jpg", content_type="image/jpeg")
    gated.confirm_upload(alice, ticket.asset_id, "Race", metadata={"custom": "kept"})
    derivative_job = next(j for j in gated.dispatcher.jobs_for(ticket.asset_id) if j.kind == "derivatives")

    fired = _interleave(
        monkeypatch,
        gated,
        when=lambda values: values.get("scan_status") == ScanStatus.CLEAN,
        intruder=lambda: gated.derivative_worker.handle(derivative_job),
    )
    gated.process_jobs(JobKind.SCAN)

    assert fired
    _assert_complete(gated, ticket.asset_id)

    # de derivative job zelf vindt daarna niets meer te doen
    gated.process_jobs(JobKind.DERIVATIVES)
    _assert_complete(gated, ticket.asset_id)
