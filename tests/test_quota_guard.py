import pytest

from assetflow.errors import ObjectTooLarge, QuotaExceeded, RateLimited
from assetflow.models import QuotaCounter


def _reserve(pipeline, identity, size):
    with pipeline.session_factory() as db:
        with db.begin():
            return pipeline.quota.reserve(db, identity, size)


def _release(pipeline, identity, size):
    with pipeline.session_factory() as db:
        with db.begin():
            pipeline.quota.release(db, identity, size)


def _counter(pipeline, identity):
    with pipeline.session_factory() as db:
        return db.get(QuotaCounter, identity)


# -------------------------
# 1) rate limit (fixed window)
# -------------------------
def test_rate_limit_denies_after_limit_and_resets_with_window(make_pipeline, clock):
    p = make_pipeline(upload_rate_limit=2, upload_rate_window_seconds=3600)

    assert _reserve(p, "alice", 10).allowed
    assert _reserve(p, "alice", 10).allowed

    denied = _reserve(p, "alice", 10)
    assert not denied.allowed
    assert denied.reason == "RATE_LIMITED"
    assert denied.details["reset_at"] == "2026-03-02T10:00:00Z"
    with pytest.raises(RateLimited):
        denied.raise_for_denial()

    # denial verandert niets
    row = _counter(p, "alice")
    assert row.request_count == 2
    assert row.stored_bytes == 20

    clock.advance(hours=1)
    assert _reserve(p, "alice", 10).allowed
    row = _counter(p, "alice")
    assert row.request_count == 1
    assert row.window_started_at == clock.now
    assert row.stored_bytes == 30


def test_rate_limit_is_per_identity(make_pipeline):
    p = make_pipeline(upload_rate_limit=1)
    assert _reserve(p, "alice", 1).allowed
    assert not _reserve(p, "alice", 1).allowed
    assert _reserve(p, "bob", 1).allowed


# -------------------------
# 2) storage quota
# -------------------------
def test_quota_exceeded_reports_usage(make_pipeline):
    p = make_pipeline(storage_quota_bytes=1000)
    assert _reserve(p, "alice", 600).allowed

    denied = _reserve(p, "alice", 500)
    assert denied.reason == "QUOTA_EXCEEDED"
    assert denied.details == {"quota": 1000, "used": 600, "requested": 500}
    with pytest.raises(QuotaExceeded):
        denied.raise_for_denial()

    # geweigerde request telt niet mee voor de rate
    assert _counter(p, "alice").request_count == 1
    # precies tot de grens mag wel
    assert _reserve(p, "alice", 400).allowed
    assert _counter(p, "alice").stored_bytes == 1000


def test_object_too_large_checked_before_counting(make_pipeline):
    p = make_pipeline(max_upload_bytes=100)
    denied = _reserve(p, "alice", 101)
    assert denied.reason == "OBJECT_TOO_LARGE"
    assert isinstance(denied.error, ObjectTooLarge)
    assert denied.error.status_code == 413
    assert _counter(p, "alice") is None


def test_release_never_goes_below_zero(pipeline):
    assert _reserve(pipeline, "alice", 300).allowed
    _release(pipeline, "alice", 200)
    assert _counter(pipeline, "alice").stored_bytes == 100
    _release(pipeline, "alice", 500)
    assert _counter(pipeline, "alice").stored_bytes == 0


def test_denial_rolls_back_with_caller_transaction(pipeline):
    with pipeline.session_factory() as db:
        with pytest.raises(RuntimeError):
            with db.begin():
                assert pipeline.quota.reserve(db, "alice", 50).allowed
                raise RuntimeError("downstream failure")
    assert _counter(pipeline, "alice") is None


def test_usage_snapshot(make_pipeline, clock):
    p = make_pipeline(upload_rate_limit=5, storage_quota_bytes=10_000)
    _reserve(p, "alice", 1234)
    with p.session_factory() as db:
        usage = p.quota.usage(db, "alice")
    assert usage["request_count"] == 1
    assert usage["request_limit"] == 5
    assert usage["stored_bytes"] == 1234
    assert usage["quota_bytes"] == 10_000
    assert usage["reset_at"] == "2026-03-02T10:00:00Z"

    clock.advance(hours=2)
    with p.session_factory() as db:
        usage = p.quota.usage(db, "alice")
    assert usage["request_count"] == 0
    assert usage["reset_at"] is None
    assert usage["stored_bytes"] == 1234
