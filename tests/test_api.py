from urllib.parse import urlparse

from fastapi.testclient import TestClient

from assetflow.main import create_app
from assetflow.models import JobKind


def _path(url: str) -> str:
    u = urlparse(url)
    return f"{u.path}?{u.query}" if u.query else u.path


def _initiate(client, headers, **overrides):
    payload = {"file_name": "photo.jpg", "size": 4, "content_type": "image/jpeg"}
    payload.update(overrides)
    return client.post("/assets/uploads", json=payload, headers=headers)


def _post_file(client, upload: dict, data: bytes, filename: str = "photo.jpg"):
    return client.post(
        _path(upload["url"]),
        data=upload["fields"],
        files={"file": (filename, data, upload["fields"]["Content-Type"])},
    )


# -------------------------
# 1) basis
# -------------------------
def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"
    assert r.headers["X-Request-ID"]


def test_metrics_endpoint(client):
    r = client.get("/metrics")
    assert r.status_code == 200
    assert "assetflow_uploads_initiated_total" in r.text


def test_missing_identity_is_unauthenticated(client):
    r = _initiate(client, {})
    assert r.status_code == 401
    assert r.json() == {
        "ok": False,
        "error": {"code": "UNAUTHENTICATED", "message": "Not authenticated", "details": {}},
    }


def test_malformed_body_is_invalid_request(client, headers):
    r = client.post("/assets/uploads", json={"file_name": "x.jpg"}, headers=headers())
    assert r.status_code == 400
    body = r.json()
    assert body["ok"] is False
    assert body["error"]["code"] == "INVALID_REQUEST"
    assert body["error"]["details"]["errors"]


def test_domain_errors_use_error_envelope(client, headers):
    r = _initiate(client, headers(), file_name="run.exe", content_type="application/x-msdownload")
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "UNSUPPORTED_TYPE"

    r = _initiate(client, headers(), size=10**12)
    assert r.status_code == 413
    assert r.json()["error"]["code"] == "OBJECT_TOO_LARGE"

    r = client.get("/assets/" + "0" * 32, headers=headers())
    assert r.status_code == 404
    assert r.json()["error"]["code"] == "NOT_FOUND"


# -------------------------
# 2) upload flow over HTTP (met de lokale blob endpoints)
# -------------------------
def test_full_upload_flow(client, pipeline, headers, image_bytes):
    data = image_bytes(800, 600)
    r = _initiate(client, headers(), size=len(data))
    assert r.status_code == 201
    ticket = r.json()
    asset_id = ticket["asset_id"]
    assert ticket["upload"]["method"] == "POST"

    r = _post_file(client, ticket["upload"], data)
    assert r.status_code == 201
    assert r.json()["size"] == len(data)

    r = client.post(
        f"/assets/{asset_id}/confirm",
        json={"title": "Vakantie", "metadata": {"camera": "X100"}},
        headers=headers(),
    )
    assert r.status_code == 200
    assert r.json()["status"] == "PROCESSING"
    assert r.json()["metadata"] == {"camera": "X100"}

    r = client.get(f"/assets/{asset_id}/download-url", headers=headers())
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "NOT_READY"

    pipeline.run_until_idle()

    r = client.get(f"/assets/{asset_id}", headers=headers())
    asset = r.json()
    assert asset["status"] == "CLEAN"
    assert asset["scan_status"] == "clean"
    assert asset["derivatives_status"] == "done"

    r = client.get(f"/assets/{asset_id}/download-url", headers=headers())
    assert r.status_code == 200
    download = client.get(_path(r.json()["url"]))
    assert download.status_code == 200
    assert download.content == data
    assert 'filename="photo.jpg"' in download.headers["content-disposition"]

    r = client.get(f"/assets/{asset_id}/preview-url", params={"size": "small"}, headers=headers())
    assert r.status_code == 200
    preview = client.get(_path(r.json()["url"]))
    assert preview.status_code == 200
    assert preview.headers["content-type"] == "image/jpeg"

    r = client.get("/assets", params={"status": "CLEAN"}, headers=headers())
    assert r.json()["total"] == 1
    assert r.json()["items"][0]["id"] == asset_id


def test_local_upload_rejects_tampered_fields(client, headers):
    ticket = _initiate(client, headers(), size=4).json()
    upload = dict(ticket["upload"])
    upload["fields"] = dict(upload["fields"], max_bytes="999999")
    r = _post_file(client, upload, b"abcd")
    assert r.status_code == 403


def test_local_upload_enforces_size(client, headers):
    ticket = _initiate(client, headers(), size=4).json()
    r = _post_file(client, ticket["upload"], b"too many bytes")
    assert r.status_code == 413


def test_confirm_before_upload_is_conflict(client, headers):
    ticket = _initiate(client, headers()).json()
    r = client.post(f"/assets/{ticket['asset_id']}/confirm", json={"title": "t"}, headers=headers())
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "NOT_UPLOADED"


def test_upload_rate_limit(make_pipeline, headers):
    p = make_pipeline(upload_rate_limit=2)
    with TestClient(create_app(pipeline=p)) as c:
        assert _initiate(c, headers()).status_code == 201
        assert _initiate(c, headers()).status_code == 201
        r = _initiate(c, headers())
    assert r.status_code == 429
    assert r.json()["error"]["code"] == "RATE_LIMITED"
    assert r.json()["error"]["details"]["limit"] == 2


def test_api_rate_limit_per_client(make_pipeline, headers):
    p = make_pipeline(api_rate_limit="2/minute")
    with TestClient(create_app(pipeline=p)) as c:
        codes = [c.get("/quota", headers=headers()).status_code for _ in range(3)]
        r = c.get("/quota", headers=headers())
        # andere client heeft een eigen teller, health telt niet mee
        other = c.get("/quota", headers=headers("bob"))
        health = [c.get("/health").status_code for _ in range(3)]
    assert codes == [200, 200, 429]
    assert r.status_code == 429
    assert r.json()["error"]["code"] == "RATE_LIMITED"
    assert r.json()["error"]["details"]["limit"] == 2
    assert r.json()["error"]["details"]["window_seconds"] == 60
    assert other.status_code == 200
    assert health == [200, 200, 200]


def test_quota_endpoint(client, headers):
    _initiate(client, headers(), size=1234)
    r = client.get("/quota", headers=headers())
    assert r.status_code == 200
    assert r.json()["stored_bytes"] == 1234
    assert r.json()["request_count"] == 1


# -------------------------
# 3) lifecycle + operators
# -------------------------
def test_delete_and_archive(client, pipeline, ingest, alice, headers):
    asset = ingest(alice)

    r = client.delete(f"/assets/{asset.id}", headers=headers("bob"))
    assert r.status_code == 403

    r = client.post(f"/assets/{asset.id}/archive", headers=headers())
    assert r.status_code == 200
    assert r.json()["status"] == "ARCHIVED"

    r = client.delete(f"/assets/{asset.id}", headers=headers())
    assert r.status_code == 200
    assert r.json()["ok"] is True
    assert r.json()["deleted_at"].endswith("Z")

    assert client.get(f"/assets/{asset.id}", headers=headers()).status_code == 404


def test_dead_jobs_admin_only(client, pipeline, ingest, alice, headers):
    asset = ingest(alice)
    job = next(j for j in pipeline.dispatcher.jobs_for(asset.id) if j.kind == "scan")
    leased = pipeline.dispatcher.lease(JobKind.SCAN)
    pipeline.dispatcher.fail(leased.id, True, "fatal", leased.lease_token)

    assert client.get("/jobs/dead", headers=headers()).status_code == 403

    r = client.get("/jobs/dead", params={"kind": "scan"}, headers=headers("ops", "admin"))
    assert r.status_code == 200
    assert [j["id"] for j in r.json()] == [job.id]
    assert r.json()[0]["last_error"] == "fatal"

    r = client.post(f"/jobs/{job.id}/retry", headers=headers("ops", "admin"))
    assert r.status_code == 200
    assert r.json()["state"] == "queued"
    assert r.json()["attempts"] == 1
    assert r.json()["max_attempts"] == 1 + pipeline.settings.scan_max_attempts

    r = client.post(f"/jobs/{job.id}/retry", headers=headers("ops", "admin"))
    assert r.status_code == 409
