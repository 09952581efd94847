# assetflow/metrics.py
from fastapi import APIRouter
from starlette.responses import Response

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST

router = APIRouter(tags=["observability"])

uploads_initiated = Counter(
    "assetflow_uploads_initiated_total",
    "Aantal upload sessies",
    ["result"],  # success|denied|invalid|error
)

uploads_confirmed = Counter(
    "assetflow_uploads_confirmed_total",
    "Aantal confirm requests",
    ["result"],  # success|idempotent|not_uploaded|size_mismatch|expired
)

quota_denials = Counter(
    "assetflow_quota_denials_total",
    "Geweigerde reserveringen",
    ["reason"],  # RATE_LIMITED|QUOTA_EXCEEDED|OBJECT_TOO_LARGE
)

upload_size_hist = Histogram(
    "assetflow_upload_size_bytes",
    "Gedeclareerde bestandsgroottes",
    buckets=(1e5, 3e5, 1e6, 3e6, 1e7, 3e7, 1e8, 3e8, 1e9),
)

jobs_total = Counter(
    "assetflow_jobs_total",
    "Job uitkomsten",
    ["kind", "outcome"],  # done|retry|dead|skipped|error
)

job_duration = Histogram(
    "assetflow_job_duration_seconds",
    "Duur van scan/derivative jobs",
    ["kind"],
    buckets=(0.1, 0.5, 1, 2, 5, 10, 30, 60, 120, 300),
)

scan_verdicts = Counter(
    "assetflow_scan_verdicts_total",
    "Scan uitslagen",
    ["verdict"],  # clean|infected|skipped
)

janitor_reaped = Counter(
    "assetflow_janitor_reaped_total",
    "Door de janitor opgeruimde assets",
    ["policy"],  # abandoned|purged
)

latency_hist = Histogram(
    "assetflow_api_latency_seconds",
    "API latency per route",
    ["route"],
)


@router.get("/metrics", include_in_schema=True)
def metrics() -> Response:
    # Prometheus expects text/plain; version=0.0.4
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
