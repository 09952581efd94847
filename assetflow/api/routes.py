# assetflow/api/routes.py
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query

from assetflow.api.deps import current_identity, get_pipeline, require_admin
from assetflow.api.schemas import AssetListOut, AssetOut, ConfirmUploadIn, InitiateUploadIn, JobOut, ReadUrlOut
from assetflow.collaborators import Identity
from assetflow.models import JobKind
from assetflow.pipeline import AssetPipeline
from assetflow.services.assets import MAX_PAGE_SIZE, AssetFilter
from assetflow.storage.base import ReadCredential

router = APIRouter(tags=["assets"])


def _naive_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None or dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def _read_url(cred: ReadCredential) -> ReadUrlOut:
    return ReadUrlOut(url=cred.url, expires_at=cred.expires_at.isoformat() + "Z")


# -----------------------------------------------------------------------------
# Upload flow: initiate -> (client upload naar blob store) -> confirm
# -----------------------------------------------------------------------------
@router.post("/assets/uploads", status_code=201)
def initiate_upload(
    body: InitiateUploadIn,
    identity: Identity = Depends(current_identity),
    pipeline: AssetPipeline = Depends(get_pipeline),
) -> Dict[str, Any]:
    """
    Retourneert:
    {
      "asset_id": "...",
      "storage_key": "assets/{owner}/{asset_id}/{filename}",
      "upload": {"url": ..., "fields": {...}, "method": "POST", "max_bytes": ..., "expires_at": ...},
      "session_expires_at": ...
    }
    """
    ticket = pipeline.initiate_upload(
        identity,
        body.file_name,
        body.size,
        body.content_type,
        group_ref=body.group_ref,
    )
    return ticket.as_dict()


@router.post("/assets/{asset_id}/confirm", response_model=AssetOut)
def confirm_upload(
    asset_id: str,
    body: ConfirmUploadIn,
    identity: Identity = Depends(current_identity),
    pipeline: AssetPipeline = Depends(get_pipeline),
) -> AssetOut:
    asset = pipeline.confirm_upload(
        identity,
        asset_id,
        body.title,
        description=body.description,
        metadata=body.metadata,
    )
    return AssetOut.from_asset(asset)


# -----------------------------------------------------------------------------
# Lezen
# -----------------------------------------------------------------------------
@router.get("/assets", response_model=AssetListOut)
def list_assets(
    status: Optional[str] = None,
    scan_status: Optional[str] = None,
    category: Optional[str] = None,
    group_ref: Optional[str] = None,
    owner_id: Optional[str] = None,
    search: Optional[str] = None,
    created_from: Optional[datetime] = None,
    created_to: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=MAX_PAGE_SIZE),
    identity: Identity = Depends(current_identity),
    pipeline: AssetPipeline = Depends(get_pipeline),
) -> AssetListOut:
    filters = AssetFilter(
        status=status,
        scan_status=scan_status,
        category=category,
        group_ref=group_ref,
        owner_id=owner_id,
        search=search,
        created_from=_naive_utc(created_from),
        created_to=_naive_utc(created_to),
    )
    result = pipeline.list_assets(identity, filters, page=page, page_size=page_size)
    return AssetListOut(
        items=[AssetOut.from_asset(a) for a in result.items],
        total=result.total,
        page=result.page,
        page_size=result.page_size,
    )


@router.get("/assets/{asset_id}", response_model=AssetOut)
def get_asset(
    asset_id: str,
    identity: Identity = Depends(current_identity),
    pipeline: AssetPipeline = Depends(get_pipeline),
) -> AssetOut:
    return AssetOut.from_asset(pipeline.get_asset(asset_id, identity))


@router.get("/assets/{asset_id}/download-url", response_model=ReadUrlOut)
def download_url(
    asset_id: str,
    identity: Identity = Depends(current_identity),
    pipeline: AssetPipeline = Depends(get_pipeline),
) -> ReadUrlOut:
    return _read_url(pipeline.download_url(asset_id, identity))


@router.get("/assets/{asset_id}/preview-url", response_model=ReadUrlOut)
def preview_url(
    asset_id: str,
    size: str = Query("medium"),
    identity: Identity = Depends(current_identity),
    pipeline: AssetPipeline = Depends(get_pipeline),
) -> ReadUrlOut:
    return _read_url(pipeline.preview_url(asset_id, size, identity))


# -----------------------------------------------------------------------------
# Lifecycle
# -----------------------------------------------------------------------------
@router.delete("/assets/{asset_id}")
def delete_asset(
    asset_id: str,
    identity: Identity = Depends(current_identity),
    pipeline: AssetPipeline = Depends(get_pipeline),
) -> Dict[str, Any]:
    asset = pipeline.delete_asset(asset_id, identity)
    return {"ok": True, "id": asset.id, "status": asset.status, "deleted_at": asset.deleted_at.isoformat() + "Z"}


@router.post("/assets/{asset_id}/archive", response_model=AssetOut)
def archive_asset(
    asset_id: str,
    identity: Identity = Depends(current_identity),
    pipeline: AssetPipeline = Depends(get_pipeline),
) -> AssetOut:
    return AssetOut.from_asset(pipeline.archive_asset(asset_id, identity))


@router.get("/quota")
def quota_usage(
    identity: Identity = Depends(current_identity),
    pipeline: AssetPipeline = Depends(get_pipeline),
) -> Dict[str, Any]:
    return pipeline.quota_usage(identity)


# -----------------------------------------------------------------------------
# Operators
# -----------------------------------------------------------------------------
@router.get("/jobs/dead", response_model=List[JobOut])
def dead_jobs(
    kind: Optional[JobKind] = None,
    identity: Identity = Depends(require_admin),
    pipeline: AssetPipeline = Depends(get_pipeline),
) -> List[JobOut]:
    return [JobOut.from_job(j) for j in pipeline.dead_jobs(identity, kind)]


@router.post("/jobs/{job_id}/retry", response_model=JobOut)
def retry_job(
    job_id: int,
    identity: Identity = Depends(require_admin),
    pipeline: AssetPipeline = Depends(get_pipeline),
) -> JobOut:
    return JobOut.from_job(pipeline.retry_job(job_id, identity))
