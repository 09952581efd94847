# assetflow/api/local_blobs.py
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import Response

from assetflow.api.deps import get_pipeline
from assetflow.errors import BlobStoreError
from assetflow.logging_config import get_logger
from assetflow.pipeline import AssetPipeline
from assetflow.storage.local import LocalBlobStore

logger = get_logger(__name__)

# -----------------------------------------------------------------------------
# LOCAL blob endpoints (emuleren S3 presigned POST / GET voor dev en tests)
# -----------------------------------------------------------------------------
router = APIRouter(prefix="/local-blobs", tags=["local-blobs"])


def _local_store(pipeline: AssetPipeline = Depends(get_pipeline)) -> LocalBlobStore:
    if not isinstance(pipeline.store, LocalBlobStore):
        raise HTTPException(status_code=404, detail="local_storage_disabled")
    return pipeline.store


@router.post("/upload", status_code=201)
async def local_upload(
    key: str = Form(...),
    content_type: str = Form(..., alias="Content-Type"),
    max_bytes: int = Form(...),
    expires: int = Form(...),
    signature: str = Form(...),
    file: UploadFile = File(...),
    store: LocalBlobStore = Depends(_local_store),
) -> Dict[str, Any]:
    """
    Client post hiernaartoe met de 'fields' uit de write credential + file.
    Validaties: handtekening/expiry, 1 <= size <= max_bytes.
    """
    if not store.verify("PUT", key, expires, signature, max_bytes=max_bytes, content_type=content_type):
        raise HTTPException(status_code=403, detail="invalid_or_expired_signature")

    data = await file.read()
    if not data or len(data) > max_bytes:
        raise HTTPException(status_code=413, detail="size_exceeded")

    try:
        store.put(key, data, content_type)
    except BlobStoreError as e:
        raise HTTPException(status_code=500, detail=f"local_upload_failed:{e}")

    logger.info("local_blob_uploaded", key=key, size=len(data))
    return {"status": "ok", "key": key, "size": len(data), "content_type": content_type}


@router.get("/{key:path}")
def local_download(
    key: str,
    expires: int,
    signature: str,
    filename: Optional[str] = None,
    store: LocalBlobStore = Depends(_local_store),
) -> Response:
    if not store.verify("GET", key, expires, signature):
        raise HTTPException(status_code=403, detail="invalid_or_expired_signature")
    stat = store.stat(key)
    if not stat.exists:
        raise HTTPException(status_code=404, detail="not_found")
    headers = {}
    if filename:
        headers["Content-Disposition"] = f'attachment; filename="{filename}"'
    return Response(
        content=store.read(key),
        media_type=stat.content_type or "application/octet-stream",
        headers=headers,
    )
