# assetflow/api/schemas.py
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from assetflow.models import Asset, Job


def _iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() + "Z" if dt else None


class InitiateUploadIn(BaseModel):
    file_name: str
    size: int
    content_type: str
    group_ref: Optional[str] = None


class ConfirmUploadIn(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class AssetOut(BaseModel):
    id: str
    owner_id: str
    group_ref: Optional[str] = None
    storage_key: str
    original_filename: str
    file_size: int
    content_type: str
    category: str
    title: Optional[str] = None
    description: Optional[str] = None
    status: str
    scan_status: str
    derivatives_status: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    thumbnail_key: Optional[str] = None
    preview_keys: Dict[str, str] = Field(default_factory=dict)
    version: int
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    deleted_at: Optional[str] = None

    @classmethod
    def from_asset(cls, a: Asset) -> "AssetOut":
        return cls(
            id=a.id,
            owner_id=a.owner_id,
            group_ref=a.group_ref,
            storage_key=a.storage_key,
            original_filename=a.original_filename,
            file_size=a.file_size,
            content_type=a.content_type,
            category=a.category,
            title=a.title,
            description=a.description,
            status=a.status,
            scan_status=a.scan_status,
            derivatives_status=a.derivatives_status,
            metadata=a.meta or {},
            thumbnail_key=a.thumbnail_key,
            preview_keys=a.preview_keys or {},
            version=a.version,
            created_at=_iso(a.created_at),
            updated_at=_iso(a.updated_at),
            deleted_at=_iso(a.deleted_at),
        )


class AssetListOut(BaseModel):
    items: List[AssetOut]
    total: int
    page: int
    page_size: int


class ReadUrlOut(BaseModel):
    url: str
    expires_at: str


class JobOut(BaseModel):
    id: int
    asset_id: str
    kind: str
    state: str
    attempts: int
    max_attempts: int
    run_at: Optional[str] = None
    last_error: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_job(cls, j: Job) -> "JobOut":
        return cls(
            id=j.id,
            asset_id=j.asset_id,
            kind=j.kind,
            state=j.state,
            attempts=j.attempts,
            max_attempts=j.max_attempts,
            run_at=_iso(j.run_at),
            last_error=j.last_error,
            updated_at=_iso(j.updated_at),
        )
