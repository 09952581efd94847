# assetflow/services/assets.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import sessionmaker

from assetflow.collaborators import Authorizer, Catalog, Identity
from assetflow.db import utcnow
from assetflow.errors import BlobStoreError, Forbidden, NotFound, PreconditionFailed
from assetflow.logging_config import get_logger
from assetflow.models import Asset, AssetStatus
from assetflow.services.janitor import asset_blob_keys
from assetflow.services.quota_guard import QuotaGuard
from assetflow.services.state_store import StateStore
from assetflow.storage.base import BlobStore

logger = get_logger(__name__)

MAX_PAGE_SIZE = 100


@dataclass
class AssetFilter:
    status: Optional[str] = None
    scan_status: Optional[str] = None
    category: Optional[str] = None
    group_ref: Optional[str] = None
    owner_id: Optional[str] = None
    search: Optional[str] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None


@dataclass
class AssetPage:
    items: List[Asset]
    total: int
    page: int
    page_size: int


class AssetService:
    """Lezen, lijsten, archiveren en verwijderen van assets."""

    def __init__(
        self,
        session_factory: sessionmaker,
        state: StateStore,
        quota: QuotaGuard,
        store: BlobStore,
        catalog: Catalog,
        authorizer: Authorizer,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.state = state
        self.quota = quota
        self.store = store
        self.catalog = catalog
        self.authorizer = authorizer
        self.clock = clock

    def get(self, asset_id: str, requester: Identity) -> Asset:
        asset = self.state.get(asset_id)
        if not (
            self.authorizer.authorize(requester, asset.owner_id, "read")
            or self.catalog.grants_access(asset_id, requester)
        ):
            raise Forbidden("No access to this asset", {"id": asset_id})
        return asset

    def list(self, requester: Identity, filters: AssetFilter, page: int = 1, page_size: int = 20) -> AssetPage:
        page = max(1, page)
        page_size = max(1, min(page_size, MAX_PAGE_SIZE))

        stmt = select(Asset).where(Asset.deleted_at.is_(None))
        if not requester.is_admin:
            stmt = stmt.where(Asset.owner_id == requester.id)
        elif filters.owner_id:
            stmt = stmt.where(Asset.owner_id == filters.owner_id)

        if filters.status:
            stmt = stmt.where(Asset.status == filters.status)
        if filters.scan_status:
            stmt = stmt.where(Asset.scan_status == filters.scan_status)
        if filters.category:
            stmt = stmt.where(Asset.category == filters.category)
        if filters.group_ref:
            stmt = stmt.where(Asset.group_ref == filters.group_ref)
        if filters.search:
            pattern = f"%{filters.search.strip()}%"
            stmt = stmt.where(or_(Asset.title.ilike(pattern), Asset.original_filename.ilike(pattern)))
        if filters.created_from:
            stmt = stmt.where(Asset.created_at >= filters.created_from)
        if filters.created_to:
            stmt = stmt.where(Asset.created_at <= filters.created_to)

        with self.session_factory() as db:
            total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
            items = list(
                db.execute(
                    stmt.order_by(Asset.created_at.desc(), Asset.id)
                    .offset((page - 1) * page_size)
                    .limit(page_size)
                ).scalars()
            )
        return AssetPage(items=items, total=total, page=page, page_size=page_size)

    def _authorize(self, asset: Asset, requester: Identity, action: str) -> None:
        if not self.authorizer.authorize(requester, asset.owner_id, action):
            raise Forbidden(f"Not allowed to {action} this asset", {"id": asset.id})

    def archive(self, asset_id: str, requester: Identity) -> Asset:
        asset = self.state.get(asset_id)
        self._authorize(asset, requester, "archive")

        def apply(current: Asset):
            if current.status == AssetStatus.ARCHIVED.value:
                return None
            return {"status": AssetStatus.ARCHIVED}

        asset = self.state.mutate(asset_id, apply)
        if asset is None:
            raise NotFound(asset_id)
        logger.info("asset_archived", asset_id=asset_id, identity=requester.id)
        return asset

    def delete(self, asset_id: str, requester: Identity) -> Asset:
        asset = self.state.get(asset_id)
        self._authorize(asset, requester, "delete")
        if self.catalog.has_active_licenses(asset_id):
            raise PreconditionFailed(
                "HAS_ACTIVE_LICENSES",
                "Asset has active licenses and cannot be deleted",
                {"id": asset_id},
            )

        now = self.clock()
        released = False

        def apply(current: Asset):
            nonlocal released
            released = False
            if current.deleted_at is not None:
                return None
            released = not current.quota_released
            return {"status": AssetStatus.ARCHIVED, "deleted_at": now, "quota_released": True}

        with self.session_factory() as db:
            with db.begin():
                deleted = self.state.mutate_in(db, asset_id, apply)
                if deleted is None:
                    raise NotFound(asset_id)
                if released:
                    self.quota.release(db, asset.owner_id, asset.file_size)
        # een DRAFT houdt zijn upload sessie: de write credential blijft geldig tot
        # expires_at, daarna ruimt de janitor een late upload op

        for key in asset_blob_keys(deleted):
            try:
                self.store.delete(key)
            except BlobStoreError as e:
                logger.warning("asset_blob_delete_failed", asset_id=asset_id, key=key, error=str(e))

        logger.info("asset_deleted", asset_id=asset_id, identity=requester.id, bytes=asset.file_size)
        return deleted
