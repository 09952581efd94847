# assetflow/services/access_urls.py
from __future__ import annotations

from assetflow.collaborators import Authorizer, Catalog, Identity
from assetflow.config import Settings
from assetflow.derivatives import PREVIEW_SIZES
from assetflow.errors import Forbidden, PreconditionFailed, ValidationError
from assetflow.logging_config import get_logger
from assetflow.models import Asset, AssetStatus
from assetflow.services.state_store import StateStore
from assetflow.storage.base import BlobStore, ReadCredential

logger = get_logger(__name__)

ORIGINAL = "original"


class AccessUrlIssuer:
    """Kortlevende read-URLs, alleen voor CLEAN assets."""

    def __init__(
        self,
        settings: Settings,
        state: StateStore,
        store: BlobStore,
        catalog: Catalog,
        authorizer: Authorizer,
    ):
        self.settings = settings
        self.state = state
        self.store = store
        self.catalog = catalog
        self.authorizer = authorizer

    def can_read(self, asset: Asset, requester: Identity) -> bool:
        if self.authorizer.authorize(requester, asset.owner_id, "read"):
            return True
        return self.catalog.grants_access(asset.id, requester)

    def _readable(self, asset_id: str, requester: Identity) -> Asset:
        asset = self.state.get(asset_id)
        if not self.can_read(asset, requester):
            raise Forbidden("No access to this asset", {"id": asset_id})
        if asset.status != AssetStatus.CLEAN.value:
            raise PreconditionFailed(
                "NOT_READY",
                f"Asset is {asset.status}, not available for download",
                {"id": asset_id, "status": asset.status, "scan_status": asset.scan_status},
            )
        return asset

    def download_url(self, asset_id: str, requester: Identity) -> ReadCredential:
        asset = self._readable(asset_id, requester)
        cred = self.store.issue_read_credential(
            asset.storage_key,
            self.settings.read_url_ttl_seconds,
            filename=asset.original_filename,
        )
        logger.info("download_url_issued", asset_id=asset_id, identity=requester.id)
        return cred

    def preview_url(self, asset_id: str, size: str, requester: Identity) -> ReadCredential:
        if size != ORIGINAL and size not in PREVIEW_SIZES:
            raise ValidationError(
                "INVALID_PREVIEW_SIZE",
                f"Unknown preview size: {size}",
                {"allowed": [*PREVIEW_SIZES, ORIGINAL]},
            )
        asset = self._readable(asset_id, requester)
        if size == ORIGINAL:
            key = asset.storage_key
        else:
            key = (asset.preview_keys or {}).get(size)
            if not key:
                raise PreconditionFailed(
                    "NOT_READY",
                    f"No {size} preview available",
                    {"id": asset_id, "size": size, "reason": "derivative_missing",
                     "derivatives_status": asset.derivatives_status},
                )
        cred = self.store.issue_read_credential(key, self.settings.read_url_ttl_seconds)
        logger.info("preview_url_issued", asset_id=asset_id, size=size, identity=requester.id)
        return cred
