# assetflow/services/credential_issuer.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import sessionmaker

from assetflow.collaborators import Catalog, Identity
from assetflow.config import Settings
from assetflow.db import utcnow
from assetflow.errors import AssetError, BlobStoreError, Forbidden
from assetflow.logging_config import get_logger
from assetflow.metrics import upload_size_hist, uploads_initiated
from assetflow.models import Asset, AssetCategory, AssetStatus, DerivativesStatus, ScanStatus, UploadSession
from assetflow.models.asset import category_for
from assetflow.services.keys import build_asset_key, new_asset_id
from assetflow.services.quota_guard import QuotaGuard
from assetflow.services.validation import validate_filename, validate_mime, validate_size
from assetflow.storage.base import BlobStore, WriteCredential

logger = get_logger(__name__)


@dataclass
class UploadTicket:
    asset_id: str
    storage_key: str
    credential: WriteCredential
    session_expires_at: datetime

    def as_dict(self) -> Dict[str, Any]:
        return {
            "asset_id": self.asset_id,
            "storage_key": self.storage_key,
            "upload": self.credential.as_dict(),
            "session_expires_at": self.session_expires_at.isoformat() + "Z",
        }


class CredentialIssuer:
    def __init__(
        self,
        session_factory: sessionmaker,
        settings: Settings,
        quota: QuotaGuard,
        store: BlobStore,
        catalog: Catalog,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.settings = settings
        self.quota = quota
        self.store = store
        self.catalog = catalog
        self.clock = clock

    def validate(self, identity: Identity, file_name: str, declared_size: int, declared_type: str,
                 group_ref: Optional[str]) -> None:
        validate_filename(file_name, self.settings.max_filename_length)
        validate_mime(declared_type, self.settings)
        validate_size(declared_size, self.settings)
        if group_ref and not self.catalog.validate_group(identity, group_ref):
            raise Forbidden("Group not accessible", {"group_ref": group_ref})

    def initiate(
        self,
        identity: Identity,
        file_name: str,
        declared_size: int,
        declared_type: str,
        group_ref: Optional[str] = None,
    ) -> UploadTicket:
        try:
            self.validate(identity, file_name, declared_size, declared_type, group_ref)
        except AssetError as e:
            uploads_initiated.labels("invalid").inc()
            logger.info("upload_rejected", identity=identity.id, code=e.code, file_name=file_name)
            raise

        asset_id = new_asset_id()
        storage_key = build_asset_key(identity.id, asset_id, file_name)
        now = self.clock()
        expires_at = now + timedelta(seconds=self.settings.upload_session_ttl_seconds)

        try:
            with self.session_factory() as db:
                with db.begin():
                    self.quota.reserve(db, identity.id, declared_size).raise_for_denial()
                    db.add(
                        Asset(
                            id=asset_id,
                            owner_id=identity.id,
                            group_ref=group_ref,
                            storage_key=storage_key,
                            original_filename=file_name,
                            file_size=declared_size,
                            content_type=declared_type,
                            category=(category_for(declared_type) or AssetCategory.DOCUMENT).value,
                            status=AssetStatus.DRAFT.value,
                            scan_status=ScanStatus.NOT_SCANNED.value,
                            derivatives_status=DerivativesStatus.PENDING.value,
                            meta={},
                            preview_keys={},
                            version=1,
                            row_version=1,
                            created_at=now,
                            updated_at=now,
                        )
                    )
                    db.flush()
                    db.add(
                        UploadSession(
                            asset_id=asset_id,
                            owner_id=identity.id,
                            declared_size=declared_size,
                            declared_type=declared_type,
                            expires_at=expires_at,
                            created_at=now,
                        )
                    )
                    db.flush()
                    # Credential binnen de transactie: faalt de store, dan rollt alles terug
                    credential = self.store.issue_write_credential(
                        storage_key,
                        max_bytes=declared_size,
                        content_type=declared_type,
                        ttl_seconds=self.settings.upload_session_ttl_seconds,
                    )
        except AssetError:
            uploads_initiated.labels("denied").inc()
            raise
        except BlobStoreError as e:
            uploads_initiated.labels("error").inc()
            logger.error("upload_credential_failed", identity=identity.id, asset_id=asset_id, error=str(e))
            raise

        uploads_initiated.labels("success").inc()
        upload_size_hist.observe(declared_size)
        logger.info(
            "upload_initiated",
            identity=identity.id,
            asset_id=asset_id,
            storage_key=storage_key,
            size=declared_size,
            content_type=declared_type,
        )
        return UploadTicket(
            asset_id=asset_id,
            storage_key=storage_key,
            credential=credential,
            session_expires_at=expires_at,
        )
