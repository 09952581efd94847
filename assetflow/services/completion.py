# assetflow/services/completion.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Dict, Optional

from sqlalchemy import delete
from sqlalchemy.orm import sessionmaker

from assetflow.collaborators import Identity
from assetflow.config import Settings
from assetflow.db import utcnow
from assetflow.errors import Forbidden, NotFound, PreconditionFailed
from assetflow.logging_config import get_logger
from assetflow.metrics import uploads_confirmed
from assetflow.models import Asset, AssetStatus, JobKind, UploadSession
from assetflow.services.dispatcher import Dispatcher
from assetflow.services.state_store import StateStore
from assetflow.services.validation import validate_description, validate_metadata, validate_title
from assetflow.storage.base import BlobStore

logger = get_logger(__name__)


class CompletionConfirmer:
    """
    Bevestigt dat de client de bytes heeft geüpload en zet het asset door
    naar PROCESSING. Zolang een stap faalt blijft het asset DRAFT en kan de
    client het opnieuw proberen.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        settings: Settings,
        state: StateStore,
        dispatcher: Dispatcher,
        store: BlobStore,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.settings = settings
        self.state = state
        self.dispatcher = dispatcher
        self.store = store
        self.clock = clock

    def confirm(
        self,
        identity: Identity,
        asset_id: str,
        title: Optional[str],
        description: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Asset:
        with self.session_factory() as db:
            asset = self.state.load(db, asset_id)
            if asset is None:
                raise NotFound(asset_id)
            if asset.owner_id != identity.id:
                raise Forbidden("Only the uploader can confirm this asset", {"id": asset_id})
            if asset.status != AssetStatus.DRAFT.value:
                uploads_confirmed.labels("idempotent").inc()
                return asset

            title = validate_title(title, self.settings)
            description = validate_description(description, self.settings)
            metadata = validate_metadata(metadata, self.settings)

            session = db.get(UploadSession, asset_id)
            if session is None or session.is_expired(self.clock()):
                uploads_confirmed.labels("expired").inc()
                raise PreconditionFailed(
                    "SESSION_EXPIRED",
                    "Upload session expired; start a new upload",
                    {"id": asset_id},
                )
            declared_size = session.declared_size

        stat = self.store.stat(asset.storage_key)
        if not stat.exists:
            uploads_confirmed.labels("not_uploaded").inc()
            raise PreconditionFailed("NOT_UPLOADED", "No object found for this upload", {"id": asset_id})
        if stat.size != declared_size:
            uploads_confirmed.labels("size_mismatch").inc()
            logger.info("upload_size_mismatch", asset_id=asset_id, declared=declared_size, observed=stat.size)
            raise PreconditionFailed(
                "SIZE_MISMATCH",
                f"Uploaded object is {stat.size} bytes, declared {declared_size}",
                {"id": asset_id, "declared": declared_size, "observed": stat.size},
            )

        transitioned = False

        def to_processing(current: Asset):
            nonlocal transitioned
            transitioned = False
            if current.status != AssetStatus.DRAFT.value:
                return None
            transitioned = True
            return {
                "status": AssetStatus.PROCESSING,
                "title": title,
                "description": description,
                "meta": dict(metadata),
            }

        with self.session_factory() as db:
            with db.begin():
                asset = self.state.mutate_in(db, asset_id, to_processing)
                if asset is None:
                    raise NotFound(asset_id)
                if transitioned:
                    db.execute(delete(UploadSession).where(UploadSession.asset_id == asset_id))
                    self.dispatcher.enqueue(db, asset_id, JobKind.SCAN)
                    self.dispatcher.enqueue(db, asset_id, JobKind.DERIVATIVES)

        if transitioned:
            uploads_confirmed.labels("success").inc()
            logger.info("upload_confirmed", asset_id=asset_id, identity=identity.id, size=stat.size)
        else:
            uploads_confirmed.labels("idempotent").inc()
        return asset
