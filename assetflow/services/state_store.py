# assetflow/services/state_store.py
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session, sessionmaker

from assetflow.db import utcnow
from assetflow.errors import ConcurrencyConflict, NotFound, PreconditionFailed
from assetflow.logging_config import get_logger
from assetflow.models import Asset, AssetStatus, DerivativesStatus, ScanStatus
from assetflow.models.asset import can_transition, can_transition_derivatives, can_transition_scan

logger = get_logger(__name__)

# fn(asset) -> dict met nieuwe kolomwaarden, of None als er niets te doen is
Mutation = Callable[[Asset], Optional[Dict[str, Any]]]


class StateStore:
    """
    Eigenaar van Asset records. Elke wijziging is een compare-and-set op
    `row_version`; bij een conflict wordt opnieuw gelezen en de mutatie
    opnieuw toegepast.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        clock: Callable[[], datetime] = utcnow,
        max_retries: int = 5,
    ):
        self.session_factory = session_factory
        self.clock = clock
        self.max_retries = max_retries

    def load(self, db: Session, asset_id: str, include_deleted: bool = False) -> Optional[Asset]:
        stmt = select(Asset).where(Asset.id == asset_id).execution_options(populate_existing=True)
        asset = db.execute(stmt).scalar_one_or_none()
        if asset is None or (asset.deleted_at is not None and not include_deleted):
            return None
        return asset

    def get(self, asset_id: str, include_deleted: bool = False) -> Asset:
        with self.session_factory() as db:
            asset = self.load(db, asset_id, include_deleted=include_deleted)
            if asset is None:
                raise NotFound(asset_id)
            return asset

    def check_values(self, asset: Asset, values: Dict[str, Any]) -> None:
        if "storage_key" in values and values["storage_key"] != asset.storage_key:
            raise PreconditionFailed("INVALID_TRANSITION", "storage_key is immutable", {"id": asset.id})
        if "status" in values:
            current, new = AssetStatus(asset.status), AssetStatus(values["status"])
            if not can_transition(current, new):
                raise PreconditionFailed(
                    "INVALID_TRANSITION",
                    f"Cannot move asset from {current.value} to {new.value}",
                    {"id": asset.id, "from": current.value, "to": new.value},
                )
        if "scan_status" in values:
            current, new = ScanStatus(asset.scan_status), ScanStatus(values["scan_status"])
            if not can_transition_scan(current, new):
                raise PreconditionFailed(
                    "INVALID_TRANSITION",
                    f"Cannot move scan status from {current.value} to {new.value}",
                    {"id": asset.id, "from": current.value, "to": new.value},
                )
        if "derivatives_status" in values:
            current, new = DerivativesStatus(asset.derivatives_status), DerivativesStatus(values["derivatives_status"])
            if not can_transition_derivatives(current, new):
                raise PreconditionFailed(
                    "INVALID_TRANSITION",
                    f"Cannot move derivatives status from {current.value} to {new.value}",
                    {"id": asset.id, "from": current.value, "to": new.value},
                )

    def compare_and_set(self, db: Session, asset: Asset, values: Dict[str, Any]) -> bool:
        """One conditional UPDATE; False when someone else changed the row first."""
        self.check_values(asset, values)
        payload = {k: (v.value if isinstance(v, Enum) else v) for k, v in values.items()}
        payload["row_version"] = asset.row_version + 1
        payload["updated_at"] = self.clock()
        stmt = (
            update(Asset)
            .where(Asset.id == asset.id)
            .where(Asset.row_version == asset.row_version)
            .values({getattr(Asset, k): v for k, v in payload.items()})
            .execution_options(synchronize_session=False)
        )
        return db.execute(stmt).rowcount == 1

    def mutate_in(self, db: Session, asset_id: str, fn: Mutation, include_deleted: bool = False) -> Optional[Asset]:
        """
        Apply `fn` inside the caller's transaction.
        Returns the updated asset, or None when the asset does not exist.
        """
        for attempt in range(self.max_retries):
            asset = self.load(db, asset_id, include_deleted=include_deleted)
            if asset is None:
                return None
            values = fn(asset)
            if not values:
                return asset
            if self.compare_and_set(db, asset, values):
                db.refresh(asset)
                if "status" in values or "scan_status" in values:
                    logger.info(
                        "asset_transition",
                        asset_id=asset_id,
                        status=asset.status,
                        scan_status=asset.scan_status,
                        derivatives_status=asset.derivatives_status,
                    )
                return asset
            logger.debug("asset_cas_conflict", asset_id=asset_id, attempt=attempt + 1)
        raise ConcurrencyConflict(asset_id)

    def mutate(self, asset_id: str, fn: Mutation, include_deleted: bool = False) -> Optional[Asset]:
        """Same as `mutate_in`, in its own committed transaction."""
        with self.session_factory() as db:
            with db.begin():
                return self.mutate_in(db, asset_id, fn, include_deleted=include_deleted)
