# assetflow/services/janitor.py
from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List

from sqlalchemy import and_, delete, or_, select
from sqlalchemy.orm import sessionmaker

from assetflow.config import Settings
from assetflow.db import utcnow
from assetflow.errors import BlobStoreError
from assetflow.logging_config import get_logger
from assetflow.metrics import janitor_reaped
from assetflow.models import Asset, AssetStatus, UploadSession
from assetflow.services.quota_guard import QuotaGuard
from assetflow.services.state_store import StateStore
from assetflow.storage.base import BlobStore

logger = get_logger(__name__)


@dataclass
class SweepReport:
    abandoned: int = 0
    stale_sessions: int = 0
    purged: int = 0
    bytes_freed: int = 0
    errors: int = 0
    dry_run: bool = False

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def asset_blob_keys(asset: Asset) -> List[str]:
    keys = [asset.storage_key]
    keys.extend((asset.preview_keys or {}).values())
    if asset.thumbnail_key and asset.thumbnail_key not in keys:
        keys.append(asset.thumbnail_key)
    return keys


class Janitor:
    """
    Ruimt verlaten uploads en verlopen FAILED/INFECTED assets op.
    Mag parallel met zichzelf draaien: elke recordwijziging is conditioneel,
    blob deletes zijn idempotent en quota wordt maar één keer vrijgegeven.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        settings: Settings,
        state: StateStore,
        quota: QuotaGuard,
        store: BlobStore,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.settings = settings
        self.state = state
        self.quota = quota
        self.store = store
        self.clock = clock

    def sweep(self, dry_run: bool = False) -> SweepReport:
        report = SweepReport(dry_run=dry_run)
        now = self.clock()
        self.reap_abandoned(now, report)
        self.purge_expired(now, report)
        logger.info("janitor_sweep", **report.as_dict())
        return report

    def _delete_blobs(self, keys: List[str], report: SweepReport) -> bool:
        ok = True
        for key in keys:
            try:
                self.store.delete(key)
            except BlobStoreError as e:
                ok = False
                report.errors += 1
                logger.warning("janitor_blob_delete_failed", key=key, error=str(e))
        return ok

    def _delete_session(self, asset_id: str) -> None:
        with self.session_factory() as db:
            with db.begin():
                db.execute(delete(UploadSession).where(UploadSession.asset_id == asset_id))

    # ---- (a) verlopen upload sessies ----
    def reap_abandoned(self, now: datetime, report: SweepReport) -> None:
        with self.session_factory() as db:
            sessions = db.execute(
                select(UploadSession)
                .where(UploadSession.expires_at <= now)
                .order_by(UploadSession.expires_at)
                .limit(self.settings.janitor_batch_size)
            ).scalars().all()

        for session in sessions:
            asset_id = session.asset_id
            with self.session_factory() as db:
                asset = self.state.load(db, asset_id, include_deleted=True)

            is_draft = asset is not None and asset.status == AssetStatus.DRAFT.value and asset.deleted_at is None
            if is_draft:
                report.abandoned += 1
                report.bytes_freed += asset.file_size
            else:
                report.stale_sessions += 1
            if report.dry_run:
                continue

            if is_draft:
                self._archive_abandoned(asset, now)
                janitor_reaped.labels("abandoned").inc()
            elif asset is not None and asset.deleted_at is None:
                # asset is al verder; alleen de sessie opruimen
                self._delete_session(asset_id)
                continue

            # object weg (ook bij een eerdere half-afgebroken sweep), daarna pas de sessie
            if asset is None or self._delete_blobs([asset.storage_key], report):
                self._delete_session(asset_id)

    def _archive_abandoned(self, asset: Asset, now: datetime) -> None:
        released = False

        def apply(current: Asset):
            nonlocal released
            released = False
            if current.status != AssetStatus.DRAFT.value or current.deleted_at is not None:
                return None
            released = not current.quota_released
            return {"status": AssetStatus.ARCHIVED, "deleted_at": now, "quota_released": True}

        with self.session_factory() as db:
            with db.begin():
                self.state.mutate_in(db, asset.id, apply)
                if released:
                    self.quota.release(db, asset.owner_id, asset.file_size)
        logger.info("janitor_abandoned", asset_id=asset.id, owner_id=asset.owner_id, bytes=asset.file_size)

    # ---- (b) retentie FAILED / INFECTED ----
    def purge_expired(self, now: datetime, report: SweepReport) -> None:
        s = self.settings
        failed_cutoff = now - timedelta(days=s.failed_retention_days)
        infected_cutoff = now - timedelta(days=s.infected_retention_days)
        with self.session_factory() as db:
            assets = db.execute(
                select(Asset)
                .where(Asset.deleted_at.is_(None))
                .where(
                    or_(
                        and_(Asset.status == AssetStatus.FAILED.value, Asset.updated_at <= failed_cutoff),
                        and_(Asset.status == AssetStatus.INFECTED.value, Asset.updated_at <= infected_cutoff),
                    )
                )
                .order_by(Asset.updated_at)
                .limit(s.janitor_batch_size)
            ).scalars().all()

        for asset in assets:
            report.purged += 1
            report.bytes_freed += asset.file_size
            if report.dry_run:
                continue
            if not self._delete_blobs(asset_blob_keys(asset), report):
                # record blijft staan; volgende sweep probeert het opnieuw
                report.purged -= 1
                report.bytes_freed -= asset.file_size
                continue
            self._purge_record(asset, now)
            janitor_reaped.labels("purged").inc()

    def _purge_record(self, asset: Asset, now: datetime) -> None:
        released = False

        def apply(current: Asset):
            nonlocal released
            released = False
            if current.deleted_at is not None:
                return None
            released = not current.quota_released
            meta = current.meta or {}
            stub = {"purged": True, "purged_at": now.isoformat() + "Z"}
            if "scan" in meta:
                stub["scan"] = meta["scan"]
            return {
                "deleted_at": now,
                "purged_at": now,
                "meta": stub,
                "description": None,
                "preview_keys": {},
                "thumbnail_key": None,
                "quota_released": True,
            }

        with self.session_factory() as db:
            with db.begin():
                self.state.mutate_in(db, asset.id, apply)
                if released:
                    self.quota.release(db, asset.owner_id, asset.file_size)
        logger.info("janitor_purged", asset_id=asset.id, status=asset.status, bytes=asset.file_size)
