# assetflow/workers/scan.py
from __future__ import annotations

from datetime import datetime
from typing import Callable

from assetflow.config import Settings
from assetflow.db import utcnow
from assetflow.errors import BlobStoreError, ScanBackendError, TransientJobError
from assetflow.logging_config import get_logger
from assetflow.metrics import scan_verdicts
from assetflow.models import Asset, AssetStatus, Job, JobKind, ScanStatus
from assetflow.models.asset import SCAN_TERMINAL
from assetflow.scanning import INFECTED, ScanBackend, ScanTarget, Verdict
from assetflow.services.state_store import StateStore
from assetflow.storage.base import BlobStore
from assetflow.workers.base import JobWorker, promotion

logger = get_logger(__name__)


class ScanWorker(JobWorker):
    kind = JobKind.SCAN

    def __init__(
        self,
        state: StateStore,
        store: BlobStore,
        backend: ScanBackend,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.state = state
        self.store = store
        self.backend = backend
        self.settings = settings
        self.clock = clock

    @staticmethod
    def _start(asset: Asset):
        if ScanStatus(asset.scan_status) in SCAN_TERMINAL:
            return None
        if asset.status != AssetStatus.PROCESSING.value:
            return None
        return {"scan_status": ScanStatus.SCANNING}

    def _target(self, asset: Asset) -> ScanTarget:
        key = asset.storage_key
        ttl = self.settings.read_url_ttl_seconds
        return ScanTarget(
            key=key,
            size=asset.file_size,
            content_type=asset.content_type,
            read=lambda: self.store.read(key),
            read_url=lambda: self.store.issue_read_credential(key, ttl).url,
        )

    def handle(self, job: Job) -> None:
        asset = self.state.mutate(job.asset_id, self._start)
        if asset is None or asset.scan_status != ScanStatus.SCANNING.value:
            logger.info("scan_skipped", asset_id=job.asset_id, reason="gone_or_terminal")
            return

        try:
            verdict = self.backend.scan(self._target(asset))
        except (ScanBackendError, BlobStoreError) as e:
            raise TransientJobError(str(e)) from e

        self.record(job.asset_id, verdict)

    def record(self, asset_id: str, verdict: Verdict) -> None:
        def apply(current: Asset):
            if current.scan_status != ScanStatus.SCANNING.value:
                return None
            meta = dict(current.meta or {})
            meta["scan"] = verdict.as_metadata()
            values = {"scan_status": ScanStatus(verdict.verdict), "meta": meta}
            if verdict.verdict == INFECTED:
                if current.status == AssetStatus.PROCESSING.value:
                    values["status"] = AssetStatus.INFECTED
            else:
                values.update(promotion(current, self.settings, scan_status=verdict.verdict))
            return values

        asset = self.state.mutate(asset_id, apply)
        scan_verdicts.labels(verdict.verdict).inc()
        log = logger.warning if verdict.verdict == INFECTED else logger.info
        log(
            "scan_verdict",
            asset_id=asset_id,
            verdict=verdict.verdict,
            engine=verdict.engine,
            threats=verdict.threats,
            status=asset.status if asset else None,
        )

    def on_exhausted(self, job: Job) -> None:
        self.state.mutate(job.asset_id, self._start)

        def apply(current: Asset):
            if current.scan_status != ScanStatus.SCANNING.value:
                return None
            meta = dict(current.meta or {})
            meta["scan"] = {
                "verdict": ScanStatus.SCAN_FAILED.value,
                "error": job.last_error,
                "attempts": job.attempts,
                "failed_at": self.clock().isoformat() + "Z",
            }
            values = {"scan_status": ScanStatus.SCAN_FAILED, "meta": meta}
            if current.status == AssetStatus.PROCESSING.value:
                values["status"] = AssetStatus.FAILED
            return values

        asset = self.state.mutate(job.asset_id, apply)
        logger.error("scan_exhausted", asset_id=job.asset_id, job_id=job.id, status=asset.status if asset else None)
