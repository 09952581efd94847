# assetflow/workers/derivatives.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Dict, Optional

from assetflow.config import Settings
from assetflow.db import utcnow
from assetflow.derivatives import (
    PDF_TYPES,
    PREVIEW_SIZES,
    THUMBNAIL_SIZE,
    FFmpegMissing,
    RenderResult,
    UndecodableContent,
    document_metadata,
    extract_poster_frame,
    inspect_media,
    render_previews,
)
from assetflow.errors import BlobStoreError, PermanentJobError, TransientJobError
from assetflow.logging_config import get_logger
from assetflow.models import Asset, AssetCategory, AssetStatus, DerivativesStatus, Job, JobKind
from assetflow.services.keys import build_derivative_key
from assetflow.services.state_store import StateStore
from assetflow.storage.base import BlobStore
from assetflow.workers.base import JobWorker, promotion

logger = get_logger(__name__)

RENDERABLE = {AssetCategory.IMAGE.value, AssetCategory.VIDEO.value}
_FINISHED = {DerivativesStatus.DONE.value, DerivativesStatus.NOT_REQUIRED.value}
_DEAD_END = {AssetStatus.INFECTED.value, AssetStatus.FAILED.value, AssetStatus.ARCHIVED.value}


class DerivativeWorker(JobWorker):
    """
    Thumbnails en previews (small/medium/large JPEG) voor images en video,
    plus structurele metadata (EXIF, ffprobe, PDF info) onder `meta["media"]`.
    """

    kind = JobKind.DERIVATIVES

    def __init__(
        self,
        state: StateStore,
        store: BlobStore,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.state = state
        self.store = store
        self.settings = settings
        self.clock = clock

    def handle(self, job: Job) -> None:
        with self.state.session_factory() as db:
            asset = self.state.load(db, job.asset_id)
        if asset is None or asset.status in _DEAD_END or asset.derivatives_status in _FINISHED:
            logger.info("derivatives_skipped", asset_id=job.asset_id)
            return

        if asset.category not in RENDERABLE:
            self._finish(job.asset_id, DerivativesStatus.NOT_REQUIRED, media=self.describe(asset))
            return

        result = self.render(asset)
        keys: Dict[str, str] = {}
        try:
            for size, data in result.variants.items():
                key = build_derivative_key(asset.owner_id, asset.id, size)
                self.store.put(key, data, "image/jpeg")
                keys[size] = key
        except BlobStoreError as e:
            raise TransientJobError(str(e)) from e

        recorded = self._finish(job.asset_id, DerivativesStatus.DONE, keys=keys, result=result, media=result.media)
        if recorded is None:
            # asset is tijdens het renderen verwijderd
            self._discard(job.asset_id, keys)

    def _read(self, asset: Asset) -> bytes:
        try:
            return self.store.read(asset.storage_key)
        except BlobStoreError as e:
            raise TransientJobError(str(e)) from e

    def _metadata(self, asset: Asset, extract: Callable[[bytes], Dict[str, Any]], data: bytes) -> Dict[str, Any]:
        # metadata is best effort: een onleesbare header blokkeert de job niet
        try:
            return extract(data)
        except (UndecodableContent, FFmpegMissing) as e:
            logger.warning("media_metadata_unavailable", asset_id=asset.id, category=asset.category, error=str(e))
            return {}

    def _inspect(self, data: bytes) -> Dict[str, Any]:
        return inspect_media(data, ffprobe_binary=self.settings.ffprobe_binary, timeout=self.settings.job_timeout_seconds)

    def describe(self, asset: Asset) -> Dict[str, Any]:
        """Structurele metadata voor assets zonder previews (audio, PDF)."""
        if asset.category == AssetCategory.AUDIO.value:
            return self._metadata(asset, self._inspect, self._read(asset))
        if asset.content_type in PDF_TYPES:
            return self._metadata(asset, document_metadata, self._read(asset))
        return {}

    def render(self, asset: Asset) -> RenderResult:
        data = self._read(asset)
        try:
            if asset.category == AssetCategory.VIDEO.value:
                media = self._metadata(asset, self._inspect, data)
                poster = extract_poster_frame(
                    data,
                    ffmpeg_binary=self.settings.ffmpeg_binary,
                    timeout=self.settings.job_timeout_seconds,
                )
                result = render_previews(poster)
                result.media = media or {"width": result.width, "height": result.height}
                return result
            return render_previews(data)
        except (UndecodableContent, FFmpegMissing) as e:
            raise PermanentJobError(str(e)) from e

    def _discard(self, asset_id: str, keys: Dict[str, str]) -> None:
        for key in keys.values():
            try:
                self.store.delete(key)
            except BlobStoreError as e:
                logger.warning("derivative_discard_failed", asset_id=asset_id, key=key, error=str(e))
        logger.info("derivatives_discarded", asset_id=asset_id, previews=sorted(keys))

    def _finish(self, asset_id: str, outcome: DerivativesStatus, keys=None, result=None, media=None) -> Optional[Asset]:
        now = self.clock()

        def apply(current: Asset):
            if current.derivatives_status in _FINISHED:
                return None
            values = {"derivatives_status": outcome}
            meta = dict(current.meta or {})
            if media:
                meta["media"] = dict(media)
            if keys:
                meta["derivatives"] = {
                    "sizes": {name: PREVIEW_SIZES[name] for name in keys},
                    "width": result.width,
                    "height": result.height,
                    "generated_at": now.isoformat() + "Z",
                }
                values.update(preview_keys=dict(keys), thumbnail_key=keys.get(THUMBNAIL_SIZE))
            if media or keys:
                values["meta"] = meta
            values.update(promotion(current, self.settings, derivatives_status=outcome.value))
            return values

        asset = self.state.mutate(asset_id, apply)
        logger.info(
            "derivatives_recorded",
            asset_id=asset_id,
            outcome=outcome.value,
            previews=sorted(keys) if keys else [],
            status=asset.status if asset else None,
        )
        return asset

    def on_exhausted(self, job: Job) -> None:
        def apply(current: Asset):
            if current.derivatives_status != DerivativesStatus.PENDING.value:
                return None
            values = {"derivatives_status": DerivativesStatus.FAILED}
            values.update(promotion(current, self.settings, derivatives_status=DerivativesStatus.FAILED.value))
            return values

        asset = self.state.mutate(job.asset_id, apply)
        logger.error(
            "derivatives_exhausted",
            asset_id=job.asset_id,
            job_id=job.id,
            error=job.last_error,
            status=asset.status if asset else None,
        )
