# assetflow/services/quota_guard.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from sqlalchemy import case, or_, select, update
from sqlalchemy.orm import Session

from assetflow.config import Settings
from assetflow.db import insert_ignore, utcnow
from assetflow.errors import AssetError, ObjectTooLarge, QuotaExceeded, RateLimited
from assetflow.logging_config import get_logger
from assetflow.metrics import quota_denials
from assetflow.models import QuotaCounter

logger = get_logger(__name__)


@dataclass
class QuotaDecision:
    allowed: bool
    reason: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    error: Optional[AssetError] = None

    def raise_for_denial(self) -> None:
        if not self.allowed and self.error is not None:
            raise self.error


class QuotaGuard:
    """
    Per-identity upload rate (fixed window) en storage quota.
    De teller leeft in de database zodat alle replicas dezelfde stand zien;
    een reservering is één conditionele UPDATE.
    """

    def __init__(self, settings: Settings, clock: Callable[[], datetime] = utcnow):
        self.settings = settings
        self.clock = clock

    @property
    def window(self) -> timedelta:
        return timedelta(seconds=self.settings.upload_rate_window_seconds)

    def _load(self, db: Session, identity: str) -> Optional[QuotaCounter]:
        stmt = (
            select(QuotaCounter)
            .where(QuotaCounter.identity == identity)
            .execution_options(populate_existing=True)
        )
        return db.execute(stmt).scalar_one_or_none()

    def _deny(self, identity: str, error: AssetError) -> QuotaDecision:
        quota_denials.labels(error.code).inc()
        logger.info("quota_denied", identity=identity, reason=error.code, **error.details)
        return QuotaDecision(allowed=False, reason=error.code, details=error.details, error=error)

    def reserve(self, db: Session, identity: str, declared_size: int) -> QuotaDecision:
        """
        Count one upload request and reserve `declared_size` bytes.
        Runs inside the caller's transaction; nothing changes on denial.
        """
        s = self.settings
        if declared_size > s.max_upload_bytes:
            return self._deny(identity, ObjectTooLarge(declared_size, s.max_upload_bytes))

        now = self.clock()
        insert_ignore(db, QuotaCounter, identity=identity, request_count=0, window_started_at=now, stored_bytes=0)

        expired = QuotaCounter.window_started_at <= now - self.window
        stmt = (
            update(QuotaCounter)
            .where(QuotaCounter.identity == identity)
            .where(or_(expired, QuotaCounter.request_count < s.upload_rate_limit))
            .where(QuotaCounter.stored_bytes + declared_size <= s.storage_quota_bytes)
            .values(
                request_count=case((expired, 1), else_=QuotaCounter.request_count + 1),
                window_started_at=case((expired, now), else_=QuotaCounter.window_started_at),
                stored_bytes=QuotaCounter.stored_bytes + declared_size,
            )
            .execution_options(synchronize_session=False)
        )
        result = db.execute(stmt)
        if result.rowcount == 1:
            return QuotaDecision(allowed=True)

        row = self._load(db, identity)
        window_open = row.window_started_at > now - self.window
        if window_open and row.request_count >= s.upload_rate_limit:
            reset_at = row.window_started_at + self.window
            return self._deny(
                identity,
                RateLimited(s.upload_rate_limit, s.upload_rate_window_seconds, reset_at.isoformat() + "Z"),
            )
        return self._deny(identity, QuotaExceeded(s.storage_quota_bytes, row.stored_bytes, declared_size))

    def release(self, db: Session, identity: str, size: int) -> None:
        """Compensating decrement; stored_bytes never drops below zero."""
        if size <= 0:
            return
        remaining = QuotaCounter.stored_bytes - size
        db.execute(
            update(QuotaCounter)
            .where(QuotaCounter.identity == identity)
            .values(stored_bytes=case((remaining < 0, 0), else_=remaining))
            .execution_options(synchronize_session=False)
        )
        logger.info("quota_released", identity=identity, bytes=size)

    def usage(self, db: Session, identity: str) -> Dict[str, Any]:
        s = self.settings
        now = self.clock()
        row = self._load(db, identity)
        if row is None or row.window_started_at <= now - self.window:
            count, reset_at = 0, None
        else:
            count, reset_at = row.request_count, row.window_started_at + self.window
        return {
            "identity": identity,
            "request_count": count,
            "request_limit": s.upload_rate_limit,
            "window_seconds": s.upload_rate_window_seconds,
            "reset_at": reset_at.isoformat() + "Z" if reset_at else None,
            "stored_bytes": row.stored_bytes if row else 0,
            "quota_bytes": s.storage_quota_bytes,
        }
