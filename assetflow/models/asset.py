# assetflow/models/asset.py
from __future__ import annotations

import enum
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, BigInteger, Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from assetflow.db import Base, utcnow


class AssetStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    PROCESSING = "PROCESSING"
    CLEAN = "CLEAN"
    FAILED = "FAILED"
    INFECTED = "INFECTED"
    ARCHIVED = "ARCHIVED"


class ScanStatus(str, enum.Enum):
    NOT_SCANNED = "not-scanned"
    SCANNING = "scanning"
    CLEAN = "clean"
    INFECTED = "infected"
    SCAN_FAILED = "scan-failed"
    SKIPPED = "skipped"


class DerivativesStatus(str, enum.Enum):
    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"
    NOT_REQUIRED = "not-required"


class AssetCategory(str, enum.Enum):
    IMAGE = "image"
    VIDEO = "video"
    DOCUMENT = "document"
    AUDIO = "audio"


# Forward-only state machines. ARCHIVED is reachable from every non-archived state.
STATUS_TRANSITIONS: dict[AssetStatus, set[AssetStatus]] = {
    AssetStatus.DRAFT: {AssetStatus.PROCESSING, AssetStatus.ARCHIVED},
    AssetStatus.PROCESSING: {
        AssetStatus.CLEAN,
        AssetStatus.FAILED,
        AssetStatus.INFECTED,
        AssetStatus.ARCHIVED,
    },
    AssetStatus.CLEAN: {AssetStatus.ARCHIVED},
    AssetStatus.FAILED: {AssetStatus.ARCHIVED},
    AssetStatus.INFECTED: {AssetStatus.ARCHIVED},
    AssetStatus.ARCHIVED: set(),
}

SCAN_TRANSITIONS: dict[ScanStatus, set[ScanStatus]] = {
    ScanStatus.NOT_SCANNED: {ScanStatus.SCANNING},
    # scanning -> scanning: a retried scan job re-enters the same state
    ScanStatus.SCANNING: {
        ScanStatus.SCANNING,
        ScanStatus.CLEAN,
        ScanStatus.INFECTED,
        ScanStatus.SCAN_FAILED,
        ScanStatus.SKIPPED,
    },
    ScanStatus.CLEAN: set(),
    ScanStatus.INFECTED: set(),
    ScanStatus.SCAN_FAILED: set(),
    ScanStatus.SKIPPED: set(),
}

DERIVATIVES_TRANSITIONS: dict[DerivativesStatus, set[DerivativesStatus]] = {
    DerivativesStatus.PENDING: {
        DerivativesStatus.DONE,
        DerivativesStatus.FAILED,
        DerivativesStatus.NOT_REQUIRED,
    },
    # een dead render job kan opnieuw gestart worden en alsnog slagen
    DerivativesStatus.FAILED: {DerivativesStatus.DONE, DerivativesStatus.NOT_REQUIRED},
    DerivativesStatus.DONE: set(),
    DerivativesStatus.NOT_REQUIRED: set(),
}

SCAN_TERMINAL = {ScanStatus.CLEAN, ScanStatus.INFECTED, ScanStatus.SCAN_FAILED, ScanStatus.SKIPPED}
SCAN_USABLE = {ScanStatus.CLEAN, ScanStatus.SKIPPED}
DERIVATIVES_TERMINAL = {DerivativesStatus.DONE, DerivativesStatus.FAILED, DerivativesStatus.NOT_REQUIRED}


def can_transition(current: AssetStatus, new: AssetStatus) -> bool:
    if current == new:
        return True
    return new in STATUS_TRANSITIONS.get(current, set())


def can_transition_scan(current: ScanStatus, new: ScanStatus) -> bool:
    if current == new and current in SCAN_TERMINAL:
        return True
    return new in SCAN_TRANSITIONS.get(current, set())


def can_transition_derivatives(current: DerivativesStatus, new: DerivativesStatus) -> bool:
    if current == new and current in DERIVATIVES_TERMINAL:
        return True
    return new in DERIVATIVES_TRANSITIONS.get(current, set())


def category_for(content_type: str) -> Optional[AssetCategory]:
    if content_type.startswith("image/"):
        return AssetCategory.IMAGE
    if content_type.startswith("video/"):
        return AssetCategory.VIDEO
    if content_type.startswith("audio/"):
        return AssetCategory.AUDIO
    if any(
        marker in content_type
        for marker in ("pdf", "document", "msword", "excel", "powerpoint", "presentation")
    ):
        return AssetCategory.DOCUMENT
    return None


class Asset(Base):
    __tablename__ = "assets"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(100), index=True, nullable=False)
    group_ref: Mapped[Optional[str]] = mapped_column(String(100), index=True, nullable=True)

    storage_key: Mapped[str] = mapped_column(String(1024), unique=True, nullable=False)
    original_filename: Mapped[str] = mapped_column(String(255), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    content_type: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[str] = mapped_column(String(20), nullable=False)

    title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String(20), index=True, nullable=False, default=AssetStatus.DRAFT.value)
    scan_status: Mapped[str] = mapped_column(String(20), nullable=False, default=ScanStatus.NOT_SCANNED.value)
    derivatives_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DerivativesStatus.PENDING.value
    )

    # "metadata" is gereserveerd op declarative classes
    meta: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)
    thumbnail_key: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    preview_keys: Mapped[dict[str, str]] = mapped_column(JSON, nullable=False, default=dict)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    row_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    quota_released: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    purged_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_assets_status_updated_at", "status", "updated_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<Asset id={self.id} owner={self.owner_id} "
            f"status={self.status} scan={self.scan_status}>"
        )
