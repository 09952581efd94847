# assetflow/models/job.py
from __future__ import annotations

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from assetflow.db import Base, utcnow


class JobKind(str, enum.Enum):
    SCAN = "scan"
    DERIVATIVES = "derivatives"


class JobState(str, enum.Enum):
    QUEUED = "queued"
    LEASED = "leased"
    DONE = "done"
    DEAD = "dead"


class Job(Base):
    __tablename__ = "jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    asset_id: Mapped[str] = mapped_column(
        ForeignKey("assets.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    state: Mapped[str] = mapped_column(String(20), nullable=False, default=JobState.QUEUED.value)

    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False)

    run_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    lease_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    lease_token: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("asset_id", "kind", name="uq_jobs_asset_kind"),
        Index("ix_jobs_kind_lease_expires_at", "kind", "lease_expires_at"),
        Index("ix_jobs_kind_state_run_at", "kind", "state", "run_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<Job id={self.id} kind={self.kind} asset_id={self.asset_id} "
            f"state={self.state} attempts={self.attempts}/{self.max_attempts}>"
        )
