# assetflow/models/quota.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from assetflow.db import Base, utcnow


class QuotaCounter(Base):
    __tablename__ = "quota_counters"

    identity: Mapped[str] = mapped_column(String(100), primary_key=True)
    request_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    window_started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    stored_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    def __repr__(self) -> str:
        return (
            f"<QuotaCounter identity={self.identity} requests={self.request_count} "
            f"bytes={self.stored_bytes}>"
        )
