# assetflow/scanning/base.py
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from assetflow.db import utcnow

CLEAN = "clean"
INFECTED = "infected"
SKIPPED = "skipped"


@dataclass
class ScanTarget:
    """Wat een backend nodig heeft om één object te scannen."""

    key: str
    size: int
    content_type: str
    read: Callable[[], bytes]
    read_url: Callable[[], str]


@dataclass
class Verdict:
    verdict: str  # clean | infected | skipped
    engine: str
    version: Optional[str] = None
    threats: List[str] = field(default_factory=list)
    scanned_at: datetime = field(default_factory=utcnow)

    def as_metadata(self) -> Dict[str, Any]:
        return {
            "verdict": self.verdict,
            "engine": self.engine,
            "engine_version": self.version,
            "threats": list(self.threats),
            "scanned_at": self.scanned_at.isoformat() + "Z",
        }


class ScanBackend(ABC):
    name = "abstract"

    @abstractmethod
    def scan(self, target: ScanTarget) -> Verdict:
        """Content verdict, or ScanBackendError when no verdict could be produced."""


class SkipScanBackend(ScanBackend):
    """Non-production only; configuration refuses it elsewhere."""

    name = "skip"

    def scan(self, target: ScanTarget) -> Verdict:
        return Verdict(verdict=SKIPPED, engine=self.name)
