# assetflow/workers/base.py
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from assetflow.config import Settings
from assetflow.models import Asset, AssetStatus, DerivativesStatus, Job, JobKind, ScanStatus
from assetflow.models.asset import DERIVATIVES_TERMINAL, SCAN_USABLE


class JobWorker(ABC):
    kind: JobKind

    @abstractmethod
    def handle(self, job: Job) -> None:
        """
        Voer één job uit. TransientJobError -> retry met backoff,
        PermanentJobError -> direct dead.
        """

    @abstractmethod
    def on_exhausted(self, job: Job) -> None:
        """Job is dead: leg de eindtoestand vast op het asset."""


def promotion(
    asset: Asset,
    settings: Settings,
    scan_status: Optional[str] = None,
    derivatives_status: Optional[str] = None,
) -> Dict[str, Any]:
    """
    {"status": CLEAN} als het asset nu gepromoveerd mag worden, anders {}.
    scan_status/derivatives_status zijn de waarden ná de lopende update.
    """
    if asset.status != AssetStatus.PROCESSING.value:
        return {}
    scan = ScanStatus(scan_status or asset.scan_status)
    if scan not in SCAN_USABLE:
        return {}
    if settings.require_derivatives_for_clean:
        derivs = DerivativesStatus(derivatives_status or asset.derivatives_status)
        if derivs not in DERIVATIVES_TERMINAL:
            return {}
    return {"status": AssetStatus.CLEAN}
