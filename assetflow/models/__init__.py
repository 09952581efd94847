# Models package for assetflow

from .asset import (
    Asset,
    AssetCategory,
    AssetStatus,
    DerivativesStatus,
    ScanStatus,
)
from .job import Job, JobKind, JobState
from .quota import QuotaCounter
from .upload_session import UploadSession

__all__ = [
    "Asset",
    "AssetCategory",
    "AssetStatus",
    "DerivativesStatus",
    "ScanStatus",
    "Job",
    "JobKind",
    "JobState",
    "QuotaCounter",
    "UploadSession",
]
