# assetflow/errors.py
from __future__ import annotations

from typing import Any, Dict, Optional


class AssetError(Exception):
    """
    User-visible failure: stable machine-readable `code`, human `message`,
    HTTP status voor de API laag en optionele details.
    """

    status_code = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}

    def to_body(self) -> Dict[str, Any]:
        return {
            "ok": False,
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
            },
        }


class ValidationError(AssetError):
    status_code = 400


class ObjectTooLarge(ValidationError):
    status_code = 413

    def __init__(self, size: int, limit: int):
        super().__init__(
            "OBJECT_TOO_LARGE",
            f"Declared size {size} exceeds the maximum of {limit} bytes",
            {"size": size, "limit": limit},
        )


class RateLimited(AssetError):
    status_code = 429

    def __init__(self, limit: int, window_seconds: int, reset_at: str, what: str = "Upload"):
        super().__init__(
            "RATE_LIMITED",
            f"{what} rate limit of {limit} per {window_seconds}s reached",
            {"limit": limit, "window_seconds": window_seconds, "reset_at": reset_at},
        )


class QuotaExceeded(AssetError):
    status_code = 403

    def __init__(self, quota: int, used: int, requested: int):
        super().__init__(
            "QUOTA_EXCEEDED",
            "Storage quota exceeded",
            {"quota": quota, "used": used, "requested": requested},
        )


class NotFound(AssetError):
    status_code = 404

    def __init__(self, asset_id: str, what: str = "Asset"):
        super().__init__("NOT_FOUND", f"{what} {asset_id} not found", {"id": asset_id})


class Forbidden(AssetError):
    status_code = 403

    def __init__(self, message: str = "Access denied", details: Optional[Dict[str, Any]] = None):
        super().__init__("FORBIDDEN", message, details)


class Unauthenticated(AssetError):
    status_code = 401

    def __init__(self):
        super().__init__("UNAUTHENTICATED", "Not authenticated")


class PreconditionFailed(AssetError):
    """Conflict/precondition: state unchanged, safe to retry the preceding step."""

    status_code = 409


class ConcurrencyConflict(AssetError):
    status_code = 409

    def __init__(self, asset_id: str):
        super().__init__(
            "CONCURRENT_MODIFICATION",
            f"Asset {asset_id} kept changing underneath the update",
            {"id": asset_id},
        )


# ---------------------------------------------------------------------------
# Infrastructure / worker-side
# ---------------------------------------------------------------------------

class BlobStoreError(Exception):
    """Blob store unreachable, throttled or returned 5xx; retry later."""


class ScanBackendError(Exception):
    """Scanner did not produce a content verdict."""


class TransientJobError(Exception):
    """Job should be retried with backoff."""


class PermanentJobError(Exception):
    """Job can never succeed; goes straight to dead."""
