# assetflow/services/validation.py
import json
import re
from typing import Any, Optional

from assetflow.config import Settings
from assetflow.errors import ObjectTooLarge, ValidationError

_FILENAME_RE = re.compile(r"^[A-Za-z0-9 ._-]+$")


def validate_filename(file_name: str, max_length: int = 255) -> None:
    if not file_name or not file_name.strip():
        raise ValidationError("INVALID_FILENAME", "File name is required")
    if len(file_name) > max_length:
        raise ValidationError(
            "INVALID_FILENAME",
            f"File name longer than {max_length} characters",
            {"max_length": max_length},
        )
    if not _FILENAME_RE.match(file_name):
        raise ValidationError(
            "INVALID_FILENAME",
            "File name may only contain letters, digits, spaces, dots, dashes and underscores",
        )
    if file_name.startswith(".") or ".." in file_name:
        raise ValidationError("INVALID_FILENAME", "File name may not start with a dot or contain '..'")


def validate_mime(content_type: str, settings: Settings) -> None:
    if content_type not in settings.allowed_mime_set:
        raise ValidationError(
            "UNSUPPORTED_TYPE",
            f"Content type not allowed: {content_type}",
            {"content_type": content_type},
        )


def validate_size(size_bytes: int, settings: Settings) -> None:
    if size_bytes is None or size_bytes <= 0:
        raise ValidationError("INVALID_SIZE", "Declared size must be positive", {"size": size_bytes})
    if size_bytes > settings.max_upload_bytes:
        raise ObjectTooLarge(size_bytes, settings.max_upload_bytes)


def validate_title(title: Optional[str], settings: Settings) -> str:
    cleaned = (title or "").strip()
    if not cleaned:
        raise ValidationError("INVALID_TITLE", "Title is required")
    if len(cleaned) > settings.max_title_length:
        raise ValidationError(
            "INVALID_TITLE",
            f"Title longer than {settings.max_title_length} characters",
            {"max_length": settings.max_title_length},
        )
    return cleaned


def validate_description(description: Optional[str], settings: Settings) -> Optional[str]:
    if description is None:
        return None
    if len(description) > settings.max_description_length:
        raise ValidationError(
            "INVALID_DESCRIPTION",
            f"Description longer than {settings.max_description_length} characters",
            {"max_length": settings.max_description_length},
        )
    return description


def _depth(value: Any) -> int:
    if isinstance(value, dict):
        return 1 + max((_depth(v) for v in value.values()), default=0)
    if isinstance(value, list):
        return 1 + max((_depth(v) for v in value), default=0)
    return 0


def validate_metadata(metadata: Optional[dict], settings: Settings) -> dict:
    if metadata is None:
        return {}
    if not isinstance(metadata, dict):
        raise ValidationError("INVALID_METADATA", "Metadata must be a JSON object")
    if len(metadata) > settings.metadata_max_keys:
        raise ValidationError(
            "INVALID_METADATA",
            f"Metadata has more than {settings.metadata_max_keys} keys",
            {"max_keys": settings.metadata_max_keys},
        )
    if _depth(metadata) > settings.metadata_max_depth:
        raise ValidationError(
            "INVALID_METADATA",
            f"Metadata nested deeper than {settings.metadata_max_depth} levels",
            {"max_depth": settings.metadata_max_depth},
        )
    try:
        encoded = json.dumps(metadata, separators=(",", ":")).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise ValidationError("INVALID_METADATA", f"Metadata is not JSON serializable: {e}") from e
    if len(encoded) > settings.metadata_max_bytes:
        raise ValidationError(
            "INVALID_METADATA",
            f"Metadata larger than {settings.metadata_max_bytes} bytes",
            {"max_bytes": settings.metadata_max_bytes, "size": len(encoded)},
        )
    return metadata
