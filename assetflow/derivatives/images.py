# assetflow/derivatives/images.py
from __future__ import annotations

import io
from dataclasses import dataclass, field
from typing import Any, Dict

from PIL import Image, ImageOps, TiffImagePlugin, UnidentifiedImageError

# bounding box per variant (px)
PREVIEW_SIZES: Dict[str, int] = {
    "small": 200,
    "medium": 400,
    "large": 800,
}
THUMBNAIL_SIZE = "small"
JPEG_QUALITY = 85

# EXIF tags die we in metadata.media bewaren
_EXIF_BASE = {
    0x010F: "camera_make",
    0x0110: "camera_model",
    0x0112: "orientation",
    0x0131: "software",
}
_EXIF_IFD = 0x8769
_EXIF_DETAIL = {
    0x9003: "taken_at",
    0x829A: "exposure_time",
    0x829D: "f_number",
    0x8827: "iso",
    0x920A: "focal_length",
}


class UndecodableContent(Exception):
    """Content kan niet gedecodeerd worden; opnieuw proberen heeft geen zin."""


@dataclass
class RenderResult:
    width: int
    height: int
    variants: Dict[str, bytes] = field(default_factory=dict)
    media: Dict[str, Any] = field(default_factory=dict)


def _to_jpeg(img: Image.Image) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format="JPEG", quality=JPEG_QUALITY, optimize=True)
    return buf.getvalue()


def _plain(value: Any):
    # EXIF waardes -> JSON-vriendelijk
    if isinstance(value, TiffImagePlugin.IFDRational):
        return round(float(value), 4) if value.denominator else None
    if isinstance(value, bytes):
        value = value.decode("ascii", errors="ignore")
    if isinstance(value, str):
        return value.strip("\x00 ").strip() or None
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, tuple) and len(value) == 1:
        return _plain(value[0])
    return None


def exif_summary(img: Image.Image) -> Dict[str, Any]:
    exif = img.getexif()
    summary: Dict[str, Any] = {}
    for tag, name in _EXIF_BASE.items():
        if tag in exif:
            summary[name] = _plain(exif[tag])
    detail = exif.get_ifd(_EXIF_IFD)
    for tag, name in _EXIF_DETAIL.items():
        if tag in detail:
            summary[name] = _plain(detail[tag])
    return {k: v for k, v in summary.items() if v is not None}


def render_previews(data: bytes) -> RenderResult:
    """
    Decodeer een afbeelding, pas EXIF-oriëntatie toe en maak JPEG previews
    die binnen de PREVIEW_SIZES boxen vallen. Kleinere bronnen worden niet opgeschaald.
    """
    try:
        with Image.open(io.BytesIO(data)) as src:
            src.load()
            source_format = src.format
            exif = exif_summary(src)
            img = ImageOps.exif_transpose(src)
    except Image.DecompressionBombError as e:
        raise UndecodableContent(f"image exceeds the pixel limit: {e}") from e
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise UndecodableContent(f"cannot decode image: {e}") from e

    if img.mode not in ("RGB", "L"):
        # alpha/palette -> RGB op witte achtergrond
        background = Image.new("RGB", img.size, (255, 255, 255))
        rgba = img.convert("RGBA")
        background.paste(rgba, mask=rgba.split()[-1])
        img = background

    width, height = img.size
    variants: Dict[str, bytes] = {}
    for name, box in PREVIEW_SIZES.items():
        variant = img.copy()
        variant.thumbnail((box, box), Image.Resampling.LANCZOS)
        variants[name] = _to_jpeg(variant)

    media: Dict[str, Any] = {"format": source_format, "width": width, "height": height}
    if exif:
        media["exif"] = exif
    return RenderResult(width=width, height=height, variants=variants, media=media)
