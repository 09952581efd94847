# Preview / thumbnail renderers en media metadata

from .documents import PDF_TYPES, document_metadata
from .images import PREVIEW_SIZES, THUMBNAIL_SIZE, RenderResult, UndecodableContent, render_previews
from .mediainfo import inspect_media, summarize_ffprobe
from .video import FFmpegMissing, extract_poster_frame

__all__ = [
    "PDF_TYPES",
    "PREVIEW_SIZES",
    "THUMBNAIL_SIZE",
    "RenderResult",
    "UndecodableContent",
    "document_metadata",
    "render_previews",
    "inspect_media",
    "summarize_ffprobe",
    "FFmpegMissing",
    "extract_poster_frame",
]
