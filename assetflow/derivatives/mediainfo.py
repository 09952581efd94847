# assetflow/derivatives/mediainfo.py
from __future__ import annotations

import json
import subprocess
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

from assetflow.derivatives.images import UndecodableContent
from assetflow.derivatives.video import FFmpegMissing
from assetflow.errors import TransientJobError

_TAGS = ("title", "artist", "album", "album_artist", "date", "genre", "track")


def _number(value: Any, cast=float) -> Optional[float]:
    try:
        return cast(value) if value not in (None, "", "N/A") else None
    except (TypeError, ValueError):
        return None


def _frame_rate(value: Optional[str]) -> Optional[float]:
    # "30000/1001" -> 29.97, "0/0" -> None
    if not value or "/" not in value:
        return _number(value)
    num, _, den = value.partition("/")
    num, den = _number(num), _number(den)
    if not num or not den:
        return None
    return round(num / den, 3)


def summarize_ffprobe(info: Dict[str, Any]) -> Dict[str, Any]:
    """ffprobe JSON (-show_format -show_streams) -> compacte media metadata."""
    fmt = info.get("format") or {}
    streams = [
        s for s in info.get("streams") or []
        if not (s.get("disposition") or {}).get("attached_pic")  # cover art in mp3/m4a
    ]
    video = next((s for s in streams if s.get("codec_type") == "video"), None)
    audio = next((s for s in streams if s.get("codec_type") == "audio"), None)

    media: Dict[str, Any] = {
        "container": fmt.get("format_name"),
        "duration": _number(fmt.get("duration")),
        "bit_rate": _number(fmt.get("bit_rate"), int),
    }
    if video:
        media.update(
            video_codec=video.get("codec_name"),
            width=_number(video.get("width"), int),
            height=_number(video.get("height"), int),
            frame_rate=_frame_rate(video.get("avg_frame_rate")),
        )
    if audio:
        media.update(
            audio_codec=audio.get("codec_name"),
            sample_rate=_number(audio.get("sample_rate"), int),
            channels=_number(audio.get("channels"), int),
        )
    tags = {str(k).lower(): v for k, v in (fmt.get("tags") or {}).items()}
    found = {k: str(tags[k]) for k in _TAGS if tags.get(k)}
    if found:
        media["tags"] = found
    return {k: v for k, v in media.items() if v is not None}


def inspect_media(data: bytes, ffprobe_binary: str = "ffprobe", timeout: int = 60) -> Dict[str, Any]:
    """Duur, codecs, resolutie en tags van een video- of audiobestand via ffprobe."""
    with tempfile.TemporaryDirectory(prefix="assetflow-") as tmp:
        src = Path(tmp) / "source"
        src.write_bytes(data)
        args = [
            ffprobe_binary, "-v", "error", "-print_format", "json",
            "-show_format", "-show_streams", str(src),
        ]
        try:
            proc = subprocess.run(args, check=True, timeout=timeout, capture_output=True, text=True)
        except FileNotFoundError as exc:
            raise FFmpegMissing(f"ffprobe binary not found: {ffprobe_binary}") from exc
        except subprocess.TimeoutExpired as exc:
            raise TransientJobError(f"ffprobe timed out after {timeout}s") from exc
        except subprocess.CalledProcessError as exc:
            tail = "\n".join((exc.stderr or "").splitlines()[-10:])
            raise UndecodableContent(f"ffprobe could not read the stream: {tail or 'no output'}") from exc

    try:
        info = json.loads(proc.stdout or "{}")
    except ValueError as exc:
        raise UndecodableContent(f"ffprobe returned invalid json: {exc}") from exc
    return summarize_ffprobe(info)
