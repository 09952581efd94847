# assetflow/derivatives/video.py
from __future__ import annotations

import subprocess
import tempfile
from pathlib import Path

from assetflow.derivatives.images import UndecodableContent
from assetflow.errors import TransientJobError


class FFmpegMissing(RuntimeError):
    pass


def extract_poster_frame(data: bytes, ffmpeg_binary: str = "ffmpeg", timeout: int = 120) -> bytes:
    """
    Eerste representatieve frame (na 1s, anders frame 0) als JPEG bytes.
    """
    with tempfile.TemporaryDirectory(prefix="assetflow-") as tmp:
        src = Path(tmp) / "source"
        out = Path(tmp) / "poster.jpg"
        src.write_bytes(data)

        stderr_tail = ""
        for offset in ("1", "0"):
            args = [
                ffmpeg_binary, "-hide_banner", "-loglevel", "error", "-y",
                "-ss", offset, "-i", str(src),
                "-frames:v", "1", "-q:v", "2", str(out),
            ]
            try:
                subprocess.run(args, check=True, timeout=timeout, capture_output=True, text=True)
            except FileNotFoundError as exc:
                raise FFmpegMissing(f"ffmpeg binary not found: {ffmpeg_binary}") from exc
            except subprocess.TimeoutExpired as exc:
                raise TransientJobError(f"ffmpeg timed out after {timeout}s") from exc
            except subprocess.CalledProcessError as exc:
                stderr_tail = "\n".join((exc.stderr or "").splitlines()[-10:])
                continue
            if out.exists() and out.stat().st_size > 0:
                return out.read_bytes()

        raise UndecodableContent(f"ffmpeg could not extract a frame: {stderr_tail or 'no output'}")
