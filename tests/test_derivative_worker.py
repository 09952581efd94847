import io
import json
import sys

import pytest
from PIL import Image

from assetflow.derivatives import (
    PREVIEW_SIZES,
    FFmpegMissing,
    UndecodableContent,
    document_metadata,
    inspect_media,
    render_previews,
    summarize_ffprobe,
)
from assetflow.errors import PreconditionFailed
from assetflow.models import JobKind
from assetflow.services.keys import build_derivative_key

shell_only = pytest.mark.skipif(sys.platform == "win32", reason="fake ffmpeg tools are sh scripts")


def _dims(data: bytes):
    with Image.open(io.BytesIO(data)) as img:
        return img.size, img.format


def _jpeg_with_exif(width: int = 640, height: int = 480, orientation: int = 6) -> bytes:
    exif = Image.Exif()
    exif[0x010F] = "Canon"
    exif[0x0110] = "EOS R5"
    exif[0x0112] = orientation
    buf = io.BytesIO()
    Image.new("RGB", (width, height), (200, 80, 40)).save(buf, format="JPEG", exif=exif)
    return buf.getvalue()


def _pdf(pages: int = 2, title: str = "Report") -> bytes:
    first, *rest = [Image.new("RGB", (200, 280), (255, 255, 255)) for _ in range(pages)]
    buf = io.BytesIO()
    first.save(buf, format="PDF", save_all=True, append_images=rest, title=title)
    return buf.getvalue()


def _fake_tool(tmp_path, name: str, body: str) -> str:
    path = tmp_path / name
    path.write_text("#!/bin/sh\n" + body)
    path.chmod(0o755)
    return str(path)


FFPROBE_AUDIO = {
    "format": {
        "format_name": "mp3",
        "duration": "184.320000",
        "bit_rate": "320000",
        "tags": {"TITLE": "Intro", "artist": "Studio"},
    },
    "streams": [
        {"codec_type": "audio", "codec_name": "mp3", "sample_rate": "44100", "channels": 2},
        {"codec_type": "video", "codec_name": "mjpeg", "width": 600, "height": 600,
         "disposition": {"attached_pic": 1}},
    ],
}

FFPROBE_VIDEO = {
    "format": {"format_name": "mov,mp4,m4a,3gp,3g2,mj2", "duration": "12.5", "bit_rate": "N/A"},
    "streams": [
        {"codec_type": "video", "codec_name": "h264", "width": 1920, "height": 1080,
         "avg_frame_rate": "30000/1001"},
        {"codec_type": "audio", "codec_name": "aac", "sample_rate": "48000", "channels": 2},
    ],
}


# -------------------------
# 1) UNIT: renderer
# -------------------------
def test_render_previews_fits_bounding_boxes(image_bytes):
    result = render_previews(image_bytes(1200, 1600))
    assert (result.width, result.height) == (1200, 1600)
    assert _dims(result.variants["small"]) == ((150, 200), "JPEG")
    assert _dims(result.variants["medium"]) == ((300, 400), "JPEG")
    assert _dims(result.variants["large"]) == ((600, 800), "JPEG")


def test_render_previews_never_upscales(image_bytes):
    result = render_previews(image_bytes(120, 80, fmt="PNG"))
    for name in PREVIEW_SIZES:
        assert _dims(result.variants[name])[0] == (120, 80)


def test_render_previews_flattens_alpha(image_bytes):
    result = render_previews(image_bytes(500, 500, fmt="PNG", mode="RGBA"))
    with Image.open(io.BytesIO(result.variants["medium"])) as img:
        assert img.mode == "RGB"
        assert img.size == (400, 400)


def test_render_previews_rejects_garbage():
    with pytest.raises(UndecodableContent):
        render_previews(b"definitely not an image")


def test_render_previews_rejects_decompression_bomb(image_bytes, monkeypatch):
    data = image_bytes(100, 100)
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)
    with pytest.raises(UndecodableContent, match="pixel limit"):
        render_previews(data)


def test_render_previews_reads_exif_and_applies_orientation():
    result = render_previews(_jpeg_with_exif(640, 480, orientation=6))
    # orientation 6: 90° gedraaid opgeslagen
    assert (result.width, result.height) == (480, 640)
    assert result.media == {
        "format": "JPEG",
        "width": 480,
        "height": 640,
        "exif": {"camera_make": "Canon", "camera_model": "EOS R5", "orientation": 6},
    }


def test_render_previews_without_exif_has_no_exif_block(image_bytes):
    result = render_previews(image_bytes(300, 200, fmt="PNG"))
    assert result.media == {"format": "PNG", "width": 300, "height": 200}


# -------------------------
# 2) UNIT: media metadata
# -------------------------
def test_summarize_ffprobe_audio_skips_cover_art():
    media = summarize_ffprobe(FFPROBE_AUDIO)
    assert media == {
        "container": "mp3",
        "duration": 184.32,
        "bit_rate": 320000,
        "audio_codec": "mp3",
        "sample_rate": 44100,
        "channels": 2,
        "tags": {"title": "Intro", "artist": "Studio"},
    }


def test_summarize_ffprobe_video():
    media = summarize_ffprobe(FFPROBE_VIDEO)
    assert media["video_codec"] == "h264"
    assert (media["width"], media["height"]) == (1920, 1080)
    assert media["frame_rate"] == 29.97
    assert media["audio_codec"] == "aac"
    # "N/A" valt weg
    assert "bit_rate" not in media


def test_summarize_ffprobe_empty_output():
    assert summarize_ffprobe({}) == {}


def test_inspect_media_without_ffprobe():
    with pytest.raises(FFmpegMissing):
        inspect_media(b"ID3\x03\x00", ffprobe_binary="/nonexistent/ffprobe")


@shell_only
def test_inspect_media_reads_ffprobe_json(tmp_path):
    ffprobe = _fake_tool(tmp_path, "ffprobe", "cat <<'JSON'\n" + json.dumps(FFPROBE_AUDIO) + "\nJSON\n")
    assert inspect_media(b"ID3\x03\x00", ffprobe_binary=ffprobe)["duration"] == 184.32


@shell_only
def test_inspect_media_failing_ffprobe_is_undecodable(tmp_path):
    ffprobe = _fake_tool(tmp_path, "ffprobe", "echo 'Invalid data found when processing input' >&2\nexit 1\n")
    with pytest.raises(UndecodableContent, match="Invalid data"):
        inspect_media(b"garbage", ffprobe_binary=ffprobe)


def test_document_metadata_counts_pages():
    media = document_metadata(_pdf(pages=2, title="Report"))
    assert media["page_count"] == 2
    assert media["title"] == "Report"
    assert media["pdf_version"]


def test_document_metadata_rejects_garbage():
    with pytest.raises(UndecodableContent):
        document_metadata(b"this is no pdf")


# -------------------------
# 3) Worker
# -------------------------
def test_image_gets_previews_and_thumbnail(pipeline, ingest, alice, image_bytes):
    asset = ingest(alice, data=image_bytes(1200, 1600), file_name="portrait.jpg", content_type="image/jpeg")

    assert pipeline.process_jobs(JobKind.DERIVATIVES) == 1

    done = pipeline.state.get(asset.id)
    assert done.derivatives_status == "done"
    assert set(done.preview_keys) == {"small", "medium", "large"}
    assert done.preview_keys["medium"] == f"assets/alice/{asset.id}/derivatives/medium.jpg"
    assert done.thumbnail_key == done.preview_keys["small"]
    assert done.meta["derivatives"]["width"] == 1200
    assert done.meta["derivatives"]["height"] == 1600
    assert done.meta["derivatives"]["sizes"] == {"small": 200, "medium": 400, "large": 800}
    assert _dims(pipeline.store.read(done.preview_keys["medium"]))[0] == (300, 400)
    # scan loopt nog: geen promotie
    assert done.status == "PROCESSING"


def test_documents_need_no_derivatives(pipeline, ingest, alice):
    asset = ingest(alice)
    pipeline.process_jobs(JobKind.DERIVATIVES)
    doc = pipeline.state.get(asset.id)
    assert doc.derivatives_status == "not-required"
    assert doc.preview_keys == {}


def test_undecodable_image_fails_derivatives_only(pipeline, ingest, alice):
    asset = ingest(alice, data=b"\xff\xd8 broken jpeg", file_name="broken.jpg", content_type="image/jpeg")

    pipeline.run_until_idle()

    result = pipeline.state.get(asset.id)
    assert result.derivatives_status == "failed"
    assert result.status == "CLEAN"
    job = next(j for j in pipeline.dispatcher.jobs_for(asset.id) if j.kind == "derivatives")
    assert job.state == "dead"
    assert job.attempts == 1

    with pytest.raises(PreconditionFailed) as exc:
        pipeline.preview_url(asset.id, "medium", alice)
    assert exc.value.details["reason"] == "derivative_missing"
    # origineel blijft downloadbaar
    assert pipeline.download_url(asset.id, alice).url


def test_video_without_ffmpeg_fails_permanently(make_pipeline, ingest, alice):
    p = make_pipeline(ffmpeg_binary="/nonexistent/ffmpeg")
    asset = ingest(alice, target=p, data=b"\x00\x00\x00\x18ftypmp42", file_name="clip.mp4", content_type="video/mp4")

    p.process_jobs(JobKind.DERIVATIVES)

    video = p.state.get(asset.id)
    assert video.derivatives_status == "failed"
    job = next(j for j in p.dispatcher.jobs_for(asset.id) if j.kind == "derivatives")
    assert job.state == "dead"
    assert "ffmpeg binary not found" in job.last_error


def test_derivatives_skipped_for_infected_asset(pipeline, ingest, alice, scanner, image_bytes):
    scanner.script.append("infected")
    asset = ingest(alice, data=image_bytes(), file_name="photo.jpg", content_type="image/jpeg")

    pipeline.process_jobs(JobKind.SCAN)
    pipeline.process_jobs(JobKind.DERIVATIVES)

    infected = pipeline.state.get(asset.id)
    assert infected.status == "INFECTED"
    assert infected.derivatives_status == "pending"
    assert infected.preview_keys == {}


def test_gated_promotion_waits_for_derivatives(make_pipeline, ingest, alice, image_bytes):
    p = make_pipeline(require_derivatives_for_clean=True)
    asset = ingest(alice, target=p, data=image_bytes(), file_name="photo.jpg", content_type="image/jpeg")

    p.process_jobs(JobKind.SCAN)
    assert p.state.get(asset.id).status == "PROCESSING"

    p.process_jobs(JobKind.DERIVATIVES)
    assert p.state.get(asset.id).status == "CLEAN"


def test_oversized_image_fails_without_retry(pipeline, ingest, alice, image_bytes, monkeypatch):
    asset = ingest(alice, data=image_bytes(100, 100), file_name="huge.jpg", content_type="image/jpeg")
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)

    pipeline.process_jobs(JobKind.DERIVATIVES)

    result = pipeline.state.get(asset.id)
    assert result.derivatives_status == "failed"
    job = next(j for j in pipeline.dispatcher.jobs_for(asset.id) if j.kind == "derivatives")
    assert job.state == "dead"
    assert job.attempts == 1
    assert "pixel limit" in job.last_error


def test_delete_during_render_discards_written_previews(pipeline, ingest, alice, image_bytes, monkeypatch):
    asset = ingest(alice, data=image_bytes(), file_name="photo.jpg", content_type="image/jpeg")
    worker = pipeline.derivative_worker
    original = worker.render

    def render_then_delete(current):
        result = original(current)
        pipeline.delete_asset(asset.id, alice)
        return result

    monkeypatch.setattr(worker, "render", render_then_delete)

    assert pipeline.process_jobs(JobKind.DERIVATIVES) == 1

    for size in PREVIEW_SIZES:
        assert not pipeline.store.stat(build_derivative_key("alice", asset.id, size)).exists
    gone = pipeline.state.get(asset.id, include_deleted=True)
    assert gone.preview_keys == {}
    assert gone.thumbnail_key is None
    job = next(j for j in pipeline.dispatcher.jobs_for(asset.id) if j.kind == "derivatives")
    assert job.state == "done"


# ---- media metadata ----
def test_image_metadata_includes_exif(pipeline, ingest, alice):
    asset = ingest(alice, data=_jpeg_with_exif(640, 480), file_name="camera.jpg", content_type="image/jpeg")

    pipeline.process_jobs(JobKind.DERIVATIVES)

    done = pipeline.state.get(asset.id)
    assert done.derivatives_status == "done"
    assert done.meta["media"]["format"] == "JPEG"
    assert (done.meta["media"]["width"], done.meta["media"]["height"]) == (480, 640)
    assert done.meta["media"]["exif"]["camera_model"] == "EOS R5"
    assert done.meta["derivatives"]["width"] == 480


def test_pdf_metadata_without_previews(pipeline, ingest, alice):
    asset = ingest(alice, data=_pdf(pages=3, title="Jaarverslag"), file_name="jaarverslag.pdf")

    pipeline.process_jobs(JobKind.DERIVATIVES)

    doc = pipeline.state.get(asset.id)
    assert doc.derivatives_status == "not-required"
    assert doc.preview_keys == {}
    assert doc.meta["media"]["page_count"] == 3
    assert doc.meta["media"]["title"] == "Jaarverslag"


@shell_only
def test_audio_metadata_from_ffprobe(make_pipeline, ingest, alice, tmp_path):
    ffprobe = _fake_tool(tmp_path, "ffprobe", "cat <<'JSON'\n" + json.dumps(FFPROBE_AUDIO) + "\nJSON\n")
    p = make_pipeline(ffprobe_binary=ffprobe)
    asset = ingest(alice, target=p, data=b"ID3\x03\x00\x00\x00\x00\x00\x00", file_name="intro.mp3", content_type="audio/mpeg")

    p.process_jobs(JobKind.DERIVATIVES)

    audio = p.state.get(asset.id)
    assert audio.derivatives_status == "not-required"
    assert audio.meta["media"]["duration"] == 184.32
    assert audio.meta["media"]["audio_codec"] == "mp3"
    assert audio.meta["media"]["tags"]["title"] == "Intro"


def test_audio_without_ffprobe_still_finishes(make_pipeline, ingest, alice):
    p = make_pipeline(ffprobe_binary="/nonexistent/ffprobe")
    asset = ingest(alice, target=p, data=b"ID3\x03\x00\x00\x00\x00\x00\x00", file_name="intro.mp3", content_type="audio/mpeg")

    p.process_jobs(JobKind.DERIVATIVES)

    audio = p.state.get(asset.id)
    assert audio.derivatives_status == "not-required"
    assert "media" not in audio.meta
    job = next(j for j in p.dispatcher.jobs_for(asset.id) if j.kind == "derivatives")
    assert job.state == "done"


@shell_only
def test_video_metadata_and_poster_previews(make_pipeline, ingest, alice, tmp_path, image_bytes):
    poster = tmp_path / "poster.jpg"
    poster.write_bytes(image_bytes(1280, 720))
    ffprobe = _fake_tool(tmp_path, "ffprobe", "cat <<'JSON'\n" + json.dumps(FFPROBE_VIDEO) + "\nJSON\n")
    # laatste argument is het output pad
    ffmpeg = _fake_tool(tmp_path, "ffmpeg", f'for last; do :; done\ncp "{poster}" "$last"\n')
    p = make_pipeline(ffprobe_binary=ffprobe, ffmpeg_binary=ffmpeg)
    asset = ingest(alice, target=p, data=b"\x00\x00\x00\x18ftypmp42", file_name="clip.mp4", content_type="video/mp4")

    p.process_jobs(JobKind.DERIVATIVES)

    video = p.state.get(asset.id)
    assert video.derivatives_status == "done"
    assert video.thumbnail_key == f"assets/alice/{asset.id}/derivatives/small.jpg"
    assert video.meta["media"]["video_codec"] == "h264"
    assert video.meta["media"]["frame_rate"] == 29.97
    assert (video.meta["derivatives"]["width"], video.meta["derivatives"]["height"]) == (1280, 720)
