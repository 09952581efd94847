# assetflow/services/keys.py
import re
import uuid

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


def key_join(*parts: str) -> str:
    cleaned = [str(p).strip("/ ") for p in parts if p is not None and str(p).strip("/ ")]
    return "/".join(cleaned)


def safe_segment(value: str, fallback: str) -> str:
    # spaties e.d. -> "_", geen ".." of slashes binnen één key segment
    name = _UNSAFE.sub("_", str(value).strip())
    name = name.replace("..", "_")
    name = re.sub(r"_+", "_", name).strip("._")
    return name or fallback


def safe_filename(filename: str) -> str:
    return safe_segment(filename, "file")


def new_asset_id() -> str:
    return uuid.uuid4().hex


def build_asset_key(owner_id: str, asset_id: str, filename: str) -> str:
    # assets/{owner}/{asset_id}/{filename}
    return key_join("assets", safe_segment(owner_id, "owner"), asset_id, safe_filename(filename))


def build_derivative_key(owner_id: str, asset_id: str, size: str) -> str:
    # assets/{owner}/{asset_id}/derivatives/{size}.jpg
    return key_join("assets", safe_segment(owner_id, "owner"), asset_id, "derivatives", f"{size}.jpg")
