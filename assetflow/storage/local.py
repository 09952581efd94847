# assetflow/storage/local.py
import hashlib
import hmac
import json
import logging
import time
from datetime import timedelta
from pathlib import Path
from typing import Callable, Optional
from urllib.parse import quote, urlencode

from assetflow.db import utcnow
from assetflow.errors import BlobStoreError
from assetflow.storage.base import BlobStore, ObjectStat, ReadCredential, WriteCredential

logger = logging.getLogger(__name__)

_META_SUFFIX = ".meta.json"


class LocalBlobStore(BlobStore):
    """
    Lokale bestandsopslag voor dev/test.
    Credentials zijn HMAC-getekende URLs die door de API (`/local-blobs`) worden bediend.
    """

    def __init__(
        self,
        root: str,
        base_url: str = "http://localhost:8000/local-blobs",
        secret: str = "dev-only-secret",
        clock: Callable = utcnow,
    ):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        self.base_url = base_url.rstrip("/")
        self.secret = secret.encode("utf-8")
        self.clock = clock

    # ---- paths ----
    def _path(self, key: str) -> Path:
        p = (self.root / key).resolve()
        if p != self.root and self.root not in p.parents:
            raise BlobStoreError(f"key escapes storage root: {key}")
        return p

    def _meta_path(self, key: str) -> Path:
        p = self._path(key)
        return p.with_name(p.name + _META_SUFFIX)

    # ---- signing ----
    def sign(self, method: str, key: str, expires: int, max_bytes: int = 0, content_type: str = "") -> str:
        msg = f"{method}\n{key}\n{expires}\n{max_bytes}\n{content_type}".encode("utf-8")
        return hmac.new(self.secret, msg, hashlib.sha256).hexdigest()

    def verify(
        self,
        method: str,
        key: str,
        expires: int,
        signature: str,
        max_bytes: int = 0,
        content_type: str = "",
        now: Optional[float] = None,
    ) -> bool:
        if (now if now is not None else time.time()) > expires:
            return False
        expected = self.sign(method, key, expires, max_bytes, content_type)
        return hmac.compare_digest(expected, signature)

    def _expires_epoch(self, ttl_seconds: int) -> int:
        return int(time.time()) + int(ttl_seconds)

    # ---- BlobStore ----
    def issue_write_credential(self, key, max_bytes, content_type, ttl_seconds):
        self._path(key)  # valideer vroeg
        expires = self._expires_epoch(ttl_seconds)
        fields = {
            "key": key,
            "Content-Type": content_type,
            "max_bytes": str(max_bytes),
            "expires": str(expires),
            "signature": self.sign("PUT", key, expires, max_bytes, content_type),
        }
        return WriteCredential(
            url=f"{self.base_url}/upload",
            fields=fields,
            key=key,
            max_bytes=max_bytes,
            expires_at=self.clock() + timedelta(seconds=ttl_seconds),
        )

    def issue_read_credential(self, key, ttl_seconds, filename=None):
        expires = self._expires_epoch(ttl_seconds)
        params = {"expires": expires, "signature": self.sign("GET", key, expires)}
        if filename:
            params["filename"] = filename
        url = f"{self.base_url}/{quote(key)}?{urlencode(params)}"
        return ReadCredential(url=url, expires_at=self.clock() + timedelta(seconds=ttl_seconds))

    def stat(self, key):
        p = self._path(key)
        if not p.is_file():
            return ObjectStat(exists=False)
        content_type = None
        mp = self._meta_path(key)
        if mp.exists():
            content_type = json.loads(mp.read_text("utf-8")).get("content_type")
        return ObjectStat(exists=True, size=p.stat().st_size, content_type=content_type)

    def read(self, key):
        p = self._path(key)
        try:
            return p.read_bytes()
        except OSError as e:
            raise BlobStoreError(f"read failed for {key}: {e}") from e

    def put(self, key, data, content_type):
        p = self._path(key)
        try:
            p.parent.mkdir(parents=True, exist_ok=True)
            p.write_bytes(data)
            self._meta_path(key).write_text(json.dumps({"content_type": content_type}), "utf-8")
        except OSError as e:
            raise BlobStoreError(f"write failed for {key}: {e}") from e
        logger.info("Bestand opgeslagen: %s (%d bytes)", key, len(data))

    def delete(self, key):
        p = self._path(key)
        mp = self._meta_path(key)
        if mp.exists():
            mp.unlink()
        if not p.exists():
            return False
        try:
            p.unlink()
        except FileNotFoundError:
            return False
        logger.info("Bestand verwijderd: %s", key)
        return True
