# assetflow/storage/base.py
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass
class WriteCredential:
    """Upload-instructies voor de client: POST naar `url` met `fields` + het bestand."""

    url: str
    fields: Dict[str, Any]
    key: str
    max_bytes: int
    expires_at: datetime
    method: str = "POST"

    def as_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "fields": self.fields,
            "key": self.key,
            "max_bytes": self.max_bytes,
            "method": self.method,
            "expires_at": self.expires_at.isoformat() + "Z",
        }


@dataclass
class ReadCredential:
    url: str
    expires_at: datetime


@dataclass
class ObjectStat:
    exists: bool
    size: int = 0
    content_type: Optional[str] = None
    etag: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)


class BlobStore(ABC):
    """
    Blob store interface. Bytes van clients gaan rechtstreeks naar de store;
    de applicatie geeft alleen scoped, kortlevende credentials uit.
    """

    @abstractmethod
    def issue_write_credential(
        self, key: str, max_bytes: int, content_type: str, ttl_seconds: int
    ) -> WriteCredential:
        """Credential die precies `key` mag beschrijven, max `max_bytes`."""

    @abstractmethod
    def issue_read_credential(
        self, key: str, ttl_seconds: int, filename: Optional[str] = None
    ) -> ReadCredential:
        """Kortlevende download-URL voor precies `key`."""

    @abstractmethod
    def stat(self, key: str) -> ObjectStat:
        """exists=False als het object er niet is; BlobStoreError bij storingen."""

    @abstractmethod
    def read(self, key: str) -> bytes:
        """Volledige inhoud; BlobStoreError als het object ontbreekt of de store faalt."""

    @abstractmethod
    def put(self, key: str, data: bytes, content_type: str) -> None:
        """Server-side write (derivatives)."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Idempotent: True als er iets verwijderd is, False als het al weg was."""
