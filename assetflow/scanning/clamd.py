# assetflow/scanning/clamd.py
from __future__ import annotations

import socket
import struct
from typing import Optional

from assetflow.errors import ScanBackendError
from assetflow.logging_config import get_logger
from assetflow.scanning.base import CLEAN, INFECTED, ScanBackend, ScanTarget, Verdict

logger = get_logger(__name__)

CHUNK_SIZE = 64 * 1024


class ClamdScanBackend(ScanBackend):
    """
    ClamAV daemon via het INSTREAM commando over TCP.

    Protocol: "zINSTREAM\\0", dan chunks als <4 bytes big-endian lengte><data>,
    afgesloten met een lengte van 0. Antwoord: "stream: OK" of
    "stream: <signature> FOUND".
    """

    name = "clamav"

    def __init__(self, host: str = "localhost", port: int = 3310, timeout: float = 60.0):
        self.host = host
        self.port = port
        self.timeout = timeout
        self._version: Optional[str] = None

    def _connect(self) -> socket.socket:
        try:
            return socket.create_connection((self.host, self.port), timeout=self.timeout)
        except OSError as e:
            raise ScanBackendError(f"clamd unreachable at {self.host}:{self.port}: {e}") from e

    @staticmethod
    def _recv_all(sock: socket.socket) -> str:
        chunks = []
        while True:
            data = sock.recv(4096)
            if not data:
                break
            chunks.append(data)
            if data.endswith(b"\0"):
                break
        return b"".join(chunks).rstrip(b"\0").decode("utf-8", errors="replace").strip()

    def version(self) -> Optional[str]:
        if self._version is None:
            try:
                with self._connect() as sock:
                    sock.sendall(b"zVERSION\0")
                    # "ClamAV 1.2.1/27100/Tue Nov 21 09:40:12 2023"
                    self._version = self._recv_all(sock).split("/")[0].replace("ClamAV ", "") or None
            except (OSError, ScanBackendError) as e:
                logger.warning("clamd_version_failed", error=str(e))
        return self._version

    def scan(self, target: ScanTarget) -> Verdict:
        data = target.read()
        try:
            with self._connect() as sock:
                sock.sendall(b"zINSTREAM\0")
                for i in range(0, len(data), CHUNK_SIZE):
                    chunk = data[i:i + CHUNK_SIZE]
                    sock.sendall(struct.pack("!L", len(chunk)) + chunk)
                sock.sendall(struct.pack("!L", 0))
                reply = self._recv_all(sock)
        except OSError as e:
            raise ScanBackendError(f"clamd stream failed: {e}") from e

        return self.parse_reply(reply)

    def parse_reply(self, reply: str) -> Verdict:
        # "stream: OK" | "stream: Eicar-Test-Signature FOUND" | "... ERROR"
        body = reply.split(":", 1)[1].strip() if ":" in reply else reply
        if body == "OK":
            return Verdict(verdict=CLEAN, engine=self.name, version=self.version())
        if body.endswith("FOUND"):
            threat = body[: -len("FOUND")].strip()
            return Verdict(verdict=INFECTED, engine=self.name, version=self.version(), threats=[threat])
        raise ScanBackendError(f"clamd error: {reply}")
