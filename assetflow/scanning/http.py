# assetflow/scanning/http.py
from __future__ import annotations

from typing import Optional

import httpx

from assetflow.errors import ScanBackendError
from assetflow.scanning.base import CLEAN, INFECTED, ScanBackend, ScanTarget, Verdict


class HttpScanBackend(ScanBackend):
    """
    Externe scanservice. De service haalt het object zelf op via een
    kortlevende read-URL; wij sturen alleen de URL en wat metadata.

    POST {base}/scan  {"url", "key", "size", "content_type"}
    -> {"verdict": "clean"|"infected", "engine", "version", "threats": [...]}
    """

    name = "http"

    def __init__(self, base_url: str, timeout: float = 60.0, client: Optional[httpx.Client] = None):
        if not base_url:
            raise RuntimeError("scanner_url ontbreekt in settings (.env)")
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.Client(timeout=timeout)

    def scan(self, target: ScanTarget) -> Verdict:
        payload = {
            "url": target.read_url(),
            "key": target.key,
            "size": target.size,
            "content_type": target.content_type,
        }
        try:
            resp = self.client.post(f"{self.base_url}/scan", json=payload)
            resp.raise_for_status()
            body = resp.json()
        except httpx.HTTPError as e:
            raise ScanBackendError(f"scanner request failed: {e}") from e
        except ValueError as e:
            raise ScanBackendError(f"scanner returned invalid JSON: {e}") from e

        verdict = str(body.get("verdict", "")).lower()
        if verdict not in (CLEAN, INFECTED):
            raise ScanBackendError(f"scanner returned no verdict: {body!r}")
        return Verdict(
            verdict=verdict,
            engine=body.get("engine") or self.name,
            version=body.get("version"),
            threats=list(body.get("threats") or []),
        )
