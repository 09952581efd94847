# Scan backends

from .base import CLEAN, INFECTED, SKIPPED, ScanBackend, ScanTarget, SkipScanBackend, Verdict
from .clamd import ClamdScanBackend
from .http import HttpScanBackend


def build_scan_backend(settings) -> ScanBackend:
    if settings.scan_backend == "clamd":
        return ClamdScanBackend(settings.clamd_host, settings.clamd_port, timeout=settings.job_timeout_seconds)
    if settings.scan_backend == "http":
        return HttpScanBackend(settings.scanner_url, timeout=settings.job_timeout_seconds)
    if settings.scan_backend == "skip":
        return SkipScanBackend()
    raise ValueError(f"Unknown scan_backend: {settings.scan_backend}")


__all__ = [
    "CLEAN",
    "INFECTED",
    "SKIPPED",
    "ScanBackend",
    "ScanTarget",
    "SkipScanBackend",
    "Verdict",
    "ClamdScanBackend",
    "HttpScanBackend",
    "build_scan_backend",
]
