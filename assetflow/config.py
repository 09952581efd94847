# assetflow/config.py
import os
from functools import lru_cache
from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MIB = 1024 * 1024

DEFAULT_ALLOWED_MIME_TYPES = [
    # Images
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
    "image/tiff",
    # Videos
    "video/mp4",
    "video/quicktime",
    "video/x-msvideo",
    "video/x-matroska",
    "video/webm",
    # Audio
    "audio/mpeg",
    "audio/wav",
    "audio/ogg",
    "audio/aac",
    # Documents
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.ms-powerpoint",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation",
]


class Settings(BaseSettings):
    # === Algemene app settings ===
    app_env: str = "local"  # local | development | production

    # === Database ===
    database_url: str = "sqlite:///./assetflow.db"

    # === Celery / Background ===
    celery_broker_url: str = "redis://localhost:6379/0"
    celery_result_backend: str = "redis://localhost:6379/0"

    # === Storage ===
    storage_backend: str = "s3"  # s3 | local
    s3_bucket: Optional[str] = Field(None, description="Bucket holding uploaded assets")
    s3_region: str = "eu-west-1"
    s3_endpoint_url: Optional[str] = None
    local_storage_root: str = "./.local_storage"
    local_storage_base_url: str = "http://localhost:8000/local-blobs"
    local_signing_secret: str = "dev-only-secret"

    # === Upload policy ===
    max_upload_bytes: int = 100 * MIB
    allowed_mime_types: list[str] = Field(default_factory=lambda: list(DEFAULT_ALLOWED_MIME_TYPES))
    upload_session_ttl_seconds: int = 900  # 15 min
    read_url_ttl_seconds: int = 300
    max_filename_length: int = 255
    max_title_length: int = 255
    max_description_length: int = 2000
    metadata_max_bytes: int = 16 * 1024
    metadata_max_depth: int = 5
    metadata_max_keys: int = 100

    # === Quota / rate ===
    upload_rate_limit: int = 20
    upload_rate_window_seconds: int = 3600
    storage_quota_bytes: int = 10 * 1024 * MIB

    # === Jobs ===
    job_lease_seconds: int = 300
    job_timeout_seconds: int = 120
    scan_max_attempts: int = 5
    derivative_max_attempts: int = 3
    backoff_base_seconds: float = 5.0
    backoff_cap_seconds: float = 600.0
    worker_concurrency: int = 4
    worker_poll_interval_seconds: float = 2.0

    # === Scanning ===
    scan_backend: str = "clamd"  # clamd | http | skip
    allow_scan_skip: bool = False
    clamd_host: str = "localhost"
    clamd_port: int = 3310
    scanner_url: Optional[str] = None

    # === Derivatives ===
    require_derivatives_for_clean: bool = False
    ffmpeg_binary: str = "ffmpeg"
    ffprobe_binary: str = "ffprobe"

    # === Janitor ===
    failed_retention_days: int = 7
    infected_retention_days: int = 30
    janitor_batch_size: int = 100
    janitor_interval_seconds: int = 300

    # === Catalog ===
    catalog_url: Optional[str] = None

    # === Logging / observability ===
    log_level: str = "INFO"
    sentry_dsn: Optional[str] = None
    api_rate_limit: str = "1000/minute"

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    @model_validator(mode="after")
    def _scan_skip_guard(self) -> "Settings":
        if self.scan_backend == "skip":
            if not self.allow_scan_skip:
                raise ValueError("scan_backend=skip requires allow_scan_skip=true")
            if self.is_production:
                raise ValueError("scan_backend=skip is not allowed in production")
        return self

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() == "production"

    @property
    def allowed_mime_set(self) -> set[str]:
        return {m.strip() for m in self.allowed_mime_types if m.strip()}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Singleton Settings instance met simpele env-overrides."""
    s = Settings()

    env = os.getenv("ENVIRONMENT", s.app_env).lower()
    if env == "production":
        s.app_env = "production"
        s.log_level = "WARNING"
        if s.scan_backend == "skip":
            raise ValueError("scan_backend=skip is not allowed in production")
    elif env == "development":
        s.log_level = "DEBUG"
        s.upload_rate_limit = s.upload_rate_limit * 5

    return s
