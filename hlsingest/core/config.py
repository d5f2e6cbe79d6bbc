from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Secrets(BaseSettings):
    """Secrets configuration, loaded from the environment or a secrets management service."""

    model_config = SettingsConfigDict(
        env_prefix="HLSINGEST_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    jwt_secret: str = Field(default="change-me", description="Signing secret for stub JWT validation.")
    s3_access_key_id: Optional[str] = Field(default=None, description="Access key for the S3 storage backend.")
    s3_secret_access_key: Optional[str] = Field(default=None, description="Secret key for the S3 storage backend.")

    @classmethod
    def from_settings(cls, settings: "Settings") -> "Secrets":
        return cls()


class Settings(BaseSettings):
    """Centralised runtime configuration for the ingest service."""

    model_config = SettingsConfigDict(
        env_prefix="HLSINGEST_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = "HLS Ingest API"
    environment: str = Field(default="development", description="Deployment environment label.")
    version: str = Field(default="0.1.0", description="API version for metadata and OpenAPI.")
    log_level: str = Field(default="info")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./hlsingest.db",
        description="SQLAlchemy compatible DSN.",
    )

    work_root: Path = Field(
        default_factory=lambda: Path("work"),
        description="Root for job-scoped staging directories and staged uploads.",
    )
    ffmpeg_binary: str = Field(default="ffmpeg")
    ffprobe_binary: str = Field(default="ffprobe")
    probe_timeout_s: float = Field(default=30.0, gt=0, description="Upper bound for a single ffprobe run.")
    transcode_timeout_s: float = Field(default=3600.0, gt=0, description="Upper bound for a single ffmpeg HLS run.")
    segment_duration_s: int = Field(default=10, ge=1, description="Nominal HLS segment length.")
    upload_concurrency: int = Field(default=6, ge=1, le=64, description="Concurrent transfers per job.")
    rendition_heights: tuple[int, ...] = Field(
        default=(),
        description="Output heights to package; empty keeps the source resolution as a single rendition.",
    )
    default_resolution_label: str = Field(default="360p", description="Label used when the source height is unknown.")

    storage_backend: Literal["local", "s3"] = Field(default="local", description="Active storage implementation.")
    local_storage_base_path: Path = Field(
        default_factory=lambda: Path("media"),
        description="Base path for local storage.",
    )
    public_base_url: Optional[str] = Field(
        default=None,
        description="Public URL prefix for stored objects (defaults to file:// URIs locally).",
    )
    s3_bucket: Optional[str] = None
    s3_region: Optional[str] = None
    s3_endpoint_url: Optional[str] = None

    max_upload_size_bytes: int = Field(default=2 * 1024 * 1024 * 1024, description="Limit for staged uploads.")

    jwt_algorithm: str = Field(default="HS256", description="Algorithm used for JWT tokens.")
    jwt_issuer: Optional[str] = None
    jwt_audience: Optional[str] = None

    secrets: Secrets = Field(default_factory=Secrets, description="Holds sensitive configuration.")

    @property
    def environment_lower(self) -> str:
        return self.environment.lower()

    @property
    def staging_root(self) -> Path:
        return Path(self.work_root) / "staging"

    @property
    def jobs_root(self) -> Path:
        return Path(self.work_root) / "jobs"


@lru_cache()
def get_settings() -> Settings:
    load_dotenv(".env", override=False)

    _ENV_ALIAS_MAP = {
        "HLSINGEST_ENV": "HLSINGEST_ENVIRONMENT",
        "HLSINGEST_DB_URL": "HLSINGEST_DATABASE_URL",
        "AWS_ACCESS_KEY_ID": "HLSINGEST_S3_ACCESS_KEY_ID",
        "AWS_SECRET_ACCESS_KEY": "HLSINGEST_S3_SECRET_ACCESS_KEY",
    }

    for source, target in _ENV_ALIAS_MAP.items():
        value = os.getenv(source)
        if value and not os.getenv(target):
            os.environ[target] = value

    settings = Settings()

    # In a real application, you would fetch secrets from a secure vault
    # instead of just loading them from the environment.
    secrets = Secrets.from_settings(settings)

    if settings.environment_lower == "production" and secrets.jwt_secret == "change-me":
        raise ValueError("Production environment must have a non-default JWT secret.")
    if settings.storage_backend == "s3" and not settings.s3_bucket:
        raise ValueError("The s3 storage backend requires HLSINGEST_S3_BUCKET.")

    settings.secrets = secrets
    return settings


__all__ = ["Settings", "Secrets", "get_settings"]
