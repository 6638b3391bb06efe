from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Secrets(BaseSettings):
    """Secrets configuration, loaded from the environment or a secrets management service."""

    model_config = SettingsConfigDict(
        env_prefix="MEDIAGATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    jwt_secret: str = Field(default="change-me", description="Signing secret for bearer token validation.")

    @classmethod
    def from_settings(cls, settings: "Settings") -> "Secrets":
        return cls()


class Settings(BaseSettings):
    """Centralised runtime configuration for the Mediagate API."""

    model_config = SettingsConfigDict(
        env_prefix="MEDIAGATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = "Mediagate API"
    environment: str = Field(default="development", description="Deployment environment label.")
    version: str = Field(default="0.1.0", description="API version for metadata and OpenAPI.")
    log_level: str = Field(default="info")

    storage_root: Path = Field(default_factory=lambda: Path("uploads"), description="Root of the user file tree.")
    cache_root: Path = Field(default_factory=lambda: Path(".cache"), description="Root for derived artefacts.")
    thumbnail_dir: Path | None = Field(default=None, description="Override for the thumbnail cache directory.")
    heic_cache_dir: Path | None = Field(default=None, description="Override for the HEIC to JPEG cache directory.")
    stream_cache_dir: Path | None = Field(default=None, description="Override for the MP4 remux cache directory.")
    model_cache_dir: Path | None = Field(default=None, description="Override for the 3D model cache directory.")

    max_concurrent_conversions: int = Field(default=10, ge=1, description="Process-wide ceiling for heavy work.")

    probe_timeout_s: float = Field(default=1.0, gt=0)
    thumbnail_timeout_s: float = Field(default=10.0, gt=0)
    pdf_timeout_s: float = Field(default=15.0, gt=0)
    video_thumbnail_timeout_s: float = Field(default=30.0, gt=0)
    heic_timeout_s: float = Field(default=30.0, gt=0)
    model_timeout_s: float = Field(default=45.0, gt=0)
    remux_timeout_s: float = Field(default=45.0, gt=0)
    stderr_limit_bytes: int = Field(default=4096, ge=256, description="Captured stderr kept per tool run.")

    thumbnail_size: int = Field(default=150, ge=16, le=1024, description="Bounding box edge for thumbnails.")
    video_thumbnail_offset_s: Optional[float] = Field(
        default=1.0,
        ge=0,
        description="Seek offset for video thumbnails; the first frame is used when unset or past the end.",
    )

    optimize_default_quality: int = Field(default=80, ge=1, le=100)
    optimize_min_quality: int = Field(default=30, ge=1, le=100)
    optimize_max_quality: int = Field(default=100, ge=1, le=100)
    optimize_default_max_dimension: int = Field(default=2000, ge=16)
    optimize_passthrough_below_bytes: int = Field(
        default=100_000,
        ge=0,
        description="Images smaller than this are served unchanged.",
    )

    stream_remux_enabled: bool = Field(default=True, description="Remux MP4 files whose metadata trails the payload.")

    jwt_algorithm: str = Field(default="HS256", description="Algorithm used for JWT tokens.")
    jwt_issuer: Optional[str] = None
    jwt_audience: Optional[str] = None
    privileged_scope: str = Field(default="root", description="Token scope granting full-tree access.")

    secrets: Secrets = Field(default_factory=Secrets, description="Holds sensitive configuration.")

    @property
    def environment_lower(self) -> str:
        return self.environment.lower()

    @property
    def thumbnail_path(self) -> Path:
        return self.thumbnail_dir or self.cache_root / "thumbnails"

    @property
    def heic_cache_path(self) -> Path:
        return self.heic_cache_dir or self.cache_root / "heic-jpeg"

    @property
    def stream_cache_path(self) -> Path:
        return self.stream_cache_dir or self.cache_root / "stream"

    @property
    def model_cache_path(self) -> Path:
        return self.model_cache_dir or self.cache_root / "models"


@lru_cache()
def get_settings() -> Settings:
    load_dotenv(".env", override=False)

    _ENV_ALIAS_MAP = {
        "MEDIAGATE_ENV": "MEDIAGATE_ENVIRONMENT",
        "MEDIAGATE_UPLOAD_DIR": "MEDIAGATE_STORAGE_ROOT",
        "MEDIAGATE_CACHE_DIR": "MEDIAGATE_CACHE_ROOT",
    }

    for source, target in _ENV_ALIAS_MAP.items():
        value = os.getenv(source)
        if value:
            os.environ[target] = value

    settings = Settings()
    secrets = Secrets.from_settings(settings)

    if settings.environment_lower == "production" and secrets.jwt_secret == "change-me":
        raise ValueError("Production environment must have a non-default JWT secret.")
    if settings.optimize_min_quality > settings.optimize_max_quality:
        raise ValueError("optimize_min_quality must not exceed optimize_max_quality.")

    settings.secrets = secrets
    return settings


__all__ = ["Settings", "Secrets", "get_settings"]
