"""Environment-based configuration for FaceSeq."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from FACESEQ_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="FACESEQ_",
        case_sensitive=False,
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8083

    # Authentication (None = disabled)
    api_key: str | None = None

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Storage: HDFS
    hdfs_host: str = "default"
    hdfs_port: int = Field(default=8020, ge=0)
    hdfs_user: str | None = None

    # Storage: S3
    s3_endpoint_url: str | None = None
    s3_region: str | None = None

    # Container limits
    max_record_size: int = Field(default=268_435_456, ge=1)

    # Decoding limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)

    # Detection
    detector_target: Literal["face", "eye"] = "face"
    face_cascade: str = "haarcascade_frontalface_alt"
    eye_cascade: str = "haarcascade_eye"
    scale_factor: float = Field(default=1.1, gt=1.0)
    min_neighbors: int = Field(default=3, ge=0)
    cascade_ttl: int = Field(default=300, ge=0)

    # Concurrency
    max_concurrent: int = Field(default=2, ge=1)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
