"""
Configuration and settings for the rental backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings shared by the backend clients and services."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Database (Postgres expected; any SQLAlchemy URL works)
    database_url: Optional[str] = Field(default=None)

    # S3-compatible object storage for inventory images
    s3_endpoint: Optional[str] = Field(default=None)
    s3_region: Optional[str] = Field(default=None)
    s3_bucket: str = Field(default="inventory-images")
    aws_access_key_id: Optional[str] = Field(default=None)
    aws_secret_access_key: Optional[str] = Field(default=None)

    # Auth
    password_reset_redirect_url: Optional[str] = Field(default=None)
    session_ttl_seconds: int = Field(default=24 * 60 * 60)

    # Images
    signed_url_expires_seconds: int = Field(default=3600)
    max_image_bytes: int = Field(default=5 * 1024 * 1024)

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False, validation_alias="RENTAL_USE_IN_MEMORY_BACKENDS"
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
