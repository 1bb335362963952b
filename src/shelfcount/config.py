"""Environment-based configuration for ShelfCount."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from SHELFCOUNT_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SHELFCOUNT_",
        case_sensitive=False,
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8090

    # Authentication (None = disabled)
    api_key: str | None = None

    # Vision model
    gemini_api_key: str | None = None
    gemini_model: str = "gemini-2.0-flash"
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    reply_format: Literal["normalized", "pixels", "count"] = "normalized"
    request_timeout: float | None = Field(default=60.0, gt=0)

    # Concurrency
    max_concurrent: int = Field(default=4, ge=1)
    queue_timeout: float = Field(default=5.0, gt=0)

    # Input limits (Gemini inline data tops out at 20 MB)
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=20_971_520, ge=1)

    # Sessions idle longer than this are cancelled (0 = never)
    session_ttl: int = Field(default=900, ge=0)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
