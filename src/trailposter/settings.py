"""
Runtime configuration.

Uses Pydantic Settings; every field can be set from a ``TRAILPOSTER_*``
environment variable or a ``.env`` file.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with validation."""

    # === Core ===
    log_level: str = Field(default="INFO", description="Logging level")

    # === Rendering ===
    mapbox_token: Optional[str] = Field(
        default=None,
        description="Mapbox access token for terrain tiles; flat terrain when unset",
    )
    tile_cache_dir: Optional[Path] = Field(
        default=None, description="Directory for cached terrain tiles"
    )
    font_path: Optional[Path] = Field(
        default=None, description="TrueType font for poster text (e.g. Cinzel SemiBold)"
    )
    render_timeout_s: float = Field(default=30.0, gt=0)

    # === Checkout / fulfillment ===
    base_url: str = Field(default="http://localhost:3000")
    stripe_secret_key: Optional[str] = Field(default=None)
    stripe_webhook_secret: Optional[str] = Field(default=None)
    printful_api_key: Optional[str] = Field(default=None)

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.upper()

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    model_config = SettingsConfigDict(
        env_prefix="TRAILPOSTER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide settings instance, loaded on first use."""
    return Settings()
