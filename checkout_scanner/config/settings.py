"""
==============================================================================
Scanner Settings
==============================================================================

Configuration for the checkout scanner using Pydantic Settings.

Features:
---------
- Typed values read from environment variables or a local .env
- Scanner tuning values (cooldown window, fuzzy threshold, zoom bounds)
  exposed as configuration defaults rather than constants

Environment variables win over .env, which wins over the defaults below.

==============================================================================
"""

from __future__ import annotations

import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import List

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Module logger
logger = logging.getLogger(__name__)


RESOLUTION_TIER_NAMES = ("hd", "vga", "qvga")


class Settings(BaseSettings):
    """
    Checkout scanner configuration.

    Attributes:
        app_name: Title shown in the API docs and startup log
        app_env: development, staging or production
        debug: DEBUG-level logging and uvicorn reload
        host, port: Where uvicorn listens
        products_file: Catalog JSON loaded at startup
        cors_origins: JSON array of origins allowed to call the API
        cooldown_window_ms: Window in which an identical code is suppressed
        fuzzy_match_threshold: Minimum positional overlap ratio for fuzzy matches
        library_load_timeout_ms: Bound on waiting for the decoding engine
        resume_delay_ms: Pause after a successful decode before resuming
        preferred_resolution_tier: First tier tried when starting a session
        zoom_step: Digital zoom increment per user action
        max_zoom: Upper bound for digital zoom
        pan_unit_px: Pan bound in pixels per unit of zoom above 1.0
        camera_index: Default capture device index
        camera_probe_limit: Number of device indexes probed when enumerating
        early_permission_probe: Probe camera access before the first scan

    Example:
        >>> settings = Settings()
        >>> settings.cooldown_window_ms
        800
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        validate_default=True,
    )

    # =========================================================================
    # APPLICATION SETTINGS
    # =========================================================================
    app_name: str = Field(
        default="Checkout Scanner",
        description="Title for the API docs and logs"
    )

    app_env: str = Field(
        default="development",
        description="development, staging or production"
    )

    debug: bool = Field(
        default=True,
        description="Verbose logging and auto-reload"
    )

    # =========================================================================
    # SERVER SETTINGS
    # =========================================================================
    host: str = Field(
        default="0.0.0.0",
        description="uvicorn bind address"
    )

    port: int = Field(
        default=8000,
        ge=1,
        le=65535,
        description="uvicorn port"
    )

    products_file: str = Field(
        default="data/products.json",
        description="Catalog JSON loaded at startup"
    )

    cors_origins: str = Field(
        default='["*"]',
        description="JSON array of allowed CORS origins"
    )

    # =========================================================================
    # RECOGNITION SETTINGS
    # =========================================================================
    cooldown_window_ms: int = Field(
        default=800,
        ge=0,
        le=10000,
        description="Identical codes within this window are suppressed"
    )

    fuzzy_match_threshold: float = Field(
        default=0.8,
        gt=0.0,
        lt=1.0,
        description="Overlap ratio a fuzzy match must exceed"
    )

    # =========================================================================
    # SESSION SETTINGS
    # =========================================================================
    library_load_timeout_ms: int = Field(
        default=2000,
        ge=100,
        le=60000,
        description="Bound on waiting for the decoding engine to initialize"
    )

    resume_delay_ms: int = Field(
        default=300,
        ge=0,
        le=5000,
        description="Pause after each successful decode"
    )

    preferred_resolution_tier: str = Field(
        default="hd",
        description="First resolution tier tried: hd, vga, qvga"
    )

    camera_index: int = Field(
        default=0,
        ge=0,
        description="Default capture device index"
    )

    camera_probe_limit: int = Field(
        default=4,
        ge=1,
        le=16,
        description="Device indexes probed during camera enumeration"
    )

    early_permission_probe: bool = Field(
        default=True,
        description="Probe camera access before the first scan request"
    )

    # =========================================================================
    # VIEWPORT SETTINGS
    # =========================================================================
    zoom_step: float = Field(
        default=0.25,
        gt=0.0,
        le=1.0,
        description="Digital zoom increment per action"
    )

    max_zoom: float = Field(
        default=3.0,
        ge=1.0,
        le=10.0,
        description="Maximum digital zoom factor"
    )

    pan_unit_px: float = Field(
        default=100.0,
        gt=0.0,
        description="Pan bound per unit of zoom above 1.0"
    )

    # =========================================================================
    # VALIDATORS
    # =========================================================================
    @field_validator("app_env")
    @classmethod
    def validate_app_env(cls, value: str) -> str:
        env = value.lower().strip()
        if env in ("development", "staging", "production"):
            return env
        logger.warning(f"APP_ENV={value!r} not recognized, using development")
        return "development"

    @field_validator("preferred_resolution_tier")
    @classmethod
    def validate_resolution_tier(cls, value: str) -> str:
        """
        Validate the preferred resolution tier name.

        Args:
            value: Raw tier name

        Returns:
            Lowercase tier name

        Raises:
            ValueError: If the tier is not recognized
        """
        normalized = value.lower().strip()
        if normalized not in RESOLUTION_TIER_NAMES:
            raise ValueError(
                f"Unsupported resolution tier: {value}. "
                f"Supported: {', '.join(RESOLUTION_TIER_NAMES)}"
            )
        return normalized

    @model_validator(mode="after")
    def validate_zoom_bounds(self) -> "Settings":
        """Zoom step must fit inside the zoom range."""
        if self.max_zoom > 1.0 and self.zoom_step > self.max_zoom - 1.0:
            raise ValueError("zoom_step must not exceed max_zoom - 1.0")
        return self

    # =========================================================================
    # COMPUTED PROPERTIES
    # =========================================================================
    @property
    def products_path(self) -> Path:
        return Path(self.products_file)

    @property
    def cors_origins_list(self) -> List[str]:
        """Decoded ``cors_origins``; anything but a JSON list allows all origins."""
        try:
            origins = json.loads(self.cors_origins)
        except json.JSONDecodeError:
            logger.warning(f"CORS_ORIGINS is not valid JSON ({self.cors_origins!r}), allowing all")
            return ["*"]
        return origins if isinstance(origins, list) else ["*"]

    @property
    def library_load_timeout_seconds(self) -> float:
        return self.library_load_timeout_ms / 1000

    @property
    def resume_delay_seconds(self) -> float:
        return self.resume_delay_ms / 1000

    def __repr__(self) -> str:
        return (
            f"Settings(env={self.app_env!r}, debug={self.debug}, "
            f"catalog={self.products_file!r}, "
            f"tier={self.preferred_resolution_tier!r})"
        )


# =============================================================================
# CACHED INSTANCE
# =============================================================================

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Process-wide settings, read once.

    Tests build their own ``Settings(_env_file=None, ...)`` instead.
    """
    settings = Settings()

    if settings.debug:
        logger.info(f"Settings: {settings}")

    return settings
