"""
SDK configuration (pydantic-settings).

All values can be overridden through XET_* environment variables:

    XET_ENDPOINT=https://hub.example.com
    XET_MAX_CONCURRENT_FETCHES=64
    XET_CHUNK_SIZE=16777216
    XET_LOG_LEVEL=DEBUG

The identity token is read from XET_TOKEN, falling back to HF_TOKEN.
"""

from __future__ import annotations

import hashlib
from typing import Literal

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_ENDPOINT = "https://huggingface.co"


class SDKSettings(BaseSettings):
    """Runtime settings for xetclient."""

    model_config = SettingsConfigDict(
        env_prefix="XET_",
        extra="ignore",
        populate_by_name=True,
        validate_default=True,
    )

    # Hub
    endpoint: str = DEFAULT_ENDPOINT
    token: str | None = Field(
        default=None,
        validation_alias=AliasChoices("XET_TOKEN", "HF_TOKEN"),
    )

    # Timeouts (seconds)
    connect_timeout: float = Field(default=10.0, ge=1.0, le=120.0)
    request_timeout: float = Field(default=30.0, ge=1.0, le=300.0)
    attempt_timeout: float = Field(default=60.0, ge=1.0, le=600.0)

    # Transfer
    chunk_size: int = Field(default=8 * 1024 * 1024, ge=64 * 1024, le=256 * 1024 * 1024)
    max_concurrent_fetches: int = Field(default=32, ge=1, le=512)
    hash_algorithm: str = "sha256"

    # Retry
    max_attempts: int = Field(default=5, ge=1, le=20)
    initial_backoff: float = Field(default=0.5, ge=0.0, le=30.0)
    max_backoff: float = Field(default=30.0, ge=0.0, le=300.0)
    backoff_jitter: float = Field(default=0.5, ge=0.0, le=1.0)

    # Staging
    staging_max_age: float = Field(default=24 * 3600.0, ge=0.0)

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "WARNING"
    log_json: bool = False

    @field_validator("endpoint")
    @classmethod
    def _strip_endpoint(cls, value: str) -> str:
        value = value.strip().rstrip("/")
        if not value.startswith(("http://", "https://")):
            raise ValueError("endpoint must be an http(s) URL")
        return value

    @field_validator("hash_algorithm")
    @classmethod
    def _known_algorithm(cls, value: str) -> str:
        value = value.lower()
        if value not in hashlib.algorithms_available:
            raise ValueError(f"unsupported hash algorithm: {value}")
        return value


_settings: SDKSettings | None = None


def get_settings() -> SDKSettings:
    """Return the process-wide settings, creating them from the environment."""
    global _settings
    if _settings is None:
        _settings = SDKSettings()
    return _settings


def configure_settings(**overrides: object) -> SDKSettings:
    """Replace the process-wide settings with explicit overrides."""
    global _settings
    _settings = SDKSettings(**overrides)  # type: ignore[arg-type]
    return _settings


def reset_settings() -> None:
    """Drop cached settings; the next get_settings() re-reads the environment."""
    global _settings
    _settings = None


__all__ = [
    "DEFAULT_ENDPOINT",
    "SDKSettings",
    "get_settings",
    "configure_settings",
    "reset_settings",
]
