"""
Centralized settings for reprocache.

One validated, cached settings object resolves every tunable from
``REPRO_*`` environment variables or a ``.env`` file. CLI flags override
individual fields; library callers can pass values explicitly instead.

Examples:
    >>> settings = get_settings()
    >>> settings.store_dir
    PosixPath('.reprocache')

Tags:
    settings, configuration, pydantic, environment, reprocache
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ReproSettings(BaseSettings):
    """reprocache configuration.

    Fields
    ──────
    store_dir        : Root directory of the local artifact store
    max_workers      : Units executed concurrently (1 = sequential)
    serializer       : Artifact payload format
    read_retries     : Retries for failed artifact reads
    retry_base_delay : First backoff delay in seconds
    log_level        : Structlog log level
    log_format       : console | json
    """

    model_config = SettingsConfigDict(
        env_prefix="REPRO_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Storage ──────────────────────────────────────────────────
    store_dir: Path = Field(default=Path(".reprocache"))
    serializer: Literal["pickle", "json"] = Field(default="pickle")
    read_retries: int = Field(default=3, ge=0)
    retry_base_delay: float = Field(default=0.05, ge=0.0)

    # ── Execution ────────────────────────────────────────────────
    max_workers: int = Field(default=1, ge=1)

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: Literal["console", "json"] = Field(default="console")

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        value = value.upper()
        if value not in {"DEBUG", "INFO", "WARNING", "ERROR"}:
            raise ValueError(f"invalid log level: {value}")
        return value


_settings_cache: dict[str, ReproSettings] = {}


def get_settings(*, force_reload: bool = False) -> ReproSettings:
    """Load, validate, and cache a :class:`ReproSettings` instance."""
    if force_reload or "default" not in _settings_cache:
        _settings_cache["default"] = ReproSettings()
    return _settings_cache["default"]


def clear_settings_cache() -> None:
    """Drop the cached settings (tests, reconfiguration)."""
    _settings_cache.clear()


__all__ = ["ReproSettings", "clear_settings_cache", "get_settings"]
