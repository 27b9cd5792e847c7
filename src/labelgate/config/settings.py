# src/labelgate/config/settings.py — v1
"""Typed configuration loaded from .env via pydantic-settings.

Single source of truth for deployment-specific settings: store backend,
cache TTL, retry budget, metrics flush cadence and logging.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from labelgate.store.retry import RetryPolicy


class ConfigurationError(Exception):
    """Raised when configuration is internally inconsistent."""


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === Store ===
    cache_backend: Literal["sqlite", "redis"] = "sqlite"
    cache_db_path: Path = Path("~/.labelgate/cache.db")
    cache_redis_url: str = ""
    cache_redis_prefix: str = "labelgate:"

    # === Result cache ===
    ocr_cache_ttl_days: int = 30

    # === Retry ===
    retry_max_attempts: int = 5
    retry_base_delay_ms: int = 250
    retry_max_delay_ms: int = 4000

    # === Metrics ===
    metrics_flush_interval_s: float = 60.0

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Path | None = None
    log_rotation: str = "10MB"
    log_retention: int = 30

    # --- Validators ---

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        """Validate cross-field consistency rules."""
        errors: list[str] = []

        if self.ocr_cache_ttl_days < 1:
            errors.append("OCR_CACHE_TTL_DAYS must be >= 1")

        if self.retry_max_attempts < 1:
            errors.append("RETRY_MAX_ATTEMPTS must be >= 1")

        if self.retry_base_delay_ms < 0:
            errors.append("RETRY_BASE_DELAY_MS must be >= 0")

        if self.retry_base_delay_ms > self.retry_max_delay_ms:
            errors.append("RETRY_BASE_DELAY_MS must be <= RETRY_MAX_DELAY_MS")

        if self.metrics_flush_interval_s <= 0:
            errors.append("METRICS_FLUSH_INTERVAL_S must be > 0")

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self

    # --- Helpers ---

    @property
    def retry_policy(self) -> RetryPolicy:
        """Retry budget for store calls."""
        return RetryPolicy(
            retries=self.retry_max_attempts,
            base_delay_s=self.retry_base_delay_ms / 1000,
            max_delay_s=self.retry_max_delay_ms / 1000,
        )


def load_settings(**overrides: object) -> Settings:
    """Load settings from .env with optional overrides.

    Args:
        **overrides: Field-level overrides (for testing or the CLI).

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If configuration is internally inconsistent.
    """
    return Settings(**overrides)  # type: ignore[arg-type]
