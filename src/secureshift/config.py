"""Application configuration via pydantic-settings.

Reads from .env file or environment variables. All settings are validated
at startup — if a setting is malformed, the app fails fast with a clear
error message.

Usage:
    from secureshift.config import get_settings
    settings = get_settings()
    print(settings.statutory_minimum_hourly_rate)
"""

from __future__ import annotations

from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the SecureShift workflow service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = True
    app_log_level: str = "DEBUG"
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    # --- Database ---
    database_url: str = (
        "postgresql+asyncpg://secureshift:secureshift_dev"
        "@localhost:5432/secureshift"
    )
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_echo_sql: bool = False

    # --- Redis / workflow locks ---
    redis_url: str = "redis://localhost:6379/0"
    lock_backend: Literal["local", "redis"] = "local"
    lock_lease_seconds: float = 30.0
    lock_wait_seconds: float = 10.0

    # --- Compliance ---
    # CAO minimum hourly rate for private security work
    statutory_minimum_hourly_rate: Decimal = Decimal("12.00")
    compliance_snapshot_ttl_hours: int = 24
    verification_timeout_seconds: float = 10.0
    verification_retry_attempts: int = 2
    verification_retry_wait_seconds: float = 1.0

    # --- Payment release ---
    payment_initiation_timeout_seconds: float = 15.0
    # Extra time before an unreleased initiation claim counts as abandoned
    payment_claim_grace_seconds: float = 30.0

    # --- Background recovery (rating window + payment sweep) ---
    # 0 disables the periodic loop
    recovery_interval_seconds: float = 300.0

    # --- Side effects ---
    side_effect_timeout_seconds: float = 5.0
    side_effects_in_background: bool = True

    # --- Ratings ---
    rating_min: Decimal = Decimal("1")
    rating_max: Decimal = Decimal("5")
    rating_window_days: int = 7
    rating_expiry_policy: Literal["neutral_rating", "report_only"] = "neutral_rating"
    neutral_rating: Decimal = Decimal("3")

    # --- Collaborators ---
    simulate_collaborators: bool = True

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton of the application settings."""
    return Settings()
