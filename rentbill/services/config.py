"""Billing engine configuration from environment variables and .env file."""

import logging
from datetime import time
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class BillingSettings(BaseSettings):
    """Settings for the rent billing engine.

    Pydantic loads values from:
    1. OS environment variables (at instantiation time)
    2. .env file (if present)
    3. Field defaults
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Allow unrelated keys in the shared .env file
    )

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./rentbill.db",
        description="SQLAlchemy async database URL",
    )
    database_echo: bool = Field(default=False, description="Log SQL queries")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: str = Field(default="logs/billing.log", description="Server log file")

    # Due scan
    scheduler_enabled: bool = Field(default=True, description="Run the daily due scan")
    scan_run_at: str = Field(default="00:00", description="Wall-clock time of the daily scan (HH:MM)")
    billing_timezone: str = Field(default="UTC", description="Timezone used for 'today'")
    scan_max_concurrency: int = Field(
        default=4,
        ge=1,
        description="Schedules processed in parallel during one scan",
    )

    # Invoice calculation
    invoice_due_days: int = Field(default=7, ge=0, description="Days from issue date to due date")
    default_occupant_count: int = Field(
        default=1,
        ge=1,
        description="Occupants billed for the common service fee when the contract has none",
    )

    @field_validator("scan_run_at")
    @classmethod
    def _validate_run_at(cls, value: str) -> str:
        try:
            time.fromisoformat(value)
        except ValueError as e:
            raise ValueError(f"SCAN_RUN_AT must be HH:MM, got {value!r}") from e
        return value

    @property
    def scan_time(self) -> time:
        """Daily scan wall-clock time as a time object."""
        return time.fromisoformat(self.scan_run_at)


# Lazy loader to ensure environment is loaded before instantiation
_settings_instance: Optional[BillingSettings] = None


def get_settings() -> BillingSettings:
    """Get or create the settings instance."""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = BillingSettings()
        logger.debug(
            "Loaded billing settings: database_url=%s scan_run_at=%s timezone=%s",
            _settings_instance.database_url,
            _settings_instance.scan_run_at,
            _settings_instance.billing_timezone,
        )
    return _settings_instance


def reset_settings() -> None:
    """Drop the cached settings so the next get_settings() re-reads the environment."""
    global _settings_instance
    _settings_instance = None


__all__ = ["BillingSettings", "get_settings", "reset_settings"]
