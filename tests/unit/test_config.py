"""Unit tests for billing settings loading."""

from datetime import time

import pytest
from pydantic import ValidationError

from rentbill.services.config import BillingSettings, get_settings, reset_settings

SETTINGS_ENV = [
    "DATABASE_URL",
    "DATABASE_ECHO",
    "LOG_LEVEL",
    "LOG_FILE",
    "SCAN_RUN_AT",
    "BILLING_TIMEZONE",
    "SCAN_MAX_CONCURRENCY",
    "INVOICE_DUE_DAYS",
    "DEFAULT_OCCUPANT_COUNT",
    "SCHEDULER_ENABLED",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Run each test without settings from the environment or a .env file."""
    for name in SETTINGS_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    reset_settings()
    yield
    reset_settings()


class TestBillingSettings:
    """Tests for BillingSettings defaults and overrides."""

    def test_defaults(self):
        settings = BillingSettings()

        assert settings.database_url == "sqlite+aiosqlite:///./rentbill.db"
        assert settings.database_echo is False
        assert settings.log_level == "INFO"
        assert settings.scheduler_enabled is True
        assert settings.scan_run_at == "00:00"
        assert settings.scan_time == time(0, 0)
        assert settings.billing_timezone == "UTC"
        assert settings.scan_max_concurrency == 4
        assert settings.invoice_due_days == 7
        assert settings.default_occupant_count == 1

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("SCAN_RUN_AT", "02:30")
        monkeypatch.setenv("SCAN_MAX_CONCURRENCY", "8")
        monkeypatch.setenv("INVOICE_DUE_DAYS", "10")
        monkeypatch.setenv("SCHEDULER_ENABLED", "false")

        settings = BillingSettings()

        assert settings.scan_time == time(2, 30)
        assert settings.scan_max_concurrency == 8
        assert settings.invoice_due_days == 10
        assert settings.scheduler_enabled is False

    def test_env_file_is_read(self, tmp_path):
        (tmp_path / ".env").write_text("BILLING_TIMEZONE=Asia/Ho_Chi_Minh\nUNRELATED_KEY=1\n")

        settings = BillingSettings()

        assert settings.billing_timezone == "Asia/Ho_Chi_Minh"

    def test_invalid_run_at_rejected(self, monkeypatch):
        monkeypatch.setenv("SCAN_RUN_AT", "midnight")

        with pytest.raises(ValidationError, match="SCAN_RUN_AT"):
            BillingSettings()

    def test_concurrency_must_be_positive(self, monkeypatch):
        monkeypatch.setenv("SCAN_MAX_CONCURRENCY", "0")

        with pytest.raises(ValidationError):
            BillingSettings()


class TestGetSettings:
    def test_cached_until_reset(self, monkeypatch):
        first = get_settings()
        assert get_settings() is first

        monkeypatch.setenv("INVOICE_DUE_DAYS", "14")
        assert get_settings().invoice_due_days == 7

        reset_settings()
        assert get_settings().invoice_due_days == 14
