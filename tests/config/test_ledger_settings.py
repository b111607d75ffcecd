"""
Tests for ledger_config: defaults, user-file overlay, environment overrides,
validation and the load trace.
"""

import os

import pytest

from ledger_config import get_active_settings
from ledger_config.loader import env_overrides, load_settings
from ledger_config.schema import TransactionSettings


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in list(os.environ):
        if name.startswith("LEDGER_"):
            monkeypatch.delenv(name)


class TestDefaults:
    def test_packaged_defaults(self):
        settings = load_settings()

        assert settings.transaction.isolation_level == "SERIALIZABLE"
        assert settings.transaction.timeout_ms == 10000
        assert settings.transaction.max_retries == 3
        assert settings.transaction.retry_backoff_ms == 25
        assert settings.idempotency.pending_timeout_seconds == 60
        assert settings.idempotency.retention_hours == 24
        assert settings.status.overdue_threshold_days == 30
        assert settings.status.low_stock_threshold == 10
        assert settings.fanout.dedupe_window == 1024
        assert settings.logging.level == "INFO"
        assert settings.database_url

    def test_settings_are_frozen(self):
        settings = load_settings()
        with pytest.raises(AttributeError):
            settings.database_url = "sqlite://"

    def test_checksum_is_stable(self):
        assert load_settings().checksum == load_settings().checksum


class TestOverlay:
    def test_user_file_overrides_one_key(self, tmp_path):
        path = tmp_path / "ledger.yaml"
        path.write_text("transaction:\n  timeout_ms: 2500\n")

        settings = load_settings(path)

        assert settings.transaction.timeout_ms == 2500
        assert settings.transaction.max_retries == 3
        assert settings.checksum != load_settings().checksum

    def test_unknown_key_rejected(self, tmp_path):
        path = tmp_path / "ledger.yaml"
        path.write_text("transaction:\n  timeout: 2500\n")

        with pytest.raises(ValueError, match="transaction.timeout"):
            load_settings(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_settings(tmp_path / "absent.yaml")

    def test_environment_wins_over_file(self, tmp_path):
        path = tmp_path / "ledger.yaml"
        path.write_text("status:\n  low_stock_threshold: 4\n")

        settings = load_settings(
            path,
            environ={
                "LEDGER_STATUS_LOW_STOCK_THRESHOLD": "7",
                "LEDGER_DATABASE_URL": "sqlite:///other.db",
                "LEDGER_TRANSACTION_ISOLATION_LEVEL": "READ COMMITTED",
            },
        )

        assert settings.status.low_stock_threshold == 7
        assert settings.database_url == "sqlite:///other.db"
        assert settings.transaction.isolation_level == "READ COMMITTED"

    def test_env_overrides_ignores_unrelated_variables(self):
        assert env_overrides({"PATH": "/bin", "LEDGER_UNKNOWN": "1"}) == {}


class TestValidation:
    def test_bad_isolation_level(self):
        with pytest.raises(ValueError):
            TransactionSettings(isolation_level="SNAPSHOT")

    def test_non_positive_timeout(self):
        with pytest.raises(ValueError):
            TransactionSettings(timeout_ms=0)

    def test_bad_value_from_environment(self):
        with pytest.raises(ValueError):
            load_settings(environ={"LEDGER_FANOUT_DEDUPE_WINDOW": "-1"})


class TestEntrypoint:
    def test_get_active_settings_logs_checksum(self, monkeypatch, captured_logs):
        monkeypatch.setenv("LEDGER_LOGGING_LEVEL", "DEBUG")

        settings = get_active_settings()

        assert settings.logging.level == "DEBUG"
        loaded = [r for r in captured_logs() if r["message"] == "ledger_config_loaded"]
        assert loaded and loaded[0]["checksum"] == settings.checksum
