"""
Unit tests for MigrationSettings.
"""

import pytest
from pydantic import ValidationError

from workspace_migration.config import MigrationSettings, get_settings


@pytest.fixture(autouse=True)
def clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestMigrationSettings:
    def test_defaults(self) -> None:
        settings = MigrationSettings(_env_file=None)

        assert settings.database_url == "sqlite+aiosqlite:///workspace_migration.db"
        assert settings.batch_size == 50
        assert settings.monitor_interval == 30
        assert settings.metrics_history_size == 100
        assert settings.alert_retention_days == 7
        assert settings.migration_name == "workspace-subscription-migration"
        assert settings.is_production is False

    def test_reads_prefixed_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MIGRATION_BATCH_SIZE", "200")
        monkeypatch.setenv("MIGRATION_ENVIRONMENT", "Production")
        monkeypatch.setenv("MIGRATION_LOG_LEVEL", "debug")
        monkeypatch.setenv("MIGRATION_ENABLE_TRACING", "false")

        settings = MigrationSettings(_env_file=None)

        assert settings.batch_size == 200
        assert settings.is_production is True
        assert settings.log_level == "DEBUG"
        assert settings.enable_tracing is False

    def test_reads_env_file(self, tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
        env_file = tmp_path / ".env"
        env_file.write_text("MIGRATION_MIGRATION_NAME=pilot-run\n", encoding="utf-8")

        settings = MigrationSettings(_env_file=env_file)

        assert settings.migration_name == "pilot-run"

    @pytest.mark.parametrize(
        ("name", "value"),
        [
            ("MIGRATION_BATCH_SIZE", "0"),
            ("MIGRATION_MONITOR_INTERVAL", "0"),
            ("MIGRATION_METRICS_HISTORY_SIZE", "0"),
            ("MIGRATION_DELAY_BETWEEN_BATCHES", "-1"),
        ],
    )
    def test_rejects_out_of_range_values(
        self, monkeypatch: pytest.MonkeyPatch, name: str, value: str
    ) -> None:
        monkeypatch.setenv(name, value)

        with pytest.raises(ValidationError):
            MigrationSettings(_env_file=None)

    def test_get_settings_is_cached(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MIGRATION_BATCH_SIZE", "75")

        first = get_settings()
        monkeypatch.setenv("MIGRATION_BATCH_SIZE", "90")

        assert get_settings() is first
        assert first.batch_size == 75
