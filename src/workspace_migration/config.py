"""
Settings for the workspace migration tooling.

Values are read from ``MIGRATION_``-prefixed environment variables or a
``.env`` file in the working directory.

Example:
    >>> import os
    >>> os.environ["MIGRATION_BATCH_SIZE"] = "200"
    >>> get_settings.cache_clear()
    >>> get_settings().batch_size
    200
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class MigrationSettings(BaseSettings):
    """Settings shared by the CLI and the HTTP API."""

    model_config = SettingsConfigDict(
        env_prefix="MIGRATION_",
        env_file=".env",
        extra="ignore",
    )

    database_url: str = "sqlite+aiosqlite:///workspace_migration.db"
    environment: str = "development"
    log_level: str = "INFO"
    enable_tracing: bool = True

    batch_size: int = Field(default=50, ge=1)
    delay_between_batches: float = Field(default=0.0, ge=0)
    monitor_interval: float = Field(default=30, gt=0)
    metrics_history_size: int = Field(default=100, ge=1)
    alert_retention_days: int = Field(default=7, ge=0)
    migration_name: str = "workspace-subscription-migration"

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        return value.upper()

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


@lru_cache
def get_settings() -> MigrationSettings:
    return MigrationSettings()


__all__ = ["MigrationSettings", "get_settings"]
