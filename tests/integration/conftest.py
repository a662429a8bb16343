"""
Shared pytest fixtures for integration tests.

This module provides:
- A SQLite database URL in the test's tmp_path
- Environment-backed settings for CLI runs
- Helpers to seed and read a database outside the code under test
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Generator
from pathlib import Path

import pytest

from workspace_migration.cli import open_store
from workspace_migration.config import get_settings
from workspace_migration.store import Collection, Document


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for integration tests."""
    config.addinivalue_line("markers", "integration: marks tests as integration tests")


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'migration.db'}"


@pytest.fixture
def cli_environment(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, database_url: str
) -> Generator[str, None, None]:
    """
    Point the CLI at a fresh SQLite database with tracing disabled.

    The working directory is moved to tmp_path so no stray ``.env`` file
    is picked up.

    Yields:
        str: The database URL the CLI will use
    """
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("MIGRATION_DATABASE_URL", database_url)
    monkeypatch.setenv("MIGRATION_ENABLE_TRACING", "false")
    monkeypatch.setenv("MIGRATION_LOG_LEVEL", "WARNING")
    get_settings.cache_clear()
    yield database_url
    get_settings.cache_clear()


@pytest.fixture
def seed_database(database_url: str) -> Callable[[list[tuple[Collection, Document]]], None]:
    """Insert documents into the test database from synchronous test code."""

    def seed(documents: list[tuple[Collection, Document]]) -> None:
        async def _seed() -> None:
            async with open_store(database_url, enable_tracing=False) as store:
                for collection, document in documents:
                    await store.insert(collection, document)

        asyncio.run(_seed())

    return seed


@pytest.fixture
def read_collection(database_url: str) -> Callable[[Collection], list[Document]]:
    """Read every document of a collection from synchronous test code."""

    def read(collection: Collection) -> list[Document]:
        async def _read() -> list[Document]:
            async with open_store(database_url, enable_tracing=False) as store:
                return await store.find(collection)

        return asyncio.run(_read())

    return read
