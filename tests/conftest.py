"""
Shared pytest fixtures for the workspace_migration tests.

This module provides:
- Document store fixtures (store, sqlite_store)
- Document factories (user_factory, subscription_factory, workspace_factory)
- Seeded scenarios (legacy_store: users with legacy subscriptions)
- Tracing fixtures (mock_tracer)
- OpenTelemetry metrics fixtures (metric_reader, meter)
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from typing import Any
from uuid import uuid4

import pytest
import pytest_asyncio
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import InMemoryMetricReader
from sqlalchemy.ext.asyncio import create_async_engine

from workspace_migration.observability import MockTracer
from workspace_migration.store import Collection, Document, InMemoryDocumentStore, SQLDocumentStore

# ============================================================================
# Document Factories
# ============================================================================


@pytest.fixture
def user_factory() -> Callable[..., Document]:
    """
    Factory for legacy user documents.

    Example:
        def test_something(user_factory):
            user = user_factory(email="owner@example.com", currentSubscriptionId="s1")
    """

    def create(**fields: Any) -> Document:
        user_id = fields.pop("_id", None) or f"user-{uuid4().hex[:12]}"
        document: Document = {
            "_id": user_id,
            "email": f"{user_id}@example.com",
            "firstName": "Ada",
            "lastName": "Okafor",
            "licenseNumber": None,
            "licenseStatus": "pending",
        }
        document.update(fields)
        return document

    return create


@pytest.fixture
def subscription_factory() -> Callable[..., Document]:
    """Factory for subscription documents (legacy unless workspaceId is given)."""

    def create(**fields: Any) -> Document:
        document: Document = {
            "_id": fields.pop("_id", None) or f"sub-{uuid4().hex[:12]}",
            "planId": "plan-basic",
            "status": "active",
            "tier": "basic",
            "autoRenew": True,
        }
        document.update(fields)
        return document

    return create


@pytest.fixture
def workspace_factory() -> Callable[..., Document]:
    """Factory for fully migrated workspace documents."""

    def create(owner_id: str, **fields: Any) -> Document:
        document: Document = {
            "_id": fields.pop("_id", None) or f"ws-{uuid4().hex[:12]}",
            "name": "Main Street Pharmacy",
            "ownerId": owner_id,
            "teamMembers": [owner_id],
            "subscriptionStatus": "trial",
            "stats": {"patientsCount": 0, "usersCount": 1},
            "settings": {"maxPendingInvites": 20, "allowSharedPatients": False},
            "locations": [{"id": "primary", "name": "Main", "isPrimary": True, "metadata": {}}],
        }
        document.update(fields)
        return document

    return create


# ============================================================================
# Store Fixtures
# ============================================================================


@pytest.fixture
def store() -> InMemoryDocumentStore:
    """Empty in-memory document store with tracing disabled."""
    return InMemoryDocumentStore(enable_tracing=False)


@pytest_asyncio.fixture
async def legacy_store(
    store: InMemoryDocumentStore,
    user_factory: Callable[..., Document],
    subscription_factory: Callable[..., Document],
) -> InMemoryDocumentStore:
    """
    Store holding three unmigrated users.

    - user-1 owns legacy subscription sub-1 (active, pro)
    - user-2 owns legacy subscription sub-2 (grace_period)
    - user-3 has no subscription
    All users can resolve plan ``plan-basic``.
    """
    await store.insert(Collection.SUBSCRIPTION_PLANS, {"_id": "plan-basic", "name": "Basic"})
    await store.insert(
        Collection.SUBSCRIPTIONS,
        subscription_factory(_id="sub-1", userId="user-1", status="active", tier="pro"),
    )
    await store.insert(
        Collection.SUBSCRIPTIONS,
        subscription_factory(_id="sub-2", userId="user-2", status="grace_period"),
    )
    await store.insert(
        Collection.USERS,
        user_factory(_id="user-1", currentSubscriptionId="sub-1", licenseStatus="approved"),
    )
    await store.insert(Collection.USERS, user_factory(_id="user-2", currentSubscriptionId="sub-2"))
    await store.insert(Collection.USERS, user_factory(_id="user-3"))
    return store


@pytest_asyncio.fixture
async def sqlite_store(tmp_path: Any) -> AsyncGenerator[SQLDocumentStore, None]:
    """
    SQLDocumentStore backed by a SQLite file in the test's tmp_path.

    Yields:
        SQLDocumentStore: Initialized store; the engine is disposed afterwards
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'documents.db'}")
    store = SQLDocumentStore(engine, enable_tracing=False)
    await store.initialize()
    yield store
    await engine.dispose()


# ============================================================================
# Observability Fixtures
# ============================================================================


@pytest.fixture
def mock_tracer() -> MockTracer:
    return MockTracer()


@pytest.fixture
def metric_reader() -> InMemoryMetricReader:
    """Fresh InMemoryMetricReader for inspecting published metrics."""
    return InMemoryMetricReader()


@pytest.fixture
def meter(metric_reader: InMemoryMetricReader) -> Any:
    """Meter whose measurements are collected by ``metric_reader``."""
    provider = MeterProvider(metric_readers=[metric_reader])
    return provider.get_meter("workspace_migration.tests")


def collected_metrics(reader: InMemoryMetricReader) -> dict[str, list[Any]]:
    """Map metric name -> data points from an InMemoryMetricReader."""
    result: dict[str, list[Any]] = {}
    data = reader.get_metrics_data()
    if data is None:
        return result
    for resource_metrics in data.resource_metrics:
        for scope_metrics in resource_metrics.scope_metrics:
            for metric in scope_metrics.metrics:
                result.setdefault(metric.name, []).extend(metric.data.data_points)
    return result


@pytest.fixture
def read_metrics(metric_reader: InMemoryMetricReader) -> Callable[[], dict[str, list[Any]]]:
    """Callable returning the currently collected metric data points by name."""
    return lambda: collected_metrics(metric_reader)
