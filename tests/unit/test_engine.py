"""
Unit tests for MigrationEngine.

Tests cover:
- Workspace creation and owner linking
- Subscription ownership transfer and status mapping
- Backfill of pre-existing workspaces
- Batching, progress callbacks and the batch-level error policy
- Per-record error isolation
- Idempotent re-runs
- Rollback
- validate_migration()
"""

from collections.abc import Callable
from typing import Any

import pytest

from workspace_migration.engine import (
    MigrationEngine,
    apply_workspace_defaults,
    needs_backfill,
)
from workspace_migration.models import utc_now
from workspace_migration.progress import MigrationProgress, RollbackManager
from workspace_migration.store import Collection, Document, InMemoryDocumentStore


class FailingInsertStore(InMemoryDocumentStore):
    """In-memory store that refuses to create a workspace for one owner."""

    def __init__(self, fail_owner: str) -> None:
        super().__init__(enable_tracing=False)
        self.fail_owner = fail_owner

    async def insert(self, collection: Collection, document: Document) -> Document:
        if collection == Collection.WORKPLACES and document.get("ownerId") == self.fail_owner:
            raise RuntimeError("write rejected")
        return await super().insert(collection, document)


class LinkingStore(InMemoryDocumentStore):
    """Store where one user is linked elsewhere between the snapshot and its batch."""

    def __init__(self, link_user: str) -> None:
        super().__init__(enable_tracing=False)
        self.link_user = link_user

    async def get_many(self, collection: Collection, document_ids: list[str]) -> list[Document]:
        if collection == Collection.USERS and self.link_user in document_ids:
            user = await self.get(Collection.USERS, self.link_user)
            user["workplaceId"] = "ws-elsewhere"
            await self.save(Collection.USERS, user)
        return await super().get_many(collection, document_ids)


class UnreachableStore(InMemoryDocumentStore):
    async def count(self, collection: Any, query: Any = None) -> int:
        raise ConnectionError("connection refused")


async def workspace_of(store: InMemoryDocumentStore, user_id: str) -> Document:
    user = await store.get(Collection.USERS, user_id)
    assert user is not None
    workspace = await store.get(Collection.WORKPLACES, user["workplaceId"])
    assert workspace is not None
    return workspace


class TestWorkspaceDefaults:
    def test_apply_fills_every_missing_field(self) -> None:
        workspace: Document = {"_id": "w1", "name": "Old Town", "teamMembers": ["u1", "u2"]}

        assert needs_backfill(workspace)
        assert apply_workspace_defaults(workspace, utc_now()) is True

        assert workspace["subscriptionStatus"] == "trial"
        assert workspace["stats"]["usersCount"] == 2
        assert workspace["stats"]["patientsCount"] == 0
        assert workspace["settings"] == {"maxPendingInvites": 20, "allowSharedPatients": False}
        assert workspace["locations"][0]["isPrimary"] is True
        assert workspace["locations"][0]["address"] == "Main Location"
        assert not needs_backfill(workspace)

    def test_apply_keeps_existing_fields(
        self, workspace_factory: Callable[..., Document]
    ) -> None:
        workspace = workspace_factory("u1", subscriptionStatus="active")

        assert apply_workspace_defaults(workspace, utc_now()) is False
        assert workspace["subscriptionStatus"] == "active"


class TestMigrate:
    """Tests for MigrationEngine.migrate()."""

    @pytest.mark.asyncio
    async def test_single_user_with_subscription(
        self,
        store: InMemoryDocumentStore,
        user_factory: Callable[..., Document],
        subscription_factory: Callable[..., Document],
    ) -> None:
        await store.insert(
            Collection.SUBSCRIPTIONS,
            subscription_factory(_id="legacy-1", userId="u1", status="active", tier="pro"),
        )
        await store.insert(
            Collection.USERS,
            user_factory(_id="u1", currentSubscriptionId="legacy-1", licenseStatus="approved"),
        )
        engine = MigrationEngine(store, enable_tracing=False)

        result = await engine.migrate()

        assert result.success is True
        assert result.workspaces_created == 1
        assert result.subscriptions_migrated == 1
        assert result.users_updated == 1
        assert result.errors == ()

        user = await store.get(Collection.USERS, "u1")
        assert user["workplaceRole"] == "Owner"
        assert "currentSubscriptionId" not in user

        workspace = await workspace_of(store, "u1")
        assert workspace["ownerId"] == "u1"
        assert workspace["teamMembers"] == ["u1"]
        assert workspace["subscriptionStatus"] == "active"
        assert workspace["currentPlanId"] == "plan-basic"
        assert workspace["verificationStatus"] == "verified"
        assert workspace["name"] == "Ada Okafor's Pharmacy"

    @pytest.mark.asyncio
    async def test_subscription_and_workspace_point_at_each_other(
        self, legacy_store: InMemoryDocumentStore
    ) -> None:
        await MigrationEngine(legacy_store, enable_tracing=False).migrate()

        workspace = await workspace_of(legacy_store, "user-1")
        subscription = await legacy_store.get(
            Collection.SUBSCRIPTIONS, workspace["currentSubscriptionId"]
        )
        assert subscription is not None
        assert subscription["workspaceId"] == workspace["_id"]
        assert "userId" not in subscription
        assert subscription["tier"] == "pro"
        assert subscription["billingInterval"] == "monthly"
        assert subscription["limits"]["locations"] == 1

    @pytest.mark.asyncio
    async def test_status_is_mapped_onto_workspace(
        self, legacy_store: InMemoryDocumentStore
    ) -> None:
        await MigrationEngine(legacy_store, enable_tracing=False).migrate()

        assert (await workspace_of(legacy_store, "user-2"))["subscriptionStatus"] == "past_due"
        assert (await workspace_of(legacy_store, "user-3"))["subscriptionStatus"] == "trial"

    @pytest.mark.asyncio
    async def test_user_without_license_gets_temporary_number(
        self, legacy_store: InMemoryDocumentStore
    ) -> None:
        await MigrationEngine(legacy_store, enable_tracing=False).migrate()

        workspace = await workspace_of(legacy_store, "user-3")
        assert workspace["licenseNumber"] == "TEMP-user-3"
        assert workspace["verificationStatus"] == "unverified"

    @pytest.mark.asyncio
    async def test_legacy_subscriptions_are_kept(
        self, legacy_store: InMemoryDocumentStore
    ) -> None:
        await MigrationEngine(legacy_store, enable_tracing=False).migrate()

        assert await legacy_store.get(Collection.SUBSCRIPTIONS, "sub-1") is not None
        assert await legacy_store.count(Collection.SUBSCRIPTIONS) == 4

    @pytest.mark.asyncio
    async def test_missing_legacy_subscription_is_skipped(
        self, store: InMemoryDocumentStore, user_factory: Callable[..., Document]
    ) -> None:
        await store.insert(Collection.USERS, user_factory(_id="u1", currentSubscriptionId="gone"))

        result = await MigrationEngine(store, enable_tracing=False).migrate()

        assert result.success is True
        assert result.workspaces_created == 1
        assert result.subscriptions_migrated == 0
        user = await store.get(Collection.USERS, "u1")
        assert user["currentSubscriptionId"] == "gone"

    @pytest.mark.asyncio
    async def test_rerun_is_a_no_op(self, legacy_store: InMemoryDocumentStore) -> None:
        engine = MigrationEngine(legacy_store, enable_tracing=False)
        await engine.migrate()

        second = await engine.migrate()

        assert second.success is True
        assert second.workspaces_created == 0
        assert second.subscriptions_migrated == 0
        assert second.users_updated == 0
        assert await legacy_store.count(Collection.WORKPLACES) == 3

    @pytest.mark.asyncio
    async def test_existing_workspaces_are_backfilled(
        self, store: InMemoryDocumentStore, user_factory: Callable[..., Document]
    ) -> None:
        await store.insert(
            Collection.USERS, user_factory(_id="u1", workplaceId="w-old", workplaceRole="Owner")
        )
        await store.insert(
            Collection.WORKPLACES,
            {"_id": "w-old", "name": "Harbor Pharmacy", "ownerId": "u1", "teamMembers": ["u1"]},
        )

        result = await MigrationEngine(store, enable_tracing=False).migrate()

        assert result.workspaces_created == 0
        workspace = await store.get(Collection.WORKPLACES, "w-old")
        assert workspace["subscriptionStatus"] == "trial"
        assert workspace["stats"]["usersCount"] == 1
        assert workspace["locations"][0]["name"] == "Harbor Pharmacy"

    @pytest.mark.asyncio
    async def test_backups_are_taken_before_writes(
        self, legacy_store: InMemoryDocumentStore
    ) -> None:
        manager = RollbackManager(legacy_store, enable_tracing=False)
        engine = MigrationEngine(legacy_store, rollback_manager=manager, enable_tracing=False)

        await engine.migrate()

        assert manager.has_backup(Collection.USERS, "user-1")
        assert manager.get_backup_stats().backups_by_collection == {"users": 3}

        assert await manager.restore_document(Collection.USERS, "user-1")
        restored = await legacy_store.get(Collection.USERS, "user-1")
        assert restored["currentSubscriptionId"] == "sub-1"
        assert "workplaceId" not in restored


class TestBatching:
    """Tests for batch handling and error policy."""

    @pytest.mark.asyncio
    async def test_on_batch_receives_running_progress(
        self, legacy_store: InMemoryDocumentStore
    ) -> None:
        snapshots: list[tuple[int, int, int]] = []

        async def on_batch(progress: MigrationProgress) -> None:
            snapshots.append(
                (progress.current_batch, progress.processed_items, progress.total_batches)
            )

        engine = MigrationEngine(legacy_store, batch_size=2, enable_tracing=False)
        await engine.migrate(on_batch=on_batch)

        assert snapshots == [(1, 2, 2), (2, 3, 2)]
        assert engine.last_progress is not None
        assert engine.last_progress.percent_complete == 100.0

    @pytest.mark.asyncio
    async def test_per_record_error_does_not_stop_batch(
        self, user_factory: Callable[..., Document]
    ) -> None:
        store = FailingInsertStore(fail_owner="u2")
        for user_id in ("u1", "u2", "u3"):
            await store.insert(Collection.USERS, user_factory(_id=user_id))

        result = await MigrationEngine(store, enable_tracing=False).migrate()

        assert result.success is False
        assert result.workspaces_created == 2
        assert result.users_updated == 2
        assert result.errors == ("Error migrating user u2@example.com: write rejected",)
        assert (await store.get(Collection.USERS, "u2")).get("workplaceId") is None

    @pytest.mark.asyncio
    async def test_failed_items_are_recorded_in_progress(
        self, user_factory: Callable[..., Document]
    ) -> None:
        store = FailingInsertStore(fail_owner="u1")
        await store.insert(Collection.USERS, user_factory(_id="u1"))
        engine = MigrationEngine(store, enable_tracing=False)

        await engine.migrate()

        progress = engine.last_progress
        assert progress.failed_items == 1
        assert progress.successful_items == 0
        assert progress.errors[0].item_id == "u1"

    @pytest.mark.asyncio
    async def test_failing_batch_does_not_stop_later_batches(
        self, user_factory: Callable[..., Document]
    ) -> None:
        store = FailingInsertStore(fail_owner="u1")
        for user_id in ("u1", "u2", "u3"):
            await store.insert(Collection.USERS, user_factory(_id=user_id))
        engine = MigrationEngine(store, batch_size=1, enable_tracing=False)

        result = await engine.migrate()

        assert result.errors == ("Error migrating user u1@example.com: write rejected",)
        assert result.workspaces_created == 2
        assert (await store.get(Collection.USERS, "u1")).get("workplaceId") is None
        for user_id in ("u2", "u3"):
            assert (await workspace_of(store, user_id))["ownerId"] == user_id

        progress = engine.last_progress
        assert progress.current_batch == 3
        assert progress.processed_items == 3
        assert progress.failed_items == 1

    @pytest.mark.asyncio
    async def test_users_linked_after_snapshot_count_as_processed(
        self, user_factory: Callable[..., Document]
    ) -> None:
        store = LinkingStore(link_user="u2")
        for user_id in ("u1", "u2", "u3"):
            await store.insert(Collection.USERS, user_factory(_id=user_id))
        engine = MigrationEngine(store, batch_size=10, enable_tracing=False)

        result = await engine.migrate()

        assert result.workspaces_created == 2
        progress = engine.last_progress
        assert progress.total_items == 3
        assert progress.processed_items == 3
        assert progress.percent_complete == 100.0


class TestRollback:
    """Tests for MigrationEngine.rollback()."""

    @pytest.mark.asyncio
    async def test_moves_subscriptions_back_to_owners(
        self, legacy_store: InMemoryDocumentStore
    ) -> None:
        engine = MigrationEngine(legacy_store, enable_tracing=False)
        await engine.migrate()

        result = await engine.rollback()

        assert result.success is True
        assert result.subscriptions_migrated == 2
        assert result.workspaces_created == 0
        assert result.users_updated == 0

        user = await legacy_store.get(Collection.USERS, "user-1")
        restored = await legacy_store.get(Collection.SUBSCRIPTIONS, user["currentSubscriptionId"])
        assert restored["userId"] == "user-1"
        assert restored["tier"] == "pro"
        assert "workspaceId" not in restored

        remaining = await legacy_store.find(Collection.SUBSCRIPTIONS)
        assert all("workspaceId" not in s for s in remaining)

    @pytest.mark.asyncio
    async def test_workspaces_survive_rollback(self, legacy_store: InMemoryDocumentStore) -> None:
        engine = MigrationEngine(legacy_store, enable_tracing=False)
        await engine.migrate()

        await engine.rollback()

        assert await legacy_store.count(Collection.WORKPLACES) == 3
        assert (await legacy_store.get(Collection.USERS, "user-3"))["workplaceId"]

    @pytest.mark.asyncio
    async def test_skips_subscription_without_workspace(
        self, store: InMemoryDocumentStore, subscription_factory: Callable[..., Document]
    ) -> None:
        await store.insert(
            Collection.SUBSCRIPTIONS, subscription_factory(_id="s1", workspaceId="missing")
        )

        result = await MigrationEngine(store, enable_tracing=False).rollback()

        assert result.success is True
        assert result.subscriptions_migrated == 0
        assert await store.get(Collection.SUBSCRIPTIONS, "s1") is not None

    @pytest.mark.asyncio
    async def test_trial_end_is_renamed(
        self,
        store: InMemoryDocumentStore,
        user_factory: Callable[..., Document],
        subscription_factory: Callable[..., Document],
        workspace_factory: Callable[..., Document],
    ) -> None:
        await store.insert(Collection.USERS, user_factory(_id="u1", workplaceId="w1"))
        await store.insert(Collection.WORKPLACES, workspace_factory("u1", _id="w1"))
        await store.insert(
            Collection.SUBSCRIPTIONS,
            subscription_factory(_id="s1", workspaceId="w1", trialEndDate="2024-01-31"),
        )

        await MigrationEngine(store, enable_tracing=False).rollback()

        user = await store.get(Collection.USERS, "u1")
        subscription = await store.get(Collection.SUBSCRIPTIONS, user["currentSubscriptionId"])
        assert subscription["trialEnd"] == "2024-01-31"
        assert "trialEndDate" not in subscription


class TestValidateMigration:
    """Tests for MigrationEngine.validate_migration()."""

    @pytest.mark.asyncio
    async def test_before_migration(self, legacy_store: InMemoryDocumentStore) -> None:
        check = await MigrationEngine(legacy_store, enable_tracing=False).validate_migration()

        assert check.valid is False
        assert check.issues == (
            "3 users still don't have workspace associations",
            "2 old user subscriptions still exist",
            "2 subscriptions don't have workspaceId",
        )
        assert check.stats == {
            "totalUsers": 3,
            "usersWithWorkspace": 0,
            "workspacesWithSubscription": 0,
            "orphanedSubscriptions": 2,
        }

    @pytest.mark.asyncio
    async def test_after_migration_without_legacy_subscriptions(
        self, store: InMemoryDocumentStore, user_factory: Callable[..., Document]
    ) -> None:
        await store.insert(Collection.USERS, user_factory(_id="u1"))
        engine = MigrationEngine(store, enable_tracing=False)
        await engine.migrate()

        check = await engine.validate_migration()

        assert check.valid is True
        assert check.issues == ()
        assert check.stats["usersWithWorkspace"] == 1

    @pytest.mark.asyncio
    async def test_store_failure_is_reported_as_issue(self) -> None:
        engine = MigrationEngine(UnreachableStore(enable_tracing=False), enable_tracing=False)

        check = await engine.validate_migration()

        assert check.valid is False
        assert check.issues == ("Validation failed: connection refused",)
        assert check.stats["totalUsers"] == 0
