"""
Migration engine moving subscription ownership from users to workspaces.

The engine performs the one-time rewrite across users, workspaces and
subscriptions:

1. Every user without a workspace gets one (owned by the user, with the
   user as its only team member), and the user is linked to it as Owner.
2. A user's legacy subscription, when it resolves, is cloned into a
   workspace-owned subscription that the workspace then points at; the
   user's legacy reference is cleared.
3. Workspaces created before the migration are backfilled with the fields
   workspace billing needs (subscription status, stats, settings and a
   primary location).

Per-record failures never stop the run: each is recorded as a string in
the result and processing moves on to the next record. Failures outside
the per-record loops (for example an unreachable store) propagate to the
caller.

``rollback()`` moves subscription ownership back to workspace owners.
Workspaces and user links created by ``migrate()`` are left in place.

Usage:
    >>> engine = MigrationEngine(store)
    >>> result = await engine.migrate()
    >>> result.workspaces_created, result.errors
    (12, ())
    >>> check = await engine.validate_migration()
    >>> check.valid

See Also:
    - :mod:`workspace_migration.orchestrator` for the full lifecycle
    - :mod:`workspace_migration.validation` for the scored validation
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from workspace_migration.models import (
    MigrationResult,
    MigrationValidation,
    WorkspaceSubscriptionStatus,
    map_subscription_status,
    utc_now,
)
from workspace_migration.observability import Tracer, create_tracer
from workspace_migration.observability.attributes import (
    ATTR_BATCH_SIZE,
    ATTR_DOCUMENT_COUNT,
    ATTR_ERROR_COUNT,
)
from workspace_migration.progress import MigrationProgress, RollbackManager
from workspace_migration.store import (
    Collection,
    Document,
    DocumentStore,
    Filter,
    Query,
    document_id,
)

logger = logging.getLogger(__name__)

BatchCallback = Callable[[MigrationProgress], Awaitable[None]]

DEFAULT_WORKSPACE_TYPE = "Community"
OWNER_ROLE = "Owner"

# Fields copied verbatim from a legacy subscription to the workspace subscription.
MIGRATED_SUBSCRIPTION_FIELDS = (
    "planId",
    "status",
    "tier",
    "startDate",
    "endDate",
    "trialEndDate",
    "priceAtPurchase",
    "paymentHistory",
    "autoRenew",
    "gracePeriodEnd",
    "stripeSubscriptionId",
    "stripeCustomerId",
    "webhookEvents",
    "renewalAttempts",
    "features",
    "customFeatures",
    "usageMetrics",
    "scheduledDowngrade",
)

# Fields copied back to a user subscription on rollback. trialEndDate is
# stored as trialEnd on user subscriptions.
ROLLBACK_SUBSCRIPTION_FIELDS = (
    "planId",
    "status",
    "tier",
    "startDate",
    "endDate",
    "priceAtPurchase",
    "paymentHistory",
    "autoRenew",
    "gracePeriodEnd",
    "stripeSubscriptionId",
    "stripeCustomerId",
    "webhookEvents",
    "renewalAttempts",
    "features",
    "customFeatures",
    "usageMetrics",
    "scheduledDowngrade",
)


def workspace_subscription_limits() -> dict[str, Any]:
    """Per-seat limits for a freshly migrated workspace subscription."""
    return {
        "patients": None,
        "users": None,
        "locations": 1,
        "storage": None,
        "apiCalls": None,
    }


def default_workspace_stats(workspace: Document, now: datetime) -> dict[str, Any]:
    return {
        "patientsCount": 0,
        "usersCount": len(workspace.get("teamMembers") or []) or 1,
        "lastUpdated": now,
    }


def default_workspace_settings() -> dict[str, Any]:
    return {
        "maxPendingInvites": 20,
        "allowSharedPatients": False,
    }


def default_workspace_locations(workspace: Document) -> list[dict[str, Any]]:
    return [
        {
            "id": "primary",
            "name": workspace.get("name"),
            "address": workspace.get("address") or "Main Location",
            "isPrimary": True,
            "metadata": {},
        }
    ]


def needs_backfill(workspace: Document) -> bool:
    """True if a workspace lacks any field added by the migration."""
    return (
        not workspace.get("subscriptionStatus")
        or not workspace.get("stats")
        or not workspace.get("settings")
        or not workspace.get("locations")
    )


def apply_workspace_defaults(workspace: Document, now: datetime) -> bool:
    """
    Fill in missing migration fields on a workspace in place.

    Returns:
        True if any field was added
    """
    updated = False
    if not workspace.get("subscriptionStatus"):
        workspace["subscriptionStatus"] = WorkspaceSubscriptionStatus.TRIAL.value
        updated = True
    if not workspace.get("stats"):
        workspace["stats"] = default_workspace_stats(workspace, now)
        updated = True
    if not workspace.get("settings"):
        workspace["settings"] = default_workspace_settings()
        updated = True
    if not workspace.get("locations"):
        workspace["locations"] = default_workspace_locations(workspace)
        updated = True
    return updated


def _error_message(error: Exception) -> str:
    return str(error) or type(error).__name__


@dataclass
class _RunCounters:
    workspaces_created: int = 0
    subscriptions_migrated: int = 0
    users_updated: int = 0
    errors: list[str] = field(default_factory=list)

    def to_result(self) -> MigrationResult:
        return MigrationResult(
            success=not self.errors,
            workspaces_created=self.workspaces_created,
            subscriptions_migrated=self.subscriptions_migrated,
            users_updated=self.users_updated,
            errors=tuple(self.errors),
        )


class MigrationEngine:
    """
    Performs and reverses the user-to-workspace subscription migration.

    Writes are issued strictly one record at a time. When a
    RollbackManager is supplied, every existing document is snapshotted
    before its first modification or deletion.

    Args:
        store: Document store holding the migrated collections
        rollback_manager: Optional manager receiving pre-write snapshots
        batch_size: Users loaded per batch (default 100)
        delay_between_batches: Seconds to sleep between batches (default 0)
        tracer: Optional custom Tracer instance
        enable_tracing: Whether to enable OpenTelemetry tracing
    """

    def __init__(
        self,
        store: DocumentStore,
        rollback_manager: RollbackManager | None = None,
        batch_size: int = 100,
        delay_between_batches: float = 0.0,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._store = store
        self._rollback_manager = rollback_manager
        self._batch_size = batch_size
        self._delay_between_batches = delay_between_batches
        self._last_progress: MigrationProgress | None = None

    @property
    def last_progress(self) -> MigrationProgress | None:
        """Progress of the most recent ``migrate()`` call, if any."""
        return self._last_progress

    async def migrate(
        self,
        batch_size: int | None = None,
        on_batch: BatchCallback | None = None,
    ) -> MigrationResult:
        """
        Migrate every user without a workspace, then backfill workspaces.

        User ids are snapshotted before the first batch so that users
        linked during the run do not shift later batches. A user that
        gained a workspace since the snapshot is skipped but still counted
        as processed. A failing user never stops the run: its error is
        recorded and every later user and batch is still attempted.

        Args:
            batch_size: Overrides the engine's batch size for this run
            on_batch: Awaited with the running progress after every batch

        Returns:
            MigrationResult with counts and per-record error strings
        """
        batch_size = batch_size or self._batch_size

        with self._tracer.span(
            "workspace_migration.engine.migrate",
            {ATTR_BATCH_SIZE: batch_size},
        ):
            counters = _RunCounters()
            logger.info("Starting workspace subscription migration")

            unassigned = await self._store.find(
                Collection.USERS,
                Query(filters=[Filter.exists("workplaceId", False)]),
            )
            user_ids = [document_id(u) for u in unassigned]
            logger.info("Found %d users without workspace associations", len(user_ids))

            progress = MigrationProgress(
                total_items=len(user_ids),
                total_batches=math.ceil(len(user_ids) / batch_size),
            )
            self._last_progress = progress

            for batch_number, start in enumerate(range(0, len(user_ids), batch_size), start=1):
                progress.current_batch = batch_number
                await self._migrate_batch(user_ids[start : start + batch_size], counters, progress)
                logger.debug(
                    "Batch %d/%d completed: %d/%d users processed",
                    batch_number,
                    progress.total_batches,
                    progress.processed_items,
                    progress.total_items,
                )

                if on_batch is not None:
                    await on_batch(progress)

                is_last = start + batch_size >= len(user_ids)
                if not is_last and self._delay_between_batches > 0:
                    await asyncio.sleep(self._delay_between_batches)

            await self._backfill_workspaces(counters)

            result = counters.to_result()
            logger.info(
                "Migration finished: %d workspaces created, %d subscriptions migrated, "
                "%d users updated, %d errors",
                result.workspaces_created,
                result.subscriptions_migrated,
                result.users_updated,
                len(result.errors),
                extra={"migration_result": result.to_dict()},
            )
            return result

    async def _migrate_batch(
        self,
        user_ids: list[str],
        counters: _RunCounters,
        progress: MigrationProgress,
    ) -> None:
        users = await self._store.get_many(Collection.USERS, user_ids)
        # Users deleted since the snapshot count as processed.
        progress.processed_items += len(user_ids) - len(users)
        for user in users:
            if user.get("workplaceId") is not None:
                progress.processed_items += 1
                continue
            try:
                await self._migrate_user(user, counters)
                progress.successful_items += 1
            except Exception as e:
                message = f"Error migrating user {user.get('email')}: {_error_message(e)}"
                logger.error(message, exc_info=True, extra={"user_id": document_id(user)})
                counters.errors.append(message)
                progress.failed_items += 1
                progress.record_error(document_id(user), _error_message(e))
            progress.processed_items += 1

    async def _migrate_user(self, user: Document, counters: _RunCounters) -> None:
        now = utc_now()
        user_id = document_id(user)

        workspace = await self._store.insert(
            Collection.WORKPLACES, self._build_workspace(user, now)
        )
        workspace_id = document_id(workspace)
        counters.workspaces_created += 1

        await self._backup(Collection.USERS, user)
        user["workplaceId"] = workspace_id
        user["workplaceRole"] = OWNER_ROLE
        user["updatedAt"] = now
        await self._store.save(Collection.USERS, user)
        counters.users_updated += 1
        logger.info("Created workspace for user %s: %s", user.get("email"), workspace_id)

        legacy_id = user.get("currentSubscriptionId")
        if legacy_id is None:
            return
        legacy = await self._store.get(Collection.SUBSCRIPTIONS, str(legacy_id))
        if legacy is None:
            logger.warning(
                "User %s references missing subscription %s", user_id, legacy_id
            )
            return

        subscription = await self._store.insert(
            Collection.SUBSCRIPTIONS, self._clone_subscription(legacy, workspace_id, now)
        )
        counters.subscriptions_migrated += 1

        workspace["currentSubscriptionId"] = document_id(subscription)
        workspace["currentPlanId"] = legacy.get("planId")
        workspace["subscriptionStatus"] = map_subscription_status(legacy.get("status")).value
        if legacy.get("trialEndDate"):
            workspace["trialEndDate"] = legacy["trialEndDate"]
        workspace["updatedAt"] = now
        await self._store.save(Collection.WORKPLACES, workspace)

        user.pop("currentSubscriptionId", None)
        await self._store.save(Collection.USERS, user)
        logger.info(
            "Migrated subscription for user %s: %s -> %s",
            user.get("email"),
            document_id(legacy),
            document_id(subscription),
        )

    def _build_workspace(self, user: Document, now: datetime) -> Document:
        user_id = document_id(user)
        workspace: Document = {
            "name": f"{user.get('firstName', '')} {user.get('lastName', '')}'s Pharmacy",
            "type": DEFAULT_WORKSPACE_TYPE,
            "licenseNumber": user.get("licenseNumber") or f"TEMP-{user_id[-6:]}",
            "email": user.get("email"),
            "address": "",
            "state": "",
            "ownerId": user_id,
            "verificationStatus": (
                "verified" if user.get("licenseStatus") == "approved" else "unverified"
            ),
            "teamMembers": [user_id],
            "createdAt": now,
            "updatedAt": now,
        }
        apply_workspace_defaults(workspace, now)
        return workspace

    def _clone_subscription(self, legacy: Document, workspace_id: str, now: datetime) -> Document:
        subscription: Document = {"workspaceId": workspace_id}
        for name in MIGRATED_SUBSCRIPTION_FIELDS:
            if name in legacy:
                subscription[name] = legacy[name]
        subscription["billingInterval"] = legacy.get("billingInterval") or "monthly"
        subscription["limits"] = workspace_subscription_limits()
        subscription["createdAt"] = now
        subscription["updatedAt"] = now
        return subscription

    async def _backfill_workspaces(self, counters: _RunCounters) -> None:
        workspaces = [w for w in await self._store.find(Collection.WORKPLACES) if needs_backfill(w)]
        with self._tracer.span(
            "workspace_migration.engine.backfill_workspaces",
            {ATTR_DOCUMENT_COUNT: len(workspaces)},
        ):
            for workspace in workspaces:
                try:
                    original = dict(workspace)
                    if apply_workspace_defaults(workspace, utc_now()):
                        await self._backup(Collection.WORKPLACES, original)
                        await self._store.save(Collection.WORKPLACES, workspace)
                        logger.info("Updated existing workspace: %s", document_id(workspace))
                except Exception as e:
                    message = (
                        f"Error updating existing workspace {document_id(workspace)}: "
                        f"{_error_message(e)}"
                    )
                    logger.error(message, exc_info=True)
                    counters.errors.append(message)

    async def rollback(self) -> MigrationResult:
        """
        Move workspace subscriptions back to the workspace owners.

        For each workspace subscription whose workspace and owner both
        exist, a user subscription with the same fields is created, the
        owner is pointed at it and the workspace subscription is deleted.
        Subscriptions with a missing workspace or owner are skipped.

        Returns:
            MigrationResult; only ``subscriptions_migrated`` is counted
        """
        with self._tracer.span("workspace_migration.engine.rollback"):
            counters = _RunCounters()
            logger.info("Starting migration rollback")

            subscriptions = await self._store.find(
                Collection.SUBSCRIPTIONS,
                Query(filters=[Filter.exists("workspaceId", True)]),
            )
            for subscription in subscriptions:
                try:
                    if await self._rollback_subscription(subscription):
                        counters.subscriptions_migrated += 1
                except Exception as e:
                    message = (
                        f"Error rolling back subscription {document_id(subscription)}: "
                        f"{_error_message(e)}"
                    )
                    logger.error(message, exc_info=True)
                    counters.errors.append(message)

            result = MigrationResult(
                success=not counters.errors,
                workspaces_created=0,
                subscriptions_migrated=counters.subscriptions_migrated,
                users_updated=0,
                errors=tuple(counters.errors),
            )
            logger.info(
                "Rollback finished: %d subscriptions rolled back, %d errors",
                result.subscriptions_migrated,
                len(result.errors),
            )
            return result

    async def _rollback_subscription(self, subscription: Document) -> bool:
        workspace = await self._store.get(Collection.WORKPLACES, str(subscription["workspaceId"]))
        if workspace is None:
            return False
        owner_id = workspace.get("ownerId")
        owner = await self._store.get(Collection.USERS, str(owner_id)) if owner_id else None
        if owner is None:
            return False

        now = utc_now()
        user_subscription: Document = {"userId": document_id(owner)}
        for name in ROLLBACK_SUBSCRIPTION_FIELDS:
            if name in subscription:
                user_subscription[name] = subscription[name]
        if "trialEndDate" in subscription:
            user_subscription["trialEnd"] = subscription["trialEndDate"]
        user_subscription["createdAt"] = now
        user_subscription["updatedAt"] = now
        created = await self._store.insert(Collection.SUBSCRIPTIONS, user_subscription)

        await self._backup(Collection.USERS, owner)
        owner["currentSubscriptionId"] = document_id(created)
        owner["updatedAt"] = now
        await self._store.save(Collection.USERS, owner)

        await self._backup(Collection.SUBSCRIPTIONS, subscription)
        await self._store.delete(Collection.SUBSCRIPTIONS, document_id(subscription))
        logger.info("Rolled back subscription for workspace %s", document_id(workspace))
        return True

    async def validate_migration(self) -> MigrationValidation:
        """
        Lightweight completeness check of a finished migration.

        Returns:
            MigrationValidation with issue strings and raw counts. Store
            failures are reported as a single ``Validation failed`` issue.
        """
        with self._tracer.span("workspace_migration.engine.validate_migration") as span:
            issues: list[str] = []
            try:
                (
                    total_users,
                    users_with_workspace,
                    workspaces_with_subscription,
                    orphaned_subscriptions,
                    subscriptions_without_workspace,
                ) = await asyncio.gather(
                    self._store.count(Collection.USERS),
                    self._store.count(
                        Collection.USERS,
                        Query(filters=[Filter.exists("workplaceId", True)]),
                    ),
                    self._store.count(
                        Collection.WORKPLACES,
                        Query(filters=[Filter.exists("currentSubscriptionId", True)]),
                    ),
                    self._store.count(
                        Collection.SUBSCRIPTIONS,
                        Query(filters=[Filter.exists("userId", True)]),
                    ),
                    self._store.count(
                        Collection.SUBSCRIPTIONS,
                        Query(filters=[Filter.exists("workspaceId", False)]),
                    ),
                )
            except Exception as e:
                logger.error("Migration validation failed: %s", e, exc_info=True)
                return MigrationValidation(
                    valid=False,
                    issues=(f"Validation failed: {_error_message(e)}",),
                    stats={
                        "totalUsers": 0,
                        "usersWithWorkspace": 0,
                        "workspacesWithSubscription": 0,
                        "orphanedSubscriptions": 0,
                    },
                )

            if users_with_workspace < total_users:
                issues.append(
                    f"{total_users - users_with_workspace} users still don't have "
                    "workspace associations"
                )
            if orphaned_subscriptions > 0:
                issues.append(f"{orphaned_subscriptions} old user subscriptions still exist")
            if subscriptions_without_workspace > 0:
                issues.append(
                    f"{subscriptions_without_workspace} subscriptions don't have workspaceId"
                )

            if span is not None:
                span.set_attribute(ATTR_ERROR_COUNT, len(issues))

            return MigrationValidation(
                valid=not issues,
                issues=tuple(issues),
                stats={
                    "totalUsers": total_users,
                    "usersWithWorkspace": users_with_workspace,
                    "workspacesWithSubscription": workspaces_with_subscription,
                    "orphanedSubscriptions": orphaned_subscriptions,
                },
            )


__all__ = [
    "MigrationEngine",
    "BatchCallback",
    "MIGRATED_SUBSCRIPTION_FIELDS",
    "ROLLBACK_SUBSCRIPTION_FIELDS",
    "workspace_subscription_limits",
    "default_workspace_stats",
    "default_workspace_settings",
    "default_workspace_locations",
    "needs_backfill",
    "apply_workspace_defaults",
]
