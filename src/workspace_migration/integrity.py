"""
Read-only integrity scans across users, workspaces and subscriptions.

Two scan families are provided:

- Orphaned-record scan: records that the migration has not reached yet
  or that lost the document they belong to
- Consistency scan: references between collections that point at
  nothing, or that do not point back at each other

Both scans only read, so running either twice without intervening writes
yields identical results. The reads within a scan are issued
concurrently.

Usage:
    >>> checker = IntegrityChecker(store)
    >>> orphaned = await checker.check_orphaned_records()
    >>> for issue in orphaned.issues:
    ...     print(issue.severity.value, issue.category, issue.count)
"""

from __future__ import annotations

import asyncio
import logging

from workspace_migration.models import ScanResult, Severity, ValidationIssue
from workspace_migration.observability import Tracer, create_tracer
from workspace_migration.observability.attributes import ATTR_ISSUE_COUNT, ATTR_SCAN_NAME
from workspace_migration.store import (
    Collection,
    DocumentStore,
    Filter,
    Query,
    document_id,
)

logger = logging.getLogger(__name__)

HAS_WORKSPACE = Query(filters=[Filter.exists("workplaceId", True)])
NO_WORKSPACE = Query(filters=[Filter.exists("workplaceId", False)])


class IntegrityChecker:
    """
    Detects orphaned records and cross-collection mismatches.

    Severity policy: dangling roots (workspaces without owners,
    subscriptions belonging to nothing) are critical; one-directional
    reference breaks and legacy remnants are errors; a missing back-link
    between a subscription and its workspace is a warning.

    Args:
        store: Document store to scan
        tracer: Optional custom Tracer instance
        enable_tracing: Whether to enable OpenTelemetry tracing
    """

    def __init__(
        self,
        store: DocumentStore,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._store = store

    async def check_orphaned_records(self) -> ScanResult:
        """
        Find records left behind by an incomplete migration.

        Returns:
            ScanResult with issues in categories ``orphaned_users``,
            ``legacy_subscriptions``, ``invalid_workspaces`` and
            ``orphaned_subscriptions``
        """
        with self._tracer.span(
            "workspace_migration.integrity.check_orphaned_records",
            {ATTR_SCAN_NAME: "orphaned_records"},
        ) as span:
            (
                users_without_workspace,
                legacy_subscriptions,
                workspaces_without_owner,
                by_workspace,
                by_user,
            ) = await asyncio.gather(
                self._store.find(Collection.USERS, NO_WORKSPACE),
                self._store.find(
                    Collection.SUBSCRIPTIONS,
                    Query(filters=[Filter.exists("userId", True)]),
                ),
                self._store.find(
                    Collection.WORKPLACES,
                    Query(filters=[Filter.exists("ownerId", False)]),
                ),
                self._store.lookup(Collection.SUBSCRIPTIONS, "workspaceId", Collection.WORKPLACES),
                self._store.lookup(Collection.SUBSCRIPTIONS, "userId", Collection.USERS),
            )

            result = ScanResult()

            if users_without_workspace:
                result.issues.append(
                    ValidationIssue.create(
                        Severity.ERROR,
                        "orphaned_users",
                        "Users without workspace associations",
                        [document_id(u) for u in users_without_workspace],
                        fix="Run user-to-workspace migration script",
                    )
                )

            if legacy_subscriptions:
                result.issues.append(
                    ValidationIssue.create(
                        Severity.ERROR,
                        "legacy_subscriptions",
                        "Old user-based subscriptions still exist",
                        [document_id(s) for s in legacy_subscriptions],
                        fix="Migrate user subscriptions to workspace subscriptions",
                    )
                )

            if workspaces_without_owner:
                result.issues.append(
                    ValidationIssue.create(
                        Severity.CRITICAL,
                        "invalid_workspaces",
                        "Workspaces without valid owners",
                        [document_id(w) for w in workspaces_without_owner],
                        fix="Assign valid owners to workspaces or remove invalid workspaces",
                    )
                )

            has_user = {document_id(r.document) for r in by_user if r.matches}
            orphaned = [
                document_id(r.document)
                for r in by_workspace
                if not r.matches and document_id(r.document) not in has_user
            ]
            if orphaned:
                result.issues.append(
                    ValidationIssue.create(
                        Severity.CRITICAL,
                        "orphaned_subscriptions",
                        "Subscriptions with no valid user or workspace reference",
                        orphaned,
                        fix="Remove orphaned subscriptions or fix references",
                    )
                )

            if span is not None:
                span.set_attribute(ATTR_ISSUE_COUNT, len(result.issues))
            logger.info(
                "Orphaned record scan found %d issues",
                len(result.issues),
                extra={"categories": [i.category for i in result.issues]},
            )
            return result

    async def check_data_consistency(self) -> ScanResult:
        """
        Find references that resolve to nothing or do not point back.

        Returns:
            ScanResult with issues in categories ``invalid_workspace_refs``,
            ``invalid_subscription_refs``, ``dangling_subscription_workspaces``
            and ``subscription_workspace_mismatch``
        """
        with self._tracer.span(
            "workspace_migration.integrity.check_data_consistency",
            {ATTR_SCAN_NAME: "data_consistency"},
        ) as span:
            users, workspaces, subscriptions = await asyncio.gather(
                self._store.lookup(
                    Collection.USERS, "workplaceId", Collection.WORKPLACES, HAS_WORKSPACE
                ),
                self._store.lookup(
                    Collection.WORKPLACES,
                    "currentSubscriptionId",
                    Collection.SUBSCRIPTIONS,
                    Query(filters=[Filter.exists("currentSubscriptionId", True)]),
                ),
                self._store.lookup(
                    Collection.SUBSCRIPTIONS,
                    "workspaceId",
                    Collection.WORKPLACES,
                    Query(filters=[Filter.exists("workspaceId", True)]),
                ),
            )

            result = ScanResult()

            invalid_workspace_refs = [document_id(r.document) for r in users if not r.matches]
            if invalid_workspace_refs:
                result.issues.append(
                    ValidationIssue.create(
                        Severity.ERROR,
                        "invalid_workspace_refs",
                        "Users referencing non-existent workspaces",
                        invalid_workspace_refs,
                        fix="Remove invalid workspace references or create missing workspaces",
                    )
                )

            invalid_subscription_refs = [
                document_id(r.document) for r in workspaces if not r.matches
            ]
            if invalid_subscription_refs:
                result.issues.append(
                    ValidationIssue.create(
                        Severity.ERROR,
                        "invalid_subscription_refs",
                        "Workspaces referencing non-existent subscriptions",
                        invalid_subscription_refs,
                        fix=(
                            "Remove invalid subscription references or create missing "
                            "subscriptions"
                        ),
                    )
                )

            dangling = [document_id(r.document) for r in subscriptions if not r.matches]
            if dangling:
                result.issues.append(
                    ValidationIssue.create(
                        Severity.ERROR,
                        "dangling_subscription_workspaces",
                        "Subscriptions referencing non-existent workspaces",
                        dangling,
                        fix="Link subscriptions to existing workspaces or remove them",
                    )
                )

            mismatched = [
                document_id(r.document)
                for r in subscriptions
                if r.matches
                and str(r.matches[0].get("currentSubscriptionId")) != document_id(r.document)
            ]
            if mismatched:
                result.issues.append(
                    ValidationIssue.create(
                        Severity.WARNING,
                        "subscription_workspace_mismatch",
                        "Subscription and workspace references are inconsistent",
                        mismatched,
                        fix="Fix bidirectional references between subscriptions and workspaces",
                    )
                )

            if span is not None:
                span.set_attribute(ATTR_ISSUE_COUNT, len(result.issues))
            logger.info(
                "Data consistency scan found %d issues",
                len(result.issues),
                extra={"categories": [i.category for i in result.issues]},
            )
            return result

    async def run_all(self) -> ScanResult:
        """Run both scans and merge their findings."""
        orphaned, consistency = await asyncio.gather(
            self.check_orphaned_records(),
            self.check_data_consistency(),
        )
        combined = ScanResult()
        combined.extend(orphaned)
        combined.extend(consistency)
        return combined


__all__ = ["IntegrityChecker"]
