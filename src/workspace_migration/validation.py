"""
Full validation of the workspace subscription migration.

The validation service runs every integrity check the migration cares
about and condenses the findings into a 0-100 score:

- Orphaned records and cross-collection consistency (IntegrityChecker)
- Referential integrity: plan and owner references
- Subscription migration completeness
- Workspace integrity: new fields and team member references
- User migration completeness: roles and team membership

Scoring:
    The score starts at 100. Each issue subtracts 20 (critical), 10
    (error) or 5 (warning); each warning subtracts 5 (high impact), 3
    (medium) or 1 (low). The result is averaged with the data
    consistency score, clamped to [0, 100] and rounded half up. A run is
    valid when the score is at least 90 and there are no critical issues.

Usage:
    >>> service = ValidationService(store)
    >>> report = await service.run_complete_validation()
    >>> report.score, report.is_valid
    (96, True)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from workspace_migration.exceptions import ValidationError
from workspace_migration.integrity import HAS_WORKSPACE, IntegrityChecker
from workspace_migration.models import (
    ScanResult,
    Severity,
    ValidationIssue,
    ValidationWarning,
    WarningImpact,
    map_subscription_status,
    round_half_up,
    utc_now,
)
from workspace_migration.observability import Tracer, create_tracer
from workspace_migration.observability.attributes import (
    ATTR_ISSUE_COUNT,
    ATTR_SCAN_NAME,
    ATTR_VALIDATION_SCORE,
)
from workspace_migration.store import Collection, DocumentStore, Filter, Query, document_id

logger = logging.getLogger(__name__)

VALID_SCORE_THRESHOLD = 90
BATCHING_USER_THRESHOLD = 1000


@dataclass(frozen=True)
class ValidationStats:
    """Document counts behind a validation run."""

    total_users: int = 0
    users_with_workspace: int = 0
    total_workspaces: int = 0
    workspaces_with_subscription: int = 0
    total_subscriptions: int = 0
    workspace_subscriptions: int = 0
    user_subscriptions: int = 0

    @property
    def users_without_workspace(self) -> int:
        return self.total_users - self.users_with_workspace

    @property
    def workspaces_without_subscription(self) -> int:
        return self.total_workspaces - self.workspaces_with_subscription

    @property
    def orphaned_records(self) -> int:
        return (
            self.users_without_workspace
            + self.workspaces_without_subscription
            + self.user_subscriptions
        )

    @property
    def data_consistency_score(self) -> int:
        """
        Mean of four completeness ratios, as a rounded percentage.

        Each denominator is floored at 1 so empty collections score as
        complete rather than dividing by zero.
        """
        total_records = self.total_users + self.total_workspaces + self.total_subscriptions
        factors = [
            self.users_with_workspace / max(self.total_users, 1),
            self.workspaces_with_subscription / max(self.total_workspaces, 1),
            self.workspace_subscriptions / max(self.total_subscriptions, 1),
            1 - self.orphaned_records / max(total_records, 1),
        ]
        return round_half_up(sum(factors) / len(factors) * 100)

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalUsers": self.total_users,
            "usersWithWorkspace": self.users_with_workspace,
            "usersWithoutWorkspace": self.users_without_workspace,
            "totalWorkspaces": self.total_workspaces,
            "workspacesWithSubscription": self.workspaces_with_subscription,
            "workspacesWithoutSubscription": self.workspaces_without_subscription,
            "totalSubscriptions": self.total_subscriptions,
            "workspaceSubscriptions": self.workspace_subscriptions,
            "userSubscriptions": self.user_subscriptions,
            "orphanedRecords": self.orphaned_records,
            "dataConsistencyScore": self.data_consistency_score,
        }


@dataclass(frozen=True)
class ValidationReport:
    """
    Outcome of a complete validation run.

    Attributes:
        is_valid: Score >= 90 and no critical issues
        score: Overall score, 0-100
        issues: All issues, grouped by the check that produced them
        warnings: All warnings
        stats: Counts the score was derived from
        recommendations: Ordered human-readable suggestions
        timestamp: When the run finished
    """

    is_valid: bool
    score: int
    issues: tuple[ValidationIssue, ...] = ()
    warnings: tuple[ValidationWarning, ...] = ()
    stats: ValidationStats = field(default_factory=ValidationStats)
    recommendations: tuple[str, ...] = ()
    timestamp: datetime = field(default_factory=utc_now)

    def count_by_severity(self, severity: Severity) -> int:
        return sum(1 for i in self.issues if i.severity == severity)

    @property
    def critical_issues(self) -> int:
        return self.count_by_severity(Severity.CRITICAL)

    @property
    def error_issues(self) -> int:
        return self.count_by_severity(Severity.ERROR)

    def to_dict(self) -> dict[str, Any]:
        return {
            "isValid": self.is_valid,
            "score": self.score,
            "issues": [i.to_dict() for i in self.issues],
            "warnings": [w.to_dict() for w in self.warnings],
            "stats": self.stats.to_dict(),
            "recommendations": list(self.recommendations),
            "timestamp": self.timestamp,
        }


def calculate_validation_score(
    issues: list[ValidationIssue] | tuple[ValidationIssue, ...],
    warnings: list[ValidationWarning] | tuple[ValidationWarning, ...],
    data_consistency_score: int,
) -> int:
    """
    Combine issue/warning penalties with the data consistency score.

    Args:
        issues: Findings with a severity
        warnings: Findings with an impact level
        data_consistency_score: Score from ValidationStats, 0-100

    Returns:
        Score from 0 to 100
    """
    score = 100
    score -= sum(issue.severity.penalty for issue in issues)
    score -= sum(warning.impact.penalty for warning in warnings)
    averaged = (score + data_consistency_score) / 2
    return max(0, min(100, round_half_up(averaged)))


def generate_recommendations(
    issues: list[ValidationIssue] | tuple[ValidationIssue, ...],
    stats: ValidationStats,
) -> list[str]:
    """Ordered suggestions driven by which thresholds were crossed."""
    recommendations: list[str] = []

    if any(i.severity == Severity.CRITICAL for i in issues):
        recommendations.append(
            "Address critical issues immediately before proceeding with production deployment"
        )
    if stats.users_without_workspace > 0:
        recommendations.append(
            f"Complete user migration: {stats.users_without_workspace} users need "
            "workspace assignment"
        )
    if stats.user_subscriptions > 0:
        recommendations.append(
            f"Complete subscription migration: {stats.user_subscriptions} user-based "
            "subscriptions need migration"
        )
    if stats.data_consistency_score < VALID_SCORE_THRESHOLD:
        recommendations.append(
            "Improve data consistency by fixing referential integrity issues"
        )
    if stats.total_users > BATCHING_USER_THRESHOLD:
        recommendations.append("Consider running migration in batches for better performance")

    recommendations.append("Set up monitoring for migration progress and data integrity")
    recommendations.append("Schedule regular validation checks after migration completion")
    return recommendations


class ValidationService:
    """
    Runs the full battery of migration checks and scores the result.

    Individual checks are public so callers can run a subset; each
    returns a ScanResult.

    Args:
        store: Document store to validate
        integrity_checker: Optional checker (one is created if omitted)
        tracer: Optional custom Tracer instance
        enable_tracing: Whether to enable OpenTelemetry tracing
    """

    def __init__(
        self,
        store: DocumentStore,
        integrity_checker: IntegrityChecker | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._store = store
        self._integrity = integrity_checker or IntegrityChecker(
            store, tracer=self._tracer, enable_tracing=enable_tracing
        )

    @property
    def integrity_checker(self) -> IntegrityChecker:
        return self._integrity

    async def run_complete_validation(self) -> ValidationReport:
        """
        Run every check and build the scored report.

        Raises:
            ValidationError: If a check cannot read the store
        """
        with self._tracer.span("workspace_migration.validation.run_complete_validation") as span:
            try:
                stats = await self.collect_validation_stats()
                checks = [
                    await self.check_orphaned_records(),
                    await self.check_data_consistency(),
                    await self.check_referential_integrity(),
                    await self.check_subscription_migration(),
                    await self.check_workspace_integrity(),
                    await self.check_user_migration(),
                ]
            except Exception as e:
                logger.error("Migration validation failed: %s", e, exc_info=True)
                raise ValidationError(f"Migration validation failed: {e}") from e

            combined = ScanResult()
            for check in checks:
                combined.extend(check)

            score = calculate_validation_score(
                combined.issues, combined.warnings, stats.data_consistency_score
            )
            has_critical = any(i.severity == Severity.CRITICAL for i in combined.issues)
            report = ValidationReport(
                is_valid=score >= VALID_SCORE_THRESHOLD and not has_critical,
                score=score,
                issues=tuple(combined.issues),
                warnings=tuple(combined.warnings),
                stats=stats,
                recommendations=tuple(generate_recommendations(combined.issues, stats)),
            )

            if span is not None:
                span.set_attribute(ATTR_VALIDATION_SCORE, score)
                span.set_attribute(ATTR_ISSUE_COUNT, len(report.issues))
            logger.info(
                "Migration validation completed: score=%d issues=%d warnings=%d valid=%s",
                score,
                len(report.issues),
                len(report.warnings),
                report.is_valid,
            )
            return report

    async def collect_validation_stats(self) -> ValidationStats:
        """Count documents in each migration state, concurrently."""
        (
            total_users,
            users_with_workspace,
            total_workspaces,
            workspaces_with_subscription,
            total_subscriptions,
            workspace_subscriptions,
            user_subscriptions,
        ) = await asyncio.gather(
            self._store.count(Collection.USERS),
            self._store.count(Collection.USERS, HAS_WORKSPACE),
            self._store.count(Collection.WORKPLACES),
            self._store.count(
                Collection.WORKPLACES,
                Query(filters=[Filter.exists("currentSubscriptionId", True)]),
            ),
            self._store.count(Collection.SUBSCRIPTIONS),
            self._store.count(
                Collection.SUBSCRIPTIONS,
                Query(filters=[Filter.exists("workspaceId", True)]),
            ),
            self._store.count(
                Collection.SUBSCRIPTIONS,
                Query(filters=[Filter.exists("userId", True)]),
            ),
        )
        return ValidationStats(
            total_users=total_users,
            users_with_workspace=users_with_workspace,
            total_workspaces=total_workspaces,
            workspaces_with_subscription=workspaces_with_subscription,
            total_subscriptions=total_subscriptions,
            workspace_subscriptions=workspace_subscriptions,
            user_subscriptions=user_subscriptions,
        )

    async def check_orphaned_records(self) -> ScanResult:
        return await self._integrity.check_orphaned_records()

    async def check_data_consistency(self) -> ScanResult:
        return await self._integrity.check_data_consistency()

    async def check_referential_integrity(self) -> ScanResult:
        """Subscriptions pointing at missing plans; workspaces pointing at missing owners."""
        with self._tracer.span(
            "workspace_migration.validation.check_referential_integrity",
            {ATTR_SCAN_NAME: "referential_integrity"},
        ):
            plans, owners = await asyncio.gather(
                self._store.lookup(Collection.SUBSCRIPTIONS, "planId", Collection.SUBSCRIPTION_PLANS),
                self._store.lookup(
                    Collection.WORKPLACES,
                    "ownerId",
                    Collection.USERS,
                    Query(filters=[Filter.exists("ownerId", True)]),
                ),
            )
            result = ScanResult()

            invalid_plans = [document_id(r.document) for r in plans if not r.matches]
            if invalid_plans:
                result.issues.append(
                    ValidationIssue.create(
                        Severity.ERROR,
                        "invalid_plan_refs",
                        "Subscriptions referencing non-existent plans",
                        invalid_plans,
                        fix="Create missing subscription plans or fix plan references",
                    )
                )

            invalid_owners = [document_id(r.document) for r in owners if not r.matches]
            if invalid_owners:
                result.issues.append(
                    ValidationIssue.create(
                        Severity.CRITICAL,
                        "invalid_owner_refs",
                        "Workspaces referencing non-existent owners",
                        invalid_owners,
                        fix="Assign valid owners to workspaces",
                    )
                )
            return result

    async def check_subscription_migration(self) -> ScanResult:
        """Legacy user references, workspaces without subscriptions, status drift."""
        with self._tracer.span(
            "workspace_migration.validation.check_subscription_migration",
            {ATTR_SCAN_NAME: "subscription_migration"},
        ):
            legacy_users, without_subscription, linked = await asyncio.gather(
                self._store.find(
                    Collection.USERS,
                    Query(filters=[Filter.exists("currentSubscriptionId", True)]),
                ),
                self._store.find(
                    Collection.WORKPLACES,
                    Query(filters=[Filter.exists("currentSubscriptionId", False)]),
                ),
                self._store.lookup(
                    Collection.WORKPLACES,
                    "currentSubscriptionId",
                    Collection.SUBSCRIPTIONS,
                    Query(filters=[Filter.exists("currentSubscriptionId", True)]),
                ),
            )
            result = ScanResult()

            if legacy_users:
                result.warnings.append(
                    ValidationWarning.create(
                        "legacy_user_subscriptions",
                        "Users still have old subscription references",
                        [document_id(u) for u in legacy_users],
                        WarningImpact.MEDIUM,
                    )
                )

            if without_subscription:
                result.issues.append(
                    ValidationIssue.create(
                        Severity.WARNING,
                        "workspaces_without_subscriptions",
                        "Workspaces without subscription assignments",
                        [document_id(w) for w in without_subscription],
                        fix="Assign trial subscriptions to workspaces without subscriptions",
                    )
                )

            inconsistent = [
                document_id(r.document)
                for r in linked
                if len(r.matches) == 1
                and not _status_matches(
                    r.document.get("subscriptionStatus"), r.matches[0].get("status")
                )
            ]
            if inconsistent:
                result.issues.append(
                    ValidationIssue.create(
                        Severity.WARNING,
                        "inconsistent_subscription_status",
                        "Workspace subscription status does not match subscription record",
                        inconsistent,
                        fix=(
                            "Synchronize subscription status between workspace and "
                            "subscription records"
                        ),
                    )
                )
            return result

    async def check_workspace_integrity(self) -> ScanResult:
        """Workspaces missing migration fields or listing unknown team members."""
        with self._tracer.span(
            "workspace_migration.validation.check_workspace_integrity",
            {ATTR_SCAN_NAME: "workspace_integrity"},
        ):
            members = await self._store.lookup(
                Collection.WORKPLACES, "teamMembers", Collection.USERS
            )
            result = ScanResult()

            incomplete = [
                document_id(r.document)
                for r in members
                if r.document.get("stats") is None
                or r.document.get("settings") is None
                or not r.document.get("locations")
            ]
            if incomplete:
                result.issues.append(
                    ValidationIssue.create(
                        Severity.WARNING,
                        "incomplete_workspace_migration",
                        "Workspaces missing new required fields (stats, settings, locations)",
                        incomplete,
                        fix="Run workspace field initialization script",
                    )
                )

            invalid_members = []
            for row in members:
                listed = {str(m) for m in row.document.get("teamMembers") or [] if m is not None}
                resolved = {document_id(u) for u in row.matches}
                if listed - resolved:
                    invalid_members.append(document_id(row.document))
            if invalid_members:
                result.issues.append(
                    ValidationIssue.create(
                        Severity.ERROR,
                        "invalid_team_members",
                        "Workspaces with invalid team member references",
                        invalid_members,
                        fix="Remove invalid team member references",
                    )
                )
            return result

    async def check_user_migration(self) -> ScanResult:
        """Linked users without a role, or missing from their workspace's team."""
        with self._tracer.span(
            "workspace_migration.validation.check_user_migration",
            {ATTR_SCAN_NAME: "user_migration"},
        ):
            linked = await self._store.lookup(
                Collection.USERS, "workplaceId", Collection.WORKPLACES, HAS_WORKSPACE
            )
            result = ScanResult()

            without_role = [
                document_id(r.document) for r in linked if r.document.get("workplaceRole") is None
            ]
            if without_role:
                result.issues.append(
                    ValidationIssue.create(
                        Severity.WARNING,
                        "missing_workplace_roles",
                        "Users with workspace but no workplace role assigned",
                        without_role,
                        fix="Assign appropriate workplace roles to users",
                    )
                )

            out_of_sync = [
                document_id(r.document)
                for r in linked
                if len(r.matches) == 1
                and document_id(r.document)
                not in {str(m) for m in r.matches[0].get("teamMembers") or []}
            ]
            if out_of_sync:
                result.issues.append(
                    ValidationIssue.create(
                        Severity.ERROR,
                        "team_member_sync_issue",
                        "Users associated with workspace but not in team members list",
                        out_of_sync,
                        fix=(
                            "Synchronize workspace team members with user workspace "
                            "associations"
                        ),
                    )
                )
            return result


def _status_matches(workspace_status: str | None, subscription_status: str | None) -> bool:
    # Workspace subscriptions keep the legacy status verbatim, so a mapped
    # workspace status (e.g. past_due for grace_period) is also consistent.
    if workspace_status == subscription_status:
        return True
    return (
        subscription_status is not None
        and workspace_status == map_subscription_status(subscription_status).value
    )


__all__ = [
    "VALID_SCORE_THRESHOLD",
    "ValidationStats",
    "ValidationReport",
    "ValidationService",
    "calculate_validation_score",
    "generate_recommendations",
]
