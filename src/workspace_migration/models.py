"""
Data models for the workspace subscription migration.

This module defines the value types shared by the migration engine,
integrity checker, validation service and orchestrator:

- SubscriptionStatus / WorkspaceSubscriptionStatus: legacy and migrated
  subscription status vocabularies, plus the total mapping between them
- Severity / WarningImpact: classification of validation findings
- ValidationIssue / ValidationWarning: individual findings
- ScanResult: the issues and warnings produced by one scan
- MigrationResult / MigrationValidation: engine outputs
- MigrationOptions: per-run orchestrator options
- OrchestratorState: lifecycle state machine for orchestrated runs
- AlertSeverity / ReportType / OverallStatus / Trend: monitoring vocabulary

Documents themselves are plain ``dict`` objects with camelCase keys as
they are persisted; ``to_dict()`` on result types uses the same keys.

Usage:
    >>> from workspace_migration.models import map_subscription_status
    >>> map_subscription_status("grace_period")
    <WorkspaceSubscriptionStatus.PAST_DUE: 'past_due'>
    >>> map_subscription_status("something-else")
    <WorkspaceSubscriptionStatus.TRIAL: 'trial'>

See Also:
    - :mod:`workspace_migration.engine` for the migration itself
    - :mod:`workspace_migration.validation` for scoring
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from workspace_migration.exceptions import InvalidConfigurationError

# Affected id lists on issues are truncated to this many entries.
MAX_AFFECTED_IDS = 100


def round_half_up(value: float) -> int:
    """
    Round to the nearest integer, with halves rounded up.

    Python's ``round`` uses banker's rounding (``round(2.5) == 2``);
    percentages and scores here are expected to round 2.5 to 3.
    """
    return math.floor(value + 0.5)


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(UTC)


def epoch_ms(moment: datetime | None = None) -> int:
    """Milliseconds since the epoch, used to build alert and report ids."""
    return int((moment or utc_now()).timestamp() * 1000)


class SubscriptionStatus(Enum):
    """
    Status values found on legacy (user-owned) subscriptions.

    Values:
        TRIAL: Subscription is in its trial period
        ACTIVE: Subscription is paid and current
        GRACE_PERIOD: Payment failed, grace period running
        INACTIVE: Subscription lapsed without cancellation
        EXPIRED: Subscription ran past its end date
        CANCELLED: Subscription was cancelled by the user
        SUSPENDED: Subscription was suspended by an administrator
    """

    TRIAL = "trial"
    ACTIVE = "active"
    GRACE_PERIOD = "grace_period"
    INACTIVE = "inactive"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    SUSPENDED = "suspended"


class WorkspaceSubscriptionStatus(Enum):
    """Subscription status values stored on a workspace."""

    TRIAL = "trial"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    EXPIRED = "expired"
    CANCELED = "canceled"


STATUS_MAPPING: dict[SubscriptionStatus, WorkspaceSubscriptionStatus] = {
    SubscriptionStatus.TRIAL: WorkspaceSubscriptionStatus.TRIAL,
    SubscriptionStatus.ACTIVE: WorkspaceSubscriptionStatus.ACTIVE,
    SubscriptionStatus.GRACE_PERIOD: WorkspaceSubscriptionStatus.PAST_DUE,
    SubscriptionStatus.INACTIVE: WorkspaceSubscriptionStatus.PAST_DUE,
    SubscriptionStatus.EXPIRED: WorkspaceSubscriptionStatus.EXPIRED,
    SubscriptionStatus.CANCELLED: WorkspaceSubscriptionStatus.CANCELED,
    SubscriptionStatus.SUSPENDED: WorkspaceSubscriptionStatus.CANCELED,
}
"""Legacy subscription status -> workspace subscription status."""


def map_subscription_status(status: str | None) -> WorkspaceSubscriptionStatus:
    """
    Map a legacy subscription status string to a workspace status.

    The mapping is total: any value that is not a known legacy status
    (including None) maps to ``trial``.

    Args:
        status: Raw ``status`` field of a legacy subscription document

    Returns:
        The workspace subscription status to store
    """
    try:
        legacy = SubscriptionStatus(status)
    except ValueError:
        return WorkspaceSubscriptionStatus.TRIAL
    return STATUS_MAPPING[legacy]


class Severity(Enum):
    """
    Severity of a validation issue.

    Each severity carries the number of points it removes from the
    validation score.
    """

    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"

    @property
    def penalty(self) -> int:
        """Score points deducted per issue of this severity."""
        return {
            Severity.CRITICAL: 20,
            Severity.ERROR: 10,
            Severity.WARNING: 5,
        }[self]


class WarningImpact(Enum):
    """Impact level attached to a validation warning."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def penalty(self) -> int:
        """Score points deducted per warning of this impact."""
        return {
            WarningImpact.HIGH: 5,
            WarningImpact.MEDIUM: 3,
            WarningImpact.LOW: 1,
        }[self]


@dataclass(frozen=True)
class ValidationIssue:
    """
    A single integrity finding.

    Issues are computed on every scan and never persisted.

    Attributes:
        severity: How serious the finding is
        category: Stable machine-readable category (e.g. ``orphaned_users``)
        description: Human-readable summary
        affected_ids: Ids of offending documents (truncated)
        count: Total number of offending documents
        fix: Suggested remediation, if any
    """

    severity: Severity
    category: str
    description: str
    affected_ids: tuple[str, ...] = ()
    count: int = 0
    fix: str | None = None

    @classmethod
    def create(
        cls,
        severity: Severity,
        category: str,
        description: str,
        affected_ids: list[str],
        count: int | None = None,
        fix: str | None = None,
    ) -> ValidationIssue:
        """Build an issue, truncating the affected id list."""
        return cls(
            severity=severity,
            category=category,
            description=description,
            affected_ids=tuple(affected_ids[:MAX_AFFECTED_IDS]),
            count=len(affected_ids) if count is None else count,
            fix=fix,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-ready dictionary."""
        result: dict[str, Any] = {
            "severity": self.severity.value,
            "category": self.category,
            "description": self.description,
            "affectedIds": list(self.affected_ids),
            "count": self.count,
        }
        if self.fix is not None:
            result["fix"] = self.fix
        return result


@dataclass(frozen=True)
class ValidationWarning:
    """A non-blocking finding with an impact level."""

    category: str
    description: str
    affected_ids: tuple[str, ...] = ()
    count: int = 0
    impact: WarningImpact = WarningImpact.LOW

    @classmethod
    def create(
        cls,
        category: str,
        description: str,
        affected_ids: list[str],
        impact: WarningImpact,
    ) -> ValidationWarning:
        """Build a warning, truncating the affected id list."""
        return cls(
            category=category,
            description=description,
            affected_ids=tuple(affected_ids[:MAX_AFFECTED_IDS]),
            count=len(affected_ids),
            impact=impact,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-ready dictionary."""
        return {
            "category": self.category,
            "description": self.description,
            "affectedIds": list(self.affected_ids),
            "count": self.count,
            "impact": self.impact.value,
        }


@dataclass
class ScanResult:
    """Issues and warnings produced by one integrity scan."""

    issues: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationWarning] = field(default_factory=list)

    def extend(self, other: ScanResult) -> None:
        """Append another scan's findings to this one."""
        self.issues.extend(other.issues)
        self.warnings.extend(other.warnings)

    def descriptions(self) -> list[str]:
        """Descriptions of every issue followed by every warning."""
        return [i.description for i in self.issues] + [w.description for w in self.warnings]

    def to_dict(self) -> dict[str, Any]:
        return {
            "issues": [i.to_dict() for i in self.issues],
            "warnings": [w.to_dict() for w in self.warnings],
        }


@dataclass(frozen=True)
class MigrationResult:
    """
    Outcome of a migrate or rollback pass.

    Attributes:
        success: True when no per-record errors were recorded
        workspaces_created: Workspaces created for unassigned users
        subscriptions_migrated: Subscriptions whose ownership moved
        users_updated: Users linked to a new workspace
        errors: Per-record error strings, in processing order
    """

    success: bool
    workspaces_created: int = 0
    subscriptions_migrated: int = 0
    users_updated: int = 0
    errors: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "workspacesCreated": self.workspaces_created,
            "subscriptionsMigrated": self.subscriptions_migrated,
            "usersUpdated": self.users_updated,
            "errors": list(self.errors),
        }


@dataclass(frozen=True)
class MigrationValidation:
    """Result of the lightweight post-migration completeness check."""

    valid: bool
    issues: tuple[str, ...] = ()
    stats: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "issues": list(self.issues),
            "stats": dict(self.stats),
        }


@dataclass(frozen=True)
class MigrationOptions:
    """
    Options for one orchestrated run.

    This class is immutable (frozen) so a run cannot change its own
    options midway.

    Attributes:
        dry_run: Project the migration without writing (default False)
        batch_size: Users per batch (default 50)
        enable_backup: Back up documents before modifying them (default True)
        enable_progress_tracking: Persist progress records (default True)
        enable_integrity_checks: Run pre/post integrity scans (default True)
        continue_on_error: Accepted from the CLI and HTTP surfaces and
            logged with the run. Per-record errors never stop a
            migration, so it does not change behavior (default False)

    Example:
        >>> options = MigrationOptions(batch_size=200, enable_backup=False)
        >>> options.batch_size
        200
    """

    dry_run: bool = False
    batch_size: int = 50
    enable_backup: bool = True
    enable_progress_tracking: bool = True
    enable_integrity_checks: bool = True
    continue_on_error: bool = False

    def __post_init__(self) -> None:
        """Validate option values."""
        if self.batch_size < 1:
            raise InvalidConfigurationError(
                "batch_size", f"must be >= 1, got {self.batch_size}"
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "dryRun": self.dry_run,
            "batchSize": self.batch_size,
            "enableBackup": self.enable_backup,
            "enableProgressTracking": self.enable_progress_tracking,
            "enableIntegrityChecks": self.enable_integrity_checks,
            "continueOnError": self.continue_on_error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MigrationOptions:
        """
        Create options from a camelCase dictionary.

        Missing keys fall back to the defaults.
        """
        defaults = cls()
        return cls(
            dry_run=bool(data.get("dryRun", defaults.dry_run)),
            batch_size=int(data.get("batchSize", defaults.batch_size)),
            enable_backup=bool(data.get("enableBackup", defaults.enable_backup)),
            enable_progress_tracking=bool(
                data.get("enableProgressTracking", defaults.enable_progress_tracking)
            ),
            enable_integrity_checks=bool(
                data.get("enableIntegrityChecks", defaults.enable_integrity_checks)
            ),
            continue_on_error=bool(data.get("continueOnError", defaults.continue_on_error)),
        )


class OrchestratorState(Enum):
    """
    Lifecycle states of an orchestrated run.

    The happy path is ``idle -> preChecking -> migrating -> savingProgress
    -> postValidating -> postChecking -> done``. ``failed`` is reachable
    from every non-terminal state.
    """

    IDLE = "idle"
    PRE_CHECKING = "preChecking"
    MIGRATING = "migrating"
    SAVING_PROGRESS = "savingProgress"
    POST_VALIDATING = "postValidating"
    POST_CHECKING = "postChecking"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """True for DONE and FAILED."""
        return self in (OrchestratorState.DONE, OrchestratorState.FAILED)

    def can_transition_to(self, target: OrchestratorState) -> bool:
        """
        Check if transition to target state is valid.

        Optional steps may be skipped, so each state may move to any
        later state in the happy path. Terminal states can only restart
        at IDLE.

        Args:
            target: The target state to transition to.

        Returns:
            True if the transition is valid.
        """
        if self.is_terminal:
            return target == OrchestratorState.IDLE

        if target == OrchestratorState.FAILED:
            return True

        order = _STATE_ORDER
        if self not in order or target not in order:
            return False
        return order.index(target) > order.index(self)


class AlertSeverity(Enum):
    """Severity of a monitoring alert."""

    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class ReportType(Enum):
    """Kind of monitoring report."""

    DAILY = "daily"
    WEEKLY = "weekly"
    ON_DEMAND = "on_demand"

    @classmethod
    def parse(cls, value: str | ReportType) -> ReportType:
        """
        Parse a report type, raising InvalidConfigurationError if unknown.
        """
        if isinstance(value, ReportType):
            return value
        try:
            return cls(value)
        except ValueError:
            allowed = ", ".join(t.value for t in cls)
            raise InvalidConfigurationError(
                "type", f"must be one of {allowed}, got {value!r}"
            ) from None


class OverallStatus(Enum):
    """Coarse migration status derived from the latest metrics."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class Trend(Enum):
    """Direction of a metric across recent samples."""

    IMPROVING = "improving"
    DECLINING = "declining"
    STABLE = "stable"


_STATE_ORDER: list[OrchestratorState] = [
    OrchestratorState.IDLE,
    OrchestratorState.PRE_CHECKING,
    OrchestratorState.MIGRATING,
    OrchestratorState.SAVING_PROGRESS,
    OrchestratorState.POST_VALIDATING,
    OrchestratorState.POST_CHECKING,
    OrchestratorState.DONE,
]


__all__ = [
    "MAX_AFFECTED_IDS",
    "round_half_up",
    "utc_now",
    "epoch_ms",
    "SubscriptionStatus",
    "WorkspaceSubscriptionStatus",
    "STATUS_MAPPING",
    "map_subscription_status",
    "Severity",
    "WarningImpact",
    "ValidationIssue",
    "ValidationWarning",
    "ScanResult",
    "MigrationResult",
    "MigrationValidation",
    "MigrationOptions",
    "OrchestratorState",
    "AlertSeverity",
    "ReportType",
    "OverallStatus",
    "Trend",
]
