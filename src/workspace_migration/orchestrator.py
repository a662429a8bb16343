"""
Orchestrated migration and rollback runs.

MigrationOrchestrator wraps the MigrationEngine with the surrounding
lifecycle: optional integrity scans before and after the run, progress
persistence, document backups, the lightweight post-migration check and
clean-up of the progress record after a fully successful run.

Every run moves through an explicit state machine::

    idle -> preChecking -> migrating -> savingProgress
         -> postValidating -> postChecking -> done

Disabled steps are skipped. Any exception moves the run to ``failed``;
a failed-progress record is saved on a best-effort basis and the error is
re-raised as MigrationExecutionError.

Dry runs never write: ``dry_run()`` scans and counts only. Callers decide
between ``dry_run()`` and ``execute_migration()`` from
``MigrationOptions.dry_run``.

Usage:
    >>> orchestrator = MigrationOrchestrator(store, MigrationOptions(batch_size=100))
    >>> preview = await orchestrator.dry_run()
    >>> result = await orchestrator.execute_migration()
    >>> result.success
    True

See Also:
    - :mod:`workspace_migration.engine` for the data rewrite
    - :mod:`workspace_migration.monitoring` for status summaries
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from workspace_migration.engine import MigrationEngine
from workspace_migration.exceptions import InvalidStateTransitionError, MigrationExecutionError
from workspace_migration.integrity import NO_WORKSPACE, IntegrityChecker
from workspace_migration.models import (
    MigrationOptions,
    MigrationResult,
    MigrationValidation,
    OrchestratorState,
    ScanResult,
    ValidationIssue,
)
from workspace_migration.monitoring import MonitoringService
from workspace_migration.observability import Tracer, create_tracer
from workspace_migration.observability.attributes import (
    ATTR_BATCH_SIZE,
    ATTR_DRY_RUN,
    ATTR_MIGRATION_NAME,
    ATTR_MIGRATION_OPERATION,
    ATTR_MIGRATION_STATE,
)
from workspace_migration.progress import (
    BackupStats,
    MigrationProgress,
    ProgressTracker,
    RollbackManager,
)
from workspace_migration.store import Collection, DocumentStore, Filter, Query

logger = logging.getLogger(__name__)

DEFAULT_MIGRATION_NAME = "workspace-subscription-migration"


@dataclass(frozen=True)
class IntegritySummary:
    """Post-run integrity scan, condensed for reporting."""

    orphaned_users: int
    orphaned_subscriptions: int
    issues: tuple[ValidationIssue, ...] = ()

    @classmethod
    def from_scan(cls, scan: ScanResult) -> IntegritySummary:
        counts = {issue.category: issue.count for issue in scan.issues}
        return cls(
            orphaned_users=counts.get("orphaned_users", 0),
            orphaned_subscriptions=counts.get("orphaned_subscriptions", 0),
            issues=tuple(scan.issues),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "orphanedUsers": self.orphaned_users,
            "orphanedSubscriptions": self.orphaned_subscriptions,
            "issues": [i.to_dict() for i in self.issues],
        }


@dataclass(frozen=True)
class OrchestrationResult:
    """
    Outcome of ``execute_migration()``.

    ``success`` requires both a clean migration and a valid
    post-migration check.
    """

    success: bool
    migration: MigrationResult
    validation: MigrationValidation
    integrity_check: IntegritySummary | None = None
    backup_stats: BackupStats | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "results": {
                "migration": self.migration.to_dict(),
                "validation": self.validation.to_dict(),
            },
            "integrityCheck": self.integrity_check.to_dict() if self.integrity_check else None,
            "backupStats": self.backup_stats.to_dict() if self.backup_stats else None,
        }


@dataclass(frozen=True)
class RollbackResult:
    """Outcome of ``execute_rollback()``."""

    success: bool
    rollback: MigrationResult
    integrity_check: IntegritySummary | None = None
    backup_stats: BackupStats | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "results": {"rollback": self.rollback.to_dict()},
            "integrityCheck": self.integrity_check.to_dict() if self.integrity_check else None,
            "backupStats": self.backup_stats.to_dict() if self.backup_stats else None,
        }


@dataclass(frozen=True)
class DryRunResult:
    """Projection of what a migration would do, with current scan findings."""

    workspaces_to_create: int
    subscriptions_to_migrate: int
    users_to_update: int
    issues: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "workspacesToCreate": self.workspaces_to_create,
            "subscriptionsToMigrate": self.subscriptions_to_migrate,
            "usersToUpdate": self.users_to_update,
            "issues": list(self.issues),
        }


class MigrationOrchestrator:
    """
    Runs the migration lifecycle around a MigrationEngine.

    One orchestrator runs one operation at a time. After a run reaches
    ``done`` or ``failed`` the next run starts again from ``idle``.

    Args:
        store: Document store holding the migrated collections
        options: Run options (defaults to MigrationOptions())
        migration_name: Key of the progress record
        delay_between_batches: Seconds to sleep between user batches
        monitoring: Monitoring service used by ``get_status()``
        tracer: Optional custom Tracer instance
        enable_tracing: Whether to enable OpenTelemetry tracing
    """

    def __init__(
        self,
        store: DocumentStore,
        options: MigrationOptions | None = None,
        migration_name: str = DEFAULT_MIGRATION_NAME,
        delay_between_batches: float = 0.0,
        monitoring: MonitoringService | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._store = store
        self._options = options or MigrationOptions()
        self._migration_name = migration_name
        self._state = OrchestratorState.IDLE

        self._rollback_manager = (
            RollbackManager(store, tracer=self._tracer) if self._options.enable_backup else None
        )
        self._progress = ProgressTracker(store, migration_name, tracer=self._tracer)
        self._integrity = IntegrityChecker(store, tracer=self._tracer)
        self._engine = MigrationEngine(
            store,
            rollback_manager=self._rollback_manager,
            batch_size=self._options.batch_size,
            delay_between_batches=delay_between_batches,
            tracer=self._tracer,
        )
        self._monitoring = monitoring or MonitoringService(store, tracer=self._tracer)

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def options(self) -> MigrationOptions:
        return self._options

    @property
    def progress_tracker(self) -> ProgressTracker:
        return self._progress

    @property
    def rollback_manager(self) -> RollbackManager | None:
        return self._rollback_manager

    def _transition(self, target: OrchestratorState) -> None:
        if not self._state.can_transition_to(target):
            raise InvalidStateTransitionError(self._state.value, target.value)
        logger.debug("Orchestrator state %s -> %s", self._state.value, target.value)
        self._state = target

    def _begin(self) -> None:
        if self._state.is_terminal:
            self._transition(OrchestratorState.IDLE)
        elif self._state != OrchestratorState.IDLE:
            raise InvalidStateTransitionError(
                self._state.value, OrchestratorState.PRE_CHECKING.value
            )

    async def execute_migration(self) -> OrchestrationResult:
        """
        Run the migration with the configured checks and bookkeeping.

        Returns:
            OrchestrationResult; ``success`` is True only when the
            migration recorded no errors and the post-check is valid

        Raises:
            MigrationExecutionError: If any step raised. The original
                exception is chained.
            InvalidStateTransitionError: If a run is already in progress
        """
        self._begin()
        options = self._options
        with self._tracer.span(
            "workspace_migration.orchestrator.execute_migration",
            {
                ATTR_MIGRATION_NAME: self._migration_name,
                ATTR_MIGRATION_OPERATION: "migrate",
                ATTR_BATCH_SIZE: options.batch_size,
            },
        ) as span:
            logger.info(
                "Starting orchestrated migration %s",
                self._migration_name,
                extra={"options": options.to_dict()},
            )
            try:
                if options.enable_integrity_checks:
                    self._transition(OrchestratorState.PRE_CHECKING)
                    self._log_scan("Pre-migration", await self._integrity.run_all())

                if options.enable_progress_tracking:
                    previous = await self._progress.load_progress()
                    if previous is not None:
                        logger.info(
                            "Found previous progress for %s: %d/%d items processed",
                            self._migration_name,
                            previous.processed_items,
                            previous.total_items,
                        )

                self._transition(OrchestratorState.MIGRATING)
                migration = await self._engine.migrate(
                    batch_size=options.batch_size,
                    on_batch=(
                        self._progress.save_progress
                        if options.enable_progress_tracking
                        else None
                    ),
                )

                if options.enable_progress_tracking:
                    self._transition(OrchestratorState.SAVING_PROGRESS)
                    await self._progress.save_progress(self._final_progress(migration))

                self._transition(OrchestratorState.POST_VALIDATING)
                validation = await self._engine.validate_migration()

                integrity = await self._post_check()
                backup_stats = self._backup_stats()

                success = migration.success and validation.valid
                if success and options.enable_progress_tracking:
                    await self._progress.cleanup()

                self._transition(OrchestratorState.DONE)
            except Exception as e:
                await self._fail("migration", e)
                raise MigrationExecutionError("Migration", str(e)) from e

            if span is not None:
                span.set_attribute(ATTR_MIGRATION_STATE, self._state.value)
            logger.info(
                "Orchestrated migration finished: success=%s valid=%s",
                success,
                validation.valid,
                extra={"issues": list(validation.issues)},
            )
            return OrchestrationResult(
                success=success,
                migration=migration,
                validation=validation,
                integrity_check=integrity,
                backup_stats=backup_stats,
            )

    async def execute_rollback(self) -> RollbackResult:
        """
        Move subscriptions back to users, bracketed by integrity scans.

        Raises:
            MigrationExecutionError: If any step raised
            InvalidStateTransitionError: If a run is already in progress
        """
        self._begin()
        with self._tracer.span(
            "workspace_migration.orchestrator.execute_rollback",
            {ATTR_MIGRATION_NAME: self._migration_name, ATTR_MIGRATION_OPERATION: "rollback"},
        ):
            logger.info("Starting orchestrated rollback %s", self._migration_name)
            try:
                if self._options.enable_integrity_checks:
                    self._transition(OrchestratorState.PRE_CHECKING)
                    self._log_scan("Pre-rollback", await self._integrity.run_all())

                self._transition(OrchestratorState.MIGRATING)
                rollback = await self._engine.rollback()

                integrity = await self._post_check()
                backup_stats = self._backup_stats()
                self._transition(OrchestratorState.DONE)
            except Exception as e:
                await self._fail("rollback", e)
                raise MigrationExecutionError("Rollback", str(e)) from e

            logger.info("Orchestrated rollback finished: success=%s", rollback.success)
            return RollbackResult(
                success=rollback.success,
                rollback=rollback,
                integrity_check=integrity,
                backup_stats=backup_stats,
            )

    async def dry_run(self) -> DryRunResult:
        """
        Project the migration without writing anything.

        Runs both integrity scans and counts the users that would get a
        workspace and the legacy subscriptions that would move.
        """
        with self._tracer.span(
            "workspace_migration.orchestrator.dry_run",
            {ATTR_MIGRATION_NAME: self._migration_name, ATTR_DRY_RUN: True},
        ):
            logger.info("Running migration dry run")
            scan, users_to_update, subscriptions_to_migrate = await asyncio.gather(
                self._integrity.run_all(),
                self._store.count(Collection.USERS, NO_WORKSPACE),
                self._store.count(
                    Collection.USERS,
                    Query(filters=[Filter.exists("currentSubscriptionId", True)]),
                ),
            )
            result = DryRunResult(
                workspaces_to_create=users_to_update,
                subscriptions_to_migrate=subscriptions_to_migrate,
                users_to_update=users_to_update,
                issues=tuple(scan.descriptions()),
            )
            logger.info("Dry run completed", extra={"dry_run": result.to_dict()})
            return result

    async def get_status(self) -> dict[str, Any]:
        """Monitoring status summary plus the stored progress record."""
        summary = await self._monitoring.get_status_summary()
        progress = await self._progress.load_progress()
        return {
            "state": self._state.value,
            "summary": summary.to_dict(),
            "progress": progress.to_dict() if progress is not None else None,
        }

    async def _post_check(self) -> IntegritySummary | None:
        if not self._options.enable_integrity_checks:
            return None
        self._transition(OrchestratorState.POST_CHECKING)
        scan = await self._integrity.run_all()
        self._log_scan("Post-run", scan)
        return IntegritySummary.from_scan(scan)

    def _backup_stats(self) -> BackupStats | None:
        if self._rollback_manager is None:
            return None
        return self._rollback_manager.get_backup_stats()

    def _final_progress(self, migration: MigrationResult) -> MigrationProgress:
        last = self._engine.last_progress or MigrationProgress()
        return MigrationProgress(
            total_items=last.total_items,
            processed_items=last.processed_items,
            successful_items=migration.users_updated,
            failed_items=len(migration.errors),
            current_batch=last.current_batch,
            total_batches=last.total_batches,
            errors=list(last.errors),
        )

    async def _fail(self, operation: str, error: Exception) -> None:
        logger.error("Orchestrated %s failed: %s", operation, error, exc_info=True)
        self._transition(OrchestratorState.FAILED)
        if not self._options.enable_progress_tracking:
            return
        failed = MigrationProgress(failed_items=1)
        failed.record_error(operation, str(error))
        try:
            await self._progress.save_progress(failed)
        except Exception:
            logger.warning("Could not save failed progress record", exc_info=True)

    def _log_scan(self, label: str, scan: ScanResult) -> None:
        if scan.issues:
            logger.warning(
                "%s integrity check found %d issues",
                label,
                len(scan.issues),
                extra={"issues": scan.descriptions()},
            )
        else:
            logger.info("%s integrity check passed", label)


__all__ = [
    "DEFAULT_MIGRATION_NAME",
    "IntegritySummary",
    "OrchestrationResult",
    "RollbackResult",
    "DryRunResult",
    "MigrationOrchestrator",
]
