"""
Monitoring, alerting and reporting for the workspace subscription migration.

The monitoring service samples the store and the validation service,
keeps a bounded in-process history of samples, raises alerts from fixed
rules and produces status summaries and reports.

Alert rules, evaluated in order on every check:

- critical validation issues present -> critical ``critical-issues``
- progress unchanged from the previous sample -> warning ``migration-stalled``
- validation score below 70 -> error ``low-validation-score``
- more than 10 error issues -> warning ``high-error-count``
- legacy user subscriptions remaining -> info ``legacy-subscriptions``

An unresolved alert of the same kind is refreshed instead of duplicated.
Resolved alerts older than the retention period are pruned on every check.
History and alerts live in process memory and are lost on restart.

Metrics Exposed:
    - migration.metrics.collected (Counter): Samples collected
    - migration.alerts.raised (Counter): New alerts, by ``severity``
    - migration.validation.score (Histogram): Validation score per sample

Usage:
    >>> monitor = MonitoringService(store)
    >>> metrics = await monitor.collect_metrics()
    >>> alerts = await monitor.check_for_alerts()
    >>> summary = await monitor.get_status_summary()
    >>> report = await monitor.generate_report(ReportType.DAILY)
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from opentelemetry import metrics as otel_metrics
from opentelemetry.metrics import Meter

from workspace_migration.exceptions import InvalidConfigurationError
from workspace_migration.models import (
    AlertSeverity,
    OverallStatus,
    ReportType,
    Severity,
    Trend,
    epoch_ms,
    round_half_up,
    utc_now,
)
from workspace_migration.observability import Tracer, create_tracer
from workspace_migration.observability.attributes import (
    ATTR_ALERT_SEVERITY,
    ATTR_REPORT_TYPE,
    ATTR_VALIDATION_SCORE,
)
from workspace_migration.store import Collection, DocumentStore, Filter, Query
from workspace_migration.validation import ValidationReport, ValidationService

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_SIZE = 100
DEFAULT_ALERT_RETENTION = timedelta(days=7)
TREND_WINDOW = 10
TREND_THRESHOLD = 2.0
LOW_SCORE_THRESHOLD = 70
HIGH_ERROR_THRESHOLD = 10
COMPLETED_SCORE_THRESHOLD = 90

SampleCallback = Callable[["MigrationMetrics", list["MigrationAlert"]], Awaitable[None]]


@dataclass(frozen=True)
class MigrationMetrics:
    """
    One monitoring sample.

    ``errors`` and ``warnings`` count validation issues of that severity;
    ``migration_progress`` is the mean of the user and subscription
    migration ratios as a rounded percentage.
    """

    total_users: int
    migrated_users: int
    total_workspaces: int
    workspaces_with_subscriptions: int
    total_subscriptions: int
    workspace_subscriptions: int
    user_subscriptions: int
    validation_score: int
    critical_issues: int
    errors: int
    warnings: int
    migration_progress: int
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "totalUsers": self.total_users,
            "migratedUsers": self.migrated_users,
            "totalWorkspaces": self.total_workspaces,
            "workspacesWithSubscriptions": self.workspaces_with_subscriptions,
            "totalSubscriptions": self.total_subscriptions,
            "workspaceSubscriptions": self.workspace_subscriptions,
            "userSubscriptions": self.user_subscriptions,
            "validationScore": self.validation_score,
            "criticalIssues": self.critical_issues,
            "errors": self.errors,
            "warnings": self.warnings,
            "migrationProgress": self.migration_progress,
        }


def calculate_migration_progress(
    migrated_users: int,
    total_users: int,
    workspace_subscriptions: int,
    total_subscriptions: int,
) -> int:
    """Mean of the two migration ratios as a percentage, rounded half up."""
    ratio = (
        migrated_users / max(total_users, 1)
        + workspace_subscriptions / max(total_subscriptions, 1)
    ) / 2
    return round_half_up(ratio * 100)


@dataclass
class MigrationAlert:
    """
    An alert raised by a monitoring rule.

    Alerts are mutable: they are refreshed while their condition holds
    and marked resolved by an operator.
    """

    id: str
    kind: str
    severity: AlertSeverity
    title: str
    message: str
    timestamp: datetime = field(default_factory=utc_now)
    resolved: bool = False
    resolved_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.severity.value,
            "kind": self.kind,
            "title": self.title,
            "message": self.message,
            "timestamp": self.timestamp,
            "resolved": self.resolved,
            "resolvedAt": self.resolved_at,
            "metadata": self.metadata,
        }


@dataclass(frozen=True)
class TrendAnalysis:
    progress_trend: Trend
    validation_trend: Trend
    recent_metrics: tuple[MigrationMetrics, ...]
    average_progress: float
    average_validation_score: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "progressTrend": self.progress_trend.value,
            "validationTrend": self.validation_trend.value,
            "recentMetrics": [m.to_dict() for m in self.recent_metrics],
            "averageProgress": self.average_progress,
            "averageValidationScore": self.average_validation_score,
        }


@dataclass(frozen=True)
class StatusSummary:
    """Coarse migration status with an optional completion estimate."""

    status: OverallStatus
    progress: int
    validation_score: int
    critical_issues: int
    last_updated: datetime
    estimated_completion: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "status": self.status.value,
            "progress": self.progress,
            "validationScore": self.validation_score,
            "criticalIssues": self.critical_issues,
            "lastUpdated": self.last_updated,
        }
        if self.estimated_completion is not None:
            result["estimatedCompletion"] = self.estimated_completion
        return result


@dataclass(frozen=True)
class MigrationReport:
    id: str
    type: ReportType
    metrics: MigrationMetrics
    validation: ValidationReport
    alerts: tuple[MigrationAlert, ...]
    recommendations: tuple[str, ...]
    next_actions: tuple[str, ...]
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "type": self.type.value,
            "metrics": self.metrics.to_dict(),
            "validation": self.validation.to_dict(),
            "alerts": [a.to_dict() for a in self.alerts],
            "recommendations": list(self.recommendations),
            "nextActions": list(self.next_actions),
        }


def classify_trend(first_half_mean: float, second_half_mean: float) -> Trend:
    if second_half_mean > first_half_mean + TREND_THRESHOLD:
        return Trend.IMPROVING
    if second_half_mean < first_half_mean - TREND_THRESHOLD:
        return Trend.DECLINING
    return Trend.STABLE


def generate_next_actions(metrics: MigrationMetrics) -> list[str]:
    """
    Rule-driven follow-ups for a report.

    Critical issues come first, then remaining migration work, then
    score improvements, then steady-state suggestions once progress
    reaches 90%.
    """
    actions: list[str] = []

    if metrics.critical_issues > 0:
        actions.append("Address critical issues immediately")
        actions.append("Review critical issue details and fix root causes")

    if metrics.migration_progress < 100:
        remaining_users = metrics.total_users - metrics.migrated_users
        if remaining_users > 0:
            actions.append(f"Migrate {remaining_users} remaining users to workspaces")
        if metrics.user_subscriptions > 0:
            actions.append(
                f"Migrate {metrics.user_subscriptions} user-based subscriptions to "
                "workspace subscriptions"
            )

    if metrics.validation_score < COMPLETED_SCORE_THRESHOLD:
        actions.append("Fix data consistency issues to improve validation score")
        if metrics.errors > 0:
            actions.append(f"Resolve {metrics.errors} validation errors")

    if metrics.migration_progress >= 90:
        actions.append("Set up ongoing monitoring for data integrity")
        actions.append("Clean up legacy data and references")

    return actions


class MonitoringInstruments:
    """OpenTelemetry instruments published by the monitoring service."""

    def __init__(self, meter: Meter) -> None:
        self.metrics_collected = meter.create_counter(
            name="migration.metrics.collected",
            unit="samples",
            description="Monitoring samples collected",
        )
        self.alerts_raised = meter.create_counter(
            name="migration.alerts.raised",
            unit="alerts",
            description="Monitoring alerts raised",
        )
        self.validation_score = meter.create_histogram(
            name="migration.validation.score",
            unit="points",
            description="Validation score of each monitoring sample",
        )


class MonitoringService:
    """
    Samples migration state and raises alerts.

    Construct one instance per process and share it: the metrics history
    and the alert list are instance state.

    Args:
        store: Document store holding the migrated collections
        validation_service: Optional validation service (created if omitted)
        history_size: Samples kept for trend analysis (default 100)
        alert_retention: How long resolved alerts are kept (default 7 days)
        meter: Optional OpenTelemetry meter (global meter if omitted)
        tracer: Optional custom Tracer instance
        enable_tracing: Whether to enable OpenTelemetry tracing
    """

    def __init__(
        self,
        store: DocumentStore,
        validation_service: ValidationService | None = None,
        history_size: int = DEFAULT_HISTORY_SIZE,
        alert_retention: timedelta = DEFAULT_ALERT_RETENTION,
        meter: Meter | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        if history_size < 1:
            raise InvalidConfigurationError("history_size", f"must be >= 1, got {history_size}")
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._store = store
        self._validation = validation_service or ValidationService(
            store, tracer=self._tracer, enable_tracing=enable_tracing
        )
        self._history: deque[MigrationMetrics] = deque(maxlen=history_size)
        self._alerts: list[MigrationAlert] = []
        self._alert_retention = alert_retention
        self._instruments = MonitoringInstruments(
            meter or otel_metrics.get_meter("workspace_migration.monitoring")
        )
        self._stop_event = asyncio.Event()
        self._tick_task: asyncio.Task[None] | None = None

    @property
    def metrics_history(self) -> tuple[MigrationMetrics, ...]:
        return tuple(self._history)

    @property
    def latest_metrics(self) -> MigrationMetrics | None:
        return self._history[-1] if self._history else None

    @property
    def alerts(self) -> tuple[MigrationAlert, ...]:
        """All retained alerts, resolved or not."""
        return tuple(self._alerts)

    async def collect_metrics(self) -> MigrationMetrics:
        """Take a sample and append it to the history."""
        metrics, _ = await self._sample()
        return metrics

    async def _sample(self) -> tuple[MigrationMetrics, ValidationReport]:
        with self._tracer.span("workspace_migration.monitoring.collect_metrics") as span:
            try:
                counts = await asyncio.gather(
                    self._store.count(Collection.USERS),
                    self._store.count(
                        Collection.USERS, Query(filters=[Filter.exists("workplaceId", True)])
                    ),
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
                        Collection.SUBSCRIPTIONS, Query(filters=[Filter.exists("userId", True)])
                    ),
                )
                validation = await self._validation.run_complete_validation()
            except Exception as e:
                logger.error("Failed to collect migration metrics: %s", e, exc_info=True)
                raise

            (
                total_users,
                migrated_users,
                total_workspaces,
                workspaces_with_subscriptions,
                total_subscriptions,
                workspace_subscriptions,
                user_subscriptions,
            ) = counts
            metrics = MigrationMetrics(
                total_users=total_users,
                migrated_users=migrated_users,
                total_workspaces=total_workspaces,
                workspaces_with_subscriptions=workspaces_with_subscriptions,
                total_subscriptions=total_subscriptions,
                workspace_subscriptions=workspace_subscriptions,
                user_subscriptions=user_subscriptions,
                validation_score=validation.score,
                critical_issues=validation.count_by_severity(Severity.CRITICAL),
                errors=validation.count_by_severity(Severity.ERROR),
                warnings=validation.count_by_severity(Severity.WARNING),
                migration_progress=calculate_migration_progress(
                    migrated_users, total_users, workspace_subscriptions, total_subscriptions
                ),
            )
            self._history.append(metrics)

            self._instruments.metrics_collected.add(1)
            self._instruments.validation_score.record(metrics.validation_score)
            if span is not None:
                span.set_attribute(ATTR_VALIDATION_SCORE, metrics.validation_score)
            logger.info(
                "Migration metrics collected: progress=%d%% score=%d critical=%d",
                metrics.migration_progress,
                metrics.validation_score,
                metrics.critical_issues,
            )
            return metrics, validation

    async def check_for_alerts(self) -> list[MigrationAlert]:
        """
        Take a sample and evaluate the alert rules against it.

        Returns:
            Alerts raised or refreshed by this check, at most one per rule
        """
        metrics, validation = await self._sample()
        return self._evaluate_alerts(metrics, validation)

    def _evaluate_alerts(
        self, metrics: MigrationMetrics, validation: ValidationReport
    ) -> list[MigrationAlert]:
        previous = self._history[-2] if len(self._history) >= 2 else None
        raised: list[MigrationAlert] = []

        if metrics.critical_issues > 0:
            raised.append(
                self._raise_alert(
                    "critical-issues",
                    AlertSeverity.CRITICAL,
                    "Critical Migration Issues Detected",
                    f"{metrics.critical_issues} critical issues found that require "
                    "immediate attention",
                    {
                        "criticalIssues": [
                            i.to_dict() for i in validation.issues
                            if i.severity == Severity.CRITICAL
                        ]
                    },
                )
            )

        if previous is not None and metrics.migration_progress == previous.migration_progress:
            raised.append(
                self._raise_alert(
                    "migration-stalled",
                    AlertSeverity.WARNING,
                    "Migration Progress Stalled",
                    f"Migration progress has not changed: {metrics.migration_progress}%",
                    {
                        "currentProgress": metrics.migration_progress,
                        "previousProgress": previous.migration_progress,
                    },
                )
            )

        if metrics.validation_score < LOW_SCORE_THRESHOLD:
            raised.append(
                self._raise_alert(
                    "low-validation-score",
                    AlertSeverity.ERROR,
                    "Low Validation Score",
                    f"Validation score is {metrics.validation_score}%, indicating data "
                    "quality issues",
                    {
                        "validationScore": metrics.validation_score,
                        "issueCount": metrics.errors + metrics.critical_issues,
                    },
                )
            )

        if metrics.errors > HIGH_ERROR_THRESHOLD:
            raised.append(
                self._raise_alert(
                    "high-error-count",
                    AlertSeverity.WARNING,
                    "High Error Count",
                    f"{metrics.errors} errors detected in migration validation",
                    {"errorCount": metrics.errors},
                )
            )

        if metrics.user_subscriptions > 0:
            raised.append(
                self._raise_alert(
                    "legacy-subscriptions",
                    AlertSeverity.INFO,
                    "Legacy Subscriptions Remaining",
                    f"{metrics.user_subscriptions} user-based subscriptions still need "
                    "migration",
                    {"userSubscriptions": metrics.user_subscriptions},
                )
            )

        self._prune_alerts()
        logger.info(
            "Migration alerts checked: %d raised, %d retained",
            len(raised),
            len(self._alerts),
        )
        return raised

    def _raise_alert(
        self,
        kind: str,
        severity: AlertSeverity,
        title: str,
        message: str,
        metadata: dict[str, Any],
    ) -> MigrationAlert:
        now = utc_now()
        for alert in self._alerts:
            if alert.kind == kind and not alert.resolved:
                alert.severity = severity
                alert.title = title
                alert.message = message
                alert.metadata = metadata
                alert.timestamp = now
                logger.debug("Refreshed alert %s", alert.id)
                return alert

        alert = MigrationAlert(
            id=f"{kind}-{epoch_ms(now)}",
            kind=kind,
            severity=severity,
            title=title,
            message=message,
            timestamp=now,
            metadata=metadata,
        )
        self._alerts.append(alert)
        self._instruments.alerts_raised.add(1, {"severity": severity.value})
        with self._tracer.span(
            "workspace_migration.monitoring.alert_raised",
            {ATTR_ALERT_SEVERITY: severity.value},
        ):
            logger.warning("Migration alert raised: %s", title, extra={"alert_id": alert.id})
        return alert

    def _prune_alerts(self) -> None:
        cutoff = utc_now() - self._alert_retention
        self._alerts = [a for a in self._alerts if not a.resolved or a.timestamp >= cutoff]

    def resolve_alert(self, alert_id: str) -> bool:
        """Mark an alert resolved. Returns False if no such alert exists."""
        for alert in self._alerts:
            if alert.id == alert_id:
                alert.resolved = True
                alert.resolved_at = utc_now()
                logger.info("Alert resolved: %s", alert.title, extra={"alert_id": alert_id})
                return True
        return False

    def get_active_alerts(self) -> list[MigrationAlert]:
        return [a for a in self._alerts if not a.resolved]

    def get_trend_analysis(self) -> TrendAnalysis:
        """
        Compare the two halves of the most recent samples.

        With fewer than two samples both trends are stable and the
        averages are those of the single sample, or zero.
        """
        if len(self._history) < 2:
            first = self._history[0] if self._history else None
            return TrendAnalysis(
                progress_trend=Trend.STABLE,
                validation_trend=Trend.STABLE,
                recent_metrics=tuple(self._history),
                average_progress=float(first.migration_progress) if first else 0.0,
                average_validation_score=float(first.validation_score) if first else 0.0,
            )

        recent = list(self._history)[-TREND_WINDOW:]
        middle = len(recent) // 2
        first_half, second_half = recent[:middle], recent[middle:]

        return TrendAnalysis(
            progress_trend=classify_trend(
                _mean(m.migration_progress for m in first_half),
                _mean(m.migration_progress for m in second_half),
            ),
            validation_trend=classify_trend(
                _mean(m.validation_score for m in first_half),
                _mean(m.validation_score for m in second_half),
            ),
            recent_metrics=tuple(recent),
            average_progress=_mean(m.migration_progress for m in recent),
            average_validation_score=_mean(m.validation_score for m in recent),
        )

    async def get_status_summary(self) -> StatusSummary:
        """
        Take a sample and derive the overall migration status.

        A completion estimate is given only while in progress with an
        improving trend, assuming one sample per hour.
        """
        metrics = await self.collect_metrics()

        if metrics.migration_progress == 0:
            status = OverallStatus.NOT_STARTED
        elif (
            metrics.migration_progress >= 100
            and metrics.validation_score >= COMPLETED_SCORE_THRESHOLD
        ):
            status = OverallStatus.COMPLETED
        elif metrics.critical_issues > 0:
            status = OverallStatus.FAILED
        else:
            status = OverallStatus.IN_PROGRESS

        estimated_completion = None
        trend = self.get_trend_analysis()
        if status == OverallStatus.IN_PROGRESS and trend.progress_trend == Trend.IMPROVING:
            remaining = 100 - metrics.migration_progress
            rate = trend.average_progress / len(self._history)
            estimated_completion = utc_now() + timedelta(hours=remaining / max(rate, 1))

        return StatusSummary(
            status=status,
            progress=metrics.migration_progress,
            validation_score=metrics.validation_score,
            critical_issues=metrics.critical_issues,
            last_updated=metrics.timestamp,
            estimated_completion=estimated_completion,
        )

    async def generate_report(
        self, report_type: ReportType | str = ReportType.ON_DEMAND
    ) -> MigrationReport:
        """
        Sample, check alerts and bundle everything into a report.

        Raises:
            InvalidConfigurationError: If report_type is not a known type
        """
        report_type = ReportType.parse(report_type)
        with self._tracer.span(
            "workspace_migration.monitoring.generate_report",
            {ATTR_REPORT_TYPE: report_type.value},
        ):
            logger.info("Generating %s migration report", report_type.value)
            metrics, validation = await self._sample()
            self._evaluate_alerts(metrics, validation)

            report = MigrationReport(
                id=f"migration-report-{report_type.value}-{epoch_ms()}",
                type=report_type,
                metrics=metrics,
                validation=validation,
                alerts=tuple(self.get_active_alerts()),
                recommendations=validation.recommendations,
                next_actions=tuple(generate_next_actions(metrics)),
            )
            logger.info(
                "Migration report generated: %s",
                report.id,
                extra={
                    "migration_progress": metrics.migration_progress,
                    "validation_score": metrics.validation_score,
                    "active_alerts": len(report.alerts),
                },
            )
            return report

    async def run_periodic(
        self,
        interval: float,
        on_sample: SampleCallback | None = None,
    ) -> None:
        """
        Check for alerts every ``interval`` seconds until ``stop()``.

        A tick is skipped while the previous sample is still running.
        Failed samples are logged and the loop carries on.
        """
        if interval <= 0:
            raise InvalidConfigurationError("interval", f"must be > 0, got {interval}")

        self._stop_event.clear()
        logger.info("Starting migration monitoring every %ss", interval)
        try:
            while not self._stop_event.is_set():
                if self._tick_task is not None and not self._tick_task.done():
                    logger.warning("Skipping monitoring tick: previous sample still running")
                else:
                    self._tick_task = asyncio.create_task(self._tick(on_sample))
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
                except TimeoutError:
                    pass
        finally:
            if self._tick_task is not None and not self._tick_task.done():
                self._tick_task.cancel()
                await asyncio.gather(self._tick_task, return_exceptions=True)
            self._tick_task = None
            logger.info("Migration monitoring stopped")

    async def _tick(self, on_sample: SampleCallback | None) -> None:
        try:
            alerts = await self.check_for_alerts()
            if on_sample is not None and self.latest_metrics is not None:
                await on_sample(self.latest_metrics, alerts)
        except Exception:
            logger.exception("Monitoring sample failed")

    def stop(self) -> None:
        """Stop a running ``run_periodic`` loop."""
        self._stop_event.set()


def _mean(values: Any) -> float:
    items = list(values)
    return sum(items) / len(items) if items else 0.0


__all__ = [
    "MigrationMetrics",
    "MigrationAlert",
    "TrendAnalysis",
    "StatusSummary",
    "MigrationReport",
    "MonitoringInstruments",
    "MonitoringService",
    "SampleCallback",
    "calculate_migration_progress",
    "classify_trend",
    "generate_next_actions",
]
