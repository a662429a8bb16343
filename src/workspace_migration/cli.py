"""
Command line interface for the workspace subscription migration.

Commands:
    status                       Overall status, metrics and active alerts
    validate [--detailed]        Full validation with score
    migrate [options]            Run (or preview with --dry-run) the migration
    rollback --confirm           Move subscriptions back to workspace owners
    monitor [--interval N]       Sample and alert every N seconds until Ctrl+C
    report [--type T] [--output PATH]
                                 Generate a daily, weekly or on-demand report

Exit status is 0 on success and 1 on any failure, including a migration
that finished with errors and a rollback without ``--confirm``.

Usage:
    $ workspace-migration status
    $ workspace-migration migrate --dry-run
    $ workspace-migration --database-url sqlite+aiosqlite:///prod.db migrate --batch-size 200
    $ python -m workspace_migration report --type weekly --output report.json
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import timedelta
from pathlib import Path

from sqlalchemy.ext.asyncio import create_async_engine

from workspace_migration.config import MigrationSettings, get_settings
from workspace_migration.models import MigrationOptions, ReportType
from workspace_migration.monitoring import MigrationAlert, MigrationMetrics, MonitoringService
from workspace_migration.orchestrator import MigrationOrchestrator
from workspace_migration.serialization import json_dumps
from workspace_migration.store import SQLDocumentStore
from workspace_migration.validation import ValidationService

logger = logging.getLogger(__name__)

RULE = "=" * 50
SUBRULE = "-" * 30
MAX_AFFECTED_IDS_SHOWN = 5

Command = Callable[[argparse.Namespace, SQLDocumentStore, MigrationSettings], Awaitable[int]]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="workspace-migration",
        description="Migrate subscription ownership from users to workspaces.",
    )
    parser.add_argument(
        "--database-url",
        help="SQLAlchemy async database URL (overrides MIGRATION_DATABASE_URL)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("status", help="Show migration status overview")

    validate = subparsers.add_parser("validate", help="Run full migration validation")
    validate.add_argument(
        "--detailed", action="store_true", help="Show affected ids for each issue"
    )

    migrate = subparsers.add_parser("migrate", help="Run the migration")
    migrate.add_argument("--dry-run", action="store_true", help="Run without making changes")
    migrate.add_argument("--batch-size", type=int, help="Users per batch")
    migrate.add_argument(
        "--no-backup", dest="backup", action="store_false", help="Disable document backups"
    )
    migrate.add_argument(
        "--no-progress",
        dest="progress",
        action="store_false",
        help="Disable progress tracking",
    )
    migrate.add_argument(
        "--no-integrity-checks",
        dest="integrity_checks",
        action="store_false",
        help="Disable pre/post integrity checks",
    )
    migrate.add_argument(
        "--continue-on-error",
        action="store_true",
        help="Accepted for compatibility; per-user errors never stop a migration",
    )

    rollback = subparsers.add_parser("rollback", help="Roll back the migration")
    rollback.add_argument("--confirm", action="store_true", help="Confirm the rollback")

    monitor = subparsers.add_parser("monitor", help="Monitor migration progress")
    monitor.add_argument("--interval", type=float, help="Seconds between samples")

    report = subparsers.add_parser("report", help="Generate a migration report")
    report.add_argument(
        "--type",
        dest="report_type",
        choices=[t.value for t in ReportType],
        default=ReportType.ON_DEMAND.value,
        help="Report type",
    )
    report.add_argument("--output", type=Path, help="Write the report as JSON to this file")

    return parser


@asynccontextmanager
async def open_store(
    database_url: str, enable_tracing: bool = True
) -> AsyncIterator[SQLDocumentStore]:
    """Open an initialized SQL document store, disposing the engine on exit."""
    engine = create_async_engine(database_url)
    try:
        store = SQLDocumentStore(engine, enable_tracing=enable_tracing)
        await store.initialize()
        yield store
    finally:
        await engine.dispose()


def _monitoring(store: SQLDocumentStore, settings: MigrationSettings) -> MonitoringService:
    return MonitoringService(
        store,
        history_size=settings.metrics_history_size,
        alert_retention=timedelta(days=settings.alert_retention_days),
        enable_tracing=settings.enable_tracing,
    )


def _print_alerts(alerts: list[MigrationAlert], limit: int | None = None) -> None:
    shown = alerts if limit is None else alerts[:limit]
    for alert in shown:
        print(f"[{alert.severity.value.upper()}] {alert.title}")
        print(f"   {alert.message}")
    if limit is not None and len(alerts) > limit:
        print(f"... and {len(alerts) - limit} more alerts")


async def cmd_status(
    args: argparse.Namespace, store: SQLDocumentStore, settings: MigrationSettings
) -> int:
    monitoring = _monitoring(store, settings)
    orchestrator = MigrationOrchestrator(
        store,
        migration_name=settings.migration_name,
        monitoring=monitoring,
        enable_tracing=settings.enable_tracing,
    )
    status = await orchestrator.get_status()
    summary = status["summary"]
    metrics = monitoring.latest_metrics
    active = monitoring.get_active_alerts()

    print("Migration Status Overview")
    print(RULE)
    print(f"Status: {summary['status'].upper()}")
    print(f"Progress: {summary['progress']}%")
    print(f"Validation Score: {summary['validationScore']}/100")
    print(f"Critical Issues: {summary['criticalIssues']}")
    print(f"Active Alerts: {len(active)}")
    print(f"Last Updated: {summary['lastUpdated']:%Y-%m-%d %H:%M:%S %Z}")
    if "estimatedCompletion" in summary:
        print(f"Estimated Completion: {summary['estimatedCompletion']:%Y-%m-%d %H:%M:%S %Z}")

    if metrics is not None:
        print("\nDetailed Metrics")
        print(SUBRULE)
        print(f"Total Users: {metrics.total_users}")
        print(f"Migrated Users: {metrics.migrated_users}")
        print(f"Users Remaining: {metrics.total_users - metrics.migrated_users}")
        print(f"Total Workspaces: {metrics.total_workspaces}")
        print(f"Workspaces with Subscriptions: {metrics.workspaces_with_subscriptions}")
        print(f"Legacy User Subscriptions: {metrics.user_subscriptions}")
        print(f"Workspace Subscriptions: {metrics.workspace_subscriptions}")

    progress = status["progress"]
    if progress is not None:
        print("\nStored Progress")
        print(SUBRULE)
        print(f"Processed: {progress['processedItems']}/{progress['totalItems']}")
        print(f"Failed: {progress['failedItems']}")

    if active:
        print("\nActive Alerts")
        print(SUBRULE)
        _print_alerts(active)
    return 0


async def cmd_validate(
    args: argparse.Namespace, store: SQLDocumentStore, settings: MigrationSettings
) -> int:
    print("Running migration validation...\n")
    result = await ValidationService(
        store, enable_tracing=settings.enable_tracing
    ).run_complete_validation()

    print("Validation Results")
    print(RULE)
    print(f"Overall Score: {result.score}/100")
    print(f"Status: {'VALID' if result.is_valid else 'INVALID'}")
    print(f"Issues: {len(result.issues)}")
    print(f"Warnings: {len(result.warnings)}")

    if result.issues:
        print("\nIssues Found")
        print(SUBRULE)
        for issue in result.issues:
            print(f"[{issue.severity.value.upper()}] {issue.category}: {issue.description}")
            print(f"   Count: {issue.count}")
            if issue.fix:
                print(f"   Fix: {issue.fix}")
            if args.detailed and issue.affected_ids:
                shown = ", ".join(issue.affected_ids[:MAX_AFFECTED_IDS_SHOWN])
                more = "..." if len(issue.affected_ids) > MAX_AFFECTED_IDS_SHOWN else ""
                print(f"   Affected IDs: {shown}{more}")
            print()

    if result.warnings:
        print("\nWarnings")
        print(SUBRULE)
        for warning in result.warnings:
            print(f"{warning.category}: {warning.description}")
            print(f"   Count: {warning.count}, Impact: {warning.impact.value}")

    if result.recommendations:
        print("\nRecommendations")
        print(SUBRULE)
        for recommendation in result.recommendations:
            print(f"* {recommendation}")

    stats = result.stats
    print("\nStatistics")
    print(SUBRULE)
    print(f"Total Users: {stats.total_users}")
    print(f"Users with Workspace: {stats.users_with_workspace}")
    print(f"Users without Workspace: {stats.users_without_workspace}")
    print(f"Total Workspaces: {stats.total_workspaces}")
    print(f"Workspaces with Subscription: {stats.workspaces_with_subscription}")
    print(f"Legacy User Subscriptions: {stats.user_subscriptions}")
    print(f"Workspace Subscriptions: {stats.workspace_subscriptions}")
    print(f"Data Consistency Score: {stats.data_consistency_score}/100")
    return 0


async def cmd_migrate(
    args: argparse.Namespace, store: SQLDocumentStore, settings: MigrationSettings
) -> int:
    options = MigrationOptions(
        dry_run=args.dry_run,
        batch_size=args.batch_size or settings.batch_size,
        enable_backup=args.backup,
        enable_progress_tracking=args.progress,
        enable_integrity_checks=args.integrity_checks,
        continue_on_error=args.continue_on_error,
    )
    orchestrator = MigrationOrchestrator(
        store,
        options,
        migration_name=settings.migration_name,
        delay_between_batches=settings.delay_between_batches,
        monitoring=_monitoring(store, settings),
        enable_tracing=settings.enable_tracing,
    )

    enabled = {True: "Enabled", False: "Disabled"}
    print("Starting migration...")
    print(f"Mode: {'DRY RUN' if options.dry_run else 'LIVE MIGRATION'}")
    print(f"Batch Size: {options.batch_size}")
    print(f"Backup: {enabled[options.enable_backup]}")
    print(f"Progress Tracking: {enabled[options.enable_progress_tracking]}")
    print(f"Integrity Checks: {enabled[options.enable_integrity_checks]}")
    print()

    if options.dry_run:
        preview = await orchestrator.dry_run()
        print("Dry Run Results")
        print(RULE)
        print(f"Workspaces to Create: {preview.workspaces_to_create}")
        print(f"Subscriptions to Migrate: {preview.subscriptions_to_migrate}")
        print(f"Users to Update: {preview.users_to_update}")
        if preview.issues:
            print("\nIssues Found")
            print(SUBRULE)
            for description in preview.issues:
                print(f"* {description}")
        return 0

    result = await orchestrator.execute_migration()
    migration = result.migration
    print("\nMigration Results")
    print(RULE)
    print(f"Status: {'SUCCESS' if result.success else 'FAILED'}")
    print(f"Workspaces Created: {migration.workspaces_created}")
    print(f"Subscriptions Migrated: {migration.subscriptions_migrated}")
    print(f"Users Updated: {migration.users_updated}")
    print(f"Errors: {len(migration.errors)}")
    print(f"Validation Issues: {len(result.validation.issues)}")
    for issue in result.validation.issues:
        print(f"   {issue}")
    if result.integrity_check is not None:
        orphaned = (
            result.integrity_check.orphaned_users
            + result.integrity_check.orphaned_subscriptions
        )
        print(f"Orphaned Records: {orphaned}")
    if result.backup_stats is not None:
        print(f"Backups Created: {result.backup_stats.total_backups}")

    if not result.success:
        print("\nMigration completed with issues. Check logs for details.")
        return 1
    print("\nMigration completed successfully!")
    return 0


async def cmd_rollback(
    args: argparse.Namespace, store: SQLDocumentStore, settings: MigrationSettings
) -> int:
    orchestrator = MigrationOrchestrator(
        store,
        migration_name=settings.migration_name,
        monitoring=_monitoring(store, settings),
        enable_tracing=settings.enable_tracing,
    )
    print("Starting migration rollback...")
    print("This will revert workspace-based subscriptions to user-based subscriptions.\n")

    result = await orchestrator.execute_rollback()
    print("Rollback Results")
    print(RULE)
    print(f"Status: {'SUCCESS' if result.success else 'FAILED'}")
    print(f"Subscriptions Rolled Back: {result.rollback.subscriptions_migrated}")
    print(f"Errors: {len(result.rollback.errors)}")

    if not result.success:
        print("\nRollback completed with issues. Check logs for details.")
        return 1
    print("\nRollback completed successfully!")
    return 0


async def cmd_monitor(
    args: argparse.Namespace, store: SQLDocumentStore, settings: MigrationSettings
) -> int:
    interval = args.interval or settings.monitor_interval
    monitoring = _monitoring(store, settings)

    async def show(metrics: MigrationMetrics, alerts: list[MigrationAlert]) -> None:
        filled = metrics.migration_progress // 5
        print("\nMigration Monitor - Live Status")
        print(RULE)
        print(f"Time: {metrics.timestamp:%Y-%m-%d %H:%M:%S %Z}")
        print(f"Progress: [{'#' * filled}{'.' * (20 - filled)}] {metrics.migration_progress}%")
        print(f"Validation Score: {metrics.validation_score}/100")
        print(f"Critical Issues: {metrics.critical_issues}")
        print(f"Users: {metrics.migrated_users}/{metrics.total_users} migrated")
        print(
            f"Workspaces: {metrics.workspaces_with_subscriptions}/{metrics.total_workspaces} "
            "with subscriptions"
        )
        print(
            f"Subscriptions: {metrics.workspace_subscriptions} workspace, "
            f"{metrics.user_subscriptions} legacy"
        )
        active = monitoring.get_active_alerts()
        if active:
            print("\nActive Alerts:")
            _print_alerts(active, limit=3)
        print(f"\nNext update in {interval:g} seconds...")

    print("Starting migration monitoring...")
    print(f"Refresh interval: {interval:g} seconds")
    print("Press Ctrl+C to stop monitoring")
    await monitoring.run_periodic(interval, on_sample=show)
    return 0


async def cmd_report(
    args: argparse.Namespace, store: SQLDocumentStore, settings: MigrationSettings
) -> int:
    print(f"Generating {args.report_type} migration report...")
    report = await _monitoring(store, settings).generate_report(args.report_type)

    if args.output is not None:
        args.output.write_text(json_dumps(report.to_dict(), indent=2), encoding="utf-8")
        print(f"Report saved to {args.output}")
        return 0

    print("\nMigration Report")
    print(RULE)
    print(f"Report ID: {report.id}")
    print(f"Generated: {report.timestamp:%Y-%m-%d %H:%M:%S %Z}")
    print(f"Type: {report.type.value}")
    print(f"Migration Progress: {report.metrics.migration_progress}%")
    print(f"Validation Score: {report.metrics.validation_score}/100")
    print(f"Active Alerts: {len(report.alerts)}")
    if report.recommendations:
        print("\nRecommendations:")
        for recommendation in report.recommendations:
            print(f"* {recommendation}")
    if report.next_actions:
        print("\nNext Actions:")
        for action in report.next_actions:
            print(f"* {action}")
    return 0


COMMANDS: dict[str, Command] = {
    "status": cmd_status,
    "validate": cmd_validate,
    "migrate": cmd_migrate,
    "rollback": cmd_rollback,
    "monitor": cmd_monitor,
    "report": cmd_report,
}


async def run(args: argparse.Namespace, settings: MigrationSettings) -> int:
    async with open_store(
        args.database_url or settings.database_url, settings.enable_tracing
    ) as store:
        return await COMMANDS[args.command](args, store, settings)


def main(argv: list[str] | None = None) -> int:
    """Entry point. Returns the process exit status."""
    args = build_parser().parse_args(argv)
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "rollback" and not args.confirm:
        print("Rollback is a destructive operation.")
        print("Use --confirm flag to proceed with rollback.")
        return 1

    try:
        return asyncio.run(run(args, settings))
    except KeyboardInterrupt:
        print(f"\n{args.command} stopped.")
        return 0
    except Exception as e:
        logger.debug("Command %s failed", args.command, exc_info=True)
        print(f"Command {args.command} failed: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
