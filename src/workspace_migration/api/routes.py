"""
Migration HTTP routes.

Every response uses the envelope ``{"success": bool, "data": ...}`` or
``{"success": false, "message": ..., "error": ...}``. The underlying
error text is only included outside production.

Authentication and rate limiting are applied by the deployment in front
of this router.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from workspace_migration.api.schemas import ExecuteMigrationRequest, ReportRequest
from workspace_migration.config import MigrationSettings
from workspace_migration.models import AlertSeverity, MigrationOptions, OverallStatus
from workspace_migration.monitoring import MonitoringService
from workspace_migration.orchestrator import MigrationOrchestrator
from workspace_migration.progress import ProgressTracker
from workspace_migration.store import DocumentStore
from workspace_migration.validation import ValidationService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Migration"])


@dataclass
class MigrationServices:
    """Services shared by every request, built once per application."""

    store: DocumentStore
    settings: MigrationSettings
    monitoring: MonitoringService
    validation: ValidationService
    run_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def orchestrator(self, options: MigrationOptions | None = None) -> MigrationOrchestrator:
        return MigrationOrchestrator(
            self.store,
            options,
            migration_name=self.settings.migration_name,
            delay_between_batches=self.settings.delay_between_batches,
            monitoring=self.monitoring,
            enable_tracing=self.settings.enable_tracing,
        )


def get_services(request: Request) -> MigrationServices:
    return request.app.state.migration_services


def ok(data: Any, status_code: int = 200) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder({"success": True, "data": data}),
    )


def failure(
    message: str,
    services: MigrationServices,
    error: Exception | None = None,
    status_code: int = 500,
) -> JSONResponse:
    content: dict[str, Any] = {"success": False, "message": message}
    if error is not None and not services.settings.is_production:
        content["error"] = str(error)
    return JSONResponse(status_code=status_code, content=content)


@router.get("/status")
async def get_status(services: MigrationServices = Depends(get_services)) -> JSONResponse:
    try:
        status = await services.orchestrator().get_status()
    except Exception as e:
        logger.error("Failed to get migration status: %s", e, exc_info=True)
        return failure("Failed to get migration status", services, e)
    status["activeAlerts"] = [a.to_dict() for a in services.monitoring.get_active_alerts()]
    return ok(status)


@router.get("/metrics")
async def get_metrics(services: MigrationServices = Depends(get_services)) -> JSONResponse:
    try:
        metrics = await services.monitoring.collect_metrics()
    except Exception as e:
        logger.error("Failed to collect migration metrics: %s", e, exc_info=True)
        return failure("Failed to collect migration metrics", services, e)
    trends = services.monitoring.get_trend_analysis()
    return ok({"current": metrics.to_dict(), "trends": trends.to_dict()})


@router.get("/progress")
async def get_progress(services: MigrationServices = Depends(get_services)) -> JSONResponse:
    tracker = ProgressTracker(services.store, services.settings.migration_name)
    try:
        progress = await tracker.load_progress()
    except Exception as e:
        logger.error("Failed to load migration progress: %s", e, exc_info=True)
        return failure("Failed to load migration progress", services, e)
    if progress is None:
        return ok(None)
    return ok({**progress.to_dict(), "percentComplete": progress.percent_complete})


@router.get("/health")
async def get_health(services: MigrationServices = Depends(get_services)) -> JSONResponse:
    try:
        summary = await services.monitoring.get_status_summary()
    except Exception as e:
        logger.error("Migration health check failed: %s", e, exc_info=True)
        return failure("Migration health check failed", services, e, status_code=503)

    critical_alerts = [
        a for a in services.monitoring.get_active_alerts() if a.severity == AlertSeverity.CRITICAL
    ]
    healthy = summary.status != OverallStatus.FAILED and not critical_alerts
    data = {
        "status": "healthy" if healthy else "unhealthy",
        "migrationStatus": summary.status.value,
        "progress": summary.progress,
        "validationScore": summary.validation_score,
        "criticalIssues": summary.critical_issues,
        "criticalAlerts": len(critical_alerts),
        "lastUpdated": summary.last_updated,
    }
    return JSONResponse(
        status_code=200 if healthy else 503,
        content=jsonable_encoder({"success": healthy, "data": data}),
    )


@router.post("/validate")
async def run_validation(services: MigrationServices = Depends(get_services)) -> JSONResponse:
    try:
        report = await services.validation.run_complete_validation()
    except Exception as e:
        logger.error("Migration validation failed: %s", e, exc_info=True)
        return failure("Migration validation failed", services, e)
    return ok(report.to_dict())


@router.get("/alerts")
async def get_alerts(services: MigrationServices = Depends(get_services)) -> JSONResponse:
    return ok([a.to_dict() for a in services.monitoring.get_active_alerts()])


@router.post("/alerts/{alert_id}/resolve")
async def resolve_alert(
    alert_id: str, services: MigrationServices = Depends(get_services)
) -> JSONResponse:
    if not services.monitoring.resolve_alert(alert_id):
        return failure(f"Alert {alert_id} not found", services, status_code=404)
    return JSONResponse(
        content={"success": True, "message": f"Alert {alert_id} resolved"},
    )


@router.post("/report")
async def generate_report(
    body: ReportRequest, services: MigrationServices = Depends(get_services)
) -> JSONResponse:
    try:
        report = await services.monitoring.generate_report(body.type)
    except Exception as e:
        logger.error("Failed to generate migration report: %s", e, exc_info=True)
        return failure("Failed to generate migration report", services, e)
    return ok(report.to_dict())


@router.post("/dry-run")
async def dry_run(services: MigrationServices = Depends(get_services)) -> JSONResponse:
    try:
        result = await services.orchestrator(MigrationOptions(dry_run=True)).dry_run()
    except Exception as e:
        logger.error("Migration dry run failed: %s", e, exc_info=True)
        return failure("Migration dry run failed", services, e)
    return ok(result.to_dict())


@router.post("/execute")
async def execute_migration(
    body: ExecuteMigrationRequest, services: MigrationServices = Depends(get_services)
) -> JSONResponse:
    options = body.to_options()
    if services.run_lock.locked():
        return failure("A migration run is already in progress", services, status_code=409)
    async with services.run_lock:
        orchestrator = services.orchestrator(options)
        try:
            if options.dry_run:
                return ok((await orchestrator.dry_run()).to_dict())
            result = await orchestrator.execute_migration()
        except Exception as e:
            logger.error("Migration execution failed: %s", e, exc_info=True)
            return failure("Migration execution failed", services, e)
    return ok(result.to_dict())


@router.post("/rollback")
async def execute_rollback(services: MigrationServices = Depends(get_services)) -> JSONResponse:
    if services.run_lock.locked():
        return failure("A migration run is already in progress", services, status_code=409)
    async with services.run_lock:
        try:
            result = await services.orchestrator().execute_rollback()
        except Exception as e:
            logger.error("Migration rollback failed: %s", e, exc_info=True)
            return failure("Migration rollback failed", services, e)
    return ok(result.to_dict())


__all__ = ["router", "MigrationServices", "get_services"]
