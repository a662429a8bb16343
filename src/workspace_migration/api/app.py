"""
FastAPI application factory for the migration API.

Usage:
    $ uvicorn --factory workspace_migration.api:create_app

The store and the shared services are built once in the application
lifespan. Pass ``store`` to serve an already-open store (the caller then
owns its lifetime).
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from workspace_migration.api.routes import MigrationServices, router
from workspace_migration.config import MigrationSettings, get_settings
from workspace_migration.monitoring import MonitoringService
from workspace_migration.store import DocumentStore, SQLDocumentStore
from workspace_migration.validation import ValidationService

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1/migration"


def describe_validation_errors(exc: RequestValidationError) -> str:
    """Flatten pydantic errors to ``"body.type: Input should be ..."`` lines."""
    return "; ".join(
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
        for error in exc.errors()
    )


def create_app(
    settings: MigrationSettings | None = None,
    store: DocumentStore | None = None,
) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        engine: AsyncEngine | None = None
        document_store = store
        if document_store is None:
            engine = create_async_engine(settings.database_url)
            sql_store = SQLDocumentStore(engine, enable_tracing=settings.enable_tracing)
            await sql_store.initialize()
            document_store = sql_store

        validation = ValidationService(document_store, enable_tracing=settings.enable_tracing)
        app.state.migration_services = MigrationServices(
            store=document_store,
            settings=settings,
            monitoring=MonitoringService(
                document_store,
                validation_service=validation,
                history_size=settings.metrics_history_size,
                alert_retention=timedelta(days=settings.alert_retention_days),
                enable_tracing=settings.enable_tracing,
            ),
            validation=validation,
        )
        logger.info("Migration API started (environment=%s)", settings.environment)
        try:
            yield
        finally:
            if engine is not None:
                await engine.dispose()
            logger.info("Migration API stopped")

    app = FastAPI(
        title="Workspace Subscription Migration API",
        lifespan=lifespan,
    )
    app.include_router(router, prefix=API_PREFIX)

    @app.exception_handler(RequestValidationError)
    async def invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.warning("Rejected request to %s: %s", request.url.path, exc.errors())
        content = {"success": False, "message": "Invalid request"}
        if not settings.is_production:
            content["error"] = describe_validation_errors(exc)
        return JSONResponse(status_code=422, content=content)

    return app


__all__ = ["API_PREFIX", "create_app"]
