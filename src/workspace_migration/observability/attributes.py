"""
Standard span and metric attributes for workspace_migration.

Attribute constants used across components so spans are named and
labelled consistently. Database attributes follow the OpenTelemetry
semantic conventions.

Example:
    >>> from workspace_migration.observability.attributes import (
    ...     ATTR_COLLECTION,
    ...     ATTR_DOCUMENT_ID,
    ... )
    >>>
    >>> with tracer.span(
    ...     "workspace_migration.store.get",
    ...     {ATTR_COLLECTION: "users", ATTR_DOCUMENT_ID: user_id},
    ... ):
    ...     pass
"""

# =============================================================================
# Database Attributes (OpenTelemetry semantic conventions)
# =============================================================================

ATTR_DB_SYSTEM = "db.system"
"""Database system identifier (e.g., 'sqlite', 'postgresql', 'memory')."""

ATTR_DB_OPERATION = "db.operation"
"""Database operation name (e.g., 'find', 'save', 'delete')."""

# =============================================================================
# Document Store Attributes
# =============================================================================

ATTR_COLLECTION = "workspace_migration.collection"
"""Name of the document collection being accessed."""

ATTR_DOCUMENT_ID = "workspace_migration.document.id"
"""Identifier of a single document."""

ATTR_DOCUMENT_COUNT = "workspace_migration.document.count"
"""Number of documents returned or affected (integer)."""

ATTR_QUERY_FILTER_COUNT = "workspace_migration.query.filter_count"
"""Number of filters in a query (integer)."""

# =============================================================================
# Migration Attributes
# =============================================================================

ATTR_MIGRATION_NAME = "workspace_migration.migration.name"
"""Name that keys the persisted progress record."""

ATTR_MIGRATION_OPERATION = "workspace_migration.migration.operation"
"""Orchestrated operation ('migrate', 'rollback', 'dry_run')."""

ATTR_MIGRATION_STATE = "workspace_migration.migration.state"
"""Orchestrator state at the time of the span."""

ATTR_BATCH_SIZE = "workspace_migration.batch.size"
"""Number of records processed per batch (integer)."""

ATTR_DRY_RUN = "workspace_migration.dry_run"
"""Whether the operation ran without writing (boolean)."""

ATTR_ERROR_COUNT = "workspace_migration.error.count"
"""Number of per-record errors recorded (integer)."""

# =============================================================================
# Validation & Monitoring Attributes
# =============================================================================

ATTR_SCAN_NAME = "workspace_migration.scan.name"
"""Integrity scan identifier (e.g., 'orphaned_records')."""

ATTR_ISSUE_COUNT = "workspace_migration.issue.count"
"""Number of issues found (integer)."""

ATTR_VALIDATION_SCORE = "workspace_migration.validation.score"
"""Validation score from 0 to 100 (integer)."""

ATTR_ALERT_SEVERITY = "workspace_migration.alert.severity"
"""Alert severity ('critical', 'error', 'warning', 'info')."""

ATTR_REPORT_TYPE = "workspace_migration.report.type"
"""Report type ('daily', 'weekly', 'on_demand')."""


__all__ = [
    "ATTR_DB_SYSTEM",
    "ATTR_DB_OPERATION",
    "ATTR_COLLECTION",
    "ATTR_DOCUMENT_ID",
    "ATTR_DOCUMENT_COUNT",
    "ATTR_QUERY_FILTER_COUNT",
    "ATTR_MIGRATION_NAME",
    "ATTR_MIGRATION_OPERATION",
    "ATTR_MIGRATION_STATE",
    "ATTR_BATCH_SIZE",
    "ATTR_DRY_RUN",
    "ATTR_ERROR_COUNT",
    "ATTR_SCAN_NAME",
    "ATTR_ISSUE_COUNT",
    "ATTR_VALIDATION_SCORE",
    "ATTR_ALERT_SEVERITY",
    "ATTR_REPORT_TYPE",
]
