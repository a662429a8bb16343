"""
Observability utilities for workspace_migration.

Provides the composition-based tracer used by every service and the
standard span attribute names.

Example:
    >>> from workspace_migration.observability import create_tracer
    >>>
    >>> class MyService:
    ...     def __init__(self, enable_tracing: bool = True):
    ...         self._tracer = create_tracer(__name__, enable_tracing)
    ...         self._enable_tracing = self._tracer.enabled
"""

from workspace_migration.observability.attributes import (
    ATTR_ALERT_SEVERITY,
    ATTR_BATCH_SIZE,
    ATTR_COLLECTION,
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_DOCUMENT_COUNT,
    ATTR_DOCUMENT_ID,
    ATTR_DRY_RUN,
    ATTR_ERROR_COUNT,
    ATTR_ISSUE_COUNT,
    ATTR_MIGRATION_NAME,
    ATTR_MIGRATION_OPERATION,
    ATTR_MIGRATION_STATE,
    ATTR_QUERY_FILTER_COUNT,
    ATTR_REPORT_TYPE,
    ATTR_SCAN_NAME,
    ATTR_VALIDATION_SCORE,
)
from workspace_migration.observability.tracer import (
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    Tracer,
    create_tracer,
)

__all__ = [
    # Tracer
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "create_tracer",
    # Attributes
    "ATTR_ALERT_SEVERITY",
    "ATTR_BATCH_SIZE",
    "ATTR_COLLECTION",
    "ATTR_DB_OPERATION",
    "ATTR_DB_SYSTEM",
    "ATTR_DOCUMENT_COUNT",
    "ATTR_DOCUMENT_ID",
    "ATTR_DRY_RUN",
    "ATTR_ERROR_COUNT",
    "ATTR_ISSUE_COUNT",
    "ATTR_MIGRATION_NAME",
    "ATTR_MIGRATION_OPERATION",
    "ATTR_MIGRATION_STATE",
    "ATTR_QUERY_FILTER_COUNT",
    "ATTR_REPORT_TYPE",
    "ATTR_SCAN_NAME",
    "ATTR_VALIDATION_SCORE",
]
