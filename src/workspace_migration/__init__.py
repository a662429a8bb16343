"""
workspace_migration - move subscription ownership from users to workspaces.

This library provides:
- Migration engine with batched, per-record error tolerant processing
- Integrity scans and a scored validation service
- Progress tracking and document backups
- An orchestrator with an explicit run state machine
- Monitoring with alerts, trends and reports
- Document stores for SQL (SQLAlchemy async) and in-memory use
- A command line interface and a FastAPI router
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("workspace-migration")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

from workspace_migration.config import MigrationSettings, get_settings
from workspace_migration.engine import MigrationEngine
from workspace_migration.exceptions import (
    DocumentNotFoundError,
    DocumentStoreError,
    DuplicateDocumentError,
    InvalidConfigurationError,
    InvalidStateTransitionError,
    MigrationExecutionError,
    ValidationError,
    WorkspaceMigrationError,
)
from workspace_migration.integrity import IntegrityChecker
from workspace_migration.models import (
    AlertSeverity,
    MigrationOptions,
    MigrationResult,
    MigrationValidation,
    OrchestratorState,
    OverallStatus,
    ReportType,
    ScanResult,
    Severity,
    SubscriptionStatus,
    Trend,
    ValidationIssue,
    ValidationWarning,
    WarningImpact,
    WorkspaceSubscriptionStatus,
    map_subscription_status,
)
from workspace_migration.monitoring import (
    MigrationAlert,
    MigrationMetrics,
    MigrationReport,
    MonitoringService,
    StatusSummary,
    TrendAnalysis,
)
from workspace_migration.orchestrator import (
    DryRunResult,
    IntegritySummary,
    MigrationOrchestrator,
    OrchestrationResult,
    RollbackResult,
)
from workspace_migration.progress import (
    BackupStats,
    MigrationProgress,
    ProgressTracker,
    RollbackManager,
)
from workspace_migration.store import (
    Collection,
    DocumentStore,
    Filter,
    InMemoryDocumentStore,
    Query,
    SQLDocumentStore,
)
from workspace_migration.validation import (
    ValidationReport,
    ValidationService,
    ValidationStats,
    calculate_validation_score,
)

__all__ = [
    "__version__",
    # Configuration
    "MigrationSettings",
    "get_settings",
    # Exceptions
    "WorkspaceMigrationError",
    "DocumentStoreError",
    "DocumentNotFoundError",
    "DuplicateDocumentError",
    "InvalidStateTransitionError",
    "MigrationExecutionError",
    "ValidationError",
    "InvalidConfigurationError",
    # Models
    "SubscriptionStatus",
    "WorkspaceSubscriptionStatus",
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
    # Store
    "Collection",
    "DocumentStore",
    "Filter",
    "Query",
    "InMemoryDocumentStore",
    "SQLDocumentStore",
    # Services
    "MigrationEngine",
    "IntegrityChecker",
    "ValidationService",
    "ValidationReport",
    "ValidationStats",
    "calculate_validation_score",
    "MigrationProgress",
    "ProgressTracker",
    "RollbackManager",
    "BackupStats",
    "MigrationOrchestrator",
    "OrchestrationResult",
    "RollbackResult",
    "DryRunResult",
    "IntegritySummary",
    "MonitoringService",
    "MigrationMetrics",
    "MigrationAlert",
    "MigrationReport",
    "StatusSummary",
    "TrendAnalysis",
]
