"""
HTTP API for the workspace subscription migration.

Example:
    >>> from workspace_migration.api import create_app
    >>> app = create_app()
"""

from workspace_migration.api.app import API_PREFIX, create_app
from workspace_migration.api.routes import MigrationServices, get_services, router
from workspace_migration.api.schemas import ExecuteMigrationRequest, ReportRequest

__all__ = [
    "API_PREFIX",
    "create_app",
    "router",
    "MigrationServices",
    "get_services",
    "ReportRequest",
    "ExecuteMigrationRequest",
]
