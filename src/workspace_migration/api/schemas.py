"""Request bodies accepted by the migration HTTP API."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from workspace_migration.models import MigrationOptions, ReportType


class ReportRequest(BaseModel):
    type: ReportType = ReportType.ON_DEMAND


class ExecuteMigrationRequest(BaseModel):
    """Options for ``POST execute``. Field names are camelCase on the wire."""

    model_config = ConfigDict(populate_by_name=True)

    dry_run: bool = Field(default=False, alias="dryRun")
    batch_size: int = Field(default=50, ge=1, alias="batchSize")
    enable_backup: bool = Field(default=True, alias="enableBackup")
    enable_progress_tracking: bool = Field(default=True, alias="enableProgressTracking")
    enable_integrity_checks: bool = Field(default=True, alias="enableIntegrityChecks")
    continue_on_error: bool = Field(default=False, alias="continueOnError")

    def to_options(self) -> MigrationOptions:
        return MigrationOptions(
            dry_run=self.dry_run,
            batch_size=self.batch_size,
            enable_backup=self.enable_backup,
            enable_progress_tracking=self.enable_progress_tracking,
            enable_integrity_checks=self.enable_integrity_checks,
            continue_on_error=self.continue_on_error,
        )


__all__ = ["ReportRequest", "ExecuteMigrationRequest"]
