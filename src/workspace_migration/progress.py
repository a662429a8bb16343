"""
Progress tracking and document backups for migration runs.

- MigrationProgress: counters and per-item errors for one run
- ProgressTracker: persists a single progress document per migration name
- RollbackManager: keeps pre-modification snapshots of documents so a
  run's writes can be restored one document at a time

Progress is informational. A run that was interrupted can be inspected
with ``load_progress()``; re-running the migration is naturally
idempotent because it only selects users that have no workspace yet.

Usage:
    >>> tracker = ProgressTracker(store, "workspace-subscription-migration")
    >>> await tracker.save_progress(MigrationProgress(total_items=10))
    >>> progress = await tracker.load_progress()
    >>> await tracker.cleanup()
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from workspace_migration.models import utc_now
from workspace_migration.observability import Tracer, create_tracer
from workspace_migration.observability.attributes import (
    ATTR_COLLECTION,
    ATTR_DOCUMENT_ID,
    ATTR_MIGRATION_NAME,
)
from workspace_migration.store import ID_FIELD, Collection, Document, DocumentStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressError:
    """A failure recorded against a single item."""

    item_id: str
    error: str
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {"itemId": self.item_id, "error": self.error, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProgressError:
        timestamp = data.get("timestamp")
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)
        return cls(
            item_id=str(data.get("itemId", "")),
            error=str(data.get("error", "")),
            timestamp=timestamp or utc_now(),
        )


@dataclass
class MigrationProgress:
    """
    Progress counters for one migration run.

    Attributes:
        total_items: Items the run intends to process
        processed_items: Items attempted so far
        successful_items: Items processed without error
        failed_items: Items that recorded an error
        current_batch: 1-based number of the batch in flight
        total_batches: Number of batches planned
        errors: Per-item failures
        last_updated: When the record was last saved (set by the tracker)
    """

    total_items: int = 0
    processed_items: int = 0
    successful_items: int = 0
    failed_items: int = 0
    current_batch: int = 0
    total_batches: int = 0
    errors: list[ProgressError] = field(default_factory=list)
    last_updated: datetime | None = None

    @property
    def percent_complete(self) -> float:
        """Percentage of items processed (0.0 when nothing is planned)."""
        if self.total_items <= 0:
            return 0.0
        return (self.processed_items / self.total_items) * 100

    def record_error(self, item_id: str, error: str) -> None:
        """Record a failed item."""
        self.errors.append(ProgressError(item_id=item_id, error=error))

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalItems": self.total_items,
            "processedItems": self.processed_items,
            "successfulItems": self.successful_items,
            "failedItems": self.failed_items,
            "currentBatch": self.current_batch,
            "totalBatches": self.total_batches,
            "errors": [e.to_dict() for e in self.errors],
            "lastUpdated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MigrationProgress:
        last_updated = data.get("lastUpdated")
        if isinstance(last_updated, str):
            last_updated = datetime.fromisoformat(last_updated)
        return cls(
            total_items=int(data.get("totalItems", 0)),
            processed_items=int(data.get("processedItems", 0)),
            successful_items=int(data.get("successfulItems", 0)),
            failed_items=int(data.get("failedItems", 0)),
            current_batch=int(data.get("currentBatch", 0)),
            total_batches=int(data.get("totalBatches", 0)),
            errors=[ProgressError.from_dict(e) for e in data.get("errors", [])],
            last_updated=last_updated,
        )


class ProgressTracker:
    """
    Persists migration progress as one document keyed by migration name.

    Every save overwrites the stored record wholesale.

    Args:
        store: Document store holding the ``migration_progress`` collection
        migration_name: Key of the progress document
        tracer: Optional custom Tracer instance
        enable_tracing: Whether to enable OpenTelemetry tracing
    """

    def __init__(
        self,
        store: DocumentStore,
        migration_name: str,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._store = store
        self._migration_name = migration_name

    @property
    def migration_name(self) -> str:
        return self._migration_name

    async def save_progress(self, progress: MigrationProgress) -> None:
        """
        Save progress, replacing any previously stored record.

        ``progress.last_updated`` is stamped with the save time.
        """
        with self._tracer.span(
            "workspace_migration.progress.save",
            {ATTR_MIGRATION_NAME: self._migration_name},
        ):
            progress.last_updated = utc_now()
            document: Document = {
                ID_FIELD: self._migration_name,
                "migrationName": self._migration_name,
                **progress.to_dict(),
            }
            await self._store.save(Collection.MIGRATION_PROGRESS, document)
            logger.debug(
                "Saved progress for %s: %d/%d items",
                self._migration_name,
                progress.processed_items,
                progress.total_items,
                extra={"migration_name": self._migration_name},
            )

    async def load_progress(self) -> MigrationProgress | None:
        """Load the stored progress record, or None if there is none."""
        with self._tracer.span(
            "workspace_migration.progress.load",
            {ATTR_MIGRATION_NAME: self._migration_name},
        ):
            document = await self._store.get(Collection.MIGRATION_PROGRESS, self._migration_name)
            if document is None:
                logger.debug("No stored progress for %s", self._migration_name)
                return None
            return MigrationProgress.from_dict(document)

    async def cleanup(self) -> bool:
        """Delete the stored progress record. Returns True if one existed."""
        with self._tracer.span(
            "workspace_migration.progress.cleanup",
            {ATTR_MIGRATION_NAME: self._migration_name},
        ):
            deleted = await self._store.delete(
                Collection.MIGRATION_PROGRESS, self._migration_name
            )
            if deleted:
                logger.info("Cleaned up progress for %s", self._migration_name)
            return deleted


@dataclass(frozen=True)
class DocumentBackup:
    """Snapshot of a document taken before the migration changed it."""

    collection: Collection
    document_id: str
    original_data: Document
    backed_up_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class BackupStats:
    """Summary of the backups held by a RollbackManager."""

    total_backups: int
    backups_by_collection: dict[str, int]

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalBackups": self.total_backups,
            "backupsByCollection": dict(self.backups_by_collection),
        }


class RollbackManager:
    """
    Keeps pre-modification snapshots of documents.

    Only the first snapshot of a document is kept, so restoring always
    returns the document to its state before the run touched it.
    Snapshots live in process memory.

    Example:
        >>> manager = RollbackManager(store)
        >>> await manager.backup_document(Collection.USERS, user)
        >>> await manager.restore_document(Collection.USERS, user["_id"])
        True
    """

    def __init__(
        self,
        store: DocumentStore,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._store = store
        self._backups: dict[tuple[Collection, str], DocumentBackup] = {}

    async def backup_document(self, collection: Collection, document: Document) -> None:
        """Snapshot a document unless it has already been backed up."""
        key = (collection, str(document[ID_FIELD]))
        if key in self._backups:
            return
        self._backups[key] = DocumentBackup(
            collection=collection,
            document_id=key[1],
            original_data=copy.deepcopy(document),
        )

    def has_backup(self, collection: Collection, document_id: str) -> bool:
        return (collection, str(document_id)) in self._backups

    async def restore_document(self, collection: Collection, document_id: str) -> bool:
        """
        Write a document's snapshot back to the store.

        Returns:
            True if the document was restored, False if there was no
            backup or the write failed
        """
        key = (collection, str(document_id))
        with self._tracer.span(
            "workspace_migration.rollback.restore_document",
            {ATTR_COLLECTION: collection.value, ATTR_DOCUMENT_ID: key[1]},
        ):
            backup = self._backups.get(key)
            if backup is None:
                logger.warning("No backup found for %s:%s", collection.value, key[1])
                return False

            try:
                await self._store.save(collection, copy.deepcopy(backup.original_data))
            except Exception:
                logger.exception("Failed to restore document %s:%s", collection.value, key[1])
                return False

            logger.info("Restored document %s:%s from backup", collection.value, key[1])
            return True

    def get_backup_stats(self) -> BackupStats:
        by_collection: dict[str, int] = {}
        for backup in self._backups.values():
            name = backup.collection.value
            by_collection[name] = by_collection.get(name, 0) + 1
        return BackupStats(
            total_backups=len(self._backups),
            backups_by_collection=by_collection,
        )

    def clear_backups(self) -> None:
        self._backups.clear()


__all__ = [
    "ProgressError",
    "MigrationProgress",
    "ProgressTracker",
    "DocumentBackup",
    "BackupStats",
    "RollbackManager",
]
