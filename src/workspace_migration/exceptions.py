"""Library exceptions for the workspace_migration package."""


class WorkspaceMigrationError(Exception):
    """Base exception for workspace_migration."""

    pass


class DocumentStoreError(WorkspaceMigrationError):
    """Raised when the document store fails to read or write."""

    pass


class DocumentNotFoundError(DocumentStoreError):
    """Raised when a document expected to exist cannot be found."""

    def __init__(self, collection: str, document_id: str) -> None:
        self.collection = collection
        self.document_id = document_id
        super().__init__(f"Document not found in {collection}: {document_id}")


class DuplicateDocumentError(DocumentStoreError):
    """Raised when inserting a document whose id is already taken."""

    def __init__(self, collection: str, document_id: str) -> None:
        self.collection = collection
        self.document_id = document_id
        super().__init__(f"Document already exists in {collection}: {document_id}")


class InvalidStateTransitionError(WorkspaceMigrationError):
    """
    Raised when the orchestrator attempts an invalid state transition.

    The orchestrator lifecycle is a strict state machine; for example
    a run cannot jump from ``idle`` straight to ``postValidating``.
    """

    def __init__(self, current: str, target: str) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Invalid orchestrator transition: {current} -> {target}")


class MigrationExecutionError(WorkspaceMigrationError):
    """Raised when an orchestrated migration or rollback run aborts."""

    def __init__(self, operation: str, message: str) -> None:
        self.operation = operation
        super().__init__(f"{operation} failed: {message}")


class ValidationError(WorkspaceMigrationError):
    """Raised when a validation run cannot complete."""

    pass


class InvalidConfigurationError(WorkspaceMigrationError, ValueError):
    """Raised when migration options or settings fail validation."""

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(f"Invalid value for {field}: {message}")


__all__ = [
    "WorkspaceMigrationError",
    "DocumentStoreError",
    "DocumentNotFoundError",
    "DuplicateDocumentError",
    "InvalidStateTransitionError",
    "MigrationExecutionError",
    "ValidationError",
    "InvalidConfigurationError",
]
