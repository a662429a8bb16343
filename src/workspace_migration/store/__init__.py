"""
Document store abstraction for the migration.

Example:
    >>> from workspace_migration.store import Collection, InMemoryDocumentStore
    >>>
    >>> store = InMemoryDocumentStore()
    >>> await store.insert(Collection.USERS, {"email": "owner@example.com"})
"""

from workspace_migration.store.in_memory import InMemoryDocumentStore
from workspace_migration.store.interface import (
    ID_FIELD,
    Collection,
    Document,
    DocumentStore,
    Filter,
    LookupResult,
    Query,
    apply_query,
    document_id,
    join_documents,
)
from workspace_migration.store.sql import DEFAULT_TABLE_NAME, SQLDocumentStore

__all__ = [
    "ID_FIELD",
    "Collection",
    "Document",
    "DocumentStore",
    "Filter",
    "LookupResult",
    "Query",
    "apply_query",
    "document_id",
    "join_documents",
    "InMemoryDocumentStore",
    "SQLDocumentStore",
    "DEFAULT_TABLE_NAME",
]
