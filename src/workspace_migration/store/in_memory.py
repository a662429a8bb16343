"""
In-memory implementation of the document store.

Provides a simple, fast store for testing, dry-run rehearsals and
development. All data is lost when the process terminates.
"""

import asyncio
import copy
from uuid import uuid4

from workspace_migration.exceptions import DuplicateDocumentError
from workspace_migration.observability import Tracer, create_tracer
from workspace_migration.observability.attributes import (
    ATTR_COLLECTION,
    ATTR_DB_SYSTEM,
    ATTR_DOCUMENT_COUNT,
    ATTR_DOCUMENT_ID,
    ATTR_QUERY_FILTER_COUNT,
)
from workspace_migration.store.interface import (
    ID_FIELD,
    Collection,
    Document,
    LookupResult,
    Query,
    apply_query,
    join_documents,
)


class InMemoryDocumentStore:
    """
    In-memory implementation of DocumentStore.

    Documents live in one dictionary per collection, keyed by ``_id``.
    Reads and writes deep-copy documents so callers never share mutable
    state with the store. Access is serialised with an asyncio.Lock.

    Example:
        >>> store = InMemoryDocumentStore()
        >>> user = await store.insert(Collection.USERS, {"email": "a@example.com"})
        >>> await store.get(Collection.USERS, user["_id"])

    Note:
        - Use `clear()` for test teardown
        - Query performance is O(n) - acceptable for testing but not production
    """

    def __init__(
        self,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the in-memory store.

        Args:
            tracer: Optional tracer for tracing (if not provided, one will be created)
            enable_tracing: Whether to enable OpenTelemetry tracing (default True)
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._collections: dict[Collection, dict[str, Document]] = {c: {} for c in Collection}
        self._lock = asyncio.Lock()

    async def get(self, collection: Collection, document_id: str) -> Document | None:
        with self._tracer.span(
            "workspace_migration.store.get",
            {
                ATTR_DB_SYSTEM: "memory",
                ATTR_COLLECTION: collection.value,
                ATTR_DOCUMENT_ID: str(document_id),
            },
        ):
            async with self._lock:
                document = self._collections[collection].get(str(document_id))
                return copy.deepcopy(document) if document is not None else None

    async def get_many(self, collection: Collection, document_ids: list[str]) -> list[Document]:
        with self._tracer.span(
            "workspace_migration.store.get_many",
            {
                ATTR_DB_SYSTEM: "memory",
                ATTR_COLLECTION: collection.value,
                ATTR_DOCUMENT_COUNT: len(document_ids),
            },
        ):
            async with self._lock:
                documents = self._collections[collection]
                return [
                    copy.deepcopy(documents[str(id_)])
                    for id_ in document_ids
                    if str(id_) in documents
                ]

    async def find(self, collection: Collection, query: Query | None = None) -> list[Document]:
        with self._tracer.span(
            "workspace_migration.store.find",
            {
                ATTR_DB_SYSTEM: "memory",
                ATTR_COLLECTION: collection.value,
                ATTR_QUERY_FILTER_COUNT: len(query.filters) if query else 0,
            },
        ):
            async with self._lock:
                documents = list(self._collections[collection].values())
                return copy.deepcopy(apply_query(documents, query))

    async def count(self, collection: Collection, query: Query | None = None) -> int:
        with self._tracer.span(
            "workspace_migration.store.count",
            {
                ATTR_DB_SYSTEM: "memory",
                ATTR_COLLECTION: collection.value,
                ATTR_QUERY_FILTER_COUNT: len(query.filters) if query else 0,
            },
        ):
            async with self._lock:
                documents = self._collections[collection].values()
                if query is None:
                    return len(documents)
                return sum(1 for d in documents if query.matches(d))

    async def insert(self, collection: Collection, document: Document) -> Document:
        stored = copy.deepcopy(document)
        stored.setdefault(ID_FIELD, str(uuid4()))
        stored[ID_FIELD] = str(stored[ID_FIELD])
        with self._tracer.span(
            "workspace_migration.store.insert",
            {
                ATTR_DB_SYSTEM: "memory",
                ATTR_COLLECTION: collection.value,
                ATTR_DOCUMENT_ID: stored[ID_FIELD],
            },
        ):
            async with self._lock:
                documents = self._collections[collection]
                if stored[ID_FIELD] in documents:
                    raise DuplicateDocumentError(collection.value, stored[ID_FIELD])
                documents[stored[ID_FIELD]] = stored
                return copy.deepcopy(stored)

    async def save(self, collection: Collection, document: Document) -> None:
        stored = copy.deepcopy(document)
        stored[ID_FIELD] = str(stored[ID_FIELD])
        with self._tracer.span(
            "workspace_migration.store.save",
            {
                ATTR_DB_SYSTEM: "memory",
                ATTR_COLLECTION: collection.value,
                ATTR_DOCUMENT_ID: stored[ID_FIELD],
            },
        ):
            async with self._lock:
                self._collections[collection][stored[ID_FIELD]] = stored

    async def delete(self, collection: Collection, document_id: str) -> bool:
        with self._tracer.span(
            "workspace_migration.store.delete",
            {
                ATTR_DB_SYSTEM: "memory",
                ATTR_COLLECTION: collection.value,
                ATTR_DOCUMENT_ID: str(document_id),
            },
        ):
            async with self._lock:
                return self._collections[collection].pop(str(document_id), None) is not None

    async def lookup(
        self,
        collection: Collection,
        local_field: str,
        foreign_collection: Collection,
        query: Query | None = None,
        foreign_field: str = ID_FIELD,
    ) -> list[LookupResult]:
        with self._tracer.span(
            "workspace_migration.store.lookup",
            {
                ATTR_DB_SYSTEM: "memory",
                ATTR_COLLECTION: collection.value,
            },
        ):
            async with self._lock:
                local = apply_query(list(self._collections[collection].values()), query)
                foreign = list(self._collections[foreign_collection].values())
                return join_documents(
                    copy.deepcopy(local),
                    copy.deepcopy(foreign),
                    local_field,
                    foreign_field,
                )

    async def clear(self) -> None:
        """Remove every document from every collection."""
        async with self._lock:
            for documents in self._collections.values():
                documents.clear()

    def __len__(self) -> int:
        """Return the total number of documents across collections."""
        return sum(len(documents) for documents in self._collections.values())
