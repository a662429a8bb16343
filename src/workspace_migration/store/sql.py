"""
SQL implementation of the document store.

Stores every document as JSON text in a single table, keyed by
``(collection, id)``. Works with any SQLAlchemy async dialect that
supports ``INSERT ... ON CONFLICT`` (SQLite 3.24+ via aiosqlite,
PostgreSQL via asyncpg).

Filters and lookup joins are evaluated in application code after the
relevant collection is fetched, which keeps the SQL portable across
dialects.

Schema:
    CREATE TABLE migration_documents (
        collection VARCHAR(64) NOT NULL,
        id VARCHAR(128) NOT NULL,
        body TEXT NOT NULL,
        PRIMARY KEY (collection, id)
    )

Example:
    >>> from sqlalchemy.ext.asyncio import create_async_engine
    >>>
    >>> engine = create_async_engine("sqlite+aiosqlite:///workspace_migration.db")
    >>> store = SQLDocumentStore(engine)
    >>> await store.initialize()
    >>> await store.insert(Collection.USERS, {"email": "owner@example.com"})
"""

from __future__ import annotations

import logging
from typing import Any
from uuid import uuid4

from sqlalchemy import bindparam, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from workspace_migration.exceptions import DuplicateDocumentError
from workspace_migration.observability import Tracer, create_tracer
from workspace_migration.observability.attributes import (
    ATTR_COLLECTION,
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_DOCUMENT_COUNT,
    ATTR_DOCUMENT_ID,
    ATTR_QUERY_FILTER_COUNT,
)
from workspace_migration.serialization import json_dumps, json_loads
from workspace_migration.store._connection import execute_with_connection
from workspace_migration.store.interface import (
    ID_FIELD,
    Collection,
    Document,
    LookupResult,
    Query,
    apply_query,
    join_documents,
)

logger = logging.getLogger(__name__)

DEFAULT_TABLE_NAME = "migration_documents"


class SQLDocumentStore:
    """
    SQLAlchemy-backed implementation of DocumentStore.

    Datetimes inside documents are written as ISO 8601 strings and read
    back as strings.

    Args:
        conn: AsyncEngine or AsyncConnection
        table_name: Name of the documents table (default "migration_documents")
        tracer: Optional custom Tracer instance
        enable_tracing: Whether to enable OpenTelemetry tracing
    """

    def __init__(
        self,
        conn: AsyncConnection | AsyncEngine,
        table_name: str = DEFAULT_TABLE_NAME,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._conn = conn
        self._table_name = table_name

    @property
    def table_name(self) -> str:
        return self._table_name

    def _span_attributes(self, operation: str, collection: Collection) -> dict[str, Any]:
        return {
            ATTR_DB_SYSTEM: self._conn.dialect.name,
            ATTR_DB_OPERATION: operation,
            ATTR_COLLECTION: collection.value,
        }

    async def initialize(self) -> None:
        """Create the documents table if it does not exist."""
        query = text(f"""
            CREATE TABLE IF NOT EXISTS {self._table_name} (
                collection VARCHAR(64) NOT NULL,
                id VARCHAR(128) NOT NULL,
                body TEXT NOT NULL,
                PRIMARY KEY (collection, id)
            )
        """)
        async with execute_with_connection(self._conn, transactional=True) as conn:
            await conn.execute(query)
        logger.debug("Ensured document table %s exists", self._table_name)

    async def get(self, collection: Collection, document_id: str) -> Document | None:
        attributes = self._span_attributes("get", collection)
        attributes[ATTR_DOCUMENT_ID] = str(document_id)
        with self._tracer.span("workspace_migration.store.get", attributes):
            query = text(f"""
                SELECT body FROM {self._table_name}
                WHERE collection = :collection AND id = :id
            """)
            async with execute_with_connection(self._conn, transactional=False) as conn:
                result = await conn.execute(
                    query, {"collection": collection.value, "id": str(document_id)}
                )
                row = result.fetchone()

            if row is None:
                return None
            return self._row_to_document(row)

    async def get_many(self, collection: Collection, document_ids: list[str]) -> list[Document]:
        attributes = self._span_attributes("get_many", collection)
        attributes[ATTR_DOCUMENT_COUNT] = len(document_ids)
        with self._tracer.span("workspace_migration.store.get_many", attributes):
            if not document_ids:
                return []

            query = text(f"""
                SELECT id, body FROM {self._table_name}
                WHERE collection = :collection AND id IN :ids
            """).bindparams(bindparam("ids", expanding=True))
            async with execute_with_connection(self._conn, transactional=False) as conn:
                result = await conn.execute(
                    query,
                    {"collection": collection.value, "ids": [str(i) for i in document_ids]},
                )
                rows = result.fetchall()

            by_id = {row[0]: self._row_to_document((row[1],)) for row in rows}
            return [by_id[str(i)] for i in document_ids if str(i) in by_id]

    async def find(self, collection: Collection, query: Query | None = None) -> list[Document]:
        attributes = self._span_attributes("find", collection)
        attributes[ATTR_QUERY_FILTER_COUNT] = len(query.filters) if query else 0
        with self._tracer.span("workspace_migration.store.find", attributes):
            documents = await self._fetch_collection(collection)
            return apply_query(documents, query)

    async def count(self, collection: Collection, query: Query | None = None) -> int:
        attributes = self._span_attributes("count", collection)
        attributes[ATTR_QUERY_FILTER_COUNT] = len(query.filters) if query else 0
        with self._tracer.span("workspace_migration.store.count", attributes):
            if query is None or not query.filters:
                sql = text(f"""
                    SELECT COUNT(*) FROM {self._table_name}
                    WHERE collection = :collection
                """)
                async with execute_with_connection(self._conn, transactional=False) as conn:
                    result = await conn.execute(sql, {"collection": collection.value})
                    return int(result.scalar() or 0)

            documents = await self._fetch_collection(collection)
            return sum(1 for d in documents if query.matches(d))

    async def insert(self, collection: Collection, document: Document) -> Document:
        stored = dict(document)
        stored[ID_FIELD] = str(stored.get(ID_FIELD) or uuid4())
        attributes = self._span_attributes("insert", collection)
        attributes[ATTR_DOCUMENT_ID] = stored[ID_FIELD]
        with self._tracer.span("workspace_migration.store.insert", attributes):
            query = text(f"""
                INSERT INTO {self._table_name} (collection, id, body)
                VALUES (:collection, :id, :body)
            """)
            body = json_dumps(stored)
            try:
                async with execute_with_connection(self._conn, transactional=True) as conn:
                    await conn.execute(
                        query,
                        {"collection": collection.value, "id": stored[ID_FIELD], "body": body},
                    )
            except IntegrityError as e:
                raise DuplicateDocumentError(collection.value, stored[ID_FIELD]) from e

            return json_loads(body)

    async def save(self, collection: Collection, document: Document) -> None:
        document_id = str(document[ID_FIELD])
        attributes = self._span_attributes("save", collection)
        attributes[ATTR_DOCUMENT_ID] = document_id
        with self._tracer.span("workspace_migration.store.save", attributes):
            query = text(f"""
                INSERT INTO {self._table_name} (collection, id, body)
                VALUES (:collection, :id, :body)
                ON CONFLICT (collection, id) DO UPDATE SET body = excluded.body
            """)
            stored = {**document, ID_FIELD: document_id}
            async with execute_with_connection(self._conn, transactional=True) as conn:
                await conn.execute(
                    query,
                    {"collection": collection.value, "id": document_id, "body": json_dumps(stored)},
                )

    async def delete(self, collection: Collection, document_id: str) -> bool:
        attributes = self._span_attributes("delete", collection)
        attributes[ATTR_DOCUMENT_ID] = str(document_id)
        with self._tracer.span("workspace_migration.store.delete", attributes):
            query = text(f"""
                DELETE FROM {self._table_name}
                WHERE collection = :collection AND id = :id
            """)
            async with execute_with_connection(self._conn, transactional=True) as conn:
                result = await conn.execute(
                    query, {"collection": collection.value, "id": str(document_id)}
                )
                deleted = bool(result.rowcount)
            return deleted

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
            self._span_attributes("lookup", collection),
        ):
            local = apply_query(await self._fetch_collection(collection), query)
            foreign = await self._fetch_collection(foreign_collection)
            return join_documents(local, foreign, local_field, foreign_field)

    async def _fetch_collection(self, collection: Collection) -> list[Document]:
        query = text(f"""
            SELECT body FROM {self._table_name}
            WHERE collection = :collection
            ORDER BY id
        """)
        async with execute_with_connection(self._conn, transactional=False) as conn:
            result = await conn.execute(query, {"collection": collection.value})
            rows = result.fetchall()
        return [self._row_to_document(row) for row in rows]

    def _row_to_document(self, row: Any) -> Document:
        document: Document = json_loads(row[0])
        return document
