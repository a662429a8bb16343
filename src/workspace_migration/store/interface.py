"""
Document store protocol and query types.

The migration treats persistence as an external collaborator: a document
database holding users, workspaces, subscriptions and plans. This module
defines what that collaborator must provide:

- Point reads (get, get_many)
- Filtered reads and counts (find, count) driven by Query/Filter
- Writes (insert, save, delete); save replaces the whole document
- A lookup join (lookup) pairing each document with the documents of a
  second collection that its reference field points at

Documents are plain dictionaries. The primary key lives under ``_id`` and
is always a string.

Example:
    >>> from workspace_migration.store import Collection, Filter, Query
    >>>
    >>> unassigned = Query(filters=[Filter.exists("workplaceId", False)])
    >>> users = await store.find(Collection.USERS, unassigned)
    >>>
    >>> # Workspaces whose owner does not exist
    >>> pairs = await store.lookup(Collection.WORKPLACES, "ownerId", Collection.USERS)
    >>> dangling = [p.document for p in pairs if not p.matches]
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal, Protocol, runtime_checkable

ID_FIELD = "_id"

Document = dict[str, Any]


class Collection(Enum):
    """Collections the migration reads and writes."""

    USERS = "users"
    WORKPLACES = "workplaces"
    SUBSCRIPTIONS = "subscriptions"
    SUBSCRIPTION_PLANS = "subscription_plans"
    MIGRATION_PROGRESS = "migration_progress"


@dataclass(frozen=True)
class Filter:
    """
    A single filter condition on a document field.

    Attributes:
        field: Name of the document field
        operator: Comparison operator (eq, ne, gt, gte, lt, lte, in,
            not_in, exists)
        value: Value to compare against

    Supported Operators:
        - eq / ne: equal / not equal
        - gt / gte / lt / lte: ordered comparisons; a missing or None field
          never matches
        - in / not_in: membership in a list of values
        - exists: ``True`` matches a field that is present and not None,
          ``False`` matches a field that is absent or None

    Example:
        >>> Filter.eq("status", "active")
        >>> Filter.exists("workplaceId", False)
    """

    field: str
    operator: Literal["eq", "ne", "gt", "gte", "lt", "lte", "in", "not_in", "exists"]
    value: Any

    @classmethod
    def eq(cls, field: str, value: Any) -> Filter:
        """Create an equality filter (field = value)."""
        return cls(field=field, operator="eq", value=value)

    @classmethod
    def ne(cls, field: str, value: Any) -> Filter:
        """Create a not-equal filter (field != value)."""
        return cls(field=field, operator="ne", value=value)

    @classmethod
    def gt(cls, field: str, value: Any) -> Filter:
        """Create a greater-than filter (field > value)."""
        return cls(field=field, operator="gt", value=value)

    @classmethod
    def gte(cls, field: str, value: Any) -> Filter:
        """Create a greater-than-or-equal filter (field >= value)."""
        return cls(field=field, operator="gte", value=value)

    @classmethod
    def lt(cls, field: str, value: Any) -> Filter:
        """Create a less-than filter (field < value)."""
        return cls(field=field, operator="lt", value=value)

    @classmethod
    def lte(cls, field: str, value: Any) -> Filter:
        """Create a less-than-or-equal filter (field <= value)."""
        return cls(field=field, operator="lte", value=value)

    @classmethod
    def in_(cls, field: str, values: list[Any]) -> Filter:
        """Create an "in list" filter (field IN (values))."""
        return cls(field=field, operator="in", value=values)

    @classmethod
    def not_in(cls, field: str, values: list[Any]) -> Filter:
        """Create a "not in list" filter (field NOT IN (values))."""
        return cls(field=field, operator="not_in", value=values)

    @classmethod
    def exists(cls, field: str, present: bool = True) -> Filter:
        """Create a presence filter (field is set and not None, or the reverse)."""
        return cls(field=field, operator="exists", value=present)

    def matches(self, document: Document) -> bool:
        """
        Check whether a document satisfies this filter.

        Args:
            document: The document to check

        Returns:
            True if the document matches
        """
        value = document.get(self.field)

        if self.operator == "exists":
            return (value is not None) is bool(self.value)
        elif self.operator == "eq":
            return bool(value == self.value)
        elif self.operator == "ne":
            return bool(value != self.value)
        elif self.operator == "in":
            return value in self.value
        elif self.operator == "not_in":
            return value not in self.value

        if value is None:
            return False
        if self.operator == "gt":
            return bool(value > self.value)
        elif self.operator == "gte":
            return bool(value >= self.value)
        elif self.operator == "lt":
            return bool(value < self.value)
        elif self.operator == "lte":
            return bool(value <= self.value)
        return False

    def __str__(self) -> str:
        """Human-readable string representation."""
        op_symbols = {
            "eq": "=",
            "ne": "!=",
            "gt": ">",
            "gte": ">=",
            "lt": "<",
            "lte": "<=",
            "in": "IN",
            "not_in": "NOT IN",
            "exists": "EXISTS",
        }
        return f"{self.field} {op_symbols[self.operator]} {self.value!r}"


@dataclass
class Query:
    """
    Query for document stores.

    All filters are combined with AND logic.

    Attributes:
        filters: List of Filter conditions (combined with AND)
        order_by: Field name to order results by
        order_direction: Sort direction ('asc' or 'desc')
        limit: Maximum number of documents to return
        offset: Number of documents to skip
    """

    filters: list[Filter] = field(default_factory=list)
    order_by: str | None = None
    order_direction: Literal["asc", "desc"] = "asc"
    limit: int | None = None
    offset: int = 0

    def with_filter(self, filter_: Filter) -> Query:
        """Create a new Query with an additional filter."""
        return Query(
            filters=[*self.filters, filter_],
            order_by=self.order_by,
            order_direction=self.order_direction,
            limit=self.limit,
            offset=self.offset,
        )

    def matches(self, document: Document) -> bool:
        """True if the document satisfies every filter."""
        return all(f.matches(document) for f in self.filters)


@dataclass(frozen=True)
class LookupResult:
    """
    One row of a lookup join.

    Attributes:
        document: Document from the local collection
        matches: Documents of the foreign collection referenced by it
    """

    document: Document
    matches: list[Document]


def document_id(document: Document) -> str:
    """Return the string id of a document."""
    return str(document[ID_FIELD])


def apply_query(documents: list[Document], query: Query | None) -> list[Document]:
    """
    Filter, order and paginate documents in application code.

    Documents missing the ``order_by`` field sort first.
    """
    if query is None:
        return list(documents)

    results = [d for d in documents if query.matches(d)]

    if query.order_by:
        key = query.order_by
        results.sort(
            key=lambda d: (d.get(key) is not None, d.get(key) if d.get(key) is not None else 0),
            reverse=query.order_direction == "desc",
        )

    if query.offset:
        results = results[query.offset :]
    if query.limit is not None:
        results = results[: query.limit]
    return results


def join_documents(
    documents: list[Document],
    foreign_documents: list[Document],
    local_field: str,
    foreign_field: str = ID_FIELD,
) -> list[LookupResult]:
    """
    Pair each document with the foreign documents its field references.

    A list-valued local field matches every foreign document whose
    ``foreign_field`` is an element of the list.
    """
    index: dict[str, list[Document]] = {}
    for foreign in foreign_documents:
        key = foreign.get(foreign_field)
        if key is not None:
            index.setdefault(str(key), []).append(foreign)

    results: list[LookupResult] = []
    for document in documents:
        reference = document.get(local_field)
        if reference is None:
            refs: list[Any] = []
        elif isinstance(reference, list):
            refs = reference
        else:
            refs = [reference]
        matched = [m for ref in refs if ref is not None for m in index.get(str(ref), [])]
        results.append(LookupResult(document=document, matches=matched))
    return results


@runtime_checkable
class DocumentStore(Protocol):
    """
    Protocol for the document database the migration runs against.

    Implementations return copies: mutating a returned document never
    changes stored state until it is passed back to ``save``.

    Implementations:
    - InMemoryDocumentStore: dictionaries guarded by an asyncio lock
    - SQLDocumentStore: JSON documents in a SQL table via SQLAlchemy
    """

    async def get(self, collection: Collection, document_id: str) -> Document | None:
        """
        Get a document by id.

        Args:
            collection: Collection to read
            document_id: Value of the document's ``_id``

        Returns:
            The document, or None if it does not exist
        """
        ...

    async def get_many(self, collection: Collection, document_ids: list[str]) -> list[Document]:
        """Get every existing document among ``document_ids`` (missing ids are skipped)."""
        ...

    async def find(self, collection: Collection, query: Query | None = None) -> list[Document]:
        """Get all documents matching ``query`` (all documents when None)."""
        ...

    async def count(self, collection: Collection, query: Query | None = None) -> int:
        """Count documents matching ``query``."""
        ...

    async def insert(self, collection: Collection, document: Document) -> Document:
        """
        Insert a new document.

        An ``_id`` is generated when the document has none.

        Returns:
            The stored document, including its ``_id``

        Raises:
            DuplicateDocumentError: If a document with the same id exists
        """
        ...

    async def save(self, collection: Collection, document: Document) -> None:
        """
        Upsert a document by its ``_id``, replacing any stored version.

        Raises:
            KeyError: If the document has no ``_id``
        """
        ...

    async def delete(self, collection: Collection, document_id: str) -> bool:
        """Delete a document. Returns True if it existed."""
        ...

    async def lookup(
        self,
        collection: Collection,
        local_field: str,
        foreign_collection: Collection,
        query: Query | None = None,
        foreign_field: str = ID_FIELD,
    ) -> list[LookupResult]:
        """
        Join documents of ``collection`` to ``foreign_collection``.

        Args:
            collection: Local collection
            local_field: Field on local documents holding the reference
            foreign_collection: Collection the reference points into
            query: Optional filter applied to local documents first
            foreign_field: Field on foreign documents to match (default ``_id``)

        Returns:
            One LookupResult per local document, in local order
        """
        ...


__all__ = [
    "ID_FIELD",
    "Document",
    "Collection",
    "Filter",
    "Query",
    "LookupResult",
    "DocumentStore",
    "document_id",
    "apply_query",
    "join_documents",
]
