"""
Unit tests for the document stores.

Tests cover:
- Filter and Query semantics (presence, comparisons, ordering, paging)
- join_documents with scalar and list references
- InMemoryDocumentStore CRUD, copies and lookups
- SQLDocumentStore against SQLite (marked ``sqlite``)
"""

from datetime import UTC, datetime

import pytest

from workspace_migration.exceptions import DuplicateDocumentError
from workspace_migration.observability import MockTracer
from workspace_migration.store import (
    Collection,
    DocumentStore,
    Filter,
    InMemoryDocumentStore,
    Query,
    SQLDocumentStore,
    join_documents,
)


class TestFilter:
    """Tests for Filter.matches."""

    def test_exists_treats_none_as_absent(self) -> None:
        present = Filter.exists("workplaceId", True)
        absent = Filter.exists("workplaceId", False)

        assert present.matches({"workplaceId": "w1"})
        assert not present.matches({"workplaceId": None})
        assert absent.matches({"workplaceId": None})
        assert absent.matches({})

    def test_equality_and_membership(self) -> None:
        assert Filter.eq("status", "active").matches({"status": "active"})
        assert Filter.ne("status", "active").matches({"status": "trial"})
        assert Filter.in_("tier", ["pro", "basic"]).matches({"tier": "pro"})
        assert Filter.not_in("tier", ["pro"]).matches({"tier": "basic"})

    def test_ordered_comparison_skips_missing_values(self) -> None:
        assert Filter.gt("count", 1).matches({"count": 2})
        assert not Filter.gt("count", 1).matches({})
        assert not Filter.lte("count", 1).matches({"count": None})


class TestQuery:
    def test_filters_are_combined_with_and(self) -> None:
        query = Query(filters=[Filter.eq("a", 1)]).with_filter(Filter.eq("b", 2))
        assert query.matches({"a": 1, "b": 2})
        assert not query.matches({"a": 1, "b": 3})


class TestJoinDocuments:
    def test_scalar_and_list_references(self) -> None:
        users = [{"_id": "u1"}, {"_id": "u2"}]
        workspaces = [
            {"_id": "w1", "ownerId": "u1"},
            {"_id": "w2", "teamMembers": ["u1", "u2", "u9"]},
            {"_id": "w3"},
        ]

        owners = join_documents(workspaces, users, "ownerId")
        members = join_documents(workspaces, users, "teamMembers")

        assert [len(r.matches) for r in owners] == [1, 0, 0]
        assert [len(r.matches) for r in members] == [0, 2, 0]


class TestInMemoryDocumentStore:
    """Tests for InMemoryDocumentStore."""

    def test_satisfies_protocol(self, store: InMemoryDocumentStore) -> None:
        assert isinstance(store, DocumentStore)

    @pytest.mark.asyncio
    async def test_insert_assigns_string_id(self, store: InMemoryDocumentStore) -> None:
        created = await store.insert(Collection.WORKPLACES, {"name": "Corner Pharmacy"})

        assert isinstance(created["_id"], str)
        assert await store.get(Collection.WORKPLACES, created["_id"]) == created

    @pytest.mark.asyncio
    async def test_insert_rejects_duplicate_id(self, store: InMemoryDocumentStore) -> None:
        await store.insert(Collection.USERS, {"_id": "u1"})

        with pytest.raises(DuplicateDocumentError) as exc_info:
            await store.insert(Collection.USERS, {"_id": "u1"})

        assert exc_info.value.collection == "users"
        assert exc_info.value.document_id == "u1"

    @pytest.mark.asyncio
    async def test_returned_documents_are_copies(self, store: InMemoryDocumentStore) -> None:
        await store.insert(Collection.USERS, {"_id": "u1", "tags": ["a"]})

        fetched = await store.get(Collection.USERS, "u1")
        assert fetched is not None
        fetched["tags"].append("b")

        assert (await store.get(Collection.USERS, "u1"))["tags"] == ["a"]

    @pytest.mark.asyncio
    async def test_save_upserts(self, store: InMemoryDocumentStore) -> None:
        await store.save(Collection.USERS, {"_id": "u1", "email": "a@example.com"})
        await store.save(Collection.USERS, {"_id": "u1", "email": "b@example.com"})

        assert await store.count(Collection.USERS) == 1
        assert (await store.get(Collection.USERS, "u1"))["email"] == "b@example.com"

    @pytest.mark.asyncio
    async def test_delete(self, store: InMemoryDocumentStore) -> None:
        await store.insert(Collection.USERS, {"_id": "u1"})

        assert await store.delete(Collection.USERS, "u1") is True
        assert await store.delete(Collection.USERS, "u1") is False
        assert await store.get(Collection.USERS, "u1") is None

    @pytest.mark.asyncio
    async def test_get_many_preserves_requested_order(
        self, store: InMemoryDocumentStore
    ) -> None:
        for user_id in ("u1", "u2", "u3"):
            await store.insert(Collection.USERS, {"_id": user_id})

        documents = await store.get_many(Collection.USERS, ["u3", "missing", "u1"])

        assert [d["_id"] for d in documents] == ["u3", "u1"]

    @pytest.mark.asyncio
    async def test_find_and_count_with_query(self, store: InMemoryDocumentStore) -> None:
        await store.insert(Collection.USERS, {"_id": "u1", "workplaceId": "w1"})
        await store.insert(Collection.USERS, {"_id": "u2"})
        await store.insert(Collection.USERS, {"_id": "u3", "workplaceId": None})
        query = Query(filters=[Filter.exists("workplaceId", False)])

        found = await store.find(Collection.USERS, query)

        assert sorted(d["_id"] for d in found) == ["u2", "u3"]
        assert await store.count(Collection.USERS, query) == 2
        assert await store.count(Collection.USERS) == 3

    @pytest.mark.asyncio
    async def test_find_orders_and_limits(self, store: InMemoryDocumentStore) -> None:
        for user_id, rank in (("u1", 3), ("u2", 1), ("u3", 2)):
            await store.insert(Collection.USERS, {"_id": user_id, "rank": rank})

        found = await store.find(
            Collection.USERS, Query(order_by="rank", order_direction="desc", limit=2)
        )

        assert [d["_id"] for d in found] == ["u1", "u3"]

    @pytest.mark.asyncio
    async def test_lookup(self, store: InMemoryDocumentStore) -> None:
        await store.insert(Collection.WORKPLACES, {"_id": "w1"})
        await store.insert(Collection.USERS, {"_id": "u1", "workplaceId": "w1"})
        await store.insert(Collection.USERS, {"_id": "u2", "workplaceId": "gone"})

        results = await store.lookup(Collection.USERS, "workplaceId", Collection.WORKPLACES)

        by_user = {r.document["_id"]: r.matches for r in results}
        assert [w["_id"] for w in by_user["u1"]] == ["w1"]
        assert by_user["u2"] == []

    @pytest.mark.asyncio
    async def test_clear_and_len(self, store: InMemoryDocumentStore) -> None:
        await store.insert(Collection.USERS, {"_id": "u1"})
        await store.insert(Collection.WORKPLACES, {"_id": "w1"})
        assert len(store) == 2

        await store.clear()

        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_records_spans(self) -> None:
        tracer = MockTracer()
        store = InMemoryDocumentStore(tracer=tracer)

        await store.insert(Collection.USERS, {"_id": "u1"})
        await store.get(Collection.USERS, "u1")

        assert tracer.span_names == [
            "workspace_migration.store.insert",
            "workspace_migration.store.get",
        ]


@pytest.mark.sqlite
class TestSQLDocumentStore:
    """Tests for SQLDocumentStore against SQLite."""

    @pytest.mark.asyncio
    async def test_insert_get_round_trip(self, sqlite_store: SQLDocumentStore) -> None:
        created = await sqlite_store.insert(
            Collection.USERS, {"email": "a@example.com", "licenseStatus": "approved"}
        )

        fetched = await sqlite_store.get(Collection.USERS, created["_id"])

        assert fetched == created
        assert fetched["email"] == "a@example.com"

    @pytest.mark.asyncio
    async def test_datetimes_are_stored_as_iso_strings(
        self, sqlite_store: SQLDocumentStore
    ) -> None:
        moment = datetime(2024, 5, 1, 12, 30, tzinfo=UTC)
        await sqlite_store.insert(Collection.USERS, {"_id": "u1", "updatedAt": moment})

        fetched = await sqlite_store.get(Collection.USERS, "u1")

        assert fetched["updatedAt"] == moment.isoformat()

    @pytest.mark.asyncio
    async def test_duplicate_insert_raises(self, sqlite_store: SQLDocumentStore) -> None:
        await sqlite_store.insert(Collection.USERS, {"_id": "u1"})

        with pytest.raises(DuplicateDocumentError):
            await sqlite_store.insert(Collection.USERS, {"_id": "u1"})

    @pytest.mark.asyncio
    async def test_collections_are_isolated(self, sqlite_store: SQLDocumentStore) -> None:
        await sqlite_store.insert(Collection.USERS, {"_id": "same"})
        await sqlite_store.insert(Collection.WORKPLACES, {"_id": "same"})

        assert await sqlite_store.count(Collection.USERS) == 1
        assert await sqlite_store.count(Collection.WORKPLACES) == 1

    @pytest.mark.asyncio
    async def test_save_overwrites(self, sqlite_store: SQLDocumentStore) -> None:
        await sqlite_store.save(Collection.USERS, {"_id": "u1", "email": "a@example.com"})
        await sqlite_store.save(Collection.USERS, {"_id": "u1", "email": "b@example.com"})

        fetched = await sqlite_store.get(Collection.USERS, "u1")

        assert fetched == {"_id": "u1", "email": "b@example.com"}

    @pytest.mark.asyncio
    async def test_delete(self, sqlite_store: SQLDocumentStore) -> None:
        await sqlite_store.insert(Collection.USERS, {"_id": "u1"})

        assert await sqlite_store.delete(Collection.USERS, "u1") is True
        assert await sqlite_store.delete(Collection.USERS, "u1") is False

    @pytest.mark.asyncio
    async def test_get_many(self, sqlite_store: SQLDocumentStore) -> None:
        for user_id in ("u1", "u2", "u3"):
            await sqlite_store.insert(Collection.USERS, {"_id": user_id})

        documents = await sqlite_store.get_many(Collection.USERS, ["u3", "u1", "nope"])

        assert [d["_id"] for d in documents] == ["u3", "u1"]
        assert await sqlite_store.get_many(Collection.USERS, []) == []

    @pytest.mark.asyncio
    async def test_find_count_and_lookup(self, sqlite_store: SQLDocumentStore) -> None:
        await sqlite_store.insert(Collection.WORKPLACES, {"_id": "w1"})
        await sqlite_store.insert(Collection.USERS, {"_id": "u1", "workplaceId": "w1"})
        await sqlite_store.insert(Collection.USERS, {"_id": "u2"})
        unassigned = Query(filters=[Filter.exists("workplaceId", False)])

        assert [d["_id"] for d in await sqlite_store.find(Collection.USERS, unassigned)] == [
            "u2"
        ]
        assert await sqlite_store.count(Collection.USERS, unassigned) == 1

        results = await sqlite_store.lookup(
            Collection.USERS, "workplaceId", Collection.WORKPLACES
        )
        assert {r.document["_id"]: len(r.matches) for r in results} == {"u1": 1, "u2": 0}
