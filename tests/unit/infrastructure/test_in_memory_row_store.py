"""Unit tests for InMemoryRowStore."""

from __future__ import annotations

import asyncio

import pytest

from src.application.ports.row_store import In, Order, Precondition, Range
from src.domain.errors import ConflictError, NotFoundError, StorageError
from src.infrastructure.stubs.in_memory_row_store import InMemoryRowStore


@pytest.fixture
def store() -> InMemoryRowStore:
    return InMemoryRowStore(yield_before_write=True)


class TestDocumentTables:
    """get / upsert / query."""

    @pytest.mark.asyncio
    async def test_insert_and_read(self, store: InMemoryRowStore) -> None:
        version = await store.upsert("t", "k", {"a": 1}, 0)

        row = await store.get("t", "k")

        assert version == 1
        assert row.version == 1
        assert row.with_version() == {"a": 1, "version": 1}
        assert await store.get("t", "missing") is None

    @pytest.mark.asyncio
    async def test_upsert_merges_patch(self, store: InMemoryRowStore) -> None:
        await store.upsert("t", "k", {"a": 1, "b": 2}, 0)
        await store.upsert("t", "k", {"b": 3}, 1)

        assert (await store.get("t", "k")).data == {"a": 1, "b": 3}

    @pytest.mark.asyncio
    async def test_insert_only_when_absent(self, store: InMemoryRowStore) -> None:
        """expected_version=0 over an existing row is a conflict."""
        await store.upsert("t", "k", {"a": 1}, 0)

        with pytest.raises(ConflictError) as exc_info:
            await store.upsert("t", "k", {"a": 2}, 0)

        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_stale_version_conflicts(self, store: InMemoryRowStore) -> None:
        await store.upsert("t", "k", {"a": 1}, 0)
        await store.upsert("t", "k", {"a": 2}, 1)

        with pytest.raises(ConflictError):
            await store.upsert("t", "k", {"a": 3}, 1)

        assert (await store.get("t", "k")).data == {"a": 2}

    @pytest.mark.asyncio
    async def test_concurrent_cas_has_one_winner(self, store: InMemoryRowStore) -> None:
        await store.upsert("t", "k", {"n": 0}, 0)

        results = await asyncio.gather(
            *(store.upsert("t", "k", {"n": i}, 1) for i in range(10)),
            return_exceptions=True,
        )

        assert sum(1 for r in results if r == 2) == 1
        assert sum(1 for r in results if isinstance(r, ConflictError)) == 9

    @pytest.mark.asyncio
    async def test_returned_rows_are_copies(self, store: InMemoryRowStore) -> None:
        await store.upsert("t", "k", {"nested": {"a": 1}}, 0)

        row = await store.get("t", "k")
        row.data["nested"]["a"] = 99

        assert (await store.get("t", "k")).data["nested"]["a"] == 1

    @pytest.mark.asyncio
    async def test_query_filters_and_order(self, store: InMemoryRowStore) -> None:
        for key, owner, created in [
            ("h1", "acct-1", "2026-01-03"),
            ("h2", "acct-2", "2026-01-01"),
            ("h3", "acct-1", "2026-01-02"),
        ]:
            await store.upsert("t", key, {"owner": owner, "created_at": created}, 0)

        by_owner = await store.query("t", {"owner": "acct-1"}, order=Order("created_at"))
        newest = await store.query("t", order=Order("created_at", descending=True), limit=1)
        some = await store.query("t", {"owner": In(("acct-2",))})
        window = await store.query(
            "t", {"created_at": Range("2026-01-01", "2026-01-02", upper_inclusive=False)}
        )

        assert [r.key for r in by_owner] == ["h3", "h1"]
        assert [r.key for r in newest] == ["h1"]
        assert [r.key for r in some] == ["h2"]
        assert [r.key for r in window] == ["h2"]


class TestAppendTables:
    """append / query_appended / update_appended / delete_appended."""

    @pytest.mark.asyncio
    async def test_sequences_per_partition(self, store: InMemoryRowStore) -> None:
        assert await store.append("log", "p1", {"x": 1}) == 1
        assert await store.append("log", "p1", {"x": 2}) == 2
        assert await store.append("log", "p2", {"x": 3}) == 1
        assert await store.last_sequence("log", "p1") == 2
        assert await store.last_sequence("log", "p3") == 0

    @pytest.mark.asyncio
    async def test_deleted_sequences_are_not_reused(self, store: InMemoryRowStore) -> None:
        await store.append("log", "p1", {"x": 1})
        await store.append("log", "p1", {"x": 2})

        assert await store.delete_appended("log", "p1", [1, 2, 7]) == 2

        assert await store.append("log", "p1", {"x": 3}) == 3
        assert [r.sequence for r in await store.query_appended("log", "p1")] == [3]

    @pytest.mark.asyncio
    async def test_query_appended(self, store: InMemoryRowStore) -> None:
        for kind in ("a", "b", "a", "a"):
            await store.append("log", "p1", {"kind": kind})

        newest_a = await store.query_appended("log", "p1", {"kind": "a"}, limit=2)
        by_sequence = await store.query_appended(
            "log", "p1", {"sequence": Range(2, 3)}, descending=False
        )

        assert [r.sequence for r in newest_a] == [4, 3]
        assert [r.with_sequence()["kind"] for r in by_sequence] == ["b", "a"]

    @pytest.mark.asyncio
    async def test_guarded_append(self, store: InMemoryRowStore) -> None:
        """An append lands only while the guarded row is at the expected version."""
        absent = Precondition("index", "acct-1", 0)
        assert await store.append("log", "p1", {"x": 1}, absent) == 1

        await store.upsert("index", "acct-1", {"job_id": "j-1"}, 0)

        with pytest.raises(ConflictError) as exc_info:
            await store.append("log", "p1", {"x": 2}, absent)
        assert exc_info.value.actual_version == 1
        assert await store.last_sequence("log", "p1") == 1
        assert await store.append("log", "p1", {"x": 2}, Precondition("index", "acct-1", 1)) == 2

    @pytest.mark.asyncio
    async def test_update_appended(self, store: InMemoryRowStore) -> None:
        await store.append("log", "p1", {"x": 1})

        await store.update_appended("log", "p1", 1, {"x": 2})

        assert (await store.query_appended("log", "p1"))[0].data == {"x": 2}
        with pytest.raises(NotFoundError):
            await store.update_appended("log", "p1", 9, {"x": 3})


class TestFailureInjection:
    """fail_next / clear."""

    @pytest.mark.asyncio
    async def test_fails_matching_calls_only(self, store: InMemoryRowStore) -> None:
        store.fail_next("append", times=2, table="audit")

        await store.append("other", "p1", {})
        for _ in range(2):
            with pytest.raises(StorageError) as exc_info:
                await store.append("audit", "p1", {})
            assert exc_info.value.table == "audit"

        assert await store.append("audit", "p1", {}) == 1

    @pytest.mark.asyncio
    async def test_any_table(self, store: InMemoryRowStore) -> None:
        store.fail_next("get")

        with pytest.raises(StorageError):
            await store.get("t", "k")
        assert await store.get("t", "k") is None

    @pytest.mark.asyncio
    async def test_clear(self, store: InMemoryRowStore) -> None:
        await store.upsert("t", "k", {}, 0)
        store.fail_next("get")

        store.clear()

        assert await store.get("t", "k") is None
        assert store.call_count == {"get": 1}
