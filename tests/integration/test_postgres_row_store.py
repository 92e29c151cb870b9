"""Integration tests for PostgresRowStore and the privacy core on PostgreSQL.

Requires Docker (PostgreSQL 16 via testcontainers).
"""

from __future__ import annotations

import asyncio
import random

import pytest

from src.application.ports.row_store import In, Order, Precondition, Range
from src.bootstrap.privacy_core import wire_privacy_core
from src.config.privacy_core_config import TEST_PRIVACY_CORE_SETTINGS
from src.domain.errors import AccountErasedError, ConflictError, NotFoundError
from src.domain.models.erasure_job import ErasureJobStatus
from src.domain.models.resource_identity import BindingState, ResourceRef, ResourceType
from src.domain.services.handle_generator import HandleGenerator
from src.infrastructure.adapters.persistence.postgres_row_store import PostgresRowStore
from tests.helpers import FakeTimeAuthority

pytestmark = pytest.mark.integration


class TestDocuments:
    """CAS documents on privacy_documents."""

    @pytest.mark.asyncio
    async def test_insert_merge_and_conflict(self, pg_store: PostgresRowStore) -> None:
        assert await pg_store.upsert("t", "k", {"a": 1, "b": 2}, 0) == 1
        assert await pg_store.upsert("t", "k", {"b": 3}, 1) == 2

        with pytest.raises(ConflictError) as exc_info:
            await pg_store.upsert("t", "k", {"b": 4}, 1)

        assert exc_info.value.actual_version == 2
        row = await pg_store.get("t", "k")
        assert row.data == {"a": 1, "b": 3}

    @pytest.mark.asyncio
    async def test_concurrent_cas_has_one_winner(self, pg_store: PostgresRowStore) -> None:
        await pg_store.upsert("t", "k", {"n": 0}, 0)

        results = await asyncio.gather(
            *(pg_store.upsert("t", "k", {"n": i}, 1) for i in range(8)),
            return_exceptions=True,
        )

        assert sum(1 for r in results if r == 2) == 1
        assert all(isinstance(r, ConflictError) for r in results if r != 2)

    @pytest.mark.asyncio
    async def test_query_filters(self, pg_store: PostgresRowStore) -> None:
        for key, owner, created in [
            ("h1", "acct-1", "2026-01-03T00:00:00+00:00"),
            ("h2", "acct-2", "2026-01-01T00:00:00+00:00"),
            ("h3", "acct-1", "2026-01-02T00:00:00+00:00"),
        ]:
            await pg_store.upsert("t", key, {"owner": owner, "created_at": created}, 0)

        by_owner = await pg_store.query("t", {"owner": "acct-1"}, order=Order("created_at"))
        some = await pg_store.query("t", {"owner": In(("acct-2", "acct-9"))})
        window = await pg_store.query(
            "t",
            {"created_at": Range(upper="2026-01-02T00:00:00+00:00", upper_inclusive=False)},
        )

        assert [r.key for r in by_owner] == ["h3", "h1"]
        assert [r.key for r in some] == ["h2"]
        assert [r.key for r in window] == ["h2"]


class TestAppendLog:
    """Ordered partitions on privacy_append_log."""

    @pytest.mark.asyncio
    async def test_concurrent_appends_are_dense(self, pg_store: PostgresRowStore) -> None:
        """Concurrent appenders get 1..n with no gap and no duplicate."""
        sequences = await asyncio.gather(
            *(pg_store.append("log", "p1", {"i": i}) for i in range(20))
        )

        assert sorted(sequences) == list(range(1, 21))
        assert await pg_store.last_sequence("log", "p1") == 20

    @pytest.mark.asyncio
    async def test_delete_keeps_counter(self, pg_store: PostgresRowStore) -> None:
        for i in range(3):
            await pg_store.append("log", "p1", {"i": i})

        assert await pg_store.delete_appended("log", "p1", [1, 2]) == 2

        assert await pg_store.append("log", "p1", {"i": 3}) == 4
        rows = await pg_store.query_appended("log", "p1", {"sequence": Range(lower=3)})
        assert [r.sequence for r in rows] == [4, 3]

    @pytest.mark.asyncio
    async def test_guarded_append(self, pg_store: PostgresRowStore) -> None:
        absent = Precondition("index", "acct-1", 0)
        assert await pg_store.append("log", "p1", {"x": 1}, absent) == 1

        await pg_store.upsert("index", "acct-1", {"job_id": "j-1"}, 0)

        with pytest.raises(ConflictError) as exc_info:
            await pg_store.append("log", "p1", {"x": 2}, absent)
        assert exc_info.value.actual_version == 1
        assert await pg_store.last_sequence("log", "p1") == 1

    @pytest.mark.asyncio
    async def test_guarded_appends_race_guard_write(self, pg_store: PostgresRowStore) -> None:
        """Appends racing a write of the guarded row either land before it
        or fail; none lands after it."""
        guard = Precondition("index", "acct-1", 0)

        async def claim() -> int:
            return await pg_store.upsert("index", "acct-1", {"job_id": "j-1"}, 0)

        results = await asyncio.gather(
            *(pg_store.append("log", "p1", {"i": i}, guard) for i in range(10)),
            claim(),
            return_exceptions=True,
        )

        landed = [r for r in results[:10] if isinstance(r, int)]
        assert all(isinstance(r, ConflictError) for r in results[:10] if r not in landed)
        assert sorted(landed) == list(range(1, len(landed) + 1))
        assert await pg_store.last_sequence("log", "p1") == len(landed)

    @pytest.mark.asyncio
    async def test_update_appended(self, pg_store: PostgresRowStore) -> None:
        await pg_store.append("log", "p1", {"kind": "a"})

        await pg_store.update_appended("log", "p1", 1, {"kind": "b"})

        rows = await pg_store.query_appended("log", "p1", {"kind": "b"})
        assert [r.sequence for r in rows] == [1]
        with pytest.raises(NotFoundError):
            await pg_store.update_appended("log", "p1", 9, {})


class TestPrivacyCoreOnPostgres:
    """The full intent flow against the real store."""

    @pytest.mark.asyncio
    async def test_anonymous_post_reveal_and_erasure(self, pg_store: PostgresRowStore) -> None:
        core = wire_privacy_core(
            TEST_PRIVACY_CORE_SETTINGS,
            pg_store,
            time_authority=FakeTimeAuthority(),
            generator=HandleGenerator(random.Random(7)),
        )
        post = ResourceRef(ResourceType.POST, "p-1")

        await core.enforcer.create_account("acct-1")
        await core.enforcer.record_anonymous_post("acct-1", post)
        switch = await core.enforcer.reveal_resource_identity("acct-1", post)

        assert switch.binding.state == BindingState.REAL_BOUND
        assert switch.audit_entry.sequence == 3

        job = await core.erasure.request_erasure("acct-1")
        done = await core.erasure.run_job(job.job_id)

        assert done.status == ErasureJobStatus.DONE
        assert await core.audit.max_sequence("acct-1") == 4
        with pytest.raises(AccountErasedError):
            await core.enforcer.toggle_anonymous_mode("acct-1", False)
