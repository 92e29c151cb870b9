"""Unit tests for AuditTrailService."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from src.application.services.audit_trail_service import AUDIT_TABLE, AuditTrailService
from src.application.services.storage_retry import StorageRetryPolicy
from src.domain.errors import AuditUnavailableError, ValidationError
from src.domain.models.audit_entry import (
    ActorMetadata,
    AuditActionKind,
    AuditQueryFilters,
)
from src.infrastructure.stubs.in_memory_row_store import InMemoryRowStore
from tests.helpers import FakeTimeAuthority

ACCOUNT = "acct-1"


@pytest.fixture
def audit(store: InMemoryRowStore, fake_time: FakeTimeAuthority) -> AuditTrailService:
    return AuditTrailService(
        store,
        fake_time,
        retry=StorageRetryPolicy(max_attempts=3, base_delay_seconds=0.0, max_delay_seconds=0.0),
        summary_recent=3,
    )


async def _append(
    audit: AuditTrailService,
    kind: AuditActionKind = AuditActionKind.PRIVACY_SETTING_CHANGE,
    transaction_id: str = "t-1",
    **kwargs,
):
    return await audit.append(audit.new_entry(ACCOUNT, kind, transaction_id, **kwargs))


class TestAppend:
    """Durable, ordered append."""

    @pytest.mark.asyncio
    async def test_assigns_sequence_and_hash(self, audit: AuditTrailService) -> None:
        entry = await _append(audit, new_value={"show_posts": True})

        assert entry.sequence == 1
        assert entry.verify_integrity() is True
        assert await audit.max_sequence(ACCOUNT) == 1

    @pytest.mark.asyncio
    async def test_sequences_are_per_account(self, audit: AuditTrailService) -> None:
        """Each account has its own sequence starting at 1."""
        await _append(audit)
        other = await audit.append(
            audit.new_entry("acct-2", AuditActionKind.DATA_ACCESS, "t-x")
        )

        assert other.sequence == 1

    @pytest.mark.asyncio
    async def test_concurrent_appends_are_gap_free(self, audit: AuditTrailService) -> None:
        """50 concurrent appenders receive exactly the sequences 1..50."""
        entries = await asyncio.gather(
            *(_append(audit, transaction_id=f"t-{i}") for i in range(50))
        )

        assert sorted(e.sequence for e in entries) == list(range(1, 51))
        stored = await audit.all_entries(ACCOUNT)
        assert [e.sequence for e in stored] == list(range(1, 51))

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(
        self, audit: AuditTrailService, store: InMemoryRowStore
    ) -> None:
        """Two failures within a budget of three still append exactly once."""
        store.fail_next("append", times=2, table=AUDIT_TABLE)

        entry = await _append(audit)

        assert entry.sequence == 1
        assert len(await audit.all_entries(ACCOUNT)) == 1

    @pytest.mark.asyncio
    async def test_exhausted_retries_fail_closed(
        self, audit: AuditTrailService, store: InMemoryRowStore
    ) -> None:
        """Persistent failure surfaces as a retryable AuditUnavailableError."""
        store.fail_next("append", times=3, table=AUDIT_TABLE)

        with pytest.raises(AuditUnavailableError) as exc_info:
            await _append(audit, transaction_id="t-lost")

        assert exc_info.value.transaction_id == "t-lost"
        assert exc_info.value.retryable is True
        assert await audit.max_sequence(ACCOUNT) == 0


class TestQuery:
    """Paged, filtered reads."""

    @pytest.fixture
    async def populated(self, audit: AuditTrailService, fake_time: FakeTimeAuthority):
        await _append(audit, AuditActionKind.PRIVACY_SETTING_CHANGE, "t-1")
        fake_time.advance(seconds=60)
        await _append(
            audit,
            AuditActionKind.IDENTITY_REVEAL,
            "t-2",
            resource_type="post",
            resource_id="p-1",
        )
        fake_time.advance(seconds=60)
        await _append(
            audit,
            AuditActionKind.IDENTITY_HIDE,
            "t-3",
            resource_type="post",
            resource_id="p-1",
        )
        fake_time.advance(seconds=60)
        await _append(audit, AuditActionKind.DATA_ACCESS, "t-4")
        return audit

    @pytest.mark.asyncio
    async def test_newest_first(self, populated: AuditTrailService) -> None:
        entries = await populated.query(ACCOUNT)

        assert [e.sequence for e in entries] == [4, 3, 2, 1]

    @pytest.mark.asyncio
    async def test_paging(self, populated: AuditTrailService) -> None:
        page = await populated.query(ACCOUNT, limit=2, offset=1)

        assert [e.sequence for e in page] == [3, 2]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("limit", [0, 501])
    async def test_limit_bounds(self, audit: AuditTrailService, limit: int) -> None:
        with pytest.raises(ValidationError):
            await audit.query(ACCOUNT, limit=limit)

    @pytest.mark.asyncio
    async def test_negative_offset(self, audit: AuditTrailService) -> None:
        with pytest.raises(ValidationError):
            await audit.query(ACCOUNT, offset=-1)

    @pytest.mark.asyncio
    async def test_filter_by_kind_and_resource(self, populated: AuditTrailService) -> None:
        identity_kinds = AuditQueryFilters(
            action_kinds=(AuditActionKind.IDENTITY_REVEAL, AuditActionKind.IDENTITY_HIDE),
            resource_id="p-1",
        )

        entries = await populated.query(ACCOUNT, identity_kinds)

        assert [e.action_kind for e in entries] == [
            AuditActionKind.IDENTITY_HIDE,
            AuditActionKind.IDENTITY_REVEAL,
        ]

    @pytest.mark.asyncio
    async def test_filter_by_time_range(
        self, populated: AuditTrailService, fake_time: FakeTimeAuthority
    ) -> None:
        """since/until are inclusive bounds on the entry timestamp."""
        start = fake_time.now() - timedelta(seconds=120)
        window = AuditQueryFilters(since=start, until=start + timedelta(seconds=60))

        entries = await populated.query(ACCOUNT, window)

        assert [e.sequence for e in entries] == [3, 2]

    @pytest.mark.asyncio
    async def test_all_entries_up_to_watermark(self, populated: AuditTrailService) -> None:
        entries = await populated.all_entries(ACCOUNT, max_sequence=2)

        assert [e.sequence for e in entries] == [1, 2]
        assert await populated.all_entries(ACCOUNT, max_sequence=0) == []

    @pytest.mark.asyncio
    async def test_find_by_transaction(self, populated: AuditTrailService) -> None:
        found = await populated.find_by_transaction(ACCOUNT, "t-3")

        assert [e.sequence for e in found] == [3]
        assert await populated.find_by_transaction(ACCOUNT, "t-none") == []

    @pytest.mark.asyncio
    async def test_summary(self, populated: AuditTrailService) -> None:
        """Counts per kind, and only the configured number of recent entries."""
        summary = await populated.summarize(ACCOUNT)

        assert summary.total_actions == 4
        assert summary.identity_reveals == 1
        assert summary.identity_hides == 1
        assert summary.counts[AuditActionKind.DATA_DELETION] == 0
        assert [e.sequence for e in summary.recent_actions] == [4, 3, 2]


class TestRetention:
    """apply_retention and integrity checks."""

    @pytest.mark.asyncio
    async def test_purges_old_and_anonymizes_recent(
        self, audit: AuditTrailService, fake_time: FakeTimeAuthority
    ) -> None:
        """Entries before the cutoff are deleted, the rest lose their values."""
        await _append(audit, new_value={"show_posts": True})
        fake_time.advance(delta=timedelta(days=400))
        await _append(
            audit,
            AuditActionKind.IDENTITY_REVEAL,
            "t-2",
            actor=ActorMetadata(user_agent="ua", network_origin="203.0.113.7"),
            resource_type="post",
            resource_id="p-1",
        )
        cutoff = fake_time.now() - timedelta(days=365)

        purged, anonymized = await audit.apply_retention(ACCOUNT, cutoff)

        assert (purged, anonymized) == (1, 1)
        remaining = await audit.all_entries(ACCOUNT)
        assert [e.sequence for e in remaining] == [2]
        assert remaining[0].anonymized is True
        assert remaining[0].resource_id is None
        assert remaining[0].actor_metadata == ActorMetadata()
        assert await audit.verify_integrity(ACCOUNT) == []

    @pytest.mark.asyncio
    async def test_retention_is_idempotent(
        self, audit: AuditTrailService, fake_time: FakeTimeAuthority
    ) -> None:
        await _append(audit)
        cutoff = fake_time.now() - timedelta(days=365)

        assert await audit.apply_retention(ACCOUNT, cutoff) == (0, 1)
        assert await audit.apply_retention(ACCOUNT, cutoff) == (0, 0)

    @pytest.mark.asyncio
    async def test_purged_sequences_are_not_reused(
        self, audit: AuditTrailService, fake_time: FakeTimeAuthority
    ) -> None:
        await _append(audit)
        fake_time.advance(delta=timedelta(days=10))
        await audit.apply_retention(ACCOUNT, fake_time.now())

        entry = await _append(audit, transaction_id="t-2")

        assert entry.sequence == 2

    @pytest.mark.asyncio
    async def test_verify_integrity_flags_altered_rows(
        self, audit: AuditTrailService, store: InMemoryRowStore
    ) -> None:
        """A row rewritten outside the anonymization path is reported."""
        entry = await _append(audit, new_value={"show_posts": True})
        tampered = {**entry.to_row(), "new_value": {"show_posts": False}}
        await store.update_appended(AUDIT_TABLE, ACCOUNT, entry.sequence, tampered)

        assert await audit.verify_integrity(ACCOUNT) == [1]
