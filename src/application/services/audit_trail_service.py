"""Audit trail service: append-only, strictly ordered privacy log.

Every privacy-sensitive transition is recorded here before the request
that caused it is acknowledged. Sequence assignment is delegated to the
row store's per-partition append, which is atomic per account, so any
number of concurrent appenders receive distinct, gap-free sequences.

Failure policy:
- A transient StorageError on append is retried with backoff. A retry
  first checks whether the previous attempt actually landed (by entry id),
  so an ambiguous failure never produces a duplicate entry.
- When retries are exhausted, AuditUnavailableError is raised and the
  caller discards its staged change (fail closed).
"""

from __future__ import annotations

from collections import Counter
from datetime import datetime
from typing import Any

from structlog import get_logger
from uuid6 import uuid7

from src.application.ports.row_store import In, Precondition, Range, RowStoreProtocol
from src.application.ports.time_authority import TimeAuthorityProtocol
from src.application.services.storage_retry import StorageRetryPolicy
from src.domain.errors.storage import AuditUnavailableError, StorageError
from src.domain.errors.validation import ValidationError
from src.domain.models.audit_entry import (
    ActorMetadata,
    AuditActionKind,
    AuditEntry,
    AuditQueryFilters,
    AuditSummary,
)

logger = get_logger()

AUDIT_TABLE = "audit_entries"
MAX_PAGE_SIZE = 500


class AuditTrailService:
    """Append, query and summarize per-account audit entries.

    Attributes:
        _store: Row store holding the append-only audit table.
        _time: Time authority for entry timestamps.
        _retry: Retry policy for transient storage failures.
        _summary_recent: Number of recent entries in a summary.
    """

    def __init__(
        self,
        store: RowStoreProtocol,
        time_authority: TimeAuthorityProtocol,
        retry: StorageRetryPolicy | None = None,
        summary_recent: int = 10,
    ) -> None:
        self._store = store
        self._time = time_authority
        self._retry = retry or StorageRetryPolicy()
        self._summary_recent = summary_recent

    def new_entry(
        self,
        account_id: str,
        action_kind: AuditActionKind,
        transaction_id: str,
        old_value: dict[str, Any] | None = None,
        new_value: dict[str, Any] | None = None,
        actor: ActorMetadata | None = None,
        resource_type: str | None = None,
        resource_id: str | None = None,
    ) -> AuditEntry:
        """Build an unsequenced entry stamped with the current time."""
        return AuditEntry(
            id=str(uuid7()),
            account_id=account_id,
            action_kind=action_kind,
            resource_type=resource_type,
            resource_id=resource_id,
            old_value=dict(old_value or {}),
            new_value=dict(new_value or {}),
            actor_metadata=actor or ActorMetadata(),
            timestamp=self._time.now(),
            transaction_id=transaction_id,
        )

    async def append(
        self, entry: AuditEntry, precondition: Precondition | None = None
    ) -> AuditEntry:
        """Durably append ``entry`` and assign its sequence.

        Args:
            entry: Entry built with ``new_entry`` (sequence is ignored).
            precondition: Row that must be unchanged for the entry to land.

        Returns:
            The stored entry with ``sequence`` and ``content_hash`` set.

        Raises:
            AuditUnavailableError: The entry could not be persisted.
            ConflictError: ``precondition`` no longer holds; nothing landed.
        """
        sealed = entry.sealed()
        log = logger.bind(
            account_id=entry.account_id,
            action_kind=entry.action_kind.value,
            transaction_id=entry.transaction_id,
        )
        attempts = 0

        async def _append_once() -> int:
            nonlocal attempts
            attempts += 1
            if attempts > 1:
                landed = await self._store.query_appended(
                    AUDIT_TABLE, entry.account_id, filters={"id": sealed.id}, limit=1
                )
                if landed:
                    return landed[0].sequence
            return await self._store.append(
                AUDIT_TABLE, entry.account_id, sealed.to_row(), precondition
            )

        try:
            sequence = await self._retry.run("audit_append", _append_once)
        except StorageError as e:
            log.error("audit_append_failed", attempts=attempts)
            raise AuditUnavailableError(entry.account_id, entry.transaction_id) from e

        log.info("audit_entry_appended", sequence=sequence)
        return AuditEntry.from_row({**sealed.to_row(), "sequence": sequence})

    async def query(
        self,
        account_id: str,
        filters: AuditQueryFilters | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[AuditEntry]:
        """Entries of one account ordered by sequence descending.

        Raises:
            ValidationError: limit outside [1, 500] or negative offset.
        """
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationError(
                f"limit must be between 1 and {MAX_PAGE_SIZE}", field="limit"
            )
        if offset < 0:
            raise ValidationError("offset must be >= 0", field="offset")
        return await self._query(account_id, filters, limit=limit, offset=offset)

    async def _query(
        self,
        account_id: str,
        filters: AuditQueryFilters | None,
        limit: int | None = None,
        offset: int = 0,
        descending: bool = True,
    ) -> list[AuditEntry]:
        row_filters = _row_filters(filters)
        rows = await self._retry.run(
            "audit_query",
            lambda: self._store.query_appended(
                AUDIT_TABLE,
                account_id,
                filters=row_filters,
                descending=descending,
                limit=limit,
                offset=offset,
            ),
        )
        return [AuditEntry.from_row(r.with_sequence()) for r in rows]

    async def all_entries(
        self, account_id: str, max_sequence: int | None = None
    ) -> list[AuditEntry]:
        """Every entry up to ``max_sequence``, ascending."""
        if max_sequence == 0:
            return []
        filters = (
            AuditQueryFilters(max_sequence=max_sequence)
            if max_sequence is not None
            else None
        )
        return await self._query(account_id, filters, descending=False)

    async def summarize(self, account_id: str) -> AuditSummary:
        """Counts per action kind plus the most recent entries."""
        entries = await self._query(account_id, None)
        counts = Counter(e.action_kind for e in entries)
        return AuditSummary(
            account_id=account_id,
            total_actions=len(entries),
            counts={kind: counts.get(kind, 0) for kind in AuditActionKind},
            recent_actions=tuple(entries[: self._summary_recent]),
        )

    async def max_sequence(self, account_id: str) -> int:
        """Highest sequence assigned for the account (export watermark)."""
        return await self._retry.run(
            "audit_last_sequence",
            lambda: self._store.last_sequence(AUDIT_TABLE, account_id),
        )

    async def find_by_transaction(
        self, account_id: str, transaction_id: str
    ) -> list[AuditEntry]:
        """Entries written for one transaction (recovery sweep lookup)."""
        rows = await self._retry.run(
            "audit_find_by_transaction",
            lambda: self._store.query_appended(
                AUDIT_TABLE, account_id, filters={"transaction_id": transaction_id}
            ),
        )
        return [AuditEntry.from_row(r.with_sequence()) for r in rows]

    async def verify_integrity(self, account_id: str) -> list[int]:
        """Sequences whose content hash does not match their content."""
        entries = await self._query(account_id, None, descending=False)
        return [e.sequence for e in entries if not e.verify_integrity()]

    async def apply_retention(
        self, account_id: str, cutoff: datetime
    ) -> tuple[int, int]:
        """Purge entries older than ``cutoff`` and anonymize the rest.

        Idempotent: already anonymized entries are left alone and purged
        sequences stay unused.

        Returns:
            (purged, anonymized) counts for this call.
        """
        log = logger.bind(account_id=account_id)
        entries = await self._query(account_id, None, descending=False)
        expired = [e.sequence for e in entries if e.timestamp < cutoff]
        purged = 0
        if expired:
            purged = await self._retry.run(
                "audit_purge",
                lambda: self._store.delete_appended(AUDIT_TABLE, account_id, expired),
            )

        anonymized = 0
        for entry in entries:
            if entry.timestamp < cutoff or entry.anonymized:
                continue
            stripped = entry.anonymized_copy()
            await self._retry.run(
                "audit_anonymize",
                lambda s=stripped: self._store.update_appended(
                    AUDIT_TABLE, account_id, s.sequence, s.to_row()
                ),
            )
            anonymized += 1

        log.info("audit_retention_applied", purged=purged, anonymized=anonymized)
        return purged, anonymized


def _row_filters(filters: AuditQueryFilters | None) -> dict[str, Any] | None:
    if filters is None:
        return None
    row_filters: dict[str, Any] = {}
    if filters.action_kinds:
        row_filters["action_kind"] = In(tuple(k.value for k in filters.action_kinds))
    if filters.resource_type is not None:
        row_filters["resource_type"] = filters.resource_type
    if filters.resource_id is not None:
        row_filters["resource_id"] = filters.resource_id
    if filters.since is not None or filters.until is not None:
        row_filters["timestamp"] = Range(
            lower=filters.since.isoformat() if filters.since else None,
            upper=filters.until.isoformat() if filters.until else None,
        )
    if filters.max_sequence is not None:
        row_filters["sequence"] = Range(upper=filters.max_sequence)
    return row_filters or None
