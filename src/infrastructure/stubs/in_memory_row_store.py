"""In-memory row store stub for development and testing.

Implements RowStoreProtocol with dictionaries guarded by an asyncio.Lock,
so every single call is atomic exactly like a transactional backend.

Testing hooks:
- ``yield_before_write``: await a scheduling point before each call, so
  concurrent service calls interleave between their reads and writes.
- ``fail_next(operation, times, table)``: make the next matching calls
  raise StorageError, to exercise retry and fail-closed paths.

Usage:
    store = InMemoryRowStore()
    version = await store.upsert("privacy_configs", "acct-1", {...}, 0)
    seq = await store.append("audit_entries", "acct-1", {...})
"""

from __future__ import annotations

import asyncio
import copy
from dataclasses import dataclass
from typing import Any

from src.application.ports.row_store import (
    AppendedRow,
    Filters,
    Order,
    Precondition,
    StoredRow,
    matches,
)
from src.domain.errors.concurrent_modification import ConflictError
from src.domain.errors.not_found import NotFoundError
from src.domain.errors.storage import StorageError


@dataclass
class _InjectedFailure:
    operation: str
    table: str | None
    remaining: int


class InMemoryRowStore:
    """Dictionary-backed RowStoreProtocol implementation.

    Attributes:
        yield_before_write: Insert a scheduling point before each call.
    """

    def __init__(self, yield_before_write: bool = True) -> None:
        self.yield_before_write = yield_before_write
        self._documents: dict[str, dict[str, tuple[int, dict[str, Any]]]] = {}
        self._appended: dict[tuple[str, str], dict[int, dict[str, Any]]] = {}
        self._counters: dict[tuple[str, str], int] = {}
        self._failures: list[_InjectedFailure] = []
        self._lock = asyncio.Lock()
        self.call_count: dict[str, int] = {}

    def fail_next(self, operation: str, times: int = 1, table: str | None = None) -> None:
        """Make the next ``times`` calls of ``operation`` raise StorageError."""
        self._failures.append(_InjectedFailure(operation, table, times))

    def clear(self) -> None:
        """Drop all data and injected failures (for test isolation)."""
        self._documents.clear()
        self._appended.clear()
        self._counters.clear()
        self._failures.clear()
        self.call_count.clear()

    async def _enter(self, operation: str, table: str) -> None:
        self.call_count[operation] = self.call_count.get(operation, 0) + 1
        if self.yield_before_write:
            await asyncio.sleep(0)
        for failure in self._failures:
            if failure.operation == operation and failure.table in (None, table):
                failure.remaining -= 1
                if failure.remaining <= 0:
                    self._failures.remove(failure)
                raise StorageError(
                    f"Injected failure on {operation}", operation=operation, table=table
                )

    async def get(self, table: str, key: str) -> StoredRow | None:
        await self._enter("get", table)
        async with self._lock:
            found = self._documents.get(table, {}).get(key)
            if found is None:
                return None
            version, data = found
            return StoredRow(key=key, version=version, data=copy.deepcopy(data))

    async def upsert(
        self,
        table: str,
        key: str,
        patch: dict[str, Any],
        expected_version: int,
    ) -> int:
        await self._enter("upsert", table)
        async with self._lock:
            rows = self._documents.setdefault(table, {})
            current = rows.get(key)
            current_version = current[0] if current else 0
            if current_version != expected_version:
                raise ConflictError(
                    table=table,
                    key=key,
                    expected_version=expected_version,
                    actual_version=current_version,
                )
            data = copy.deepcopy(current[1]) if current else {}
            data.update(copy.deepcopy(patch))
            new_version = current_version + 1
            rows[key] = (new_version, data)
            return new_version

    async def query(
        self,
        table: str,
        filters: Filters | None = None,
        order: Order | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[StoredRow]:
        await self._enter("query", table)
        async with self._lock:
            found = [
                StoredRow(key=key, version=version, data=copy.deepcopy(data))
                for key, (version, data) in self._documents.get(table, {}).items()
                if matches(data, filters)
            ]
        if order is not None:
            found.sort(
                key=lambda r: (r.data.get(order.field) is None, r.data.get(order.field)),
                reverse=order.descending,
            )
        end = None if limit is None else offset + limit
        return found[offset:end]

    async def append(
        self,
        table: str,
        partition: str,
        row: dict[str, Any],
        precondition: Precondition | None = None,
    ) -> int:
        await self._enter("append", table)
        async with self._lock:
            if precondition is not None:
                guarded = self._documents.get(precondition.table, {}).get(precondition.key)
                actual = guarded[0] if guarded else 0
                if actual != precondition.version:
                    raise ConflictError(
                        table=precondition.table,
                        key=precondition.key,
                        expected_version=precondition.version,
                        actual_version=actual,
                    )
            counter_key = (table, partition)
            sequence = self._counters.get(counter_key, 0) + 1
            self._counters[counter_key] = sequence
            self._appended.setdefault(counter_key, {})[sequence] = copy.deepcopy(row)
            return sequence

    async def last_sequence(self, table: str, partition: str) -> int:
        await self._enter("last_sequence", table)
        async with self._lock:
            return self._counters.get((table, partition), 0)

    async def query_appended(
        self,
        table: str,
        partition: str,
        filters: Filters | None = None,
        descending: bool = True,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[AppendedRow]:
        await self._enter("query_appended", table)
        async with self._lock:
            rows = self._appended.get((table, partition), {})
            found = [
                AppendedRow(partition=partition, sequence=seq, data=copy.deepcopy(data))
                for seq, data in rows.items()
                if matches({**data, "sequence": seq}, filters)
            ]
        found.sort(key=lambda r: r.sequence, reverse=descending)
        end = None if limit is None else offset + limit
        return found[offset:end]

    async def update_appended(
        self, table: str, partition: str, sequence: int, row: dict[str, Any]
    ) -> None:
        await self._enter("update_appended", table)
        async with self._lock:
            rows = self._appended.get((table, partition), {})
            if sequence not in rows:
                raise NotFoundError(table, f"{partition}#{sequence}")
            rows[sequence] = copy.deepcopy(row)

    async def delete_appended(
        self, table: str, partition: str, sequences: list[int]
    ) -> int:
        await self._enter("delete_appended", table)
        async with self._lock:
            rows = self._appended.get((table, partition), {})
            deleted = 0
            for sequence in sequences:
                if rows.pop(sequence, None) is not None:
                    deleted += 1
            return deleted
