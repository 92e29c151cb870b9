"""Transactional row store port.

The privacy core depends only on this narrow contract, never on a storage
engine. Two kinds of tables exist:

- Document tables: rows keyed by a string key, each carrying a ``version``
  that is incremented on every write. Writes are compare-and-swap on that
  version; ``expected_version=0`` means "insert only".
- Append tables: rows grouped by partition (the account id), each assigned
  the next per-partition ``sequence`` atomically at append time. Sequences
  are never reused, even after rows are deleted.

Errors:
- ConflictError on a version mismatch (or an insert over an existing row),
  and on an append whose Precondition no longer holds
- StorageError on any transient backend failure
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol


@dataclass(frozen=True)
class In:
    """Filter: field value is one of ``values``."""

    values: tuple[Any, ...]


@dataclass(frozen=True)
class Range:
    """Filter: field value within bounds (None means unbounded).

    Values must be mutually comparable; ISO-8601 UTC timestamps compare
    correctly as strings.
    """

    lower: Any = None
    upper: Any = None
    upper_inclusive: bool = True


@dataclass(frozen=True)
class Order:
    field: str
    descending: bool = False


@dataclass(frozen=True)
class Precondition:
    """Document row that must still be at ``version`` (0: absent) for a
    guarded append to land."""

    table: str
    key: str
    version: int


# field -> literal value (equality), In or Range
Filters = dict[str, Any]


@dataclass(frozen=True)
class StoredRow:
    """A document row with its current version."""

    key: str
    version: int
    data: dict[str, Any]

    def with_version(self) -> dict[str, Any]:
        """Row data with ``version`` merged in, for model ``from_row``."""
        return {**self.data, "version": self.version}


@dataclass(frozen=True)
class AppendedRow:
    """An append-table row with its assigned sequence."""

    partition: str
    sequence: int
    data: dict[str, Any]

    def with_sequence(self) -> dict[str, Any]:
        return {**self.data, "sequence": self.sequence}


def matches(data: dict[str, Any], filters: Filters | None) -> bool:
    """Evaluate ``filters`` against one row (shared by in-process stores)."""
    if not filters:
        return True
    for field, expected in filters.items():
        actual = data.get(field)
        if isinstance(expected, In):
            if actual not in expected.values:
                return False
        elif isinstance(expected, Range):
            if actual is None:
                return False
            if expected.lower is not None and actual < expected.lower:
                return False
            if expected.upper is not None:
                if expected.upper_inclusive and actual > expected.upper:
                    return False
                if not expected.upper_inclusive and actual >= expected.upper:
                    return False
        elif actual != expected:
            return False
    return True


class RowStoreProtocol(Protocol):
    """Contract of the persistence service.

    Implementations must make each single call atomic: a CAS upsert either
    fully applies or raises, and two concurrent appends to one partition
    never receive the same sequence.
    """

    async def get(self, table: str, key: str) -> StoredRow | None:
        """Read one document row, None when absent."""
        ...

    async def upsert(
        self,
        table: str,
        key: str,
        patch: dict[str, Any],
        expected_version: int,
    ) -> int:
        """Merge ``patch`` into a document row under CAS.

        Args:
            table: Document table.
            key: Row key.
            patch: Top-level fields to set (None values are stored as None).
            expected_version: Version the caller read; 0 inserts a new row.

        Returns:
            The row's new version.

        Raises:
            ConflictError: The current version differs from expected_version.
            StorageError: Transient backend failure.
        """
        ...

    async def query(
        self,
        table: str,
        filters: Filters | None = None,
        order: Order | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[StoredRow]:
        """Filter document rows."""
        ...

    async def append(
        self,
        table: str,
        partition: str,
        row: dict[str, Any],
        precondition: Precondition | None = None,
    ) -> int:
        """Append a row, assigning ``last_sequence(partition) + 1``.

        With a ``precondition``, the version check and the append are one
        atomic step: a concurrent upsert of the guarded row is ordered
        either before the check (and the append fails) or after the append.

        Returns:
            The assigned sequence.

        Raises:
            ConflictError: The guarded row is no longer at the expected
                version. Nothing was appended.
        """
        ...

    async def last_sequence(self, table: str, partition: str) -> int:
        """Highest sequence ever assigned in the partition, 0 if none."""
        ...

    async def query_appended(
        self,
        table: str,
        partition: str,
        filters: Filters | None = None,
        descending: bool = True,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[AppendedRow]:
        """Filter append-table rows of one partition, ordered by sequence."""
        ...

    async def update_appended(
        self, table: str, partition: str, sequence: int, row: dict[str, Any]
    ) -> None:
        """Replace the data of an appended row (retention anonymization only).

        Raises:
            NotFoundError: No row with that sequence.
        """
        ...

    async def delete_appended(
        self, table: str, partition: str, sequences: list[int]
    ) -> int:
        """Delete appended rows; the partition counter is left untouched.

        Returns:
            Number of rows deleted.
        """
        ...
