"""PostgreSQL row store adapter (SQLAlchemy async, JSONB documents).

Implements RowStoreProtocol on three tables:

- privacy_documents: (table_name, key) -> version, data JSONB
- privacy_append_log: (table_name, partition, sequence) -> data JSONB
- privacy_sequence_counters: (table_name, partition) -> last_sequence

CAS upserts are single conditional statements on ``version``. Appends
bump the partition counter with an upsert that takes the counter row lock,
so concurrent appenders to one partition are serialized and a rolled back
append never leaves a gap.

Every upsert takes a transaction-scoped advisory lock on its row key; a
guarded append takes the same lock in shared mode before checking the
guarded version, so the check and the append cannot interleave with a
write of the guarded row, even when that row does not exist yet.

Filters on JSONB fields:
- equality uses containment (``data @> {...}``)
- In uses array containment of the field value
- Range compares the field as text (ISO-8601 timestamps sort correctly),
  except ``sequence`` on append tables, which is a real column

Usage:
    store = PostgresRowStore(get_session_factory())
    await store.create_schema()
"""

from __future__ import annotations

import json
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from structlog import get_logger

from src.application.ports.row_store import (
    AppendedRow,
    Filters,
    In,
    Order,
    Precondition,
    Range,
    StoredRow,
)
from src.domain.errors.concurrent_modification import ConflictError
from src.domain.errors.not_found import NotFoundError
from src.domain.errors.storage import StorageError

logger = get_logger()

SCHEMA_STATEMENTS: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS privacy_documents (
        table_name TEXT NOT NULL,
        key TEXT NOT NULL,
        version BIGINT NOT NULL,
        data JSONB NOT NULL,
        PRIMARY KEY (table_name, key)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS privacy_append_log (
        table_name TEXT NOT NULL,
        partition TEXT NOT NULL,
        sequence BIGINT NOT NULL,
        data JSONB NOT NULL,
        PRIMARY KEY (table_name, partition, sequence)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS privacy_sequence_counters (
        table_name TEXT NOT NULL,
        partition TEXT NOT NULL,
        last_sequence BIGINT NOT NULL,
        PRIMARY KEY (table_name, partition)
    )
    """,
    "CREATE INDEX IF NOT EXISTS ix_privacy_documents_data "
    "ON privacy_documents USING GIN (data jsonb_path_ops)",
)


class _PreconditionFailed(Exception):
    """Aborts a guarded append inside its transaction."""


def _lock_key(table: str, key: str) -> str:
    return f"{table}:{key}"


def _decode(value: Any) -> dict[str, Any]:
    if isinstance(value, str):
        return json.loads(value)
    return dict(value)


def _filter_sql(
    filters: Filters | None, params: dict[str, Any], column_fields: frozenset[str]
) -> str:
    """Translate filters into a SQL predicate, filling ``params``."""
    if not filters:
        return ""
    clauses = []
    equality: dict[str, Any] = {}
    for index, (field, expected) in enumerate(filters.items()):
        name = f"f{index}"
        if isinstance(expected, In):
            params[f"{name}_field"] = field
            params[f"{name}_values"] = json.dumps(list(expected.values))
            clauses.append(
                f"CAST(:{name}_values AS jsonb) @> (data -> :{name}_field)"
            )
        elif isinstance(expected, Range):
            if field in column_fields:
                target = field
            else:
                params[f"{name}_field"] = field
                target = f"(data ->> :{name}_field)"
            if expected.lower is not None:
                params[f"{name}_lower"] = expected.lower
                clauses.append(f"{target} >= :{name}_lower")
            if expected.upper is not None:
                params[f"{name}_upper"] = expected.upper
                operator = "<=" if expected.upper_inclusive else "<"
                clauses.append(f"{target} {operator} :{name}_upper")
        else:
            equality[field] = expected
    if equality:
        params["eq_doc"] = json.dumps(equality)
        clauses.append("data @> CAST(:eq_doc AS jsonb)")
    return "".join(f" AND {clause}" for clause in clauses)


class PostgresRowStore:
    """RowStoreProtocol implementation on PostgreSQL.

    Attributes:
        _session_factory: SQLAlchemy async session factory.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create_schema(self) -> None:
        """Create the backing tables if they do not exist."""
        try:
            async with self._session_factory() as session, session.begin():
                for statement in SCHEMA_STATEMENTS:
                    await session.execute(text(statement))
        except SQLAlchemyError as e:
            raise StorageError(f"Schema creation failed: {e}", operation="create_schema") from e
        logger.info("privacy_schema_ready")

    async def get(self, table: str, key: str) -> StoredRow | None:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    text("""
                        SELECT version, data
                        FROM privacy_documents
                        WHERE table_name = :table AND key = :key
                    """),
                    {"table": table, "key": key},
                )
                row = result.fetchone()
        except SQLAlchemyError as e:
            raise StorageError(str(e), operation="get", table=table) from e
        if row is None:
            return None
        return StoredRow(key=key, version=int(row[0]), data=_decode(row[1]))

    async def upsert(
        self,
        table: str,
        key: str,
        patch: dict[str, Any],
        expected_version: int,
    ) -> int:
        params = {
            "table": table,
            "key": key,
            "patch": json.dumps(patch),
            "expected": expected_version,
        }
        try:
            async with self._session_factory() as session, session.begin():
                await session.execute(
                    text("SELECT pg_advisory_xact_lock(hashtextextended(:lock_key, 0))"),
                    {"lock_key": _lock_key(table, key)},
                )
                if expected_version == 0:
                    result = await session.execute(
                        text("""
                            INSERT INTO privacy_documents (table_name, key, version, data)
                            VALUES (:table, :key, 1, CAST(:patch AS jsonb))
                            ON CONFLICT (table_name, key) DO NOTHING
                            RETURNING version
                        """),
                        params,
                    )
                else:
                    result = await session.execute(
                        text("""
                            UPDATE privacy_documents
                            SET data = data || CAST(:patch AS jsonb),
                                version = version + 1
                            WHERE table_name = :table
                              AND key = :key
                              AND version = :expected
                            RETURNING version
                        """),
                        params,
                    )
                written = result.fetchone()
                if written is not None:
                    return int(written[0])
                current = await session.execute(
                    text("""
                        SELECT version FROM privacy_documents
                        WHERE table_name = :table AND key = :key
                    """),
                    {"table": table, "key": key},
                )
                actual = current.scalar()
        except SQLAlchemyError as e:
            raise StorageError(str(e), operation="upsert", table=table) from e
        raise ConflictError(
            table=table,
            key=key,
            expected_version=expected_version,
            actual_version=int(actual) if actual is not None else 0,
        )

    async def query(
        self,
        table: str,
        filters: Filters | None = None,
        order: Order | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[StoredRow]:
        params: dict[str, Any] = {"table": table, "offset": offset}
        sql = (
            "SELECT key, version, data FROM privacy_documents WHERE table_name = :table"
            + _filter_sql(filters, params, frozenset())
        )
        if order is not None:
            params["order_field"] = order.field
            direction = "DESC" if order.descending else "ASC"
            sql += f" ORDER BY data ->> :order_field {direction} NULLS LAST, key"
        else:
            sql += " ORDER BY key"
        if limit is not None:
            params["limit"] = limit
            sql += " LIMIT :limit"
        sql += " OFFSET :offset"
        try:
            async with self._session_factory() as session:
                result = await session.execute(text(sql), params)
                rows = result.fetchall()
        except SQLAlchemyError as e:
            raise StorageError(str(e), operation="query", table=table) from e
        return [StoredRow(key=r[0], version=int(r[1]), data=_decode(r[2])) for r in rows]

    async def append(
        self,
        table: str,
        partition: str,
        row: dict[str, Any],
        precondition: Precondition | None = None,
    ) -> int:
        params = {"table": table, "partition": partition, "data": json.dumps(row)}
        actual = None
        try:
            async with self._session_factory() as session, session.begin():
                if precondition is not None:
                    await session.execute(
                        text(
                            "SELECT pg_advisory_xact_lock_shared("
                            "hashtextextended(:lock_key, 0))"
                        ),
                        {"lock_key": _lock_key(precondition.table, precondition.key)},
                    )
                    current = await session.execute(
                        text("""
                            SELECT version FROM privacy_documents
                            WHERE table_name = :table AND key = :key
                        """),
                        {"table": precondition.table, "key": precondition.key},
                    )
                    actual = int(current.scalar() or 0)
                    if actual != precondition.version:
                        # Leaving the block rolls the transaction back.
                        raise _PreconditionFailed
                result = await session.execute(
                    text("""
                        INSERT INTO privacy_sequence_counters AS c
                            (table_name, partition, last_sequence)
                        VALUES (:table, :partition, 1)
                        ON CONFLICT (table_name, partition)
                        DO UPDATE SET last_sequence = c.last_sequence + 1
                        RETURNING last_sequence
                    """),
                    params,
                )
                sequence = int(result.scalar_one())
                await session.execute(
                    text("""
                        INSERT INTO privacy_append_log (table_name, partition, sequence, data)
                        VALUES (:table, :partition, :sequence, CAST(:data AS jsonb))
                    """),
                    {**params, "sequence": sequence},
                )
        except _PreconditionFailed:
            raise ConflictError(
                table=precondition.table,
                key=precondition.key,
                expected_version=precondition.version,
                actual_version=actual,
            ) from None
        except SQLAlchemyError as e:
            raise StorageError(str(e), operation="append", table=table) from e
        return sequence

    async def last_sequence(self, table: str, partition: str) -> int:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    text("""
                        SELECT last_sequence FROM privacy_sequence_counters
                        WHERE table_name = :table AND partition = :partition
                    """),
                    {"table": table, "partition": partition},
                )
                value = result.scalar()
        except SQLAlchemyError as e:
            raise StorageError(str(e), operation="last_sequence", table=table) from e
        return int(value) if value is not None else 0

    async def query_appended(
        self,
        table: str,
        partition: str,
        filters: Filters | None = None,
        descending: bool = True,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[AppendedRow]:
        params: dict[str, Any] = {"table": table, "partition": partition, "offset": offset}
        sql = (
            "SELECT sequence, data FROM privacy_append_log "
            "WHERE table_name = :table AND partition = :partition"
            + _filter_sql(filters, params, frozenset({"sequence"}))
        )
        sql += " ORDER BY sequence DESC" if descending else " ORDER BY sequence ASC"
        if limit is not None:
            params["limit"] = limit
            sql += " LIMIT :limit"
        sql += " OFFSET :offset"
        try:
            async with self._session_factory() as session:
                result = await session.execute(text(sql), params)
                rows = result.fetchall()
        except SQLAlchemyError as e:
            raise StorageError(str(e), operation="query_appended", table=table) from e
        return [
            AppendedRow(partition=partition, sequence=int(r[0]), data=_decode(r[1]))
            for r in rows
        ]

    async def update_appended(
        self, table: str, partition: str, sequence: int, row: dict[str, Any]
    ) -> None:
        try:
            async with self._session_factory() as session, session.begin():
                result = await session.execute(
                    text("""
                        UPDATE privacy_append_log
                        SET data = CAST(:data AS jsonb)
                        WHERE table_name = :table
                          AND partition = :partition
                          AND sequence = :sequence
                    """),
                    {
                        "table": table,
                        "partition": partition,
                        "sequence": sequence,
                        "data": json.dumps(row),
                    },
                )
                updated = result.rowcount
        except SQLAlchemyError as e:
            raise StorageError(str(e), operation="update_appended", table=table) from e
        if not updated:
            raise NotFoundError(table, f"{partition}#{sequence}")

    async def delete_appended(
        self, table: str, partition: str, sequences: list[int]
    ) -> int:
        if not sequences:
            return 0
        try:
            async with self._session_factory() as session, session.begin():
                result = await session.execute(
                    text("""
                        DELETE FROM privacy_append_log
                        WHERE table_name = :table
                          AND partition = :partition
                          AND sequence = ANY(:sequences)
                    """),
                    {"table": table, "partition": partition, "sequences": list(sequences)},
                )
                return int(result.rowcount or 0)
        except SQLAlchemyError as e:
            raise StorageError(str(e), operation="delete_appended", table=table) from e
