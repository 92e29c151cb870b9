"""
Integration test configuration with testcontainers.

Provides a session-scoped PostgreSQL 16 container and a per-test
PostgresRowStore on a freshly truncated schema.

Container Reuse Pattern:
- The container is started once per test session (scope="session")
- Tables are truncated before each test (function-scoped fixture)
- The container is cleaned up after all tests complete

Usage:
    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_example(pg_store: PostgresRowStore) -> None:
        ...

Note: Docker must be running; without it every integration test is skipped.
"""

from collections.abc import AsyncGenerator, Generator

import pytest
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from testcontainers.postgres import PostgresContainer

from src.bootstrap.database import to_async_url
from src.infrastructure.adapters.persistence.postgres_row_store import PostgresRowStore


@pytest.fixture(scope="session")
def postgres_container() -> Generator[PostgresContainer, None, None]:
    """Session-scoped PostgreSQL 16 container.

    Skips the integration suite when Docker is not reachable.
    """
    try:
        container = PostgresContainer("postgres:16-alpine")
        container.start()
    except Exception as e:  # docker.errors.DockerException and friends
        pytest.skip(f"Docker not available: {e}")
    try:
        yield container
    finally:
        container.stop()


@pytest.fixture(scope="session")
def postgres_async_url(postgres_container: PostgresContainer) -> str:
    """asyncpg URL for the container (testcontainers returns a psycopg2 URL)."""
    sync_url = postgres_container.get_connection_url()
    return to_async_url(sync_url.replace("postgresql+psycopg2://", "postgresql://"))


@pytest.fixture
async def pg_session_factory(
    postgres_async_url: str,
) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    engine = create_async_engine(postgres_async_url, echo=False)
    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
async def pg_store(
    pg_session_factory: async_sessionmaker[AsyncSession],
) -> PostgresRowStore:
    """Row store on an empty schema."""
    store = PostgresRowStore(pg_session_factory)
    await store.create_schema()
    async with pg_session_factory() as session, session.begin():
        await session.execute(
            text(
                "TRUNCATE privacy_documents, privacy_append_log, "
                "privacy_sequence_counters"
            )
        )
    return store
