"""
Pytest configuration and shared fixtures for privacy core tests.

Testing Standards:
- All async tests use pytest.mark.asyncio (auto mode enabled in pyproject.toml)
- Services are wired on the in-memory row store with a frozen clock
- Unit tests go in tests/unit/
- Integration tests go in tests/integration/ (need Docker)
"""

import random

import pytest

from src.bootstrap.privacy_core import PrivacyCore, wire_privacy_core
from src.config.privacy_core_config import TEST_PRIVACY_CORE_SETTINGS, PrivacyCoreSettings
from src.domain.services.handle_generator import HandleGenerator
from src.infrastructure.stubs.follow_graph_stub import FollowGraphStub
from src.infrastructure.stubs.geo_locator_stub import GeoLocatorStub
from src.infrastructure.stubs.in_memory_row_store import InMemoryRowStore
from tests.helpers import FakeTimeAuthority

HANDLE_SEED = 72


@pytest.fixture
def fake_time() -> FakeTimeAuthority:
    """Frozen clock at 2026-01-01 UTC."""
    return FakeTimeAuthority()


@pytest.fixture
def store() -> InMemoryRowStore:
    """In-memory row store that yields before every call."""
    return InMemoryRowStore(yield_before_write=True)


@pytest.fixture
def follow_graph() -> FollowGraphStub:
    return FollowGraphStub()


@pytest.fixture
def geo_locator() -> GeoLocatorStub:
    return GeoLocatorStub({"203.0.113.7": "NL"})


@pytest.fixture
def settings() -> PrivacyCoreSettings:
    """Test settings: no backoff delay, no recovery grace period."""
    return TEST_PRIVACY_CORE_SETTINGS


@pytest.fixture
def core(
    settings: PrivacyCoreSettings,
    store: InMemoryRowStore,
    fake_time: FakeTimeAuthority,
    follow_graph: FollowGraphStub,
    geo_locator: GeoLocatorStub,
) -> PrivacyCore:
    """Every privacy service wired on the shared store and clock."""
    return wire_privacy_core(
        settings,
        store,
        time_authority=fake_time,
        follow_graph=follow_graph,
        geo_locator=geo_locator,
        generator=HandleGenerator(random.Random(HANDLE_SEED)),
    )
