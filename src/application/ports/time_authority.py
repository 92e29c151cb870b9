"""Time authority port.

Services that stamp audit entries, pending markers or erasure checkpoints
take their time from an injected TimeAuthorityProtocol instead of calling
``datetime.now()`` directly, so recovery grace periods and retention
cutoffs are deterministic under test.

Ordering never depends on time: audit order is the per-account sequence.
"""

from abc import ABC, abstractmethod
from datetime import datetime


class TimeAuthorityProtocol(ABC):
    """Abstract source of UTC timestamps.

    Production uses SystemTimeAuthority; tests use FakeTimeAuthority from
    tests/helpers.
    """

    @abstractmethod
    def now(self) -> datetime:
        """Return the current time as a timezone-aware UTC datetime."""
        ...
