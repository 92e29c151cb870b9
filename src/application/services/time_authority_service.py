"""System clock implementation of the time authority port.

This is the only module allowed to read the wall clock directly.
"""

from datetime import datetime, timezone

from src.application.ports.time_authority import TimeAuthorityProtocol


class SystemTimeAuthority(TimeAuthorityProtocol):
    """TimeAuthorityProtocol backed by the host clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)
