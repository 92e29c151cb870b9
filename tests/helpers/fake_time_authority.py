"""Frozen clock for privacy core tests.

Pending-marker grace periods, audit retention cutoffs and erasure job
timestamps all read the injected clock, so tests move it explicitly.

Usage:
    fake_time = FakeTimeAuthority()
    fake_time.advance(31)                        # past the recovery grace period
    fake_time.advance(delta=timedelta(days=400)) # past audit retention
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from src.application.ports.time_authority import TimeAuthorityProtocol

DEFAULT_FROZEN_AT = datetime(2026, 1, 1, tzinfo=timezone.utc)


class FakeTimeAuthority(TimeAuthorityProtocol):
    """Clock that only moves forward, and only when a test says so."""

    def __init__(self, frozen_at: datetime = DEFAULT_FROZEN_AT) -> None:
        if frozen_at.tzinfo is None:
            raise ValueError("frozen_at must be timezone-aware")
        self._now = frozen_at

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float = 0, delta: timedelta | None = None) -> datetime:
        """Move the clock forward and return the new time.

        Raises:
            ValueError: For a negative step.
        """
        step = delta if delta is not None else timedelta(seconds=seconds)
        if step < timedelta(0):
            raise ValueError("FakeTimeAuthority cannot move backwards")
        self._now += step
        return self._now
