"""Follow relationship port.

The social graph is owned outside the privacy core; visibility checks only
need to know whether one account follows another.
"""

from __future__ import annotations

from typing import Protocol


class FollowGraphProtocol(Protocol):
    async def is_following(self, follower_id: str, followee_id: str) -> bool:
        """Whether ``follower_id`` follows ``followee_id``."""
        ...
