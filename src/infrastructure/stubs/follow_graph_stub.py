"""In-memory follow graph stub for development and testing."""

from __future__ import annotations


class FollowGraphStub:
    """FollowGraphProtocol backed by a set of (follower, followee) pairs."""

    def __init__(self) -> None:
        self._edges: set[tuple[str, str]] = set()

    def follow(self, follower_id: str, followee_id: str) -> None:
        self._edges.add((follower_id, followee_id))

    def unfollow(self, follower_id: str, followee_id: str) -> None:
        self._edges.discard((follower_id, followee_id))

    async def is_following(self, follower_id: str, followee_id: str) -> bool:
        return (follower_id, followee_id) in self._edges
