"""Infrastructure stubs for development and testing.

Available stubs:
- InMemoryRowStore: row store with asyncio locking and failure injection
- FollowGraphStub: in-memory follower graph
- GeoLocatorStub: fixed origin -> region table
"""

from src.infrastructure.stubs.follow_graph_stub import FollowGraphStub
from src.infrastructure.stubs.geo_locator_stub import GeoLocatorStub
from src.infrastructure.stubs.in_memory_row_store import InMemoryRowStore

__all__: list[str] = ["FollowGraphStub", "GeoLocatorStub", "InMemoryRowStore"]
