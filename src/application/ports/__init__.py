"""Application ports - Abstract interfaces for infrastructure adapters.

Available ports:
- RowStoreProtocol: transactional document/append row store
- BindingStorageAdapter: per-resource-type binding storage
- FollowGraphProtocol: follower relationships (visibility checks)
- GeoLocatorProtocol: coarse location for actor metadata
- TimeAuthorityProtocol: the only clock services may read
"""

from src.application.ports.binding_storage import BindingStorageAdapter
from src.application.ports.follow_graph import FollowGraphProtocol
from src.application.ports.geo_locator import GeoLocatorProtocol
from src.application.ports.row_store import (
    AppendedRow,
    In,
    Order,
    Range,
    RowStoreProtocol,
    StoredRow,
)
from src.application.ports.time_authority import TimeAuthorityProtocol

__all__: list[str] = [
    "AppendedRow",
    "BindingStorageAdapter",
    "FollowGraphProtocol",
    "GeoLocatorProtocol",
    "In",
    "Order",
    "Range",
    "RowStoreProtocol",
    "StoredRow",
    "TimeAuthorityProtocol",
]
