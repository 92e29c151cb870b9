"""Coarse geo-IP lookup port.

Supplies the ``coarse_location`` part of audit actor metadata. Only a
coarse area (country or region) may be returned, never coordinates.
"""

from __future__ import annotations

from typing import Protocol


class GeoLocatorProtocol(Protocol):
    async def coarse_location(self, network_origin: str | None) -> str | None:
        """Coarse location for a client address, None when unknown."""
        ...
