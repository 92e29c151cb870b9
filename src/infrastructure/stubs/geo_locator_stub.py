"""Geo locator stub.

Returns a configured coarse location per client address and None for any
address it does not know. It never derives a location on its own.
"""

from __future__ import annotations


class GeoLocatorStub:
    """GeoLocatorProtocol with a fixed address -> region table."""

    def __init__(self, regions: dict[str, str] | None = None) -> None:
        self._regions = dict(regions or {})

    def set_region(self, network_origin: str, region: str) -> None:
        self._regions[network_origin] = region

    async def coarse_location(self, network_origin: str | None) -> str | None:
        if network_origin is None:
            return None
        return self._regions.get(network_origin)
