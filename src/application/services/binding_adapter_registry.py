"""Resolver from ResourceType to its binding storage adapter.

Every ResourceType must have an adapter when the registry is built; a
missing one fails construction. Resolving anything that is not a
ResourceType raises TypeError instead of falling back to a default table.
"""

from __future__ import annotations

from collections.abc import Mapping

from src.application.ports.binding_storage import BindingStorageAdapter
from src.domain.models.resource_identity import ResourceType


class BindingAdapterRegistry:
    """Typed lookup of binding storage adapters."""

    def __init__(self, adapters: Mapping[ResourceType, BindingStorageAdapter]) -> None:
        """Initialize the registry.

        Args:
            adapters: One adapter per ResourceType.

        Raises:
            ValueError: A ResourceType has no adapter, or an adapter is
                registered under the wrong type.
        """
        missing = [rt.value for rt in ResourceType if rt not in adapters]
        if missing:
            raise ValueError(f"No binding adapter for resource types: {', '.join(missing)}")
        for resource_type, adapter in adapters.items():
            if adapter.resource_type != resource_type:
                raise ValueError(
                    f"Adapter for {adapter.resource_type.value} registered as {resource_type.value}"
                )
        self._adapters = dict(adapters)

    def resolve(self, resource_type: ResourceType) -> BindingStorageAdapter:
        if not isinstance(resource_type, ResourceType):
            raise TypeError(
                f"Expected ResourceType, got {type(resource_type).__name__}"
            )
        return self._adapters[resource_type]

    def all(self) -> list[BindingStorageAdapter]:
        return [self._adapters[rt] for rt in ResourceType]
