"""Per-resource-type binding storage port.

Each ResourceType has its own storage adapter. The identity vault reaches
them only through the BindingAdapterRegistry, so adding a resource type
without an adapter fails at startup instead of falling through to the
wrong table.
"""

from __future__ import annotations

from typing import Protocol

from src.domain.models.resource_identity import (
    ResourceIdentityBinding,
    ResourceRef,
    ResourceType,
)


class BindingStorageAdapter(Protocol):
    """Storage capability for the bindings of one resource type."""

    @property
    def resource_type(self) -> ResourceType:
        """The resource type this adapter stores."""
        ...

    async def read(self, resource: ResourceRef) -> ResourceIdentityBinding | None:
        """Read the binding of ``resource``, None if never bound."""
        ...

    async def create(self, binding: ResourceIdentityBinding) -> ResourceIdentityBinding:
        """Insert a first binding.

        Returns:
            The binding with its assigned version.

        Raises:
            ConflictError: A binding already exists.
        """
        ...

    async def update_binding(
        self, binding: ResourceIdentityBinding, expected_version: int
    ) -> ResourceIdentityBinding:
        """Write ``binding`` (identity and pending slot) under CAS.

        Returns:
            The binding with its new version.

        Raises:
            ConflictError: The stored version is not ``expected_version``.
        """
        ...

    async def find_bound_to_handles(
        self, handle_ids: list[str]
    ) -> list[ResourceIdentityBinding]:
        """Bindings whose committed identity is one of ``handle_ids``."""
        ...

    async def find_pending(
        self, account_id: str | None = None
    ) -> list[ResourceIdentityBinding]:
        """Bindings carrying a pending marker, optionally for one account."""
        ...
