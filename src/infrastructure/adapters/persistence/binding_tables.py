"""Row-store backed binding storage, one table per resource type.

Bindings of each ResourceType live in their own document table
(``post_identity_bindings``, ``comment_identity_bindings``...), keyed by
resource id. ``build_binding_adapters`` returns one adapter per type for
the BindingAdapterRegistry.
"""

from __future__ import annotations

from dataclasses import replace

from src.application.ports.row_store import In, RowStoreProtocol
from src.domain.errors.concurrent_modification import AlreadyBoundError, ConflictError
from src.domain.models.resource_identity import (
    ResourceIdentityBinding,
    ResourceRef,
    ResourceType,
)


def binding_table_name(resource_type: ResourceType) -> str:
    return f"{resource_type.value}_identity_bindings"


class RowStoreBindingAdapter:
    """BindingStorageAdapter for one resource type on a RowStoreProtocol."""

    def __init__(self, store: RowStoreProtocol, resource_type: ResourceType) -> None:
        self._store = store
        self._resource_type = resource_type
        self._table = binding_table_name(resource_type)

    @property
    def resource_type(self) -> ResourceType:
        return self._resource_type

    def _check_type(self, resource: ResourceRef) -> None:
        if resource.resource_type != self._resource_type:
            raise TypeError(
                f"{self._table} cannot store {resource.resource_type.value} bindings"
            )

    async def read(self, resource: ResourceRef) -> ResourceIdentityBinding | None:
        self._check_type(resource)
        row = await self._store.get(self._table, resource.resource_id)
        if row is None:
            return None
        return ResourceIdentityBinding.from_row(row.with_version())

    async def create(self, binding: ResourceIdentityBinding) -> ResourceIdentityBinding:
        self._check_type(binding.resource)
        try:
            version = await self._store.upsert(
                self._table, binding.resource.resource_id, binding.to_row(), 0
            )
        except ConflictError as e:
            raise AlreadyBoundError(binding.resource.key) from e
        return replace(binding, version=version)

    async def update_binding(
        self, binding: ResourceIdentityBinding, expected_version: int
    ) -> ResourceIdentityBinding:
        self._check_type(binding.resource)
        version = await self._store.upsert(
            self._table, binding.resource.resource_id, binding.to_row(), expected_version
        )
        return replace(binding, version=version)

    async def find_bound_to_handles(
        self, handle_ids: list[str]
    ) -> list[ResourceIdentityBinding]:
        if not handle_ids:
            return []
        rows = await self._store.query(
            self._table, filters={"handle_id": In(tuple(handle_ids))}
        )
        return [ResourceIdentityBinding.from_row(r.with_version()) for r in rows]

    async def find_pending(
        self, account_id: str | None = None
    ) -> list[ResourceIdentityBinding]:
        rows = await self._store.query(self._table, filters={"has_pending": True})
        bindings = [ResourceIdentityBinding.from_row(r.with_version()) for r in rows]
        if account_id is None:
            return bindings
        return [
            b
            for b in bindings
            if b.pending is not None and b.pending.account_id == account_id
        ]


def build_binding_adapters(store: RowStoreProtocol) -> dict[ResourceType, RowStoreBindingAdapter]:
    """One RowStoreBindingAdapter per ResourceType."""
    return {rt: RowStoreBindingAdapter(store, rt) for rt in ResourceType}
