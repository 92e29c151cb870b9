"""Persistence adapters implementing the row store and binding storage ports."""

from src.infrastructure.adapters.persistence.binding_tables import (
    RowStoreBindingAdapter,
    binding_table_name,
    build_binding_adapters,
)
from src.infrastructure.adapters.persistence.postgres_row_store import (
    PostgresRowStore,
)

__all__ = [
    "PostgresRowStore",
    "RowStoreBindingAdapter",
    "binding_table_name",
    "build_binding_adapters",
]
