"""API dependencies for dependency injection."""

from src.api.dependencies.privacy import (
    get_actor_metadata,
    get_caller_account_id,
    get_core,
)

__all__ = [
    "get_actor_metadata",
    "get_caller_account_id",
    "get_core",
]
