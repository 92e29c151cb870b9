"""Correlation ids for request and job tracing.

The id lives in a ContextVar: it follows a request across await points and
into tasks spawned from it, since asyncio copies the context when a task
is created. An erasure job submitted by a request therefore logs under the
request's id; a job resumed at startup gets an id of its own.

Usage:
    set_correlation_id(request.headers.get("X-Correlation-ID") or generate_correlation_id())

    processors = [..., correlation_id_processor, ...]
"""

from contextvars import ContextVar
from typing import Any

from uuid6 import uuid7

_correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")


def generate_correlation_id() -> str:
    """New time-ordered correlation id (UUIDv7)."""
    return str(uuid7())


def get_correlation_id() -> str:
    """Correlation id of the current context; empty outside a request or job."""
    return _correlation_id.get()


def set_correlation_id(correlation_id: str) -> None:
    _correlation_id.set(correlation_id)


def ensure_correlation_id() -> str:
    """Keep the inherited id, or start a new one for background work."""
    current = _correlation_id.get()
    if not current:
        current = generate_correlation_id()
        _correlation_id.set(current)
    return current


def correlation_id_processor(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Add the context's correlation id unless the entry names one itself."""
    correlation_id = _correlation_id.get()
    if correlation_id:
        event_dict.setdefault("correlation_id", correlation_id)
    return event_dict
