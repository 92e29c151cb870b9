"""Structured logging (structlog) and correlation ids for the privacy core."""

from src.infrastructure.observability.correlation import (
    correlation_id_processor,
    ensure_correlation_id,
    generate_correlation_id,
    get_correlation_id,
    set_correlation_id,
)
from src.infrastructure.observability.logging import (
    PRIVACY_VALUE_KEYS,
    REDACTED,
    configure_structlog,
    redact_privacy_values,
)

__all__ = [
    "PRIVACY_VALUE_KEYS",
    "REDACTED",
    "configure_structlog",
    "correlation_id_processor",
    "ensure_correlation_id",
    "generate_correlation_id",
    "get_correlation_id",
    "redact_privacy_values",
    "set_correlation_id",
]
