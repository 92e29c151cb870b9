"""Structured logging configuration with structlog.

Production renders one JSON object per line, development a colored
console. Every entry carries level, ISO timestamp and, inside a request,
the correlation id.

Privacy values must never reach the logs: services log ids, kinds,
sequences and counts only. ``redact_privacy_values`` backs that up by
masking any event key that names a privacy value.

Usage:
    from src.infrastructure.observability import configure_structlog

    configure_structlog(environment="production", log_level="INFO")
"""

import logging
from typing import Any, cast

import structlog
from structlog.typing import Processor

from src.infrastructure.observability.correlation import correlation_id_processor

DEFAULT_LOG_LEVEL = "INFO"

REDACTED = "[redacted]"

# Keys whose values are privacy data (handle strings, setting values,
# caller network details).
PRIVACY_VALUE_KEYS: frozenset[str] = frozenset(
    {
        "handle_string",
        "old_value",
        "new_value",
        "network_origin",
        "coarse_location",
        "user_agent",
        "settings",
    }
)


def redact_privacy_values(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Structlog processor masking privacy values."""
    for key in PRIVACY_VALUE_KEYS.intersection(event_dict):
        event_dict[key] = REDACTED
    return event_dict


def _resolve_level(log_level: str) -> int:
    return getattr(logging, log_level.upper(), logging.INFO)


def configure_structlog(
    environment: str = "production", log_level: str = DEFAULT_LOG_LEVEL
) -> None:
    """Configure structlog once at startup.

    Args:
        environment: 'production' for JSON output, anything else for console.
        log_level: Minimum level name (DEBUG, INFO, WARNING...).
    """
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        cast(Processor, correlation_id_processor),
        cast(Processor, redact_privacy_values),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if environment == "production":
        final_processor: Processor = structlog.processors.JSONRenderer()
    else:
        final_processor = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=shared_processors + [final_processor],
        wrapper_class=structlog.make_filtering_bound_logger(_resolve_level(log_level)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
