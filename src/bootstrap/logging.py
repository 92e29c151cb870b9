"""Bootstrap wiring for logging configuration."""

from __future__ import annotations

from src.config.privacy_core_config import PrivacyCoreSettings
from src.infrastructure.observability import configure_structlog


def configure_logging(settings: PrivacyCoreSettings) -> None:
    """Configure structlog from process settings."""
    configure_structlog(environment=settings.environment, log_level=settings.log_level)


__all__ = ["configure_logging"]
