"""
Infrastructure layer - External adapters for the privacy core.

This layer contains:
- PostgreSQL row store (SQLAlchemy async)
- In-memory stubs for development and testing
- Observability (structlog configuration, correlation ids)

IMPORT RULES:
- CAN import from: domain, application
- Implements ports defined in application layer
"""

__all__: list[str] = []
