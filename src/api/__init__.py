"""
API layer - FastAPI routes and HTTP concerns for the privacy core.

This layer contains:
- FastAPI route definitions
- Request/Response models
- HTTP middleware

IMPORT RULES:
- CAN import from: application
- Infrastructure is reached through src.bootstrap wiring
"""

__all__: list[str] = []
