"""
API routes for the privacy core.

Available routers:
- health: Health check endpoint
- privacy: Settings, identities, audit trail, export and erasure
"""

from src.api.routes.health import router as health_router
from src.api.routes.privacy import router as privacy_router

__all__: list[str] = ["health_router", "privacy_router"]
