"""
Application layer - Use cases and orchestration for the privacy core.

This layer contains:
- Port definitions (abstract interfaces for infrastructure)
- Application services (vault, config store, audit trail, enforcer, erasure)

IMPORT RULES:
- CAN import from: domain
- CANNOT import from: infrastructure, api
"""

__all__: list[str] = []
