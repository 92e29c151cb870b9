"""
Domain layer - Pure privacy logic.

This layer contains:
- Domain models (configs, handles, bindings, audit entries, erasure jobs)
- Pure domain services (handle generation, visibility, recommendations)
- Domain errors

CRITICAL: This layer must NOT import from application, infrastructure, or api.
"""

from src.domain.exceptions import PrivacyCoreError

__all__: list[str] = ["PrivacyCoreError"]
