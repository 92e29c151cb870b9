"""
API models (Pydantic DTOs) for the privacy core.

This module contains all Pydantic request/response models
used by API endpoints.
"""

from src.api.models.health import HealthResponse
from src.api.models.privacy import ProblemDetail

__all__: list[str] = ["HealthResponse", "ProblemDetail"]
