"""Health check response model."""

from pydantic import BaseModel


class HealthResponse(BaseModel):
    """Liveness of the privacy API.

    Attributes:
        status: "healthy" once the privacy core is wired.
        storage_backend: Configured row store backend.
        active_erasure_jobs: Erasure jobs running in this process.
    """

    status: str
    storage_backend: str
    active_erasure_jobs: int = 0
