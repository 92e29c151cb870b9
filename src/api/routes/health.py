"""Health check endpoint for the privacy API."""

from fastapi import APIRouter, Depends

from src.api.dependencies.privacy import get_core
from src.api.models.health import HealthResponse
from src.bootstrap.privacy_core import PrivacyCore

router = APIRouter(prefix="/v1", tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(core: PrivacyCore = Depends(get_core)) -> HealthResponse:
    """Return health status with the storage backend in use."""
    return HealthResponse(
        status="healthy",
        storage_backend=core.settings.storage_backend,
        active_erasure_jobs=len(core.worker.active_jobs),
    )
