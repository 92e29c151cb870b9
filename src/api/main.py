"""FastAPI application entry point for the privacy core."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from src.api.middleware.logging_middleware import LoggingMiddleware
from src.api.routes.health import router as health_router
from src.api.routes.privacy import router as privacy_router
from src.api.startup import start_privacy_core, stop_privacy_core
from src.bootstrap.privacy_core import PrivacyCore
from src.config.privacy_core_config import PrivacyCoreSettings


def create_app(
    core: PrivacyCore | None = None,
    settings: PrivacyCoreSettings | None = None,
) -> FastAPI:
    """Build the application.

    Args:
        core: Prebuilt privacy core (tests); built at startup when omitted.
        settings: Process settings; read from the environment when omitted.
    """

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        resolved = settings or (core.settings if core else PrivacyCoreSettings.from_environment())
        await start_privacy_core(resolved, core)
        try:
            yield
        finally:
            await stop_privacy_core()

    application = FastAPI(
        title="Privacy Identity Core API",
        description="Anonymous identities, privacy settings, audit trail and erasure",
        version="0.1.0",
        lifespan=lifespan,
    )
    application.add_middleware(LoggingMiddleware)
    application.include_router(health_router)
    application.include_router(privacy_router)
    return application


app = create_app()
