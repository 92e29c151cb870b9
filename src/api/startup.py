"""Startup and shutdown hooks for the privacy API.

Startup:
1. Configure structured logging
2. Build the privacy core for the configured storage backend
3. Run the pending-marker recovery sweep
4. Resume erasure jobs interrupted by the last shutdown

Shutdown waits for running erasure jobs to reach a checkpoint, then
releases the database engine.

Usage:
    core = await start_privacy_core(PrivacyCoreSettings.from_environment())
    ...
    await stop_privacy_core()
"""

from structlog import get_logger

from src.bootstrap.database import close_database_engine
from src.bootstrap.logging import configure_logging
from src.bootstrap.privacy_core import (
    PrivacyCore,
    build_privacy_core,
    get_privacy_core,
    set_privacy_core,
)
from src.config.privacy_core_config import PrivacyCoreSettings

logger = get_logger()

SHUTDOWN_DRAIN_SECONDS = 10.0


async def start_privacy_core(
    settings: PrivacyCoreSettings, core: PrivacyCore | None = None
) -> PrivacyCore:
    """Wire (or adopt) the core, then settle state left by the last run.

    Args:
        settings: Process settings.
        core: Prebuilt core (tests); built from ``settings`` when omitted.
    """
    configure_logging(settings)
    if core is None:
        core = await build_privacy_core(settings)
    set_privacy_core(core)

    report = await core.enforcer.recover_pending()
    resumed = await core.worker.resume_incomplete()
    logger.info(
        "privacy_core_started",
        storage_backend=settings.storage_backend,
        recovered_committed=len(report.committed),
        recovered_discarded=len(report.discarded),
        erasure_jobs_resumed=resumed,
    )
    return core


async def stop_privacy_core() -> None:
    """Drain the erasure worker and release resources."""
    try:
        core = get_privacy_core()
    except RuntimeError:
        return
    await core.worker.drain(timeout=SHUTDOWN_DRAIN_SECONDS)
    if core.settings.storage_backend == "postgres":
        await close_database_engine()
    set_privacy_core(None)
    logger.info("privacy_core_stopped")
