"""Composition root for the privacy core.

Builds every service from PrivacyCoreSettings on top of one row store.
The API and the operations scripts reach the services only through the
``PrivacyCore`` container returned here.

Usage:
    core = await build_privacy_core(PrivacyCoreSettings.from_environment())
    await core.enforcer.create_account("acct-1")
"""

from __future__ import annotations

from dataclasses import dataclass

from structlog import get_logger

from src.application.ports.follow_graph import FollowGraphProtocol
from src.application.ports.geo_locator import GeoLocatorProtocol
from src.application.ports.row_store import RowStoreProtocol
from src.application.ports.time_authority import TimeAuthorityProtocol
from src.application.services.audit_trail_service import AuditTrailService
from src.application.services.binding_adapter_registry import BindingAdapterRegistry
from src.application.services.compliance_export_service import ComplianceExportService
from src.application.services.erasure_job_store import ErasureJobStore
from src.application.services.erasure_service import ErasureService
from src.application.services.identity_vault_service import IdentityVaultService
from src.application.services.policy_enforcer_service import PolicyEnforcerService
from src.application.services.privacy_config_service import PrivacyConfigService
from src.application.services.storage_retry import StorageRetryPolicy
from src.application.services.time_authority_service import SystemTimeAuthority
from src.config.privacy_core_config import PrivacyCoreSettings
from src.domain.services.handle_generator import HandleGenerator
from src.infrastructure.adapters.persistence import (
    PostgresRowStore,
    build_binding_adapters,
)
from src.infrastructure.stubs.follow_graph_stub import FollowGraphStub
from src.infrastructure.stubs.geo_locator_stub import GeoLocatorStub
from src.infrastructure.stubs.in_memory_row_store import InMemoryRowStore
from src.workers.erasure_worker import ErasureWorker

logger = get_logger()


@dataclass
class PrivacyCore:
    """Every wired privacy service, sharing one store and one clock."""

    settings: PrivacyCoreSettings
    store: RowStoreProtocol
    time_authority: TimeAuthorityProtocol
    geo_locator: GeoLocatorProtocol
    configs: PrivacyConfigService
    vault: IdentityVaultService
    audit: AuditTrailService
    jobs: ErasureJobStore
    enforcer: PolicyEnforcerService
    exporter: ComplianceExportService
    erasure: ErasureService
    worker: ErasureWorker


def wire_privacy_core(
    settings: PrivacyCoreSettings,
    store: RowStoreProtocol,
    time_authority: TimeAuthorityProtocol | None = None,
    follow_graph: FollowGraphProtocol | None = None,
    geo_locator: GeoLocatorProtocol | None = None,
    generator: HandleGenerator | None = None,
) -> PrivacyCore:
    """Wire the services on an existing store (no I/O)."""
    clock = time_authority or SystemTimeAuthority()
    retry = StorageRetryPolicy.from_settings(settings)
    bindings = BindingAdapterRegistry(build_binding_adapters(store))

    configs = PrivacyConfigService(
        store, clock, retry=retry, max_cas_retries=settings.max_cas_retries
    )
    vault = IdentityVaultService(
        store,
        bindings,
        clock,
        generator=generator,
        retry=retry,
        max_cas_retries=settings.max_cas_retries,
        max_handle_retries=settings.max_handle_retries,
    )
    audit = AuditTrailService(
        store, clock, retry=retry, summary_recent=settings.audit_summary_recent
    )
    jobs = ErasureJobStore(store, retry=retry)
    enforcer = PolicyEnforcerService(
        configs,
        vault,
        audit,
        jobs,
        follow_graph or FollowGraphStub(),
        clock,
        pending_grace=settings.pending_grace_timedelta,
    )
    exporter = ComplianceExportService(configs, vault, audit, clock)
    erasure = ErasureService(
        configs,
        vault,
        audit,
        enforcer,
        jobs,
        clock,
        retention=settings.retention_timedelta,
        retry=retry,
        max_cas_retries=settings.max_cas_retries,
    )
    return PrivacyCore(
        settings=settings,
        store=store,
        time_authority=clock,
        geo_locator=geo_locator or GeoLocatorStub(),
        configs=configs,
        vault=vault,
        audit=audit,
        jobs=jobs,
        enforcer=enforcer,
        exporter=exporter,
        erasure=erasure,
        worker=ErasureWorker(erasure),
    )


async def build_privacy_core(
    settings: PrivacyCoreSettings,
    store: RowStoreProtocol | None = None,
    **overrides,
) -> PrivacyCore:
    """Create the store for the configured backend and wire the services.

    The postgres backend creates its schema if missing.
    """
    if store is None:
        if settings.storage_backend == "postgres":
            from src.bootstrap.database import get_session_factory

            postgres = PostgresRowStore(get_session_factory())
            await postgres.create_schema()
            store = postgres
        else:
            store = InMemoryRowStore(yield_before_write=False)
    logger.info(
        "privacy_core_built",
        storage_backend=settings.storage_backend,
        environment=settings.environment,
    )
    return wire_privacy_core(settings, store, **overrides)


_privacy_core: PrivacyCore | None = None


def get_privacy_core() -> PrivacyCore:
    """The process-wide container.

    Raises:
        RuntimeError: The application has not started yet.
    """
    if _privacy_core is None:
        raise RuntimeError("Privacy core not initialized; start the application first")
    return _privacy_core


def set_privacy_core(core: PrivacyCore | None) -> None:
    """Install (or clear, with None) the process-wide container."""
    global _privacy_core
    _privacy_core = core
