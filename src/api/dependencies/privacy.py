"""Privacy API dependencies.

FastAPI dependencies resolving the wired privacy core, the calling account
and the actor metadata recorded with every audit entry.

The caller is authenticated upstream; the gateway forwards the account id
in ``X-Account-ID``. Requests without it are rejected with 401.

Usage:
    @router.get("/settings")
    async def get_settings(
        account_id: str = Depends(get_caller_account_id),
        configs: PrivacyConfigService = Depends(get_config_service),
    ) -> PrivacySettingsResponse:
        ...
"""

from fastapi import Depends, Header, HTTPException, Request

from src.application.services.audit_trail_service import AuditTrailService
from src.application.services.compliance_export_service import ComplianceExportService
from src.application.services.erasure_service import ErasureService
from src.application.services.identity_vault_service import IdentityVaultService
from src.application.services.policy_enforcer_service import PolicyEnforcerService
from src.application.services.privacy_config_service import PrivacyConfigService
from src.bootstrap.privacy_core import PrivacyCore, get_privacy_core
from src.domain.models.audit_entry import ActorMetadata
from src.workers.erasure_worker import ErasureWorker

ACCOUNT_HEADER = "X-Account-ID"


def get_core() -> PrivacyCore:
    """The process-wide privacy core (set by the app lifespan)."""
    return get_privacy_core()


def get_enforcer(core: PrivacyCore = Depends(get_core)) -> PolicyEnforcerService:
    return core.enforcer


def get_config_service(core: PrivacyCore = Depends(get_core)) -> PrivacyConfigService:
    return core.configs


def get_vault(core: PrivacyCore = Depends(get_core)) -> IdentityVaultService:
    return core.vault


def get_audit_trail(core: PrivacyCore = Depends(get_core)) -> AuditTrailService:
    return core.audit


def get_exporter(core: PrivacyCore = Depends(get_core)) -> ComplianceExportService:
    return core.exporter


def get_erasure_service(core: PrivacyCore = Depends(get_core)) -> ErasureService:
    return core.erasure


def get_erasure_worker(core: PrivacyCore = Depends(get_core)) -> ErasureWorker:
    return core.worker


async def get_caller_account_id(
    request: Request,
    x_account_id: str | None = Header(default=None, alias=ACCOUNT_HEADER),
) -> str:
    """Account id of the authenticated caller.

    Raises:
        HTTPException: 401 when the gateway did not forward an account id.
    """
    account_id = (x_account_id or "").strip()
    if not account_id:
        raise HTTPException(
            status_code=401,
            detail={
                "type": "urn:privacy-core:error:unauthenticated",
                "title": "Unauthenticated",
                "status": 401,
                "detail": f"Missing {ACCOUNT_HEADER} header",
                "retryable": False,
                "instance": str(request.url),
            },
        )
    return account_id


def _network_origin(request: Request) -> str | None:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.client.host if request.client else None


async def get_actor_metadata(
    request: Request,
    core: PrivacyCore = Depends(get_core),
) -> ActorMetadata:
    """Actor metadata for audit entries written by this request."""
    origin = _network_origin(request)
    return ActorMetadata(
        user_agent=request.headers.get("User-Agent"),
        network_origin=origin,
        coarse_location=await core.geo_locator.coarse_location(origin),
    )
