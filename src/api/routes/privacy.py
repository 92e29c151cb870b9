"""Privacy API routes.

FastAPI router for the caller-facing privacy surface: settings, anonymous
mode, per-resource identity switches, handles, the audit trail, export and
erasure.

Every route acts on behalf of the account in ``X-Account-ID``. Domain
errors are mapped to RFC 7807 problem bodies using the status each error
class declares; retryable errors carry ``Retry-After``.

Developer Golden Rules:
1. ENFORCER FOR WRITES - Privacy-changing intents go through the policy
   enforcer so they are audited
2. FAIL LOUD - Return meaningful RFC 7807 error responses
3. ERASURE IS ASYNC - Erase returns 202 with a job handle to poll
"""

from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request
from structlog import get_logger

from src.api.dependencies.privacy import (
    get_actor_metadata,
    get_audit_trail,
    get_caller_account_id,
    get_config_service,
    get_enforcer,
    get_erasure_service,
    get_erasure_worker,
    get_exporter,
    get_vault,
)
from src.api.models.privacy import (
    AccountProvisionedResponse,
    AnonymousModeRequest,
    AttributionResponse,
    AuditEntryResponse,
    AuditPageResponse,
    AuditSummaryResponse,
    DataAccessRequest,
    ErasureJobResponse,
    ExportResponse,
    HandleListResponse,
    HandleResponse,
    HandleRotationRequest,
    HandleRotationResponse,
    HandleSuggestionsResponse,
    IdentitySwitchResponse,
    PrivacySettingsResponse,
    ProblemDetail,
    ProvisionAccountRequest,
    RecommendationListResponse,
    RecommendationResponse,
    ResourceRegistrationRequest,
    SettingsChangeResponse,
)
from src.application.services.audit_trail_service import AuditTrailService
from src.application.services.compliance_export_service import ComplianceExportService
from src.application.services.erasure_service import ErasureService
from src.application.services.identity_vault_service import IdentityVaultService
from src.application.services.policy_enforcer_service import PolicyEnforcerService
from src.application.services.privacy_config_service import PrivacyConfigService
from src.domain.errors import NotFoundError
from src.domain.exceptions import PrivacyCoreError
from src.domain.models.anonymous_handle import HandleGenerationParams
from src.domain.models.audit_entry import ActorMetadata
from src.domain.models.erasure_job import ErasureJob
from src.domain.models.resource_identity import ResourceRef
from src.workers.erasure_worker import ErasureWorker

logger = get_logger()

router = APIRouter(prefix="/privacy", tags=["privacy"])

RETRY_AFTER_SECONDS = 1

_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    401: {"model": ProblemDetail, "description": "Missing caller account"},
    403: {"model": ProblemDetail, "description": "Caller does not control the resource"},
    404: {"model": ProblemDetail, "description": "Unknown account, resource or job"},
    409: {"model": ProblemDetail, "description": "Concurrent modification (retryable)"},
    422: {"model": ProblemDetail, "description": "Invalid field or broken dependency"},
    423: {"model": ProblemDetail, "description": "Account erasure in progress or done"},
    503: {"model": ProblemDetail, "description": "Storage or audit trail unavailable"},
}


def _problem(error: PrivacyCoreError, request: Request) -> HTTPException:
    """Map a domain error to an RFC 7807 HTTPException."""
    detail = error.to_problem_dict()
    detail["instance"] = str(request.url)
    headers = {"Retry-After": str(RETRY_AFTER_SECONDS)} if error.retryable else None
    if error.http_status >= 500:
        logger.warning(
            "privacy_request_unavailable",
            error_type=type(error).__name__,
            path=request.url.path,
        )
    return HTTPException(status_code=error.http_status, detail=detail, headers=headers)


def _ensure_job_owner(job: ErasureJob, account_id: str) -> None:
    # Another account's job is reported as missing.
    if job.account_id != account_id:
        raise NotFoundError("erasure_job", job.job_id)


# =============================================================================
# Account and settings
# =============================================================================


@router.post(
    "/accounts",
    response_model=AccountProvisionedResponse,
    status_code=201,
    responses=_ERROR_RESPONSES,
    summary="Provision privacy state for a new account",
)
async def provision_account(
    request_data: ProvisionAccountRequest,
    request: Request,
    enforcer: PolicyEnforcerService = Depends(get_enforcer),
    actor: ActorMetadata = Depends(get_actor_metadata),
) -> AccountProvisionedResponse:
    """Create default (anonymous) settings and the first handle."""
    try:
        result = await enforcer.create_account(request_data.account_id, actor=actor)
    except PrivacyCoreError as e:
        raise _problem(e, request) from None
    return AccountProvisionedResponse(
        settings=PrivacySettingsResponse.from_config(result.config),
        handle=HandleResponse.from_handle(result.handle),
        audit_sequence=result.audit_entry.sequence,
    )


@router.get(
    "/settings",
    response_model=PrivacySettingsResponse,
    responses=_ERROR_RESPONSES,
    summary="Current privacy settings",
)
async def get_settings(
    request: Request,
    account_id: str = Depends(get_caller_account_id),
    configs: PrivacyConfigService = Depends(get_config_service),
) -> PrivacySettingsResponse:
    try:
        config = await configs.get_config(account_id)
    except PrivacyCoreError as e:
        raise _problem(e, request) from None
    return PrivacySettingsResponse.from_config(config)


@router.patch(
    "/settings",
    response_model=SettingsChangeResponse,
    responses=_ERROR_RESPONSES,
    summary="Change one or more privacy settings",
)
async def update_settings(
    request: Request,
    partial: dict[str, Any] = Body(...),
    account_id: str = Depends(get_caller_account_id),
    enforcer: PolicyEnforcerService = Depends(get_enforcer),
    actor: ActorMetadata = Depends(get_actor_metadata),
) -> SettingsChangeResponse:
    """Apply a partial settings patch.

    Unknown keys, wrong types and broken dependencies (for example precise
    location without location sharing) are rejected with 422 and nothing
    changes.
    """
    try:
        change = await enforcer.update_privacy_setting(account_id, partial, actor=actor)
    except PrivacyCoreError as e:
        raise _problem(e, request) from None
    return SettingsChangeResponse.from_change(change)


@router.post(
    "/anonymous-mode",
    response_model=SettingsChangeResponse,
    responses=_ERROR_RESPONSES,
    summary="Enable or disable anonymous mode",
)
async def set_anonymous_mode(
    request_data: AnonymousModeRequest,
    request: Request,
    account_id: str = Depends(get_caller_account_id),
    enforcer: PolicyEnforcerService = Depends(get_enforcer),
    actor: ActorMetadata = Depends(get_actor_metadata),
) -> SettingsChangeResponse:
    try:
        change = await enforcer.toggle_anonymous_mode(
            account_id, request_data.enabled, actor=actor
        )
    except PrivacyCoreError as e:
        raise _problem(e, request) from None
    return SettingsChangeResponse.from_change(change)


@router.get(
    "/recommendations",
    response_model=RecommendationListResponse,
    responses=_ERROR_RESPONSES,
    summary="Privacy recommendations for the current settings",
)
async def get_recommendations(
    request: Request,
    account_id: str = Depends(get_caller_account_id),
    enforcer: PolicyEnforcerService = Depends(get_enforcer),
) -> RecommendationListResponse:
    try:
        found = await enforcer.recommendations(account_id)
    except PrivacyCoreError as e:
        raise _problem(e, request) from None
    return RecommendationListResponse(
        recommendations=[RecommendationResponse.from_recommendation(r) for r in found]
    )


# =============================================================================
# Handles
# =============================================================================


@router.get(
    "/handles",
    response_model=HandleListResponse,
    responses=_ERROR_RESPONSES,
    summary="Every handle issued to the caller, revoked ones included",
)
async def list_handles(
    request: Request,
    account_id: str = Depends(get_caller_account_id),
    vault: IdentityVaultService = Depends(get_vault),
) -> HandleListResponse:
    try:
        handles = await vault.list_handles(account_id)
    except PrivacyCoreError as e:
        raise _problem(e, request) from None
    return HandleListResponse(handles=[HandleResponse.from_handle(h) for h in handles])


@router.post(
    "/handles/rotate",
    response_model=HandleRotationResponse,
    responses=_ERROR_RESPONSES,
    summary="Issue a new handle and revoke the active ones",
)
async def rotate_handle(
    request: Request,
    request_data: HandleRotationRequest | None = None,
    account_id: str = Depends(get_caller_account_id),
    enforcer: PolicyEnforcerService = Depends(get_enforcer),
    actor: ActorMetadata = Depends(get_actor_metadata),
) -> HandleRotationResponse:
    try:
        params = (
            HandleGenerationParams.from_dict(request_data.model_dump(exclude_none=True))
            if request_data
            else None
        )
        rotation = await enforcer.rotate_anonymous_handle(account_id, params, actor=actor)
    except PrivacyCoreError as e:
        raise _problem(e, request) from None
    return HandleRotationResponse.from_rotation(rotation)


@router.get(
    "/handles/suggestions",
    response_model=HandleSuggestionsResponse,
    responses=_ERROR_RESPONSES,
    summary="Currently free handle suggestions (nothing is reserved)",
)
async def suggest_handles(
    request: Request,
    count: int = Query(default=5, ge=1, le=20),
    account_id: str = Depends(get_caller_account_id),
    vault: IdentityVaultService = Depends(get_vault),
) -> HandleSuggestionsResponse:
    try:
        suggestions = await vault.suggest_handles(count, HandleGenerationParams())
    except PrivacyCoreError as e:
        raise _problem(e, request) from None
    return HandleSuggestionsResponse(suggestions=suggestions)


# =============================================================================
# Resources
# =============================================================================


@router.get(
    "/resources/{resource_type}/{resource_id}",
    response_model=AttributionResponse,
    responses=_ERROR_RESPONSES,
    summary="What the platform shows as the author of a resource",
)
async def get_attribution(
    resource_type: str,
    resource_id: str,
    request: Request,
    account_id: str = Depends(get_caller_account_id),
    vault: IdentityVaultService = Depends(get_vault),
) -> AttributionResponse:
    try:
        attribution = await vault.resolve_attribution(
            ResourceRef.parse(resource_type, resource_id)
        )
    except PrivacyCoreError as e:
        raise _problem(e, request) from None
    return AttributionResponse.from_attribution(attribution)


@router.post(
    "/resources/{resource_type}/{resource_id}",
    response_model=IdentitySwitchResponse | None,
    status_code=201,
    responses=_ERROR_RESPONSES,
    summary="Bind a newly authored resource to the caller",
)
async def register_resource(
    resource_type: str,
    resource_id: str,
    request: Request,
    request_data: ResourceRegistrationRequest | None = None,
    account_id: str = Depends(get_caller_account_id),
    enforcer: PolicyEnforcerService = Depends(get_enforcer),
    actor: ActorMetadata = Depends(get_actor_metadata),
) -> IdentitySwitchResponse | None:
    """Bind the resource to the caller's account or active handle.

    Anonymous authorship is audited and returns the switch; real authorship
    returns an empty body.
    """
    anonymous = request_data.anonymous if request_data else None
    try:
        switch = await enforcer.register_resource(
            account_id,
            ResourceRef.parse(resource_type, resource_id),
            anonymous=anonymous,
            actor=actor,
        )
    except PrivacyCoreError as e:
        raise _problem(e, request) from None
    return IdentitySwitchResponse.from_switch(switch) if switch else None


@router.post(
    "/resources/{resource_type}/{resource_id}/reveal",
    response_model=IdentitySwitchResponse,
    responses=_ERROR_RESPONSES,
    summary="Attribute a resource to the caller's real account",
)
async def reveal_identity(
    resource_type: str,
    resource_id: str,
    request: Request,
    account_id: str = Depends(get_caller_account_id),
    enforcer: PolicyEnforcerService = Depends(get_enforcer),
    actor: ActorMetadata = Depends(get_actor_metadata),
) -> IdentitySwitchResponse:
    try:
        switch = await enforcer.reveal_resource_identity(
            account_id, ResourceRef.parse(resource_type, resource_id), actor=actor
        )
    except PrivacyCoreError as e:
        raise _problem(e, request) from None
    return IdentitySwitchResponse.from_switch(switch)


@router.post(
    "/resources/{resource_type}/{resource_id}/hide",
    response_model=IdentitySwitchResponse,
    responses=_ERROR_RESPONSES,
    summary="Attribute a resource to the caller's anonymous handle",
)
async def hide_identity(
    resource_type: str,
    resource_id: str,
    request: Request,
    account_id: str = Depends(get_caller_account_id),
    enforcer: PolicyEnforcerService = Depends(get_enforcer),
    actor: ActorMetadata = Depends(get_actor_metadata),
) -> IdentitySwitchResponse:
    try:
        switch = await enforcer.hide_resource_identity(
            account_id, ResourceRef.parse(resource_type, resource_id), actor=actor
        )
    except PrivacyCoreError as e:
        raise _problem(e, request) from None
    return IdentitySwitchResponse.from_switch(switch)


@router.post(
    "/resources/{resource_type}/{resource_id}/anonymous-post",
    response_model=IdentitySwitchResponse,
    status_code=201,
    responses=_ERROR_RESPONSES,
    summary="Record an anonymously authored resource",
)
async def record_anonymous_post(
    resource_type: str,
    resource_id: str,
    request: Request,
    account_id: str = Depends(get_caller_account_id),
    enforcer: PolicyEnforcerService = Depends(get_enforcer),
    actor: ActorMetadata = Depends(get_actor_metadata),
) -> IdentitySwitchResponse:
    try:
        switch = await enforcer.record_anonymous_post(
            account_id, ResourceRef.parse(resource_type, resource_id), actor=actor
        )
    except PrivacyCoreError as e:
        raise _problem(e, request) from None
    return IdentitySwitchResponse.from_switch(switch)


@router.post(
    "/resources/{resource_type}/{resource_id}/access",
    response_model=AuditEntryResponse,
    status_code=201,
    responses=_ERROR_RESPONSES,
    summary="Record an access to the caller's privacy data",
)
async def record_data_access(
    resource_type: str,
    resource_id: str,
    request_data: DataAccessRequest,
    request: Request,
    account_id: str = Depends(get_caller_account_id),
    enforcer: PolicyEnforcerService = Depends(get_enforcer),
    actor: ActorMetadata = Depends(get_actor_metadata),
) -> AuditEntryResponse:
    try:
        entry = await enforcer.record_data_access(
            account_id,
            request_data.accessor_id,
            request_data.purpose,
            resource=ResourceRef.parse(resource_type, resource_id),
            actor=actor,
        )
    except PrivacyCoreError as e:
        raise _problem(e, request) from None
    return AuditEntryResponse.from_entry(entry)


# =============================================================================
# Audit trail
# =============================================================================


@router.get(
    "/audit",
    response_model=AuditPageResponse,
    responses=_ERROR_RESPONSES,
    summary="Audit entries, newest first",
)
async def get_audit_log(
    request: Request,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    account_id: str = Depends(get_caller_account_id),
    audit: AuditTrailService = Depends(get_audit_trail),
) -> AuditPageResponse:
    try:
        entries = await audit.query(account_id, limit=limit, offset=offset)
    except PrivacyCoreError as e:
        raise _problem(e, request) from None
    return AuditPageResponse(
        entries=[AuditEntryResponse.from_entry(e) for e in entries],
        limit=limit,
        offset=offset,
    )


@router.get(
    "/audit/summary",
    response_model=AuditSummaryResponse,
    responses=_ERROR_RESPONSES,
    summary="Counts per action kind and the most recent entries",
)
async def get_audit_summary(
    request: Request,
    account_id: str = Depends(get_caller_account_id),
    audit: AuditTrailService = Depends(get_audit_trail),
) -> AuditSummaryResponse:
    try:
        summary = await audit.summarize(account_id)
    except PrivacyCoreError as e:
        raise _problem(e, request) from None
    return AuditSummaryResponse.from_summary(summary)


# =============================================================================
# Export and erasure
# =============================================================================


@router.post(
    "/export",
    response_model=ExportResponse,
    responses=_ERROR_RESPONSES,
    summary="Consistent snapshot of the caller's privacy data",
)
async def export_data(
    request: Request,
    account_id: str = Depends(get_caller_account_id),
    exporter: ComplianceExportService = Depends(get_exporter),
) -> ExportResponse:
    try:
        bundle = await exporter.export(account_id)
    except PrivacyCoreError as e:
        raise _problem(e, request) from None
    return ExportResponse(bundle=bundle.to_dict())


@router.post(
    "/erase",
    response_model=ErasureJobResponse,
    status_code=202,
    responses=_ERROR_RESPONSES,
    summary="Start (or return) the caller's erasure job",
)
async def request_erasure(
    request: Request,
    account_id: str = Depends(get_caller_account_id),
    erasure: ErasureService = Depends(get_erasure_service),
    worker: ErasureWorker = Depends(get_erasure_worker),
) -> ErasureJobResponse:
    """Request erasure; the job runs in the background.

    Repeating the request returns the same job. Poll
    ``GET /privacy/erase/{job_id}`` for progress.
    """
    try:
        job = await erasure.request_erasure(account_id)
    except PrivacyCoreError as e:
        raise _problem(e, request) from None
    if not job.is_terminal:
        worker.submit(job.job_id)
    return ErasureJobResponse.from_job(job)


@router.get(
    "/erase/{job_id}",
    response_model=ErasureJobResponse,
    responses=_ERROR_RESPONSES,
    summary="Erasure job status",
)
async def get_erasure_status(
    job_id: str,
    request: Request,
    account_id: str = Depends(get_caller_account_id),
    erasure: ErasureService = Depends(get_erasure_service),
) -> ErasureJobResponse:
    try:
        job = await erasure.get_status(job_id)
        _ensure_job_owner(job, account_id)
    except PrivacyCoreError as e:
        raise _problem(e, request) from None
    return ErasureJobResponse.from_job(job)


@router.delete(
    "/erase/{job_id}",
    response_model=ErasureJobResponse,
    responses=_ERROR_RESPONSES,
    summary="Cancel an erasure job before handles are revoked",
)
async def cancel_erasure(
    job_id: str,
    request: Request,
    account_id: str = Depends(get_caller_account_id),
    erasure: ErasureService = Depends(get_erasure_service),
) -> ErasureJobResponse:
    """Cancel the job; 423 once it passed the point of no return."""
    try:
        _ensure_job_owner(await erasure.get_status(job_id), account_id)
        job = await erasure.cancel(job_id)
    except PrivacyCoreError as e:
        raise _problem(e, request) from None
    return ErasureJobResponse.from_job(job)
