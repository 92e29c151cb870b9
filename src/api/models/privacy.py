"""Privacy API request/response models.

Pydantic models for the /privacy endpoints. Routes map application DTOs and
domain models onto these; nothing here reaches into services.

Developer Golden Rules:
1. VALIDATE EARLY - Pydantic checks shapes, the domain checks values
2. FAIL LOUD - Errors are RFC 7807 problem bodies
3. NO PRIVACY LEAKS - Attribution responses show a handle or an account,
   never both
"""

from datetime import datetime
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, StrictBool

from src.application.dtos.privacy import HandleRotation, IdentitySwitch, SettingsChange
from src.application.services.identity_vault_service import Attribution
from src.domain.models.anonymous_handle import AnonymousHandle
from src.domain.models.audit_entry import AuditEntry, AuditSummary
from src.domain.models.erasure_job import ErasureJob
from src.domain.models.privacy_config import PrivacyConfig
from src.domain.services.privacy_recommendations import PrivacyRecommendation

# ISO 8601 with Z suffix (Pydantic v2)
DateTimeWithZ = Annotated[
    datetime,
    PlainSerializer(
        lambda v: v.isoformat().replace("+00:00", "Z") if v else None, return_type=str
    ),
]


class ProblemDetail(BaseModel):
    """RFC 7807 problem body (returned under ``detail``)."""

    type: str
    title: str
    status: int
    detail: str
    retryable: bool = False
    instance: str | None = None


class ProvisionAccountRequest(BaseModel):
    account_id: str = Field(..., min_length=1, max_length=128)


class AnonymousModeRequest(BaseModel):
    enabled: StrictBool


class ResourceRegistrationRequest(BaseModel):
    """First binding of a newly authored resource.

    Attributes:
        anonymous: Author anonymously; omitted = follow the account's
            anonymous mode.
    """

    anonymous: StrictBool | None = None


class DataAccessRequest(BaseModel):
    accessor_id: str = Field(..., min_length=1)
    purpose: str = Field(..., min_length=1, max_length=200)


class HandleRotationRequest(BaseModel):
    format: str | None = None
    prefix: str = ""
    include_numbers: bool = True
    max_length: int = Field(default=20, ge=3, le=30)


class PrivacySettingsResponse(BaseModel):
    account_id: str
    settings: dict[str, Any]
    version: int
    updated_at: DateTimeWithZ | None = None

    @classmethod
    def from_config(cls, config: PrivacyConfig) -> "PrivacySettingsResponse":
        return cls(
            account_id=config.account_id,
            settings=config.settings(),
            version=config.version,
            updated_at=config.updated_at,
        )


class SettingsChangeResponse(BaseModel):
    """Result of a settings patch or anonymous mode toggle.

    Attributes:
        settings: Settings after the change.
        changed: Names of the settings that changed.
        audit_sequence: Sequence of the audit entry; None for a no-op patch.
    """

    account_id: str
    settings: dict[str, Any]
    changed: list[str]
    audit_sequence: int | None = None

    @classmethod
    def from_change(cls, change: SettingsChange) -> "SettingsChangeResponse":
        return cls(
            account_id=change.new.account_id,
            settings=change.new.settings(),
            changed=sorted(change.old.changed_settings(change.new)),
            audit_sequence=change.audit_entry.sequence if change.audit_entry else None,
        )


class HandleResponse(BaseModel):
    id: str
    handle: str
    created_at: DateTimeWithZ
    revoked: bool
    revoked_at: DateTimeWithZ | None = None

    @classmethod
    def from_handle(cls, handle: AnonymousHandle) -> "HandleResponse":
        return cls(
            id=handle.id,
            handle=handle.handle_string,
            created_at=handle.created_at,
            revoked=handle.revoked,
            revoked_at=handle.revoked_at,
        )


class AccountProvisionedResponse(BaseModel):
    settings: PrivacySettingsResponse
    handle: HandleResponse
    audit_sequence: int


class HandleListResponse(BaseModel):
    handles: list[HandleResponse]


class HandleRotationResponse(BaseModel):
    handle: HandleResponse
    revoked_handle_ids: list[str]
    audit_sequence: int

    @classmethod
    def from_rotation(cls, rotation: HandleRotation) -> "HandleRotationResponse":
        return cls(
            handle=HandleResponse.from_handle(rotation.handle),
            revoked_handle_ids=list(rotation.revoked_handle_ids),
            audit_sequence=rotation.audit_entry.sequence,
        )


class HandleSuggestionsResponse(BaseModel):
    suggestions: list[str]


class IdentitySwitchResponse(BaseModel):
    resource_type: str
    resource_id: str
    state: str
    version: int
    audit_sequence: int

    @classmethod
    def from_switch(cls, switch: IdentitySwitch) -> "IdentitySwitchResponse":
        binding = switch.binding
        return cls(
            resource_type=binding.resource.resource_type.value,
            resource_id=binding.resource.resource_id,
            state=binding.state.value,
            version=binding.version,
            audit_sequence=switch.audit_entry.sequence,
        )


class AttributionResponse(BaseModel):
    """What the platform shows as the author of a resource."""

    resource_type: str
    resource_id: str
    state: str
    account_id: str | None = None
    handle: str | None = None

    @classmethod
    def from_attribution(cls, attribution: Attribution) -> "AttributionResponse":
        return cls(
            resource_type=attribution.resource.resource_type.value,
            resource_id=attribution.resource.resource_id,
            state=attribution.state.value,
            account_id=attribution.account_id,
            handle=attribution.handle,
        )


class AuditEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    sequence: int
    id: str
    action_kind: str
    resource_type: str | None = None
    resource_id: str | None = None
    old_value: dict[str, Any]
    new_value: dict[str, Any]
    actor_metadata: dict[str, Any]
    timestamp: DateTimeWithZ
    anonymized: bool = False

    @classmethod
    def from_entry(cls, entry: AuditEntry) -> "AuditEntryResponse":
        return cls(
            sequence=entry.sequence,
            id=entry.id,
            action_kind=entry.action_kind.value,
            resource_type=entry.resource_type,
            resource_id=entry.resource_id,
            old_value=entry.old_value,
            new_value=entry.new_value,
            actor_metadata=entry.actor_metadata.to_dict(),
            timestamp=entry.timestamp,
            anonymized=entry.anonymized,
        )


class AuditPageResponse(BaseModel):
    entries: list[AuditEntryResponse]
    limit: int
    offset: int


class AuditSummaryResponse(BaseModel):
    account_id: str
    total_actions: int
    counts: dict[str, int]
    identity_reveals: int
    identity_hides: int
    recent_actions: list[AuditEntryResponse]

    @classmethod
    def from_summary(cls, summary: AuditSummary) -> "AuditSummaryResponse":
        return cls(
            account_id=summary.account_id,
            total_actions=summary.total_actions,
            counts={kind.value: count for kind, count in summary.counts.items()},
            identity_reveals=summary.identity_reveals,
            identity_hides=summary.identity_hides,
            recent_actions=[AuditEntryResponse.from_entry(e) for e in summary.recent_actions],
        )


class ExportResponse(BaseModel):
    bundle: dict[str, Any]


class ErasureJobResponse(BaseModel):
    job_id: str
    account_id: str
    status: str
    completed_steps: list[str]
    point_of_no_return: bool
    cancel_requested: bool
    counts: dict[str, int]
    error: str | None = None
    created_at: DateTimeWithZ
    updated_at: DateTimeWithZ
    finished_at: DateTimeWithZ | None = None

    @classmethod
    def from_job(cls, job: ErasureJob) -> "ErasureJobResponse":
        return cls(
            job_id=job.job_id,
            account_id=job.account_id,
            status=job.status.value,
            completed_steps=[s.value for s in job.completed_steps],
            point_of_no_return=job.point_of_no_return,
            cancel_requested=job.cancel_requested,
            counts=dict(job.counts),
            error=job.error,
            created_at=job.created_at,
            updated_at=job.updated_at,
            finished_at=job.finished_at,
        )


class RecommendationResponse(BaseModel):
    setting: str
    suggested_value: Any
    reason: str
    severity: str

    @classmethod
    def from_recommendation(cls, rec: PrivacyRecommendation) -> "RecommendationResponse":
        return cls(
            setting=rec.setting,
            suggested_value=rec.suggested_value,
            reason=rec.reason,
            severity=rec.severity.value,
        )


class RecommendationListResponse(BaseModel):
    recommendations: list[RecommendationResponse]
