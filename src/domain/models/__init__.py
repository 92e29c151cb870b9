"""Domain models for the privacy core.

Immutable value objects with explicit row serialization; no
infrastructure dependencies.
"""

from src.domain.models.anonymous_handle import (
    AnonymousHandle,
    HandleFormat,
    HandleGenerationParams,
)
from src.domain.models.audit_entry import (
    ActorMetadata,
    AuditActionKind,
    AuditEntry,
    AuditQueryFilters,
    AuditSummary,
)
from src.domain.models.erasure_job import ErasureJob, ErasureJobStatus, ErasureStep
from src.domain.models.export_bundle import PrivacyExportBundle
from src.domain.models.pending_change import PendingAction, PendingChange
from src.domain.models.privacy_config import (
    MessagePermission,
    PrivacyConfig,
    PrivacyLevel,
    Visibility,
    default_privacy_config,
)
from src.domain.models.resource_identity import (
    ERASED_IDENTITY,
    AnonymousHandleIdentity,
    BindingState,
    ErasedIdentity,
    RealAccountIdentity,
    ResourceIdentityBinding,
    ResourceRef,
    ResourceType,
)

__all__: list[str] = [
    "ActorMetadata",
    "AnonymousHandle",
    "AnonymousHandleIdentity",
    "AuditActionKind",
    "AuditEntry",
    "AuditQueryFilters",
    "AuditSummary",
    "BindingState",
    "ERASED_IDENTITY",
    "ErasedIdentity",
    "ErasureJob",
    "ErasureJobStatus",
    "ErasureStep",
    "HandleFormat",
    "HandleGenerationParams",
    "MessagePermission",
    "PendingAction",
    "PendingChange",
    "PrivacyConfig",
    "PrivacyExportBundle",
    "PrivacyLevel",
    "RealAccountIdentity",
    "ResourceIdentityBinding",
    "ResourceRef",
    "ResourceType",
    "Visibility",
    "default_privacy_config",
]
