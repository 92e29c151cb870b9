"""Application services - Use case orchestration.

This module contains application services that orchestrate domain
operations and coordinate with the row store through ports.

Available services:
- PrivacyConfigService: per-account privacy settings with pending markers
- IdentityVaultService: anonymous handles and resource identity bindings
- AuditTrailService: append-only, per-account sequenced audit entries
- PolicyEnforcerService: audited privacy intents (stage, audit, commit)
- ComplianceExportService: consistent per-account export bundles
- ErasureService: checkpointed, resumable account erasure
- StorageRetryPolicy: bounded retry of transient storage failures
"""

from src.application.services.audit_trail_service import AuditTrailService
from src.application.services.binding_adapter_registry import BindingAdapterRegistry
from src.application.services.compliance_export_service import ComplianceExportService
from src.application.services.erasure_job_store import ErasureJobStore
from src.application.services.erasure_service import ErasureService
from src.application.services.identity_vault_service import (
    Attribution,
    IdentityVaultService,
    StagedSwitch,
)
from src.application.services.policy_enforcer_service import PolicyEnforcerService
from src.application.services.privacy_config_service import PrivacyConfigService
from src.application.services.storage_retry import StorageRetryPolicy
from src.application.services.time_authority_service import SystemTimeAuthority

__all__: list[str] = [
    "Attribution",
    "AuditTrailService",
    "BindingAdapterRegistry",
    "ComplianceExportService",
    "ErasureJobStore",
    "ErasureService",
    "IdentityVaultService",
    "PolicyEnforcerService",
    "PrivacyConfigService",
    "StagedSwitch",
    "StorageRetryPolicy",
    "SystemTimeAuthority",
]
