"""Result DTOs of the policy enforcer intents.

Application-layer DTOs; the API layer maps them to Pydantic response
models.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from src.domain.models.anonymous_handle import AnonymousHandle
from src.domain.models.audit_entry import AuditEntry
from src.domain.models.privacy_config import PrivacyConfig
from src.domain.models.resource_identity import ResourceIdentityBinding


@dataclass(frozen=True)
class AccountProvisioning:
    """Outcome of account creation.

    Attributes:
        config: The committed default configuration.
        handle: The account's first anonymous handle.
        audit_entry: Entry recording the provisioning.
    """

    config: PrivacyConfig
    handle: AnonymousHandle
    audit_entry: AuditEntry


@dataclass(frozen=True)
class SettingsChange:
    """Outcome of a privacy settings change.

    ``audit_entry`` is None when the patch changed nothing.
    """

    old: PrivacyConfig
    new: PrivacyConfig
    audit_entry: AuditEntry | None


@dataclass(frozen=True)
class IdentitySwitch:
    """Outcome of a reveal, hide or first anonymous binding."""

    binding: ResourceIdentityBinding
    audit_entry: AuditEntry
    issued_handle: AnonymousHandle | None = None


@dataclass(frozen=True)
class HandleRotation:
    """Outcome of a handle rotation."""

    handle: AnonymousHandle
    revoked_handle_ids: tuple[str, ...]
    audit_entry: AuditEntry


@dataclass(frozen=True)
class RecoveryReport:
    """What a recovery sweep did with the pending markers it found.

    Attributes:
        committed: Transaction ids completed (audit entry existed).
        discarded: Transaction ids rolled back (no audit entry).
        skipped: Markers left alone (too young, or account under erasure).
    """

    committed: list[str] = field(default_factory=list)
    discarded: list[str] = field(default_factory=list)
    skipped: int = 0

    @property
    def resolved(self) -> int:
        return len(self.committed) + len(self.discarded)
