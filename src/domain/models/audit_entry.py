"""Audit entry domain models.

Audit entries form an append-only, strictly ordered per-account log of
every privacy-sensitive transition. ``sequence`` is assigned by the store
at append time and is strictly increasing per account with no gaps.

Each entry carries a BLAKE3 content hash over its canonical fields so a
reader can detect an entry altered outside the anonymization path.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any

import blake3


class AuditActionKind(str, Enum):
    """Privacy-sensitive transitions recorded in the audit trail."""

    IDENTITY_REVEAL = "identity_reveal"
    IDENTITY_HIDE = "identity_hide"
    PRIVACY_SETTING_CHANGE = "privacy_setting_change"
    ANONYMOUS_POST = "anonymous_post"
    DATA_ACCESS = "data_access"
    DATA_DELETION = "data_deletion"


@dataclass(frozen=True)
class ActorMetadata:
    """Request context of the caller who triggered a transition.

    Supplied by the caller of the policy enforcer (gateway headers and a
    geo-IP collaborator); this package never invents values for it.
    """

    user_agent: str | None = None
    network_origin: str | None = None
    coarse_location: str | None = None

    @classmethod
    def system(cls, component: str) -> ActorMetadata:
        """Metadata for transitions performed by background jobs."""
        return cls(user_agent=f"system:{component}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_agent": self.user_agent,
            "network_origin": self.network_origin,
            "coarse_location": self.coarse_location,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ActorMetadata:
        data = data or {}
        return cls(
            user_agent=data.get("user_agent"),
            network_origin=data.get("network_origin"),
            coarse_location=data.get("coarse_location"),
        )


@dataclass(frozen=True)
class AuditEntry:
    """One immutable audit record.

    Attributes:
        id: Entry identifier (UUIDv7).
        account_id: Account whose privacy state changed.
        action_kind: Kind of transition.
        resource_type: Resource kind for identity transitions, else None.
        resource_id: Resource id for identity transitions, else None.
        old_value: Value before the transition.
        new_value: Value after the transition.
        actor_metadata: Caller context.
        timestamp: When the transition was recorded.
        transaction_id: Links the entry to the staged state change.
        sequence: Per-account order, 0 until assigned by the store.
        anonymized: True once retention stripped the identifying fields.
        content_hash: BLAKE3 hex digest of the canonical fields.
    """

    id: str
    account_id: str
    action_kind: AuditActionKind
    resource_type: str | None
    resource_id: str | None
    old_value: dict[str, Any]
    new_value: dict[str, Any]
    actor_metadata: ActorMetadata
    timestamp: datetime
    transaction_id: str
    sequence: int = 0
    anonymized: bool = False
    content_hash: str = ""

    def canonical_bytes(self) -> bytes:
        """Canonical serialization covered by the content hash.

        The sequence is excluded: it is assigned after the hash is computed.
        """
        content = {
            "id": self.id,
            "account_id": self.account_id,
            "action_kind": self.action_kind.value,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "actor_metadata": self.actor_metadata.to_dict(),
            "timestamp": self.timestamp.isoformat(),
            "transaction_id": self.transaction_id,
            "anonymized": self.anonymized,
        }
        return json.dumps(content, sort_keys=True).encode("utf-8")

    def compute_content_hash(self) -> str:
        return blake3.blake3(self.canonical_bytes()).hexdigest()

    def sealed(self) -> AuditEntry:
        """Copy with ``content_hash`` filled in."""
        return replace(self, content_hash=self.compute_content_hash())

    def verify_integrity(self) -> bool:
        return bool(self.content_hash) and self.content_hash == self.compute_content_hash()

    def anonymized_copy(self) -> AuditEntry:
        """Copy with values, actor metadata and resource ids stripped.

        Keeps id, account, kind, sequence, timestamp and transaction id so
        ordering and counts survive retention.
        """
        stripped = replace(
            self,
            resource_id=None,
            old_value={},
            new_value={},
            actor_metadata=ActorMetadata(),
            anonymized=True,
        )
        return stripped.sealed()

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "action_kind": self.action_kind.value,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "actor_metadata": self.actor_metadata.to_dict(),
            "timestamp": self.timestamp.isoformat(),
            "transaction_id": self.transaction_id,
            "anonymized": self.anonymized,
            "content_hash": self.content_hash,
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> AuditEntry:
        return cls(
            id=row["id"],
            account_id=row["account_id"],
            action_kind=AuditActionKind(row["action_kind"]),
            resource_type=row.get("resource_type"),
            resource_id=row.get("resource_id"),
            old_value=dict(row.get("old_value") or {}),
            new_value=dict(row.get("new_value") or {}),
            actor_metadata=ActorMetadata.from_dict(row.get("actor_metadata")),
            timestamp=datetime.fromisoformat(row["timestamp"]),
            transaction_id=row["transaction_id"],
            sequence=int(row.get("sequence", 0)),
            anonymized=bool(row.get("anonymized", False)),
            content_hash=row.get("content_hash", ""),
        )


@dataclass(frozen=True)
class AuditQueryFilters:
    """Optional filters for audit queries (all combined with AND)."""

    action_kinds: tuple[AuditActionKind, ...] | None = None
    resource_type: str | None = None
    resource_id: str | None = None
    since: datetime | None = None
    until: datetime | None = None
    max_sequence: int | None = None


@dataclass(frozen=True)
class AuditSummary:
    """Per-kind counts plus the most recent entries of one account."""

    account_id: str
    total_actions: int
    counts: dict[AuditActionKind, int] = field(default_factory=dict)
    recent_actions: tuple[AuditEntry, ...] = ()

    @property
    def identity_reveals(self) -> int:
        return self.counts.get(AuditActionKind.IDENTITY_REVEAL, 0)

    @property
    def identity_hides(self) -> int:
        return self.counts.get(AuditActionKind.IDENTITY_HIDE, 0)

    @property
    def privacy_changes(self) -> int:
        return self.counts.get(AuditActionKind.PRIVACY_SETTING_CHANGE, 0)

    @property
    def anonymous_posts(self) -> int:
        return self.counts.get(AuditActionKind.ANONYMOUS_POST, 0)

    @property
    def data_accesses(self) -> int:
        return self.counts.get(AuditActionKind.DATA_ACCESS, 0)
