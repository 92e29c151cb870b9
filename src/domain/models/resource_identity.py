"""Resource identity binding domain model.

Every piece of user-generated content is attributed to exactly one acting
identity: the author's real account or one of their anonymous handles.
The erasure workflow can move a binding to the terminal erased placeholder,
after which no transition leaves it.

State machine:
    ANONYMOUS_BOUND <-> REAL_BOUND  (hide / reveal)
    ANONYMOUS_BOUND  -> ERASED      (erasure only)
    REAL_BOUND       -> ERASED      (erasure only)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Union

from src.domain.errors.validation import ValidationError
from src.domain.models.pending_change import PendingChange


class ResourceType(str, Enum):
    """Kinds of content that carry an identity binding."""

    PROFILE = "profile"
    POST = "post"
    COMMENT = "comment"
    EVENT = "event"
    SERVICE = "service"
    MESSAGE = "message"


@dataclass(frozen=True)
class ResourceRef:
    """Reference to one piece of content."""

    resource_type: ResourceType
    resource_id: str

    def __post_init__(self) -> None:
        if not isinstance(self.resource_type, ResourceType):
            raise TypeError(
                f"resource_type must be a ResourceType, got {type(self.resource_type).__name__}"
            )
        if not self.resource_id or not self.resource_id.strip():
            raise ValidationError("resource_id must not be empty", field="resource_id")

    @property
    def key(self) -> str:
        return f"{self.resource_type.value}:{self.resource_id}"

    @classmethod
    def parse(cls, resource_type: str, resource_id: str) -> ResourceRef:
        """Build a reference from raw strings (API path parameters)."""
        try:
            parsed = ResourceType(resource_type)
        except ValueError as e:
            raise ValidationError(
                f"Unknown resource type: {resource_type}", field="resource_type"
            ) from e
        return cls(resource_type=parsed, resource_id=resource_id)


class IdentityKind(str, Enum):
    REAL_ACCOUNT = "real_account"
    ANONYMOUS_HANDLE = "anonymous_handle"
    ERASED = "erased"


@dataclass(frozen=True)
class RealAccountIdentity:
    account_id: str

    @property
    def kind(self) -> IdentityKind:
        return IdentityKind.REAL_ACCOUNT


@dataclass(frozen=True)
class AnonymousHandleIdentity:
    """Attribution to an anonymous handle.

    The owning account is carried alongside the handle id so ownership can
    be checked without a second lookup.
    """

    handle_id: str
    owner_account_id: str

    @property
    def kind(self) -> IdentityKind:
        return IdentityKind.ANONYMOUS_HANDLE


@dataclass(frozen=True)
class ErasedIdentity:
    """Terminal placeholder: content remains, attribution is gone."""

    @property
    def kind(self) -> IdentityKind:
        return IdentityKind.ERASED


ActingIdentity = Union[RealAccountIdentity, AnonymousHandleIdentity, ErasedIdentity]

ERASED_IDENTITY = ErasedIdentity()


def identity_to_dict(identity: ActingIdentity) -> dict[str, Any]:
    if isinstance(identity, RealAccountIdentity):
        return {"kind": identity.kind.value, "account_id": identity.account_id}
    if isinstance(identity, AnonymousHandleIdentity):
        return {
            "kind": identity.kind.value,
            "handle_id": identity.handle_id,
            "owner_account_id": identity.owner_account_id,
        }
    return {"kind": IdentityKind.ERASED.value}


def identity_from_dict(data: dict[str, Any]) -> ActingIdentity:
    kind = IdentityKind(data["kind"])
    if kind == IdentityKind.REAL_ACCOUNT:
        return RealAccountIdentity(account_id=data["account_id"])
    if kind == IdentityKind.ANONYMOUS_HANDLE:
        return AnonymousHandleIdentity(
            handle_id=data["handle_id"],
            owner_account_id=data["owner_account_id"],
        )
    return ERASED_IDENTITY


class BindingState(str, Enum):
    ANONYMOUS_BOUND = "anonymous_bound"
    REAL_BOUND = "real_bound"
    ERASED = "erased"


@dataclass(frozen=True)
class ResourceIdentityBinding:
    """Current attribution of one resource.

    Attributes:
        resource: The bound resource.
        identity: Committed acting identity (exactly one at any time).
        version: Store version, incremented on every write (CAS token).
        updated_at: Last committed change.
        pending: Staged but uncommitted identity switch, if any.
        bound: False until the first binding is committed.
    """

    resource: ResourceRef
    identity: ActingIdentity
    version: int
    updated_at: datetime
    pending: PendingChange | None = None
    bound: bool = True

    @property
    def state(self) -> BindingState:
        if isinstance(self.identity, RealAccountIdentity):
            return BindingState.REAL_BOUND
        if isinstance(self.identity, AnonymousHandleIdentity):
            return BindingState.ANONYMOUS_BOUND
        return BindingState.ERASED

    @property
    def is_anonymous(self) -> bool:
        return self.state != BindingState.REAL_BOUND

    @property
    def controlling_account_id(self) -> str | None:
        """Account that may switch this binding, None once erased."""
        if isinstance(self.identity, RealAccountIdentity):
            return self.identity.account_id
        if isinstance(self.identity, AnonymousHandleIdentity):
            return self.identity.owner_account_id
        return None

    def is_controlled_by(self, account_id: str) -> bool:
        return self.controlling_account_id == account_id

    def staged_identity(self) -> ActingIdentity | None:
        """Identity the pending marker would commit, if any."""
        if self.pending is None or "identity" not in self.pending.payload:
            return None
        return identity_from_dict(self.pending.payload["identity"])

    def to_row(self) -> dict[str, Any]:
        handle_id = (
            self.identity.handle_id
            if isinstance(self.identity, AnonymousHandleIdentity)
            else None
        )
        return {
            "resource_type": self.resource.resource_type.value,
            "resource_id": self.resource.resource_id,
            "identity": identity_to_dict(self.identity),
            "handle_id": handle_id,
            "account_id": self.controlling_account_id,
            "state": self.state.value,
            "updated_at": self.updated_at.isoformat(),
            "pending": self.pending.to_dict() if self.pending else None,
            "has_pending": self.pending is not None,
            "bound": self.bound,
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> ResourceIdentityBinding:
        return cls(
            resource=ResourceRef(
                resource_type=ResourceType(row["resource_type"]),
                resource_id=row["resource_id"],
            ),
            identity=identity_from_dict(row["identity"]),
            version=int(row.get("version", 0)),
            updated_at=datetime.fromisoformat(row["updated_at"]),
            pending=PendingChange.from_dict(row.get("pending")),
            bound=bool(row.get("bound", True)),
        )
