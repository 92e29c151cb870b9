"""Anonymous handle domain model.

An anonymous handle is a pseudonym owned by exactly one account. Handle
strings are unique case-insensitively across the whole system and are never
re-issued, even after the owning handle has been revoked.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, Final

from src.domain.errors.validation import ValidationError
from src.domain.models.pending_change import PendingAction, PendingChange

HANDLE_MIN_LENGTH: Final[int] = 3
HANDLE_MAX_LENGTH: Final[int] = 30
DEFAULT_MAX_LENGTH: Final[int] = 20

HANDLE_PATTERN: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z0-9_-]+$")

RESERVED_HANDLES: Final[frozenset[str]] = frozenset(
    {
        "admin",
        "administrator",
        "moderator",
        "mod",
        "support",
        "help",
        "api",
        "www",
        "mail",
        "email",
        "root",
        "user",
        "guest",
        "anonymous",
        "null",
        "undefined",
        "true",
        "false",
        "system",
        "service",
    }
)

BLOCKED_SUBSTRINGS: Final[tuple[str, ...]] = (
    "damn",
    "hell",
    "shit",
    "fuck",
    "bitch",
    "ass",
)


class HandleFormat(str, Enum):
    """Word layout used when generating a handle."""

    ADJECTIVE_NOUN = "adjective-noun"
    COLOR_NOUN = "color-noun"
    ADJECTIVE_COLOR = "adjective-color"
    NOUN_COLOR = "noun-color"
    RANDOM = "random"


@dataclass(frozen=True)
class HandleGenerationParams:
    """Caller-supplied knobs for handle generation.

    Attributes:
        format: Word layout; RANDOM picks one of the concrete layouts.
        prefix: Optional leading text prepended to the generated words.
        include_numbers: Append a numeric suffix in [1, 9999].
        max_length: Upper bound on the handle length.
    """

    format: HandleFormat = HandleFormat.RANDOM
    prefix: str = ""
    include_numbers: bool = True
    max_length: int = DEFAULT_MAX_LENGTH

    def __post_init__(self) -> None:
        if not HANDLE_MIN_LENGTH <= self.max_length <= HANDLE_MAX_LENGTH:
            raise ValidationError(
                f"max_length must be between {HANDLE_MIN_LENGTH} and {HANDLE_MAX_LENGTH}",
                field="max_length",
            )
        if self.prefix and not HANDLE_PATTERN.match(self.prefix):
            raise ValidationError(
                "prefix may only contain letters, digits, '_' and '-'",
                field="prefix",
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "format": self.format.value,
            "prefix": self.prefix,
            "include_numbers": self.include_numbers,
            "max_length": self.max_length,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> HandleGenerationParams:
        if not data:
            return cls()
        try:
            handle_format = HandleFormat(data.get("format", HandleFormat.RANDOM.value))
        except ValueError as e:
            raise ValidationError(
                f"Unknown handle format: {data.get('format')}", field="format"
            ) from e
        return cls(
            format=handle_format,
            prefix=data.get("prefix") or "",
            include_numbers=bool(data.get("include_numbers", True)),
            max_length=int(data.get("max_length", DEFAULT_MAX_LENGTH)),
        )


@dataclass(frozen=True)
class AnonymousHandle:
    """A pseudonym owned by one account.

    Attributes:
        id: Handle identifier (UUIDv7).
        owner_account_id: The account that owns this handle.
        handle_string: Unique (case-insensitive) display string.
        created_at: When the handle was issued.
        generation_params: Parameters the handle was generated with.
        revoked: True once the handle has been revoked.
        revoked_at: When the revocation was committed.
        version: Store version (CAS token).
        pending: Staged issue or revoke marker, if any.
    """

    id: str
    owner_account_id: str
    handle_string: str
    created_at: datetime
    generation_params: HandleGenerationParams
    revoked: bool = False
    revoked_at: datetime | None = None
    version: int = 0
    pending: PendingChange | None = None

    @property
    def normalized(self) -> str:
        return normalize_handle(self.handle_string)

    @property
    def is_issued(self) -> bool:
        """False while the initial issue is still uncommitted."""
        return not (self.pending and self.pending.action == PendingAction.ISSUE)

    @property
    def is_active(self) -> bool:
        """Usable for new attributions."""
        if self.revoked or not self.is_issued:
            return False
        return not (self.pending and self.pending.action == PendingAction.REVOKE)

    def with_revocation(self, revoked_at: datetime) -> AnonymousHandle:
        return replace(self, revoked=True, revoked_at=revoked_at, pending=None)

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "owner_account_id": self.owner_account_id,
            "handle_string": self.handle_string,
            "created_at": self.created_at.isoformat(),
            "generation_params": self.generation_params.to_dict(),
            "revoked": self.revoked,
            "revoked_at": self.revoked_at.isoformat() if self.revoked_at else None,
            "pending": self.pending.to_dict() if self.pending else None,
            "has_pending": self.pending is not None,
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> AnonymousHandle:
        revoked_at = row.get("revoked_at")
        return cls(
            id=row["id"],
            owner_account_id=row["owner_account_id"],
            handle_string=row["handle_string"],
            created_at=datetime.fromisoformat(row["created_at"]),
            generation_params=HandleGenerationParams.from_dict(
                row.get("generation_params")
            ),
            revoked=bool(row.get("revoked", False)),
            revoked_at=datetime.fromisoformat(revoked_at) if revoked_at else None,
            version=int(row.get("version", 0)),
            pending=PendingChange.from_dict(row.get("pending")),
        )


def normalize_handle(handle_string: str) -> str:
    """Case-folded form used for uniqueness checks."""
    return handle_string.lower()


def validate_handle_string(handle_string: str) -> list[str]:
    """Check a handle string against the format rules.

    Returns:
        Human-readable problems; empty when the handle is acceptable.
    """
    problems = []
    if len(handle_string) < HANDLE_MIN_LENGTH:
        problems.append(f"handle must be at least {HANDLE_MIN_LENGTH} characters")
    if len(handle_string) > HANDLE_MAX_LENGTH:
        problems.append(f"handle must be at most {HANDLE_MAX_LENGTH} characters")
    if not HANDLE_PATTERN.match(handle_string):
        problems.append("handle may only contain letters, digits, '_' and '-'")
    lowered = normalize_handle(handle_string)
    if lowered in RESERVED_HANDLES:
        problems.append("handle is reserved")
    if any(word in lowered for word in BLOCKED_SUBSTRINGS):
        problems.append("handle contains blocked words")
    return problems
