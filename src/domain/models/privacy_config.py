"""Per-account privacy configuration model.

One PrivacyConfig exists for every account from the instant the account is
provisioned. It is never deleted; erasure only resets it to the defaults
produced by ``default_privacy_config``, which is the single place where
default values are defined.

Field dependencies:
- precise_location requires location_sharing
- privacy_level "anonymous" requires is_anonymous
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any

from src.domain.errors.validation import ValidationError


class PrivacyLevel(str, Enum):
    """Overall privacy posture of an account."""

    PUBLIC = "public"
    FRIENDS = "friends"
    PRIVATE = "private"
    ANONYMOUS = "anonymous"


class Visibility(str, Enum):
    """Audience for profile and activity views."""

    PUBLIC = "public"
    FRIENDS = "friends"
    PRIVATE = "private"


class MessagePermission(str, Enum):
    """Who may start a direct conversation with the account."""

    ALL = "all"
    FOLLOWERS = "followers"
    NONE = "none"


# Setting name -> value type. bool settings must be real booleans,
# enum settings accept the enum member or its string value.
SETTING_TYPES: dict[str, type] = {
    "is_anonymous": bool,
    "privacy_level": PrivacyLevel,
    "location_sharing": bool,
    "precise_location": bool,
    "location_history": bool,
    "show_posts": bool,
    "show_events": bool,
    "show_services": bool,
    "show_followers": bool,
    "show_following": bool,
    "profile_visibility": Visibility,
    "activity_visibility": Visibility,
    "allow_messages_from": MessagePermission,
    "analytics_enabled": bool,
    "personalization_enabled": bool,
    "marketing_emails": bool,
    "anonymous_posts": bool,
    "anonymous_comments": bool,
    "anonymous_votes": bool,
}


@dataclass(frozen=True)
class PrivacyConfig:
    """Privacy configuration of a single account.

    Attributes:
        account_id: Owning account.
        is_anonymous: Whether new content defaults to the anonymous persona.
        privacy_level: Overall privacy posture.
        location_sharing: Location may be shared at all.
        precise_location: Exact coordinates may be shared (needs location_sharing).
        location_history: Location history may be retained.
        show_posts..show_following: Per-section profile visibility flags.
        profile_visibility: Audience for the profile page.
        activity_visibility: Audience for the activity feed.
        allow_messages_from: Who may message the account.
        analytics_enabled: Consent to analytics processing.
        personalization_enabled: Consent to personalization.
        marketing_emails: Consent to marketing email.
        anonymous_posts/comments/votes: Per-kind anonymous-by-default flags.
        version: Store version of the committed row (CAS token).
        updated_at: Last committed change.
    """

    account_id: str
    is_anonymous: bool
    privacy_level: PrivacyLevel
    location_sharing: bool
    precise_location: bool
    location_history: bool
    show_posts: bool
    show_events: bool
    show_services: bool
    show_followers: bool
    show_following: bool
    profile_visibility: Visibility
    activity_visibility: Visibility
    allow_messages_from: MessagePermission
    analytics_enabled: bool
    personalization_enabled: bool
    marketing_emails: bool
    anonymous_posts: bool
    anonymous_comments: bool
    anonymous_votes: bool
    version: int = 0
    updated_at: datetime | None = None

    def settings(self) -> dict[str, Any]:
        """Return every setting as JSON-friendly values."""
        result: dict[str, Any] = {}
        for name in SETTING_TYPES:
            value = getattr(self, name)
            result[name] = value.value if isinstance(value, Enum) else value
        return result

    def with_updates(self, partial: dict[str, Any]) -> PrivacyConfig:
        """Return a copy with ``partial`` merged in, after validation.

        Args:
            partial: Setting name -> new value.

        Returns:
            The merged configuration.

        Raises:
            ValidationError: Unknown field, wrong type, bad enum value or a
                broken field dependency.
        """
        coerced = coerce_settings(partial)
        merged = replace(self, **coerced)
        violations = dependency_violations(merged.settings())
        if violations:
            raise ValidationError(
                "Privacy settings violate field dependencies",
                violations=violations,
            )
        return merged

    def changed_settings(self, other: PrivacyConfig) -> dict[str, tuple[Any, Any]]:
        """Settings whose value differs in ``other``: name -> (mine, theirs)."""
        mine = self.settings()
        theirs = other.settings()
        return {k: (mine[k], theirs[k]) for k in mine if mine[k] != theirs[k]}

    def to_row(self) -> dict[str, Any]:
        """Serialize the settings for persistence (version is store-managed)."""
        row = self.settings()
        row["account_id"] = self.account_id
        row["updated_at"] = self.updated_at.isoformat() if self.updated_at else None
        return row

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> PrivacyConfig:
        """Rebuild a committed config from a stored row."""
        coerced = coerce_settings({k: row[k] for k in SETTING_TYPES})
        updated_at = row.get("updated_at")
        return cls(
            account_id=row["account_id"],
            version=int(row.get("version", 0)),
            updated_at=datetime.fromisoformat(updated_at) if updated_at else None,
            **coerced,
        )


def default_privacy_config(account_id: str) -> PrivacyConfig:
    """Factory defaults for a new or erased account (anonymous-by-default).

    This is the only place default privacy values are defined. Every
    entry point (provisioning, erasure reset) goes through it.
    """
    return PrivacyConfig(
        account_id=account_id,
        is_anonymous=True,
        privacy_level=PrivacyLevel.ANONYMOUS,
        location_sharing=False,
        precise_location=False,
        location_history=False,
        show_posts=False,
        show_events=False,
        show_services=False,
        show_followers=False,
        show_following=False,
        profile_visibility=Visibility.PRIVATE,
        activity_visibility=Visibility.PRIVATE,
        allow_messages_from=MessagePermission.NONE,
        analytics_enabled=False,
        personalization_enabled=False,
        marketing_emails=False,
        anonymous_posts=True,
        anonymous_comments=True,
        anonymous_votes=True,
    )


def coerce_settings(partial: dict[str, Any]) -> dict[str, Any]:
    """Validate names and value types of a settings patch.

    Args:
        partial: Setting name -> raw value.

    Returns:
        Setting name -> typed value (enum members for enum settings).

    Raises:
        ValidationError: On the first batch of invalid fields found.
    """
    violations: list[str] = []
    coerced: dict[str, Any] = {}
    for name, value in partial.items():
        expected = SETTING_TYPES.get(name)
        if expected is None:
            violations.append(f"unknown privacy setting: {name}")
            continue
        if expected is bool:
            if not isinstance(value, bool):
                violations.append(f"{name} must be a boolean")
                continue
            coerced[name] = value
            continue
        try:
            coerced[name] = expected(value)
        except ValueError:
            allowed = ", ".join(member.value for member in expected)  # type: ignore[attr-defined]
            violations.append(f"{name} must be one of: {allowed}")
    if violations:
        field = None
        if len(violations) == 1:
            field = next(
                (n for n in partial if n not in coerced),
                None,
            )
        raise ValidationError(
            "Invalid privacy settings", field=field, violations=violations
        )
    return coerced


def dependency_violations(settings: dict[str, Any]) -> list[str]:
    """Check cross-field dependencies on a full settings mapping."""
    violations = []
    if settings["precise_location"] and not settings["location_sharing"]:
        violations.append("precise_location requires location_sharing")
    if (
        settings["privacy_level"] == PrivacyLevel.ANONYMOUS.value
        and not settings["is_anonymous"]
    ):
        violations.append("privacy_level 'anonymous' requires is_anonymous")
    return violations


