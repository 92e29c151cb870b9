"""Privacy recommendations derived from the current configuration."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from src.domain.models.privacy_config import (
    MessagePermission,
    PrivacyConfig,
    Visibility,
)


class RecommendationSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"


@dataclass(frozen=True)
class PrivacyRecommendation:
    """One suggested change.

    Attributes:
        setting: Setting the recommendation is about.
        suggested_value: Value that would address it.
        reason: Short human-readable explanation.
        severity: How strongly the change is suggested.
    """

    setting: str
    suggested_value: object
    reason: str
    severity: RecommendationSeverity = RecommendationSeverity.INFO


def recommendations_for(config: PrivacyConfig) -> list[PrivacyRecommendation]:
    """Recommendations for ``config``, most important first."""
    found: list[PrivacyRecommendation] = []

    if config.precise_location:
        found.append(
            PrivacyRecommendation(
                setting="precise_location",
                suggested_value=False,
                reason="Precise location reveals where you are to everyone who can see your content",
                severity=RecommendationSeverity.WARNING,
            )
        )
    if config.location_history:
        found.append(
            PrivacyRecommendation(
                setting="location_history",
                suggested_value=False,
                reason="Location history builds a record of your movements",
                severity=RecommendationSeverity.WARNING,
            )
        )
    if config.profile_visibility == Visibility.PUBLIC:
        found.append(
            PrivacyRecommendation(
                setting="profile_visibility",
                suggested_value=Visibility.FRIENDS.value,
                reason="Your profile is visible to anyone",
            )
        )
    if config.allow_messages_from == MessagePermission.ALL:
        found.append(
            PrivacyRecommendation(
                setting="allow_messages_from",
                suggested_value=MessagePermission.FOLLOWERS.value,
                reason="Anyone can message you, including accounts you do not know",
            )
        )
    if not config.is_anonymous:
        found.append(
            PrivacyRecommendation(
                setting="is_anonymous",
                suggested_value=True,
                reason="Anonymous mode keeps new posts from being linked to your account",
            )
        )
    if config.marketing_emails:
        found.append(
            PrivacyRecommendation(
                setting="marketing_emails",
                suggested_value=False,
                reason="Marketing email shares your address with campaign tooling",
            )
        )

    found.sort(key=lambda r: r.severity != RecommendationSeverity.WARNING)
    return found
