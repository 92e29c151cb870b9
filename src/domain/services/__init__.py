"""Domain services for the privacy core.

Domain services contain logic that doesn't naturally fit in a single model.
They must NOT depend on infrastructure.

Available services:
- HandleGenerator: anonymous handle candidates
- visibility_policy: profile, activity and message visibility checks
- recommendations_for: privacy recommendations for a configuration
"""

from src.domain.services.handle_generator import HandleGenerator
from src.domain.services.privacy_recommendations import (
    PrivacyRecommendation,
    RecommendationSeverity,
    recommendations_for,
)
from src.domain.services.visibility_policy import (
    can_send_message,
    can_view_activity,
    can_view_profile,
)

__all__ = [
    "HandleGenerator",
    "PrivacyRecommendation",
    "RecommendationSeverity",
    "can_send_message",
    "can_view_activity",
    "can_view_profile",
    "recommendations_for",
]
