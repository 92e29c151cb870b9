"""Visibility rules derived from an account's privacy configuration.

Pure decisions: the caller supplies the owner's config and whether the
viewer follows the owner. The follow relationship itself is owned by the
social graph, outside this package.
"""

from __future__ import annotations

from src.domain.models.privacy_config import (
    MessagePermission,
    PrivacyConfig,
    Visibility,
)


def can_view_profile(viewer_id: str, owner: PrivacyConfig, viewer_follows: bool) -> bool:
    """Whether ``viewer_id`` may see the owner's profile page."""
    if viewer_id == owner.account_id:
        return True
    return _audience_allows(owner.profile_visibility, viewer_follows)


def can_view_activity(viewer_id: str, owner: PrivacyConfig, viewer_follows: bool) -> bool:
    """Whether ``viewer_id`` may see the owner's activity feed."""
    if viewer_id == owner.account_id:
        return True
    return _audience_allows(owner.activity_visibility, viewer_follows)


def can_send_message(sender_id: str, recipient: PrivacyConfig, sender_follows: bool) -> bool:
    """Whether ``sender_id`` may open a conversation with the recipient."""
    if sender_id == recipient.account_id:
        return False
    if recipient.allow_messages_from == MessagePermission.ALL:
        return True
    if recipient.allow_messages_from == MessagePermission.FOLLOWERS:
        return sender_follows
    return False


def _audience_allows(visibility: Visibility, viewer_follows: bool) -> bool:
    if visibility == Visibility.PUBLIC:
        return True
    if visibility == Visibility.FRIENDS:
        return viewer_follows
    return False
