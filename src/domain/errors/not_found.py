"""Not-found errors for privacy entities."""

from __future__ import annotations

from src.domain.exceptions import PrivacyCoreError


class NotFoundError(PrivacyCoreError):
    """Raised when an account, handle, binding or job does not exist.

    HTTP Status: 404 Not Found

    Attributes:
        entity: Kind of entity that was looked up (e.g. "privacy_config").
        key: The lookup key.
    """

    problem_type = "urn:privacy-core:not-found"
    title = "Not Found"
    http_status = 404

    def __init__(self, entity: str, key: str) -> None:
        """Initialize not-found error.

        Args:
            entity: Kind of entity that was looked up.
            key: The lookup key.
        """
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} not found: {key}")
