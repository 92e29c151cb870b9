"""Ownership errors for resource identity bindings."""

from __future__ import annotations

from src.domain.exceptions import PrivacyCoreError


class OwnershipError(PrivacyCoreError):
    """Raised when the caller does not control a resource or identity.

    A caller controls a binding when it is bound to the caller's real
    account, or to an anonymous handle owned by the caller.

    HTTP Status: 403 Forbidden

    Attributes:
        account_id: The caller that was refused.
        resource_key: ``type:id`` of the resource, if the check was for one.
    """

    problem_type = "urn:privacy-core:ownership"
    title = "Not Resource Owner"
    http_status = 403

    def __init__(self, account_id: str, resource_key: str | None = None) -> None:
        """Initialize ownership error.

        Args:
            account_id: The caller that was refused.
            resource_key: ``type:id`` of the resource, if any.
        """
        self.account_id = account_id
        self.resource_key = resource_key
        target = resource_key or "the requested identity"
        super().__init__(f"Account {account_id} does not control {target}")
