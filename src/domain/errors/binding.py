"""Resource identity binding state errors."""

from __future__ import annotations

from src.domain.exceptions import PrivacyCoreError


class BindingErasedError(PrivacyCoreError):
    """Raised when a transition is attempted on an Erased binding.

    Erased is terminal: no reveal, hide or rebinding ever leaves it.

    HTTP Status: 409 Conflict
    """

    problem_type = "urn:privacy-core:binding-erased"
    title = "Binding Erased"
    http_status = 409

    def __init__(self, resource_key: str) -> None:
        """Initialize binding erased error.

        Args:
            resource_key: ``type:id`` of the erased resource.
        """
        self.resource_key = resource_key
        super().__init__(
            f"Attribution for {resource_key} was permanently erased"
        )
