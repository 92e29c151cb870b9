"""Validation errors for privacy configuration and handle input.

Raised before any state is touched: a failed validation never stages,
audits or commits anything.
"""

from __future__ import annotations

from src.domain.exceptions import PrivacyCoreError


class ValidationError(PrivacyCoreError):
    """Raised when a field value or a field dependency is invalid.

    Surfaced to the caller unchanged (HTTP 422).

    Attributes:
        field: Name of the offending field, when a single field is at fault.
        violations: Every problem found, in detection order.
    """

    problem_type = "urn:privacy-core:validation"
    title = "Validation Failed"
    http_status = 422

    def __init__(
        self,
        message: str,
        field: str | None = None,
        violations: list[str] | None = None,
    ) -> None:
        """Initialize validation error.

        Args:
            message: Summary of the failure.
            field: Offending field name, if any.
            violations: Individual violation messages.
        """
        self.field = field
        self.violations = list(violations or [message])
        super().__init__(message)

    def to_problem_dict(self) -> dict:
        """Serialize including field and violations."""
        problem = super().to_problem_dict()
        problem["field"] = self.field
        problem["violations"] = self.violations
        return problem
