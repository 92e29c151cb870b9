"""Anonymous handle generation errors."""

from __future__ import annotations

from src.domain.exceptions import PrivacyCoreError


class GeneratorExhaustedError(PrivacyCoreError):
    """Raised when no unique, valid handle was found within the retry budget.

    HTTP Status: 503 Service Unavailable (retryable)

    Attributes:
        account_id: Account the handle was being generated for.
        attempts: How many candidates were tried.
    """

    problem_type = "urn:privacy-core:handle-generator-exhausted"
    title = "Handle Generator Exhausted"
    http_status = 503
    retryable = True

    def __init__(self, account_id: str, attempts: int) -> None:
        """Initialize generator exhausted error.

        Args:
            account_id: Account the handle was being generated for.
            attempts: Number of candidates tried.
        """
        self.account_id = account_id
        self.attempts = attempts
        super().__init__(
            f"Could not generate a unique anonymous handle for account "
            f"{account_id} after {attempts} attempts"
        )
