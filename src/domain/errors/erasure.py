"""Erasure workflow errors."""

from __future__ import annotations

from src.domain.exceptions import PrivacyCoreError


class ErasureInProgressError(PrivacyCoreError):
    """Raised when an operation is blocked by an erasure job.

    Two situations raise it:
    - a privacy-mutating intent for an account with an unfinished job
    - a cancellation request after the job passed its point of no return

    HTTP Status: 423 Locked

    Attributes:
        account_id: The account under erasure.
        job_id: The blocking job.
    """

    problem_type = "urn:privacy-core:erasure-in-progress"
    title = "Erasure In Progress"
    http_status = 423

    def __init__(self, account_id: str, job_id: str, message: str | None = None) -> None:
        """Initialize erasure in progress error.

        Args:
            account_id: The account under erasure.
            job_id: The blocking job.
            message: Optional override message.
        """
        self.account_id = account_id
        self.job_id = job_id
        super().__init__(
            message
            or f"Privacy data for account {account_id} is being erased (job {job_id})"
        )


class AccountErasedError(ErasureInProgressError):
    """Raised when a mutating intent targets an account whose erasure completed."""

    problem_type = "urn:privacy-core:account-erased"
    title = "Account Privacy Data Erased"

    def __init__(self, account_id: str, job_id: str) -> None:
        """Initialize account erased error.

        Args:
            account_id: The erased account.
            job_id: The completed erasure job.
        """
        super().__init__(
            account_id,
            job_id,
            message=f"Privacy data for account {account_id} was erased (job {job_id})",
        )
