"""Storage errors raised by persistence adapters.

Storage errors are transient by definition: services retry them with
backoff before surfacing them to the caller as retryable.
"""

from __future__ import annotations

from src.domain.exceptions import PrivacyCoreError


class StorageError(PrivacyCoreError):
    """Raised when the underlying row store fails transiently.

    HTTP Status: 503 Service Unavailable (retryable)

    Attributes:
        operation: The store operation that failed (e.g. "append").
        table: The logical table involved.
    """

    problem_type = "urn:privacy-core:storage-unavailable"
    title = "Storage Unavailable"
    http_status = 503
    retryable = True

    def __init__(self, message: str, operation: str = "", table: str = "") -> None:
        """Initialize storage error.

        Args:
            message: Description of the failure.
            operation: The store operation that failed.
            table: The logical table involved.
        """
        self.operation = operation
        self.table = table
        super().__init__(message)


class AuditUnavailableError(StorageError):
    """Raised when an audit entry cannot be durably appended.

    The transaction that needed the entry has already been rolled back
    when this error reaches the caller: the system fails closed.
    """

    problem_type = "urn:privacy-core:audit-unavailable"
    title = "Audit Trail Unavailable"

    def __init__(self, account_id: str, transaction_id: str) -> None:
        """Initialize audit unavailable error.

        Args:
            account_id: Account whose trail could not be written.
            transaction_id: The transaction that was discarded.
        """
        self.account_id = account_id
        self.transaction_id = transaction_id
        super().__init__(
            f"Audit trail unavailable for account {account_id}; "
            f"transaction {transaction_id} was discarded",
            operation="append",
            table="audit_entries",
        )
