"""Conflict errors for optimistic (CAS) writes.

A conflict means another writer committed first. It is retryable: the
caller re-reads and decides whether to try again.
"""

from __future__ import annotations

from src.domain.exceptions import PrivacyCoreError


class ConflictError(PrivacyCoreError):
    """Raised when a compare-and-swap write loses against a concurrent writer.

    HTTP Status: 409 Conflict (retryable)

    Attributes:
        table: Logical table of the contested row.
        key: Key of the contested row.
        expected_version: Version the writer based its change on.
        actual_version: Version found in the store (None if row missing).
    """

    problem_type = "urn:privacy-core:conflict"
    title = "Concurrent Modification"
    http_status = 409
    retryable = True

    def __init__(
        self,
        table: str,
        key: str,
        expected_version: int,
        actual_version: int | None = None,
        message: str | None = None,
    ) -> None:
        """Initialize conflict error.

        Args:
            table: Logical table of the contested row.
            key: Key of the contested row.
            expected_version: Version the writer expected.
            actual_version: Version actually stored.
            message: Optional override message.
        """
        self.table = table
        self.key = key
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            message
            or (
                f"Concurrent modification of {table}/{key}: expected version "
                f"{expected_version}, found {actual_version}"
            )
        )


class AlreadyBoundError(ConflictError):
    """Raised when a resource that already has a binding is bound again."""

    problem_type = "urn:privacy-core:already-bound"
    title = "Resource Already Bound"
    retryable = False

    def __init__(self, resource_key: str) -> None:
        """Initialize already bound error.

        Args:
            resource_key: ``type:id`` of the resource.
        """
        self.resource_key = resource_key
        super().__init__(
            table="identity_bindings",
            key=resource_key,
            expected_version=0,
            message=f"Resource {resource_key} already has an identity binding",
        )


class AccountAlreadyProvisionedError(ConflictError):
    """Raised when privacy state is provisioned twice for one account."""

    problem_type = "urn:privacy-core:already-provisioned"
    title = "Account Already Provisioned"
    retryable = False

    def __init__(self, account_id: str) -> None:
        """Initialize already provisioned error.

        Args:
            account_id: The account that already has a privacy config.
        """
        self.account_id = account_id
        super().__init__(
            table="privacy_configs",
            key=account_id,
            expected_version=0,
            message=f"Privacy state already provisioned for account {account_id}",
        )


class StaleTransactionError(ConflictError):
    """Raised when a staged change is gone by the time it is committed.

    The pending marker was discarded by the recovery sweep or overwritten
    by erasure. Retrying the commit cannot succeed.
    """

    problem_type = "urn:privacy-core:stale-transaction"
    title = "Stale Transaction"
    retryable = False

    def __init__(self, table: str, key: str, transaction_id: str) -> None:
        """Initialize stale transaction error.

        Args:
            table: Logical table of the staged row.
            key: Key of the staged row.
            transaction_id: The transaction whose marker is gone.
        """
        self.transaction_id = transaction_id
        super().__init__(
            table=table,
            key=key,
            expected_version=0,
            message=f"Pending change {transaction_id} on {table}/{key} no longer exists",
        )
