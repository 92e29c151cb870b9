"""Domain errors for the privacy core.

Provides specific exception classes for different failure scenarios.
All exceptions inherit from PrivacyCoreError.
"""

from src.domain.errors.binding import BindingErasedError
from src.domain.errors.concurrent_modification import (
    AccountAlreadyProvisionedError,
    AlreadyBoundError,
    ConflictError,
    StaleTransactionError,
)
from src.domain.errors.erasure import AccountErasedError, ErasureInProgressError
from src.domain.errors.handle_generation import GeneratorExhaustedError
from src.domain.errors.not_found import NotFoundError
from src.domain.errors.ownership import OwnershipError
from src.domain.errors.storage import AuditUnavailableError, StorageError
from src.domain.errors.validation import ValidationError

__all__: list[str] = [
    "AccountAlreadyProvisionedError",
    "AccountErasedError",
    "AlreadyBoundError",
    "AuditUnavailableError",
    "BindingErasedError",
    "ConflictError",
    "ErasureInProgressError",
    "GeneratorExhaustedError",
    "NotFoundError",
    "OwnershipError",
    "StaleTransactionError",
    "StorageError",
    "ValidationError",
]
