"""Domain primitives.

- AtomicOperationContext: staged transaction with compensating rollback
"""

from src.domain.primitives.ensure_atomicity import AtomicOperationContext

__all__: list[str] = ["AtomicOperationContext"]
