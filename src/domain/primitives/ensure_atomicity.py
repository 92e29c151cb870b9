"""Atomic staged transaction with compensating rollback.

Every privacy intent stages changes on several rows before its audit entry
is appended. Until the entry is durable, each staged write registers a
compensation (discard the pending marker). If the block raises, the
compensations run in reverse order and the original exception propagates.

Once the audit entry exists the transaction must not be rolled back: the
record says the change happened. ``mark_audited`` disarms every
compensation; a failure after that point leaves pending markers that the
recovery sweep will commit.

Usage:
    async with AtomicOperationContext(transaction_id) as ctx:
        await stage_change()
        ctx.add_rollback(discard_change)
        await append_audit_entry()
        ctx.mark_audited()
        await commit_change()
"""

import asyncio
import inspect
from collections.abc import Callable, Coroutine
from types import TracebackType
from typing import Any

import structlog

log = structlog.get_logger()

# Type alias for rollback handlers - can be sync or async
RollbackHandler = Callable[[], None] | Callable[[], Coroutine[Any, Any, Any]]


class AtomicOperationContext:
    """Context manager running compensations when a staged transaction fails.

    Attributes:
        transaction_id: Id shared by every staged row and the audit entry.
        audited: True once the audit entry was appended.
        _rollback_handlers: Registered compensations (run LIFO).
    """

    def __init__(self, transaction_id: str) -> None:
        self.transaction_id = transaction_id
        self.audited = False
        self._rollback_handlers: list[RollbackHandler] = []

    def add_rollback(self, handler: RollbackHandler) -> None:
        """Register a compensation for a staged write.

        Args:
            handler: A callable (sync or async) taking no arguments.
        """
        self._rollback_handlers.append(handler)

    def mark_audited(self) -> None:
        """Record that the audit entry is durable; rollbacks are disarmed."""
        self.audited = True
        self._rollback_handlers.clear()

    async def __aenter__(self) -> "AtomicOperationContext":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> bool:
        """Run compensations on failure and re-raise.

        A failing compensation is logged and the remaining ones still run;
        whatever it left behind is resolved by the recovery sweep.

        Returns:
            False - the original exception always propagates.
        """
        if exc_val is None:
            return False

        if self.audited:
            log.warning(
                "audited_transaction_incomplete",
                transaction_id=self.transaction_id,
                error_type=exc_type.__name__ if exc_type else "Unknown",
            )
            return False

        log.info(
            "atomic_operation_failed",
            transaction_id=self.transaction_id,
            error_type=exc_type.__name__ if exc_type else "Unknown",
            rollback_count=len(self._rollback_handlers),
        )

        for handler in reversed(self._rollback_handlers):
            try:
                if inspect.iscoroutinefunction(handler) or (
                    inspect.ismethod(handler)
                    and inspect.iscoroutinefunction(handler.__func__)
                ):
                    await handler()
                else:
                    result = handler()
                    if asyncio.iscoroutine(result):
                        await result
            except Exception as rollback_error:
                log.error(
                    "rollback_handler_failed",
                    transaction_id=self.transaction_id,
                    rollback_error=str(rollback_error),
                    rollback_error_type=type(rollback_error).__name__,
                )

        return False
