"""Retry policy for transient storage failures and lost CAS races.

StorageError is transient by definition: ``run`` retries it with
decorrelated-jitter exponential backoff and re-raises after the configured
attempt budget. ``run_cas`` re-runs a read-modify-write after a retryable
ConflictError. Every other error propagates on the first occurrence.

Usage:
    retry = StorageRetryPolicy(max_attempts=3)
    row = await retry.run("get_config", lambda: store.get("privacy_configs", key))
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

from structlog import get_logger

from src.config.privacy_core_config import PrivacyCoreSettings
from src.domain.errors.concurrent_modification import ConflictError
from src.domain.errors.storage import StorageError

logger = get_logger()

T = TypeVar("T")


class StorageRetryPolicy:
    """Retries StorageError with backoff.

    Attributes:
        max_attempts: Total attempts, including the first one.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay_seconds: float = 0.01,
        max_delay_seconds: float = 0.5,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the retry policy.

        Args:
            max_attempts: Total attempts before the error surfaces.
            base_delay_seconds: Base delay for exponential backoff.
            max_delay_seconds: Maximum delay cap.
            rng: Random source for jitter.
        """
        self.max_attempts = max_attempts
        self._base_delay = base_delay_seconds
        self._max_delay = max_delay_seconds
        self._rng = rng or random.Random()

    @classmethod
    def from_settings(cls, settings: PrivacyCoreSettings) -> StorageRetryPolicy:
        return cls(
            max_attempts=settings.storage_retry_attempts,
            base_delay_seconds=settings.retry_base_delay_seconds,
            max_delay_seconds=settings.retry_max_delay_seconds,
        )

    def delay_for(self, attempt: int) -> float:
        """Calculate retry delay with decorrelated jitter.

        Args:
            attempt: Attempt number that just failed (1-based).

        Returns:
            Delay in seconds.
        """
        base = self._base_delay
        if attempt <= 1 or base <= 0:
            return base

        previous = base * (2 ** (attempt - 2))
        delay = self._rng.uniform(base, previous * 3)
        return min(delay, self._max_delay)

    async def backoff(self, attempt: int) -> None:
        """Sleep before the next attempt (also used between CAS retries)."""
        delay = self.delay_for(attempt)
        if delay > 0:
            await asyncio.sleep(delay)
        else:
            await asyncio.sleep(0)

    async def run(self, operation: str, func: Callable[[], Awaitable[T]]) -> T:
        """Run ``func``, retrying StorageError.

        Args:
            operation: Name used in log entries.
            func: Zero-argument coroutine factory; called once per attempt.

        Returns:
            Whatever ``func`` returns.

        Raises:
            StorageError: Still failing after ``max_attempts``.
        """
        attempt = 1
        while True:
            try:
                return await func()
            except StorageError as e:
                if attempt >= self.max_attempts:
                    logger.error(
                        "storage_retries_exhausted",
                        operation=operation,
                        attempts=attempt,
                        table=e.table,
                    )
                    raise
                logger.warning(
                    "storage_retrying",
                    operation=operation,
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                    table=e.table,
                )
                await self.backoff(attempt)
                attempt += 1

    async def run_cas(
        self,
        operation: str,
        func: Callable[[], Awaitable[T]],
        max_retries: int,
    ) -> T:
        """Run a read-modify-write ``func``, re-running it on a lost CAS.

        ``func`` must re-read the row on every call. Non-retryable conflicts
        (AlreadyBoundError...) propagate immediately.

        Args:
            operation: Name used in log entries.
            func: Zero-argument coroutine factory performing read + CAS write.
            max_retries: Retries after the first attempt.

        Raises:
            ConflictError: Still losing after ``max_retries`` retries.
        """
        retries = 0
        while True:
            try:
                return await func()
            except ConflictError as e:
                if not e.retryable:
                    raise
                if retries >= max_retries:
                    logger.warning(
                        "cas_retries_exhausted",
                        operation=operation,
                        retries=retries,
                        table=e.table,
                    )
                    raise
                retries += 1
                logger.debug(
                    "cas_conflict_retrying",
                    operation=operation,
                    retry=retries,
                    table=e.table,
                )
                await self.backoff(retries)
