"""Bounded retry with exponential backoff, jitter and per-attempt timeout."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import TYPE_CHECKING, TypeVar

from tempo.config import RetryConfig
from tempo.errors import RemoteAnalysisError, TransientRemoteError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """Retries transient failures of a remote call.

    Timeouts and errors flagged ``retryable`` are retried; every other error
    propagates immediately.
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ) -> None:
        """Initialize retry policy.

        Args:
            config: Retry configuration
            sleep: Coroutine used to wait between attempts
            rng: Source of jitter in [0, 1)
        """
        self.config = config or RetryConfig()
        self._sleep = sleep
        self._rng = rng

    def delay_for(self, attempt: int) -> float:
        """Backoff delay after a failed attempt (1-based), jitter included."""
        base = min(
            self.config.max_delay,
            self.config.base_delay * self.config.multiplier ** (attempt - 1),
        )
        return base + base * self.config.jitter * self._rng()

    async def run(self, func: Callable[[], Awaitable[T]]) -> T:
        """Call ``func`` until it succeeds or the attempts are exhausted.

        Args:
            func: Zero-argument coroutine function performing one attempt

        Returns:
            Result of the first successful attempt

        Raises:
            TransientRemoteError: If every attempt failed transiently
            RemoteAnalysisError: On a non-retryable remote failure
        """
        attempts = self.config.max_attempts
        last_error: TransientRemoteError | None = None

        for attempt in range(1, attempts + 1):
            try:
                return await asyncio.wait_for(func(), timeout=self.config.attempt_timeout)
            except TimeoutError as e:
                last_error = TransientRemoteError(
                    f"Attempt timed out after {self.config.attempt_timeout}s"
                )
                last_error.__cause__ = e
            except RemoteAnalysisError as e:
                if not e.retryable:
                    raise
                last_error = e if isinstance(e, TransientRemoteError) else TransientRemoteError(str(e))

            if attempt < attempts:
                delay = self.delay_for(attempt)
                logger.warning(
                    f"⏱️ Attempt {attempt}/{attempts} failed ({last_error}), retrying in {delay:.2f}s"
                )
                await self._sleep(delay)

        logger.error(f"❌ All {attempts} attempts failed: {last_error}")
        raise last_error  # type: ignore[misc]
