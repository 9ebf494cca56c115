"""Circuit breaker for the remote analysis endpoint.

States:
    - CLOSED: Normal operation, calls pass through
    - OPEN: Endpoint is failing, calls fail fast without a remote attempt
    - HALF_OPEN: Cool-down elapsed, exactly one trial call is allowed

A successful trial closes the circuit; a failed trial reopens it and restarts
the cool-down.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, TypeVar

from tempo.config import CircuitConfig
from tempo.errors import CircuitOpenError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing fast
    HALF_OPEN = "half_open"  # Probing for recovery


@dataclass
class CircuitBreakerStats:
    """Statistics for circuit breaker."""

    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    rejected_calls: int = 0
    consecutive_failures: int = 0
    opened_at: float | None = None
    last_failure_time: datetime | None = None
    last_state_change: datetime = field(default_factory=lambda: datetime.now(UTC))


class CircuitBreaker:
    """Circuit breaker protecting one remote endpoint identity."""

    def __init__(
        self,
        service_name: str,
        config: CircuitConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
        on_state_change: Callable[[str, CircuitState], None] | None = None,
    ) -> None:
        """Initialize circuit breaker.

        Args:
            service_name: Name of the protected endpoint
            config: Circuit breaker configuration
            clock: Monotonic clock used for the cool-down
            on_state_change: Called with (service_name, new_state) on transitions
        """
        self.service_name = service_name
        self.config = config or CircuitConfig()
        self._clock = clock
        self._on_state_change = on_state_change
        self._state = CircuitState.CLOSED
        self._stats = CircuitBreakerStats()
        self._trial_in_flight = False
        self._lock = asyncio.Lock()

        logger.info(
            f"Circuit breaker created for '{service_name}' "
            f"(failure_threshold={self.config.failure_threshold}, "
            f"cooldown={self.config.cooldown_seconds}s)"
        )

    @property
    def state(self) -> CircuitState:
        """Get current circuit state."""
        return self._state

    @property
    def is_rejecting(self) -> bool:
        """Whether the next call would be rejected without being attempted."""
        if self._state == CircuitState.OPEN:
            return not self._cooldown_elapsed()
        return self._state == CircuitState.HALF_OPEN and self._trial_in_flight

    @property
    def stats(self) -> CircuitBreakerStats:
        """Get circuit statistics."""
        return self._stats

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Execute a coroutine function with circuit breaker protection.

        Args:
            func: Coroutine function to call
            *args: Function arguments
            **kwargs: Function keyword arguments

        Returns:
            Function result

        Raises:
            CircuitOpenError: If the circuit rejects the call
            Exception: Whatever the function raises (counted as a failure)
        """
        await self.acquire()
        try:
            result = await func(*args, **kwargs)
        except asyncio.CancelledError:
            await self.release()
            raise
        except Exception as e:
            await self.record_failure(e)
            raise
        await self.record_success()
        return result

    async def acquire(self) -> None:
        """Admit a call or reject it.

        Raises:
            CircuitOpenError: If the circuit is open, or half-open with a trial in flight
        """
        async with self._lock:
            if self._state == CircuitState.OPEN:
                if not self._cooldown_elapsed():
                    self._reject("is OPEN")
                self._transition(CircuitState.HALF_OPEN)
                logger.info(f"⚡ Circuit '{self.service_name}' entering HALF_OPEN state")

            if self._state == CircuitState.HALF_OPEN:
                if self._trial_in_flight:
                    self._reject("is HALF_OPEN with a trial in flight")
                self._trial_in_flight = True

    async def release(self) -> None:
        """Give back an admitted call that never completed (e.g. cancelled)."""
        async with self._lock:
            self._trial_in_flight = False

    async def record_success(self) -> None:
        async with self._lock:
            self._stats.total_calls += 1
            self._stats.successful_calls += 1
            self._stats.consecutive_failures = 0
            self._trial_in_flight = False

            if self._state != CircuitState.CLOSED:
                logger.info(f"✅ Circuit '{self.service_name}' CLOSED (service recovered)")
                self._stats.opened_at = None
                self._transition(CircuitState.CLOSED)

    async def record_failure(self, error: BaseException | None = None) -> None:
        """Count one failed call and open the circuit if warranted."""
        async with self._lock:
            self._stats.total_calls += 1
            self._stats.failed_calls += 1
            self._stats.consecutive_failures += 1
            self._stats.last_failure_time = datetime.now(UTC)
            self._trial_in_flight = False

            reason = f"{error.__class__.__name__}: {error}" if error else "unknown"

            if self._state == CircuitState.HALF_OPEN:
                logger.warning(
                    f"⚠️ Circuit '{self.service_name}' trial failed ({reason}) - back to OPEN"
                )
                self._open()
            elif (
                self._state == CircuitState.CLOSED
                and self._stats.consecutive_failures >= self.config.failure_threshold
            ):
                logger.error(
                    f"🔴 Circuit '{self.service_name}' OPEN "
                    f"({self._stats.consecutive_failures} consecutive failures, last: {reason})"
                )
                self._open()

    def _open(self) -> None:
        self._stats.opened_at = self._clock()
        self._transition(CircuitState.OPEN)

    def _cooldown_elapsed(self) -> bool:
        if self._stats.opened_at is None:
            return True
        return self._clock() - self._stats.opened_at >= self.config.cooldown_seconds

    def _reject(self, why: str) -> None:
        self._stats.rejected_calls += 1
        raise CircuitOpenError(
            f"Circuit '{self.service_name}' {why} - rejecting call", self.service_name
        )

    def _transition(self, state: CircuitState) -> None:
        self._state = state
        self._stats.last_state_change = datetime.now(UTC)
        if self._on_state_change:
            self._on_state_change(self.service_name, state)

    def get_stats_summary(self) -> dict[str, Any]:
        """Get summary of circuit statistics.

        Returns:
            Dictionary with statistics
        """
        return {
            "service_name": self.service_name,
            "state": self._state.value,
            "total_calls": self._stats.total_calls,
            "successful_calls": self._stats.successful_calls,
            "failed_calls": self._stats.failed_calls,
            "rejected_calls": self._stats.rejected_calls,
            "consecutive_failures": self._stats.consecutive_failures,
            "success_rate": (
                self._stats.successful_calls / self._stats.total_calls
                if self._stats.total_calls > 0
                else 0
            ),
            "last_failure_time": (
                self._stats.last_failure_time.isoformat() if self._stats.last_failure_time else None
            ),
            "last_state_change": self._stats.last_state_change.isoformat(),
        }


class CircuitBreakerRegistry:
    """One circuit breaker per remote endpoint identity."""

    def __init__(
        self,
        config: CircuitConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
        on_state_change: Callable[[str, CircuitState], None] | None = None,
    ) -> None:
        self.config = config or CircuitConfig()
        self._clock = clock
        self._on_state_change = on_state_change
        self._breakers: dict[str, CircuitBreaker] = {}

    def get_or_create_breaker(self, service_name: str) -> CircuitBreaker:
        """Get or create the circuit breaker of an endpoint.

        Args:
            service_name: Endpoint identity

        Returns:
            CircuitBreaker instance
        """
        if service_name not in self._breakers:
            self._breakers[service_name] = CircuitBreaker(
                service_name,
                self.config,
                clock=self._clock,
                on_state_change=self._on_state_change,
            )
        return self._breakers[service_name]

    def get_all_stats(self) -> dict[str, dict[str, Any]]:
        """Get statistics for all circuit breakers.

        Returns:
            Dictionary mapping service names to stats
        """
        return {name: breaker.get_stats_summary() for name, breaker in self._breakers.items()}
