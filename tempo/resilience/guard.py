"""Reliability guard around the remote analysis call.

Combines the circuit breaker with the retry policy: the breaker is checked
once per call, retries happen inside a single admitted call, and a call that
exhausts its retries counts as one failure toward the circuit threshold.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, TypeVar

from tempo.errors import CircuitOpenError, MalformedResponseError, TransientRemoteError
from tempo.observability.tracing import trace_operation
from tempo.resilience.circuit_breaker import CircuitBreaker, CircuitState
from tempo.resilience.retry import RetryPolicy

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from tempo.observability.metrics import TempoMetrics

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ReliabilityGuard:
    """Timeout, bounded retry and circuit breaking for one remote endpoint."""

    def __init__(
        self,
        breaker: CircuitBreaker,
        retry: RetryPolicy | None = None,
        metrics: TempoMetrics | None = None,
    ) -> None:
        self.breaker = breaker
        self.retry = retry or RetryPolicy()
        self.metrics = metrics

    @property
    def state(self) -> CircuitState:
        return self.breaker.state

    @property
    def is_rejecting(self) -> bool:
        return self.breaker.is_rejecting

    async def call(self, func: Callable[[], Awaitable[T]]) -> T:
        """Run a remote call under the guard.

        Args:
            func: Zero-argument coroutine function performing one attempt

        Returns:
            Result of the remote call

        Raises:
            CircuitOpenError: Circuit rejected the call (no remote attempt)
            TransientRemoteError: Every attempt failed transiently
            MalformedResponseError: Response failed schema validation
            RemoteAnalysisError: Any other remote failure
        """
        with trace_operation("tempo.remote_call", {"endpoint": self.breaker.service_name}):
            try:
                result = await self.breaker.call(self.retry.run, func)
            except CircuitOpenError:
                self._record("circuit_open")
                raise
            except TransientRemoteError:
                self._record("transient")
                raise
            except MalformedResponseError as e:
                logger.error(f"Malformed remote response, not retrying: {e} {e.errors}")
                self._record("malformed")
                raise
            except Exception:
                self._record("error")
                raise

        self._record("success")
        return result

    def _record(self, outcome: str) -> None:
        if self.metrics:
            self.metrics.record_remote_call(outcome)  # type: ignore[arg-type]
