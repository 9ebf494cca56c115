"""Error taxonomy for Tempo.

Budget exhaustion is deliberately absent: it is an admission decision routed
to the fallback path, not an error. Missing health or environment fields are
recovered with neutral defaults and never raised either.
"""

from __future__ import annotations

from typing import Any


class TempoError(Exception):
    """Base class for Tempo errors."""


class ProviderError(TempoError):
    """Raised when a health or environment provider cannot produce a snapshot."""


class RemoteAnalysisError(TempoError):
    """Remote analysis call failed. Not retried unless a subclass says so."""

    retryable = False


class TransientRemoteError(RemoteAnalysisError):
    """Timeout, connection failure, throttling or a 5xx response."""

    retryable = True


class MalformedResponseError(RemoteAnalysisError):
    """Remote response failed schema validation."""

    def __init__(self, message: str, errors: list[Any] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class CircuitOpenError(TempoError):
    """Raised when the circuit breaker blocks a call without attempting it."""

    def __init__(self, message: str, service_name: str) -> None:
        super().__init__(message)
        self.service_name = service_name
