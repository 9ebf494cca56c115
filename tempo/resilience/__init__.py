"""Resilience module for circuit breaking and retry logic."""

from tempo.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitBreakerStats,
    CircuitState,
)
from tempo.resilience.guard import ReliabilityGuard
from tempo.resilience.retry import RetryPolicy

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitBreakerStats",
    "CircuitState",
    "ReliabilityGuard",
    "RetryPolicy",
]
