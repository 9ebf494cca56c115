"""Prometheus metrics for Tempo.

All metrics live on a CollectorRegistry owned by a TempoMetrics instance, so
several applications (or tests) in one process never collide on metric names.

Example usage:

    ```python
    metrics = TempoMetrics()
    metrics.record_cache_lookup(tier="memory", outcome="hit")

    with metrics.observe_analysis_latency():
        result = await orchestrator.request_analysis(context)
    metrics.record_analysis_result(result.source.value)

    start_metrics_server(metrics, port=9090)
    ```

Metrics exposed:
    - tempo_cache_lookups_total: Cache lookups by tier and outcome (exact/adapted/miss)
    - tempo_analysis_results_total: Analysis results by provenance source
    - tempo_analysis_latency_seconds: End-to-end analysis request latency
    - tempo_remote_calls_total: Remote analysis calls by outcome
    - tempo_circuit_state: Circuit state per endpoint (0=closed, 1=half_open, 2=open)
    - tempo_budget_decisions_total: Budget admissions and rejections
    - tempo_budget_spent_units: Units spent today per user
    - tempo_battery_level: Latest battery level
    - tempo_battery_drain_rate: Latest drain rate in percent per hour
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Literal

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, start_http_server

logger = logging.getLogger(__name__)

_CIRCUIT_STATE_VALUES = {"closed": 0, "half_open": 1, "open": 2}


class TempoMetrics:
    """Prometheus instrumentation for the energy model and analysis pipeline."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        """Initialize metrics.

        Args:
            registry: Registry to register on (a new one is created if omitted)
        """
        self.registry = registry or CollectorRegistry()

        # ====================================================================
        # Cache
        # ====================================================================

        self.cache_lookups = Counter(
            name="tempo_cache_lookups_total",
            documentation="Analysis cache lookups by tier and outcome",
            labelnames=["tier", "outcome"],
            registry=self.registry,
        )

        self.cache_invalidations = Counter(
            name="tempo_cache_invalidations_total",
            documentation="Cache entries removed by delta invalidation",
            registry=self.registry,
        )

        # ====================================================================
        # Analysis
        # ====================================================================

        self.analysis_results = Counter(
            name="tempo_analysis_results_total",
            documentation="Analysis results returned by provenance source",
            labelnames=["source"],
            registry=self.registry,
        )

        self.analysis_latency = Histogram(
            name="tempo_analysis_latency_seconds",
            documentation="End-to-end analysis request latency in seconds",
            buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
            registry=self.registry,
        )

        self.remote_calls = Counter(
            name="tempo_remote_calls_total",
            documentation="Remote analysis calls by outcome",
            labelnames=["outcome"],
            registry=self.registry,
        )

        self.circuit_state = Gauge(
            name="tempo_circuit_state",
            documentation="Circuit breaker state (0=closed, 1=half_open, 2=open)",
            labelnames=["endpoint"],
            registry=self.registry,
        )

        # ====================================================================
        # Budget
        # ====================================================================

        self.budget_decisions = Counter(
            name="tempo_budget_decisions_total",
            documentation="Budget gate admissions and rejections",
            labelnames=["decision"],
            registry=self.registry,
        )

        self.budget_spent = Gauge(
            name="tempo_budget_spent_units",
            documentation="Units spent today per user",
            labelnames=["user_id"],
            registry=self.registry,
        )

        # ====================================================================
        # Battery
        # ====================================================================

        self.battery_level = Gauge(
            name="tempo_battery_level",
            documentation="Latest battery level (0-100)",
            registry=self.registry,
        )

        self.battery_drain_rate = Gauge(
            name="tempo_battery_drain_rate",
            documentation="Latest drain rate in percent per hour",
            registry=self.registry,
        )

    def record_cache_lookup(
        self,
        tier: Literal["memory", "persistent", "similar", "none"],
        outcome: Literal["exact", "adapted", "miss"],
    ) -> None:
        """Record one cache lookup.

        Args:
            tier: Tier that answered ("none" on a miss)
            outcome: Exact hit, adapted (similar-context) hit or miss
        """
        self.cache_lookups.labels(tier=tier, outcome=outcome).inc()

    def record_invalidation(self, removed: int) -> None:
        if removed > 0:
            self.cache_invalidations.inc(removed)

    def record_analysis_result(self, source: str) -> None:
        self.analysis_results.labels(source=source).inc()

    def record_remote_call(
        self, outcome: Literal["success", "transient", "malformed", "error", "circuit_open"]
    ) -> None:
        self.remote_calls.labels(outcome=outcome).inc()

    def set_circuit_state(self, endpoint: str, state: str) -> None:
        """Publish a circuit breaker state transition."""
        self.circuit_state.labels(endpoint=endpoint).set(_CIRCUIT_STATE_VALUES.get(state, 0))

    def record_budget_decision(self, admitted: bool) -> None:
        self.budget_decisions.labels(decision="admitted" if admitted else "rejected").inc()

    def set_budget_spent(self, user_id: str, spent: float) -> None:
        self.budget_spent.labels(user_id=user_id).set(spent)

    def update_battery(self, level: float, drain_rate: float) -> None:
        self.battery_level.set(level)
        self.battery_drain_rate.set(drain_rate)

    @contextmanager
    def observe_analysis_latency(self) -> Iterator[None]:
        """Context manager timing one analysis request."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.analysis_latency.observe(time.perf_counter() - start)


def start_metrics_server(metrics: TempoMetrics, port: int = 9090) -> None:
    """Expose the metrics registry over HTTP for Prometheus scraping.

    Args:
        metrics: Metrics whose registry is served
        port: Listen port
    """
    start_http_server(port, registry=metrics.registry)
    logger.info(f"📊 Prometheus metrics available on :{port}/metrics")
