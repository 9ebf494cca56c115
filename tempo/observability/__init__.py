"""Observability module for Prometheus metrics and OpenTelemetry tracing."""

from tempo.observability.metrics import TempoMetrics, start_metrics_server
from tempo.observability.tracing import (
    get_tracer,
    setup_telemetry,
    shutdown_telemetry,
    trace_operation,
)

__all__ = [
    "TempoMetrics",
    "get_tracer",
    "setup_telemetry",
    "shutdown_telemetry",
    "start_metrics_server",
    "trace_operation",
]
