"""OpenTelemetry distributed tracing setup for Tempo.

This module provides:
- Tracer provider setup with OTLP and console export
- Sampling configuration
- A context manager for tracing analysis and remote operations
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased

if TYPE_CHECKING:
    from collections.abc import Iterator

logger = logging.getLogger(__name__)

_tracer: trace.Tracer | None = None
_provider: TracerProvider | None = None


def setup_telemetry(
    service_name: str = "tempo",
    environment: str = "development",
    otlp_endpoint: str | None = None,
    enable_console_export: bool = False,
    sample_rate: float = 1.0,
) -> trace.Tracer:
    """Setup OpenTelemetry tracing.

    Args:
        service_name: Name of the service
        environment: Environment (development, production)
        otlp_endpoint: OTLP collector endpoint (e.g., http://localhost:4317)
        enable_console_export: Export spans to console for debugging
        sample_rate: Sampling rate (0.0 to 1.0, 1.0 = all traces)

    Returns:
        Tracer instance
    """
    global _tracer, _provider

    resource = Resource.create({
        "service.name": service_name,
        "service.namespace": "tempo",
        "deployment.environment": environment,
    })

    tracer_provider = TracerProvider(resource=resource, sampler=TraceIdRatioBased(sample_rate))

    if otlp_endpoint:
        otlp_exporter = OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True)
        tracer_provider.add_span_processor(BatchSpanProcessor(otlp_exporter))
        logger.info(f"✅ OTLP tracing enabled: {otlp_endpoint}")

    if enable_console_export:
        tracer_provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
        logger.info("✅ Console span export enabled")

    trace.set_tracer_provider(tracer_provider)
    _provider = tracer_provider
    _tracer = trace.get_tracer(__name__)

    logger.info(f"✅ Telemetry initialized: {service_name} ({environment})")
    logger.info(f"   Sampling rate: {sample_rate:.0%}")

    return _tracer


def get_tracer() -> trace.Tracer:
    """Get the tracer.

    Falls back to the globally registered provider (a no-op one unless
    something else configured it) when setup_telemetry() was not called.
    """
    if _tracer is None:
        return trace.get_tracer(__name__)
    return _tracer


@contextmanager
def trace_operation(
    operation_name: str,
    attributes: dict[str, str | int | float | bool] | None = None,
) -> Iterator[trace.Span]:
    """Context manager for tracing an operation.

    Args:
        operation_name: Name of the operation
        attributes: Additional span attributes

    Yields:
        Span object

    Example:
        with trace_operation("tempo.remote_analysis", {"endpoint": name}):
            enhanced = await service.analyze(payload)
    """
    with get_tracer().start_as_current_span(
        operation_name,
        attributes=attributes or {},
    ) as span:
        try:
            yield span
            span.set_status(trace.StatusCode.OK)
        except Exception as e:
            span.record_exception(e)
            span.set_status(trace.StatusCode.ERROR, str(e))
            raise


def shutdown_telemetry() -> None:
    """Flush and shut down the tracer provider set up by setup_telemetry()."""
    global _tracer, _provider

    if _provider is not None:
        logger.info("Shutting down telemetry...")
        _provider.shutdown()
        logger.info("✅ Telemetry shutdown complete")

    _provider = None
    _tracer = None
