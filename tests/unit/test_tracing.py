"""Tests for OpenTelemetry tracing helpers."""

from __future__ import annotations

import pytest
from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

import tempo.observability as observability
from tempo.observability import tracing


@pytest.fixture
def exporter(monkeypatch: pytest.MonkeyPatch) -> InMemorySpanExporter:
    exporter = InMemorySpanExporter()
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    monkeypatch.setattr(tracing, "_tracer", provider.get_tracer("tempo-test"))
    return exporter


class TestTraceOperation:
    """Test suite for trace_operation."""

    def test_records_span_with_attributes(self, exporter: InMemorySpanExporter) -> None:
        with tracing.trace_operation("tempo.request_analysis", {"user_id": "user-1"}) as span:
            span.set_attribute("source", "hybrid")

        (finished,) = exporter.get_finished_spans()
        assert finished.name == "tempo.request_analysis"
        assert finished.attributes["user_id"] == "user-1"
        assert finished.attributes["source"] == "hybrid"
        assert finished.status.status_code == trace.StatusCode.OK

    def test_records_errors_and_reraises(self, exporter: InMemorySpanExporter) -> None:
        with pytest.raises(RuntimeError, match="remote down"):
            with tracing.trace_operation("tempo.remote_analysis"):
                raise RuntimeError("remote down")

        (finished,) = exporter.get_finished_spans()
        assert finished.status.status_code == trace.StatusCode.ERROR
        assert finished.events[0].name == "exception"

    def test_public_surface(self) -> None:
        assert set(observability.__all__) == {
            "TempoMetrics",
            "get_tracer",
            "setup_telemetry",
            "shutdown_telemetry",
            "start_metrics_server",
            "trace_operation",
        }
