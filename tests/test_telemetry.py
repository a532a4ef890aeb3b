"""
Products API - Telemetry Provider Tests

Tests for telemetry construction in enabled and no-op modes, instrument
creation failures, and bounded shutdown.
"""

import threading
from typing import List

import pytest
from opentelemetry.sdk.metrics.export import (
    InMemoryMetricReader,
    MetricExporter,
    MetricExportResult,
)
from opentelemetry.sdk.trace.export import SpanExporter, SpanExportResult

from products_api.config import OTLPConfig
from products_api.core.errors import TelemetryShutdownError
from products_api.observability import metrics as metrics_module
from products_api.observability import tracing as tracing_module
from products_api.observability.logging import get_logger
from products_api.observability.metrics import (
    create_http_instruments,
    create_product_instruments,
)
from products_api.observability.telemetry import init_telemetry
from products_api.observability.tracing import TraceContext, extract_context, inject_context

from conftest import metric_points


# ============================================================
# Fake OTLP Exporters
# ============================================================

class FakeSpanExporter(SpanExporter):
    """Stands in for the OTLP gRPC span exporter."""

    instances: List["FakeSpanExporter"] = []

    def __init__(self, endpoint=None, insecure=None):
        self.endpoint = endpoint
        self.spans = []
        FakeSpanExporter.instances.append(self)

    def export(self, spans):
        self.spans.extend(spans)
        return SpanExportResult.SUCCESS

    def shutdown(self):
        pass

    def force_flush(self, timeout_millis=30000):
        return True


class FakeMetricExporter(MetricExporter):
    """Stands in for the OTLP gRPC metric exporter."""

    instances: List["FakeMetricExporter"] = []

    def __init__(self, endpoint=None, insecure=None):
        super().__init__()
        self.endpoint = endpoint
        self.batches = []
        FakeMetricExporter.instances.append(self)

    def export(self, metrics_data, timeout_millis=10_000, **kwargs):
        self.batches.append(metrics_data)
        return MetricExportResult.SUCCESS

    def force_flush(self, timeout_millis=10_000):
        return True

    def shutdown(self, timeout_millis=30_000, **kwargs):
        pass


class RejectingSpanExporter(FakeSpanExporter):
    """Collector that answers every span batch with FAILURE."""

    def export(self, spans):
        return SpanExportResult.FAILURE


class RejectingMetricExporter(FakeMetricExporter):
    """Collector that answers every metric batch with FAILURE."""

    def export(self, metrics_data, timeout_millis=10_000, **kwargs):
        return MetricExportResult.FAILURE


@pytest.fixture
def fake_otlp(monkeypatch):
    FakeSpanExporter.instances = []
    FakeMetricExporter.instances = []
    monkeypatch.setattr(tracing_module, "OTLPSpanExporter", FakeSpanExporter)
    monkeypatch.setattr(metrics_module, "OTLPMetricExporter", FakeMetricExporter)
    return FakeSpanExporter, FakeMetricExporter


class BrokenMeter:
    """Meter whose instrument constructors always fail."""

    def create_up_down_counter(self, *args, **kwargs):
        raise RuntimeError("no up-down counters today")

    def create_histogram(self, *args, **kwargs):
        raise RuntimeError("no histograms today")

    def create_counter(self, *args, **kwargs):
        raise RuntimeError("no counters today")


# ============================================================
# Modes
# ============================================================

class TestTelemetryModes:
    """Tests for enabled and no-op telemetry."""

    def test_disabled_builds_no_exporters(self, fake_otlp):
        telemetry = init_telemetry(OTLPConfig(enabled=False), prometheus=False)

        with telemetry.tracer.start_as_current_span("work"):
            telemetry.products.created.add(1)
        telemetry.shutdown()

        assert telemetry.enabled is False
        assert FakeSpanExporter.instances == []
        assert FakeMetricExporter.instances == []

    def test_disabled_still_records_locally(self, telemetry, span_exporter, metric_reader):
        with telemetry.tracer.start_as_current_span("work"):
            telemetry.products.operations.add(1, {"operation": "create", "result": "success"})

        assert [s.name for s in span_exporter.get_finished_spans()] == ["work"]
        points = metric_points(metric_reader, "products.operations")
        assert points[0].value == 1

    def test_enabled_exports_on_shutdown(self, fake_otlp):
        config = OTLPConfig(enabled=True, endpoint="collector:4317")
        telemetry = init_telemetry(config, prometheus=False)

        with telemetry.tracer.start_as_current_span("work"):
            telemetry.products.created.add(1)
        telemetry.shutdown(timeout=5)

        span_exporter = FakeSpanExporter.instances[0]
        metric_exporter = FakeMetricExporter.instances[0]
        assert span_exporter.endpoint == "collector:4317"
        assert [s.name for s in span_exporter.spans] == ["work"]
        assert metric_exporter.batches

    def test_resource_attributes(self, telemetry, span_exporter):
        with telemetry.tracer.start_as_current_span("work"):
            pass

        resource = span_exporter.get_finished_spans()[0].resource.attributes
        assert resource["service.name"] == "products-api-test"
        assert resource["deployment.environment"] == "test"

    def test_logger_carries_service_fields(self, telemetry):
        assert telemetry.logger.fields == {
            "service.name": "products-api-test",
            "environment": "test",
        }

    def test_instances_are_independent(self, otlp_config):
        """No global provider: two telemetry values never share spans."""
        first_reader = InMemoryMetricReader()
        second_reader = InMemoryMetricReader()
        first = init_telemetry(otlp_config, metric_readers=[first_reader], prometheus=False)
        second = init_telemetry(otlp_config, metric_readers=[second_reader], prometheus=False)

        first.products.created.add(3)

        assert metric_points(first_reader, "products.created.total")[0].value == 3
        assert metric_points(second_reader, "products.created.total") == []

        first.shutdown()
        second.shutdown()


# ============================================================
# Instrument Creation
# ============================================================

class TestInstrumentCreation:
    """Tests for instrument creation failures."""

    def test_http_instruments_degrade_to_none(self):
        instruments = create_http_instruments(BrokenMeter(), get_logger("products_api.tests"))

        assert instruments.active_requests is None
        assert instruments.request_duration_ms is None

    def test_product_instruments_fall_back_to_noop(self):
        instruments = create_product_instruments(BrokenMeter(), get_logger("products_api.tests"))

        instruments.created.add(1)
        instruments.operations.add(1, {"operation": "read", "result": "success"})

    def test_failure_is_logged(self, captured_logs):
        create_http_instruments(BrokenMeter(), get_logger("products_api.tests"))

        warnings = [r for r in captured_logs.records if r.levelname == "WARNING"]
        assert len(warnings) == 2
        assert warnings[0].instrument == "http.server.active_requests"


# ============================================================
# Shutdown
# ============================================================

class TestTelemetryShutdown:
    """Tests for Telemetry.shutdown."""

    def test_shutdown_runs_once(self, telemetry, monkeypatch):
        calls = []
        monkeypatch.setattr(telemetry.tracer_provider, "shutdown", lambda: calls.append(1))

        telemetry.shutdown()
        telemetry.shutdown()

        assert calls == [1]
        assert telemetry.is_shut_down

    def test_shutdown_timeout(self, telemetry, monkeypatch):
        release = threading.Event()
        monkeypatch.setattr(telemetry.tracer_provider, "shutdown", lambda: release.wait(5))

        try:
            with pytest.raises(TelemetryShutdownError) as exc_info:
                telemetry.shutdown(timeout=0.1)
        finally:
            release.set()

        assert exc_info.value.timed_out is True

    def test_shutdown_error_is_reported(self, telemetry, monkeypatch):
        def explode():
            raise RuntimeError("collector unreachable")

        monkeypatch.setattr(telemetry.tracer_provider, "shutdown", explode)

        with pytest.raises(TelemetryShutdownError) as exc_info:
            telemetry.shutdown()

        assert exc_info.value.timed_out is False
        assert "collector unreachable" in str(exc_info.value)

    def test_second_call_after_failure_is_noop(self, telemetry, monkeypatch):
        def explode():
            raise RuntimeError("collector unreachable")

        monkeypatch.setattr(telemetry.tracer_provider, "shutdown", explode)

        with pytest.raises(TelemetryShutdownError):
            telemetry.shutdown()
        telemetry.shutdown()

    def test_rejected_span_flush_is_reported(self, fake_otlp, monkeypatch):
        monkeypatch.setattr(tracing_module, "OTLPSpanExporter", RejectingSpanExporter)
        telemetry = init_telemetry(
            OTLPConfig(enabled=True, endpoint="collector:4317"), prometheus=False,
        )

        with telemetry.tracer.start_as_current_span("work"):
            pass

        with pytest.raises(TelemetryShutdownError) as exc_info:
            telemetry.shutdown(timeout=5)

        assert exc_info.value.timed_out is False
        assert "span export" in str(exc_info.value)

    def test_rejected_metric_flush_is_reported(self, fake_otlp, monkeypatch):
        monkeypatch.setattr(metrics_module, "OTLPMetricExporter", RejectingMetricExporter)
        telemetry = init_telemetry(
            OTLPConfig(enabled=True, endpoint="collector:4317"), prometheus=False,
        )

        telemetry.products.created.add(1)

        with pytest.raises(TelemetryShutdownError) as exc_info:
            telemetry.shutdown(timeout=5)

        assert exc_info.value.timed_out is False
        assert "metric export" in str(exc_info.value)
        assert "span export" not in str(exc_info.value)

    def test_accepted_flush_raises_nothing(self, fake_otlp):
        telemetry = init_telemetry(
            OTLPConfig(enabled=True, endpoint="collector:4317"), prometheus=False,
        )

        with telemetry.tracer.start_as_current_span("work"):
            telemetry.products.created.add(1)

        telemetry.shutdown(timeout=5)
        assert telemetry.export_failures.drain() == []


# ============================================================
# Trace Context Helpers
# ============================================================

class TestTraceContext:
    """Tests for trace context propagation helpers."""

    def test_traceparent_round_trip(self, telemetry):
        with telemetry.tracer.start_as_current_span("client") as span:
            expected = TraceContext.from_span(span).to_traceparent()
            headers = inject_context(telemetry.propagator, {})

        assert headers["traceparent"] == expected

        ctx = extract_context(telemetry.propagator, {"Traceparent": expected})
        with telemetry.tracer.start_as_current_span("server", context=ctx) as child:
            assert TraceContext.from_span(child).trace_id == expected.split("-")[1]

    def test_missing_header_starts_new_trace(self, telemetry):
        ctx = extract_context(telemetry.propagator, {})

        with telemetry.tracer.start_as_current_span("server", context=ctx) as span:
            assert span.parent is None
