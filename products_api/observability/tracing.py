"""
Products API - OpenTelemetry Distributed Tracing

Tracer provider construction and trace-context helpers.

Features:
- W3C trace context propagation (traceparent header)
- OTLP gRPC span export in a background batch processor
- No-op mode: spans are created and populated but never leave the process

The tracer provider is owned by the Telemetry value (see telemetry.py) and is
never registered as the global OpenTelemetry provider.
"""

import threading
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from opentelemetry import trace
from opentelemetry.context import Context
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan, TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    SimpleSpanProcessor,
    SpanExporter,
    SpanExportResult,
)
from opentelemetry.trace import Span, Status, StatusCode
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator


@dataclass
class TraceContext:
    """Trace identifiers of a span, hex encoded."""
    trace_id: str
    span_id: str
    trace_flags: int = 1

    @classmethod
    def from_span(cls, span: Span) -> "TraceContext":
        """Create TraceContext from a span."""
        ctx = span.get_span_context()
        return cls(
            trace_id=trace.format_trace_id(ctx.trace_id),
            span_id=trace.format_span_id(ctx.span_id),
            trace_flags=int(ctx.trace_flags),
        )

    def to_traceparent(self) -> str:
        """Generate W3C traceparent header value."""
        return f"00-{self.trace_id}-{self.span_id}-{self.trace_flags:02x}"


# ============================================================
# Export Failure Tracking
# ============================================================

class ExportFailures:
    """
    Thread-safe record of failed exports.

    The SDK processors only log a FAILURE result from an exporter; the
    tracking exporters below write it here so Telemetry.shutdown can report
    a final flush that never reached the collector.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._failures: List[str] = []

    def record(self, source: str, detail: str) -> None:
        with self._lock:
            self._failures.append(f"{source}: {detail}")

    def drain(self) -> List[str]:
        """Return and clear the recorded failures."""
        with self._lock:
            failures, self._failures = self._failures, []
        return failures


class FailureTrackingSpanExporter(SpanExporter):
    """Span exporter wrapper that records non-SUCCESS results."""

    def __init__(self, exporter: SpanExporter, failures: ExportFailures):
        self.exporter = exporter
        self.failures = failures

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        try:
            result = self.exporter.export(spans)
        except Exception as e:
            self.failures.record("span export", str(e))
            raise

        if result is not SpanExportResult.SUCCESS:
            self.failures.record("span export", f"{len(spans)} spans not exported")
        return result

    def shutdown(self) -> None:
        self.exporter.shutdown()

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        return self.exporter.force_flush(timeout_millis)


def create_tracer_provider(
    resource: Resource,
    otlp_endpoint: Optional[str] = None,
    span_exporters: Iterable[SpanExporter] = (),
    export_failures: Optional[ExportFailures] = None,
) -> TracerProvider:
    """
    Build a tracer provider.

    Args:
        resource: Service resource attributes
        otlp_endpoint: OTLP collector endpoint; None builds a provider that
            records spans locally without exporting them
        span_exporters: Extra exporters attached synchronously (tests,
            console debugging)
        export_failures: Where OTLP export failures are recorded
    """
    provider = TracerProvider(resource=resource)

    if otlp_endpoint:
        otlp_exporter: SpanExporter = OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True)
        if export_failures is not None:
            otlp_exporter = FailureTrackingSpanExporter(otlp_exporter, export_failures)
        provider.add_span_processor(BatchSpanProcessor(otlp_exporter))

    for exporter in span_exporters:
        provider.add_span_processor(SimpleSpanProcessor(exporter))

    return provider


def create_propagator() -> TraceContextTextMapPropagator:
    return TraceContextTextMapPropagator()


def extract_context(
    propagator: TraceContextTextMapPropagator,
    headers: Mapping[str, str],
) -> Context:
    """
    Extract trace context from HTTP headers.

    Args:
        propagator: W3C propagator owned by the telemetry value
        headers: HTTP headers (keys are matched case-insensitively)

    Returns:
        OpenTelemetry Context with the remote parent, if any
    """
    normalized: Dict[str, str] = {k.lower(): v for k, v in headers.items()}
    return propagator.extract(normalized)


def inject_context(
    propagator: TraceContextTextMapPropagator,
    headers: Dict[str, str],
    context: Optional[Context] = None,
) -> Dict[str, str]:
    """Inject the current (or given) trace context into HTTP headers."""
    propagator.inject(headers, context=context)
    return headers


def mark_span_error(span: Span, exception: BaseException, description: str = ""):
    """Record an exception on a span and set its status to ERROR."""
    span.record_exception(exception)
    span.set_status(Status(StatusCode.ERROR, description or str(exception)))
