"""
Products API - Metrics

OpenTelemetry metric instruments, exported by push (OTLP) and by pull
(Prometheus text on /metrics).

Instruments (created once, at telemetry construction):
- http.server.active_requests: UpDownCounter of in-flight requests
- http.server.request.duration.ms: Histogram of request latency in ms
- products.created.total: Counter of created products
- products.operations: Counter of product operations by operation/result

Usage:
    from products_api.observability.metrics import metrics_endpoint

    @app.get("/metrics")
    async def metrics():
        return metrics_endpoint()
"""

from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from fastapi import Response
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.prometheus import PrometheusMetricReader
from opentelemetry.metrics import (
    Counter,
    Histogram,
    Meter,
    NoOpMeter,
    UpDownCounter,
)
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import (
    MetricExporter,
    MetricExportResult,
    MetricReader,
    MetricsData,
    PeriodicExportingMetricReader,
)
from opentelemetry.sdk.resources import Resource
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

from .logging import StructuredLogger
from .tracing import ExportFailures


ACTIVE_REQUESTS = "http.server.active_requests"
REQUEST_DURATION_MS = "http.server.request.duration.ms"
PRODUCTS_CREATED = "products.created.total"
PRODUCT_OPERATIONS = "products.operations"

METHOD_ATTR = "http.request.method"
ROUTE_ATTR = "http.route"
HOST_ATTR = "server.address"
STATUS_ATTR = "http.response.status_code"


# ============================================================
# Instruments
# ============================================================

@dataclass
class HttpInstruments:
    """
    HTTP server instruments.

    None means the instrument could not be created; middleware using it
    becomes a pass-through.
    """
    active_requests: Optional[UpDownCounter] = None
    request_duration_ms: Optional[Histogram] = None


@dataclass
class ProductInstruments:
    """Business instruments for the product use cases."""
    created: Counter
    operations: Counter


def create_http_instruments(meter: Meter, logger: StructuredLogger) -> HttpInstruments:
    """Create HTTP instruments, degrading to None on failure."""
    instruments = HttpInstruments()

    try:
        instruments.active_requests = meter.create_up_down_counter(
            ACTIVE_REQUESTS,
            unit="{request}",
            description="Number of active HTTP server requests",
        )
    except Exception as e:
        logger.warning(
            "Failed to create active requests instrument, tracking disabled",
            instrument=ACTIVE_REQUESTS,
            error=str(e),
        )

    try:
        instruments.request_duration_ms = meter.create_histogram(
            REQUEST_DURATION_MS,
            unit="ms",
            description="HTTP server request duration in milliseconds",
        )
    except Exception as e:
        logger.warning(
            "Failed to create request duration instrument, recording disabled",
            instrument=REQUEST_DURATION_MS,
            error=str(e),
        )

    return instruments


def create_product_instruments(meter: Meter, logger: StructuredLogger) -> ProductInstruments:
    """Create product counters, falling back to no-op counters on failure."""
    try:
        return ProductInstruments(
            created=meter.create_counter(
                PRODUCTS_CREATED,
                description="Total number of products created",
            ),
            operations=meter.create_counter(
                PRODUCT_OPERATIONS,
                description="Total number of product operations",
            ),
        )
    except Exception as e:
        logger.warning("Failed to create product instruments, using no-op", error=str(e))
        noop = NoOpMeter("products_api")
        return ProductInstruments(
            created=noop.create_counter(PRODUCTS_CREATED),
            operations=noop.create_counter(PRODUCT_OPERATIONS),
        )


# ============================================================
# Meter Provider
# ============================================================

class FailureTrackingMetricExporter(MetricExporter):
    """Metric exporter wrapper that records non-SUCCESS results."""

    def __init__(self, exporter: MetricExporter, failures: ExportFailures):
        super().__init__(
            preferred_temporality=exporter._preferred_temporality,
            preferred_aggregation=exporter._preferred_aggregation,
        )
        self.exporter = exporter
        self.failures = failures

    def export(
        self,
        metrics_data: MetricsData,
        timeout_millis: float = 10_000,
        **kwargs,
    ) -> MetricExportResult:
        try:
            result = self.exporter.export(metrics_data, timeout_millis=timeout_millis, **kwargs)
        except Exception as e:
            self.failures.record("metric export", str(e))
            raise

        if result is not MetricExportResult.SUCCESS:
            self.failures.record("metric export", "metrics not exported")
        return result

    def force_flush(self, timeout_millis: float = 10_000) -> bool:
        return self.exporter.force_flush(timeout_millis=timeout_millis)

    def shutdown(self, timeout_millis: float = 30_000, **kwargs) -> None:
        self.exporter.shutdown(timeout_millis=timeout_millis, **kwargs)


def create_meter_provider(
    resource: Resource,
    otlp_endpoint: Optional[str] = None,
    metric_readers: Iterable[MetricReader] = (),
    prometheus: bool = True,
    export_failures: Optional[ExportFailures] = None,
) -> Tuple[MeterProvider, Optional[PrometheusMetricReader]]:
    """
    Build a meter provider.

    Args:
        resource: Service resource attributes
        otlp_endpoint: OTLP collector endpoint for periodic push export;
            None disables push export
        metric_readers: Extra readers (tests use InMemoryMetricReader)
        prometheus: Register a Prometheus reader for the /metrics endpoint
        export_failures: Where OTLP export failures are recorded

    Returns:
        (provider, prometheus reader or None)
    """
    readers: List[MetricReader] = list(metric_readers)

    prometheus_reader = None
    if prometheus:
        prometheus_reader = PrometheusMetricReader()
        readers.append(prometheus_reader)

    if otlp_endpoint:
        exporter: MetricExporter = OTLPMetricExporter(endpoint=otlp_endpoint, insecure=True)
        if export_failures is not None:
            exporter = FailureTrackingMetricExporter(exporter, export_failures)
        readers.append(PeriodicExportingMetricReader(exporter))

    provider = MeterProvider(resource=resource, metric_readers=readers)
    return provider, prometheus_reader


# ============================================================
# Active Request Accounting
# ============================================================

class RequestTracker:
    """
    In-flight accounting for a single request.

    increment() may be called any number of times; only the first call
    records +1. finish() records the matching -1 exactly once, incrementing
    first if nothing was written. The attribute dict is built once, on
    increment, and reused for the decrement so both land on the same series.
    """

    def __init__(
        self,
        counter: UpDownCounter,
        method: str,
        host: str,
        path: str,
        resolve_route: Callable[[], str],
        logger: Optional[StructuredLogger] = None,
    ):
        self.counter = counter
        self.method = method
        self.host = host
        self.path = path
        self._resolve_route = resolve_route
        self._logger = logger

        self.incremented = False
        self.decremented = False
        self.attributes: Optional[Dict[str, str]] = None
        self._recorded = False

    def increment(self) -> None:
        if self.incremented:
            return
        self.incremented = True

        self.attributes = {
            METHOD_ATTR: self.method,
            ROUTE_ATTR: self._resolve_route() or self.path,
            HOST_ATTR: self.host,
        }
        self._recorded = self._add(1)

    def finish(self) -> None:
        if self.decremented:
            return
        self.increment()
        self.decremented = True

        # Never decrement a series whose increment was not recorded
        if self._recorded:
            self._add(-1)

    def _add(self, amount: int) -> bool:
        try:
            self.counter.add(amount, self.attributes)
            return True
        except Exception as e:
            if self._logger:
                self._logger.warning(
                    "Active request accounting failed",
                    amount=amount,
                    error=str(e),
                )
            return False


def metrics_endpoint() -> Response:
    """
    Generate Prometheus metrics endpoint response.

    Usage:
        @app.get("/metrics")
        async def metrics():
            return metrics_endpoint()
    """
    content = generate_latest(REGISTRY)
    return Response(
        content=content,
        media_type=CONTENT_TYPE_LATEST,
    )
