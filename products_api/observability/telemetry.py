"""
Products API - Telemetry Provider

Process-wide bundle of tracer, meter, metric instruments and logger.

Two modes:
- enabled: spans and metrics are pushed to the OTLP collector by background
  processors, off the request path
- disabled (no-op): spans and instruments are still created and populated,
  nothing leaves the process

Both modes feed the Prometheus /metrics endpoint, which is scraped rather
than pushed.

The Telemetry value is built once at startup and handed to every component
that needs it; it is never registered as global OpenTelemetry state.

Usage:
    telemetry = init_telemetry(config.otlp)
    ...
    try:
        telemetry.shutdown(timeout=5.0)
    except TelemetryShutdownError as e:
        logger.error("Telemetry shutdown failed", error=str(e))
"""

import threading
from typing import Iterable, List, Optional

from opentelemetry.exporter.prometheus import PrometheusMetricReader
from opentelemetry.metrics import Meter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import MetricReader
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SpanExporter
from opentelemetry.trace import Tracer
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

from ..config import OTLPConfig
from ..core.errors import TelemetryShutdownError
from .logging import StructuredLogger, get_logger
from .metrics import (
    HttpInstruments,
    ProductInstruments,
    create_http_instruments,
    create_meter_provider,
    create_product_instruments,
)
from .tracing import ExportFailures, create_propagator, create_tracer_provider


INSTRUMENTATION_NAME = "products_api"


class Telemetry:
    """
    Telemetry provider.

    Read-only after construction. Metric instruments are created here, once,
    so request code only records into existing instruments.
    """

    def __init__(
        self,
        config: OTLPConfig,
        tracer_provider: TracerProvider,
        meter_provider: MeterProvider,
        logger: StructuredLogger,
        prometheus_reader: Optional[PrometheusMetricReader] = None,
        export_failures: Optional[ExportFailures] = None,
    ):
        self.config = config
        self.tracer_provider = tracer_provider
        self.meter_provider = meter_provider
        self.prometheus_reader = prometheus_reader
        self.export_failures = export_failures or ExportFailures()
        self.logger = logger

        self.tracer: Tracer = tracer_provider.get_tracer(
            INSTRUMENTATION_NAME, config.service_version
        )
        self.meter: Meter = meter_provider.get_meter(
            INSTRUMENTATION_NAME, config.service_version
        )
        self.propagator: TraceContextTextMapPropagator = create_propagator()

        self.http: HttpInstruments = create_http_instruments(self.meter, logger)
        self.products: ProductInstruments = create_product_instruments(self.meter, logger)

        self._shutdown_lock = threading.Lock()
        self._shutdown_started = False

    @property
    def enabled(self) -> bool:
        """Whether telemetry is exported off-process."""
        return self.config.enabled

    @property
    def is_shut_down(self) -> bool:
        return self._shutdown_started

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """
        Flush and close exporters within a bounded time.

        Runs the provider shutdowns in a daemon thread so a stuck exporter
        can never keep the process alive. Only the first call does any work.

        Args:
            timeout: Seconds to wait; defaults to the configured timeout

        Raises:
            TelemetryShutdownError: on timeout, on a provider error, or when
                the final flush was rejected by an exporter. The caller
                decides whether that is fatal.
        """
        with self._shutdown_lock:
            if self._shutdown_started:
                return
            self._shutdown_started = True

        if timeout is None:
            timeout = self.config.shutdown_timeout_seconds

        self.logger.info("Shutting down OpenTelemetry", timeout_seconds=timeout)

        # Only failures of the final flush are reported.
        self.export_failures.drain()
        errors: List[str] = []

        def _shutdown_providers():
            try:
                self.tracer_provider.shutdown()
            except Exception as e:
                errors.append(f"tracer provider: {e}")
            try:
                self.meter_provider.shutdown(timeout_millis=timeout * 1000)
            except Exception as e:
                errors.append(f"meter provider: {e}")

        worker = threading.Thread(
            target=_shutdown_providers,
            name="telemetry-shutdown",
            daemon=True,
        )
        worker.start()
        worker.join(timeout)

        if worker.is_alive():
            self.logger.error("Telemetry shutdown timed out", timeout_seconds=timeout)
            raise TelemetryShutdownError(
                f"telemetry shutdown did not finish within {timeout}s",
                timed_out=True,
            )

        errors.extend(self.export_failures.drain())
        if errors:
            message = "; ".join(errors)
            self.logger.error("Failed to shutdown telemetry", error=message)
            raise TelemetryShutdownError(message)

        self.logger.info("OpenTelemetry shutdown successfully")


def create_resource(config: OTLPConfig) -> Resource:
    return Resource.create({
        SERVICE_NAME: config.service_name,
        SERVICE_VERSION: config.service_version,
        "deployment.environment": config.environment,
    })


def create_service_logger(config: OTLPConfig) -> StructuredLogger:
    """Logger carrying the service-wide fields on every record."""
    return get_logger(INSTRUMENTATION_NAME).bind(**{
        "service.name": config.service_name,
        "environment": config.environment,
    })


def init_telemetry(
    config: OTLPConfig,
    span_exporters: Iterable[SpanExporter] = (),
    metric_readers: Iterable[MetricReader] = (),
    prometheus: bool = True,
) -> Telemetry:
    """
    Initialize telemetry.

    Call once at application startup.

    Args:
        config: Service name, environment, OTLP endpoint and enabled flag
        span_exporters: Extra span exporters, attached in both modes
        metric_readers: Extra metric readers, attached in both modes
        prometheus: Feed the /metrics endpoint

    Returns:
        Telemetry instance
    """
    logger = create_service_logger(config)
    resource = create_resource(config)
    export_failures = ExportFailures()

    otlp_endpoint = config.endpoint if config.enabled else None

    if config.enabled:
        logger.info(
            "Initializing OpenTelemetry",
            endpoint=config.endpoint,
            service_name=config.service_name,
        )

    tracer_provider = create_tracer_provider(
        resource,
        otlp_endpoint=otlp_endpoint,
        span_exporters=span_exporters,
        export_failures=export_failures,
    )
    meter_provider, prometheus_reader = create_meter_provider(
        resource,
        otlp_endpoint=otlp_endpoint,
        metric_readers=metric_readers,
        prometheus=prometheus,
        export_failures=export_failures,
    )

    telemetry = Telemetry(
        config=config,
        tracer_provider=tracer_provider,
        meter_provider=meter_provider,
        logger=logger,
        prometheus_reader=prometheus_reader,
        export_failures=export_failures,
    )

    if config.enabled:
        logger.info("OpenTelemetry initialized (OTLP + Prometheus exporters)")
    else:
        logger.info("Telemetry initialized in no-op mode (export disabled)")

    return telemetry
