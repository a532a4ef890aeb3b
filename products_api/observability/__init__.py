"""
Products API - Observability Module

Observability stack including:
- OpenTelemetry tracing and metrics (OTLP push, Prometheus pull)
- Structured JSON logging with trace correlation
- W3C trace context propagation
- ASGI middleware for the HTTP request pipeline

Usage:
    from products_api.observability import init_telemetry, setup_logging

    setup_logging(level="INFO")
    telemetry = init_telemetry(config.otlp)

    telemetry.logger.info("Started")
    with telemetry.tracer.start_as_current_span("work"):
        ...
"""

from .logging import (
    JSONFormatter,
    RequestCorrelation,
    StructuredLogger,
    TraceContextHandler,
    bind_correlation,
    current_correlation,
    get_logger,
    reset_correlation,
    setup_logging,
)
from .metrics import (
    HttpInstruments,
    ProductInstruments,
    RequestTracker,
    metrics_endpoint,
)
from .tracing import (
    TraceContext,
    extract_context,
    inject_context,
    mark_span_error,
)
from .telemetry import (
    Telemetry,
    init_telemetry,
)
from .middleware import (
    AccessLogMiddleware,
    ActiveRequestsMiddleware,
    RequestDurationMiddleware,
    TracingMiddleware,
    resolve_route_pattern,
)

__all__ = [
    # Logging
    "JSONFormatter",
    "RequestCorrelation",
    "StructuredLogger",
    "TraceContextHandler",
    "bind_correlation",
    "current_correlation",
    "get_logger",
    "reset_correlation",
    "setup_logging",
    # Metrics
    "HttpInstruments",
    "ProductInstruments",
    "RequestTracker",
    "metrics_endpoint",
    # Tracing
    "TraceContext",
    "extract_context",
    "inject_context",
    "mark_span_error",
    # Telemetry
    "Telemetry",
    "init_telemetry",
    # Middleware
    "AccessLogMiddleware",
    "ActiveRequestsMiddleware",
    "RequestDurationMiddleware",
    "TracingMiddleware",
    "resolve_route_pattern",
]
