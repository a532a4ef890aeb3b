"""
Products API - Observability Middleware

Pure ASGI middleware for the HTTP request pipeline.

Chain, outermost first:
- TracingMiddleware: server span, W3C context extraction, correlation record
- AccessLogMiddleware: one structured line per request
- ActiveRequestsMiddleware: in-flight request gauge, exactly once per request
- RequestDurationMiddleware: request latency histogram in milliseconds

All of them run before routing. The route pattern is therefore read lazily
from the ASGI scope once the router has matched (FastAPI stores the matched
route in scope["route"]); requests that never match fall back to the raw
path, consistently for every metric and log line.

Usage:
    app.add_middleware(RequestDurationMiddleware, histogram=telemetry.http.request_duration_ms)
    app.add_middleware(ActiveRequestsMiddleware, counter=telemetry.http.active_requests)
    app.add_middleware(AccessLogMiddleware, logger=telemetry.logger)
    app.add_middleware(TracingMiddleware, telemetry=telemetry)
"""

import asyncio
import time
import uuid
from typing import TYPE_CHECKING, Callable, Optional

from opentelemetry.metrics import Histogram, UpDownCounter
from opentelemetry.trace import SpanKind, Status, StatusCode
from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from .logging import (
    RequestCorrelation,
    StructuredLogger,
    bind_correlation,
    reset_correlation,
)
from .metrics import (
    HOST_ATTR,
    METHOD_ATTR,
    ROUTE_ATTR,
    STATUS_ATTR,
    RequestTracker,
)
from .tracing import TraceContext, extract_context, mark_span_error

if TYPE_CHECKING:
    from .telemetry import Telemetry


RouteResolver = Callable[[Scope], str]

CORRELATION_STATE_KEY = "correlation"

REQUEST_ID_HEADER = "x-request-id"
REQUEST_ID_ATTR = "request.id"
MAX_REQUEST_ID_LENGTH = 128
CANCELLED_ATTR = "http.request.cancelled"


def resolve_route_pattern(scope: Scope) -> str:
    """
    Route pattern matched by the router, or "" before routing completes.

    Example: "/products/{product_id}" for a request to "/products/42".
    """
    route = scope.get("route")
    pattern = getattr(route, "path", None)
    if isinstance(pattern, str):
        return pattern
    return ""


def _request_host(scope: Scope) -> str:
    host = Headers(scope=scope).get("host")
    if host:
        return host
    server = scope.get("server")
    if server:
        return f"{server[0]}:{server[1]}" if server[1] else str(server[0])
    return ""


def request_id_from_headers(headers: Headers) -> str:
    """
    Caller-supplied X-Request-ID, or a fresh "req_<24 hex>" identifier.

    Empty or oversized values are replaced rather than echoed back.
    """
    request_id = headers.get(REQUEST_ID_HEADER, "").strip()
    if not request_id or len(request_id) > MAX_REQUEST_ID_LENGTH:
        request_id = f"req_{uuid.uuid4().hex[:24]}"
    return request_id


class TracingMiddleware:
    """
    Server span per request.

    The span is named "METHOD path" at start and renamed to "METHOD route"
    once the route is known. The correlation record (trace_id, span_id,
    request_id) is stored in scope["state"] and bound for log handlers for
    the duration of the request. Identifiers are returned in X-Trace-Id,
    X-Span-Id and X-Request-ID; an incoming X-Request-ID is kept.

    A request cancelled before its response started gets
    http.request.cancelled instead of a status code, and its span status is
    left unset.
    """

    def __init__(
        self,
        app: ASGIApp,
        telemetry: "Telemetry",
        route_resolver: RouteResolver = resolve_route_pattern,
    ):
        self.app = app
        self.telemetry = telemetry
        self.route_resolver = route_resolver

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = Headers(scope=scope)
        method = scope.get("method", "")
        path = scope.get("path", "")
        parent_context = extract_context(self.telemetry.propagator, headers)

        with self.telemetry.tracer.start_as_current_span(
            f"{method} {path}",
            context=parent_context,
            kind=SpanKind.SERVER,
            attributes={
                METHOD_ATTR: method,
                "url.path": path,
                "url.scheme": scope.get("scheme", "http"),
                HOST_ATTR: _request_host(scope),
                "user_agent.original": headers.get("user-agent", ""),
            },
            record_exception=False,
            set_status_on_exception=False,
        ) as span:
            trace_ctx = TraceContext.from_span(span)
            request_id = request_id_from_headers(headers)
            span.set_attribute(REQUEST_ID_ATTR, request_id)

            correlation = RequestCorrelation(
                trace_id=trace_ctx.trace_id,
                span_id=trace_ctx.span_id,
                request_id=request_id,
            )
            scope.setdefault("state", {})[CORRELATION_STATE_KEY] = correlation
            token = bind_correlation(correlation)

            status_code = 500
            response_started = False
            cancelled = False

            async def send_wrapper(message: Message) -> None:
                nonlocal status_code, response_started
                if message["type"] == "http.response.start":
                    response_started = True
                    status_code = int(message.get("status", 500))
                    response_headers = MutableHeaders(scope=message)
                    response_headers["X-Trace-Id"] = trace_ctx.trace_id
                    response_headers["X-Span-Id"] = trace_ctx.span_id
                    response_headers["X-Request-ID"] = request_id
                await send(message)

            try:
                await self.app(scope, receive, send_wrapper)
            except asyncio.CancelledError:
                cancelled = True
                span.set_attribute(CANCELLED_ATTR, True)
                span.add_event("request.cancelled", {"response_started": response_started})
                raise
            except Exception as e:
                mark_span_error(span, e)
                raise
            finally:
                route = self.route_resolver(scope)
                if route:
                    span.update_name(f"{method} {route}")
                    span.set_attribute(ROUTE_ATTR, route)
                # A request cancelled before any response has no status.
                if response_started or not cancelled:
                    span.set_attribute(STATUS_ATTR, status_code)
                    if status_code >= 500:
                        span.set_status(Status(StatusCode.ERROR, f"HTTP {status_code}"))
                reset_correlation(token)


class AccessLogMiddleware:
    """
    Structured access log.

    Logs "HTTP request completed" once per request, at error level for 5xx,
    warning for 4xx and info otherwise. A request that raises is logged as
    500.
    """

    def __init__(
        self,
        app: ASGIApp,
        logger: StructuredLogger,
        route_resolver: RouteResolver = resolve_route_pattern,
    ):
        self.app = app
        self.logger = logger
        self.route_resolver = route_resolver

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start_time = time.perf_counter()
        status_code = 500
        body_size = 0

        async def send_wrapper(message: Message) -> None:
            nonlocal status_code, body_size
            if message["type"] == "http.response.start":
                status_code = int(message.get("status", 500))
            elif message["type"] == "http.response.body":
                body_size += len(message.get("body", b""))
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            self._log_request(scope, status_code, body_size, duration_ms)

    def _log_request(self, scope: Scope, status_code: int, body_size: int, duration_ms: float):
        path = scope.get("path", "")
        headers = Headers(scope=scope)
        client = scope.get("client")

        log_data = {
            METHOD_ATTR: scope.get("method", ""),
            ROUTE_ATTR: self.route_resolver(scope) or path,
            "url.path": path,
            "url.query": scope.get("query_string", b"").decode("latin-1"),
            STATUS_ATTR: status_code,
            "http.response.body.size": body_size,
            "duration_ms": round(duration_ms, 2),
            "client.address": f"{client[0]}:{client[1]}" if client else "",
            "user_agent.original": headers.get("user-agent", ""),
        }

        if status_code >= 500:
            self.logger.error("HTTP request completed", **log_data)
        elif status_code >= 400:
            self.logger.warning("HTTP request completed", **log_data)
        else:
            self.logger.info("HTTP request completed", **log_data)


class ActiveRequestsMiddleware:
    """
    In-flight request gauge.

    Every outbound ASGI message first triggers RequestTracker.increment(),
    so the +1 lands at the effective start of the response, when the route
    is usually resolved. The finally block runs RequestTracker.finish() for
    normal returns, handlers that never send anything, exceptions and
    cancellation (client disconnect), giving exactly one -1 with the same
    attributes as the +1.

    With no counter (instrument creation failed at startup) the middleware
    passes requests straight through.
    """

    def __init__(
        self,
        app: ASGIApp,
        counter: Optional[UpDownCounter],
        route_resolver: RouteResolver = resolve_route_pattern,
        logger: Optional[StructuredLogger] = None,
    ):
        self.app = app
        self.counter = counter
        self.route_resolver = route_resolver
        self.logger = logger

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or self.counter is None:
            await self.app(scope, receive, send)
            return

        tracker = RequestTracker(
            counter=self.counter,
            method=scope.get("method", ""),
            host=_request_host(scope),
            path=scope.get("path", ""),
            resolve_route=lambda: self.route_resolver(scope),
            logger=self.logger,
        )

        async def send_wrapper(message: Message) -> None:
            tracker.increment()
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            tracker.finish()


class RequestDurationMiddleware:
    """Records http.server.request.duration.ms for every request."""

    def __init__(
        self,
        app: ASGIApp,
        histogram: Optional[Histogram],
        route_resolver: RouteResolver = resolve_route_pattern,
    ):
        self.app = app
        self.histogram = histogram
        self.route_resolver = route_resolver

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or self.histogram is None:
            await self.app(scope, receive, send)
            return

        start_time = time.perf_counter()
        status_code = 500

        async def send_wrapper(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = int(message.get("status", 500))
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            self.histogram.record(duration_ms, {
                METHOD_ATTR: scope.get("method", ""),
                ROUTE_ATTR: self.route_resolver(scope) or scope.get("path", ""),
                STATUS_ATTR: status_code,
                HOST_ATTR: _request_host(scope),
            })
