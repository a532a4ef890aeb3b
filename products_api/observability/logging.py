"""
Products API - Structured JSON Logging

Structured logging with trace correlation.

Features:
- JSON-formatted logs, one object per line on stdout
- Request-scoped correlation record (trace_id, span_id, http.route,
  request_id)
- Handler decorator that enriches records at emission time
- Bound loggers carrying service-wide fields

Usage:
    from products_api.observability.logging import setup_logging, get_logger

    setup_logging(level="INFO")

    logger = get_logger(__name__).bind(**{"service.name": "products-api"})
    logger.info("Product created", product_id="123")

Output:
    {"timestamp": "2024-01-15T10:30:00.123456+00:00", "level": "INFO",
     "logger": "products_api.services", "message": "Product created",
     "service.name": "products-api", "product_id": "123",
     "trace_id": "4bf92f3577b34da6a3ce929d0e0e4736",
     "span_id": "00f067aa0ba902b7", "http.route": "/products/{product_id}",
     "request_id": "req_5f2b8c0d9e1a4b3c7d6e8f90"}
"""

import copy
import json
import logging
import sys
from contextvars import ContextVar, Token
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from opentelemetry import trace


TRACE_ID_FIELD = "trace_id"
SPAN_ID_FIELD = "span_id"
ROUTE_FIELD = "http.route"
REQUEST_ID_FIELD = "request_id"


# ============================================================
# Request Correlation
# ============================================================

@dataclass(frozen=True)
class RequestCorrelation:
    """
    Correlation identifiers for one request.

    Immutable; binding the route produces a new record.
    """
    trace_id: str = ""
    span_id: str = ""
    route: str = ""
    request_id: str = ""

    def with_route(self, route: str) -> "RequestCorrelation":
        return replace(self, route=route)

    def to_dict(self) -> Dict[str, str]:
        result = {}
        if self.trace_id:
            result[TRACE_ID_FIELD] = self.trace_id
        if self.span_id:
            result[SPAN_ID_FIELD] = self.span_id
        if self.route:
            result[ROUTE_FIELD] = self.route
        if self.request_id:
            result[REQUEST_ID_FIELD] = self.request_id
        return result


_correlation: ContextVar[Optional[RequestCorrelation]] = ContextVar(
    "request_correlation", default=None
)


def bind_correlation(correlation: RequestCorrelation) -> Token:
    """Make the correlation visible to log handlers in the current context."""
    return _correlation.set(correlation)


def reset_correlation(token: Token) -> None:
    _correlation.reset(token)


def current_correlation() -> Optional[RequestCorrelation]:
    """Correlation of the request being handled, or None outside requests."""
    return _correlation.get()


# ============================================================
# Handlers and Formatters
# ============================================================

class TraceContextHandler(logging.Handler):
    """
    Handler decorator that adds trace correlation to records.

    The wrapped handler receives a copy of each record carrying trace_id,
    span_id, http.route and request_id. Fields already present on the record are kept,
    so call-site fields win and nested decorators preserve what an inner
    layer added. Outside a request the record is forwarded untouched and no
    span lookup happens.
    """

    def __init__(self, inner: logging.Handler):
        super().__init__()
        self.inner = inner

    def emit(self, record: logging.LogRecord) -> None:
        correlation = current_correlation()
        if correlation is None:
            self.inner.handle(record)
            return

        fields = correlation.to_dict()

        span_context = trace.get_current_span().get_span_context()
        if span_context.is_valid:
            fields[TRACE_ID_FIELD] = trace.format_trace_id(span_context.trace_id)
            fields[SPAN_ID_FIELD] = trace.format_span_id(span_context.span_id)

        enriched = copy.copy(record)
        for key, value in fields.items():
            if not hasattr(enriched, key):
                setattr(enriched, key, value)

        self.inner.handle(enriched)

    def setFormatter(self, fmt: Optional[logging.Formatter]) -> None:
        self.inner.setFormatter(fmt)

    def flush(self) -> None:
        self.inner.flush()

    def close(self) -> None:
        self.inner.close()
        super().close()


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter.

    Output format:
    {
        "timestamp": "2024-01-15T10:30:00.123456+00:00",
        "level": "INFO",
        "logger": "module.name",
        "message": "Log message",
        ... structured fields
    }
    """

    # LogRecord attributes that are not structured fields
    RESERVED_ATTRS = {
        "name", "msg", "args", "created", "filename",
        "funcName", "levelname", "levelno", "lineno",
        "module", "msecs", "pathname", "process",
        "processName", "relativeCreated", "stack_info",
        "exc_info", "exc_text", "thread", "threadName",
        "message", "taskName",
    }

    def __init__(
        self,
        include_logger: bool = True,
        include_location: bool = False,
    ):
        super().__init__()
        self.include_logger = include_logger
        self.include_location = include_location

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
        }

        if self.include_logger:
            log_data["logger"] = record.name

        log_data["message"] = record.getMessage()

        if self.include_location:
            log_data["location"] = f"{record.filename}:{record.lineno}"

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in self.RESERVED_ATTRS:
                log_data[key] = value

        return json.dumps(log_data, default=str, ensure_ascii=False)


# ============================================================
# Structured Logger
# ============================================================

class StructuredLogger:
    """
    Structured logger wrapper with convenience methods.

    Keyword arguments become structured fields. Fields bound with bind()
    are attached to every record; call-site fields take precedence.
    """

    def __init__(self, logger: logging.Logger, fields: Optional[Dict[str, Any]] = None):
        self._logger = logger
        self._fields: Dict[str, Any] = dict(fields or {})

    @property
    def name(self) -> str:
        return self._logger.name

    @property
    def fields(self) -> Dict[str, Any]:
        return dict(self._fields)

    def bind(self, **fields) -> "StructuredLogger":
        """Return a new logger with additional fields bound."""
        merged = dict(self._fields)
        merged.update(fields)
        return StructuredLogger(self._logger, merged)

    def _log(self, level: int, msg: str, *args, **kwargs):
        if not self._logger.isEnabledFor(level):
            return

        extra = dict(self._fields)
        extra.update(kwargs.pop("extra", {}))

        for key in list(kwargs):
            if key not in {"exc_info", "stack_info", "stacklevel"}:
                extra[key] = kwargs.pop(key)

        kwargs["extra"] = extra
        kwargs.setdefault("stacklevel", 3)
        self._logger.log(level, msg, *args, **kwargs)

    def debug(self, msg: str, *args, **kwargs):
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        self._log(logging.ERROR, msg, *args, **kwargs)

    def exception(self, msg: str, *args, **kwargs):
        """Log exception with traceback."""
        kwargs["exc_info"] = True
        self._log(logging.ERROR, msg, *args, **kwargs)

    def log(self, level: int, msg: str, *args, **kwargs):
        self._log(level, msg, *args, **kwargs)


# ============================================================
# Setup
# ============================================================

_INSTALLED_MARKER = "_products_api_handler"


def setup_logging(
    level: Union[str, int] = "INFO",
    json_output: bool = True,
    include_location: bool = False,
) -> logging.Handler:
    """
    Setup structured logging on the root logger.

    Installs TraceContextHandler(StreamHandler(stdout)). Calling again
    replaces the handler installed by a previous call and leaves other
    handlers alone.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: Use JSON formatter (True) or a plain text formatter
        include_location: Include filename:lineno in logs

    Returns:
        The installed handler
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        if getattr(handler, _INSTALLED_MARKER, False):
            root_logger.removeHandler(handler)

    stream = logging.StreamHandler(sys.stdout)
    stream.setLevel(level)
    if json_output:
        stream.setFormatter(JSONFormatter(include_location=include_location))
    else:
        stream.setFormatter(logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        ))

    handler = TraceContextHandler(stream)
    setattr(handler, _INSTALLED_MARKER, True)
    root_logger.addHandler(handler)

    # Suppress noisy loggers
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("opentelemetry").setLevel(logging.WARNING)
    logging.getLogger("grpc").setLevel(logging.WARNING)

    return handler


def get_logger(name: str) -> StructuredLogger:
    """
    Get a structured logger.

    Args:
        name: Logger name (typically __name__)
    """
    return StructuredLogger(logging.getLogger(name))
