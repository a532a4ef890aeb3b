"""
Products API - Pytest Configuration

Configures:
- Integration test markers (skip by default)
- In-memory telemetry (span exporter, metric reader) for assertions
- Application and test client fixtures
- Fake ASGI plumbing for middleware unit tests
"""

import logging
import os
from typing import Any, Dict, List, Optional, Tuple

import pytest
from fastapi.testclient import TestClient
from opentelemetry.sdk.metrics.export import InMemoryMetricReader
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from products_api.config import Config, OTLPConfig, ServerConfig
from products_api.observability.logging import TraceContextHandler
from products_api.observability.telemetry import Telemetry, init_telemetry
from products_api.repository import ProductRepository
from products_api.server import create_app


# ============================================================
# Environment Configuration
# ============================================================

def _is_truthy(value: Optional[str]) -> bool:
    """Check if environment variable is truthy."""
    if value is None:
        return False
    return value.lower() in ("1", "true", "yes", "on")


RUN_INTEGRATION = _is_truthy(os.getenv("RUN_INTEGRATION"))


# ============================================================
# Pytest Markers
# ============================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: mark test as integration test (requires RUN_INTEGRATION=1)"
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless RUN_INTEGRATION=1."""
    skip_integration = pytest.mark.skip(
        reason="Integration test - set RUN_INTEGRATION=1 to run"
    )

    for item in items:
        if "integration" in item.keywords and not RUN_INTEGRATION:
            item.add_marker(skip_integration)


# ============================================================
# Logging Configuration
# ============================================================

class ListHandler(logging.Handler):
    """Collects emitted records in memory."""

    def __init__(self):
        super().__init__()
        self.records: List[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)

    def messages(self) -> List[str]:
        return [r.getMessage() for r in self.records]

    def find(self, message: str) -> List[logging.LogRecord]:
        return [r for r in self.records if r.getMessage() == message]


@pytest.fixture(autouse=True)
def configure_test_logging():
    """Let the service loggers emit at debug level during tests."""
    logger = logging.getLogger("products_api")
    previous = logger.level
    logger.setLevel(logging.DEBUG)
    yield
    logger.setLevel(previous)


@pytest.fixture
def captured_logs():
    """
    Records emitted under the products_api logger, enriched with trace
    correlation the way the production root handler enriches them.
    """
    capture = ListHandler()
    handler = TraceContextHandler(capture)
    logger = logging.getLogger("products_api")
    logger.addHandler(handler)
    yield capture
    logger.removeHandler(handler)


# ============================================================
# Telemetry
# ============================================================

@pytest.fixture
def otlp_config() -> OTLPConfig:
    return OTLPConfig(
        enabled=False,
        service_name="products-api-test",
        environment="test",
        shutdown_timeout_seconds=2.0,
    )


@pytest.fixture
def span_exporter() -> InMemorySpanExporter:
    return InMemorySpanExporter()


@pytest.fixture
def metric_reader() -> InMemoryMetricReader:
    return InMemoryMetricReader()


@pytest.fixture
def telemetry(otlp_config, span_exporter, metric_reader) -> Telemetry:
    """No-op telemetry wired to in-memory exporters."""
    telemetry = init_telemetry(
        otlp_config,
        span_exporters=[span_exporter],
        metric_readers=[metric_reader],
        prometheus=False,
    )
    yield telemetry
    telemetry.shutdown()


def metric_points(reader: InMemoryMetricReader, name: str) -> List[Any]:
    """All data points of the named metric currently held by the reader."""
    data = reader.get_metrics_data()
    points: List[Any] = []
    if data is None:
        return points
    for resource_metrics in data.resource_metrics:
        for scope_metrics in resource_metrics.scope_metrics:
            for metric in scope_metrics.metrics:
                if metric.name == name:
                    points.extend(metric.data.data_points)
    return points


def point_values(reader: InMemoryMetricReader, name: str) -> Dict[Tuple, Any]:
    """Map of sorted attribute items -> value for sum metrics."""
    return {
        tuple(sorted(point.attributes.items())): point.value
        for point in metric_points(reader, name)
    }


# ============================================================
# Application
# ============================================================

@pytest.fixture
def repository() -> ProductRepository:
    return ProductRepository()


@pytest.fixture
def app_config(otlp_config) -> Config:
    return Config(server=ServerConfig(), otlp=otlp_config, log_level="DEBUG")


@pytest.fixture
def app(app_config, telemetry, repository):
    return create_app(
        config=app_config,
        telemetry=telemetry,
        repository=repository,
        configure_logging=False,
    )


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)


# ============================================================
# ASGI Plumbing (middleware unit tests)
# ============================================================

class FakeCounter:
    """UpDownCounter stand-in recording every add() call."""

    def __init__(self, fail_on: Optional[int] = None):
        self.calls: List[Tuple[int, Dict[str, str]]] = []
        self.fail_on = fail_on

    def add(self, amount, attributes=None, context=None):
        if self.fail_on is not None and amount == self.fail_on:
            raise RuntimeError("exporter exploded")
        self.calls.append((amount, dict(attributes or {})))

    @property
    def total(self) -> int:
        return sum(amount for amount, _ in self.calls)


def make_scope(
    path: str = "/products",
    method: str = "GET",
    headers: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    raw_headers = [(b"host", b"testserver")]
    for key, value in (headers or {}).items():
        raw_headers.append((key.lower().encode("latin-1"), value.encode("latin-1")))
    return {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": method,
        "scheme": "http",
        "path": path,
        "raw_path": path.encode("latin-1"),
        "query_string": b"",
        "headers": raw_headers,
        "client": ("127.0.0.1", 50000),
        "server": ("testserver", 80),
    }


async def empty_receive():
    return {"type": "http.request", "body": b"", "more_body": False}


class RecordingSend:
    def __init__(self):
        self.messages: List[Dict[str, Any]] = []

    async def __call__(self, message):
        self.messages.append(message)
