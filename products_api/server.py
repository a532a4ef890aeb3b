"""
Products API - Main API Server

FastAPI-based HTTP service for the product catalog.
Uses canonical error layer from products_api/core/errors.py

Features:
- Product creation, lookup and listing
- In-memory, concurrency-safe product store
- Full observability (OpenTelemetry traces and metrics, Prometheus /metrics,
  trace-correlated JSON logs)
- Telemetry export can be switched off (OTEL_ENABLED=false) without changing
  any HTTP behavior

Run:
    products-api
    python -m products_api.server
"""

from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from .api import HealthResponse, products_router
from .config import Config, load_config
from .core.errors import (
    GENERIC_INTERNAL_MESSAGE,
    ErrorDetails,
    ErrorType,
    ProductsApiError,
    TelemetryShutdownError,
)
from .observability import (
    AccessLogMiddleware,
    ActiveRequestsMiddleware,
    RequestDurationMiddleware,
    Telemetry,
    TracingMiddleware,
    init_telemetry,
    metrics_endpoint,
    setup_logging,
)
from .observability.middleware import CORRELATION_STATE_KEY
from .repository import ProductRepository
from .services import ProductService


def _trace_id(request: Request) -> Optional[str]:
    correlation = getattr(request.state, CORRELATION_STATE_KEY, None)
    if correlation is None or not correlation.trace_id:
        return None
    return correlation.trace_id


# ============================================================
# Error handlers
# ============================================================

def register_exception_handlers(app: FastAPI, telemetry: Telemetry) -> None:
    logger = telemetry.logger

    @app.exception_handler(ProductsApiError)
    async def products_api_exception_handler(request: Request, exc: ProductsApiError):
        """Handle all Products API canonical errors."""
        if exc.status_code >= 500:
            logger.error(
                "Internal error while handling request",
                error_code=exc.code,
                error=exc.message,
            )

        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_details(_trace_id(request)).to_dict(),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Undecodable or mistyped request bodies are client errors."""
        details = ErrorDetails(
            code="bad_request",
            message="invalid request body",
            type=ErrorType.SEMANTIC,
            trace_id=_trace_id(request),
            details={"errors": [
                {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
                for err in exc.errors()
            ]},
        )
        return JSONResponse(status_code=400, content=details.to_dict())

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """Handle standard HTTP exceptions (unknown routes, wrong methods)."""
        if exc.status_code == 404:
            code = "not_found"
        elif exc.status_code == 405:
            code = "method_not_allowed"
        else:
            code = "http_error"

        details = ErrorDetails(
            code=code,
            message=str(exc.detail),
            type=ErrorType.SEMANTIC if exc.status_code < 500 else ErrorType.INFRA,
            trace_id=_trace_id(request),
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=details.to_dict(),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions."""
        logger.exception("Unhandled exception", error=str(exc))

        details = ErrorDetails(
            code="internal_server_error",
            message=GENERIC_INTERNAL_MESSAGE,
            type=ErrorType.INFRA,
            trace_id=_trace_id(request),
        )
        return JSONResponse(status_code=500, content=details.to_dict())


# ============================================================
# FastAPI App
# ============================================================

def create_app(
    config: Optional[Config] = None,
    telemetry: Optional[Telemetry] = None,
    repository: Optional[ProductRepository] = None,
    configure_logging: bool = True,
) -> FastAPI:
    """
    Build the application.

    Args:
        config: Service configuration; read from the environment when omitted
        telemetry: Prebuilt telemetry (tests inject in-memory exporters)
        repository: Product store; a fresh in-memory store when omitted
        configure_logging: Install the JSON log handler on the root logger
    """
    if config is None:
        config = load_config()
    if configure_logging:
        setup_logging(level=config.log_level)
    if telemetry is None:
        telemetry = init_telemetry(config.otlp)
    if repository is None:
        repository = ProductRepository()

    logger = telemetry.logger
    service = ProductService(repository, telemetry)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage application lifespan - startup and shutdown."""
        logger.info(
            "Starting Products API server",
            address=f"{config.server.host}:{config.server.port}",
            telemetry_enabled=telemetry.enabled,
        )

        yield

        logger.info("Shutting down server...")
        try:
            # Blocks for up to the timeout; keep the event loop serving.
            await run_in_threadpool(
                telemetry.shutdown,
                timeout=config.otlp.shutdown_timeout_seconds,
            )
        except TelemetryShutdownError as e:
            logger.error(
                "Error shutting down telemetry",
                error=str(e),
                timed_out=e.timed_out,
            )
        logger.info("Server stopped")

    app = FastAPI(
        title="Products API",
        description="Product catalog service with OpenTelemetry observability",
        version=config.otlp.service_version,
        lifespan=lifespan,
    )

    app.state.config = config
    app.state.telemetry = telemetry
    app.state.repository = repository
    app.state.product_service = service

    # Last added = outermost. Tracing wraps everything so that access logs
    # and metric recording happen inside the server span.
    app.add_middleware(
        RequestDurationMiddleware,
        histogram=telemetry.http.request_duration_ms,
    )
    app.add_middleware(
        ActiveRequestsMiddleware,
        counter=telemetry.http.active_requests,
        logger=logger,
    )
    app.add_middleware(AccessLogMiddleware, logger=logger)
    app.add_middleware(TracingMiddleware, telemetry=telemetry)

    app.include_router(products_router)
    register_exception_handlers(app, telemetry)

    # ============================================================
    # Core Endpoints (not in routes)
    # ============================================================

    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        """Health check endpoint."""
        return HealthResponse(status="ok")

    @app.get("/metrics")
    async def prometheus_metrics():
        """
        Prometheus metrics endpoint.

        Exposes all collected metrics in Prometheus text format.
        Scrape this endpoint with Prometheus server.
        """
        return metrics_endpoint()

    return app


# ============================================================
# Run server
# ============================================================

def main() -> None:
    config = load_config()
    uvicorn.run(
        "products_api.server:create_app",
        factory=True,
        host=config.server.host,
        port=config.server.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
