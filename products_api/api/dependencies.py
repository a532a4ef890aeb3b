"""
Products API - API Dependencies

Shared dependencies for FastAPI routes.
"""

from typing import TYPE_CHECKING

from fastapi import Request

from ..observability.logging import RequestCorrelation, bind_correlation
from ..observability.middleware import CORRELATION_STATE_KEY, resolve_route_pattern

if TYPE_CHECKING:
    from ..services.product_service import ProductService


def get_product_service(request: Request) -> "ProductService":
    """Product service built at startup (see server.create_app)."""
    return request.app.state.product_service


async def bind_route_context(request: Request) -> RequestCorrelation:
    """
    Write the matched route pattern into the request correlation.

    Runs as a router dependency, after routing and in the same task as the
    endpoint, so every log line the endpoint emits carries http.route. The
    tracing middleware resets the context variable when the request ends.
    """
    correlation = getattr(request.state, CORRELATION_STATE_KEY, None)
    if correlation is None:
        correlation = RequestCorrelation()

    route = resolve_route_pattern(request.scope) or request.url.path
    bound = correlation.with_route(route)

    setattr(request.state, CORRELATION_STATE_KEY, bound)
    bind_correlation(bound)
    return bound
