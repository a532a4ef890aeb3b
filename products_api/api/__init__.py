"""
Products API - API Layer

REST endpoints for the product catalog.

Provides:
- Product creation, lookup and listing
- Request/response models
- Route-level dependencies (service lookup, route correlation)
"""

from .models import (
    CreateProductRequest,
    HealthResponse,
    ProductResponse,
)
from .dependencies import (
    bind_route_context,
    get_product_service,
)
from .routes import products_router


__all__ = [
    # Routers
    "products_router",
    # Models
    "CreateProductRequest",
    "HealthResponse",
    "ProductResponse",
    # Dependencies
    "bind_route_context",
    "get_product_service",
]
