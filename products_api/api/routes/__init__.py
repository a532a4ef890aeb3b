"""
Products API - API Routes

Route modules for different API endpoints.
"""

from .products import router as products_router

__all__ = [
    "products_router",
]
