"""
Products API - Services

Use-case layer between the HTTP routes and the repository.
"""

from .product_service import ProductService

__all__ = [
    "ProductService",
]
