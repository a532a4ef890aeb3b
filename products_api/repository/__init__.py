"""
Products API - Repositories

Storage backends for product records.
"""

from .memory import ProductRepository, ReadWriteLock

__all__ = [
    "ProductRepository",
    "ReadWriteLock",
]
