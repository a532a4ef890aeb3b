"""
Products API Core Module

Contains the product entity and the error taxonomy shared by the store, the
use-case layer and the HTTP boundary.
"""

from .models import (
    Operation,
    OperationResult,
    Product,
    new_product,
)
from .errors import (
    GENERIC_INTERNAL_MESSAGE,
    ErrorType,
    ErrorDetails,
    ProductsApiError,
    ValidationError,
    NotFoundError,
    DuplicateKeyError,
    TelemetryShutdownError,
)

__all__ = [
    "Operation",
    "OperationResult",
    "Product",
    "new_product",
    "GENERIC_INTERNAL_MESSAGE",
    "ErrorType",
    "ErrorDetails",
    "ProductsApiError",
    "ValidationError",
    "NotFoundError",
    "DuplicateKeyError",
    "TelemetryShutdownError",
]
