"""
Products API - Error Definitions

Error taxonomy with semantic (client must fix the request) vs infra
(server-side defect) classification.

Store and use-case errors are raised unwrapped so the HTTP boundary can map
the error kind to a status code. Telemetry errors live outside this hierarchy:
they are logged by the lifecycle owner and never reach request handling.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


GENERIC_INTERNAL_MESSAGE = "An unexpected error occurred"


class ErrorType(str, Enum):
    """Error classification."""
    INFRA = "infra_error"
    SEMANTIC = "semantic_error"


@dataclass
class ErrorDetails:
    """Full error information for API response."""
    code: str
    message: str
    type: ErrorType

    trace_id: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "code": self.code,
            "message": self.message,
            "type": self.type.value,
        }

        if self.trace_id:
            result["trace_id"] = self.trace_id
        if self.details:
            result["details"] = self.details

        return {"error": result}


class ProductsApiError(Exception):
    """Base exception for all Products API errors."""

    code = "internal_server_error"
    status_code = 500
    type = ErrorType.INFRA
    # Internal errors never leak their message to clients
    expose_message = False

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_details(self, trace_id: Optional[str] = None) -> ErrorDetails:
        """Build the client-facing error description."""
        return ErrorDetails(
            code=self.code,
            message=self.message if self.expose_message else GENERIC_INTERNAL_MESSAGE,
            type=self.type,
            trace_id=trace_id,
        )


# ============================================================
# Semantic Errors (client errors)
# ============================================================

class ValidationError(ProductsApiError):
    """Input failed business validation (empty name, non-positive price)."""

    code = "bad_request"
    status_code = 400
    type = ErrorType.SEMANTIC
    expose_message = True

    def __init__(self, message: str, param: str = ""):
        self.param = param
        super().__init__(message)


class NotFoundError(ProductsApiError):
    """Requested identifier is unknown to the store."""

    code = "not_found"
    status_code = 404
    type = ErrorType.SEMANTIC
    expose_message = True

    def __init__(self, message: str = "product not found", product_id: str = ""):
        self.product_id = product_id
        super().__init__(message)


# ============================================================
# Infra Errors (server defects)
# ============================================================

class DuplicateKeyError(ProductsApiError):
    """
    Identifier collision in the store.

    Unreachable with uuid4 identifiers; seeing it means identifier generation
    is broken.
    """

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"product with id {product_id} already exists")


# ============================================================
# Telemetry Errors (never surfaced to clients)
# ============================================================

class TelemetryShutdownError(Exception):
    """Telemetry exporters failed to flush or close within the timeout."""

    def __init__(self, message: str, timed_out: bool = False):
        self.timed_out = timed_out
        super().__init__(message)
