"""
Products API - API Request/Response Models

Pydantic models for API validation and serialization.
These are the external-facing models that clients interact with.

Field presence and JSON types are checked here; business rules (non-empty
name, positive price) belong to the Product entity so that every entry point
enforces them the same way.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from ..core.models import Product


# ============================================================
# Request Models
# ============================================================

class CreateProductRequest(BaseModel):
    """Body of POST /products."""
    name: str = ""
    description: str = ""
    price: float = Field(default=0.0, allow_inf_nan=False)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "name": "Laptop",
                "description": "High-performance laptop",
                "price": 1299.99,
            }
        }
    )


# ============================================================
# Response Models
# ============================================================

class ProductResponse(BaseModel):
    """Product as returned to clients."""
    id: str
    name: str
    description: str
    price: float
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_product(cls, product: Product) -> "ProductResponse":
        return cls(
            id=product.id,
            name=product.name,
            description=product.description,
            price=product.price,
            created_at=product.created_at,
            updated_at=product.updated_at,
        )


class HealthResponse(BaseModel):
    status: str = "ok"
