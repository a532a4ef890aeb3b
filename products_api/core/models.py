"""
Products API - Core Data Models

Domain entities shared by the store and the use-case layer.
"""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict

from .errors import ValidationError


# ============================================================
# Enums
# ============================================================

class Operation(str, Enum):
    """Product operations recorded on the outcome counter."""
    CREATE = "create"
    READ = "read"
    LIST = "list"


class OperationResult(str, Enum):
    """Outcome label values for product operations."""
    SUCCESS = "success"
    FAILURE = "failure"
    NOT_FOUND = "not_found"


# ============================================================
# Product
# ============================================================

@dataclass(frozen=True)
class Product:
    """
    Product entity.

    Frozen so that a record handed out by the store can never be observed
    half-written by a concurrent reader.
    """
    id: str
    name: str
    description: str
    price: float
    created_at: datetime
    updated_at: datetime

    def validate(self) -> None:
        """Business validation; raises ValidationError."""
        if not self.name:
            raise ValidationError("product name is required", param="name")
        if not math.isfinite(self.price) or not self.price > 0:
            raise ValidationError("product price must be positive", param="price")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "price": self.price,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


def new_product(name: str, description: str, price: float) -> Product:
    """
    Create a validated product with a fresh identifier.

    created_at and updated_at share the same instant.
    """
    now = datetime.now(timezone.utc)
    product = Product(
        id=str(uuid.uuid4()),
        name=name,
        description=description,
        price=price,
        created_at=now,
        updated_at=now,
    )
    product.validate()
    return product
