"""
Products API - Products Routes

Endpoints for creating, fetching and listing products.
"""

from typing import TYPE_CHECKING, List

from fastapi import APIRouter, Depends, status

from ..dependencies import bind_route_context, get_product_service
from ..models import CreateProductRequest, ProductResponse

if TYPE_CHECKING:
    from ...services.product_service import ProductService


router = APIRouter(
    prefix="/products",
    tags=["products"],
    dependencies=[Depends(bind_route_context)],
)


@router.post(
    "",
    response_model=ProductResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_product(
    body: CreateProductRequest,
    service: "ProductService" = Depends(get_product_service),
):
    """
    Create a product.

    **Example:**
    ```
    POST /products
    {"name": "Laptop", "description": "High-performance laptop", "price": 1299.99}
    ```

    Returns 400 when the name is empty or the price is not positive.
    """
    return service.create_product(body)


@router.get("", response_model=List[ProductResponse])
async def list_products(
    service: "ProductService" = Depends(get_product_service),
):
    """List all products, in no particular order."""
    return service.list_products()


@router.get("/{product_id}", response_model=ProductResponse)
async def get_product(
    product_id: str,
    service: "ProductService" = Depends(get_product_service),
):
    """Get a product by id. Returns 404 for unknown ids."""
    return service.get_product(product_id)
