"""
Products API - Product Service

Use cases for products. Each call opens one span, makes exactly one store
call, records one outcome on the products.operations counter and logs once.
Errors are re-raised unchanged for the HTTP boundary to map.
"""

from typing import List

from opentelemetry.trace import Span, Status, StatusCode

from ..api.models import CreateProductRequest, ProductResponse
from ..core.errors import NotFoundError
from ..core.models import Operation, OperationResult, new_product
from ..observability.telemetry import Telemetry
from ..observability.tracing import mark_span_error
from ..repository.memory import ProductRepository


class ProductService:
    """Product use cases on top of the repository."""

    def __init__(self, repository: ProductRepository, telemetry: Telemetry):
        self.repository = repository
        self.tracer = telemetry.tracer
        self.instruments = telemetry.products
        self.logger = telemetry.logger.bind(component="product_service")

    def _record(self, operation: Operation, result: OperationResult) -> None:
        self.instruments.operations.add(1, {
            "operation": operation.value,
            "result": result.value,
        })

    def _fail(self, span: Span, operation: Operation, exc: Exception, description: str) -> None:
        mark_span_error(span, exc, description)
        self._record(operation, OperationResult.FAILURE)

    # ============================================================
    # Create
    # ============================================================

    def create_product(self, request: CreateProductRequest) -> ProductResponse:
        with self.tracer.start_as_current_span(
            "ProductService.create_product",
            record_exception=False,
            set_status_on_exception=False,
        ) as span:
            span.set_attributes({
                "product.name": request.name,
                "product.price": request.price,
            })

            try:
                product = new_product(request.name, request.description, request.price)
            except Exception as e:
                self._fail(span, Operation.CREATE, e, "Validation failed")
                self.logger.error(
                    "Product validation failed",
                    product_name=request.name,
                    price=request.price,
                    error=str(e),
                )
                raise

            try:
                self.repository.create(product)
            except Exception as e:
                self._fail(span, Operation.CREATE, e, "Failed to save product")
                self.logger.error(
                    "Failed to save product",
                    product_id=product.id,
                    error=str(e),
                )
                raise

            span.set_attribute("product.id", product.id)
            span.set_status(Status(StatusCode.OK))
            self.instruments.created.add(1)
            self._record(Operation.CREATE, OperationResult.SUCCESS)

            self.logger.info(
                "Product created successfully",
                product_id=product.id,
                product_name=product.name,
            )
            return ProductResponse.from_product(product)

    # ============================================================
    # Read
    # ============================================================

    def get_product(self, product_id: str) -> ProductResponse:
        with self.tracer.start_as_current_span(
            "ProductService.get_product",
            record_exception=False,
            set_status_on_exception=False,
        ) as span:
            span.set_attribute("product.id", product_id)

            try:
                product = self.repository.find_by_id(product_id)
            except NotFoundError as e:
                mark_span_error(span, e, "Product not found")
                self._record(Operation.READ, OperationResult.NOT_FOUND)
                self.logger.warning("Product not found", product_id=product_id)
                raise
            except Exception as e:
                self._fail(span, Operation.READ, e, "Failed to get product")
                self.logger.error(
                    "Failed to get product",
                    product_id=product_id,
                    error=str(e),
                )
                raise

            span.set_status(Status(StatusCode.OK))
            self._record(Operation.READ, OperationResult.SUCCESS)

            self.logger.info("Product retrieved successfully", product_id=product_id)
            return ProductResponse.from_product(product)

    # ============================================================
    # List
    # ============================================================

    def list_products(self) -> List[ProductResponse]:
        with self.tracer.start_as_current_span(
            "ProductService.list_products",
            record_exception=False,
            set_status_on_exception=False,
        ) as span:
            try:
                products = self.repository.find_all()
            except Exception as e:
                self._fail(span, Operation.LIST, e, "Failed to list products")
                self.logger.error("Failed to list products", error=str(e))
                raise

            span.set_attribute("product.count", len(products))
            span.set_status(Status(StatusCode.OK))
            self._record(Operation.LIST, OperationResult.SUCCESS)

            self.logger.info("Products listed successfully", count=len(products))
            return [ProductResponse.from_product(p) for p in products]
