"""
Products API - In-Memory Product Repository

Concurrency-safe map of product identifiers to product records.

Readers share the lock; a writer holds it exclusively. The lock only guards
dictionary access and is never held across I/O.
"""

from contextlib import contextmanager
from threading import Condition, Lock
from typing import Dict, Iterator, List

from ..core.errors import DuplicateKeyError, NotFoundError
from ..core.models import Product


class ReadWriteLock:
    """
    Shared-reader / exclusive-writer lock.

    Writers are preferred: once a writer is waiting, new readers block so a
    steady stream of reads cannot starve a create.
    """

    def __init__(self):
        self._cond = Condition(Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class ProductRepository:
    """In-memory product store."""

    def __init__(self):
        self._products: Dict[str, Product] = {}
        self._lock = ReadWriteLock()

    def create(self, product: Product) -> None:
        """
        Store a validated product.

        Raises:
            DuplicateKeyError: the identifier is already stored. Existing
                records are never overwritten.
        """
        with self._lock.write():
            if product.id in self._products:
                raise DuplicateKeyError(product.id)
            self._products[product.id] = product

    def find_by_id(self, product_id: str) -> Product:
        """
        Get a product by identifier.

        Raises:
            NotFoundError: no product with this identifier.
        """
        with self._lock.read():
            product = self._products.get(product_id)
        if product is None:
            raise NotFoundError(product_id=product_id)
        return product

    def find_all(self) -> List[Product]:
        """Snapshot of all products, in no particular order."""
        with self._lock.read():
            return list(self._products.values())

    def count(self) -> int:
        with self._lock.read():
            return len(self._products)
