# Overview: Error taxonomy for stock lot mutations.

"""
Stock error taxonomy.

- InsufficientStockError: final outcome, never retried.
- LotNotFoundError: no lots at all for (product, store); insufficient with available = 0.
- StockConflictError: optimistic concurrency retries exhausted; a hard failure.
- LotMissingError: a lot id that does not exist (increase / delete).

Storage failures (sqlalchemy.exc.SQLAlchemyError) are not wrapped here; they
propagate unchanged. A single rejected conditional write is not an error at
all: LotStore returns a VersionMismatch result for it.
"""

from __future__ import annotations


class StockError(Exception):
    """Base class for stock ledger failures."""

    def to_details(self) -> dict:
        return {}


class InsufficientStockError(StockError):
    def __init__(
        self,
        requested: int,
        available: int,
        *,
        product_id: int | None = None,
        store_id: int | None = None,
    ):
        self.requested = requested
        self.available = available
        self.product_id = product_id
        self.store_id = store_id
        super().__init__(
            f"Insufficient stock for product {product_id} at store {store_id}. "
            f"Requested: {requested}, Available: {available}"
        )

    @property
    def missing(self) -> int:
        return self.requested - self.available

    def to_details(self) -> dict:
        return {
            "reason": "insufficient_stock",
            "product_id": self.product_id,
            "store_id": self.store_id,
            "requested": self.requested,
            "available": self.available,
            "missing": self.missing,
        }


class LotNotFoundError(InsufficientStockError):
    def __init__(self, requested: int, *, product_id: int | None = None, store_id: int | None = None):
        super().__init__(requested, 0, product_id=product_id, store_id=store_id)

    def to_details(self) -> dict:
        details = super().to_details()
        details["reason"] = "no_lots"
        return details


class StockConflictError(StockError):
    def __init__(self, *, attempts: int, lot_id: int | None = None):
        self.attempts = attempts
        self.lot_id = lot_id
        super().__init__(
            f"Stock lot {lot_id} was modified concurrently; gave up after {attempts} attempts"
        )

    def to_details(self) -> dict:
        return {"reason": "conflict", "lot_id": self.lot_id, "attempts": self.attempts}


class LotMissingError(StockError):
    def __init__(self, lot_id: int):
        self.lot_id = lot_id
        super().__init__(f"Stock lot {lot_id} not found")

    def to_details(self) -> dict:
        return {"reason": "lot_missing", "lot_id": self.lot_id}
