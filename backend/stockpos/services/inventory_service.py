# Overview: Service-layer operations for inventory lots; receipt, removal, and stock reporting.

# backend/stockpos/services/inventory_service.py

from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app

from ..models import Product, Store
from stockpos.time_utils import utcnow
from .concurrency import RetryPolicy, run_with_retry
from .lot_store import LotSnapshot, VersionMismatch
from .stock_errors import LotMissingError
from .unit_of_work import UnitOfWork
"""
Inventory Lot Invariants (authoritative)

Canonical time handling:
- All internal datetimes are UTC-naive (tzinfo=None).
- Expiration and purchase dates arrive already parsed; routes normalize ISO-8601 input.

Lot model:
- Stock on hand is SUM(quantity) over the lots of (product, store).
- A lot belongs to exactly one product and one store; the product must be scoped
  to the same store.
- Receipts create a new lot (audit INSERT); they never merge into an existing lot.
- Deleting a lot is version-checked like any other write (audit DELETE).

Reporting reads here are snapshots only; they are never used to decide a decrement.
"""


class InventoryError(Exception):
    """Raised for invalid inventory requests (unknown store/product, bad quantities)."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class InventoryNotFoundError(InventoryError):
    """Raised when the store or product of a request does not exist."""


def _resolve_product(uow: UnitOfWork, product_id: int, store_id: int) -> Product:
    store = uow.session.get(Store, store_id)
    if store is None:
        raise InventoryNotFoundError("Store not found", details={"store_id": store_id})

    product = uow.session.get(Product, product_id)
    if product is None:
        raise InventoryNotFoundError("Product not found", details={"product_id": product_id})

    if product.store_id != store_id:
        raise InventoryError(
            "Product does not belong to this store",
            details={"product_id": product_id, "store_id": store_id},
        )
    return product


def receive_lot(
    uow: UnitOfWork,
    *,
    product_id: int,
    store_id: int,
    quantity: int,
    expiration_date: datetime | None = None,
    purchase_date: datetime | None = None,
    purchase_price_cents: int | None = None,
    supplier_id: int | None = None,
    reorder_threshold: int | None = None,
) -> LotSnapshot:
    """
    Record a delivered batch as a new stock lot.

    The lot starts at version 1. One INSERT audit record is written on the
    same unit of work.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InventoryError("quantity must be a positive integer", details={"quantity": quantity})
    if purchase_price_cents is not None and purchase_price_cents < 0:
        raise InventoryError("purchase_price_cents cannot be negative")
    if reorder_threshold is not None and reorder_threshold < 0:
        raise InventoryError("reorder_threshold cannot be negative")

    _resolve_product(uow, product_id, store_id)

    lot = uow.lots.insert_lot(
        product_id=product_id,
        store_id=store_id,
        quantity=quantity,
        expiration_date=expiration_date,
        purchase_date=purchase_date,
        purchase_price_cents=purchase_price_cents,
        supplier_id=supplier_id,
        reorder_threshold=reorder_threshold,
    )
    uow.audit.record_insert(lot)

    current_app.logger.info(
        "Received lot %s: %s units of product %s at store %s (expires %s)",
        lot.id, quantity, product_id, store_id, lot.expiration_date,
    )
    return lot


def _attempt_delete(uow: UnitOfWork, lot_id: int):
    lot = uow.lots.get_lot(lot_id)
    if lot is None:
        raise LotMissingError(lot_id)

    result = uow.lots.conditional_delete(lot)
    if isinstance(result, VersionMismatch):
        return result

    uow.audit.record_delete(lot)
    return lot


def delete_lot(uow: UnitOfWork, lot_id: int, *, policy: RetryPolicy | None = None, sleep=None) -> LotSnapshot:
    """Remove a lot (write-off, data correction). Returns the lot as it was deleted."""
    lot = run_with_retry(
        lambda: _attempt_delete(uow, lot_id),
        policy=policy,
        sleep=sleep,
        operation=f"delete of lot {lot_id}",
    )
    current_app.logger.info("Deleted stock lot %s (had %s units)", lot_id, lot.quantity)
    return lot


# =============================================================================
# READS
# =============================================================================

def get_lot(uow: UnitOfWork, lot_id: int) -> LotSnapshot | None:
    return uow.lots.get_lot(lot_id)


def list_lots(uow: UnitOfWork, product_id: int, store_id: int) -> list[LotSnapshot]:
    """Lots of one product at one store, in the order a decrement would consume them."""
    return uow.lots.list_lots(product_id, store_id)


def get_low_stock_lots(uow: UnitOfWork, store_id: int) -> list[LotSnapshot]:
    return uow.lots.low_stock(store_id)


def get_expiring_lots(uow: UnitOfWork, store_id: int, days: int = 7) -> list[LotSnapshot]:
    """Lots with stock left that expire within `days` (already-expired lots included)."""
    if days < 0:
        raise InventoryError("days cannot be negative", details={"days": days})
    return uow.lots.expiring_before(store_id, utcnow() + timedelta(days=days))


def get_store_stock_summary(uow: UnitOfWork, store_id: int) -> list[dict]:
    return [
        {"product_id": product_id, "total_quantity": total, "lot_count": count}
        for product_id, total, count in uow.lots.store_totals(store_id)
    ]
