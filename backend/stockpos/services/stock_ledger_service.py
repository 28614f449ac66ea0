# Overview: Service-layer operations for the stock ledger; FIFO-by-expiration decrements under optimistic concurrency.

"""
Stock Ledger

WHY: Several registers sell the same product at the same store at the same
time. Stock must never be oversold, the soonest-to-expire lots must go first,
and a register that loses a race must retry on fresh data instead of
double- or under-decrementing.

DESIGN PRINCIPLES:
- No in-process locks and no SELECT ... FOR UPDATE. Every lot write is a
  version-checked UPDATE (LotStore.conditional_update).
- One decrement attempt = one savepoint. A conflict or a shortfall anywhere in
  the walk rolls the savepoint back, so no lot is left partially decremented.
- Retry is an explicit bounded loop (concurrency.run_with_retry). Every retry
  re-reads the lots. Insufficient stock is final and never retried.
- validate_availability is advisory only. It can be stale by the time the
  real decrement runs; the decrement's version check is the enforcement point.
"""

from __future__ import annotations

from collections import OrderedDict

from flask import current_app

from .concurrency import RetryPolicy, run_with_retry
from .lot_store import LotSnapshot, VersionMismatch
from .stock_errors import (
    InsufficientStockError,
    LotMissingError,
    LotNotFoundError,
    StockConflictError,
)
from .unit_of_work import UnitOfWork


def _require_positive_qty(quantity) -> int:
    """HARD RULE: quantities are positive whole units."""
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValueError("quantity must be a whole integer unit")
    if quantity <= 0:
        raise ValueError("quantity must be greater than zero")
    return quantity


# =============================================================================
# READS (advisory)
# =============================================================================

def get_total_quantity(uow: UnitOfWork, product_id: int, store_id: int) -> int:
    """Sum of quantity over every lot of (product, store); 0 when there are none."""
    return uow.lots.total_quantity(product_id, store_id)


def validate_availability(uow: UnitOfWork, product_id: int, store_id: int, requested_qty: int) -> bool:
    """
    Optimistic pre-check. Reserves nothing.

    A True result is not a guarantee: another register may sell the stock
    before this caller decrements.
    """
    available = get_total_quantity(uow, product_id, store_id)
    sufficient = available >= requested_qty
    current_app.logger.debug(
        "Stock check product=%s store=%s requested=%s available=%s sufficient=%s",
        product_id, store_id, requested_qty, available, sufficient,
    )
    return sufficient


def validate_sale(uow: UnitOfWork, sale) -> None:
    """
    Advisory check of every line of a sale just before payment.

    Lines of the same product are summed. Raises InsufficientStockError for
    the first product that is short.
    """
    requested_by_product: OrderedDict[int, int] = OrderedDict()
    for line in sale.lines:
        requested_by_product[line.product_id] = requested_by_product.get(line.product_id, 0) + line.quantity

    for product_id, requested in requested_by_product.items():
        available = get_total_quantity(uow, product_id, sale.store_id)
        if available < requested:
            raise InsufficientStockError(
                requested, available, product_id=product_id, store_id=sale.store_id
            )


# =============================================================================
# DECREMENT (FIFO by expiration)
# =============================================================================

def _attempt_decrease(uow: UnitOfWork, product_id: int, store_id: int, quantity: int):
    """
    One complete decrement attempt on a savepoint.

    Returns the post-write snapshots of every mutated lot, or the
    VersionMismatch that aborted the attempt. Raises InsufficientStockError
    (after undoing the attempt) when the lots run out.
    """
    savepoint = uow.begin_savepoint()
    try:
        lots = uow.lots.list_lots(product_id, store_id)
        if not lots:
            raise LotNotFoundError(quantity, product_id=product_id, store_id=store_id)

        remaining = quantity
        changes: list[tuple[LotSnapshot, LotSnapshot]] = []

        for lot in lots:
            if remaining <= 0:
                break
            if lot.quantity <= 0:
                continue

            consumed = min(lot.quantity, remaining)
            result = uow.lots.conditional_update(lot, lot.quantity - consumed)
            if isinstance(result, VersionMismatch):
                savepoint.rollback()
                return result

            changes.append((lot, result.lot))
            remaining -= consumed
            current_app.logger.debug(
                "Consumed %s from lot %s (exp %s), now %s",
                consumed, lot.id, lot.expiration_date, result.lot.quantity,
            )

        if remaining > 0:
            raise InsufficientStockError(
                quantity, quantity - remaining, product_id=product_id, store_id=store_id
            )

        for old_lot, new_lot in changes:
            uow.audit.record_update(old_lot, new_lot)

        savepoint.commit()
        return [new_lot for _, new_lot in changes]
    except BaseException:
        if savepoint.is_active:
            savepoint.rollback()
        raise


def decrease_for_product(
    uow: UnitOfWork,
    product_id: int,
    store_id: int,
    quantity: int,
    *,
    policy: RetryPolicy | None = None,
    sleep=None,
) -> list[LotSnapshot]:
    """
    Remove `quantity` units of a product from a store, oldest expiration first.

    Returns the mutated lots as written. Raises:
    - InsufficientStockError / LotNotFoundError: not enough stock (nothing changed)
    - StockConflictError: concurrent writers won every attempt (nothing changed)
    """
    _require_positive_qty(quantity)
    return run_with_retry(
        lambda: _attempt_decrease(uow, product_id, store_id, quantity),
        policy=policy,
        sleep=sleep,
        operation=f"decrease of product {product_id} at store {store_id}",
    )


def decrease_for_sale(uow: UnitOfWork, sale, *, policy: RetryPolicy | None = None, sleep=None) -> list[LotSnapshot]:
    """
    Decrement stock for every line of a sale.

    Stops at the first failing line and lets the error propagate. Earlier
    lines stay applied on the caller's unit of work; rolling that unit back
    (the sale coordinator does) undoes them.
    """
    current_app.logger.info("Decrementing stock for sale %s", sale.id)

    mutated: list[LotSnapshot] = []
    for line in sale.lines:
        mutated.extend(
            decrease_for_product(
                uow, line.product_id, sale.store_id, line.quantity, policy=policy, sleep=sleep
            )
        )

    current_app.logger.info("Stock decremented for sale %s (%d lot writes)", sale.id, len(mutated))
    return mutated


# =============================================================================
# INCREMENT / RESERVE
# =============================================================================

def _attempt_increase(uow: UnitOfWork, lot_id: int, quantity: int):
    lot = uow.lots.get_lot(lot_id)
    if lot is None:
        raise LotMissingError(lot_id)

    result = uow.lots.conditional_update(lot, lot.quantity + quantity)
    if isinstance(result, VersionMismatch):
        return result

    uow.audit.record_update(lot, result.lot)
    return result.lot


def increase(
    uow: UnitOfWork,
    lot_id: int,
    quantity: int,
    *,
    policy: RetryPolicy | None = None,
    sleep=None,
) -> LotSnapshot:
    """Add units to one lot (stock receipt), with the same OCC + retry discipline."""
    _require_positive_qty(quantity)
    lot = run_with_retry(
        lambda: _attempt_increase(uow, lot_id, quantity),
        policy=policy,
        sleep=sleep,
        operation=f"increase of lot {lot_id}",
    )
    current_app.logger.info("Stock lot %s increased by %s, now %s", lot_id, quantity, lot.quantity)
    return lot


def reserve(
    uow: UnitOfWork,
    product_id: int,
    store_id: int,
    quantity: int,
    *,
    policy: RetryPolicy | None = None,
    sleep=None,
) -> bool:
    """
    Take stock out immediately for a sale that is not paid yet.

    Returns False when stock is short or conflicts could not be resolved;
    storage failures still propagate.
    """
    _require_positive_qty(quantity)
    if not validate_availability(uow, product_id, store_id, quantity):
        current_app.logger.warning(
            "Reservation refused: product %s at store %s has less than %s units",
            product_id, store_id, quantity,
        )
        return False

    try:
        decrease_for_product(uow, product_id, store_id, quantity, policy=policy, sleep=sleep)
    except (InsufficientStockError, StockConflictError) as exc:
        current_app.logger.warning("Reservation failed: %s", exc)
        return False

    current_app.logger.info("Reserved %s units of product %s at store %s", quantity, product_id, store_id)
    return True
