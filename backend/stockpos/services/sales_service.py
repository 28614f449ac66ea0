"""
Sales Service - sale lifecycle and the payment boundary

WHY: A sale accumulates lines while the customer is at the register; stock is
only taken at payment. Finalization is the single place where money and stock
change together, so it runs as one unit of work: payment row, lot decrements,
audit rows and the PAID status commit together or not at all.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import Payment, Product, Sale, SaleLine, Store
from stockpos.time_utils import utcnow
from . import stock_ledger_service
from .concurrency import RetryPolicy
from .payment_service import PaymentError, process_tender
from .stock_errors import InsufficientStockError, StockConflictError, StockError
from .unit_of_work import UnitOfWork


class SaleError(Exception):
    """Raised for sale operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class SaleNotFoundError(SaleError):
    """Raised when a sale or sale line id does not exist."""


def _require_positive_qty(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise SaleError("Quantity must be greater than zero", details={"quantity": quantity})
    return quantity


def _load_sale(session, sale_id: int) -> Sale:
    sale = session.get(Sale, sale_id)
    if not sale:
        raise SaleNotFoundError("Sale not found", details={"sale_id": sale_id})
    return sale


def _load_line(session, line_id: int) -> SaleLine:
    line = session.get(SaleLine, line_id)
    if not line:
        raise SaleNotFoundError("Sale line not found", details={"line_id": line_id})
    return line


def _require_editable(sale: Sale) -> None:
    if sale.is_finalized:
        raise SaleError(f"Cannot modify sale with status {sale.status}", details={"sale_id": sale.id})
    if sale.stock_reserved:
        raise SaleError("Stock is reserved for this sale; lines are locked", details={"sale_id": sale.id})


def _recompute_total(sale: Sale) -> None:
    sale.total_cents = sum(line.line_total_cents for line in sale.lines)


def _check_available(uow: UnitOfWork, product_id: int, store_id: int, quantity: int) -> None:
    """Advisory check while ringing up; the real guard is the decrement at payment."""
    if not stock_ledger_service.validate_availability(uow, product_id, store_id, quantity):
        available = stock_ledger_service.get_total_quantity(uow, product_id, store_id)
        raise SaleError(
            "Insufficient stock",
            details={"product_id": product_id, "requested": quantity, "available": available},
        )


def _stock_error_details(exc: StockError) -> dict:
    if isinstance(exc, InsufficientStockError):
        return {"product_id": exc.product_id, "requested": exc.requested, "available": exc.available}
    if isinstance(exc, StockConflictError):
        return {"reason": "conflict", "lot_id": exc.lot_id, "attempts": exc.attempts}
    return exc.to_details()


# =============================================================================
# CART
# =============================================================================

def create_sale(store_id: int, is_deferred: bool = False) -> Sale:
    """Create new draft sale document."""
    if not db.session.get(Store, store_id):
        raise SaleError("Store not found", details={"store_id": store_id})

    sale = Sale(store_id=store_id, status=Sale.STATUS_DRAFT, total_cents=0, is_deferred=bool(is_deferred))
    db.session.add(sale)
    db.session.commit()

    current_app.logger.info("Created sale %s at store %s", sale.id, store_id)
    return sale


def get_sale(sale_id: int) -> Sale:
    return _load_sale(db.session, sale_id)


def add_item(sale_id: int, product_id: int, quantity: int) -> SaleLine:
    """
    Add a product to a draft sale.

    A second add of the same product grows the existing line. The availability
    check covers the resulting line quantity.
    """
    _require_positive_qty(quantity)

    with UnitOfWork() as uow:
        sale = _load_sale(uow.session, sale_id)
        _require_editable(sale)

        product = uow.session.get(Product, product_id)
        if not product:
            raise SaleError("Product not found", details={"product_id": product_id})
        if product.store_id != sale.store_id:
            raise SaleError(
                "Product does not belong to this store",
                details={"product_id": product_id, "store_id": sale.store_id},
            )
        if not product.is_active:
            raise SaleError("Product is not active", details={"product_id": product_id})
        if product.price_cents is None:
            raise SaleError("Product has no price", details={"product_id": product_id})

        line = next((l for l in sale.lines if l.product_id == product_id), None)
        new_quantity = quantity + (line.quantity if line else 0)
        _check_available(uow, product_id, sale.store_id, new_quantity)

        if line is None:
            line = SaleLine(product_id=product_id, unit_price_cents=product.price_cents)
            sale.lines.append(line)
        line.quantity = new_quantity
        line.line_total_cents = line.unit_price_cents * new_quantity
        _recompute_total(sale)

    return line


def update_item_quantity(line_id: int, quantity: int) -> SaleLine:
    _require_positive_qty(quantity)

    with UnitOfWork() as uow:
        line = _load_line(uow.session, line_id)
        sale = line.sale
        _require_editable(sale)

        _check_available(uow, line.product_id, sale.store_id, quantity)

        line.quantity = quantity
        line.line_total_cents = line.unit_price_cents * quantity
        _recompute_total(sale)

    return line


def remove_item(line_id: int) -> Sale:
    with UnitOfWork() as uow:
        line = _load_line(uow.session, line_id)
        sale = line.sale
        _require_editable(sale)

        sale.lines.remove(line)
        _recompute_total(sale)

    return sale


# =============================================================================
# PAYMENT BOUNDARY
# =============================================================================

def finalize_sale(
    sale_id: int,
    tender_type: str,
    amount_received_cents: int | None,
    currency: str | None = None,
    *,
    policy: RetryPolicy | None = None,
    sleep=None,
) -> tuple[Sale, Payment]:
    """
    Pay a draft sale and take its stock, atomically.

    Order inside the unit of work:
      1. reject unknown, already-finalized, and empty sales
      2. advisory stock check over all lines
      3. tender processing, Payment row
      4. stock decrement per line (skipped when stock was reserved earlier)
      5. status PAID, commit

    Any failure rolls back the payment and every decrement; the sale stays DRAFT.
    """
    currency = currency or current_app.config.get("DEFAULT_CURRENCY", "EUR")

    try:
        with UnitOfWork() as uow:
            sale = _load_sale(uow.session, sale_id)
            if sale.is_finalized:
                raise SaleError(
                    f"Cannot finalize sale with status {sale.status}",
                    details={"sale_id": sale_id, "status": sale.status},
                )
            if not sale.lines:
                raise SaleError("Cannot finalize an empty sale", details={"sale_id": sale_id})

            if not sale.stock_reserved:
                stock_ledger_service.validate_sale(uow, sale)

            result = process_tender(tender_type, sale.total_cents, amount_received_cents, currency)
            payment = Payment(
                tender_type=result.tender_type,
                amount_cents=result.amount_cents,
                tendered_cents=result.tendered_cents,
                change_cents=result.change_cents,
                currency=result.currency,
                paid_at=utcnow(),
            )
            sale.payments.append(payment)

            if not sale.stock_reserved:
                stock_ledger_service.decrease_for_sale(uow, sale, policy=policy, sleep=sleep)

            sale.status = Sale.STATUS_PAID
            sale.completed_at = utcnow()
    except InsufficientStockError as e:
        current_app.logger.warning("Sale %s not finalized: %s", sale_id, e)
        raise SaleError("Insufficient stock", details=_stock_error_details(e)) from e
    except StockConflictError as e:
        current_app.logger.warning("Sale %s not finalized: %s", sale_id, e)
        raise SaleError("Stock conflict detected, please retry", details=_stock_error_details(e)) from e
    except StockError as e:
        raise SaleError(str(e), details=_stock_error_details(e)) from e
    except PaymentError as e:
        raise SaleError(str(e), details=e.details) from e
    except StaleDataError as e:
        current_app.logger.warning("Sale %s was finalized concurrently", sale_id)
        raise SaleError("Sale was modified concurrently", details={"reason": "conflict", "sale_id": sale_id}) from e

    current_app.logger.info(
        "Sale %s paid: %s %s cents by %s (change %s)",
        sale_id, payment.currency, payment.amount_cents, payment.tender_type, payment.change_cents,
    )
    return sale, payment


def reserve_stock_for_sale(sale_id: int, *, policy: RetryPolicy | None = None, sleep=None) -> bool:
    """
    Take the stock for every line of a draft sale now, before payment.

    All-or-nothing: if any line cannot be reserved, earlier lines are rolled
    back and False is returned. Empty sales are rejected. A reserved sale is not decremented again at
    finalization and its lines can no longer change.
    """
    uow = UnitOfWork()
    try:
        sale = _load_sale(uow.session, sale_id)
        _require_editable(sale)
        if not sale.lines:
            raise SaleError("Cannot reserve an empty sale", details={"sale_id": sale_id})

        for line in sale.lines:
            if not stock_ledger_service.reserve(
                uow, line.product_id, sale.store_id, line.quantity, policy=policy, sleep=sleep
            ):
                current_app.logger.warning(
                    "Stock reservation for sale %s failed on product %s", sale_id, line.product_id
                )
                uow.rollback()
                return False

        sale.stock_reserved = True
        uow.commit()
    except Exception:
        uow.rollback()
        raise

    current_app.logger.info("Reserved stock for sale %s (%d lines)", sale_id, len(sale.lines))
    return True
