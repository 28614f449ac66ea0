# Overview: Service-layer tender processing; validates a tender against a sale total and computes change.

"""
Tender Processing

WHY: Finalizing a sale needs one decision before stock is touched: does the
tender cover the total, and how much change goes back to the customer.

DESIGN PRINCIPLES:
- Pure functions over integer cents. No database access here; the sale
  coordinator records the Payment row on its own unit of work.
- CASH must cover the total; the excess comes back as change.
- CARD is charged exactly the total; the amount received is ignored.
- Unknown tender types are rejected with PaymentError.
"""

from __future__ import annotations

from dataclasses import dataclass


class PaymentError(Exception):
    """Raised for payment operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


# =============================================================================
# TENDER TYPES (CONSTANTS)
# =============================================================================

TENDER_CASH = "CASH"
TENDER_CARD = "CARD"

VALID_TENDER_TYPES = [
    TENDER_CASH,
    TENDER_CARD,
]


@dataclass(frozen=True)
class PaymentResult:
    tender_type: str
    amount_cents: int
    tendered_cents: int
    change_cents: int
    currency: str

    def to_dict(self) -> dict:
        return {
            "tender_type": self.tender_type,
            "amount_cents": self.amount_cents,
            "tendered_cents": self.tendered_cents,
            "change_cents": self.change_cents,
            "currency": self.currency,
        }


def _process_cash(total_cents: int, amount_received_cents: int, currency: str) -> PaymentResult:
    if amount_received_cents < total_cents:
        raise PaymentError(
            "Insufficient cash tendered",
            details={
                "total_cents": total_cents,
                "amount_received_cents": amount_received_cents,
                "missing_cents": total_cents - amount_received_cents,
            },
        )
    return PaymentResult(
        tender_type=TENDER_CASH,
        amount_cents=total_cents,
        tendered_cents=amount_received_cents,
        change_cents=amount_received_cents - total_cents,
        currency=currency,
    )


def _process_card(total_cents: int, amount_received_cents: int, currency: str) -> PaymentResult:
    # No gateway: a card tender is always charged the exact total.
    return PaymentResult(
        tender_type=TENDER_CARD,
        amount_cents=total_cents,
        tendered_cents=total_cents,
        change_cents=0,
        currency=currency,
    )


_PROCESSORS = {
    TENDER_CASH: _process_cash,
    TENDER_CARD: _process_card,
}


def normalize_tender_type(tender_type: str | None) -> str:
    normalized = (tender_type or "").strip().upper()
    if normalized not in VALID_TENDER_TYPES:
        raise PaymentError(
            f"Invalid tender type: {tender_type}. Must be one of {VALID_TENDER_TYPES}",
            details={"tender_type": tender_type},
        )
    return normalized


def process_tender(
    tender_type: str,
    total_cents: int,
    amount_received_cents: int | None,
    currency: str,
) -> PaymentResult:
    """
    Settle a sale total with one tender.

    Raises PaymentError for an unknown tender, a negative amount, or cash that
    does not cover the total.
    """
    tender = normalize_tender_type(tender_type)
    if total_cents < 0:
        raise PaymentError("Sale total cannot be negative")

    received = total_cents if amount_received_cents is None else amount_received_cents
    if received < 0:
        raise PaymentError("Amount received cannot be negative")

    if currency is not None and not isinstance(currency, str):
        raise PaymentError("currency must be a 3-letter code", details={"currency": currency})
    currency = (currency or "").strip().upper()
    if len(currency) != 3:
        raise PaymentError("currency must be a 3-letter code", details={"currency": currency})

    return _PROCESSORS[tender](total_cents, received, currency)
