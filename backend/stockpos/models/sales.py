from __future__ import annotations

from ..extensions import db
from stockpos.time_utils import to_utc_z

class Sale(db.Model):
    """
    Sale document for one store.

    LIFECYCLE: DRAFT (lines editable, no payment) -> PAID (immutable).
    Stock is decremented exactly once, in the same transaction that records
    the payment and flips the status to PAID.

    The sale row itself uses ORM optimistic locking (version_id_col); two
    registers finalizing the same sale cannot both succeed.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_store_status_created", "store_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    STATUS_DRAFT = "DRAFT"
    STATUS_PAID = "PAID"

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default=STATUS_DRAFT, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Sum of line totals (cents)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    # Deferred ("pay later") sales are tracked but settled the same way
    is_deferred = db.Column(db.Boolean, nullable=False, default=False)

    # Set by reserve_stock_for_sale: stock already left the lots, finalization must not decrement again
    stock_reserved = db.Column(db.Boolean, nullable=False, default=False)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    store = db.relationship("Store", backref=db.backref("sales", lazy=True))
    lines = db.relationship(
        "SaleLine",
        back_populates="sale",
        order_by="SaleLine.id",
        cascade="all, delete-orphan",
        lazy=True,
    )
    payments = db.relationship(
        "Payment",
        back_populates="sale",
        order_by="Payment.id",
        cascade="all, delete-orphan",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_finalized(self) -> bool:
        return self.status != self.STATUS_DRAFT or bool(self.payments)

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "store_id": self.store_id,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "total_cents": self.total_cents,
            "is_deferred": self.is_deferred,
            "stock_reserved": self.stock_reserved,
            "version_id": self.version_id,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
            data["payments"] = [payment.to_dict() for payment in self.payments]
        return data

class SaleLine(db.Model):
    """Individual line items on a sale document (price captured at sale time)."""
    __tablename__ = "sale_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", back_populates="lines")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "created_at": to_utc_z(self.created_at),
        }

class Payment(db.Model):
    """
    Completed payment for a sale.

    amount_cents is what was applied to the sale; tendered_cents is what the
    customer handed over (cash over-tender produces change_cents).
    """
    __tablename__ = "payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)

    tender_type = db.Column(db.String(32), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    tendered_cents = db.Column(db.Integer, nullable=False)
    change_cents = db.Column(db.Integer, nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False)

    paid_at = db.Column(db.DateTime(timezone=True), nullable=False)

    sale = db.relationship("Sale", back_populates="payments")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "tender_type": self.tender_type,
            "amount_cents": self.amount_cents,
            "tendered_cents": self.tendered_cents,
            "change_cents": self.change_cents,
            "currency": self.currency,
            "paid_at": to_utc_z(self.paid_at),
        }
