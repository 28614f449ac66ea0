from __future__ import annotations

from ..extensions import db
from stockpos.time_utils import to_utc_z

class Product(db.Model):
    """
    Product master data, scoped to a store.

    Stock is NOT stored here. Available quantity is always derived from the
    product's StockLot rows at the same store.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("store_id", "sku", name="uq_products_store_sku"),
        db.Index("ix_products_store_name", "store_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)

    # Price in cents; captured onto the sale line when the item is rung up.
    price_cents = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    store = db.relationship("Store", backref=db.backref("products", lazy=True))

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "sku": self.sku,
            "name": self.name,
            "price_cents": self.price_cents,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class StockLot(db.Model):
    """
    One delivered batch of one product at one store.

    CONCURRENCY:
    - `version` is the optimistic concurrency token. It is NOT an ORM
      version_id_col: every write goes through LotStore.conditional_update,
      which issues UPDATE ... WHERE id = :id AND version = :expected and
      bumps the version in the same statement.
    - Lots are never locked with SELECT ... FOR UPDATE.

    INVARIANT: quantity >= 0 after every committed write (also a DB check).
    """
    __tablename__ = "stock_lots"
    __table_args__ = (
        db.CheckConstraint("quantity >= 0", name="ck_stock_lots_quantity_non_negative"),
        # FIFO walk reads all lots of one (product, store), ordered by expiration
        db.Index("ix_stock_lots_product_store_expiration", "product_id", "store_id", "expiration_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    version = db.Column(db.Integer, nullable=False, default=1)

    expiration_date = db.Column(db.DateTime(timezone=True), nullable=True)
    purchase_date = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    purchase_price_cents = db.Column(db.Integer, nullable=True)
    supplier_id = db.Column(db.Integer, nullable=True, index=True)

    # Low-stock alerting; NULL means "no threshold configured"
    reorder_threshold = db.Column(db.Integer, nullable=True)

    last_modified = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("lots", lazy=True))
    store = db.relationship("Store")

    def __repr__(self) -> str:
        return f"<StockLot id={self.id} product={self.product_id} qty={self.quantity} v={self.version}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "store_id": self.store_id,
            "quantity": self.quantity,
            "version": self.version,
            "expiration_date": to_utc_z(self.expiration_date),
            "purchase_date": to_utc_z(self.purchase_date),
            "purchase_price_cents": self.purchase_price_cents,
            "supplier_id": self.supplier_id,
            "reorder_threshold": self.reorder_threshold,
            "last_modified": to_utc_z(self.last_modified),
        }


class StockAuditLog(db.Model):
    """
    Append-only trail of stock lot mutations.

    APPEND-ONLY: rows are inserted by StockAuditSink and never updated or deleted.
    For DELETE records new_version is NULL; for INSERT records the old_* columns are NULL.
    """
    __tablename__ = "stock_audit_logs"
    __table_args__ = (
        db.Index("ix_stock_audit_logs_modified_at", "modified_at"),
        db.Index("ix_stock_audit_logs_product_store", "product_id", "store_id"),
        {"sqlite_autoincrement": True},
    )

    OPERATION_INSERT = "INSERT"
    OPERATION_UPDATE = "UPDATE"
    OPERATION_DELETE = "DELETE"
    OPERATIONS = (OPERATION_INSERT, OPERATION_UPDATE, OPERATION_DELETE)

    id = db.Column(db.Integer, primary_key=True)

    # Plain integers, not foreign keys: history must survive lot deletion.
    lot_id = db.Column(db.Integer, nullable=False, index=True)
    product_id = db.Column(db.Integer, nullable=False)
    store_id = db.Column(db.Integer, nullable=False)

    operation_type = db.Column(db.String(16), nullable=False)

    old_quantity = db.Column(db.Integer, nullable=True)
    new_quantity = db.Column(db.Integer, nullable=True)
    old_version = db.Column(db.Integer, nullable=True)
    new_version = db.Column(db.Integer, nullable=True)

    modified_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "lot_id": self.lot_id,
            "product_id": self.product_id,
            "store_id": self.store_id,
            "operation_type": self.operation_type,
            "old_quantity": self.old_quantity,
            "new_quantity": self.new_quantity,
            "old_version": self.old_version,
            "new_version": self.new_version,
            "modified_at": to_utc_z(self.modified_at),
        }
