# Overview: Persistence abstraction over stock lots with version-checked writes.

"""
LotStore - the only code that reads or writes stock_lots rows.

CONTRACT:
- Reads return immutable LotSnapshot values, never live ORM rows.
- Writes are conditional on the version the caller read. The outcome is a
  tagged result (WriteOk | VersionMismatch), not an exception: under load a
  mismatch is an expected, frequent outcome.
- The store bumps `version` and `last_modified` in the same UPDATE statement.
- No row locks are taken (no SELECT ... FOR UPDATE).
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional, Union

from sqlalchemy import delete, func, select, update

from ..models import StockLot
from stockpos.time_utils import to_utc_z, utcnow


@dataclass(frozen=True)
class LotSnapshot:
    id: int
    product_id: int
    store_id: int
    quantity: int
    version: int
    expiration_date: Optional[datetime] = None
    purchase_date: Optional[datetime] = None
    purchase_price_cents: Optional[int] = None
    supplier_id: Optional[int] = None
    reorder_threshold: Optional[int] = None
    last_modified: Optional[datetime] = None

    @classmethod
    def from_row(cls, row) -> "LotSnapshot":
        return cls(
            id=row.id,
            product_id=row.product_id,
            store_id=row.store_id,
            quantity=row.quantity,
            version=row.version,
            expiration_date=row.expiration_date,
            purchase_date=row.purchase_date,
            purchase_price_cents=row.purchase_price_cents,
            supplier_id=row.supplier_id,
            reorder_threshold=row.reorder_threshold,
            last_modified=row.last_modified,
        )

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


@dataclass(frozen=True)
class WriteOk:
    """The conditional write was applied; `lot` is the state after the write."""
    lot: LotSnapshot

    @property
    def new_version(self) -> int:
        return self.lot.version


@dataclass(frozen=True)
class VersionMismatch:
    """Another writer changed the lot since `expected_version` was read."""
    lot_id: int
    expected_version: int


WriteResult = Union[WriteOk, VersionMismatch]


_LOT_COLUMNS = (
    StockLot.id,
    StockLot.product_id,
    StockLot.store_id,
    StockLot.quantity,
    StockLot.version,
    StockLot.expiration_date,
    StockLot.purchase_date,
    StockLot.purchase_price_cents,
    StockLot.supplier_id,
    StockLot.reorder_threshold,
    StockLot.last_modified,
)


class LotStore:
    """SQLAlchemy-backed lot repository bound to one session (one unit of work)."""

    def __init__(self, session):
        self.session = session

    def list_lots(self, product_id: int, store_id: int) -> list[LotSnapshot]:
        """
        All lots for (product, store), oldest expiration first.

        Lots without an expiration date sort last; ties fall back to purchase
        date, then id, so the walk order is deterministic.
        """
        stmt = (
            select(*_LOT_COLUMNS)
            .where(StockLot.product_id == product_id, StockLot.store_id == store_id)
            .order_by(
                StockLot.expiration_date.is_(None),
                StockLot.expiration_date.asc(),
                StockLot.purchase_date.asc(),
                StockLot.id.asc(),
            )
        )
        return [LotSnapshot.from_row(row) for row in self.session.execute(stmt)]

    def get_lot(self, lot_id: int) -> LotSnapshot | None:
        row = self.session.execute(select(*_LOT_COLUMNS).where(StockLot.id == lot_id)).first()
        return LotSnapshot.from_row(row) if row is not None else None

    def total_quantity(self, product_id: int, store_id: int) -> int:
        total = self.session.execute(
            select(func.coalesce(func.sum(StockLot.quantity), 0)).where(
                StockLot.product_id == product_id,
                StockLot.store_id == store_id,
            )
        ).scalar_one()
        return int(total)

    def conditional_update(self, lot: LotSnapshot, new_quantity: int) -> WriteResult:
        """Compare-version-and-swap on one lot's quantity."""
        if new_quantity < 0:
            raise ValueError(f"Stock lot {lot.id} quantity cannot go below zero (got {new_quantity})")

        now = utcnow()
        stmt = (
            update(StockLot)
            .where(StockLot.id == lot.id, StockLot.version == lot.version)
            .values(quantity=new_quantity, version=StockLot.version + 1, last_modified=now)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        if result.rowcount != 1:
            return VersionMismatch(lot_id=lot.id, expected_version=lot.version)

        return WriteOk(lot=replace(lot, quantity=new_quantity, version=lot.version + 1, last_modified=now))

    def conditional_delete(self, lot: LotSnapshot) -> WriteResult:
        """Delete a lot only if nobody changed it since it was read."""
        stmt = (
            delete(StockLot)
            .where(StockLot.id == lot.id, StockLot.version == lot.version)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        if result.rowcount != 1:
            return VersionMismatch(lot_id=lot.id, expected_version=lot.version)
        return WriteOk(lot=lot)

    def insert_lot(
        self,
        *,
        product_id: int,
        store_id: int,
        quantity: int,
        expiration_date: Optional[datetime] = None,
        purchase_date: Optional[datetime] = None,
        purchase_price_cents: Optional[int] = None,
        supplier_id: Optional[int] = None,
        reorder_threshold: Optional[int] = None,
    ) -> LotSnapshot:
        if quantity < 0:
            raise ValueError("Stock lot quantity cannot be negative")

        now = utcnow()
        lot = StockLot(
            product_id=product_id,
            store_id=store_id,
            quantity=quantity,
            version=1,
            expiration_date=expiration_date,
            purchase_date=purchase_date or now,
            purchase_price_cents=purchase_price_cents,
            supplier_id=supplier_id,
            reorder_threshold=reorder_threshold,
            last_modified=now,
        )
        self.session.add(lot)
        self.session.flush()  # assigns lot.id without committing
        snapshot = LotSnapshot.from_row(lot)
        # Later writes bypass the ORM; keep no stale instance in the identity map.
        self.session.expunge(lot)
        return snapshot

    # ------------------------------------------------------------------
    # Store-wide reads (reporting; never used for decrement decisions)
    # ------------------------------------------------------------------

    def low_stock(self, store_id: int) -> list[LotSnapshot]:
        """Lots at or below their own reorder threshold. Lots without a threshold are ignored."""
        stmt = (
            select(*_LOT_COLUMNS)
            .where(
                StockLot.store_id == store_id,
                StockLot.reorder_threshold.is_not(None),
                StockLot.quantity <= StockLot.reorder_threshold,
            )
            .order_by(StockLot.quantity.asc(), StockLot.id.asc())
        )
        return [LotSnapshot.from_row(row) for row in self.session.execute(stmt)]

    def expiring_before(self, store_id: int, until: datetime) -> list[LotSnapshot]:
        """Lots that still hold stock and expire on or before `until`, soonest first."""
        stmt = (
            select(*_LOT_COLUMNS)
            .where(
                StockLot.store_id == store_id,
                StockLot.quantity > 0,
                StockLot.expiration_date.is_not(None),
                StockLot.expiration_date <= until,
            )
            .order_by(StockLot.expiration_date.asc(), StockLot.id.asc())
        )
        return [LotSnapshot.from_row(row) for row in self.session.execute(stmt)]

    def store_totals(self, store_id: int) -> list[tuple[int, int, int]]:
        """(product_id, total quantity, lot count) for every product with lots at the store."""
        stmt = (
            select(StockLot.product_id, func.sum(StockLot.quantity), func.count(StockLot.id))
            .where(StockLot.store_id == store_id)
            .group_by(StockLot.product_id)
            .order_by(StockLot.product_id.asc())
        )
        return [(product_id, int(total or 0), int(count)) for product_id, total, count in self.session.execute(stmt)]
