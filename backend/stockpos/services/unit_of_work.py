# Overview: Explicit transaction boundary shared by the stock ledger and the sale coordinator.

from __future__ import annotations

from ..extensions import db
from .lot_store import LotStore
from .stock_audit_service import StockAuditSink


class UnitOfWork:
    """
    One all-or-nothing transaction.

    Usage:
        with UnitOfWork() as uow:
            stock_ledger_service.decrease_for_product(uow, product_id, store_id, 3)

    Leaving the block normally commits; leaving it with an exception rolls
    everything back (lots, audit rows, payments) and re-raises. Ledger
    attempts run on savepoints inside this transaction, so a conflicted
    attempt can be undone without discarding earlier work of the same unit.
    """

    def __init__(self, session=None):
        self.session = session if session is not None else db.session
        self.lots = LotStore(self.session)
        self.audit = StockAuditSink(self.session)

    def __enter__(self) -> "UnitOfWork":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None:
            self.rollback()
            return False
        try:
            self.commit()
        except BaseException:
            self.rollback()
            raise
        return False

    def begin_savepoint(self):
        """Start a nested transaction; caller must commit() or rollback() it."""
        return self.session.begin_nested()

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()
