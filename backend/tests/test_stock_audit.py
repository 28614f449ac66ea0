"""
Stock audit trail: one record per lot mutation, written best-effort on the
same unit of work, plus the history queries.
"""

from datetime import datetime, timedelta

import pytest

from stockpos.models import StockAuditLog
from stockpos.services import inventory_service, stock_audit_service, stock_ledger_service
from stockpos.services.unit_of_work import UnitOfWork
from stockpos.time_utils import utcnow

pytestmark = pytest.mark.stock


def _log(db_session, lot_id, store_id, product_id, modified_at, op=StockAuditLog.OPERATION_UPDATE):
    entry = StockAuditLog(
        lot_id=lot_id,
        product_id=product_id,
        store_id=store_id,
        operation_type=op,
        old_quantity=5,
        new_quantity=4,
        old_version=1,
        new_version=2,
        modified_at=modified_at,
    )
    db_session.add(entry)
    return entry


def test_receive_increase_delete_leave_a_full_history(store, product, audit_rows):
    with UnitOfWork() as uow:
        lot = inventory_service.receive_lot(
            uow, product_id=product.id, store_id=store.id, quantity=8, expiration_date=datetime(2026, 12, 1)
        )
    with UnitOfWork() as uow:
        stock_ledger_service.decrease_for_product(uow, product.id, store.id, 3)
    with UnitOfWork() as uow:
        inventory_service.delete_lot(uow, lot.id)

    rows = audit_rows()
    assert [r.operation_type for r in rows] == ["INSERT", "UPDATE", "DELETE"]
    insert, update, delete = rows
    assert (insert.old_quantity, insert.new_quantity, insert.old_version, insert.new_version) == (None, 8, None, 1)
    assert (update.old_quantity, update.new_quantity, update.old_version, update.new_version) == (8, 5, 1, 2)
    assert (delete.old_quantity, delete.new_quantity, delete.old_version, delete.new_version) == (5, 0, 2, None)

    history = stock_audit_service.get_lot_history(lot.id)
    assert [h.operation_type for h in history] == ["DELETE", "UPDATE", "INSERT"]
    assert [h.id for h in stock_audit_service.get_product_history(product.id)] == [h.id for h in history]


def test_audit_failure_does_not_abort_the_decrement(store, product, make_lot, lot_state, audit_rows, monkeypatch, caplog):
    lot_id = make_lot(product, 5, expiration_date=datetime(2026, 11, 1))
    # modified_at is NOT NULL; the audit insert fails at flush inside its own savepoint
    monkeypatch.setattr(stock_audit_service, "utcnow", lambda: None)

    with UnitOfWork() as uow:
        mutated = stock_ledger_service.decrease_for_product(uow, product.id, store.id, 2)

    assert mutated[0].quantity == 3
    assert lot_state(lot_id).quantity == 3
    assert audit_rows() == []
    assert "Failed to write stock audit record" in caplog.text


def test_rolled_back_mutation_leaves_no_audit_row(store, product, make_lot, audit_rows):
    make_lot(product, 5, expiration_date=datetime(2026, 11, 1))

    with pytest.raises(RuntimeError):
        with UnitOfWork() as uow:
            stock_ledger_service.decrease_for_product(uow, product.id, store.id, 2)
            raise RuntimeError("register crashed before commit")

    assert audit_rows() == []


def test_record_rejects_unknown_operation_without_raising(app, caplog):
    uow = UnitOfWork()
    assert uow.audit.record(None, None, "UPDATE") is None
    assert "Failed to write stock audit record" in caplog.text


def test_recent_modifications_and_operation_filter(db_session, store, other_store):
    now = utcnow()
    recent = _log(db_session, 1, store.id, 10, now - timedelta(hours=1))
    _log(db_session, 2, store.id, 10, now - timedelta(hours=30))
    _log(db_session, 3, other_store.id, 10, now)
    deleted = _log(db_session, 4, store.id, 10, now - timedelta(hours=2), op=StockAuditLog.OPERATION_DELETE)
    db_session.commit()

    assert [r.id for r in stock_audit_service.get_recent_modifications(store.id, 24)] == [recent.id, deleted.id]
    assert [r.id for r in stock_audit_service.get_logs_by_operation(store.id, "DELETE")] == [deleted.id]
    with pytest.raises(ValueError):
        stock_audit_service.get_logs_by_operation(store.id, "TRUNCATE")


def test_concurrency_statistics_only_reports_busy_hours(db_session, store):
    busy_hour = (utcnow() - timedelta(hours=2)).replace(minute=10, second=0, microsecond=0)
    quiet_hour = busy_hour - timedelta(hours=1)

    _log(db_session, 1, store.id, 10, busy_hour)
    _log(db_session, 2, store.id, 10, busy_hour + timedelta(minutes=5))
    _log(db_session, 2, store.id, 10, busy_hour + timedelta(minutes=6))
    _log(db_session, 3, store.id, 10, quiet_hour)
    _log(db_session, 3, store.id, 10, quiet_hour + timedelta(minutes=1))
    db_session.commit()

    stats = stock_audit_service.get_concurrency_statistics(store.id, 24)

    assert stats == [{
        "activity_date": busy_hour.date().isoformat(),
        "activity_hour": busy_hour.hour,
        "distinct_lots": 2,
        "total_operations": 3,
    }]
