"""
Stock ledger behaviour: FIFO-by-expiration decrements, all-or-nothing
attempts, and bounded retry on version conflicts.
"""

from datetime import datetime

import pytest
from sqlalchemy.exc import OperationalError

from stockpos.models import StockAuditLog
from stockpos.services import stock_ledger_service
from stockpos.services.concurrency import RetryPolicy
from stockpos.services.lot_store import VersionMismatch
from stockpos.services.stock_errors import (
    InsufficientStockError,
    LotMissingError,
    LotNotFoundError,
    StockConflictError,
)
from stockpos.services.unit_of_work import UnitOfWork

pytestmark = pytest.mark.stock


def day(n: int) -> datetime:
    return datetime(2026, 11, n)


class ConflictOn:
    """LotStore wrapper whose conditional writes to the given lots always lose the race."""

    def __init__(self, inner, *lot_ids):
        self.inner = inner
        self.lot_ids = set(lot_ids)
        self.update_calls = 0

    def conditional_update(self, lot, new_quantity):
        self.update_calls += 1
        if not self.lot_ids or lot.id in self.lot_ids:
            return VersionMismatch(lot_id=lot.id, expected_version=lot.version)
        return self.inner.conditional_update(lot, new_quantity)

    def __getattr__(self, name):
        return getattr(self.inner, name)


class BrokenStorage:
    """LotStore wrapper whose conditional writes fail at the database driver."""

    def __init__(self, inner):
        self.inner = inner
        self.update_calls = 0

    def conditional_update(self, lot, new_quantity):
        self.update_calls += 1
        raise OperationalError("UPDATE stock_lots", {}, Exception("database is locked"))

    def __getattr__(self, name):
        return getattr(self.inner, name)


class StaleFirstRead:
    """LotStore wrapper that serves a previously read (now stale) lot list once."""

    def __init__(self, inner, stale_lots):
        self.inner = inner
        self.stale_lots = stale_lots
        self.list_calls = 0

    def list_lots(self, product_id, store_id):
        self.list_calls += 1
        if self.list_calls == 1:
            return self.stale_lots
        return self.inner.list_lots(product_id, store_id)

    def __getattr__(self, name):
        return getattr(self.inner, name)


# =============================================================================
# FIFO DECREMENT
# =============================================================================

def test_decrease_spans_lots_oldest_expiration_first(store, product, make_lot, lot_state, audit_rows, sleeps):
    lot_b = make_lot(product, 10, expiration_date=day(5))
    lot_a = make_lot(product, 10, expiration_date=day(1))

    with UnitOfWork() as uow:
        mutated = stock_ledger_service.decrease_for_product(uow, product.id, store.id, 12, sleep=sleeps.append)

    assert [lot.id for lot in mutated] == [lot_a, lot_b]
    assert lot_state(lot_a).quantity == 0
    assert lot_state(lot_b).quantity == 8
    assert lot_state(lot_a).version == 2
    assert lot_state(lot_b).version == 2
    assert sleeps == []

    rows = audit_rows(StockAuditLog.OPERATION_UPDATE)
    assert len(rows) == 2
    assert [(r.lot_id, r.old_quantity, r.new_quantity) for r in rows] == [(lot_a, 10, 0), (lot_b, 10, 8)]
    assert [(r.old_version, r.new_version) for r in rows] == [(1, 2), (1, 2)]


def test_lots_without_expiration_are_consumed_last(store, product, make_lot, lot_state):
    no_expiry = make_lot(product, 5, expiration_date=None, purchase_date=day(1))
    later = make_lot(product, 5, expiration_date=day(20))
    sooner = make_lot(product, 5, expiration_date=day(10))

    with UnitOfWork() as uow:
        assert [lot.id for lot in uow.lots.list_lots(product.id, store.id)] == [sooner, later, no_expiry]
        stock_ledger_service.decrease_for_product(uow, product.id, store.id, 7)

    assert lot_state(sooner).quantity == 0
    assert lot_state(later).quantity == 3
    assert lot_state(no_expiry).quantity == 5
    assert lot_state(no_expiry).version == 1


def test_equal_expiration_falls_back_to_purchase_date(store, product, make_lot, lot_state):
    bought_later = make_lot(product, 4, expiration_date=day(3), purchase_date=day(2))
    bought_first = make_lot(product, 4, expiration_date=day(3), purchase_date=day(1))

    with UnitOfWork() as uow:
        stock_ledger_service.decrease_for_product(uow, product.id, store.id, 5)

    assert lot_state(bought_first).quantity == 0
    assert lot_state(bought_later).quantity == 3


def test_empty_lots_are_skipped_without_a_write(store, product, make_lot, lot_state, audit_rows):
    empty = make_lot(product, 0, expiration_date=day(1))
    full = make_lot(product, 6, expiration_date=day(2))

    with UnitOfWork() as uow:
        stock_ledger_service.decrease_for_product(uow, product.id, store.id, 2)

    assert lot_state(empty).version == 1
    assert lot_state(full).quantity == 4
    assert [r.lot_id for r in audit_rows()] == [full]


def test_insufficient_stock_changes_nothing(store, product, make_lot, lot_state, audit_rows, sleeps):
    lot_a = make_lot(product, 3, expiration_date=day(1))
    lot_b = make_lot(product, 2, expiration_date=day(2))

    with pytest.raises(InsufficientStockError) as exc_info:
        with UnitOfWork() as uow:
            stock_ledger_service.decrease_for_product(uow, product.id, store.id, 6, sleep=sleeps.append)

    assert exc_info.value.requested == 6
    assert exc_info.value.available == 5
    assert exc_info.value.missing == 1
    assert (lot_state(lot_a).quantity, lot_state(lot_a).version) == (3, 1)
    assert (lot_state(lot_b).quantity, lot_state(lot_b).version) == (2, 1)
    assert audit_rows() == []
    # insufficient stock is final: no retry, no backoff
    assert sleeps == []


def test_no_lots_raises_lot_not_found(store, product):
    with pytest.raises(LotNotFoundError) as exc_info:
        with UnitOfWork() as uow:
            stock_ledger_service.decrease_for_product(uow, product.id, store.id, 1)

    assert isinstance(exc_info.value, InsufficientStockError)
    assert exc_info.value.available == 0
    assert exc_info.value.to_details()["reason"] == "no_lots"


def test_lots_of_other_store_are_not_touched(store, other_store, product, make_lot, db_session, lot_state):
    from stockpos.models import Product

    foreign_product = Product(store_id=other_store.id, sku="MILK-1L", name="Milk 1L", price_cents=150)
    db_session.add(foreign_product)
    db_session.commit()
    foreign_lot = make_lot(foreign_product, 50, expiration_date=day(1))
    make_lot(product, 2, expiration_date=day(9))

    with pytest.raises(InsufficientStockError):
        with UnitOfWork() as uow:
            stock_ledger_service.decrease_for_product(uow, product.id, store.id, 3)

    assert lot_state(foreign_lot).quantity == 50


@pytest.mark.parametrize("quantity", [0, -1, 1.5, True])
def test_quantity_must_be_positive_integer(store, product, make_lot, quantity):
    make_lot(product, 5, expiration_date=day(1))

    with pytest.raises(ValueError):
        stock_ledger_service.decrease_for_product(UnitOfWork(), product.id, store.id, quantity)


def test_total_quantity_sums_all_lots(store, product, make_lot):
    uow = UnitOfWork()
    assert stock_ledger_service.get_total_quantity(uow, product.id, store.id) == 0

    make_lot(product, 4, expiration_date=day(1))
    make_lot(product, 0, expiration_date=day(2))
    make_lot(product, 7)

    assert stock_ledger_service.get_total_quantity(uow, product.id, store.id) == 11
    assert stock_ledger_service.validate_availability(uow, product.id, store.id, 11) is True
    assert stock_ledger_service.validate_availability(uow, product.id, store.id, 12) is False


def test_conservation_over_a_sequence_of_writes(store, product, make_lot, lot_state):
    lots = [make_lot(product, 10, expiration_date=day(n)) for n in (1, 2, 3)]

    with UnitOfWork() as uow:
        stock_ledger_service.decrease_for_product(uow, product.id, store.id, 4)
        stock_ledger_service.increase(uow, lots[2], 6)
        stock_ledger_service.decrease_for_product(uow, product.id, store.id, 13)

    with pytest.raises(InsufficientStockError):
        with UnitOfWork() as uow:
            stock_ledger_service.decrease_for_product(uow, product.id, store.id, 100)

    total = sum(lot_state(lot_id).quantity for lot_id in lots)
    assert total == 30 + 6 - 4 - 13
    assert all(lot_state(lot_id).quantity >= 0 for lot_id in lots)


# =============================================================================
# OPTIMISTIC CONCURRENCY
# =============================================================================

def test_conflict_on_second_lot_leaves_every_lot_untouched(store, product, make_lot, lot_state, audit_rows, sleeps, policy):
    lot_a = make_lot(product, 5, expiration_date=day(1))
    lot_b = make_lot(product, 5, expiration_date=day(5))

    with pytest.raises(StockConflictError) as exc_info:
        with UnitOfWork() as uow:
            uow.lots = ConflictOn(uow.lots, lot_b)
            stock_ledger_service.decrease_for_product(
                uow, product.id, store.id, 8, policy=policy, sleep=sleeps.append
            )

    assert exc_info.value.lot_id == lot_b
    assert (lot_state(lot_a).quantity, lot_state(lot_a).version) == (5, 1)
    assert (lot_state(lot_b).quantity, lot_state(lot_b).version) == (5, 1)
    assert audit_rows() == []


def test_retry_exhaustion_makes_exactly_three_attempts(store, product, make_lot, lot_state, sleeps, policy):
    lot_id = make_lot(product, 10, expiration_date=day(1))

    uow = UnitOfWork()
    conflicting = ConflictOn(uow.lots)
    uow.lots = conflicting

    with pytest.raises(StockConflictError) as exc_info:
        stock_ledger_service.decrease_for_product(uow, product.id, store.id, 1, policy=policy, sleep=sleeps.append)
    uow.rollback()

    assert conflicting.update_calls == 3
    assert exc_info.value.attempts == 3
    assert sleeps == [0.1, 0.2]
    assert lot_state(lot_id).quantity == 10


def test_storage_failure_propagates_without_retry(store, product, make_lot, lot_state, audit_rows, sleeps, policy):
    lot_id = make_lot(product, 10, expiration_date=day(1))

    uow = UnitOfWork()
    failing = BrokenStorage(uow.lots)
    uow.lots = failing

    with pytest.raises(OperationalError):
        stock_ledger_service.decrease_for_product(uow, product.id, store.id, 1, policy=policy, sleep=sleeps.append)
    uow.rollback()

    assert failing.update_calls == 1
    assert sleeps == []
    assert lot_state(lot_id).quantity == 10
    assert audit_rows() == []


def test_stale_read_converges_after_one_retry(store, product, make_lot, lot_state, audit_rows, sleeps, policy):
    """Register A reads, register B commits, A's write is rejected and retried on fresh data."""
    lot_id = make_lot(product, 10, expiration_date=day(1))

    stale = UnitOfWork().lots.list_lots(product.id, store.id)

    with UnitOfWork() as register_b:
        stock_ledger_service.decrease_for_product(register_b, product.id, store.id, 3)

    with UnitOfWork() as register_a:
        register_a.lots = StaleFirstRead(register_a.lots, stale)
        mutated = stock_ledger_service.decrease_for_product(
            register_a, product.id, store.id, 2, policy=policy, sleep=sleeps.append
        )

    assert register_a.lots.list_calls == 2
    assert sleeps == [0.1]
    assert mutated[0].quantity == 5
    assert (lot_state(lot_id).quantity, lot_state(lot_id).version) == (5, 3)
    assert [(r.old_quantity, r.new_quantity) for r in audit_rows()] == [(10, 7), (7, 5)]


def test_retry_policy_backoff_is_capped():
    policy = RetryPolicy(attempts=6, backoff_base=0.1, multiplier=2.0, max_backoff=1.0)
    assert [policy.delay_for(n) for n in range(5)] == [0.1, 0.2, 0.4, 0.8, 1.0]

    with pytest.raises(ValueError):
        RetryPolicy(attempts=0)


def test_retry_policy_reads_app_config(app):
    app.config["STOCK_RETRY_ATTEMPTS"] = 5
    app.config["STOCK_RETRY_BACKOFF_BASE"] = 0.05

    policy = RetryPolicy.from_config(app.config)

    assert policy.attempts == 5
    assert policy.backoff_base == 0.05
    assert policy.max_backoff == 1.0


# =============================================================================
# SALE / INCREASE / RESERVE
# =============================================================================

def test_decrease_for_sale_failure_on_later_line_rolls_back_earlier_lines(
    db_session, store, product, second_product, make_lot, lot_state
):
    from stockpos.models import Sale, SaleLine

    milk_lot = make_lot(product, 10, expiration_date=day(1))
    bread_lot = make_lot(second_product, 1, expiration_date=day(1))

    sale = Sale(store_id=store.id, status=Sale.STATUS_DRAFT, total_cents=0)
    sale.lines.append(SaleLine(product_id=product.id, quantity=4, unit_price_cents=150, line_total_cents=600))
    sale.lines.append(SaleLine(product_id=second_product.id, quantity=2, unit_price_cents=300, line_total_cents=600))
    db_session.add(sale)
    db_session.commit()

    with pytest.raises(InsufficientStockError) as exc_info:
        with UnitOfWork() as uow:
            stock_ledger_service.decrease_for_sale(uow, sale)

    assert exc_info.value.product_id == second_product.id
    assert lot_state(milk_lot).quantity == 10
    assert lot_state(bread_lot).quantity == 1


def test_validate_sale_aggregates_lines_of_same_product(db_session, store, product, make_lot):
    from stockpos.models import Sale, SaleLine

    make_lot(product, 5, expiration_date=day(1))
    sale = Sale(store_id=store.id, status=Sale.STATUS_DRAFT, total_cents=0)
    sale.lines.append(SaleLine(product_id=product.id, quantity=3, unit_price_cents=150, line_total_cents=450))
    sale.lines.append(SaleLine(product_id=product.id, quantity=3, unit_price_cents=150, line_total_cents=450))
    db_session.add(sale)
    db_session.commit()

    with pytest.raises(InsufficientStockError) as exc_info:
        stock_ledger_service.validate_sale(UnitOfWork(), sale)

    assert (exc_info.value.requested, exc_info.value.available) == (6, 5)


def test_increase_bumps_quantity_and_version(store, product, make_lot, lot_state, audit_rows):
    lot_id = make_lot(product, 2, expiration_date=day(1))

    with UnitOfWork() as uow:
        lot = stock_ledger_service.increase(uow, lot_id, 5)

    assert (lot.quantity, lot.version) == (7, 2)
    assert (lot_state(lot_id).quantity, lot_state(lot_id).version) == (7, 2)
    rows = audit_rows()
    assert [(r.operation_type, r.old_quantity, r.new_quantity) for r in rows] == [("UPDATE", 2, 7)]


def test_increase_unknown_lot(app):
    with pytest.raises(LotMissingError):
        with UnitOfWork() as uow:
            stock_ledger_service.increase(uow, 999, 1)


def test_reserve_returns_bool(store, product, make_lot, lot_state, sleeps, policy):
    lot_id = make_lot(product, 4, expiration_date=day(1))

    with UnitOfWork() as uow:
        assert stock_ledger_service.reserve(uow, product.id, store.id, 3) is True
        assert stock_ledger_service.reserve(uow, product.id, store.id, 3) is False

    assert lot_state(lot_id).quantity == 1

    with UnitOfWork() as uow:
        uow.lots = ConflictOn(uow.lots)
        assert stock_ledger_service.reserve(uow, product.id, store.id, 1, policy=policy, sleep=sleeps.append) is False

    assert lot_state(lot_id).quantity == 1
