"""
Pytest fixtures for stockpos backend tests.

Provides a fresh in-memory database per test, a test client, and
store/product/lot factories. Lots are inserted directly (no audit INSERT
row) so audit assertions only see the writes a test performs.
"""

import pytest

from stockpos import create_app
from stockpos.extensions import db
from stockpos.models import Product, StockAuditLog, StockLot, Store
from stockpos.services.concurrency import RetryPolicy
from stockpos.services.lot_store import LotStore
from stockpos.time_utils import utcnow


@pytest.fixture(scope='function')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    return db.session


@pytest.fixture(scope='function')
def store(db_session):
    store = Store(name="Store A", code="A1")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def other_store(db_session):
    store = Store(name="Store B", code="B1")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def product(db_session, store):
    product = Product(store_id=store.id, sku="MILK-1L", name="Milk 1L", price_cents=150, is_active=True)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def second_product(db_session, store):
    product = Product(store_id=store.id, sku="BREAD", name="Bread", price_cents=300, is_active=True)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def make_lot(db_session):
    """Factory: make_lot(product, quantity, expiration_date=None, **extra) -> lot id."""
    def _make(product, quantity, expiration_date=None, **extra):
        now = utcnow()
        lot = StockLot(
            product_id=product.id,
            store_id=product.store_id,
            quantity=quantity,
            version=1,
            expiration_date=expiration_date,
            purchase_date=extra.pop("purchase_date", now),
            last_modified=now,
            **extra,
        )
        db_session.add(lot)
        db_session.commit()
        return lot.id

    return _make


@pytest.fixture(scope='function')
def lot_state(db_session):
    """Read a lot's committed-or-pending state through the version-aware store."""
    def _read(lot_id):
        return LotStore(db_session).get_lot(lot_id)

    return _read


@pytest.fixture(scope='function')
def audit_rows(db_session):
    def _rows(operation_type=None):
        query = db_session.query(StockAuditLog)
        if operation_type:
            query = query.filter_by(operation_type=operation_type)
        return query.order_by(StockAuditLog.id).all()

    return _rows


@pytest.fixture(scope='function')
def sleeps():
    """Collects retry backoff delays instead of sleeping."""
    return []


@pytest.fixture(scope='function')
def policy():
    return RetryPolicy(attempts=3, backoff_base=0.1, multiplier=2.0, max_backoff=1.0)
