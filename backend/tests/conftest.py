"""
Pytest fixtures for the ledger backend tests.

Provides the app on an in-memory database, per-test clean tables, catalogue
and caisse factories, and a test client.
"""

import pytest
from stockpos import create_app
from stockpos.config import TestConfig
from stockpos.extensions import db
from stockpos.services import caisse_service, catalog_service

from helpers import CASHIER_ID


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema. Core deletes do not go through
        # the ORM immutability listeners.
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: product whose opening stock is recorded as a movement."""
    counter = {"n": 0}

    def _make(stock=10, price="5.00", sku=None, min_stock_level=0, **extra):
        counter["n"] += 1
        payload = {
            "sku": sku or f"SKU-{counter['n']:03d}",
            "name": extra.pop("name", f"Product {counter['n']}"),
            "selling_price": price,
            "cost_price": extra.pop("cost_price", "1.00"),
            "min_stock_level": min_stock_level,
            "opening_stock": stock,
        }
        payload.update(extra)
        return catalog_service.create_product(payload)

    return _make


@pytest.fixture(scope='function')
def product_x(make_product):
    """Product X, stock 10, priced 10.00."""
    return make_product(stock=10, price="10.00", sku="X")


@pytest.fixture(scope='function')
def open_session(db_session):
    """Factory: open a caisse session for a user."""
    def _open(user_id=CASHIER_ID, opening="100.00"):
        return caisse_service.open_session(user_id, opening)

    return _open


@pytest.fixture(scope='function')
def customer(db_session):
    return catalog_service.create_customer({"first_name": "Awa", "last_name": "Diallo"})
