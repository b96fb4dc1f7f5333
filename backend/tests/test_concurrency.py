"""
Concurrent sale posting.

The in-memory test database shares one connection, so these tests run on a
temporary SQLite file where every thread gets its own connection and the
writers really contend for the lock.
"""

import threading
from decimal import Decimal

import pytest

from stockpos import create_app
from stockpos.config import TestConfig
from stockpos.errors import InsufficientStock
from stockpos.extensions import db
from stockpos.models import CaisseSession, Sale, StockMovement
from stockpos.services import balance_service, caisse_service, catalog_service, sales_service
from stockpos.services.concurrency import run_with_retry

from helpers import CASHIER_ID

WORKERS = 8
ATTEMPTS_PER_WORKER = 5
STOCK = 20


@pytest.fixture
def file_app(tmp_path):
    """App bound to a fresh SQLite file instead of the shared in-memory database."""
    database = tmp_path / "ledger.sqlite3"

    class FileConfig(TestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{database}"
        SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": {"timeout": 30}}

    app = create_app(FileConfig)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.engine.dispose()


def test_concurrent_sales_never_oversell(file_app):
    product = catalog_service.create_product({
        "sku": "HOT-1",
        "name": "Hot item",
        "selling_price": "1.00",
        "opening_stock": STOCK,
    })
    session = caisse_service.open_session(CASHIER_ID, "10.00")
    product_id, session_id = product.id, session.id

    outcomes = []
    failures = []
    guard = threading.Lock()
    start = threading.Barrier(WORKERS)

    def worker():
        with file_app.app_context():
            start.wait()
            for _ in range(ATTEMPTS_PER_WORKER):
                try:
                    run_with_retry(lambda: sales_service.post_sale(
                        [{"product_id": product_id, "quantity": 1}],
                        "cash",
                        cashier_id=CASHIER_ID,
                        caisse_session_id=session_id,
                    ))
                    outcome = "ok"
                except InsufficientStock:
                    outcome = "short"
                except Exception as exc:
                    with guard:
                        failures.append(repr(exc))
                    continue
                with guard:
                    outcomes.append(outcome)

    threads = [threading.Thread(target=worker) for _ in range(WORKERS)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert failures == []
    assert outcomes.count("ok") == STOCK
    assert outcomes.count("short") == WORKERS * ATTEMPTS_PER_WORKER - STOCK

    db.session.expire_all()
    report = balance_service.verify_balance(product_id)
    assert report["consistent"], report
    assert report["stock_quantity"] == 0

    outs = db.session.query(StockMovement).filter_by(product_id=product_id, type="out").count()
    assert outs == STOCK
    assert db.session.query(Sale).count() == STOCK
    assert db.session.get(CaisseSession, session_id).current_amount == Decimal("30.00")
