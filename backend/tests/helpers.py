"""Shared helpers for the ledger tests."""

from decimal import Decimal

from stockpos.extensions import db
from stockpos.models import StockMovement, Sale, SaleItem, CashMovement

CASHIER_ID = 7
OTHER_USER_ID = 8


def user_headers(user_id: int = CASHIER_ID) -> dict:
    """Helper to create identity headers."""
    return {'X-User-Id': str(user_id)}


def row_counts() -> dict:
    """Snapshot of the ledger tables used to prove a failed call wrote nothing."""
    return {
        "stock_movements": db.session.query(StockMovement).count(),
        "sales": db.session.query(Sale).count(),
        "sale_items": db.session.query(SaleItem).count(),
        "cash_movements": db.session.query(CashMovement).count(),
    }


def money(value) -> Decimal:
    return Decimal(value).quantize(Decimal("0.01"))


def fresh(model, pk):
    """Reload a row from the database, bypassing the identity map."""
    db.session.expire_all()
    return db.session.get(model, pk)
