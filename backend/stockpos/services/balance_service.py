# Overview: Read-only balance projection over the stock movement log.

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterator

from flask import current_app
from sqlalchemy import case, func

from ..extensions import db
from ..errors import ProductNotFound, ValidationError
from ..models import Product, StockMovement
from ..models.inventory import MOVEMENT_TYPES
from ..money import round_money, to_json_amount


@dataclass
class HistoryPage:
    """One page of movement history, most recent first."""
    items: list[StockMovement]
    next_cursor: int | None
    limit: int
    filters: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "movements": [m.to_dict() for m in self.items],
            "next_cursor": self.next_cursor,
            "limit": self.limit,
            "filters": self.filters,
        }


def _ensure_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise ProductNotFound("Product not found", details={"product_id": product_id})
    return product


def current_balance(product_id: int) -> int:
    """Stock on hand from the denormalized balance."""
    return _ensure_product(product_id).stock_quantity


def folded_balance(product_id: int) -> int:
    """Stock on hand recomputed by folding every movement of the product."""
    signed = case(
        (StockMovement.direction == "in", StockMovement.quantity),
        else_=-StockMovement.quantity,
    )
    total = db.session.query(func.coalesce(func.sum(signed), 0)).filter(
        StockMovement.product_id == product_id,
    ).scalar()
    return int(total or 0)


def _page_limit(limit) -> int:
    default = current_app.config.get("HISTORY_PAGE_SIZE", 50)
    maximum = current_app.config.get("HISTORY_MAX_PAGE_SIZE", 200)
    if limit is None:
        return default
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
        raise ValidationError("limit must be a positive integer", details={"field": "limit", "value": limit})
    return min(limit, maximum)


def history(
    product_id: int,
    *,
    cursor: int | None = None,
    limit: int | None = None,
    movement_type: str | None = None,
    reference: str | None = None,
) -> HistoryPage:
    """
    Movement history for a product, most recent first.

    cursor is the next_cursor of the previous page (the id of its last row);
    pages are stable because ids only grow and rows never change.
    """
    _ensure_product(product_id)
    return _movement_page(
        product_id=product_id,
        cursor=cursor,
        limit=limit,
        movement_type=movement_type,
        reference=reference,
    )


def list_movements(
    *,
    product_id: int | None = None,
    cursor: int | None = None,
    limit: int | None = None,
    movement_type: str | None = None,
    reference: str | None = None,
) -> HistoryPage:
    """Movements across all products, most recent first, same paging as history()."""
    return _movement_page(
        product_id=product_id,
        cursor=cursor,
        limit=limit,
        movement_type=movement_type,
        reference=reference,
    )


def _movement_page(*, product_id, cursor, limit, movement_type, reference) -> HistoryPage:
    page_size = _page_limit(limit)

    if movement_type is not None and movement_type not in MOVEMENT_TYPES:
        raise ValidationError(
            f"type must be one of {', '.join(MOVEMENT_TYPES)}",
            details={"field": "type", "value": movement_type},
        )

    q = db.session.query(StockMovement)
    if product_id is not None:
        q = q.filter(StockMovement.product_id == product_id)
    if movement_type is not None:
        q = q.filter(StockMovement.type == movement_type)
    if reference is not None:
        q = q.filter(StockMovement.reference == reference)
    if cursor is not None:
        q = q.filter(StockMovement.id < cursor)

    # One extra row tells us whether another page exists
    rows = q.order_by(StockMovement.id.desc()).limit(page_size + 1).all()
    has_more = len(rows) > page_size
    rows = rows[:page_size]

    filters = {
        k: v
        for k, v in (("product_id", product_id), ("type", movement_type), ("reference", reference))
        if v is not None
    }
    return HistoryPage(
        items=rows,
        next_cursor=rows[-1].id if has_more and rows else None,
        limit=page_size,
        filters=filters,
    )


def iter_history(product_id: int, **filters) -> Iterator[StockMovement]:
    """Walk the whole history page by page."""
    cursor = None
    while True:
        page = history(product_id, cursor=cursor, **filters)
        yield from page.items
        if page.next_cursor is None:
            return
        cursor = page.next_cursor


def verify_balance(product_id: int) -> dict:
    """
    Compare the denormalized balance with the folded log and check the
    previous/new chain is unbroken.
    """
    product = _ensure_product(product_id)
    folded = folded_balance(product_id)

    broken_links = []
    expected_previous = 0
    movements = (
        db.session.query(StockMovement)
        .filter(StockMovement.product_id == product_id)
        .order_by(StockMovement.id.asc())
        .all()
    )
    for movement in movements:
        if movement.previous_balance != expected_previous:
            broken_links.append({
                "movement_id": movement.id,
                "expected_previous": expected_previous,
                "previous_balance": movement.previous_balance,
            })
        expected_previous = movement.new_balance

    last_new = movements[-1].new_balance if movements else 0
    return {
        "product_id": product_id,
        "stock_quantity": product.stock_quantity,
        "folded_balance": folded,
        "last_new_balance": last_new,
        "broken_links": broken_links,
        "consistent": product.stock_quantity == folded == last_new and not broken_links,
    }


def verify_all_balances() -> list[dict]:
    """verify_balance for every product, inactive ones included."""
    ids = [row.id for row in db.session.query(Product.id).order_by(Product.id).all()]
    return [verify_balance(product_id) for product_id in ids]


def low_stock_products() -> list[Product]:
    """Active products at or under their minimum level, largest shortage first."""
    return (
        db.session.query(Product)
        .filter(
            Product.is_active.is_(True),
            Product.stock_quantity <= Product.min_stock_level,
        )
        .order_by((Product.min_stock_level - Product.stock_quantity).desc(), Product.name)
        .all()
    )


def inventory_overview(low_stock_limit: int = 10) -> dict:
    """Stock totals across active products plus the most urgent low-stock rows."""
    active = Product.is_active.is_(True)
    row = db.session.query(
        func.count(Product.id),
        func.coalesce(func.sum(case((Product.stock_quantity <= Product.min_stock_level, 1), else_=0)), 0),
        func.coalesce(func.sum(case((Product.stock_quantity == 0, 1), else_=0)), 0),
        func.coalesce(func.sum(Product.stock_quantity * Product.cost_price), 0),
    ).filter(active).one()

    total_products, low_stock, out_of_stock, value = row
    return {
        "total_products": int(total_products),
        "low_stock_products": int(low_stock),
        "out_of_stock_products": int(out_of_stock),
        "total_inventory_value": to_json_amount(round_money(Decimal(str(value)))),
        "low_stock": [p.to_dict() for p in low_stock_products()[:low_stock_limit]],
    }
