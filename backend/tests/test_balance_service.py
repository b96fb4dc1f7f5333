"""Balance projection: current balance, folded history, pagination, drift detection."""

import pytest
from sqlalchemy import update

from stockpos.errors import ProductNotFound, ValidationError
from stockpos.models import Product
from stockpos.services import balance_service, catalog_service, movement_service


def test_current_balance_equals_fold_of_history(db_session, make_product):
    product = make_product(stock=10)
    movement_service.stock_in(product.id, 7)
    movement_service.stock_out(product.id, 12)
    movement_service.record_movement(product.id, 3, "adjustment", direction="in")

    folded = sum(m.signed_quantity for m in balance_service.iter_history(product.id))

    assert balance_service.current_balance(product.id) == 8
    assert folded == 8
    assert balance_service.folded_balance(product.id) == 8


def test_history_is_most_recent_first(db_session, make_product):
    product = make_product(stock=1)
    first = movement_service.stock_in(product.id, 2)
    second = movement_service.stock_out(product.id, 1)

    page = balance_service.history(product.id)

    assert [m.id for m in page.items][:2] == [second.id, first.id]
    assert page.next_cursor is None


def test_history_pages_with_cursor(db_session, make_product):
    product = make_product(stock=0)
    ids = [movement_service.stock_in(product.id, n).id for n in range(1, 6)]

    seen = []
    page = balance_service.history(product.id, limit=2)
    seen.extend(m.id for m in page.items)
    while page.next_cursor is not None:
        page = balance_service.history(product.id, limit=2, cursor=page.next_cursor)
        seen.extend(m.id for m in page.items)

    assert seen == list(reversed(ids))


def test_history_restarts_from_cursor_after_new_movements(db_session, make_product):
    product = make_product(stock=0)
    ids = [movement_service.stock_in(product.id, 1).id for _ in range(3)]

    page = balance_service.history(product.id, limit=2)
    movement_service.stock_in(product.id, 1)
    rest = balance_service.history(product.id, limit=2, cursor=page.next_cursor)

    assert [m.id for m in rest.items] == [ids[0]]


def test_history_filters_by_type(db_session, make_product):
    product = make_product(stock=10)
    movement_service.stock_out(product.id, 2)
    movement_service.stock_out(product.id, 1)

    page = balance_service.history(product.id, movement_type="out")

    assert len(page.items) == 2
    assert all(m.type == "out" for m in page.items)
    assert page.filters == {"product_id": product.id, "type": "out"}


def test_history_rejects_unknown_type(db_session, make_product):
    product = make_product(stock=1)

    with pytest.raises(ValidationError):
        balance_service.history(product.id, movement_type="transfer")


@pytest.mark.parametrize("limit", [0, -1, True])
def test_history_rejects_bad_limit(db_session, make_product, limit):
    product = make_product(stock=1)

    with pytest.raises(ValidationError):
        balance_service.history(product.id, limit=limit)


def test_history_limit_is_capped(db_session, make_product):
    product = make_product(stock=1)

    assert balance_service.history(product.id, limit=10_000).limit == 200


def test_unknown_product_has_no_balance(db_session):
    with pytest.raises(ProductNotFound):
        balance_service.current_balance(424242)
    with pytest.raises(ProductNotFound):
        balance_service.history(424242)


def test_verify_detects_drift(db_session, make_product):
    product = make_product(stock=5)
    assert balance_service.verify_balance(product.id)["consistent"] is True

    # Bypass the movement log entirely
    db_session.execute(update(Product.__table__).where(Product.id == product.id).values(stock_quantity=9))
    db_session.commit()
    db_session.expire_all()

    report = balance_service.verify_balance(product.id)
    assert report["consistent"] is False
    assert report["stock_quantity"] == 9
    assert report["folded_balance"] == 5


def test_verify_all_balances_covers_every_product(db_session, make_product):
    make_product(stock=1)
    make_product(stock=2)

    reports = balance_service.verify_all_balances()

    assert len(reports) == 2
    assert all(r["consistent"] for r in reports)


def test_low_stock_products(db_session, make_product):
    low = make_product(stock=2, min_stock_level=5, name="Low")
    make_product(stock=20, min_stock_level=5, name="Plenty")
    lower = make_product(stock=0, min_stock_level=5, name="Empty")

    result = balance_service.low_stock_products()

    assert [p.id for p in result] == [lower.id, low.id]


def test_list_movements_spans_products(db_session, make_product):
    first = make_product(stock=3)
    second = make_product(stock=4)
    movement_service.stock_out(first.id, 1)

    page = balance_service.list_movements(limit=2)
    rest = balance_service.list_movements(limit=2, cursor=page.next_cursor)

    assert [(m.product_id, m.type) for m in page.items] == [(first.id, "out"), (second.id, "in")]
    assert [m.product_id for m in rest.items] == [first.id]
    assert rest.next_cursor is None
    assert [m.type for m in balance_service.list_movements(product_id=second.id).items] == ["in"]


def test_inventory_overview_counts_active_products(db_session, make_product):
    make_product(stock=0, min_stock_level=2, cost_price="3.00")
    make_product(stock=5, min_stock_level=1, cost_price="2.50")
    retired = make_product(stock=9, cost_price="1.00")
    catalog_service.deactivate_product(retired.id)

    overview = balance_service.inventory_overview()

    assert overview["total_products"] == 2
    assert overview["low_stock_products"] == 1
    assert overview["out_of_stock_products"] == 1
    assert overview["total_inventory_value"] == "12.50"
    assert len(overview["low_stock"]) == 1
