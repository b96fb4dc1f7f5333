"""Stock movement log: balance arithmetic, refusal of negative stock, immutability."""

import pytest

from stockpos.errors import (
    ImmutabilityViolation,
    InsufficientStock,
    ProductNotFound,
    ValidationError,
)
from stockpos.models import Product, StockMovement
from stockpos.services import balance_service, catalog_service, movement_service

from helpers import CASHIER_ID, fresh, row_counts


def test_opening_stock_is_recorded_as_movement(db_session, make_product):
    product = make_product(stock=12)

    movements = db_session.query(StockMovement).filter_by(product_id=product.id).all()
    assert len(movements) == 1
    assert movements[0].type == "in"
    assert movements[0].previous_balance == 0
    assert movements[0].new_balance == 12
    assert movements[0].reason == "Opening balance"
    assert product.stock_quantity == 12


def test_product_without_opening_stock_has_no_movement(db_session, make_product):
    product = make_product(stock=0)

    assert db_session.query(StockMovement).filter_by(product_id=product.id).count() == 0
    assert product.stock_quantity == 0


def test_stock_in_increments_balance(db_session, make_product):
    product = make_product(stock=10)

    movement = movement_service.record_movement(
        product.id, 5, "in", reference="PO-1", reason="Delivery", user_id=CASHIER_ID, cost_per_unit="2.40",
    )

    assert movement.direction == "in"
    assert movement.previous_balance == 10
    assert movement.new_balance == 15
    assert str(movement.cost_per_unit) == "2.40"
    assert fresh(Product, product.id).stock_quantity == 15


def test_stock_out_decrements_balance(db_session, make_product):
    product = make_product(stock=10)

    movement = movement_service.stock_out(product.id, 4, reason="Breakage")

    assert movement.type == "out"
    assert movement.previous_balance == 10
    assert movement.new_balance == 6
    assert fresh(Product, product.id).stock_quantity == 6


def test_stock_out_to_exactly_zero_is_allowed(db_session, make_product):
    product = make_product(stock=3)

    movement = movement_service.stock_out(product.id, 3)

    assert movement.new_balance == 0
    assert fresh(Product, product.id).stock_quantity == 0


def test_out_beyond_stock_is_refused_and_writes_nothing(db_session, make_product):
    product = make_product(stock=2)
    before = row_counts()

    with pytest.raises(InsufficientStock) as excinfo:
        movement_service.stock_out(product.id, 5)

    assert excinfo.value.details["available"] == 2
    assert excinfo.value.details["requested"] == 5
    assert excinfo.value.details["product_id"] == product.id
    assert row_counts() == before
    assert fresh(Product, product.id).stock_quantity == 2


def test_adjustment_requires_direction(db_session, make_product):
    product = make_product(stock=5)

    with pytest.raises(ValidationError):
        movement_service.record_movement(product.id, 1, "adjustment")


def test_adjustment_accepts_increase_and_decrease(db_session, make_product):
    product = make_product(stock=5)

    up = movement_service.record_movement(product.id, 2, "adjustment", direction="increase")
    down = movement_service.record_movement(product.id, 4, "adjustment", direction="decrease")

    assert (up.direction, up.new_balance) == ("in", 7)
    assert (down.direction, down.new_balance) == ("out", 3)
    assert down.quantity == 4


def test_adjustment_cannot_go_negative(db_session, make_product):
    product = make_product(stock=1)

    with pytest.raises(InsufficientStock):
        movement_service.record_movement(product.id, 2, "adjustment", direction="out")


def test_direction_conflicting_with_type_is_rejected(db_session, make_product):
    product = make_product(stock=5)

    with pytest.raises(ValidationError):
        movement_service.record_movement(product.id, 1, "in", direction="out")


@pytest.mark.parametrize("quantity", [0, -3, 1.5, True, None, "abc"])
def test_invalid_quantity_is_rejected(db_session, make_product, quantity):
    product = make_product(stock=5)
    before = row_counts()

    with pytest.raises(ValidationError):
        movement_service.record_movement(product.id, quantity, "in")

    assert row_counts() == before


def test_unknown_movement_type_is_rejected(db_session, make_product):
    product = make_product(stock=5)

    with pytest.raises(ValidationError):
        movement_service.record_movement(product.id, 1, "transfer")


def test_unknown_product_raises_not_found(db_session):
    with pytest.raises(ProductNotFound) as excinfo:
        movement_service.stock_in(9999, 1)

    assert excinfo.value.details == {"product_id": 9999}


def test_inactive_product_refuses_movements(db_session, make_product):
    product = make_product(stock=5)
    catalog_service.deactivate_product(product.id)

    with pytest.raises(ProductNotFound):
        movement_service.stock_in(product.id, 1)


def test_adjust_to_level_records_difference(db_session, make_product):
    product = make_product(stock=10)

    movement = movement_service.adjust_to_level(product.id, 7, reason="Count")

    assert movement.type == "adjustment"
    assert movement.direction == "out"
    assert movement.quantity == 3
    assert fresh(Product, product.id).stock_quantity == 7


def test_adjust_to_same_level_writes_nothing(db_session, make_product):
    product = make_product(stock=10)
    before = row_counts()

    assert movement_service.adjust_to_level(product.id, 10) is None
    assert row_counts() == before


def test_adjust_to_negative_level_is_rejected(db_session, make_product):
    product = make_product(stock=10)

    with pytest.raises(ValidationError):
        movement_service.adjust_to_level(product.id, -1)


def test_movements_chain_previous_to_new(db_session, make_product):
    product = make_product(stock=4)
    movement_service.stock_in(product.id, 6)
    movement_service.stock_out(product.id, 3)
    movement_service.record_movement(product.id, 2, "adjustment", direction="in")
    movement_service.stock_out(product.id, 9)

    movements = (
        db_session.query(StockMovement)
        .filter_by(product_id=product.id)
        .order_by(StockMovement.id)
        .all()
    )
    for prior, current in zip(movements, movements[1:]):
        assert current.previous_balance == prior.new_balance
    assert movements[-1].new_balance == 0
    assert balance_service.verify_balance(product.id)["consistent"] is True


def test_movement_rows_cannot_be_updated(db_session, make_product):
    product = make_product(stock=5)
    movement = db_session.query(StockMovement).filter_by(product_id=product.id).one()

    movement.quantity = 50
    with pytest.raises(ImmutabilityViolation):
        db_session.commit()
    db_session.rollback()

    assert fresh(StockMovement, movement.id).quantity == 5


def test_movement_rows_cannot_be_deleted(db_session, make_product):
    product = make_product(stock=5)
    movement = db_session.query(StockMovement).filter_by(product_id=product.id).one()

    db_session.delete(movement)
    with pytest.raises(ImmutabilityViolation):
        db_session.commit()
    db_session.rollback()

    assert db_session.query(StockMovement).filter_by(product_id=product.id).count() == 1
