# Overview: Movement log; the only writer of stock movements and of Product.stock_quantity.

"""
Stock Movement Log Invariants (authoritative)

- stock_movements is append-only. Rows are never updated or deleted.
- Every movement carries previous_balance and new_balance snapshots.
  new_balance = previous_balance + quantity (direction "in")
  new_balance = previous_balance - quantity (direction "out")
- A movement that would leave new_balance < 0 is refused with
  InsufficientStock and nothing is written.
- Product.stock_quantity is updated in the same flush as the movement
  insert. There is no other code path that writes it.
- The product row is read under the write lock (BEGIN IMMEDIATE on SQLite,
  SELECT ... FOR UPDATE elsewhere) so each product's movements form a single
  chain where previous_balance equals the prior row's new_balance.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from ..extensions import db
from ..errors import InsufficientStock, ProductNotFound, ValidationError
from ..models import Product, StockMovement
from ..models.inventory import MOVEMENT_TYPES
from ..money import parse_amount
from .concurrency import lock_for_update, write_transaction

logger = logging.getLogger(__name__)

_DIRECTION_ALIASES = {
    "in": "in",
    "increase": "in",
    "out": "out",
    "decrease": "out",
}


def validate_quantity(quantity, field: str = "quantity") -> int:
    """Quantities are positive integers. Booleans and floats are rejected."""
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        if isinstance(quantity, str) and quantity.strip().isdigit():
            quantity = int(quantity.strip())
        else:
            raise ValidationError(f"{field} must be a positive integer", details={"field": field, "value": quantity})
    if quantity <= 0:
        raise ValidationError(f"{field} must be a positive integer", details={"field": field, "value": quantity})
    return quantity


def _resolve_direction(movement_type: str, direction: str | None) -> str:
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(
            f"type must be one of {', '.join(MOVEMENT_TYPES)}",
            details={"field": "type", "value": movement_type},
        )
    if movement_type in ("in", "out"):
        if direction is not None and _DIRECTION_ALIASES.get(direction) != movement_type:
            raise ValidationError(
                f"direction conflicts with movement type {movement_type}",
                details={"type": movement_type, "direction": direction},
            )
        return movement_type

    resolved = _DIRECTION_ALIASES.get(direction) if direction is not None else None
    if resolved is None:
        raise ValidationError(
            "adjustment requires direction 'in' or 'out'",
            details={"field": "direction", "value": direction},
        )
    return resolved


def get_product(product_id: int, *, require_active: bool = True, lock: bool = False) -> Product:
    """
    Load a product or raise ProductNotFound.

    With lock=True the row is re-read from the database (never served stale
    from the identity map) under a row lock.
    """
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query).populate_existing()
    product = query.first()
    if product is None:
        raise ProductNotFound("Product not found", details={"product_id": product_id})
    if require_active and not product.is_active:
        raise ProductNotFound("Product is inactive", details={"product_id": product_id})
    return product


def append_movement(
    product: Product,
    *,
    movement_type: str,
    quantity: int,
    direction: str,
    reference: str | None = None,
    reason: str | None = None,
    user_id: int | None = None,
    cost_per_unit: Decimal | None = None,
    sale_id: int | None = None,
) -> StockMovement:
    """
    Core movement write without validation of raw input, locking or commit.

    Caller must already hold the write lock on product (get_product(lock=True)
    inside write_transaction()). Used by record_movement() and the sale poster.
    """
    previous = product.stock_quantity
    new = previous + quantity if direction == "in" else previous - quantity

    if new < 0:
        raise InsufficientStock(
            "Insufficient stock",
            details={
                "product_id": product.id,
                "product_name": product.name,
                "available": previous,
                "requested": quantity,
            },
        )

    movement = StockMovement(
        product_id=product.id,
        type=movement_type,
        direction=direction,
        quantity=quantity,
        previous_balance=previous,
        new_balance=new,
        reference=reference,
        reason=reason,
        user_id=user_id,
        cost_per_unit=cost_per_unit,
        sale_id=sale_id,
    )
    product.stock_quantity = new
    db.session.add(movement)
    db.session.flush()
    return movement


def record_movement(
    product_id: int,
    quantity,
    movement_type: str,
    *,
    direction: str | None = None,
    reference: str | None = None,
    reason: str | None = None,
    user_id: int | None = None,
    cost_per_unit=None,
) -> StockMovement:
    """
    Append one stock movement and update the product balance atomically.

    Raises:
        ValidationError: bad quantity, type or direction
        ProductNotFound: unknown or inactive product
        InsufficientStock: an out movement would make the balance negative
    """
    quantity = validate_quantity(quantity)
    resolved_direction = _resolve_direction(movement_type, direction)
    cost = parse_amount(cost_per_unit, "cost_per_unit") if cost_per_unit is not None else None

    with write_transaction():
        product = get_product(product_id, lock=True)
        movement = append_movement(
            product,
            movement_type=movement_type,
            quantity=quantity,
            direction=resolved_direction,
            reference=reference,
            reason=reason,
            user_id=user_id,
            cost_per_unit=cost,
        )

    logger.info(
        "Stock movement %s: product=%s %s %s (%s -> %s)",
        movement.id, product_id, movement.direction, quantity,
        movement.previous_balance, movement.new_balance,
    )
    return movement


def stock_in(product_id: int, quantity, **kwargs) -> StockMovement:
    """Receive stock."""
    return record_movement(product_id, quantity, "in", **kwargs)


def stock_out(product_id: int, quantity, **kwargs) -> StockMovement:
    """Manual stock removal (breakage, internal use, ...)."""
    return record_movement(product_id, quantity, "out", **kwargs)


def adjust_to_level(
    product_id: int,
    counted_level,
    *,
    reference: str | None = None,
    reason: str | None = None,
    user_id: int | None = None,
) -> StockMovement | None:
    """
    Bring the balance to a physically counted level.

    Records one adjustment movement for the difference. Returns None when
    the balance already matches and nothing was written.
    """
    if isinstance(counted_level, bool) or not isinstance(counted_level, int) or counted_level < 0:
        raise ValidationError(
            "counted level must be a non-negative integer",
            details={"field": "new_stock", "value": counted_level},
        )

    with write_transaction():
        product = get_product(product_id, lock=True)
        delta = counted_level - product.stock_quantity
        if delta == 0:
            return None
        movement = append_movement(
            product,
            movement_type="adjustment",
            quantity=abs(delta),
            direction="in" if delta > 0 else "out",
            reference=reference,
            reason=reason,
            user_id=user_id,
        )

    logger.info(
        "Stock adjusted: product=%s %s -> %s",
        product_id, movement.previous_balance, movement.new_balance,
    )
    return movement
