from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from ..errors import ImmutabilityViolation
from ..money import to_json_amount
from ..time_utils import to_utc_z

MOVEMENT_TYPES = ("in", "out", "adjustment")
DIRECTIONS = ("in", "out")


class StockMovement(db.Model):
    """
    Append-only stock ledger row.

    quantity is always positive; direction says which way it moved the
    balance ("in" adds, "out" subtracts). For type "in" the direction is
    "in", for "out" it is "out", an "adjustment" may go either way.

    INVARIANTS (enforced by movement_service and the check constraints):
    - new_balance == previous_balance + quantity  when direction == "in"
    - new_balance == previous_balance - quantity  when direction == "out"
    - new_balance >= 0
    - previous_balance equals new_balance of the prior row for the product

    IMMUTABLE: rows are never updated or deleted (see listeners below).
    Corrections are new movements.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_product_id_desc", "product_id", "id"),
        db.Index("ix_stock_movements_created", "created_at"),
        db.CheckConstraint("quantity > 0", name="ck_stock_movements_quantity_positive"),
        db.CheckConstraint("new_stock >= 0", name="ck_stock_movements_new_non_negative"),
        db.CheckConstraint(
            "(direction = 'in' AND new_stock = previous_stock + quantity) OR "
            "(direction = 'out' AND new_stock = previous_stock - quantity)",
            name="ck_stock_movements_balance_arithmetic",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False, index=True)
    direction = db.Column(db.String(8), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)

    previous_balance = db.Column("previous_stock", db.Integer, nullable=False)
    new_balance = db.Column("new_stock", db.Integer, nullable=False)

    cost_per_unit = db.Column(db.Numeric(12, 2), nullable=True)
    reference = db.Column(db.String(100), nullable=True, index=True)
    reason = db.Column("notes", db.Text, nullable=True)

    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    user_id = db.Column(db.Integer, nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("movements", lazy="dynamic"))

    @property
    def signed_quantity(self) -> int:
        return self.quantity if self.direction == "in" else -self.quantity

    def __repr__(self) -> str:
        return (
            f"<StockMovement id={self.id} product_id={self.product_id} {self.type}/{self.direction} "
            f"{self.quantity} {self.previous_balance}->{self.new_balance}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "type": self.type,
            "direction": self.direction,
            "quantity": self.quantity,
            "previous_balance": self.previous_balance,
            "new_balance": self.new_balance,
            "cost_per_unit": to_json_amount(self.cost_per_unit),
            "reference": self.reference,
            "reason": self.reason,
            "sale_id": self.sale_id,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(StockMovement, "before_update")
def _prevent_movement_update(mapper, connection, target):
    raise ImmutabilityViolation(
        "Stock movements are immutable",
        details={"movement_id": target.id, "product_id": target.product_id},
    )


@event.listens_for(StockMovement, "before_delete")
def _prevent_movement_delete(mapper, connection, target):
    raise ImmutabilityViolation(
        "Stock movements cannot be deleted",
        details={"movement_id": target.id, "product_id": target.product_id},
    )
