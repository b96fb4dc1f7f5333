from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from ..errors import ImmutabilityViolation
from ..money import to_json_amount
from ..time_utils import to_utc_z

PAYMENT_METHODS = ("cash", "card", "mobile", "mixed")


class Sale(db.Model):
    """
    Completed sale.

    Created in one transaction with its items, the matching stock "out"
    movements and, for cash sales in a session, the cash movement.
    IMMUTABLE after creation: refunds are recorded as SaleRefund rows plus
    compensating movements, never by editing the sale.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_created", "created_at"),
        db.Index("ix_sales_session", "caisse_session_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_number = db.Column(db.String(32), nullable=False, unique=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    cashier_id = db.Column(db.Integer, nullable=False, index=True)
    caisse_session_id = db.Column(db.String(36), db.ForeignKey("caisse_sessions.id"), nullable=True)

    subtotal = db.Column(db.Numeric(12, 2), nullable=False)
    discount_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    tax_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total_amount = db.Column(db.Numeric(12, 2), nullable=False)

    payment_method = db.Column(db.String(16), nullable=False)
    loyalty_points_redeemed = db.Column(db.Integer, nullable=False, default=0)
    loyalty_points_earned = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    customer = db.relationship("Customer", backref=db.backref("sales", lazy=True))
    caisse_session = db.relationship("CaisseSession", backref=db.backref("sales", lazy=True))
    items = db.relationship("SaleItem", backref="sale", lazy=True, order_by="SaleItem.id")
    refunds = db.relationship("SaleRefund", backref="sale", lazy=True, order_by="SaleRefund.id")

    @property
    def is_fully_refunded(self) -> bool:
        return bool(self.items) and all(item.refundable_quantity == 0 for item in self.items)

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "sale_number": self.sale_number,
            "customer_id": self.customer_id,
            "cashier_id": self.cashier_id,
            "caisse_session_id": self.caisse_session_id,
            "subtotal": to_json_amount(self.subtotal),
            "discount_amount": to_json_amount(self.discount_amount),
            "tax_amount": to_json_amount(self.tax_amount),
            "total_amount": to_json_amount(self.total_amount),
            "payment_method": self.payment_method,
            "loyalty_points_redeemed": self.loyalty_points_redeemed,
            "loyalty_points_earned": self.loyalty_points_earned,
            "notes": self.notes,
            "status": "refunded" if self.is_fully_refunded else "completed",
            "created_at": to_utc_z(self.created_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
            data["refunds"] = [refund.to_dict() for refund in self.refunds]
        return data


class SaleItem(db.Model):
    __tablename__ = "sale_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sale_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    discount_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total_price = db.Column(db.Numeric(12, 2), nullable=False)

    # Stock movement written when the sale was posted
    stock_movement_id = db.Column(db.Integer, db.ForeignKey("stock_movements.id"), nullable=True)

    product = db.relationship("Product")

    @property
    def refunded_quantity(self) -> int:
        return sum(line.quantity for line in self.refund_lines)

    @property
    def refundable_quantity(self) -> int:
        return self.quantity - self.refunded_quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price": to_json_amount(self.unit_price),
            "discount_amount": to_json_amount(self.discount_amount),
            "total_price": to_json_amount(self.total_price),
            "stock_movement_id": self.stock_movement_id,
            "refunded_quantity": self.refunded_quantity,
        }


class SaleRefund(db.Model):
    """Refund header. Append-only; the original sale is never edited."""
    __tablename__ = "sale_refunds"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    reference = db.Column(db.String(64), nullable=False)
    reason = db.Column(db.Text, nullable=False)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    caisse_session_id = db.Column(db.String(36), db.ForeignKey("caisse_sessions.id"), nullable=True)
    user_id = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    lines = db.relationship("SaleRefundLine", backref="refund", lazy=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "reference": self.reference,
            "reason": self.reason,
            "amount": to_json_amount(self.amount),
            "caisse_session_id": self.caisse_session_id,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
            "lines": [line.to_dict() for line in self.lines],
        }


class SaleRefundLine(db.Model):
    __tablename__ = "sale_refund_lines"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sale_refund_lines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    refund_id = db.Column(db.Integer, db.ForeignKey("sale_refunds.id"), nullable=False, index=True)
    sale_item_id = db.Column(db.Integer, db.ForeignKey("sale_items.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    stock_movement_id = db.Column(db.Integer, db.ForeignKey("stock_movements.id"), nullable=True)

    sale_item = db.relationship("SaleItem", backref=db.backref("refund_lines", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_item_id": self.sale_item_id,
            "quantity": self.quantity,
            "amount": to_json_amount(self.amount),
            "stock_movement_id": self.stock_movement_id,
        }


class DocumentSequence(db.Model):
    """
    Atomic per-key counters for human-readable document numbers.

    WHY: Prevent two concurrent sales from drawing the same sale number.
    Keyed by document type and day so numbers restart daily and stay
    time-ordered (S251017-000001, S251017-000002, ...).
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", "period", name="uq_doc_sequences_type_period"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False)
    period = db.Column(db.String(16), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)


def _prevent_update(kind: str):
    def _listener(mapper, connection, target):
        raise ImmutabilityViolation(f"{kind} records are immutable", details={"id": target.id})
    return _listener


for _model, _kind in ((Sale, "Sale"), (SaleItem, "Sale item"), (SaleRefund, "Refund"), (SaleRefundLine, "Refund line")):
    event.listen(_model, "before_update", _prevent_update(_kind))
    event.listen(_model, "before_delete", _prevent_update(_kind))
