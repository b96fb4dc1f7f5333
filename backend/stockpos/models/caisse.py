from __future__ import annotations

import uuid

from sqlalchemy import event, inspect, text

from ..extensions import db
from ..errors import ImmutabilityViolation
from ..money import to_json_amount
from ..time_utils import to_utc_z

SESSION_ACTIVE = "active"
SESSION_CLOSED = "closed"


def _new_session_id() -> str:
    return str(uuid.uuid4())


class CaisseSession(db.Model):
    """
    Cash register (caisse) session for one operator's shift.

    LIFECYCLE: active -> closed (terminal). A new shift is a new row.

    - current_amount starts at opening_amount and follows every cash
      movement while the session is active.
    - On close: expected_amount = current_amount,
      difference = closing_amount - expected_amount.
    - At most one active session per user. The partial unique index makes
      the database reject a second one even if two opens race.

    IMMUTABLE: once closed the row cannot change.
    """
    __tablename__ = "caisse_sessions"
    __table_args__ = (
        db.Index(
            "uq_caisse_sessions_one_active_per_user",
            "user_id",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
        db.Index("ix_caisse_sessions_user_opened", "user_id", "opened_at"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_new_session_id)
    user_id = db.Column(db.Integer, nullable=False, index=True)

    session_name = db.Column(db.String(100), nullable=True)
    description = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=SESSION_ACTIVE, index=True)

    opening_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    current_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    closing_amount = db.Column(db.Numeric(12, 2), nullable=True)
    expected_amount = db.Column(db.Numeric(12, 2), nullable=True)
    difference = db.Column(db.Numeric(12, 2), nullable=True)
    closing_notes = db.Column(db.Text, nullable=True)

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_active(self) -> bool:
        return self.status == SESSION_ACTIVE

    def __repr__(self) -> str:
        return f"<CaisseSession id={self.id} user_id={self.user_id} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "session_name": self.session_name,
            "description": self.description,
            "status": self.status,
            "opening_amount": to_json_amount(self.opening_amount),
            "current_amount": to_json_amount(self.current_amount),
            "closing_amount": to_json_amount(self.closing_amount),
            "expected_amount": to_json_amount(self.expected_amount),
            "difference": to_json_amount(self.difference),
            "closing_notes": self.closing_notes,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "version_id": self.version_id,
        }


class CashMovement(db.Model):
    """
    Append-only cash ledger row for a caisse session.

    TYPES:
    - opening: float counted into the drawer when the session opens
    - sale: cash taken for a sale
    - refund: cash handed back for a refunded sale
    - adjustment: manual cash in/out (change top-up, drop to safe, ...)

    amount is positive; direction gives the sign. Folding the rows of a
    session reproduces its current_amount.
    """
    __tablename__ = "cash_movements"
    __table_args__ = (
        db.Index("ix_cash_movements_session_id", "session_id", "id"),
        db.CheckConstraint("amount >= 0", name="ck_cash_movements_amount_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.String(36), db.ForeignKey("caisse_sessions.id"), nullable=False)

    type = db.Column(db.String(16), nullable=False, index=True)
    direction = db.Column(db.String(8), nullable=False)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    previous_amount = db.Column(db.Numeric(12, 2), nullable=False)
    new_amount = db.Column(db.Numeric(12, 2), nullable=False)

    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    reason = db.Column(db.String(255), nullable=True)
    user_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    session = db.relationship("CaisseSession", backref=db.backref("cash_movements", lazy="dynamic"))

    @property
    def signed_amount(self):
        return self.amount if self.direction == "in" else -self.amount

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "type": self.type,
            "direction": self.direction,
            "amount": to_json_amount(self.amount),
            "previous_amount": to_json_amount(self.previous_amount),
            "new_amount": to_json_amount(self.new_amount),
            "sale_id": self.sale_id,
            "reason": self.reason,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(CaisseSession, "before_update")
def _prevent_closed_session_update(mapper, connection, target):
    status_history = inspect(target).attrs.status.history
    if SESSION_CLOSED in (status_history.unchanged or ()) or SESSION_CLOSED in (status_history.deleted or ()):
        raise ImmutabilityViolation(
            "Closed caisse sessions are immutable",
            details={"session_id": target.id},
        )


@event.listens_for(CashMovement, "before_update")
def _prevent_cash_movement_update(mapper, connection, target):
    raise ImmutabilityViolation("Cash movements are immutable", details={"movement_id": target.id})


@event.listens_for(CashMovement, "before_delete")
def _prevent_cash_movement_delete(mapper, connection, target):
    raise ImmutabilityViolation("Cash movements cannot be deleted", details={"movement_id": target.id})
