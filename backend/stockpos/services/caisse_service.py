"""
Caisse (cash register) session management.

WHY: Cashier accountability. Each shift has an opening float, follows every
cash movement, and is reconciled against a physical count at close.

DESIGN PRINCIPLES:
- At most one active session per user (checked here, enforced by a partial
  unique index for racing opens)
- States: active -> closed; closed is terminal and immutable
- Every change of current_amount is a CashMovement row written in the same
  transaction, so current_amount == sum of the session's cash movements
- Closing twice is an error, not a no-op, so double submissions surface
"""

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import (
    InsufficientCash,
    SessionAlreadyActive,
    SessionAlreadyClosed,
    SessionNotActive,
    SessionNotFound,
    ValidationError,
)
from ..models import CaisseSession, CashMovement, Sale, SaleRefund
from ..models.caisse import SESSION_ACTIVE, SESSION_CLOSED
from ..money import ZERO, parse_amount, round_money, to_json_amount
from ..time_utils import utcnow
from .concurrency import lock_for_update, write_transaction

logger = logging.getLogger(__name__)

CASH_DIRECTIONS = ("in", "out")


def _load_session(session_id: str, *, lock: bool = False) -> CaisseSession:
    query = db.session.query(CaisseSession).filter_by(id=session_id)
    if lock:
        query = lock_for_update(query).populate_existing()
    session = query.first()
    if session is None:
        raise SessionNotFound("Caisse session not found", details={"session_id": session_id})
    return session


def get_session(session_id: str) -> CaisseSession:
    return _load_session(session_id)


def get_active_session(user_id: int) -> CaisseSession | None:
    """The user's active session, if any."""
    return db.session.query(CaisseSession).filter_by(
        user_id=user_id,
        status=SESSION_ACTIVE,
    ).first()


def list_sessions(user_id: int | None = None, status: str | None = None, limit: int = 50) -> list[CaisseSession]:
    query = db.session.query(CaisseSession)
    if user_id is not None:
        query = query.filter_by(user_id=user_id)
    if status is not None:
        query = query.filter_by(status=status)
    return query.order_by(CaisseSession.opened_at.desc()).limit(limit).all()


# =============================================================================
# LIFECYCLE
# =============================================================================

def open_session(
    user_id: int,
    opening_amount,
    *,
    session_name: str | None = None,
    description: str | None = None,
) -> CaisseSession:
    """
    Open a new session with current_amount = opening_amount.

    Raises:
        ValidationError: negative or malformed opening amount
        SessionAlreadyActive: the user already has an active session
    """
    opening = parse_amount(opening_amount, "opening_amount")

    with write_transaction():
        existing = get_active_session(user_id)
        if existing is not None:
            raise SessionAlreadyActive(
                "You already have an active caisse session. Close it before opening a new one.",
                details={"user_id": user_id, "session_id": existing.id},
            )

        session = CaisseSession(
            user_id=user_id,
            session_name=session_name,
            description=description,
            status=SESSION_ACTIVE,
            opening_amount=opening,
            current_amount=opening,
            opened_at=utcnow(),
        )
        db.session.add(session)
        try:
            db.session.flush()
        except IntegrityError:
            # Lost a race against another open for the same user
            raise SessionAlreadyActive(
                "You already have an active caisse session. Close it before opening a new one.",
                details={"user_id": user_id},
            )

        db.session.add(CashMovement(
            session_id=session.id,
            type="opening",
            direction="in",
            amount=opening,
            previous_amount=ZERO,
            new_amount=opening,
            reason="Opening float",
            user_id=user_id,
        ))
        db.session.flush()

    logger.info("Caisse session %s opened by user %s with %s", session.id, user_id, opening)
    return session


def apply_cash_delta_locked(
    session: CaisseSession,
    amount: Decimal,
    direction: str,
    *,
    movement_type: str = "adjustment",
    sale_id: int | None = None,
    reason: str | None = None,
    user_id: int | None = None,
) -> CashMovement:
    """
    Core cash movement without locking or commit.

    Caller holds the session row (loaded with lock=True inside
    write_transaction()). Used by apply_cash_delta() and the sale poster.
    """
    if not session.is_active:
        raise SessionNotActive(
            "Caisse session is not active",
            details={"session_id": session.id, "status": session.status},
        )
    if direction not in CASH_DIRECTIONS:
        raise ValidationError("direction must be 'in' or 'out'", details={"field": "direction", "value": direction})

    previous = round_money(session.current_amount)
    new = round_money(previous + amount if direction == "in" else previous - amount)
    if new < 0:
        raise InsufficientCash(
            "Not enough cash in the drawer",
            details={"session_id": session.id, "available": str(previous), "requested": str(amount)},
        )

    movement = CashMovement(
        session_id=session.id,
        type=movement_type,
        direction=direction,
        amount=amount,
        previous_amount=previous,
        new_amount=new,
        sale_id=sale_id,
        reason=reason,
        user_id=user_id,
    )
    session.current_amount = new
    db.session.add(movement)
    db.session.flush()
    return movement


def apply_cash_delta(
    session_id: str,
    amount,
    direction: str,
    *,
    reason: str | None = None,
    user_id: int | None = None,
) -> CashMovement:
    """
    Manual cash in/out on an active session (change top-up, drop to safe).

    Raises:
        SessionNotFound, SessionNotActive, InsufficientCash, ValidationError
    """
    value = parse_amount(amount, "amount", allow_zero=False)

    with write_transaction():
        session = _load_session(session_id, lock=True)
        movement = apply_cash_delta_locked(
            session,
            value,
            direction,
            movement_type="adjustment",
            reason=reason,
            user_id=user_id,
        )

    logger.info("Caisse session %s cash %s %s", session_id, direction, value)
    return movement


def close_session(
    session_id: str,
    counted_amount,
    notes: str | None = None,
    *,
    user_id: int | None = None,
) -> CaisseSession:
    """
    Close a session and reconcile the counted cash.

    expected_amount = current_amount, difference = counted - expected.
    When user_id is given the session must belong to that user.

    Raises:
        SessionNotFound: unknown session or not owned by user_id
        SessionAlreadyClosed: session was closed before
    """
    counted = parse_amount(counted_amount, "closing_amount")

    with write_transaction():
        session = _load_session(session_id, lock=True)

        if user_id is not None and session.user_id != user_id:
            raise SessionNotFound("Caisse session not found", details={"session_id": session_id})

        if session.status == SESSION_CLOSED:
            raise SessionAlreadyClosed(
                "Caisse session already closed",
                details={"session_id": session_id, "closed_at": str(session.closed_at)},
            )

        expected = round_money(session.current_amount)
        session.expected_amount = expected
        session.closing_amount = counted
        session.difference = round_money(counted - expected)
        session.closing_notes = notes
        session.status = SESSION_CLOSED
        session.closed_at = utcnow()
        db.session.flush()

    if session.difference != 0:
        logger.warning(
            "Caisse session %s closed with difference %s (expected %s, counted %s)",
            session_id, session.difference, session.expected_amount, session.closing_amount,
        )
    else:
        logger.info("Caisse session %s closed, cash reconciled", session_id)
    return session


# =============================================================================
# REPORTING
# =============================================================================

def folded_cash(session_id: str) -> Decimal:
    """Cash on hand recomputed from the session's cash movements."""
    total = ZERO
    for movement in db.session.query(CashMovement).filter_by(session_id=session_id).order_by(CashMovement.id):
        total += movement.signed_amount
    return round_money(total)


def get_cash_movements(session_id: str) -> list[CashMovement]:
    return db.session.query(CashMovement).filter_by(session_id=session_id).order_by(CashMovement.id).all()


def session_summary(session_id: str) -> dict:
    """
    Sales and cash figures for a session.

    Returns:
        - transactions count, revenue, average ticket
        - revenue per payment method
        - cash in/out totals from the cash movements
        - refunds paid out during the session
    """
    session = _load_session(session_id)

    totals = db.session.query(
        func.count(Sale.id),
        func.coalesce(func.sum(Sale.total_amount), 0),
    ).filter(Sale.caisse_session_id == session_id).one()

    per_method = {
        method: round_money(total or 0)
        for method, total in db.session.query(
            Sale.payment_method,
            func.sum(Sale.total_amount),
        ).filter(Sale.caisse_session_id == session_id).group_by(Sale.payment_method).all()
    }

    cash_in = ZERO
    cash_out = ZERO
    for movement in get_cash_movements(session_id):
        if movement.type == "opening":
            continue
        if movement.direction == "in":
            cash_in += movement.amount
        else:
            cash_out += movement.amount

    refunds_total = db.session.query(
        func.coalesce(func.sum(SaleRefund.amount), 0),
    ).filter(SaleRefund.caisse_session_id == session_id).scalar()

    count = int(totals[0] or 0)
    revenue = round_money(totals[1] or 0)
    return {
        "session": session.to_dict(),
        "total_transactions": count,
        "total_revenue": to_json_amount(revenue),
        "average_transaction": to_json_amount(revenue / count) if count else to_json_amount(ZERO),
        "revenue_by_payment_method": {method: to_json_amount(v) for method, v in per_method.items()},
        "cash_in": to_json_amount(cash_in),
        "cash_out": to_json_amount(cash_out),
        "refunds_total": to_json_amount(round_money(refunds_total or 0)),
        "expected_cash": to_json_amount(session.expected_amount if session.expected_amount is not None else session.current_amount),
    }
