# Overview: Flask API routes for caisse sessions; parses input and returns JSON responses.

# backend/stockpos/routes/caisse.py
"""
Caisse Session API Routes

WHY: Cashier accountability. One active session per user, every cash
movement recorded, variance computed at close.

DESIGN:
- Session lifecycle: open -> close (immutable once closed)
- Manual cash in/out recorded as cash movements
- A user only sees and closes their own sessions
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_user
from ..errors import LedgerError, SessionNotFound
from ..services import caisse_service
from ..services.concurrency import run_with_retry
from .errors import ledger_error_response, int_arg, json_body


caisse_bp = Blueprint("caisse", __name__, url_prefix="/api/caisse")


def _own_session(session_id: str):
    session = caisse_service.get_session(session_id)
    if session.user_id != g.user_id:
        raise SessionNotFound("Caisse session not found", details={"session_id": session_id})
    return session


@caisse_bp.post("/sessions")
@require_user
def open_session_route():
    """
    Open a caisse session for the caller.

    Request body:
    {
        "opening_amount": "150.00",
        "session_name": "Morning",   (optional)
        "description": "..."         (optional)
    }

    Returns 409 if the caller already has an active session.
    """
    data = json_body()
    if data is None:
        return jsonify({"error": "JSON body required"}), 400

    try:
        session = run_with_retry(lambda: caisse_service.open_session(
            g.user_id,
            data.get("opening_amount"),
            session_name=data.get("session_name"),
            description=data.get("description"),
        ))
        return jsonify({"session": session.to_dict()}), 201
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to open caisse session")
        return jsonify({"error": "Internal server error"}), 500


@caisse_bp.get("/active-session")
@require_user
def active_session_route():
    """The caller's active session, or null."""
    session = caisse_service.get_active_session(g.user_id)
    return jsonify({"session": session.to_dict() if session else None}), 200


@caisse_bp.get("/sessions")
@require_user
def list_sessions_route():
    """
    The caller's sessions, most recent first.

    Query params:
    - status: active | closed
    - limit: int (default 50, max 200)
    """
    try:
        limit = min(max(int_arg("limit", 50), 1), 200)
    except LedgerError as e:
        return ledger_error_response(e)
    sessions = caisse_service.list_sessions(
        user_id=g.user_id,
        status=request.args.get("status"),
        limit=limit,
    )
    return jsonify({"sessions": [s.to_dict() for s in sessions], "count": len(sessions)}), 200


@caisse_bp.get("/sessions/<session_id>")
@require_user
def session_details_route(session_id: str):
    """Session with its summary and cash movements."""
    try:
        _own_session(session_id)
        summary = caisse_service.session_summary(session_id)
        summary["cash_movements"] = [m.to_dict() for m in caisse_service.get_cash_movements(session_id)]
        return jsonify(summary), 200
    except LedgerError as e:
        return ledger_error_response(e)


@caisse_bp.post("/sessions/<session_id>/cash")
@require_user
def cash_movement_route(session_id: str):
    """
    Manual cash in/out.

    Request body:
    {
        "amount": "20.00",
        "direction": "in" | "out",
        "reason": "Change top-up"
    }
    """
    data = json_body()
    if data is None:
        return jsonify({"error": "JSON body required"}), 400

    try:
        _own_session(session_id)
        movement = run_with_retry(lambda: caisse_service.apply_cash_delta(
            session_id,
            data.get("amount"),
            data.get("direction"),
            reason=data.get("reason"),
            user_id=g.user_id,
        ))
        return jsonify({"movement": movement.to_dict()}), 201
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record cash movement")
        return jsonify({"error": "Internal server error"}), 500


@caisse_bp.put("/sessions/<session_id>/close")
@require_user
def close_session_route(session_id: str):
    """
    Close the caller's session and reconcile.

    Request body:
    {
        "closing_amount": "412.50",   // counted cash
        "notes": "..."                (optional)
    }

    difference = closing_amount - expected_amount. Closed sessions are immutable.
    """
    data = json_body()
    if data is None:
        return jsonify({"error": "JSON body required"}), 400

    try:
        session = run_with_retry(lambda: caisse_service.close_session(
            session_id,
            data.get("closing_amount"),
            data.get("notes"),
            user_id=g.user_id,
        ))
        return jsonify({
            "session": session.to_dict(),
            "summary": caisse_service.session_summary(session_id),
        }), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to close caisse session")
        return jsonify({"error": "Internal server error"}), 500
