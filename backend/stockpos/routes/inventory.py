# Overview: Flask API routes for inventory operations; parses input and returns JSON responses.

# backend/stockpos/routes/inventory.py
"""
Inventory routes: the movement log and the balances projected from it.

Every write goes through movement_service, which appends a movement and
updates the product balance in one transaction.
"""
from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_user
from ..errors import LedgerError, ValidationError
from ..services import movement_service, balance_service
from ..services.concurrency import run_with_retry
from .errors import ledger_error_response, int_arg, json_body

inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.post("/movements")
@require_user
def record_movement_route():
    """
    Record a stock movement.

    Request body:
    {
        "product_id": 1,
        "type": "in" | "out" | "adjustment",
        "quantity": 10,
        "direction": "in" | "out"      (required for adjustment)
        "reference": "PO-1234",        (optional)
        "reason": "Supplier delivery", (optional)
        "cost_per_unit": "3.10"        (optional)
    }

    Returns 409 with the available quantity when an out movement exceeds stock.
    """
    data = json_body()
    if data is None:
        return jsonify({"error": "JSON body required"}), 400

    try:
        product_id = data.get("product_id")
        if isinstance(product_id, bool) or not isinstance(product_id, int):
            raise ValidationError("product_id must be an integer", details={"field": "product_id"})

        movement = run_with_retry(lambda: movement_service.record_movement(
            product_id,
            data.get("quantity"),
            data.get("type"),
            direction=data.get("direction"),
            reference=data.get("reference"),
            reason=data.get("reason"),
            user_id=g.user_id,
            cost_per_unit=data.get("cost_per_unit"),
        ))
        return jsonify({"movement": movement.to_dict()}), 201
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record stock movement")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/adjust")
@require_user
def adjust_route():
    """
    Set a product to a physically counted level.

    Request body:
    {
        "product_id": 1,
        "new_stock": 37,
        "reason": "Monthly count"
    }

    Returns 200 with "movement": null when the level already matched.
    """
    data = json_body()
    if data is None:
        return jsonify({"error": "JSON body required"}), 400

    try:
        product_id = data.get("product_id")
        if isinstance(product_id, bool) or not isinstance(product_id, int):
            raise ValidationError("product_id must be an integer", details={"field": "product_id"})

        movement = run_with_retry(lambda: movement_service.adjust_to_level(
            product_id,
            data.get("new_stock"),
            reference=data.get("reference"),
            reason=data.get("reason"),
            user_id=g.user_id,
        ))
        if movement is None:
            return jsonify({"movement": None}), 200
        return jsonify({"movement": movement.to_dict()}), 201
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/movements")
@require_user
def list_movements_route():
    """
    Movements across all products, most recent first.

    Query params:
    - product_id: int (optional)
    - cursor / limit / type / reference: as for /<product_id>/history
    """
    try:
        page = balance_service.list_movements(
            product_id=int_arg("product_id"),
            cursor=int_arg("cursor"),
            limit=int_arg("limit"),
            movement_type=request.args.get("type"),
            reference=request.args.get("reference"),
        )
        return jsonify(page.to_dict()), 200
    except LedgerError as e:
        return ledger_error_response(e)


@inventory_bp.get("/overview")
@require_user
def overview_route():
    """Product and stock value totals with the most urgent low-stock products."""
    return jsonify(balance_service.inventory_overview()), 200


@inventory_bp.get("/<int:product_id>/balance")
@require_user
def balance_route(product_id: int):
    try:
        return jsonify({
            "product_id": product_id,
            "balance": balance_service.current_balance(product_id),
        }), 200
    except LedgerError as e:
        return ledger_error_response(e)


@inventory_bp.get("/<int:product_id>/history")
@require_user
def history_route(product_id: int):
    """
    Movement history, most recent first.

    Query params:
    - cursor: next_cursor from the previous page
    - limit: page size (default 50, max 200)
    - type: in | out | adjustment
    - reference: exact reference match
    """
    try:
        page = balance_service.history(
            product_id,
            cursor=int_arg("cursor"),
            limit=int_arg("limit"),
            movement_type=request.args.get("type"),
            reference=request.args.get("reference"),
        )
        return jsonify(page.to_dict()), 200
    except LedgerError as e:
        return ledger_error_response(e)


@inventory_bp.get("/<int:product_id>/verify")
@require_user
def verify_route(product_id: int):
    """Compare the stored balance with the folded movement log."""
    try:
        return jsonify(balance_service.verify_balance(product_id)), 200
    except LedgerError as e:
        return ledger_error_response(e)
