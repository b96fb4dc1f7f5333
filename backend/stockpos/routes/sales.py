# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

# backend/stockpos/routes/sales.py
"""
Sales routes.

POST /api/sales posts a completed sale in one transaction: sale, items,
stock movements and (cash in a session) the cash movement. Any failure
leaves nothing behind.
"""
from datetime import datetime

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_user
from ..errors import LedgerError, ValidationError
from ..services import sales_service
from ..services.concurrency import run_with_retry
from ..time_utils import parse_iso_datetime
from .errors import ledger_error_response, int_arg, json_body

sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _parse_date(value: str | None, field: str) -> datetime | None:
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO date", details={"field": field, "value": value})


@sales_bp.post("")
@require_user
def post_sale_route():
    """
    Post a sale.

    Request body:
    {
        "items": [{"product_id": 1, "quantity": 2, "unit_price": "6.50"}],
        "payment_method": "cash" | "card" | "mobile" | "mixed",
        "caisse_session_id": "...",          (optional)
        "customer_id": 3,                    (optional)
        "discount_amount": "1.00",           (optional)
        "loyalty_points_redeemed": 0,        (optional)
        "notes": "..."                       (optional)
    }

    Returns 409 with the short lines when stock is insufficient.
    """
    data = json_body()
    if data is None:
        return jsonify({"error": "JSON body required"}), 400

    try:
        sale = run_with_retry(lambda: sales_service.post_sale(
            data.get("items"),
            data.get("payment_method"),
            cashier_id=g.user_id,
            customer_id=data.get("customer_id"),
            caisse_session_id=data.get("caisse_session_id"),
            discount_amount=data.get("discount_amount"),
            loyalty_points_redeemed=data.get("loyalty_points_redeemed", 0),
            notes=data.get("notes"),
        ))
        return jsonify({"sale": sale.to_dict()}), 201
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to post sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("")
@require_user
def list_sales_route():
    """
    List sales, newest first.

    Query params:
    - page, limit (max 100)
    - start_date, end_date: ISO dates
    - cashier_id, customer_id, caisse_session_id
    """
    try:
        sales, total = sales_service.list_sales(
            page=int_arg("page", 1),
            limit=int_arg("limit", 20),
            start=_parse_date(request.args.get("start_date"), "start_date"),
            end=_parse_date(request.args.get("end_date"), "end_date"),
            cashier_id=int_arg("cashier_id"),
            customer_id=int_arg("customer_id"),
            caisse_session_id=request.args.get("caisse_session_id"),
        )
        return jsonify({
            "sales": [s.to_dict(include_items=False) for s in sales],
            "total": total,
        }), 200
    except LedgerError as e:
        return ledger_error_response(e)


@sales_bp.get("/<int:sale_id>")
@require_user
def get_sale_route(sale_id: int):
    try:
        return jsonify({"sale": sales_service.get_sale(sale_id).to_dict()}), 200
    except LedgerError as e:
        return ledger_error_response(e)


@sales_bp.post("/<int:sale_id>/refund")
@require_user
def refund_sale_route(sale_id: int):
    """
    Refund a sale, fully or per item.

    Request body:
    {
        "reason": "Damaged packaging",
        "items": [{"sale_item_id": 7, "quantity": 1}],   (optional, default all)
        "caisse_session_id": "..."                       (optional)
    }
    """
    data = json_body()
    if data is None:
        return jsonify({"error": "JSON body required"}), 400

    try:
        refund = run_with_retry(lambda: sales_service.refund_sale(
            sale_id,
            user_id=g.user_id,
            reason=data.get("reason"),
            items=data.get("items"),
            caisse_session_id=data.get("caisse_session_id"),
        ))
        sale = sales_service.get_sale(sale_id)
        return jsonify({"refund": refund.to_dict(), "sale": sale.to_dict()}), 201
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to refund sale")
        return jsonify({"error": "Internal server error"}), 500
