# Overview: Flask API routes for customers; parses input and returns JSON responses.

# backend/stockpos/routes/customers.py
"""
Customer routes.

Loyalty points and purchase totals are read-only here; they only change
when a sale is posted.
"""
from flask import Blueprint, request, jsonify, current_app

from ..decorators import require_user
from ..errors import LedgerError
from ..services import catalog_service
from ..services.concurrency import run_with_retry
from .errors import ledger_error_response, int_arg, json_body

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.get("")
@require_user
def list_customers_route():
    """
    Query params:
    - search: matches first/last name, email or phone
    - page: int (default 1)
    - per_page: int (default 20, max 100)
    """
    try:
        result = catalog_service.list_customers(
            search=request.args.get("search"),
            page=int_arg("page", 1),
            per_page=int_arg("per_page", 20),
        )
        return jsonify(result), 200
    except LedgerError as e:
        return ledger_error_response(e)


@customers_bp.get("/<int:customer_id>")
@require_user
def get_customer_route(customer_id: int):
    try:
        return jsonify({"customer": catalog_service.get_customer(customer_id).to_dict()}), 200
    except LedgerError as e:
        return ledger_error_response(e)


@customers_bp.post("")
@require_user
def create_customer_route():
    """
    Create a customer.

    Request body:
    {
        "first_name": "Awa",
        "last_name": "Diallo",
        "email": "...",     (optional)
        "phone": "..."      (optional)
    }
    """
    data = json_body()
    if data is None:
        return jsonify({"error": "JSON body required"}), 400

    try:
        customer = run_with_retry(lambda: catalog_service.create_customer(data))
        return jsonify({"customer": customer.to_dict()}), 201
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create customer")
        return jsonify({"error": "Internal server error"}), 500
