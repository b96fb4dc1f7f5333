# Overview: Flask API routes for the product catalogue; parses input and returns JSON responses.

# backend/stockpos/routes/products.py
"""
Product catalogue routes.

stock_quantity is read-only here: it only changes through inventory
movements and sales. An opening stock on create is recorded as a movement.
"""
from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_user
from ..errors import LedgerError
from ..services import catalog_service, balance_service
from ..services.concurrency import run_with_retry
from .errors import ledger_error_response, int_arg, json_body

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_user
def list_products():
    """
    List products with optional pagination.

    Query params:
    - search: matches name, sku or barcode
    - category_id: int
    - include_inactive: "true" to include deactivated products
    - page: int (default 1)
    - per_page: int (default 20, max 100)
    """
    try:
        result = catalog_service.list_products(
            search=request.args.get("search"),
            category_id=int_arg("category_id"),
            include_inactive=request.args.get("include_inactive", "").lower() == "true",
            page=int_arg("page", 1),
            per_page=int_arg("per_page", 20),
        )
        return jsonify(result), 200
    except LedgerError as e:
        return ledger_error_response(e)


@products_bp.post("")
@require_user
def create_product_route():
    """
    Create a product.

    Request body:
    {
        "sku": "CAFE-250",
        "name": "Coffee 250g",
        "selling_price": "6.50",
        "cost_price": "3.10",
        "min_stock_level": 5,
        "opening_stock": 40          (optional)
    }
    """
    data = json_body()
    if data is None:
        return jsonify({"error": "JSON body required"}), 400

    try:
        product = run_with_retry(lambda: catalog_service.create_product(data, user_id=g.user_id))
        return jsonify({"product": product.to_dict()}), 201
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/low-stock")
@require_user
def low_stock_route():
    """Active products at or under their minimum stock level."""
    products = balance_service.low_stock_products()
    return jsonify({"items": [p.to_dict() for p in products], "count": len(products)}), 200


@products_bp.get("/<int:product_id>")
@require_user
def get_product_route(product_id: int):
    try:
        product = catalog_service.get_product_by_id(product_id)
        return jsonify({"product": product.to_dict()}), 200
    except LedgerError as e:
        return ledger_error_response(e)


@products_bp.delete("/<int:product_id>")
@require_user
def deactivate_product_route(product_id: int):
    """Deactivate a product. Its movement history is kept."""
    try:
        product = run_with_retry(lambda: catalog_service.deactivate_product(product_id))
        return jsonify({"product": product.to_dict()}), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to deactivate product")
        return jsonify({"error": "Internal server error"}), 500
