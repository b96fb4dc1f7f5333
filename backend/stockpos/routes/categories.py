# Overview: Flask API routes for product categories; parses input and returns JSON responses.

# backend/stockpos/routes/categories.py
from flask import Blueprint, jsonify, current_app

from ..decorators import require_user
from ..errors import LedgerError
from ..services import catalog_service
from ..services.concurrency import run_with_retry
from .errors import ledger_error_response, json_body

categories_bp = Blueprint("categories", __name__, url_prefix="/api/categories")


@categories_bp.get("")
@require_user
def list_categories_route():
    categories = catalog_service.list_categories()
    return jsonify({"categories": [c.to_dict() for c in categories]}), 200


@categories_bp.post("")
@require_user
def create_category_route():
    """
    Create a category.

    Request body:
    {
        "name": "Boissons",
        "description": "..."     (optional)
    }
    """
    data = json_body()
    if data is None:
        return jsonify({"error": "JSON body required"}), 400

    try:
        category = run_with_retry(lambda: catalog_service.create_category(data))
        return jsonify({"category": category.to_dict()}), 201
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create category")
        return jsonify({"error": "Internal server error"}), 500
