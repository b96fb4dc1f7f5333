# Overview: Flask API routes for suppliers; parses input and returns JSON responses.

# backend/stockpos/routes/suppliers.py
from flask import Blueprint, jsonify, current_app

from ..decorators import require_user
from ..errors import LedgerError
from ..services import catalog_service
from ..services.concurrency import run_with_retry
from .errors import ledger_error_response, json_body

suppliers_bp = Blueprint("suppliers", __name__, url_prefix="/api/suppliers")


@suppliers_bp.get("")
@require_user
def list_suppliers_route():
    suppliers = catalog_service.list_suppliers()
    return jsonify({"suppliers": [s.to_dict() for s in suppliers]}), 200


@suppliers_bp.post("")
@require_user
def create_supplier_route():
    """
    Create a supplier.

    Request body:
    {
        "name": "Grossiste Nord",
        "contact_person": "...",   (optional)
        "email": "...",            (optional)
        "phone": "...",            (optional)
        "address": "..."           (optional)
    }
    """
    data = json_body()
    if data is None:
        return jsonify({"error": "JSON body required"}), 400

    try:
        supplier = run_with_retry(lambda: catalog_service.create_supplier(data))
        return jsonify({"supplier": supplier.to_dict()}), 201
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create supplier")
        return jsonify({"error": "Internal server error"}), 500
