# Overview: Shared JSON helpers for the API blueprints.

from __future__ import annotations

from flask import jsonify, request

from ..errors import LedgerError, ValidationError


def ledger_error_response(e: LedgerError):
    """Serialize a ledger error with its HTTP status hint."""
    return jsonify(e.to_dict()), e.http_status


def json_body() -> dict | None:
    """Request body as a dict, or None when missing or not an object."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else None


def int_arg(name: str, default: int | None = None) -> int | None:
    """
    Integer query parameter. Missing or empty gives the default; anything
    that is not an integer is a ValidationError rather than silently ignored.
    """
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer", details={"field": name, "value": raw})
