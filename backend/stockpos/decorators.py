# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g


def require_user(f):
    """
    Require a caller identity and expose it as g.user_id.

    Identity comes from the X-User-Id header set by the upstream gateway;
    token issuance and verification happen there, not here.

    Returns 401 if the header is missing or not a positive integer.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = request.headers.get("X-User-Id", "").strip()

        if not raw.isdigit() or int(raw) <= 0:
            return jsonify({"error": "Authentication required"}), 401

        g.user_id = int(raw)
        return f(*args, **kwargs)

    return decorated_function
