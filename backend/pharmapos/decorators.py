# Overview: Request decorators for API routes.

from functools import wraps

from flask import g, jsonify, request

from .services.cart_service import cart_sessions


def require_cashier(f):
    """
    Require a cashier identity on the request.

    Authentication lives outside this service; the caller asserts who is at
    the till through headers. Sets:
    - g.cashier_id: from X-Cashier-Id (required)
    - g.cashier_name: from X-Cashier-Name (optional)

    Returns 401 when X-Cashier-Id is missing or blank.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        cashier_id = (request.headers.get("X-Cashier-Id") or "").strip()
        if not cashier_id:
            return jsonify({"error": "Cashier identity required", "details": {"header": "X-Cashier-Id"}}), 401

        g.cashier_id = cashier_id[:64]
        g.cashier_name = (request.headers.get("X-Cashier-Name") or "").strip()[:128] or None
        return f(*args, **kwargs)

    return decorated_function


def with_cart(f):
    """
    Attach the calling cashier's cart as g.cart, creating it on first use.

    Must be applied after @require_cashier.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        g.cart = cart_sessions.get_or_create(g.cashier_id, g.cashier_name)
        return f(*args, **kwargs)

    return decorated_function
