# Overview: Flask API routes for the cashier's cart and checkout.

# backend/pharmapos/routes/cart.py
"""
Cart session routes.

Every route works on the calling cashier's own cart (g.cart, keyed by
X-Cashier-Id). Carts live in memory only; checkout turns the cart into a
sale and removes it.
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_cashier, with_cart
from ..errors import PosError, ValidationError
from ..services import cart_service, checkout_service
from ..validation import require_int

cart_bp = Blueprint("cart", __name__, url_prefix="/api/cart")


@cart_bp.get("")
@require_cashier
@with_cart
def get_cart_route():
    return jsonify(g.cart.to_dict()), 200


@cart_bp.delete("")
@require_cashier
def clear_cart_route():
    """Empty the cart and drop the session."""
    cart = cart_service.cart_sessions.get(g.cashier_id)
    if cart is not None:
        cart.clear()
        cart_service.cart_sessions.evict(g.cashier_id)
    return jsonify({"cleared": True}), 200


@cart_bp.post("/items")
@require_cashier
@with_cart
def add_item_route():
    """
    Add a product unit to the cart.

    Body: {"product_id": int, "unit_type": str, "label": str (optional), "quantity": int (default 1)}
    """
    payload = request.get_json(silent=True) or {}
    try:
        product_id = require_int(payload, "product_id", minimum=1)
        quantity = require_int(payload, "quantity", minimum=1, default=1)
        unit_type = str(payload.get("unit_type") or "").strip()
        if not unit_type:
            raise ValidationError("unit_type is required")

        g.cart.add_item(product_id, unit_type, payload.get("label"), quantity)
        return jsonify(g.cart.to_dict()), 201
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to add cart item")
        return jsonify({"error": "Internal server error"}), 500


@cart_bp.patch("/items/<int:line_index>")
@require_cashier
@with_cart
def update_item_route(line_index: int):
    """
    Change a line's quantity.

    Body: {"delta": int} or {"quantity": int} (absolute). Zero or less removes the line.
    """
    payload = request.get_json(silent=True) or {}
    try:
        if "quantity" in payload:
            g.cart.set_quantity(line_index, require_int(payload, "quantity"))
        else:
            g.cart.update_quantity(line_index, require_int(payload, "delta"))
        return jsonify(g.cart.to_dict()), 200
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update cart item")
        return jsonify({"error": "Internal server error"}), 500


@cart_bp.delete("/items/<int:line_index>")
@require_cashier
@with_cart
def remove_item_route(line_index: int):
    try:
        g.cart.remove_item(line_index)
        return jsonify(g.cart.to_dict()), 200
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code


@cart_bp.put("/customer")
@require_cashier
@with_cart
def set_customer_route():
    """Body: {"customer_name": str, "customer_phone": str}"""
    payload = request.get_json(silent=True) or {}
    g.cart.set_customer(payload.get("customer_name"), payload.get("customer_phone"))
    return jsonify(g.cart.to_dict()), 200


@cart_bp.put("/payment")
@require_cashier
@with_cart
def set_payment_route():
    """
    Set payment method and pass-through adjustments.

    Body: {"payment_method": "CASH"|"MPESA"|"CARD"|"CREDIT", "discount_cents": int,
           "tax_cents": int, "notes": str} (all optional)
    """
    payload = request.get_json(silent=True) or {}
    try:
        discount = require_int(payload, "discount_cents", minimum=0, default=None)
        tax = require_int(payload, "tax_cents", minimum=0, default=None)
        notes = payload.get("notes")

        if "payment_method" in payload:
            g.cart.set_payment_method(payload.get("payment_method"))
        g.cart.set_adjustments(
            discount_cents=discount,
            tax_cents=tax,
            notes=str(notes) if notes is not None else None,
        )
        return jsonify(g.cart.to_dict()), 200
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code


@cart_bp.post("/prescriptions/<int:prescription_id>")
@require_cashier
@with_cart
def load_prescription_route(prescription_id: int):
    """
    Replace the cart with a prescription's resolved items.

    Warnings name every item that was not found, out of stock, short-filled
    or read with default quantities.
    """
    try:
        warnings = g.cart.load_from_prescription(prescription_id)
        return jsonify({"cart": g.cart.to_dict(), "warnings": [w.to_dict() for w in warnings]}), 200
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load prescription into cart")
        return jsonify({"error": "Internal server error"}), 500


@cart_bp.post("/checkout")
@require_cashier
@with_cart
def checkout_route():
    """
    Commit the cart as a sale.

    Returns 201 with the sale. On any rejection the cart is unchanged:
    - 400 empty cart, missing credit customer, bad discount/tax
    - 404 product or prescription vanished
    - 409 insufficient stock or a concurrent stock conflict
    """
    try:
        sale = checkout_service.checkout(g.cart)
        return jsonify({"sale": sale.to_dict()}), 201
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to check out cart")
        return jsonify({"error": "Internal server error"}), 500
