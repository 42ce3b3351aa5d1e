# Overview: Flask API routes for the unit catalog; parses input and returns JSON responses.

# backend/pharmapos/routes/products.py
"""
Product catalog routes.

Products are read by the POS and written by back-office tooling. Stock is
never written here except as the opening RESTOCK movement of a new product.
"""
from flask import Blueprint, current_app, jsonify, request

from ..errors import PosError, ValidationError
from ..models import Product
from ..services import catalog_service
from ..validation import (
    ModelValidationPolicy,
    enforce_rules_product,
    require_int,
    validate_payload,
    validate_units_payload,
)

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={"name", "category", "product_type", "reorder_level", "cost_price_cents", "is_active"},
    required_on_create={"name"},
)

# Keys accepted next to the product columns on create
_CREATE_EXTRAS = {"units", "opening_stock"}

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _parse_bool(value: str | None, default: bool | None) -> bool | None:
    if value is None or value == "":
        return default
    lowered = value.strip().lower()
    if lowered in ("all", "any"):
        return None
    return lowered in ("1", "true", "yes", "on")


@products_bp.get("")
def list_products_route():
    """
    List products.

    Query params:
    - category: exact category (case-insensitive)
    - search: name contains
    - active: true (default) / false / all
    - low_stock: true to only list products at or below reorder level
    """
    try:
        products = catalog_service.list_products(
            category=request.args.get("category"),
            search=request.args.get("search"),
            active=_parse_bool(request.args.get("active"), True),
            low_stock=bool(_parse_bool(request.args.get("low_stock"), False)),
        )
        return jsonify({"items": [p.to_dict() for p in products], "count": len(products)}), 200
    except Exception:
        current_app.logger.exception("Failed to list products")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/<int:product_id>")
def get_product_route(product_id: int):
    try:
        product = catalog_service.get_product(product_id)
        return jsonify(product.to_dict()), 200
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code


@products_bp.post("")
def create_product_route():
    """
    Create a product with its sellable units.

    Body: product fields, optional "units" (defaults to the presets of the
    product type) and optional "opening_stock" in base units.
    """
    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict):
        return jsonify({"error": "Invalid JSON payload"}), 400

    try:
        fields = {k: v for k, v in payload.items() if k not in _CREATE_EXTRAS}
        patch = validate_payload(model=Product, payload=fields, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)
        units = validate_units_payload(payload["units"]) if payload.get("units") is not None else None
        opening_stock = require_int(payload, "opening_stock", minimum=0, default=0)

        product = catalog_service.create_product(
            patch=patch,
            units=units,
            opening_stock=opening_stock,
            actor_id=request.headers.get("X-Cashier-Id"),
            actor_name=request.headers.get("X-Cashier-Name"),
        )
        return jsonify(product.to_dict()), 201
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.post("/<int:product_id>/units/recalculate")
def recalculate_units_route(product_id: int):
    """
    Recompute every unit price from one reference unit.

    Body (optional): {"reference_unit_id": int}; defaults to the largest unit.
    """
    payload = request.get_json(silent=True) or {}
    try:
        reference_unit_id = require_int(payload, "reference_unit_id", minimum=1, default=None)
        product = catalog_service.recalculate_unit_prices(product_id, reference_unit_id)
        return jsonify(product.to_dict()), 200
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to recalculate unit prices")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/unit-presets/<product_type>")
def unit_presets_route(product_type: str):
    try:
        return jsonify({"product_type": product_type, "units": catalog_service.default_units(product_type)}), 200
    except ValidationError as e:
        return jsonify(e.to_dict()), e.status_code
