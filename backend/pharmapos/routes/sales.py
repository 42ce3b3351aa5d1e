# Overview: Flask API routes for completed sales and credit settlement.

# backend/pharmapos/routes/sales.py
"""Sales and credit settlement routes."""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_cashier
from ..errors import PosError, ValidationError
from ..services import credit_service, reporting_service
from ..time_utils import parse_iso_datetime, resolve_period
from ..validation import normalize_payment_method, require_int

sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _optional_bool(value: str | None) -> bool | None:
    if value is None or value == "":
        return None
    return value.strip().lower() in ("1", "true", "yes", "on")


@sales_bp.get("")
def list_sales_route():
    """
    List sales, newest first.

    Query params: start, end (ISO-8601), payment_method, cashier_id,
    customer_phone, is_credit, limit (max 1000).
    """
    try:
        sales = reporting_service.list_sales(
            start=parse_iso_datetime(request.args.get("start")),
            end=parse_iso_datetime(request.args.get("end")),
            payment_method=request.args.get("payment_method"),
            cashier_id=request.args.get("cashier_id"),
            customer_phone=request.args.get("customer_phone"),
            is_credit=_optional_bool(request.args.get("is_credit")),
            limit=min(request.args.get("limit", 200, type=int), 1000),
        )
        return jsonify({"items": [s.to_dict(include_lines=False) for s in sales], "count": len(sales)}), 200
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except ValueError as e:
        return jsonify({"error": str(e)}), 400


@sales_bp.get("/summary")
def sales_summary_route():
    """Period totals; credit sales count as paid only once settled."""
    try:
        start, end = resolve_period(request.args.get("start"), request.args.get("end"))
        return jsonify(reporting_service.sales_summary(start=start, end=end)), 200
    except ValueError as e:
        return jsonify({"error": str(e)}), 400


@sales_bp.get("/<int:sale_id>")
def get_sale_route(sale_id: int):
    try:
        sale = reporting_service.get_sale(sale_id)
        return jsonify({"sale": sale.to_dict()}), 200
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code


@sales_bp.get("/credit")
def list_credit_sales_route():
    """Query params: status (PENDING|PARTIAL|PAID), phone, search."""
    try:
        credits = credit_service.list_credit_sales(
            status=request.args.get("status"),
            phone=request.args.get("phone"),
            search=request.args.get("search"),
        )
        return jsonify({"items": [c.to_dict() for c in credits], "count": len(credits)}), 200
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code


@sales_bp.get("/credit/summary")
def credit_summary_route():
    return jsonify(credit_service.credit_summary()), 200


@sales_bp.get("/credit/<int:credit_sale_id>")
def get_credit_sale_route(credit_sale_id: int):
    try:
        credit = credit_service.get_credit_sale(credit_sale_id)
        return jsonify(credit.to_dict()), 200
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code


@sales_bp.post("/credit/<int:credit_sale_id>/payments")
@require_cashier
def record_credit_payment_route(credit_sale_id: int):
    """
    Record a payment against a credit sale.

    Body: {"amount_cents": int, "payment_method": str (default CASH), "notes": str}
    """
    payload = request.get_json(silent=True) or {}
    try:
        amount = require_int(payload, "amount_cents", minimum=1)
        method = normalize_payment_method(payload.get("payment_method"))
        if method == "CREDIT":
            raise ValidationError("A credit balance cannot be settled on credit")

        credit = credit_service.record_payment(
            credit_sale_id,
            amount,
            payment_method=method,
            received_by_id=g.cashier_id,
            received_by_name=g.cashier_name,
            notes=(str(payload.get("notes") or "").strip() or None),
        )
        return jsonify(credit.to_dict()), 201
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record credit payment")
        return jsonify({"error": "Internal server error"}), 500
