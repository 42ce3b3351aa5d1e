# Overview: Flask API routes for the stock ledger; parses input and returns JSON responses.

# backend/pharmapos/routes/stock.py
"""
Stock ledger routes.

Manual movements (restock, loss, return, correction) are recorded here with
the caller's cashier identity as actor. SALE movements only come from
checkout.
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_cashier
from ..errors import PosError, ValidationError
from ..models.inventory import (
    MOVEMENT_CORRECTION,
    MOVEMENT_LOSS,
    MOVEMENT_RESTOCK,
    MOVEMENT_RETURN,
)
from ..services import stock_ledger_service
from ..time_utils import parse_iso_datetime, resolve_period
from ..validation import require_int

stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")

# Sign applied to the positive quantity sent by the client
_MANUAL_KINDS = {
    MOVEMENT_RESTOCK: 1,
    MOVEMENT_RETURN: 1,
    MOVEMENT_LOSS: -1,
}


@stock_bp.post("/movements")
@require_cashier
def record_movement_route():
    """
    Record a manual stock movement.

    Body:
    - product_id: int
    - kind: restock | return | loss (quantity is a positive base-unit count)
            correction (quantity is the absolute new stock level)
    - quantity: int
    - reason: str (optional; required for loss and correction)
    """
    payload = request.get_json(silent=True) or {}
    try:
        product_id = require_int(payload, "product_id", minimum=1)
        kind = str(payload.get("kind") or "").strip().upper()
        reason = (str(payload.get("reason") or "").strip() or None)

        if kind in (MOVEMENT_LOSS, MOVEMENT_CORRECTION) and not reason:
            raise ValidationError(f"reason is required for {kind.lower()} movements")

        if kind == MOVEMENT_CORRECTION:
            quantity = require_int(payload, "quantity", minimum=0)
            new_stock = stock_ledger_service.set_stock_level(
                product_id,
                quantity,
                reason,
                actor_id=g.cashier_id,
                actor_name=g.cashier_name,
            )
        elif kind in _MANUAL_KINDS:
            quantity = require_int(payload, "quantity", minimum=1)
            new_stock = stock_ledger_service.apply_movement(
                product_id,
                _MANUAL_KINDS[kind] * quantity,
                kind,
                reason,
                actor_id=g.cashier_id,
                actor_name=g.cashier_name,
                reference_id=(str(payload.get("reference_id") or "").strip() or None),
            )
        else:
            raise ValidationError("kind must be one of: restock, return, loss, correction")

        return jsonify({"product_id": product_id, "kind": kind, "stock_quantity": new_stock}), 201
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record stock movement")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.get("/movements")
def list_movements_route():
    """
    List stock movements, newest first.

    Query params: product_id, kind, reference_id, start, end (ISO-8601), limit (max 1000).
    """
    try:
        limit = min(request.args.get("limit", 200, type=int), 1000)
        movements = stock_ledger_service.list_movements(
            product_id=request.args.get("product_id", type=int),
            kind=request.args.get("kind"),
            reference_id=request.args.get("reference_id"),
            start=parse_iso_datetime(request.args.get("start")),
            end=parse_iso_datetime(request.args.get("end")),
            limit=limit,
        )
        return jsonify({"items": [m.to_dict() for m in movements], "count": len(movements)}), 200
    except ValueError as e:
        return jsonify({"error": str(e)}), 400


@stock_bp.get("/summary")
def stock_summary_route():
    """Additions, sales, losses and net change over a period (default: this month)."""
    try:
        start, end = resolve_period(request.args.get("start"), request.args.get("end"))
        summary = stock_ledger_service.movement_summary(
            start=start,
            end=end,
            product_id=request.args.get("product_id", type=int),
        )
        return jsonify({"start": start.isoformat() + "Z", "end": end.isoformat() + "Z", **summary}), 200
    except ValueError as e:
        return jsonify({"error": str(e)}), 400


@stock_bp.get("/verify")
def verify_ledger_route():
    """Check every product's cached stock against its movement history."""
    mismatches = stock_ledger_service.verify_ledger(request.args.get("product_id", type=int))
    if mismatches:
        current_app.logger.warning("Stock ledger mismatch for %s product(s)", len(mismatches))
    return jsonify({"consistent": not mismatches, "mismatches": mismatches}), 200
