# Overview: Flask API routes for reports; parses input and returns JSON responses.

# backend/pharmapos/routes/reports.py
from flask import Blueprint, current_app, jsonify, request

from ..errors import ValidationError
from ..services import audit_service
from ..time_utils import resolve_period
from ..validation import coerce_int

reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


def _parse_counts(raw) -> dict[int, int]:
    """
    Accept counts as {"<product_id>": qty} or [{"product_id": id, "counted": qty}].
    """
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return {coerce_int(k, "product_id"): coerce_int(v, "counted") for k, v in raw.items()}
    if isinstance(raw, list):
        counts = {}
        for i, entry in enumerate(raw):
            if not isinstance(entry, dict):
                raise ValidationError(f"counts[{i}] must be an object")
            counts[coerce_int(entry.get("product_id"), "product_id")] = coerce_int(entry.get("counted"), "counted")
        return counts
    raise ValidationError("counts must be an object or a list")


@reports_bp.route("/stock-audit", methods=["GET", "POST"])
def stock_audit_route():
    """
    Stock audit for a period (default: current month).

    GET takes start/end as query params. POST takes a JSON body with start,
    end and an optional physical "counts" snapshot to reconcile against.
    """
    payload = request.get_json(silent=True) if request.method == "POST" else None
    payload = payload or {}
    try:
        start, end = resolve_period(
            payload.get("start") or request.args.get("start"),
            payload.get("end") or request.args.get("end"),
        )
        counts = _parse_counts(payload.get("counts"))
        summary = audit_service.build_audit_report(start, end, counts)
        return jsonify(summary.to_dict()), 200
    except ValidationError as e:
        return jsonify(e.to_dict()), e.status_code
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to build stock audit")
        return jsonify({"error": "Internal server error"}), 500
