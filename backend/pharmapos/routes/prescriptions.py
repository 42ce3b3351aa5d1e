# Overview: Flask API routes for prescriptions and their resolution.

# backend/pharmapos/routes/prescriptions.py
from flask import Blueprint, current_app, jsonify, request

from ..errors import PosError
from ..services import prescription_service

prescriptions_bp = Blueprint("prescriptions", __name__, url_prefix="/api/prescriptions")


@prescriptions_bp.post("")
def create_prescription_route():
    """
    Body: {"patient_name", "patient_phone", "doctor_name", "diagnosis", "notes",
           "items": [{"medicine", "dosage", "frequency", "duration", "instructions"}]}
    """
    payload = request.get_json(silent=True) or {}
    try:
        prescription = prescription_service.create_prescription(
            patient_name=payload.get("patient_name"),
            patient_phone=payload.get("patient_phone"),
            doctor_name=payload.get("doctor_name"),
            diagnosis=payload.get("diagnosis"),
            notes=payload.get("notes"),
            items=payload.get("items"),
            created_by_id=request.headers.get("X-Cashier-Id"),
        )
        return jsonify(prescription.to_dict()), 201
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create prescription")
        return jsonify({"error": "Internal server error"}), 500


@prescriptions_bp.get("")
def list_prescriptions_route():
    """Query params: status, search (patient name or phone)."""
    try:
        prescriptions = prescription_service.list_prescriptions(
            status=request.args.get("status"),
            search=request.args.get("search"),
        )
        return jsonify({"items": [p.to_dict() for p in prescriptions], "count": len(prescriptions)}), 200
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code


@prescriptions_bp.get("/<int:prescription_id>")
def get_prescription_route(prescription_id: int):
    try:
        return jsonify(prescription_service.get_prescription(prescription_id).to_dict()), 200
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code


@prescriptions_bp.get("/<int:prescription_id>/resolve")
def resolve_prescription_route(prescription_id: int):
    """Preview the cart lines and warnings a prescription resolves to. Read-only."""
    try:
        resolution = prescription_service.resolve_prescription(prescription_id)
        return jsonify(resolution.to_dict()), 200
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to resolve prescription")
        return jsonify({"error": "Internal server error"}), 500


@prescriptions_bp.patch("/<int:prescription_id>/status")
def update_status_route(prescription_id: int):
    """Body: {"status": "DISPENSED" | "CANCELLED"}"""
    payload = request.get_json(silent=True) or {}
    try:
        prescription = prescription_service.update_status(
            prescription_id,
            payload.get("status"),
            actor_id=request.headers.get("X-Cashier-Id"),
        )
        return jsonify(prescription.to_dict()), 200
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
