from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

PRESCRIPTION_STATUS_PENDING = "PENDING"
PRESCRIPTION_STATUS_DISPENSED = "DISPENSED"
PRESCRIPTION_STATUS_CANCELLED = "CANCELLED"

PRESCRIPTION_STATUSES = (
    PRESCRIPTION_STATUS_PENDING,
    PRESCRIPTION_STATUS_DISPENSED,
    PRESCRIPTION_STATUS_CANCELLED,
)


class Prescription(db.Model):
    """
    Prescription written for a patient.

    Items are free text (medicine name, dosage, frequency, duration). They
    only affect stock once resolved into cart lines and checked out.
    """
    __tablename__ = "prescriptions"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)

    patient_name = db.Column(db.String(128), nullable=False)
    patient_phone = db.Column(db.String(32), nullable=True, index=True)
    doctor_name = db.Column(db.String(128), nullable=True)
    diagnosis = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=PRESCRIPTION_STATUS_PENDING, index=True)

    created_by_id = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    dispensed_by_id = db.Column(db.String(64), nullable=True)
    dispensed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    items = db.relationship(
        "PrescriptionItem",
        back_populates="prescription",
        order_by="PrescriptionItem.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "patient_name": self.patient_name,
            "patient_phone": self.patient_phone,
            "doctor_name": self.doctor_name,
            "diagnosis": self.diagnosis,
            "notes": self.notes,
            "status": self.status,
            "created_by_id": self.created_by_id,
            "created_at": to_utc_z(self.created_at),
            "dispensed_by_id": self.dispensed_by_id,
            "dispensed_at": to_utc_z(self.dispensed_at),
            "items": [item.to_dict() for item in self.items],
        }


class PrescriptionItem(db.Model):
    __tablename__ = "prescription_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    prescription_id = db.Column(db.Integer, db.ForeignKey("prescriptions.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    medicine = db.Column(db.String(255), nullable=False)
    dosage = db.Column(db.String(128), nullable=True)
    frequency = db.Column(db.String(128), nullable=True)
    duration = db.Column(db.String(128), nullable=True)
    instructions = db.Column(db.String(255), nullable=True)

    prescription = db.relationship("Prescription", back_populates="items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "medicine": self.medicine,
            "dosage": self.dosage,
            "frequency": self.frequency,
            "duration": self.duration,
            "instructions": self.instructions,
        }
