# Overview: Prescription records and their resolution into dispensable quantities.

from __future__ import annotations

import math
import re
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from flask import current_app
from sqlalchemy import or_

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Prescription, PrescriptionItem, Product
from ..models.prescriptions import (
    PRESCRIPTION_STATUS_CANCELLED,
    PRESCRIPTION_STATUS_DISPENSED,
    PRESCRIPTION_STATUS_PENDING,
    PRESCRIPTION_STATUSES,
)
from ..time_utils import utcnow
"""
Prescription Resolution (authoritative)

required base units = dosage x frequency per day x duration in days

- Each free-text field goes through a small ordered rule table; the first
  rule that matches wins. Parsers are pure and report whether a real rule
  matched or a fallback was used.
- Medicine names match catalog products by case-insensitive containment in
  either direction. The first active product in id order wins.
- Quantities are clamped to stock left after earlier items of the same
  prescription. A clamp always produces a warning; nothing is dropped
  silently and one bad item never blocks the rest.
"""

WARNING_NOT_FOUND = "NOT_FOUND"
WARNING_OUT_OF_STOCK = "OUT_OF_STOCK"
WARNING_PARTIAL_FULFILLMENT = "PARTIAL_FULFILLMENT"
WARNING_UNPARSED_SCHEDULE = "UNPARSED_SCHEDULE"
WARNING_ZERO_QUANTITY = "ZERO_QUANTITY"

_FIRST_INT = re.compile(r"(\d+)")


@dataclass(frozen=True)
class ParsedQuantity:
    value: int
    rule: str
    confident: bool = True


# Precedence matters: multi-dose phrases are checked before "daily", so
# "Three times daily" is 3 and "once daily" is 1.
FREQUENCY_RULES: tuple[tuple[str, re.Pattern, int], ...] = (
    ("four_times", re.compile(r"\b(four|4)\s*times\b|\bq\.?d\.?s\b|\bqid\b"), 4),
    ("three_times", re.compile(r"\b(three|3)\s*times\b|\bthrice\b|\bt\.?d\.?s\b|\btid\b"), 3),
    ("twice", re.compile(r"\btwice\b|\b(two|2)\s*times\b|\bb\.?d\b|\bbid\b"), 2),
    ("every_6_hours", re.compile(r"\bevery\s*6\s*h(ou)?rs?\b|\b6\s*hourly\b"), 4),
    ("every_8_hours", re.compile(r"\bevery\s*8\s*h(ou)?rs?\b|\b8\s*hourly\b"), 3),
    ("every_12_hours", re.compile(r"\bevery\s*12\s*h(ou)?rs?\b|\b12\s*hourly\b"), 2),
    ("once", re.compile(r"\bonce\b|\b(one|1)\s*times?\b|\bdaily\b|\bnocte\b|\bod\b"), 1),
)

DURATION_MULTIPLIERS: tuple[tuple[str, int], ...] = (
    ("week", 7),
    ("month", 30),
)


def parse_dosage(text: str | None) -> ParsedQuantity:
    """First integer in the dosage ("2 tablets" -> 2); 1 when there is none."""
    match = _FIRST_INT.search(text or "")
    if match and int(match.group(1)) > 0:
        return ParsedQuantity(int(match.group(1)), "first_integer")
    return ParsedQuantity(1, "default", confident=not (text or "").strip())


def parse_frequency(text: str | None) -> ParsedQuantity:
    """Doses per day."""
    lower = (text or "").strip().lower()
    for name, pattern, per_day in FREQUENCY_RULES:
        if pattern.search(lower):
            return ParsedQuantity(per_day, name)

    match = _FIRST_INT.search(lower)
    if match and int(match.group(1)) > 0:
        return ParsedQuantity(int(match.group(1)), "first_integer", confident=False)
    return ParsedQuantity(1, "default", confident=False)


def parse_duration(text: str | None) -> ParsedQuantity:
    """Days of treatment. Weeks count 7 days, months 30."""
    lower = (text or "").strip().lower()
    match = _FIRST_INT.search(lower)
    count = int(match.group(1)) if match else 1
    if count <= 0:
        return ParsedQuantity(1, "default", confident=False)

    for word, days in DURATION_MULTIPLIERS:
        if word in lower:
            return ParsedQuantity(count * days, word)

    if match:
        return ParsedQuantity(count, "days")
    return ParsedQuantity(1, "default", confident=False)


@dataclass(frozen=True)
class Schedule:
    dosage: ParsedQuantity
    frequency: ParsedQuantity
    duration: ParsedQuantity

    @property
    def required_quantity(self) -> int:
        return self.dosage.value * self.frequency.value * self.duration.value

    @property
    def unparsed_fields(self) -> list[str]:
        return [
            name
            for name, parsed in (("dosage", self.dosage), ("frequency", self.frequency), ("duration", self.duration))
            if not parsed.confident
        ]


def parse_schedule(dosage: str | None, frequency: str | None, duration: str | None) -> Schedule:
    return Schedule(parse_dosage(dosage), parse_frequency(frequency), parse_duration(duration))


def match_product(medicine: str | None, products: Iterable[Product]) -> Product | None:
    """First product whose name contains the medicine name or is contained in it."""
    wanted = (medicine or "").strip().lower()
    if not wanted:
        return None
    for product in products:
        name = (product.name or "").strip().lower()
        if not name:
            continue
        if wanted in name or name in wanted:
            return product
    return None


@dataclass(frozen=True)
class ResolutionWarning:
    kind: str
    item_index: int
    medicine: str
    message: str
    product_id: int | None = None
    required_quantity: int | None = None
    fulfilled_quantity: int | None = None

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "item_index": self.item_index,
            "medicine": self.medicine,
            "message": self.message,
            "product_id": self.product_id,
            "required_quantity": self.required_quantity,
            "fulfilled_quantity": self.fulfilled_quantity,
        }


@dataclass(frozen=True)
class ResolvedItem:
    """One prescription item matched to a product unit and a unit count."""
    item_index: int
    medicine: str
    product_id: int
    product_name: str
    unit_type: str
    unit_label: str
    unit_quantity: int
    quantity: int
    unit_price_cents: int
    cost_basis_cents: int
    required_quantity: int

    @property
    def base_quantity(self) -> int:
        return self.quantity * self.unit_quantity

    def to_dict(self) -> dict:
        return {
            "item_index": self.item_index,
            "medicine": self.medicine,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "unit_type": self.unit_type,
            "unit_label": self.unit_label,
            "unit_quantity": self.unit_quantity,
            "quantity": self.quantity,
            "base_quantity": self.base_quantity,
            "required_quantity": self.required_quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.quantity * self.unit_price_cents,
        }


@dataclass
class Resolution:
    prescription_id: int | None
    patient_name: str | None
    patient_phone: str | None
    status: str = PRESCRIPTION_STATUS_PENDING
    items: list[ResolvedItem] = field(default_factory=list)
    warnings: list[ResolutionWarning] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "prescription_id": self.prescription_id,
            "patient_name": self.patient_name,
            "patient_phone": self.patient_phone,
            "status": self.status,
            "items": [item.to_dict() for item in self.items],
            "warnings": [w.to_dict() for w in self.warnings],
        }


def resolve_items(items: Sequence[PrescriptionItem], products: Sequence[Product]) -> tuple[list[ResolvedItem], list[ResolutionWarning]]:
    """
    Match and size every item against the given products.

    Sells in each product's base (smallest) unit. Stock already taken by
    earlier items of the same prescription is not offered again.
    """
    resolved: list[ResolvedItem] = []
    warnings: list[ResolutionWarning] = []
    taken: dict[int, int] = defaultdict(int)

    for index, item in enumerate(items):
        medicine = (item.medicine or "").strip()
        schedule = parse_schedule(item.dosage, item.frequency, item.duration)
        required = schedule.required_quantity

        if schedule.unparsed_fields:
            warnings.append(ResolutionWarning(
                kind=WARNING_UNPARSED_SCHEDULE,
                item_index=index,
                medicine=medicine,
                message=f"Could not read {', '.join(schedule.unparsed_fields)} for {medicine or 'item'}; defaults used",
                required_quantity=required,
            ))

        if required <= 0:
            warnings.append(ResolutionWarning(
                kind=WARNING_ZERO_QUANTITY,
                item_index=index,
                medicine=medicine,
                message=f"Schedule for {medicine or 'item'} needs no units; item skipped",
                required_quantity=required,
            ))
            continue

        product = match_product(medicine, products)
        unit = product.base_unit if product is not None else None
        if product is None or unit is None:
            warnings.append(ResolutionWarning(
                kind=WARNING_NOT_FOUND,
                item_index=index,
                medicine=medicine,
                message=f"No product matches {medicine!r}" if medicine else "Item has no medicine name",
                required_quantity=required,
            ))
            continue

        available = product.stock_quantity - taken[product.id]
        max_units = max(available, 0) // unit.quantity
        if max_units == 0:
            warnings.append(ResolutionWarning(
                kind=WARNING_OUT_OF_STOCK,
                item_index=index,
                medicine=medicine,
                message=f"{product.name} is out of stock",
                product_id=product.id,
                required_quantity=required,
                fulfilled_quantity=0,
            ))
            continue

        wanted_units = math.ceil(required / unit.quantity)
        units = min(wanted_units, max_units)
        fulfilled = units * unit.quantity
        if fulfilled < required:
            warnings.append(ResolutionWarning(
                kind=WARNING_PARTIAL_FULFILLMENT,
                item_index=index,
                medicine=medicine,
                message=f"Only {fulfilled} of {required} available for {product.name}",
                product_id=product.id,
                required_quantity=required,
                fulfilled_quantity=fulfilled,
            ))

        taken[product.id] += fulfilled
        resolved.append(ResolvedItem(
            item_index=index,
            medicine=medicine,
            product_id=product.id,
            product_name=product.name,
            unit_type=unit.unit_type,
            unit_label=unit.label,
            unit_quantity=unit.quantity,
            quantity=units,
            unit_price_cents=unit.price_cents,
            cost_basis_cents=(product.cost_price_cents or 0) * unit.quantity,
            required_quantity=required,
        ))

    return resolved, warnings


def _current_products() -> list[Product]:
    # Fresh read every time; stock may have moved since the last resolution.
    return (
        db.session.query(Product)
        .filter(Product.is_active.is_(True))
        .order_by(Product.id.asc())
        .populate_existing()
        .all()
    )


def resolve_prescription(prescription_id: int) -> Resolution:
    prescription = get_prescription(prescription_id)
    items, warnings = resolve_items(prescription.items, _current_products())

    if warnings:
        current_app.logger.info(
            "Prescription %s resolved with %s warning(s): %s",
            prescription_id,
            len(warnings),
            ", ".join(sorted({w.kind for w in warnings})),
        )

    return Resolution(
        prescription_id=prescription.id,
        patient_name=prescription.patient_name,
        patient_phone=prescription.patient_phone,
        status=prescription.status,
        items=items,
        warnings=warnings,
    )


def get_prescription(prescription_id: int) -> Prescription:
    prescription = db.session.get(Prescription, prescription_id)
    if prescription is None:
        raise NotFoundError("Prescription not found", details={"prescription_id": prescription_id})
    return prescription


def list_prescriptions(*, status: str | None = None, search: str | None = None, limit: int = 100) -> list[Prescription]:
    q = db.session.query(Prescription)
    if status:
        status = status.strip().upper()
        if status not in PRESCRIPTION_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(PRESCRIPTION_STATUSES)}")
        q = q.filter(Prescription.status == status)
    if search:
        term = f"%{search.strip()}%"
        q = q.filter(
            or_(
                Prescription.patient_name.ilike(term),
                Prescription.patient_phone.ilike(term),
            )
        )
    return q.order_by(Prescription.created_at.desc(), Prescription.id.desc()).limit(limit).all()


_ITEM_FIELDS = ("medicine", "dosage", "frequency", "duration", "instructions")


def create_prescription(
    *,
    patient_name: str,
    items: list[dict],
    patient_phone: str | None = None,
    doctor_name: str | None = None,
    diagnosis: str | None = None,
    notes: str | None = None,
    created_by_id: str | None = None,
) -> Prescription:
    patient_name = (patient_name or "").strip()
    if not patient_name:
        raise ValidationError("patient_name is required")
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list")

    prescription = Prescription(
        patient_name=patient_name,
        patient_phone=(patient_phone or "").strip() or None,
        doctor_name=(doctor_name or "").strip() or None,
        diagnosis=(diagnosis or "").strip() or None,
        notes=notes,
        status=PRESCRIPTION_STATUS_PENDING,
        created_by_id=created_by_id,
    )
    for position, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{position}] must be an object")
        values = {k: (str(raw.get(k) or "").strip() or None) for k in _ITEM_FIELDS}
        if not values["medicine"]:
            raise ValidationError(f"items[{position}].medicine is required")
        prescription.items.append(PrescriptionItem(position=position, **values))

    db.session.add(prescription)
    db.session.commit()
    return prescription


# Only pending prescriptions can move; dispensed and cancelled are final.
_ALLOWED_TRANSITIONS = {
    PRESCRIPTION_STATUS_PENDING: {PRESCRIPTION_STATUS_DISPENSED, PRESCRIPTION_STATUS_CANCELLED},
}


def mark_dispensed(prescription: Prescription, *, actor_id: str | None = None) -> None:
    """Flag a prescription dispensed inside the caller's transaction."""
    _transition(prescription, PRESCRIPTION_STATUS_DISPENSED)
    prescription.dispensed_by_id = actor_id
    prescription.dispensed_at = utcnow()


def _transition(prescription: Prescription, new_status: str) -> None:
    if new_status not in _ALLOWED_TRANSITIONS.get(prescription.status, set()):
        raise ValidationError(
            f"Cannot change prescription from {prescription.status} to {new_status}",
            details={"prescription_id": prescription.id, "status": prescription.status},
        )
    prescription.status = new_status


def update_status(prescription_id: int, status: str, *, actor_id: str | None = None) -> Prescription:
    new_status = (status or "").strip().upper()
    if new_status not in PRESCRIPTION_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(PRESCRIPTION_STATUSES)}")

    prescription = get_prescription(prescription_id)
    if new_status == PRESCRIPTION_STATUS_DISPENSED:
        mark_dispensed(prescription, actor_id=actor_id)
    else:
        _transition(prescription, new_status)
    db.session.commit()
    return prescription
