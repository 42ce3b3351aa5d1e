from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError

# Maximum price: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999

PRODUCT_TYPES = {
    "tablets",
    "tablets_pair",
    "syrup",
    "liquid_bottle",
    "weight_based",
    "individual",
    "service",
    "box_only",
    "custom",
}

UNIT_TYPES = {
    "TABLET",
    "PAIR",
    "STRIP",
    "BOX",
    "BOTTLE",
    "PACK",
    "GRAM",
    "ML",
    "PIECE",
    "SERVICE",
    "SESSION",
    "INJECTION",
    "UNIT",
    "CUSTOM",
}

PAYMENT_METHODS = {"CASH", "MPESA", "CARD", "CREDIT"}


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_int(value: Any, field: str) -> int:
    """Strict integer coercion: rejects floats, bools, decimals and scientific notation."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def require_int(payload: dict, field: str, *, minimum: int | None = None, default: Any = ...) -> int:
    if field not in payload or payload[field] is None:
        if default is not ...:
            return default
        raise ValidationError(f"{field} is required")
    value = coerce_int(payload[field], field)
    if minimum is not None and value < minimum:
        raise ValidationError(f"{field} must be >= {minimum}")
    return value


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return coerce_int(value, col.key)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def _check_price(value: int, field: str) -> None:
    if value < 0:
        raise ValidationError(f"{field} must be >= 0")
    if value > MAX_PRICE_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_PRICE_CENTS} ({MAX_PRICE_CENTS / 100:,.2f})")


def enforce_rules_product(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    if patch.get("cost_price_cents") is not None:
        _check_price(patch["cost_price_cents"], "cost_price_cents")

    if patch.get("reorder_level") is not None and patch["reorder_level"] < 0:
        raise ValidationError("reorder_level must be >= 0")

    if "product_type" in patch and patch["product_type"] not in PRODUCT_TYPES:
        raise ValidationError(
            f"product_type must be one of: {', '.join(sorted(PRODUCT_TYPES))}"
        )


def validate_units_payload(raw_units: Any) -> list[dict]:
    """
    Validate the list of sellable units sent with a product.

    Each entry needs unit_type, quantity (>= 1 base units) and price_cents;
    label defaults to the capitalized unit type.
    """
    if not isinstance(raw_units, list) or not raw_units:
        raise ValidationError("units must be a non-empty list")

    cleaned = []
    seen = set()
    for i, raw in enumerate(raw_units):
        if not isinstance(raw, dict):
            raise ValidationError(f"units[{i}] must be an object")

        unit_type = str(raw.get("unit_type") or "").strip().upper()
        if unit_type not in UNIT_TYPES:
            raise ValidationError(f"units[{i}].unit_type must be one of: {', '.join(sorted(UNIT_TYPES))}")

        quantity = require_int(raw, "quantity", minimum=1)
        price_cents = require_int(raw, "price_cents")
        _check_price(price_cents, f"units[{i}].price_cents")

        label = str(raw.get("label") or unit_type.capitalize()).strip()[:64]
        key = (unit_type, label)
        if key in seen:
            raise ValidationError(f"Duplicate unit {unit_type} / {label}")
        seen.add(key)

        cleaned.append({
            "unit_type": unit_type,
            "label": label,
            "quantity": quantity,
            "price_cents": price_cents,
        })
    return cleaned


def normalize_payment_method(value: Any) -> str:
    method = str(value or "CASH").strip().upper()
    if method not in PAYMENT_METHODS:
        raise ValidationError(f"payment_method must be one of: {', '.join(sorted(PAYMENT_METHODS))}")
    return method
