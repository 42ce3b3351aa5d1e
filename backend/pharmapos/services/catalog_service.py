"""
Unit catalog: products, their sellable units, and unit pricing.

UNIT MODEL:
- Stock is tracked in base units (the smallest thing counted: one tablet,
  one gram, one ml, one service).
- Every ProductUnit states how many base units one of it represents.
- Unit prices are independent. auto_calculate_prices() is a one-shot batch
  recompute from a chosen reference unit, not a live constraint.
"""
from __future__ import annotations

from typing import Sequence

from sqlalchemy import func

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Product, ProductUnit
from ..models.inventory import MOVEMENT_RESTOCK
from ..validation import UNIT_TYPES

# Unit presets per product type: (unit_type, label, base quantity)
UNIT_PRESETS: dict[str, list[tuple[str, str, int]]] = {
    "tablets": [
        ("TABLET", "Tablet", 1),
        ("STRIP", "Strip", 10),
        ("BOX", "Box", 100),
    ],
    "tablets_pair": [
        ("PAIR", "Pair (2 tablets)", 2),
        ("STRIP", "Strip", 10),
        ("BOX", "Box", 100),
    ],
    "syrup": [
        ("BOTTLE", "Bottle", 1),
        ("BOX", "Box (1 bottle)", 1),
    ],
    "liquid_bottle": [
        ("BOTTLE", "100ml Bottle", 100),
        ("BOTTLE", "200ml Bottle", 200),
        ("BOTTLE", "500ml Bottle", 500),
    ],
    "weight_based": [
        ("GRAM", "Per gram", 1),
        ("PACK", "50g Pack", 50),
        ("PACK", "100g Pack", 100),
    ],
    "individual": [
        ("PIECE", "Per piece", 1),
    ],
    "service": [
        ("SERVICE", "Per service", 1),
    ],
    "box_only": [
        ("BOX", "Box", 1),
    ],
    "custom": [
        ("UNIT", "Unit", 1),
    ],
}


def default_units(product_type: str) -> list[dict]:
    """Unit presets for a product type, priced at zero."""
    preset = UNIT_PRESETS.get(product_type)
    if preset is None:
        raise ValidationError(f"Unknown product_type: {product_type}")
    return [
        {"unit_type": unit_type, "label": label, "quantity": qty, "price_cents": 0}
        for unit_type, label, qty in preset
    ]


def resolve_unit(product: Product, unit_type: str, label: str | None = None) -> ProductUnit:
    """
    Find the product's unit of a given type.

    When a product has several units of one type (bottles by size) the label
    picks between them; without a label the first in position order wins.
    """
    wanted = (unit_type or "").strip().upper()
    for unit in product.units:
        if unit.unit_type != wanted:
            continue
        if label is None or unit.label == label:
            return unit
    raise NotFoundError(
        f"Product {product.id} has no {wanted} unit",
        details={"product_id": product.id, "unit_type": wanted, "label": label},
    )


def base_price(unit: ProductUnit) -> int:
    return unit.price_cents


def to_base_quantity(unit: ProductUnit, count: int) -> int:
    return unit.quantity * count


def _derive_price(reference_price_cents: int, reference_quantity: int, unit_quantity: int) -> int:
    # nearest-cent rounding (half-up)
    numerator = reference_price_cents * unit_quantity
    return (numerator + reference_quantity // 2) // reference_quantity


def auto_calculate_prices(
    units: Sequence[ProductUnit | dict],
    reference: ProductUnit | dict,
) -> list[int]:
    """
    Derive every unit's price from a reference unit's price per base unit.

    Returns the new prices in the order of ``units``. The reference unit's own
    price is returned untouched. Reapplying with the same reference yields the
    same prices; switching references changes all derived prices.
    """
    def _get(obj, key):
        return obj[key] if isinstance(obj, dict) else getattr(obj, key)

    ref_qty = _get(reference, "quantity")
    ref_price = _get(reference, "price_cents")
    if ref_qty is None or ref_qty <= 0:
        raise ValidationError("Reference unit quantity must be >= 1")
    if ref_price is None or ref_price < 0:
        raise ValidationError("Reference unit price must be >= 0")

    prices = []
    for unit in units:
        if unit is reference:
            prices.append(ref_price)
        else:
            prices.append(_derive_price(ref_price, ref_qty, _get(unit, "quantity")))
    return prices


def recalculate_unit_prices(product_id: int, reference_unit_id: int | None = None) -> Product:
    """
    Persist auto_calculate_prices() for one product.

    Default reference is the largest unit, since its price is usually the
    one set from the supplier invoice.

    A reference priced at 0 is refused. Prices of 0 are valid on their own,
    but deriving from one would overwrite every priced unit with 0.
    """
    product = get_product(product_id)
    if not product.units:
        raise ValidationError("Product has no units")

    if reference_unit_id is None:
        reference = max(product.units, key=lambda u: (u.quantity, -u.position))
    else:
        reference = next((u for u in product.units if u.id == reference_unit_id), None)
        if reference is None:
            raise NotFoundError(
                "Reference unit not found",
                details={"product_id": product_id, "unit_id": reference_unit_id},
            )

    if reference.price_cents <= 0:
        raise ValidationError("Reference unit must have a price before recalculating")

    for unit, price in zip(product.units, auto_calculate_prices(product.units, reference)):
        unit.price_cents = price

    db.session.commit()
    return product


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product not found", details={"product_id": product_id})
    return product


def list_products(
    *,
    category: str | None = None,
    search: str | None = None,
    active: bool | None = True,
    low_stock: bool = False,
) -> list[Product]:
    q = db.session.query(Product)
    if active is not None:
        q = q.filter(Product.is_active.is_(active))
    if category:
        q = q.filter(func.lower(Product.category) == category.strip().lower())
    if search:
        q = q.filter(func.lower(Product.name).contains(search.strip().lower()))
    if low_stock:
        q = q.filter(Product.stock_quantity <= Product.reorder_level)
    return q.order_by(Product.name.asc(), Product.id.asc()).all()


def create_product(
    *,
    patch: dict,
    units: list[dict] | None = None,
    opening_stock: int = 0,
    actor_id: str | None = None,
    actor_name: str | None = None,
) -> Product:
    """
    Create a product with its units.

    ``units`` must already be validated (validation.validate_units_payload);
    when omitted the product type's presets are used. Opening stock is
    recorded as a RESTOCK movement so the ledger stays the only writer of
    stock_quantity.
    """
    from .stock_ledger_service import apply_movement

    if opening_stock < 0:
        raise ValidationError("opening_stock must be >= 0")

    product_type = patch.get("product_type") or "tablets"
    units = units or default_units(product_type)

    product = Product(**{**patch, "product_type": product_type})
    for position, spec in enumerate(units):
        if spec["unit_type"] not in UNIT_TYPES:
            raise ValidationError(f"Unknown unit_type: {spec['unit_type']}")
        product.units.append(ProductUnit(position=position, **spec))

    db.session.add(product)
    db.session.commit()

    if opening_stock:
        apply_movement(
            product.id,
            opening_stock,
            MOVEMENT_RESTOCK,
            reason="Opening stock",
            actor_id=actor_id,
            actor_name=actor_name,
        )
        db.session.refresh(product)

    return product
