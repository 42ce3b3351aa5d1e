# Overview: Per-cashier in-memory carts and the app-owned store that holds them.

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field

from flask import current_app

from ..errors import InsufficientStockError, NotFoundError, ValidationError
from ..models.prescriptions import PRESCRIPTION_STATUS_PENDING
from ..validation import normalize_payment_method
from .catalog_service import get_product, resolve_unit, to_base_quantity
"""
Cart Session Rules (authoritative)

- A cart belongs to exactly one cashier id and is never merged with another.
- Lines keep insertion order; the receipt renders in that order.
- Stock checks here are optimistic: they compare this cashier's own reserved
  base units with the product's current stock. Other cashiers' carts are not
  visible; checkout re-checks against the ledger under lock.
- Every operation either succeeds completely or raises with the cart
  unchanged. Nothing in this module writes to the stock ledger.
"""


@dataclass
class CartLine:
    product_id: int
    product_name: str
    unit_type: str
    unit_label: str
    unit_quantity: int
    quantity: int
    unit_price_cents: int
    cost_basis_cents: int = 0

    @property
    def line_total_cents(self) -> int:
        return self.quantity * self.unit_price_cents

    @property
    def base_quantity(self) -> int:
        return self.quantity * self.unit_quantity

    def same_unit(self, product_id: int, unit_type: str, unit_label: str) -> bool:
        return (
            self.product_id == product_id
            and self.unit_type == unit_type
            and self.unit_label == unit_label
        )

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "unit_type": self.unit_type,
            "unit_label": self.unit_label,
            "unit_quantity": self.unit_quantity,
            "quantity": self.quantity,
            "base_quantity": self.base_quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "cost_basis_cents": self.cost_basis_cents,
        }


@dataclass
class CartSession:
    cashier_id: str
    cashier_name: str | None = None
    lines: list[CartLine] = field(default_factory=list)
    customer_name: str | None = None
    customer_phone: str | None = None
    payment_method: str = "CASH"
    discount_cents: int = 0
    tax_cents: int = 0
    notes: str | None = None
    prescription_id: int | None = None
    last_touched: float = field(default_factory=time.monotonic)
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    def touch(self) -> None:
        self.last_touched = time.monotonic()

    @property
    def is_empty(self) -> bool:
        return not self.lines

    def reserved_base_quantity(self, product_id: int) -> int:
        """Base units of a product already in this cart, across all its units."""
        return sum(line.base_quantity for line in self.lines if line.product_id == product_id)

    def _line(self, line_index: int) -> CartLine:
        if not 0 <= line_index < len(self.lines):
            raise NotFoundError(
                "Cart line not found",
                details={"line_index": line_index, "line_count": len(self.lines)},
            )
        return self.lines[line_index]

    def _check_stock(self, product, extra_base: int) -> None:
        reserved = self.reserved_base_quantity(product.id)
        if reserved + extra_base > product.stock_quantity:
            raise InsufficientStockError(
                product.id,
                available=product.stock_quantity,
                requested=reserved + extra_base,
                message=f"Only {product.stock_quantity} in stock for {product.name}",
            )

    def add_item(self, product_id: int, unit_type: str, label: str | None = None, quantity: int = 1) -> CartLine:
        """
        Add ``quantity`` of one unit of a product.

        Increments the existing line for the same unit, otherwise appends a
        new line priced at the unit's current price.
        """
        if quantity < 1:
            raise ValidationError("quantity must be >= 1")

        with self.lock:
            product = get_product(product_id)
            if not product.is_active:
                raise ValidationError(
                    f"{product.name} is not available for sale",
                    details={"product_id": product_id},
                )
            unit = resolve_unit(product, unit_type, label)
            self._check_stock(product, to_base_quantity(unit, quantity))

            for line in self.lines:
                if line.same_unit(product.id, unit.unit_type, unit.label):
                    line.quantity += quantity
                    self.touch()
                    return line

            line = CartLine(
                product_id=product.id,
                product_name=product.name,
                unit_type=unit.unit_type,
                unit_label=unit.label,
                unit_quantity=unit.quantity,
                quantity=quantity,
                unit_price_cents=unit.price_cents,
                cost_basis_cents=(product.cost_price_cents or 0) * unit.quantity,
            )
            self.lines.append(line)
            self.touch()
            return line

    def update_quantity(self, line_index: int, delta: int) -> CartLine | None:
        """
        Change a line's quantity by ``delta``. A result of zero or less removes
        the line and returns None.
        """
        with self.lock:
            line = self._line(line_index)
            new_quantity = line.quantity + delta
            if new_quantity <= 0:
                self.lines.pop(line_index)
                self.touch()
                return None

            if delta > 0:
                product = get_product(line.product_id)
                self._check_stock(product, line.unit_quantity * delta)

            line.quantity = new_quantity
            self.touch()
            return line

    def set_quantity(self, line_index: int, quantity: int) -> CartLine | None:
        with self.lock:
            line = self._line(line_index)
            return self.update_quantity(line_index, quantity - line.quantity)

    def remove_item(self, line_index: int) -> CartLine:
        with self.lock:
            self._line(line_index)
            line = self.lines.pop(line_index)
            self.touch()
            return line

    def clear(self) -> None:
        with self.lock:
            self.lines = []
            self.customer_name = None
            self.customer_phone = None
            self.payment_method = "CASH"
            self.discount_cents = 0
            self.tax_cents = 0
            self.notes = None
            self.prescription_id = None
            self.touch()

    def set_customer(self, name: str | None, phone: str | None) -> None:
        with self.lock:
            self.customer_name = (name or "").strip() or None
            self.customer_phone = (phone or "").strip() or None
            self.touch()

    def set_payment_method(self, method: str | None) -> None:
        with self.lock:
            self.payment_method = normalize_payment_method(method)
            self.touch()

    def set_adjustments(
        self,
        *,
        discount_cents: int | None = None,
        tax_cents: int | None = None,
        notes: str | None = None,
    ) -> None:
        """Discount and tax are pass-through amounts, checked again at checkout."""
        if discount_cents is not None and discount_cents < 0:
            raise ValidationError("discount_cents must be >= 0")
        if tax_cents is not None and tax_cents < 0:
            raise ValidationError("tax_cents must be >= 0")
        with self.lock:
            if discount_cents is not None:
                self.discount_cents = discount_cents
            if tax_cents is not None:
                self.tax_cents = tax_cents
            if notes is not None:
                self.notes = notes.strip() or None
            self.touch()

    def load_from_prescription(self, prescription_id: int) -> list:
        """
        Replace the cart with a prescription's resolved lines.

        Returns the resolver's warnings. When no item could be filled at all
        the cart is left as it was and a ValidationError carries the warnings.
        """
        from .prescription_service import resolve_prescription

        with self.lock:
            result = resolve_prescription(prescription_id)
            if result.status != PRESCRIPTION_STATUS_PENDING:
                raise ValidationError(
                    f"Prescription is {result.status.lower()}",
                    details={"prescription_id": prescription_id, "status": result.status},
                )
            if not result.items:
                raise ValidationError(
                    "No prescription items could be filled",
                    details={"warnings": [w.to_dict() for w in result.warnings]},
                )

            self.lines = [
                CartLine(
                    product_id=item.product_id,
                    product_name=item.product_name,
                    unit_type=item.unit_type,
                    unit_label=item.unit_label,
                    unit_quantity=item.unit_quantity,
                    quantity=item.quantity,
                    unit_price_cents=item.unit_price_cents,
                    cost_basis_cents=item.cost_basis_cents,
                )
                for item in result.items
            ]
            self.customer_name = result.patient_name
            self.customer_phone = result.patient_phone
            self.prescription_id = prescription_id
            self.touch()
            return result.warnings

    def totals(self) -> dict:
        subtotal = sum(line.line_total_cents for line in self.lines)
        return {
            "item_count": sum(line.quantity for line in self.lines),
            "subtotal_cents": subtotal,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": subtotal - self.discount_cents + self.tax_cents,
        }

    def to_dict(self) -> dict:
        return {
            "cashier_id": self.cashier_id,
            "cashier_name": self.cashier_name,
            "items": [line.to_dict() for line in self.lines],
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "payment_method": self.payment_method,
            "notes": self.notes,
            "prescription_id": self.prescription_id,
            **self.totals(),
        }


class CartSessionStore:
    """
    App-owned registry of live carts, keyed by cashier id.

    Carts are created lazily on first use and removed on checkout, explicit
    eviction, or when idle longer than CART_SESSION_TTL_SECONDS.
    """

    EXTENSION_KEY = "pharmapos.cart_sessions"

    def __init__(self, app=None):
        if app is not None:
            self.init_app(app)

    def init_app(self, app) -> None:
        app.extensions[self.EXTENSION_KEY] = {"guard": threading.Lock(), "sessions": {}}

    def _state(self) -> dict:
        return current_app.extensions[self.EXTENSION_KEY]

    def get(self, cashier_id: str) -> CartSession | None:
        state = self._state()
        with state["guard"]:
            return state["sessions"].get(cashier_id)

    def get_or_create(self, cashier_id: str, cashier_name: str | None = None) -> CartSession:
        if not cashier_id:
            raise ValidationError("cashier_id is required")
        state = self._state()
        with state["guard"]:
            cart = state["sessions"].get(cashier_id)
            if cart is None:
                cart = CartSession(cashier_id=cashier_id, cashier_name=cashier_name)
                state["sessions"][cashier_id] = cart
            elif cashier_name and cart.cashier_name != cashier_name:
                cart.cashier_name = cashier_name
            return cart

    def evict(self, cashier_id: str, *, cart: CartSession | None = None) -> bool:
        """
        Drop a cashier's cart. With `cart`, only that exact cart goes, and
        only while it is still empty.
        """
        state = self._state()
        with state["guard"]:
            current = state["sessions"].get(cashier_id)
            if current is None:
                return False
            if cart is not None and (current is not cart or not cart.is_empty):
                return False
            del state["sessions"][cashier_id]
            return True

    def evict_idle(self, ttl_seconds: float | None = None, *, now: float | None = None) -> int:
        """Drop carts untouched for longer than the TTL. Returns how many went."""
        if ttl_seconds is None:
            ttl_seconds = current_app.config.get("CART_SESSION_TTL_SECONDS", 8 * 60 * 60)
        now = time.monotonic() if now is None else now

        state = self._state()
        with state["guard"]:
            stale = [
                cashier_id
                for cashier_id, cart in state["sessions"].items()
                if now - cart.last_touched > ttl_seconds
            ]
            for cashier_id in stale:
                del state["sessions"][cashier_id]

        if stale:
            current_app.logger.info("Evicted %s idle cart(s)", len(stale))
        return len(stale)

    def count(self) -> int:
        state = self._state()
        with state["guard"]:
            return len(state["sessions"])


cart_sessions = CartSessionStore()
