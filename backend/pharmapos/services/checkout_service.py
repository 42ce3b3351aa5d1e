# Overview: Checkout engine; turns a cashier's cart into a sale and its stock deductions.

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import (
    ConcurrentStockConflict,
    EmptyCartError,
    InsufficientStockError,
    MissingCustomerForCreditError,
    NotFoundError,
    PosError,
    ValidationError,
)
from ..extensions import db
from ..models import Prescription, Product, Sale, SaleLine
from ..models.inventory import MOVEMENT_SALE
from ..time_utils import utcnow
from ..validation import normalize_payment_method
from .cart_service import CartSession, cart_sessions
from .concurrency import lock_for_update, run_with_retry, stock_locks
from .credit_service import open_credit_sale
from .document_service import next_document_number
from .prescription_service import mark_dispensed
from .stock_ledger_service import apply_movement_locked
"""
Checkout Invariants (authoritative)

State machine: EMPTY -> VALIDATED -> COMMITTED | REJECTED

- Validation needs no locks: non-empty cart, known payment method, customer
  identity for credit, discount within [0, subtotal], tax >= 0.
- Commit holds the stock lock of every product in the cart (ascending id)
  and runs in one DB transaction: re-read stock, re-check the aggregate base
  quantity per product, write the sale, one SALE movement per line.
- All-or-nothing: any failure rolls the whole transaction back, so no
  movement of a failed checkout is ever visible.
- The cart is only cleared after a successful commit; a rejected checkout
  leaves it exactly as it was.
"""

CHECKOUT_EMPTY = "EMPTY"
CHECKOUT_VALIDATED = "VALIDATED"
CHECKOUT_COMMITTED = "COMMITTED"
CHECKOUT_REJECTED = "REJECTED"


@dataclass
class CheckoutAttempt:
    cart: CartSession
    state: str = CHECKOUT_EMPTY
    payment_method: str | None = None
    sale: Sale | None = None
    error: Exception | None = None
    required: dict[int, int] = field(default_factory=dict)

    def validate(self) -> None:
        cart = self.cart
        if cart.is_empty:
            raise EmptyCartError()

        self.payment_method = normalize_payment_method(cart.payment_method)
        if self.payment_method == "CREDIT" and not (cart.customer_name and cart.customer_phone):
            raise MissingCustomerForCreditError()

        totals = cart.totals()
        if not 0 <= cart.discount_cents <= totals["subtotal_cents"]:
            raise ValidationError(
                "discount_cents must be between 0 and the subtotal",
                details={"discount_cents": cart.discount_cents, "subtotal_cents": totals["subtotal_cents"]},
            )
        if cart.tax_cents < 0:
            raise ValidationError("tax_cents must be >= 0")

        required: dict[int, int] = defaultdict(int)
        for line in cart.lines:
            if line.quantity < 1:
                raise ValidationError("Cart line quantity must be >= 1", details={"product_id": line.product_id})
            required[line.product_id] += line.base_quantity
        self.required = dict(required)
        self.state = CHECKOUT_VALIDATED

    def _load_products(self) -> dict[int, Product]:
        products = (
            lock_for_update(db.session.query(Product).filter(Product.id.in_(self.required)))
            .order_by(Product.id.asc())
            .all()
        )
        return {p.id: p for p in products}

    def commit(self) -> Sale:
        """One transactional attempt. Caller holds the stock locks."""
        cart = self.cart
        products = self._load_products()

        for product_id, base_quantity in sorted(self.required.items()):
            product = products.get(product_id)
            if product is None:
                raise NotFoundError("Product not found", details={"product_id": product_id})
            if product.stock_quantity < base_quantity:
                raise InsufficientStockError(
                    product_id,
                    available=product.stock_quantity,
                    requested=base_quantity,
                    message=f"Insufficient stock for {product.name}",
                )

        totals = cart.totals()
        now = utcnow()
        document_number = next_document_number(document_type="SALE", prefix="S")

        sale = Sale(
            document_number=document_number,
            subtotal_cents=totals["subtotal_cents"],
            discount_cents=totals["discount_cents"],
            tax_cents=totals["tax_cents"],
            total_cents=totals["total_cents"],
            payment_method=self.payment_method,
            is_credit=self.payment_method == "CREDIT",
            cashier_id=cart.cashier_id,
            cashier_name=cart.cashier_name,
            customer_name=cart.customer_name,
            customer_phone=cart.customer_phone,
            notes=cart.notes,
            prescription_id=cart.prescription_id,
            created_at=now,
        )
        db.session.add(sale)
        db.session.flush()

        for position, line in enumerate(cart.lines):
            try:
                movement = apply_movement_locked(
                    products[line.product_id],
                    -line.base_quantity,
                    MOVEMENT_SALE,
                    reason=f"Sale {document_number}",
                    reference_id=document_number,
                    actor_id=cart.cashier_id,
                    actor_name=cart.cashier_name,
                    occurred_at=now,
                )
            except InsufficientStockError as exc:
                raise ConcurrentStockConflict(
                    "Stock changed while committing; retry checkout",
                    details={**exc.details, "line_index": position},
                ) from exc

            db.session.add(SaleLine(
                sale_id=sale.id,
                position=position,
                product_id=line.product_id,
                product_name=line.product_name,
                unit_type=line.unit_type,
                unit_label=line.unit_label,
                unit_quantity=line.unit_quantity,
                quantity=line.quantity,
                base_quantity=line.base_quantity,
                unit_price_cents=line.unit_price_cents,
                line_total_cents=line.line_total_cents,
                cost_basis_cents=line.cost_basis_cents,
                stock_movement_id=movement.id,
            ))

        if sale.is_credit:
            open_credit_sale(sale)

        if cart.prescription_id is not None:
            prescription = db.session.get(Prescription, cart.prescription_id)
            if prescription is None:
                raise NotFoundError("Prescription not found", details={"prescription_id": cart.prescription_id})
            mark_dispensed(prescription, actor_id=cart.cashier_id)

        db.session.commit()
        return sale

    def reject(self, error: Exception) -> None:
        db.session.rollback()
        self.state = CHECKOUT_REJECTED
        self.error = error

    def run(self) -> Sale:
        cart = self.cart
        with cart.lock:
            try:
                self.validate()
                attempts = current_app.config.get("CHECKOUT_RETRY_ATTEMPTS", 3)
                with stock_locks.hold(self.required):
                    sale = run_with_retry(self.commit, attempts=attempts)
            except (StaleDataError, OperationalError) as exc:
                conflict = ConcurrentStockConflict(details={"cashier_id": cart.cashier_id})
                self.reject(conflict)
                current_app.logger.warning(
                    "Checkout rejected for cashier %s after retries: %s", cart.cashier_id, exc,
                )
                raise conflict from exc
            except PosError as exc:
                self.reject(exc)
                current_app.logger.info(
                    "Checkout rejected for cashier %s: %s %s",
                    cart.cashier_id, type(exc).__name__, exc.details,
                )
                raise
            except Exception as exc:
                self.reject(exc)
                raise

            self.sale = sale
            self.state = CHECKOUT_COMMITTED
            current_app.logger.info(
                "Checkout committed for cashier %s: sale %s total=%s method=%s lines=%s",
                cart.cashier_id, sale.document_number, sale.total_cents, sale.payment_method, len(cart.lines),
            )
            cart.clear()
            cart_sessions.evict(cart.cashier_id, cart=cart)

        return sale


def checkout(cart: CartSession) -> Sale:
    """Commit a cart as a sale. Raises a PosError subclass on rejection."""
    return CheckoutAttempt(cart).run()
