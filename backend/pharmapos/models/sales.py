from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Sale(db.Model):
    """
    Completed sale (immutable).

    Created only by the checkout engine, in the same DB transaction as the
    SALE stock movements it produced. Totals are computed once:
    total = subtotal - discount + tax.

    CREDIT: is_credit sales carry a CreditSale record and stay out of
    paid-revenue aggregates until that record is settled.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("document_number", name="uq_sales_docnum"),
        db.Index("ix_sales_created_method", "created_at", "payment_method"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable document number (e.g., "S-000123")
    document_number = db.Column(db.String(64), nullable=False)

    subtotal_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    payment_method = db.Column(db.String(16), nullable=False, index=True)
    is_credit = db.Column(db.Boolean, nullable=False, default=False, index=True)

    cashier_id = db.Column(db.String(64), nullable=False, index=True)
    cashier_name = db.Column(db.String(128), nullable=True)

    customer_name = db.Column(db.String(128), nullable=True)
    customer_phone = db.Column(db.String(32), nullable=True, index=True)
    notes = db.Column(db.String(255), nullable=True)

    prescription_id = db.Column(db.Integer, db.ForeignKey("prescriptions.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    lines = db.relationship(
        "SaleLine",
        back_populates="sale",
        order_by="SaleLine.position",
        lazy="selectin",
    )

    @property
    def credit_sale_id(self) -> int | None:
        return self.credit.id if self.credit is not None else None

    @property
    def cost_cents(self) -> int:
        return sum(line.cost_basis_cents * line.quantity for line in self.lines)

    @property
    def profit_cents(self) -> int:
        return self.subtotal_cents - self.cost_cents - self.discount_cents

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "document_number": self.document_number,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "payment_method": self.payment_method,
            "is_credit": self.is_credit,
            "credit_sale_id": self.credit_sale_id,
            "cashier_id": self.cashier_id,
            "cashier_name": self.cashier_name,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "notes": self.notes,
            "prescription_id": self.prescription_id,
            "profit_cents": self.profit_cents,
            "created_at": to_utc_z(self.created_at),
        }
        if include_lines:
            data["items"] = [line.to_dict() for line in self.lines]
        return data


class SaleLine(db.Model):
    """Frozen copy of a cart line, linked to the stock movement it produced."""
    __tablename__ = "sale_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    product_name = db.Column(db.String(255), nullable=False)

    unit_type = db.Column(db.String(16), nullable=False)
    unit_label = db.Column(db.String(64), nullable=False)
    unit_quantity = db.Column(db.Integer, nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    base_quantity = db.Column(db.Integer, nullable=False)

    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)
    # Cost of one sale unit at checkout (base cost x unit quantity)
    cost_basis_cents = db.Column(db.Integer, nullable=False, default=0)

    stock_movement_id = db.Column(db.Integer, db.ForeignKey("stock_movements.id"), nullable=True)

    sale = db.relationship("Sale", back_populates="lines")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "position": self.position,
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
            "stock_movement_id": self.stock_movement_id,
        }


class CreditSale(db.Model):
    """
    Deferred-settlement record for a credit sale.

    STATUS: PENDING (nothing paid) -> PARTIAL -> PAID (balance 0).
    Payments are appended as CreditPayment rows; paid/balance are running
    totals kept in step with them.
    """
    __tablename__ = "credit_sales"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, unique=True)

    customer_name = db.Column(db.String(128), nullable=False)
    customer_phone = db.Column(db.String(32), nullable=False, index=True)

    total_cents = db.Column(db.Integer, nullable=False)
    paid_cents = db.Column(db.Integer, nullable=False, default=0)
    balance_cents = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)
    due_date = db.Column(db.Date, nullable=True)
    notes = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    settled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    sale = db.relationship("Sale", backref=db.backref("credit", uselist=False, lazy="selectin"))
    payments = db.relationship(
        "CreditPayment",
        back_populates="credit_sale",
        order_by="CreditPayment.id",
        lazy="selectin",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "document_number": self.sale.document_number if self.sale else None,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "total_cents": self.total_cents,
            "paid_cents": self.paid_cents,
            "balance_cents": self.balance_cents,
            "status": self.status,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "settled_at": to_utc_z(self.settled_at),
            "payments": [p.to_dict() for p in self.payments],
        }


class CreditPayment(db.Model):
    """Append-only payment against a credit sale."""
    __tablename__ = "credit_payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    credit_sale_id = db.Column(db.Integer, db.ForeignKey("credit_sales.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    payment_method = db.Column(db.String(16), nullable=False)

    received_by_id = db.Column(db.String(64), nullable=True)
    received_by_name = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    credit_sale = db.relationship("CreditSale", back_populates="payments")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "credit_sale_id": self.credit_sale_id,
            "amount_cents": self.amount_cents,
            "payment_method": self.payment_method,
            "received_by_id": self.received_by_id,
            "received_by_name": self.received_by_name,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
