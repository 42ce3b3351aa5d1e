from __future__ import annotations

from sqlalchemy.orm import validates

from ..extensions import db
from ..time_utils import to_utc_z


class Product(db.Model):
    """
    Sellable product master data.

    STOCK INVARIANT:
    stock_quantity is a cached running total of StockMovement.delta, always in
    base units (one tablet, one gram, one ml). It is written only through
    ``post_stock_from_ledger`` by the stock ledger service; any other
    assignment raises so there can be no silent writes.

    version_id backs SQLAlchemy optimistic locking: a stock write made from a
    stale copy of the row fails with StaleDataError instead of overwriting.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_name", "name"),
        db.Index("ix_products_category_active", "category", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(64), nullable=True)
    product_type = db.Column(db.String(32), nullable=False, default="tablets")

    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    reorder_level = db.Column(db.Integer, nullable=False, default=0)

    # Cost of one base unit, in cents
    cost_price_cents = db.Column(db.Integer, nullable=True, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    units = db.relationship(
        "ProductUnit",
        back_populates="product",
        order_by="ProductUnit.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    __mapper_args__ = {"version_id_col": version_id}

    _ledger_pending = None

    @validates("stock_quantity")
    def _guard_stock_quantity(self, key, value):
        if value == self._ledger_pending:
            return value
        if self.id is None and value == 0:
            return value
        raise ValueError("stock_quantity can only change through a recorded stock movement")

    def post_stock_from_ledger(self, value: int) -> None:
        """Ledger-only write path for the cached running total."""
        if value < 0:
            raise ValueError("stock_quantity cannot be negative")
        self._ledger_pending = value
        try:
            self.stock_quantity = value
        finally:
            self._ledger_pending = None

    @property
    def base_unit(self) -> "ProductUnit | None":
        """The smallest sellable unit (first in position order on ties)."""
        if not self.units:
            return None
        return min(self.units, key=lambda u: (u.quantity, u.position))

    @property
    def is_low_stock(self) -> bool:
        return self.stock_quantity <= (self.reorder_level or 0)

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} stock={self.stock_quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "product_type": self.product_type,
            "units": [u.to_dict() for u in self.units],
            "stock_quantity": self.stock_quantity,
            "reorder_level": self.reorder_level,
            "cost_price_cents": self.cost_price_cents,
            "is_active": self.is_active,
            "is_low_stock": self.is_low_stock,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ProductUnit(db.Model):
    """
    One sellable unit of a product (tablet, strip of 10, box of 100, 200ml bottle).

    quantity is the conversion factor to base units. price_cents is
    independent per unit; recalculation is an explicit batch operation.
    """
    __tablename__ = "product_units"
    __table_args__ = (
        db.UniqueConstraint("product_id", "unit_type", "label", name="uq_product_units_type_label"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    unit_type = db.Column(db.String(16), nullable=False)
    label = db.Column(db.String(64), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    position = db.Column(db.Integer, nullable=False, default=0)

    product = db.relationship("Product", back_populates="units")

    def __repr__(self) -> str:
        return f"<ProductUnit {self.unit_type} x{self.quantity} @ {self.price_cents}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "unit_type": self.unit_type,
            "label": self.label,
            "quantity": self.quantity,
            "price_cents": self.price_cents,
            "position": self.position,
        }
