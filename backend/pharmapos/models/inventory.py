from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

MOVEMENT_SALE = "SALE"
MOVEMENT_RESTOCK = "RESTOCK"
MOVEMENT_CORRECTION = "CORRECTION"
MOVEMENT_LOSS = "LOSS"
MOVEMENT_RETURN = "RETURN"

MOVEMENT_KINDS = (
    MOVEMENT_SALE,
    MOVEMENT_RESTOCK,
    MOVEMENT_CORRECTION,
    MOVEMENT_LOSS,
    MOVEMENT_RETURN,
)


class StockMovement(db.Model):
    """
    Append-only stock ledger entry.

    delta is signed and in base units. previous_stock/new_stock snapshot the
    running total around this entry, so the history can be replayed and
    checked against Product.stock_quantity.

    IMMUTABLE: rows are never updated or deleted (enforced in models/__init__).
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_product_occurred", "product_id", "occurred_at"),
        db.Index("ix_stock_movements_kind_occurred", "kind", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    kind = db.Column(db.String(16), nullable=False, index=True)
    delta = db.Column(db.Integer, nullable=False)

    previous_stock = db.Column(db.Integer, nullable=False)
    new_stock = db.Column(db.Integer, nullable=False)

    reason = db.Column(db.String(255), nullable=True)
    # Source document, e.g. a sale's document number
    reference_id = db.Column(db.String(64), nullable=True, index=True)

    actor_id = db.Column(db.String(64), nullable=True)
    actor_name = db.Column(db.String(128), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "kind": self.kind,
            "delta": self.delta,
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "reason": self.reason,
            "reference_id": self.reference_id,
            "actor_id": self.actor_id,
            "actor_name": self.actor_name,
            "occurred_at": to_utc_z(self.occurred_at),
        }
