# Overview: Stock ledger; the only code path that changes a product's stock.

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConcurrentStockConflict, InsufficientStockError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Product, StockMovement
from ..models.inventory import (
    MOVEMENT_CORRECTION,
    MOVEMENT_KINDS,
    MOVEMENT_LOSS,
    MOVEMENT_RESTOCK,
    MOVEMENT_RETURN,
    MOVEMENT_SALE,
)
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry, stock_locks
"""
Stock Ledger Invariants (authoritative)

- StockMovement rows are append-only; they are never updated or deleted.
- Product.stock_quantity is a cached running total: it always equals
  SUM(delta) over the product's movements. verify_ledger() checks this.
- No movement may leave stock below zero.
- Sign rules per kind:
    SALE, LOSS         -> delta < 0
    RESTOCK, RETURN    -> delta > 0
    CORRECTION         -> any non-zero delta (set_stock_level() computes it
                          from an absolute target)
- Mutations of one product are serialized: the caller holds the product's
  stock lock, and the row's version_id rejects writes from stale copies.
"""

_NEGATIVE_KINDS = {MOVEMENT_SALE, MOVEMENT_LOSS}
_POSITIVE_KINDS = {MOVEMENT_RESTOCK, MOVEMENT_RETURN}


def _check_sign(kind: str, delta: int) -> None:
    if kind not in MOVEMENT_KINDS:
        raise ValidationError(f"kind must be one of: {', '.join(MOVEMENT_KINDS)}")
    if delta == 0:
        raise ValidationError("delta must be non-zero")
    if kind in _NEGATIVE_KINDS and delta > 0:
        raise ValidationError(f"{kind} movements must reduce stock")
    if kind in _POSITIVE_KINDS and delta < 0:
        raise ValidationError(f"{kind} movements must increase stock")


def load_product_locked(product_id: int) -> Product:
    product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
    if product is None:
        raise NotFoundError("Product not found", details={"product_id": product_id})
    return product


def apply_movement_locked(
    product: Product,
    delta: int,
    kind: str,
    *,
    reason: str | None = None,
    reference_id: str | None = None,
    actor_id: str | None = None,
    actor_name: str | None = None,
    occurred_at: datetime | None = None,
) -> StockMovement:
    """
    Core movement logic without locking, retry or commit.

    Caller must hold the product's stock lock and have loaded ``product``
    fresh inside the current transaction. Used by apply_movement() and by
    the checkout engine, which applies several of these in one transaction.
    """
    _check_sign(kind, delta)

    previous = product.stock_quantity
    new_stock = previous + delta
    if new_stock < 0:
        raise InsufficientStockError(
            product.id,
            available=previous,
            requested=-delta,
            message=f"Insufficient stock for {product.name}",
        )

    movement = StockMovement(
        product_id=product.id,
        kind=kind,
        delta=delta,
        previous_stock=previous,
        new_stock=new_stock,
        reason=reason,
        reference_id=reference_id,
        actor_id=actor_id,
        actor_name=actor_name,
        occurred_at=occurred_at or utcnow(),
    )
    db.session.add(movement)
    product.post_stock_from_ledger(new_stock)
    db.session.flush()
    return movement


def _retry_or_conflict(op, product_id: int):
    try:
        return run_with_retry(op)
    except (StaleDataError, OperationalError) as exc:
        current_app.logger.warning(
            "Stock movement for product %s lost a concurrent update after retries: %s", product_id, exc,
        )
        raise ConcurrentStockConflict(
            "Stock changed while recording the movement; retry",
            details={"product_id": product_id},
        ) from exc


def apply_movement(
    product_id: int,
    delta: int,
    kind: str,
    reason: str | None = None,
    *,
    actor_id: str | None = None,
    actor_name: str | None = None,
    reference_id: str | None = None,
) -> int:
    """
    Record one stock movement and return the product's new stock.

    Raises InsufficientStockError (nothing recorded) when the movement would
    take stock below zero.
    """
    _check_sign(kind, delta)

    with stock_locks.hold([product_id]):
        def _op():
            try:
                product = load_product_locked(product_id)
                apply_movement_locked(
                    product,
                    delta,
                    kind,
                    reason=reason,
                    reference_id=reference_id,
                    actor_id=actor_id,
                    actor_name=actor_name,
                )
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise
            return product.stock_quantity

        new_stock = _retry_or_conflict(_op, product_id)

    if kind in (MOVEMENT_LOSS, MOVEMENT_CORRECTION):
        current_app.logger.info(
            "Stock %s recorded for product %s: delta=%s new_stock=%s actor=%s reason=%r",
            kind, product_id, delta, new_stock, actor_id, reason,
        )
    return new_stock


def set_stock_level(
    product_id: int,
    quantity: int,
    reason: str | None = None,
    *,
    actor_id: str | None = None,
    actor_name: str | None = None,
) -> int:
    """
    Correct a product's stock to an absolute non-negative value.

    Modeled as a CORRECTION delta against the current figure. Setting the
    value it already has records nothing.
    """
    if quantity < 0:
        raise ValidationError("quantity must be >= 0")

    with stock_locks.hold([product_id]):
        def _op():
            try:
                product = load_product_locked(product_id)
                delta = quantity - product.stock_quantity
                if delta:
                    apply_movement_locked(
                        product,
                        delta,
                        MOVEMENT_CORRECTION,
                        reason=reason or "Stock correction",
                        actor_id=actor_id,
                        actor_name=actor_name,
                    )
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise
            return delta

        delta = _retry_or_conflict(_op, product_id)

    if delta:
        current_app.logger.info(
            "Stock corrected for product %s: delta=%s new_stock=%s actor=%s",
            product_id, delta, quantity, actor_id,
        )
    return quantity


def stock_from_history(product_id: int, as_of: datetime | None = None) -> int:
    """Fold the movement history (inclusive as-of) into a stock figure."""
    q = db.session.query(func.coalesce(func.sum(StockMovement.delta), 0)).filter(
        StockMovement.product_id == product_id,
    )
    if as_of is not None:
        q = q.filter(StockMovement.occurred_at <= as_of)
    return int(q.scalar() or 0)


def verify_ledger(product_id: int | None = None) -> list[dict]:
    """
    Compare every product's cached stock with its movement history.

    Returns one entry per product whose figures diverge; empty means the
    ledger is consistent.
    """
    sums = (
        db.session.query(
            StockMovement.product_id,
            func.coalesce(func.sum(StockMovement.delta), 0).label("total"),
        )
        .group_by(StockMovement.product_id)
    )
    if product_id is not None:
        sums = sums.filter(StockMovement.product_id == product_id)
    totals = {row.product_id: int(row.total) for row in sums.all()}

    q = db.session.query(Product)
    if product_id is not None:
        q = q.filter(Product.id == product_id)

    mismatches = []
    for product in q.order_by(Product.id.asc()).all():
        history = totals.get(product.id, 0)
        if history != product.stock_quantity:
            mismatches.append({
                "product_id": product.id,
                "name": product.name,
                "stock_quantity": product.stock_quantity,
                "history_total": history,
                "difference": product.stock_quantity - history,
            })
    return mismatches


def list_movements(
    *,
    product_id: int | None = None,
    kind: str | None = None,
    reference_id: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = 200,
) -> list[StockMovement]:
    q = db.session.query(StockMovement)
    if product_id is not None:
        q = q.filter(StockMovement.product_id == product_id)
    if kind:
        q = q.filter(StockMovement.kind == kind.upper())
    if reference_id:
        q = q.filter(StockMovement.reference_id == reference_id)
    if start is not None:
        q = q.filter(StockMovement.occurred_at >= start)
    if end is not None:
        q = q.filter(StockMovement.occurred_at <= end)
    return (
        q.order_by(StockMovement.occurred_at.desc(), StockMovement.id.desc())
        .limit(limit)
        .all()
    )


def movement_totals(
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    product_id: int | None = None,
) -> dict[int, dict[str, int]]:
    """Per-product signed delta sums by kind over a window."""
    q = db.session.query(
        StockMovement.product_id,
        StockMovement.kind,
        func.coalesce(func.sum(StockMovement.delta), 0).label("total"),
    )
    if product_id is not None:
        q = q.filter(StockMovement.product_id == product_id)
    if start is not None:
        q = q.filter(StockMovement.occurred_at >= start)
    if end is not None:
        q = q.filter(StockMovement.occurred_at <= end)

    totals: dict[int, dict[str, int]] = {}
    for row in q.group_by(StockMovement.product_id, StockMovement.kind).all():
        totals.setdefault(row.product_id, {})[row.kind] = int(row.total)
    return totals


def movement_summary(
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    product_id: int | None = None,
) -> dict:
    """Additions, sales, losses and corrections (all as positive magnitudes where one-signed)."""
    additions = sales = losses = corrections = 0
    for kinds in movement_totals(start=start, end=end, product_id=product_id).values():
        additions += kinds.get(MOVEMENT_RESTOCK, 0) + kinds.get(MOVEMENT_RETURN, 0)
        sales += -kinds.get(MOVEMENT_SALE, 0)
        losses += -kinds.get(MOVEMENT_LOSS, 0)
        corrections += kinds.get(MOVEMENT_CORRECTION, 0)

    return {
        "total_additions": additions,
        "total_sales": sales,
        "total_losses": losses,
        "total_corrections": corrections,
        "net_change": additions - sales - losses + corrections,
    }


def stock_levels_as_of(as_of: datetime) -> dict[int, int]:
    """Every product's stock folded from history up to ``as_of`` (inclusive)."""
    rows = (
        db.session.query(
            StockMovement.product_id,
            func.coalesce(func.sum(StockMovement.delta), 0).label("total"),
        )
        .filter(StockMovement.occurred_at <= as_of)
        .group_by(StockMovement.product_id)
        .all()
    )
    return {row.product_id: int(row.total) for row in rows}
