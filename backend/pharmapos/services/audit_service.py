# Overview: Period stock audit; valuation, loss and reorder recommendations.

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from datetime import datetime
from fractions import Fraction
from typing import Mapping, Sequence

from flask import current_app

from ..extensions import db
from ..models import Product
from ..models.inventory import MOVEMENT_LOSS, MOVEMENT_SALE
from ..time_utils import to_utc_z
from .stock_ledger_service import movement_totals, stock_levels_as_of
"""
Stock Audit (authoritative, read-only)

Per product, for a period:
    opening_stock  = current_stock + total_sold - total_adjusted
    opening_value  = opening_stock x cost
    cogs           = total_sold x cost
    closing_value  = closing_stock x cost
    loss_value     = total_lost x cost

total_adjusted is the signed sum of every non-sale movement in the period
(restocks, returns, corrections and losses), so the opening figure always
reconciles with the ledger.

When a physical count is supplied, closing_stock is the counted figure; a
shortfall against the computed stock is added to total_lost, a surplus is
reported as an anomaly.

Bad input never raises. A missing cost counts as 0, negative loss is
clamped to 0, and both are reported as anomalies.
"""

DAYS_OF_STOCK_SENTINEL = 999
REORDER_COVER_DAYS = 30

PRIORITY_CRITICAL = "critical"
PRIORITY_HIGH = "high"
PRIORITY_MEDIUM = "medium"
PRIORITY_LOW = "low"

PRIORITY_RANK = {
    PRIORITY_CRITICAL: 0,
    PRIORITY_HIGH: 1,
    PRIORITY_MEDIUM: 2,
    PRIORITY_LOW: 3,
}

ANOMALY_MISSING_COST = "MISSING_COST"
ANOMALY_NEGATIVE_LOSS = "NEGATIVE_LOSS"
ANOMALY_COUNT_SURPLUS = "COUNT_SURPLUS"
ANOMALY_NEGATIVE_COUNT = "NEGATIVE_COUNT"
ANOMALY_UNKNOWN_PRODUCT = "UNKNOWN_PRODUCT"


@dataclass(frozen=True)
class AuditInput:
    product_id: int
    name: str
    total_sold: int
    total_lost: int
    total_adjusted: int
    current_stock: int
    cost_price_cents: int | None
    counted_stock: int | None = None
    category: str | None = None


@dataclass(frozen=True)
class Anomaly:
    kind: str
    message: str
    product_id: int | None = None

    def to_dict(self) -> dict:
        return {"kind": self.kind, "product_id": self.product_id, "message": self.message}


@dataclass(frozen=True)
class AuditLine:
    product_id: int
    name: str
    category: str | None
    cost_price_cents: int
    total_sold: int
    total_lost: int
    total_adjusted: int
    current_stock: int
    counted_stock: int | None
    closing_stock: int
    opening_stock: int
    opening_value_cents: int
    cogs_cents: int
    closing_value_cents: int
    loss_value_cents: int

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class ReorderRecommendation:
    product_id: int
    name: str
    current_stock: int
    total_sold: int
    avg_daily_sales: float
    days_of_stock: float
    suggested_reorder: int
    reorder_value_cents: int
    priority: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class AuditSummary:
    lines: list[AuditLine] = field(default_factory=list)
    recommendations: list[ReorderRecommendation] = field(default_factory=list)
    anomalies: list[Anomaly] = field(default_factory=list)
    start: datetime | None = None
    end: datetime | None = None

    @property
    def total_opening_value_cents(self) -> int:
        return sum(line.opening_value_cents for line in self.lines)

    @property
    def total_closing_value_cents(self) -> int:
        return sum(line.closing_value_cents for line in self.lines)

    @property
    def total_cogs_cents(self) -> int:
        return sum(line.cogs_cents for line in self.lines)

    @property
    def total_missing_value_cents(self) -> int:
        return sum(line.loss_value_cents for line in self.lines if line.total_lost > 0)

    @property
    def total_reorder_value_cents(self) -> int:
        return sum(r.reorder_value_cents for r in self.recommendations)

    def best_sellers(self, limit: int = 5) -> list[AuditLine]:
        selling = [line for line in self.lines if line.total_sold > 0]
        return sorted(selling, key=lambda line: (-line.total_sold, line.product_id))[:limit]

    def to_dict(self) -> dict:
        return {
            "start": to_utc_z(self.start),
            "end": to_utc_z(self.end),
            "summary": {
                "product_count": len(self.lines),
                "total_opening_value_cents": self.total_opening_value_cents,
                "total_closing_value_cents": self.total_closing_value_cents,
                "total_cogs_cents": self.total_cogs_cents,
                "total_missing_value_cents": self.total_missing_value_cents,
                "items_with_loss": sum(1 for line in self.lines if line.total_lost > 0),
                "reorder_count": len(self.recommendations),
                "total_reorder_value_cents": self.total_reorder_value_cents,
            },
            "items": [line.to_dict() for line in self.lines],
            "reorder_recommendations": [r.to_dict() for r in self.recommendations],
            "best_sellers": [
                {"product_id": line.product_id, "name": line.name, "total_sold": line.total_sold}
                for line in self.best_sellers()
            ],
            "anomalies": [a.to_dict() for a in self.anomalies],
        }


def reorder_priority(current_stock: int, total_sold: int) -> str:
    if current_stock < 20:
        return PRIORITY_CRITICAL
    if current_stock < 50:
        return PRIORITY_HIGH
    if total_sold > 100:
        return PRIORITY_MEDIUM
    return PRIORITY_LOW


def needs_reorder_review(current_stock: int, total_sold: int) -> bool:
    return current_stock < 100 or total_sold > 50


def recommend_reorder(
    line: AuditLine,
    *,
    period_days: int = 30,
    minimum: int = 100,
) -> ReorderRecommendation:
    # Exact, so ceil(avg x 30) never overshoots on float error.
    avg = Fraction(line.total_sold, max(period_days, 1))
    stock = line.closing_stock
    if avg == 0:
        days_of_stock = float(DAYS_OF_STOCK_SENTINEL)
    else:
        days_of_stock = round(float(Fraction(stock) / avg), 2)
    suggested = max(minimum, math.ceil(avg * REORDER_COVER_DAYS))

    return ReorderRecommendation(
        product_id=line.product_id,
        name=line.name,
        current_stock=stock,
        total_sold=line.total_sold,
        avg_daily_sales=round(float(avg), 2),
        days_of_stock=days_of_stock,
        suggested_reorder=suggested,
        reorder_value_cents=suggested * line.cost_price_cents,
        priority=reorder_priority(stock, line.total_sold),
    )


def audit_line(item: AuditInput, anomalies: list[Anomaly]) -> AuditLine:
    cost = item.cost_price_cents
    if cost is None or cost < 0:
        anomalies.append(Anomaly(ANOMALY_MISSING_COST, f"{item.name} has no usable cost price; valued at 0", item.product_id))
        cost = 0

    lost = item.total_lost
    if lost < 0:
        anomalies.append(Anomaly(ANOMALY_NEGATIVE_LOSS, f"{item.name} reported negative loss {lost}; clamped to 0", item.product_id))
        lost = 0

    closing = item.current_stock
    counted = item.counted_stock
    if counted is not None:
        if counted < 0:
            anomalies.append(Anomaly(ANOMALY_NEGATIVE_COUNT, f"{item.name} counted {counted}; ignored", item.product_id))
            counted = None
        else:
            closing = counted
            difference = item.current_stock - counted
            if difference > 0:
                lost += difference
            elif difference < 0:
                anomalies.append(Anomaly(
                    ANOMALY_COUNT_SURPLUS,
                    f"{item.name} counted {counted}, {-difference} more than the ledger's {item.current_stock}",
                    item.product_id,
                ))

    opening = item.current_stock + item.total_sold - item.total_adjusted
    return AuditLine(
        product_id=item.product_id,
        name=item.name,
        category=item.category,
        cost_price_cents=cost,
        total_sold=item.total_sold,
        total_lost=lost,
        total_adjusted=item.total_adjusted,
        current_stock=item.current_stock,
        counted_stock=counted,
        closing_stock=closing,
        opening_stock=opening,
        opening_value_cents=opening * cost,
        cogs_cents=item.total_sold * cost,
        closing_value_cents=closing * cost,
        loss_value_cents=lost * cost,
    )


def compute_audit(
    inputs: Sequence[AuditInput],
    *,
    period_days: int = 30,
    minimum: int = 100,
) -> AuditSummary:
    """Pure audit computation over prepared per-product inputs."""
    summary = AuditSummary()
    for item in inputs:
        line = audit_line(item, summary.anomalies)
        summary.lines.append(line)
        if needs_reorder_review(line.closing_stock, line.total_sold):
            summary.recommendations.append(
                recommend_reorder(line, period_days=period_days, minimum=minimum)
            )

    summary.recommendations.sort(key=lambda r: (PRIORITY_RANK[r.priority], -r.total_sold, r.product_id))
    return summary


def collect_audit_inputs(
    start: datetime,
    end: datetime,
    counts: Mapping[int, int] | None = None,
) -> list[AuditInput]:
    """
    Build audit inputs from the ledger for the window [start, end].

    current_stock is the ledger as of ``end``, not the live figure, so a
    report for a past period is reproducible.
    """
    counts = counts or {}
    totals = movement_totals(start=start, end=end)
    levels = stock_levels_as_of(end)

    products = (
        db.session.query(Product)
        .order_by(Product.id.asc())
        .populate_existing()
        .all()
    )

    inputs = []
    for product in products:
        kinds = totals.get(product.id, {})
        if not product.is_active and not kinds and product.id not in counts:
            continue
        sold = -kinds.get(MOVEMENT_SALE, 0)
        inputs.append(AuditInput(
            product_id=product.id,
            name=product.name,
            category=product.category,
            total_sold=sold,
            total_lost=-kinds.get(MOVEMENT_LOSS, 0),
            total_adjusted=sum(delta for kind, delta in kinds.items() if kind != MOVEMENT_SALE),
            current_stock=levels.get(product.id, 0),
            cost_price_cents=product.cost_price_cents,
            counted_stock=counts.get(product.id),
        ))
    return inputs


def build_audit_report(
    start: datetime,
    end: datetime,
    counts: Mapping[int, int] | None = None,
) -> AuditSummary:
    counts = dict(counts or {})
    inputs = collect_audit_inputs(start, end, counts)

    summary = compute_audit(
        inputs,
        period_days=current_app.config.get("AUDIT_PERIOD_DAYS", 30),
        minimum=current_app.config.get("REORDER_MINIMUM", 100),
    )
    summary.start = start
    summary.end = end

    known = {item.product_id for item in inputs}
    for product_id in sorted(set(counts) - known):
        summary.anomalies.append(Anomaly(ANOMALY_UNKNOWN_PRODUCT, f"Count given for unknown product {product_id}", product_id))

    if summary.anomalies:
        current_app.logger.info(
            "Stock audit %s..%s produced %s anomaly(ies)", start.date(), end.date(), len(summary.anomalies),
        )
    return summary
