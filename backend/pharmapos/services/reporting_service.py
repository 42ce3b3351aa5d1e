# Overview: Sales listing and period summaries.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import and_, func, or_

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import CreditPayment, CreditSale, Sale, SaleLine
from ..time_utils import to_utc_z
from ..validation import PAYMENT_METHODS
from .credit_service import CREDIT_STATUS_PAID


def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise NotFoundError("Sale not found", details={"sale_id": sale_id})
    return sale


def list_sales(
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    payment_method: str | None = None,
    cashier_id: str | None = None,
    customer_phone: str | None = None,
    is_credit: bool | None = None,
    limit: int = 200,
) -> list[Sale]:
    q = db.session.query(Sale)
    if start is not None:
        q = q.filter(Sale.created_at >= start)
    if end is not None:
        q = q.filter(Sale.created_at <= end)
    if payment_method:
        method = payment_method.strip().upper()
        if method not in PAYMENT_METHODS:
            raise ValidationError(f"payment_method must be one of: {', '.join(sorted(PAYMENT_METHODS))}")
        q = q.filter(Sale.payment_method == method)
    if cashier_id:
        q = q.filter(Sale.cashier_id == cashier_id)
    if customer_phone:
        q = q.filter(Sale.customer_phone == customer_phone.strip())
    if is_credit is not None:
        q = q.filter(Sale.is_credit.is_(is_credit))
    return q.order_by(Sale.created_at.desc(), Sale.id.desc()).limit(limit).all()


def _paid_filter():
    # Credit sales only count as paid revenue once fully settled.
    return or_(
        Sale.is_credit.is_(False),
        and_(Sale.is_credit.is_(True), CreditSale.status == CREDIT_STATUS_PAID),
    )


def sales_summary(*, start: datetime, end: datetime) -> dict:
    """
    Totals for sales created in [start, end].

    gross_total counts every sale. paid_total leaves out credit sales that
    are not settled yet; their open balance is reported separately.
    """
    window = and_(Sale.created_at >= start, Sale.created_at <= end)

    count, gross, subtotal, discount, tax = (
        db.session.query(
            func.count(Sale.id),
            func.coalesce(func.sum(Sale.total_cents), 0),
            func.coalesce(func.sum(Sale.subtotal_cents), 0),
            func.coalesce(func.sum(Sale.discount_cents), 0),
            func.coalesce(func.sum(Sale.tax_cents), 0),
        )
        .filter(window)
        .one()
    )

    paid = (
        db.session.query(func.coalesce(func.sum(Sale.total_cents), 0))
        .outerjoin(CreditSale, CreditSale.sale_id == Sale.id)
        .filter(window, _paid_filter())
        .scalar()
    )

    outstanding = (
        db.session.query(func.coalesce(func.sum(CreditSale.balance_cents), 0))
        .join(Sale, CreditSale.sale_id == Sale.id)
        .filter(window)
        .scalar()
    )

    collected = (
        db.session.query(func.coalesce(func.sum(CreditPayment.amount_cents), 0))
        .filter(CreditPayment.created_at >= start, CreditPayment.created_at <= end)
        .scalar()
    )

    cost = (
        db.session.query(func.coalesce(func.sum(SaleLine.cost_basis_cents * SaleLine.quantity), 0))
        .join(Sale, SaleLine.sale_id == Sale.id)
        .filter(window)
        .scalar()
    )

    method_rows = (
        db.session.query(
            Sale.payment_method,
            func.count(Sale.id),
            func.coalesce(func.sum(Sale.total_cents), 0),
        )
        .filter(window)
        .group_by(Sale.payment_method)
        .all()
    )

    day = func.date(Sale.created_at)
    day_rows = (
        db.session.query(
            day.label("day"),
            func.count(Sale.id).label("sales_count"),
            func.coalesce(func.sum(Sale.total_cents), 0).label("total_cents"),
        )
        .filter(window)
        .group_by(day)
        .order_by(day)
        .all()
    )

    subtotal = int(subtotal)
    discount = int(discount)
    cost = int(cost)
    return {
        "start": to_utc_z(start),
        "end": to_utc_z(end),
        "sales_count": int(count),
        "gross_total_cents": int(gross),
        "subtotal_cents": subtotal,
        "discount_cents": discount,
        "tax_cents": int(tax),
        "paid_total_cents": int(paid),
        "credit_outstanding_cents": int(outstanding),
        "credit_collected_cents": int(collected),
        "cost_cents": cost,
        "profit_cents": subtotal - discount - cost,
        "by_payment_method": {
            method: {"count": int(n), "total_cents": int(total)}
            for method, n, total in method_rows
        },
        "by_day": [
            {"day": str(row.day), "sales_count": int(row.sales_count), "total_cents": int(row.total_cents)}
            for row in day_rows
        ],
    }
