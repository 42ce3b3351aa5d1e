# Overview: Deferred settlement of credit sales.

from __future__ import annotations

from datetime import date

from flask import current_app
from sqlalchemy import func, or_

from ..errors import CreditError, NotFoundError, ValidationError
from ..extensions import db
from ..models import CreditPayment, CreditSale, Sale
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry

CREDIT_STATUS_PENDING = "PENDING"
CREDIT_STATUS_PARTIAL = "PARTIAL"
CREDIT_STATUS_PAID = "PAID"

CREDIT_STATUSES = (CREDIT_STATUS_PENDING, CREDIT_STATUS_PARTIAL, CREDIT_STATUS_PAID)


def open_credit_sale(
    sale: Sale,
    *,
    due_date: date | None = None,
    notes: str | None = None,
) -> CreditSale:
    """
    Register the unpaid balance of a credit sale, inside the checkout transaction.

    The sale must already be flushed so it has an id.
    """
    if not sale.customer_name or not sale.customer_phone:
        raise CreditError("Credit sales need a customer name and phone")

    credit = CreditSale(
        sale_id=sale.id,
        customer_name=sale.customer_name,
        customer_phone=sale.customer_phone,
        total_cents=sale.total_cents,
        paid_cents=0,
        balance_cents=sale.total_cents,
        status=CREDIT_STATUS_PAID if sale.total_cents == 0 else CREDIT_STATUS_PENDING,
        due_date=due_date,
        notes=notes,
        created_at=sale.created_at,
        settled_at=sale.created_at if sale.total_cents == 0 else None,
    )
    db.session.add(credit)
    db.session.flush()
    return credit


def get_credit_sale(credit_sale_id: int) -> CreditSale:
    credit = db.session.get(CreditSale, credit_sale_id)
    if credit is None:
        raise NotFoundError("Credit sale not found", details={"credit_sale_id": credit_sale_id})
    return credit


def list_credit_sales(
    *,
    status: str | None = None,
    phone: str | None = None,
    search: str | None = None,
    limit: int = 200,
) -> list[CreditSale]:
    q = db.session.query(CreditSale)
    if status:
        status = status.strip().upper()
        if status not in CREDIT_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(CREDIT_STATUSES)}")
        q = q.filter(CreditSale.status == status)
    if phone:
        q = q.filter(CreditSale.customer_phone == phone.strip())
    if search:
        term = f"%{search.strip()}%"
        q = q.filter(or_(CreditSale.customer_name.ilike(term), CreditSale.customer_phone.ilike(term)))
    return q.order_by(CreditSale.created_at.desc(), CreditSale.id.desc()).limit(limit).all()


def record_payment(
    credit_sale_id: int,
    amount_cents: int,
    *,
    payment_method: str = "CASH",
    received_by_id: str | None = None,
    received_by_name: str | None = None,
    notes: str | None = None,
) -> CreditSale:
    """
    Apply a payment to a credit sale's balance.

    Partial payments move the sale to PARTIAL; clearing the balance moves it
    to PAID, which is what lets the sale count towards paid revenue.
    Payments larger than the balance are rejected.
    """
    if amount_cents <= 0:
        raise ValidationError("amount_cents must be > 0")
    if payment_method == "CREDIT":
        raise ValidationError("A credit balance cannot be settled on credit")

    def _op():
        try:
            credit = lock_for_update(db.session.query(CreditSale).filter_by(id=credit_sale_id)).first()
            if credit is None:
                raise NotFoundError("Credit sale not found", details={"credit_sale_id": credit_sale_id})
            if credit.status == CREDIT_STATUS_PAID:
                raise CreditError("Credit sale is already paid", details={"credit_sale_id": credit.id})
            if amount_cents > credit.balance_cents:
                raise CreditError(
                    "Payment exceeds outstanding balance",
                    details={"credit_sale_id": credit.id, "balance_cents": credit.balance_cents},
                )

            now = utcnow()
            db.session.add(CreditPayment(
                credit_sale_id=credit.id,
                amount_cents=amount_cents,
                payment_method=payment_method,
                received_by_id=received_by_id,
                received_by_name=received_by_name,
                notes=notes,
                created_at=now,
            ))

            credit.paid_cents += amount_cents
            credit.balance_cents = credit.total_cents - credit.paid_cents
            if credit.balance_cents == 0:
                credit.status = CREDIT_STATUS_PAID
                credit.settled_at = now
            else:
                credit.status = CREDIT_STATUS_PARTIAL

            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return credit

    credit = run_with_retry(_op)
    current_app.logger.info(
        "Credit payment of %s on credit sale %s; balance now %s (%s)",
        amount_cents, credit.id, credit.balance_cents, credit.status,
    )
    return credit


def credit_summary() -> dict:
    rows = (
        db.session.query(
            CreditSale.status,
            func.count(CreditSale.id),
            func.coalesce(func.sum(CreditSale.total_cents), 0),
            func.coalesce(func.sum(CreditSale.paid_cents), 0),
            func.coalesce(func.sum(CreditSale.balance_cents), 0),
        )
        .group_by(CreditSale.status)
        .all()
    )

    by_status = {status: {"count": 0, "total_cents": 0, "paid_cents": 0, "balance_cents": 0} for status in CREDIT_STATUSES}
    for status, count, total, paid, balance in rows:
        by_status[status] = {
            "count": int(count),
            "total_cents": int(total),
            "paid_cents": int(paid),
            "balance_cents": int(balance),
        }

    return {
        "total_credit_cents": sum(s["total_cents"] for s in by_status.values()),
        "total_paid_cents": sum(s["paid_cents"] for s in by_status.values()),
        "total_outstanding_cents": sum(s["balance_cents"] for s in by_status.values()),
        "open_count": by_status[CREDIT_STATUS_PENDING]["count"] + by_status[CREDIT_STATUS_PARTIAL]["count"],
        "by_status": by_status,
    }
