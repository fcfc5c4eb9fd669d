# Overview: Derives a sale's payment state from its completed payments.

"""
Reconciliation Rule

The only writer of Sale.payment_status and Sale.status.

    completed >= total      -> paid,    completed
    0 < completed < total   -> partial, status unchanged
    completed <= 0          -> pending, status unchanged

completed is the signed sum of the sale's completed, non-deleted payments,
so refunds (negative amounts) pull it back down. Status moves pending ->
completed once and stays there; payment_status is re-derived every time.

reconcile() is pure. apply_reconciliation() recomputes from the database on
every call and only touches the sale when the result differs, so running it
twice in a row changes nothing the second time.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import func

from ..extensions import db
from ..models import Payment, Sale
from ..models.sales import (
    PAYMENT_STATUS_COMPLETED,
    SALE_PAYMENT_STATUS_PAID,
    SALE_PAYMENT_STATUS_PARTIAL,
    SALE_PAYMENT_STATUS_PENDING,
    SALE_STATUS_COMPLETED,
)


@dataclass(frozen=True)
class Reconciliation:
    payment_status: str
    status: str


def reconcile(total_cents: int, completed_total_cents: int, current_status: str) -> Reconciliation:
    if completed_total_cents >= total_cents:
        return Reconciliation(SALE_PAYMENT_STATUS_PAID, SALE_STATUS_COMPLETED)

    # Never regress a completed sale
    status = current_status
    if completed_total_cents > 0:
        return Reconciliation(SALE_PAYMENT_STATUS_PARTIAL, status)
    return Reconciliation(SALE_PAYMENT_STATUS_PENDING, status)


def completed_total_cents(sale_id: int) -> int:
    """Signed sum of completed payments on the sale, refunds included."""
    total = (
        db.session.query(func.coalesce(func.sum(Payment.amount_cents), 0))
        .filter(
            Payment.sale_id == sale_id,
            Payment.status == PAYMENT_STATUS_COMPLETED,
            Payment.deleted_at.is_(None),
        )
        .scalar()
    )
    return int(total or 0)


def apply_reconciliation(sale: Sale) -> bool:
    """
    Re-derive the sale's status fields and write them if they changed.

    Flushes pending payment changes first so the sum sees them. Does not
    commit. Returns True when the sale was modified.
    """
    db.session.flush()
    result = reconcile(sale.total_cents, completed_total_cents(sale.id), sale.status)

    if result.payment_status == sale.payment_status and result.status == sale.status:
        return False

    sale.payment_status = result.payment_status
    sale.status = result.status
    db.session.flush()
    return True
