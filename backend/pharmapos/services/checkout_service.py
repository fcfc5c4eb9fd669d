# Overview: Checkout orchestration; stock, sale, first payment and reconciliation as one unit of work.

"""
Checkout Service

Order of operations (one transaction, all or nothing):

1. Request shape was validated by the caller (validation.parse_checkout_request);
   the payment method is checked against the gateway here, before any write.
2. Every line is checked against branch inventory.
3. Sale + SaleItems are written with the caller's subtotal/tax/discount/total.
4. Inventory is decremented with conditional updates.
5. If a payment method and amount paid were given, a Payment is created and
   run through the gateway.
6. The sale is reconciled from its payments.
7. Commit.

Any failure after step 1 rolls back every write of the checkout. The unit of
work is retried on lock/version conflicts and on sale/payment number
collisions caught by the unique constraints. The gateway is called at most
once per checkout: a retry after the gateway answered records that same
outcome on the re-created payment instead of charging again.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Branch, Payment, Sale, SaleItem
from ..models.sales import SALE_PAYMENT_STATUS_PENDING, SALE_STATUS_PENDING
from ..time_utils import utcnow
from .concurrency import begin_immediate, run_with_retry
from .identifier_service import next_sale_number
from .inventory_service import reserve_and_decrement
from .payment_gateway import get_payment_gateway
from .payment_service import _create_payment, _mark_processed
from .reconciliation import apply_reconciliation


class CheckoutError(Exception):
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


@dataclass
class CheckoutLine:
    product_id: int
    quantity: int
    unit_price_cents: int
    discount_cents: int = 0
    line_total_cents: int | None = None

    def total_cents(self) -> int:
        if self.line_total_cents is not None:
            return self.line_total_cents
        return self.quantity * self.unit_price_cents - self.discount_cents


@dataclass
class CheckoutRequest:
    tenant_id: int
    branch_id: int
    cashier_id: int
    items: list[CheckoutLine]
    subtotal_cents: int
    tax_cents: int = 0
    discount_cents: int = 0
    total_cents: int = 0
    patient_id: int | None = None
    payment_method: str | None = None
    amount_paid_cents: int = 0
    payment_reference: str | None = None
    payment_details: dict = field(default_factory=dict)
    notes: str | None = None
    sale_date: datetime | None = None


@dataclass
class CheckoutResult:
    sale: Sale
    payment: Payment | None
    success: bool
    message: str

    def to_dict(self) -> dict:
        return {
            "sale": self.sale.to_dict(),
            "payment": self.payment.to_dict() if self.payment is not None else None,
            "success": self.success,
            "message": self.message,
        }


def _ensure_branch(request: CheckoutRequest) -> None:
    branch = db.session.get(Branch, request.branch_id)
    if branch is None or branch.tenant_id != request.tenant_id or not branch.is_active:
        raise CheckoutError("Branch not found", {"branch_id": request.branch_id})


def checkout(request: CheckoutRequest) -> CheckoutResult:
    """
    Sell the requested items and take the first payment.

    Returns:
        CheckoutResult. success is False when the gateway declined the
        payment; the sale still exists (pending) and the stock is still sold.

    Raises:
        UnsupportedPaymentMethodError: before any write
        ProductNotFoundError / InsufficientStockError: nothing persisted
        CheckoutError: unknown or foreign branch
        PersistenceError: database refused the unit of work after retries
    """
    gateway = get_payment_gateway()
    method = gateway.require_supported(request.payment_method) if request.payment_method else None
    take_payment = method is not None and request.amount_paid_cents > 0
    # Gateway outcome of this checkout, kept across retries of _op
    charged: list = []

    def _op():
        begin_immediate()
        _ensure_branch(request)

        reserve_lines = [(line.product_id, line.quantity) for line in request.items]

        sale = Sale(
            sale_number=next_sale_number(),
            branch_id=request.branch_id,
            patient_id=request.patient_id,
            cashier_id=request.cashier_id,
            sale_date=request.sale_date or utcnow(),
            subtotal_cents=request.subtotal_cents,
            tax_cents=request.tax_cents,
            discount_cents=request.discount_cents,
            total_cents=request.total_cents,
            payment_method=method,
            payment_status=SALE_PAYMENT_STATUS_PENDING,
            status=SALE_STATUS_PENDING,
            notes=request.notes,
        )

        # Stock first: a shortage must not leave a half-written sale behind
        reserve_and_decrement(request.branch_id, reserve_lines)

        db.session.add(sale)
        db.session.flush()

        for position, line in enumerate(request.items):
            db.session.add(SaleItem(
                sale_id=sale.id,
                product_id=line.product_id,
                position=position,
                quantity=line.quantity,
                unit_price_cents=line.unit_price_cents,
                discount_cents=line.discount_cents,
                line_total_cents=line.total_cents(),
            ))
        db.session.flush()

        payment = None
        outcome = None
        if take_payment:
            payment = _create_payment(
                branch_id=request.branch_id,
                sale=sale,
                amount_cents=request.amount_paid_cents,
                method=method,
                reference_number=request.payment_reference,
                notes="Created during checkout",
                created_by_user_id=request.cashier_id,
            )
            if not charged:
                charged.append(gateway.process(
                    method,
                    request.amount_paid_cents,
                    reference=sale.sale_number,
                    details=request.payment_details,
                ))
            outcome = charged[0]
            _mark_processed(payment, outcome)

        apply_reconciliation(sale)
        db.session.commit()

        if outcome is None:
            message = "Sale created"
        elif outcome.success:
            message = f"Sale created. {outcome.message}"
        else:
            message = f"Sale created but payment failed: {outcome.message}"

        current_app.logger.info(
            "Checkout %s: branch=%s items=%s total_cents=%s payment=%s",
            sale.sale_number, request.branch_id, len(request.items), sale.total_cents,
            payment.status if payment is not None else None,
        )
        return CheckoutResult(
            sale=sale,
            payment=payment,
            success=outcome is None or outcome.success,
            message=message,
        )

    try:
        return run_with_retry(_op, retry_on=(IntegrityError,))
    except Exception:
        db.session.rollback()
        if charged:
            current_app.logger.error(
                "Checkout for branch %s failed after the gateway answered: status=%s transaction=%s amount_cents=%s",
                request.branch_id, charged[0].status, charged[0].transaction_id, request.amount_paid_cents,
            )
        raise
