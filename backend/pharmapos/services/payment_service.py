# Overview: Service-layer operations for payments; lifecycle, refunds, mobile money and reporting.

"""
Payment Service

WHY: A sale can be settled by several payments over time (split tender,
deposit then balance, mobile money confirmed minutes later). Each Payment is
its own record; the sale's payment state is always re-derived from them by
services.reconciliation.

DESIGN PRINCIPLES:
- Lifecycle: pending -> completed | failed, exactly once (InvalidStateTransitionError otherwise)
- Charges are positive, refunds negative; a refund is a new payment linked
  to the charge it reverses, and the charge itself is never edited
- Every status change re-runs reconciliation in the same transaction
- Gateway calls happen outside the retried unit of work so a retry never
  charges the customer twice
- A pending payment is claimed (processing_claimed_at) in its own committed
  unit of work before the gateway call; only the claimant calls the gateway
- A refund is reserved as a pending row before the gateway call, so
  concurrent refunds of one charge cannot exceed it

Private helpers prefixed with an underscore never commit; checkout uses them
inside its own unit of work.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import func, or_, update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Branch, Payment, Sale
from ..models.sales import (
    PAYMENT_STATUS_COMPLETED,
    PAYMENT_STATUS_FAILED,
    PAYMENT_STATUS_PENDING,
)
from ..time_utils import utc_day_bounds, utcnow
from .concurrency import begin_immediate, lock_for_update, run_with_retry
from .identifier_service import next_payment_number
from .payment_gateway import (
    METHOD_MOBILE,
    METHOD_REFUND,
    OUTCOME_COMPLETED,
    OUTCOME_FAILED,
    OUTCOME_PENDING,
    GatewayOutcome,
    GatewayUnavailableError,
    get_payment_gateway,
    provider_from_transaction_id,
)
from .reconciliation import apply_reconciliation, completed_total_cents


class PaymentError(Exception):
    """Raised for payment operation errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class PaymentNotFoundError(PaymentError):
    pass


class InvalidStateTransitionError(PaymentError):
    pass


PAYMENT_STATUSES = [PAYMENT_STATUS_PENDING, PAYMENT_STATUS_COMPLETED, PAYMENT_STATUS_FAILED]
FINAL_STATUSES = [PAYMENT_STATUS_COMPLETED, PAYMENT_STATUS_FAILED]


# =============================================================================
# LOOKUPS
# =============================================================================

def _scoped_payments(tenant_id: int | None):
    q = db.session.query(Payment).filter(Payment.deleted_at.is_(None))
    if tenant_id is not None:
        q = q.join(Branch, Branch.id == Payment.branch_id).filter(Branch.tenant_id == tenant_id)
    return q


def get_payment(payment_id: int, *, tenant_id: int | None = None, lock: bool = False) -> Payment:
    q = _scoped_payments(tenant_id).filter(Payment.id == payment_id)
    if lock:
        q = lock_for_update(q)
    payment = q.first()
    if payment is None:
        raise PaymentNotFoundError(f"Payment {payment_id} not found", {"payment_id": payment_id})
    return payment


def get_sale(sale_id: int, *, tenant_id: int | None = None) -> Sale:
    q = db.session.query(Sale).filter(Sale.id == sale_id, Sale.deleted_at.is_(None))
    if tenant_id is not None:
        q = q.join(Branch, Branch.id == Sale.branch_id).filter(Branch.tenant_id == tenant_id)
    sale = q.first()
    if sale is None:
        raise PaymentNotFoundError(f"Sale {sale_id} not found", {"sale_id": sale_id})
    return sale


def _find_by_transaction(transaction_id: str, tenant_id: int | None) -> Payment:
    payment = (
        _scoped_payments(tenant_id)
        .filter(Payment.reference_number == transaction_id)
        .order_by(Payment.id.desc())
        .first()
    )
    if payment is None:
        raise PaymentNotFoundError(
            f"No payment found for transaction {transaction_id}",
            {"transaction_id": transaction_id},
        )
    return payment


# =============================================================================
# LIFECYCLE (no commit)
# =============================================================================

def _append_note(payment: Payment, note: str | None) -> None:
    if not note:
        return
    payment.notes = f"{payment.notes}\n{note}" if payment.notes else note


def _create_payment(
    *,
    branch_id: int,
    sale: Sale | None,
    amount_cents: int,
    method: str,
    reference_number: str | None = None,
    notes: str | None = None,
    created_by_user_id: int | None = None,
) -> Payment:
    payment = Payment(
        payment_number=next_payment_number(),
        branch_id=branch_id,
        sale_id=sale.id if sale is not None else None,
        amount_cents=amount_cents,
        method=method,
        status=PAYMENT_STATUS_PENDING,
        reference_number=reference_number,
        notes=notes,
        created_by_user_id=created_by_user_id,
        payment_date=utcnow(),
    )
    db.session.add(payment)
    db.session.flush()
    return payment


def _transition(payment: Payment, new_status: str) -> None:
    if new_status not in FINAL_STATUSES:
        raise InvalidStateTransitionError(
            f"Cannot move payment to status {new_status}",
            {"payment_id": payment.id, "status": payment.status, "requested": new_status},
        )
    if payment.status != PAYMENT_STATUS_PENDING:
        raise InvalidStateTransitionError(
            f"Payment {payment.payment_number} is already {payment.status}",
            {"payment_id": payment.id, "status": payment.status, "requested": new_status},
        )
    payment.status = new_status
    payment.processed_at = utcnow()


def _reconcile_sale_of(payment: Payment) -> None:
    if payment.sale_id is not None:
        sale = payment.sale or db.session.get(Sale, payment.sale_id)
        apply_reconciliation(sale)


def _mark_processed(payment: Payment, outcome: GatewayOutcome) -> Payment:
    """
    Record a gateway outcome on a pending payment and reconcile its sale.

    A pending outcome (mobile money) only attaches the transaction id; the
    payment stays pending until a status poll resolves it.
    """
    payment.processing_claimed_at = None
    if outcome.transaction_id:
        if payment.reference_number and payment.reference_number != outcome.transaction_id:
            _append_note(payment, f"Caller reference: {payment.reference_number}")
        payment.reference_number = outcome.transaction_id

    if outcome.status == OUTCOME_PENDING:
        _append_note(payment, outcome.message)
        db.session.flush()
        return payment

    new_status = PAYMENT_STATUS_COMPLETED if outcome.success else PAYMENT_STATUS_FAILED
    _transition(payment, new_status)
    _append_note(payment, outcome.message)
    _reconcile_sale_of(payment)
    return payment


def mark_processed(payment_id: int, outcome: GatewayOutcome, *, tenant_id: int | None = None) -> Payment:
    def _op():
        payment = get_payment(payment_id, tenant_id=tenant_id, lock=True)
        if payment.status != PAYMENT_STATUS_PENDING:
            raise InvalidStateTransitionError(
                f"Payment {payment.payment_number} is already {payment.status}",
                {"payment_id": payment.id, "status": payment.status},
            )
        _mark_processed(payment, outcome)
        db.session.commit()
        return payment

    return run_with_retry(_op)


# =============================================================================
# PUBLIC OPERATIONS
# =============================================================================

def create_payment(
    *,
    tenant_id: int,
    branch_id: int,
    amount_cents: int,
    method: str,
    sale_id: int | None = None,
    reference_number: str | None = None,
    notes: str | None = None,
    user_id: int | None = None,
) -> Payment:
    """
    Record a pending charge, optionally against a sale.

    The payment is taken at the sale's branch when a sale is given.

    Raises:
        UnsupportedPaymentMethodError: unknown method
        PaymentError: non-positive amount, refund method, unknown sale
    """
    method = get_payment_gateway().require_supported(method)
    if method == METHOD_REFUND:
        raise PaymentError("Refunds are issued through the refund operation", {"method": method})
    if amount_cents <= 0:
        raise PaymentError("Payment amount must be positive", {"amount_cents": amount_cents})

    def _op():
        sale = get_sale(sale_id, tenant_id=tenant_id) if sale_id is not None else None
        payment = _create_payment(
            branch_id=sale.branch_id if sale is not None else branch_id,
            sale=sale,
            amount_cents=amount_cents,
            method=method,
            reference_number=reference_number,
            notes=notes,
            created_by_user_id=user_id,
        )
        db.session.commit()
        current_app.logger.info(
            "Payment %s created: method=%s amount_cents=%s sale=%s",
            payment.payment_number, method, amount_cents, sale_id,
        )
        return payment

    return run_with_retry(_op, retry_on=(IntegrityError,))


def process_payment(
    payment_id: int,
    *,
    tenant_id: int | None = None,
    details: dict | None = None,
) -> tuple[Payment, GatewayOutcome]:
    """
    Send a pending payment through the gateway and record the outcome.

    details carries tender fields the payment row does not store
    (insurance_provider/policy_number, phone/provider).

    A mobile payment whose reference is a provider transaction id is only
    asked for its status. Any other mobile payment starts a collection, which
    needs details["phone"]; its caller reference moves to the notes.

    Raises:
        InvalidStateTransitionError: the payment is not pending, or another
            request is processing it
        PaymentError: mobile collection without a phone number
        GatewayUnavailableError: the provider could not be reached
    """
    details = details or {}
    payment = get_payment(payment_id, tenant_id=tenant_id)
    if payment.status != PAYMENT_STATUS_PENDING:
        raise InvalidStateTransitionError(
            "Payment is not in pending status",
            {"payment_id": payment.id, "status": payment.status},
        )

    gateway = get_payment_gateway()
    initiated = (
        payment.method == METHOD_MOBILE
        and provider_from_transaction_id(payment.reference_number) in gateway.providers
    )
    if payment.method == METHOD_MOBILE and not initiated and not details.get("phone"):
        raise PaymentError(
            "Phone number is required for mobile money",
            {"payment_id": payment.id, "phone": details.get("phone")},
        )

    claim_for_processing(payment_id, tenant_id=tenant_id)
    payment = get_payment(payment_id, tenant_id=tenant_id)
    try:
        if initiated:
            outcome = gateway.check_status(payment.reference_number)
            if outcome.status not in (OUTCOME_COMPLETED, OUTCOME_FAILED):
                outcome = GatewayOutcome(True, OUTCOME_PENDING, outcome.message, payment.reference_number)
        else:
            outcome = gateway.process(
                payment.method,
                payment.amount_cents,
                reference=payment.payment_number,
                details=details,
            )
    except Exception:
        release_claim(payment_id)
        raise

    try:
        payment = mark_processed(payment_id, outcome, tenant_id=tenant_id)
    except Exception:
        # Claim is left in place until it times out
        current_app.logger.error(
            "Gateway answered for payment %s but the outcome was not recorded: status=%s transaction=%s",
            payment_id, outcome.status, outcome.transaction_id,
        )
        raise
    current_app.logger.info("Payment %s processed: %s", payment.payment_number, payment.status)
    return payment, outcome


def claim_for_processing(payment_id: int, *, tenant_id: int | None = None) -> None:
    """
    Mark a pending payment as being processed, in its own committed unit of work.

    The conditional UPDATE matches only a pending payment without a live
    claim. A claim older than PAYMENT_CLAIM_TIMEOUT_SECONDS counts as
    abandoned and can be retaken.

    Raises:
        InvalidStateTransitionError: not pending, or claimed by another request
    """
    timeout = current_app.config.get("PAYMENT_CLAIM_TIMEOUT_SECONDS", 120)

    def _op():
        now = utcnow()
        result = db.session.execute(
            update(Payment)
            .where(
                Payment.id == payment_id,
                Payment.status == PAYMENT_STATUS_PENDING,
                Payment.deleted_at.is_(None),
                or_(
                    Payment.processing_claimed_at.is_(None),
                    Payment.processing_claimed_at < now - timedelta(seconds=timeout),
                ),
            )
            .values(processing_claimed_at=now, version_id=Payment.version_id + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.session.rollback()
            current = get_payment(payment_id, tenant_id=tenant_id)
            if current.status != PAYMENT_STATUS_PENDING:
                raise InvalidStateTransitionError(
                    "Payment is not in pending status",
                    {"payment_id": payment_id, "status": current.status},
                )
            current_app.logger.warning("Payment %s is already being processed", current.payment_number)
            raise InvalidStateTransitionError(
                "Payment is already being processed",
                {"payment_id": payment_id, "status": current.status},
            )
        db.session.commit()

    run_with_retry(_op)


def release_claim(payment_id: int) -> None:
    """Drop the processing claim after a gateway call that produced no outcome."""
    def _op():
        db.session.execute(
            update(Payment)
            .where(Payment.id == payment_id)
            .values(processing_claimed_at=None)
            .execution_options(synchronize_session=False)
        )
        db.session.commit()

    run_with_retry(_op)


def update_payment(
    payment_id: int,
    *,
    tenant_id: int | None = None,
    status: str | None = None,
    reference_number: str | None = None,
    notes: str | None = None,
) -> Payment:
    """
    Manual correction of a payment.

    status may only move pending -> completed | failed. reference_number and
    notes are free to edit. The sale is reconciled afterwards.
    """
    if status is not None and status not in PAYMENT_STATUSES:
        raise PaymentError(f"Invalid payment status: {status}", {"status": status})

    def _op():
        payment = get_payment(payment_id, tenant_id=tenant_id, lock=True)
        if status is not None and status != payment.status:
            _transition(payment, status)
        if reference_number is not None:
            payment.reference_number = reference_number
        if notes is not None:
            payment.notes = notes
        db.session.flush()
        _reconcile_sale_of(payment)
        db.session.commit()
        return payment

    return run_with_retry(_op)


def refunded_total_cents(payment_id: int) -> int:
    """
    Sum (as a positive number) of refunds held against a charge.

    Pending refunds count: their gateway call may be in flight, so the amount
    is already spoken for.
    """
    total = (
        db.session.query(func.coalesce(func.sum(Payment.amount_cents), 0))
        .filter(
            Payment.refund_of_payment_id == payment_id,
            Payment.status.in_([PAYMENT_STATUS_PENDING, PAYMENT_STATUS_COMPLETED]),
            Payment.deleted_at.is_(None),
        )
        .scalar()
    )
    return -int(total or 0)


def _find_refundable(original_reference: str, tenant_id: int | None, *, lock: bool = False) -> Payment:
    q = (
        _scoped_payments(tenant_id)
        .filter(
            or_(
                Payment.payment_number == original_reference,
                Payment.reference_number == original_reference,
            ),
            Payment.amount_cents > 0,
        )
        .order_by(Payment.id.desc())
    )
    if lock:
        q = lock_for_update(q)
    original = q.first()
    if original is None:
        raise PaymentNotFoundError(
            f"Original payment {original_reference} not found",
            {"original_reference": original_reference},
        )
    return original


def refund_payment(
    *,
    original_reference: str,
    amount_cents: int,
    reason: str | None = None,
    requested_by: int | None = None,
    tenant_id: int | None = None,
) -> Payment:
    """
    Refund part or all of a completed charge.

    WHY: Refunds never edit the original charge. A new payment with a negative
    amount is written, linked back through refund_of_payment_id, and the
    sale's completed total drops by the refunded amount once it completes.

    Three steps:
    1. Reserve: validate under the write lock and commit a pending refund row.
    2. Call the gateway once, outside any retried unit of work.
    3. Record the outcome on the reserved row (completed or failed).

    Args:
        original_reference: payment_number or gateway reference of the charge
        amount_cents: positive amount to give back

    Returns:
        The completed refund Payment. Its payment_number is the refund reference.

    Raises:
        PaymentNotFoundError: no matching charge
        PaymentError: charge not completed, amount invalid or more than is
            left, or the gateway declined (the refund row is left failed)
        GatewayUnavailableError: the refund row is left failed
    """
    if amount_cents <= 0:
        raise PaymentError("Refund amount must be positive", {"amount_cents": amount_cents})

    def _reserve():
        begin_immediate()
        original = _find_refundable(original_reference, tenant_id, lock=True)
        if original.status != PAYMENT_STATUS_COMPLETED:
            raise PaymentError(
                "Only completed payments can be refunded",
                {"payment_id": original.id, "status": original.status},
            )
        remaining = original.amount_cents - refunded_total_cents(original.id)
        if amount_cents > remaining:
            raise PaymentError(
                "Refund exceeds the amount remaining on the payment",
                {"payment_id": original.id, "requested": amount_cents, "refundable": remaining},
            )

        note = f"Refund of {original.payment_number}"
        if original.reference_number:
            note += f" (ref {original.reference_number})"
        if reason:
            note += f": {reason}"

        refund = Payment(
            payment_number=next_payment_number(),
            branch_id=original.branch_id,
            sale_id=original.sale_id,
            amount_cents=-amount_cents,
            method=METHOD_REFUND,
            status=PAYMENT_STATUS_PENDING,
            notes=note,
            refund_of_payment_id=original.id,
            created_by_user_id=requested_by,
            payment_date=utcnow(),
        )
        db.session.add(refund)
        db.session.commit()
        return refund.id, refund.payment_number, original.payment_number

    try:
        refund_id, refund_number, original_number = run_with_retry(_reserve, retry_on=(IntegrityError,))
    except Exception:
        db.session.rollback()
        raise

    try:
        outcome = get_payment_gateway().process(METHOD_REFUND, -amount_cents, reference=original_reference)
    except GatewayUnavailableError as exc:
        mark_processed(refund_id, GatewayOutcome(False, OUTCOME_FAILED, f"Refund not issued: {exc}"))
        current_app.logger.warning("Refund %s against %s not issued: %s", refund_number, original_number, exc)
        raise

    try:
        refund = mark_processed(refund_id, outcome)
    except Exception:
        # The pending row keeps the amount reserved
        current_app.logger.error(
            "Gateway answered for refund %s against %s but the outcome was not recorded: "
            "status=%s transaction=%s",
            refund_number, original_number, outcome.status, outcome.transaction_id,
        )
        raise

    if refund.status != PAYMENT_STATUS_COMPLETED:
        raise PaymentError(
            outcome.message,
            {"original_reference": original_reference, "refund_reference": refund_number},
        )

    current_app.logger.info(
        "Refund %s issued against %s: amount_cents=%s",
        refund_number, original_number, amount_cents,
    )
    return refund


def initiate_mobile_money(
    *,
    tenant_id: int,
    branch_id: int,
    amount_cents: int,
    phone: str,
    provider: str,
    sale_id: int | None = None,
    user_id: int | None = None,
) -> tuple[Payment, GatewayOutcome]:
    """
    Start a mobile-money collection and record it as a pending payment.

    The provider transaction id is stored in reference_number; poll it with
    poll_payment_status() to settle the payment.
    """
    if amount_cents <= 0:
        raise PaymentError("Payment amount must be positive", {"amount_cents": amount_cents})
    if not phone:
        raise PaymentError("Phone number is required for mobile money", {"phone": phone})

    gateway = get_payment_gateway()
    gateway.get_provider(provider)
    if sale_id is not None:
        get_sale(sale_id, tenant_id=tenant_id)

    outcome = gateway.initiate_mobile_money(
        provider=provider, amount_cents=amount_cents, phone=phone
    )

    def _op():
        sale = get_sale(sale_id, tenant_id=tenant_id) if sale_id is not None else None
        payment = _create_payment(
            branch_id=sale.branch_id if sale is not None else branch_id,
            sale=sale,
            amount_cents=amount_cents,
            method=METHOD_MOBILE,
            notes=f"Mobile money via {provider.lower()} for {phone}",
            created_by_user_id=user_id,
        )
        _mark_processed(payment, outcome)
        db.session.commit()
        current_app.logger.info(
            "Mobile money %s initiated for payment %s: %s",
            outcome.transaction_id, payment.payment_number, payment.status,
        )
        return payment

    return run_with_retry(_op, retry_on=(IntegrityError,)), outcome


def poll_payment_status(transaction_id: str, *, tenant_id: int | None = None) -> tuple[Payment, GatewayOutcome, bool]:
    """
    Re-read the gateway status of a transaction and settle the payment.

    Only a pending payment moves; a payment that is already completed or
    failed is reported as-is even if the provider now says otherwise.

    Returns:
        (payment, outcome, changed)
    """
    _find_by_transaction(transaction_id, tenant_id)
    outcome = get_payment_gateway().check_status(transaction_id)

    def _op():
        payment = _find_by_transaction(transaction_id, tenant_id)
        changed = False
        if (
            payment.status == PAYMENT_STATUS_PENDING
            and outcome.status in (OUTCOME_COMPLETED, OUTCOME_FAILED)
            and outcome.status != payment.status
        ):
            _mark_processed(payment, outcome)
            changed = True
            db.session.commit()
            current_app.logger.info(
                "Payment %s settled by poll: %s", payment.payment_number, payment.status
            )
        return payment, changed

    payment, changed = run_with_retry(_op)
    return payment, outcome, changed


def poll_pending_payments(*, limit: int = 100) -> dict:
    """Poll every pending mobile-money payment once. Used by the scheduler CLI."""
    transaction_ids = [
        row.reference_number
        for row in (
            db.session.query(Payment.reference_number)
            .filter(
                Payment.status == PAYMENT_STATUS_PENDING,
                Payment.deleted_at.is_(None),
                Payment.reference_number.like("MM\\_%", escape="\\"),
            )
            .order_by(Payment.id.asc())
            .limit(limit)
            .all()
        )
    ]

    result = {"polled": 0, "settled": 0, "errors": 0}
    for transaction_id in transaction_ids:
        result["polled"] += 1
        try:
            _, _, changed = poll_payment_status(transaction_id)
        except Exception:
            result["errors"] += 1
            current_app.logger.exception("Polling %s failed", transaction_id)
            continue
        if changed:
            result["settled"] += 1
    return result


# =============================================================================
# REPORTING
# =============================================================================

def list_payments(
    *,
    tenant_id: int,
    branch_id: int | None = None,
    search: str | None = None,
    status: str | None = None,
    method: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    page: int = 1,
    page_size: int = 50,
) -> tuple[list[Payment], int]:
    q = _scoped_payments(tenant_id)
    if branch_id is not None:
        q = q.filter(Payment.branch_id == branch_id)
    if search:
        pattern = f"%{search.strip()}%"
        q = q.outerjoin(Sale, Sale.id == Payment.sale_id).filter(
            or_(
                Payment.payment_number.ilike(pattern),
                Payment.reference_number.ilike(pattern),
                Sale.sale_number.ilike(pattern),
            )
        )
    if status:
        q = q.filter(Payment.status == status)
    if method:
        q = q.filter(Payment.method == method)
    if start is not None:
        q = q.filter(Payment.payment_date >= start)
    if end is not None:
        q = q.filter(Payment.payment_date <= end)

    total = q.count()
    payments = (
        q.order_by(Payment.payment_date.desc(), Payment.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return payments, total


def get_payment_stats(
    *,
    tenant_id: int,
    branch_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> dict:
    """
    Counts and completed amounts for the payments screen.

    total_amount_cents is the signed completed sum, so refunds are netted out.
    """
    q = _scoped_payments(tenant_id)
    if branch_id is not None:
        q = q.filter(Payment.branch_id == branch_id)
    if start is not None:
        q = q.filter(Payment.payment_date >= start)
    if end is not None:
        q = q.filter(Payment.payment_date <= end)

    counts = dict(
        q.with_entities(Payment.status, func.count(Payment.id)).group_by(Payment.status).all()
    )
    completed = q.filter(Payment.status == PAYMENT_STATUS_COMPLETED)
    total_amount = completed.with_entities(func.coalesce(func.sum(Payment.amount_cents), 0)).scalar()
    refunded = (
        completed.filter(Payment.amount_cents < 0)
        .with_entities(func.coalesce(func.sum(Payment.amount_cents), 0))
        .scalar()
    )

    day_start, day_end = utc_day_bounds()
    today = q.filter(Payment.payment_date >= day_start, Payment.payment_date < day_end)
    today_amount = (
        today.filter(Payment.status == PAYMENT_STATUS_COMPLETED)
        .with_entities(func.coalesce(func.sum(Payment.amount_cents), 0))
        .scalar()
    )

    by_method = {
        method: {"count": count, "amount_cents": int(amount or 0)}
        for method, count, amount in completed.with_entities(
            Payment.method, func.count(Payment.id), func.sum(Payment.amount_cents)
        ).group_by(Payment.method).all()
    }

    return {
        "total_payments": sum(counts.values()),
        "completed_payments": counts.get(PAYMENT_STATUS_COMPLETED, 0),
        "pending_payments": counts.get(PAYMENT_STATUS_PENDING, 0),
        "failed_payments": counts.get(PAYMENT_STATUS_FAILED, 0),
        "total_amount_cents": int(total_amount or 0),
        "refunded_amount_cents": -int(refunded or 0),
        "today_payments": today.count(),
        "today_amount_cents": int(today_amount or 0),
        "by_method": by_method,
    }


def get_payment_summary(sale_id: int) -> dict:
    """Paid/remaining breakdown for one sale."""
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise PaymentNotFoundError(f"Sale {sale_id} not found", {"sale_id": sale_id})

    paid = completed_total_cents(sale_id)
    payments = (
        db.session.query(Payment)
        .filter(Payment.sale_id == sale_id, Payment.deleted_at.is_(None))
        .all()
    )
    return {
        "sale_id": sale_id,
        "total_cents": sale.total_cents,
        "completed_total_cents": paid,
        "balance_due_cents": max(sale.total_cents - paid, 0),
        "refunded_cents": -sum(p.amount_cents for p in payments if p.is_refund and p.status == PAYMENT_STATUS_COMPLETED),
        "payment_count": len(payments),
        "pending_count": sum(1 for p in payments if p.status == PAYMENT_STATUS_PENDING),
        "payment_status": sale.payment_status,
        "status": sale.status,
    }
