# Overview: Flask API routes for payments operations; parses input and returns JSON responses.

"""
Payment API Routes

WHY: Payments outlive the checkout request that created them. Mobile money
settles minutes later, cashiers fix references, refunds come days after.
Every route that changes a payment re-runs the sale's reconciliation.

DESIGN:
- Create/process/update payments (pending -> completed | failed, once)
- Initiate mobile money and poll its status
- Refunds are new negative payments against a completed charge
- List, detail and statistics for the payments screen

SECURITY:
- X-Tenant-Id / X-User-Id required on every route
- All lookups are tenant-scoped; another tenant's payment is a 404
- Creating payments and starting mobile money need a branch context
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_branch
from ..services import payment_service
from ..services.concurrency import PersistenceError
from ..services.identifier_service import DuplicateIdentifierError
from ..services.payment_gateway import (
    GatewayUnavailableError,
    UnsupportedPaymentMethodError,
    normalize_method,
)
from ..services.payment_service import PaymentError, PaymentNotFoundError
from ..services.tenant_service import TenantAccessError, require_branch_in_tenant
from ..validation import (
    ValidationError,
    parse_datetime,
    parse_int,
    parse_money_cents,
    parse_pagination,
    parse_str,
    require_json_object,
)


payments_bp = Blueprint("payments", __name__, url_prefix="/api/v1/payments")


def _client_error(e, status: int = 400):
    return jsonify({"error": str(e), "details": getattr(e, "details", {})}), status


def _branch_filter():
    branch_id = parse_int(request.args.get("branch_id"), "branch_id", required=False, minimum=1)
    if branch_id is not None:
        require_branch_in_tenant(branch_id, g.tenant_id)
    return branch_id


# =============================================================================
# QUERIES
# =============================================================================

@payments_bp.get("")
@require_auth
def list_payments_route():
    """
    List payments for the tenant.

    Query params:
    - search: payment number, reference or sale number
    - status: pending | completed | failed
    - method: cash | card | mobile | insurance | refund
    - start_date, end_date: ISO-8601, inclusive
    - branch_id: restrict to one branch
    - page, page_size
    """
    try:
        page, page_size = parse_pagination(request.args)
        payments, total = payment_service.list_payments(
            tenant_id=g.tenant_id,
            branch_id=_branch_filter(),
            search=request.args.get("search"),
            status=request.args.get("status"),
            method=normalize_method(request.args.get("method")),
            start=parse_datetime(request.args.get("start_date"), "start_date"),
            end=parse_datetime(request.args.get("end_date"), "end_date"),
            page=page,
            page_size=page_size,
        )
        return jsonify({
            "payments": [p.to_dict() for p in payments],
            "total": total,
            "page": page,
            "page_size": page_size,
        }), 200

    except ValidationError as e:
        return _client_error(e)
    except TenantAccessError as e:
        return jsonify({"error": str(e)}), 403
    except Exception:
        current_app.logger.exception("Failed to list payments")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/stats")
@require_auth
def payment_stats_route():
    """Counts and completed totals, optionally within start_date/end_date."""
    try:
        stats = payment_service.get_payment_stats(
            tenant_id=g.tenant_id,
            branch_id=_branch_filter(),
            start=parse_datetime(request.args.get("start_date"), "start_date"),
            end=parse_datetime(request.args.get("end_date"), "end_date"),
        )
        return jsonify(stats), 200

    except ValidationError as e:
        return _client_error(e)
    except TenantAccessError as e:
        return jsonify({"error": str(e)}), 403
    except Exception:
        current_app.logger.exception("Failed to compute payment stats")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/<int:payment_id>")
@require_auth
def get_payment_route(payment_id: int):
    try:
        payment = payment_service.get_payment(payment_id, tenant_id=g.tenant_id)
        return jsonify(payment.to_dict()), 200

    except PaymentNotFoundError as e:
        return _client_error(e, 404)
    except Exception:
        current_app.logger.exception("Failed to get payment")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# LIFECYCLE
# =============================================================================

@payments_bp.post("")
@require_auth
@require_branch
def create_payment_route():
    """
    Record a pending payment.

    Request body:
    {
        "sale_id": 123,                 (optional)
        "amount_cents": 5000,
        "method": "card",
        "reference_number": "AUTH-1",   (optional)
        "notes": "..."                  (optional)
    }

    Returns:
        201: Payment (status pending)
        400: Invalid input or unsupported method
        404: Sale not found
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        payment = payment_service.create_payment(
            tenant_id=g.tenant_id,
            branch_id=g.branch_id,
            sale_id=parse_int(data.get("sale_id"), "sale_id", required=False, minimum=1),
            amount_cents=parse_money_cents(data.get("amount_cents"), "amount_cents", allow_zero=False),
            method=parse_str(data.get("method"), "method", required=True, max_length=32),
            reference_number=parse_str(data.get("reference_number"), "reference_number", max_length=128),
            notes=parse_str(data.get("notes"), "notes"),
            user_id=g.user_id,
        )
        return jsonify(payment.to_dict()), 201

    except PaymentNotFoundError as e:
        return _client_error(e, 404)
    except (ValidationError, PaymentError, UnsupportedPaymentMethodError) as e:
        return _client_error(e)
    except (DuplicateIdentifierError, PersistenceError):
        current_app.logger.exception("Payment could not be persisted")
        return jsonify({"error": "Could not create payment, please retry"}), 500
    except Exception:
        current_app.logger.exception("Failed to create payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.put("/<int:payment_id>")
@require_auth
def update_payment_route(payment_id: int):
    """
    Correct a payment.

    Request body (all optional):
    {
        "status": "completed",          (pending -> completed | failed only)
        "reference_number": "...",
        "notes": "..."
    }

    Returns:
        204: Updated
        400: Invalid status transition
        404: Payment not found
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        payment_service.update_payment(
            payment_id,
            tenant_id=g.tenant_id,
            status=parse_str(data.get("status"), "status", max_length=16),
            reference_number=parse_str(data.get("reference_number"), "reference_number", max_length=128),
            notes=parse_str(data.get("notes"), "notes"),
        )
        return "", 204

    except PaymentNotFoundError as e:
        return _client_error(e, 404)
    except (ValidationError, PaymentError) as e:
        return _client_error(e)
    except PersistenceError:
        current_app.logger.exception("Payment update could not be persisted")
        return jsonify({"error": "Could not update payment, please retry"}), 500
    except Exception:
        current_app.logger.exception("Failed to update payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/<int:payment_id>/process")
@require_auth
def process_payment_route(payment_id: int):
    """
    Run a pending payment through the gateway.

    Request body (optional): {"details": {...}} tender fields such as
    insurance_provider/policy_number.

    Returns:
        200: {payment, success, message}
        400: Payment is not pending
        404: Payment not found
        503: Gateway unavailable
    """
    try:
        data = request.get_json(silent=True) or {}
        details = require_json_object(data).get("details") or {}
        if not isinstance(details, dict):
            raise ValidationError("details must be an object", {"field": "details"})

        payment, outcome = payment_service.process_payment(
            payment_id, tenant_id=g.tenant_id, details=details
        )
        return jsonify({
            "payment": payment.to_dict(),
            "success": outcome.success,
            "message": outcome.message,
        }), 200

    except PaymentNotFoundError as e:
        return _client_error(e, 404)
    except (ValidationError, PaymentError, UnsupportedPaymentMethodError) as e:
        return _client_error(e)
    except GatewayUnavailableError as e:
        return _client_error(e, 503)
    except PersistenceError:
        current_app.logger.exception("Payment processing could not be persisted")
        return jsonify({"error": "Could not process payment, please retry"}), 500
    except Exception:
        current_app.logger.exception("Failed to process payment")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# MOBILE MONEY
# =============================================================================

@payments_bp.post("/mobile-money")
@require_auth
@require_branch
def initiate_mobile_money_route():
    """
    Start a mobile-money collection.

    Request body:
    {
        "sale_id": 123,            (optional)
        "amount_cents": 2500,
        "phone": "+260971234567",
        "provider": "mtn"          (mtn | airtel | zamtel)
    }

    Returns:
        201: {transaction_id, payment, message}
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        payment, outcome = payment_service.initiate_mobile_money(
            tenant_id=g.tenant_id,
            branch_id=g.branch_id,
            sale_id=parse_int(data.get("sale_id"), "sale_id", required=False, minimum=1),
            amount_cents=parse_money_cents(data.get("amount_cents"), "amount_cents", allow_zero=False),
            phone=parse_str(data.get("phone"), "phone", required=True, max_length=32),
            provider=parse_str(data.get("provider"), "provider", required=True, max_length=32),
            user_id=g.user_id,
        )
        return jsonify({
            "transaction_id": outcome.transaction_id,
            "payment": payment.to_dict(),
            "message": outcome.message,
        }), 201

    except PaymentNotFoundError as e:
        return _client_error(e, 404)
    except (ValidationError, PaymentError, UnsupportedPaymentMethodError) as e:
        return _client_error(e)
    except GatewayUnavailableError as e:
        return _client_error(e, 503)
    except (DuplicateIdentifierError, PersistenceError):
        current_app.logger.exception("Mobile money payment could not be persisted")
        return jsonify({"error": "Could not record payment, please retry"}), 500
    except Exception:
        current_app.logger.exception("Failed to initiate mobile money")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/mobile-money/<transaction_id>/status")
@require_auth
def mobile_money_status_route(transaction_id: str):
    """
    Poll the provider and settle the payment if it has moved.

    Returns:
        200: {transaction_id, status, gateway_status, changed, payment}
        404: No payment carries this transaction id
        503: Provider unavailable
    """
    try:
        payment, outcome, changed = payment_service.poll_payment_status(
            transaction_id, tenant_id=g.tenant_id
        )
        return jsonify({
            "transaction_id": transaction_id,
            "status": payment.status,
            "gateway_status": outcome.status,
            "message": outcome.message,
            "changed": changed,
            "payment": payment.to_dict(),
        }), 200

    except PaymentNotFoundError as e:
        return _client_error(e, 404)
    except PaymentError as e:
        return _client_error(e)
    except GatewayUnavailableError as e:
        return _client_error(e, 503)
    except PersistenceError:
        current_app.logger.exception("Payment status could not be persisted")
        return jsonify({"error": "Could not update payment, please retry"}), 500
    except Exception:
        current_app.logger.exception("Failed to poll payment status")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# REFUNDS
# =============================================================================

@payments_bp.post("/refunds")
@require_auth
def refund_route():
    """
    Refund part or all of a completed charge.

    Request body:
    {
        "original_reference": "PAY20261234",   (payment number or gateway reference)
        "amount_cents": 500,
        "reason": "Damaged packaging"          (optional)
    }

    Returns:
        201: {success, refund_reference, payment}
        400: Charge not completed or refund exceeds what remains
        404: Charge not found
        503: Gateway unavailable, the refund is recorded as failed
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        refund = payment_service.refund_payment(
            tenant_id=g.tenant_id,
            original_reference=parse_str(data.get("original_reference"), "original_reference", required=True, max_length=128),
            amount_cents=parse_money_cents(data.get("amount_cents"), "amount_cents", allow_zero=False),
            reason=parse_str(data.get("reason"), "reason"),
            requested_by=g.user_id,
        )
        return jsonify({
            "success": True,
            "refund_reference": refund.payment_number,
            "payment": refund.to_dict(),
        }), 201

    except PaymentNotFoundError as e:
        return _client_error(e, 404)
    except (ValidationError, PaymentError) as e:
        return _client_error(e)
    except GatewayUnavailableError as e:
        return _client_error(e, 503)
    except (DuplicateIdentifierError, PersistenceError):
        current_app.logger.exception("Refund could not be persisted")
        return jsonify({"error": "Could not record refund, please retry"}), 500
    except Exception:
        current_app.logger.exception("Failed to refund payment")
        return jsonify({"error": "Internal server error"}), 500
