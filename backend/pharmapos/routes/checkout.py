# Overview: Flask API routes for the point of sale; checkout and branch inventory.

"""
Point of Sale API Routes

WHY: The till's only write path. A checkout sells the basket, decrements
branch stock and takes the first payment in one request.

SECURITY:
- X-Tenant-Id / X-User-Id required on every route (401 otherwise)
- X-Branch-Id required; the branch must belong to the tenant (403 otherwise)
- The authenticated user is recorded as the cashier
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_branch
from ..services import checkout_service, inventory_service
from ..services.checkout_service import CheckoutError
from ..services.concurrency import PersistenceError
from ..services.identifier_service import DuplicateIdentifierError
from ..services.inventory_service import InventoryError
from ..services.payment_gateway import GatewayUnavailableError, UnsupportedPaymentMethodError
from ..validation import (
    ValidationError,
    parse_bool,
    parse_checkout_request,
    parse_date,
    parse_int,
    parse_pagination,
    parse_str,
    require_json_object,
)


pos_bp = Blueprint("pos", __name__, url_prefix="/api/v1/pos")


def _client_error(e, status: int = 400):
    return jsonify({"error": str(e), "details": getattr(e, "details", {})}), status


@pos_bp.post("/checkout")
@require_auth
@require_branch
def checkout_route():
    """
    Sell a basket at the caller's branch.

    Request body:
    {
        "items": [{"product_id": 1, "quantity": 2, "unit_price_cents": 450}],
        "subtotal_cents": 900,
        "tax_cents": 0,
        "discount_cents": 0,
        "total_cents": 900,
        "payment_method": "cash",      (optional)
        "amount_paid_cents": 900       (optional)
    }

    Returns:
        200: {sale, payment, success, message}
        400: Invalid input, unsupported method, missing or insufficient stock
        401: Missing caller context
        403: Branch outside tenant
        500: Server error
    """
    try:
        checkout_request = parse_checkout_request(
            request.get_json(silent=True),
            tenant_id=g.tenant_id,
            branch_id=g.branch_id,
            cashier_id=g.user_id,
        )
        result = checkout_service.checkout(checkout_request)
        return jsonify(result.to_dict()), 200

    except (ValidationError, InventoryError, UnsupportedPaymentMethodError, CheckoutError) as e:
        return _client_error(e)
    except GatewayUnavailableError as e:
        return _client_error(e, 503)
    except (DuplicateIdentifierError, PersistenceError):
        current_app.logger.exception("Checkout could not be persisted")
        return jsonify({"error": "Could not complete checkout, please retry"}), 500
    except Exception:
        current_app.logger.exception("Checkout failed")
        return jsonify({"error": "Internal server error"}), 500


@pos_bp.get("/inventory")
@require_auth
@require_branch
def list_inventory_route():
    """
    List stock at the caller's branch.

    Query params:
    - search: matches product name, generic name or SKU
    - low_stock: true to only show records at or below reorder level
    - page, page_size
    """
    try:
        page, page_size = parse_pagination(request.args)
        records, total = inventory_service.list_inventory(
            branch_id=g.branch_id,
            search=request.args.get("search"),
            low_stock=parse_bool(request.args.get("low_stock")),
            page=page,
            page_size=page_size,
        )
        return jsonify({
            "items": [r.to_dict() for r in records],
            "total": total,
            "page": page,
            "page_size": page_size,
        }), 200

    except ValidationError as e:
        return _client_error(e)
    except Exception:
        current_app.logger.exception("Failed to list inventory")
        return jsonify({"error": "Internal server error"}), 500


@pos_bp.post("/inventory/receive")
@require_auth
@require_branch
def receive_stock_route():
    """
    Receive stock into the caller's branch.

    Request body:
    {
        "product_id": 1,
        "quantity": 24,
        "reorder_level": 5,           (optional)
        "batch_number": "B-2291",     (optional)
        "expiry_date": "2027-03-31"   (optional)
    }

    Returns:
        201: Updated inventory record
        400: Invalid input or product not in tenant
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        record = inventory_service.receive_stock(
            branch_id=g.branch_id,
            product_id=parse_int(data.get("product_id"), "product_id", minimum=1),
            quantity=parse_int(data.get("quantity"), "quantity", minimum=1),
            reorder_level=parse_int(data.get("reorder_level"), "reorder_level", required=False, minimum=0),
            batch_number=parse_str(data.get("batch_number"), "batch_number", max_length=64),
            expiry_date=parse_date(data.get("expiry_date"), "expiry_date"),
        )
        return jsonify(record.to_dict()), 201

    except (ValidationError, InventoryError) as e:
        return _client_error(e)
    except PersistenceError:
        current_app.logger.exception("Stock receipt could not be persisted")
        return jsonify({"error": "Could not receive stock, please retry"}), 500
    except Exception:
        current_app.logger.exception("Failed to receive stock")
        return jsonify({"error": "Internal server error"}), 500
