# Overview: Flask API routes for sales; read side of the checkout aggregate.

from flask import Blueprint, jsonify, g, current_app

from ..decorators import require_auth
from ..services import payment_service
from ..services.payment_service import PaymentNotFoundError


sales_bp = Blueprint("sales", __name__, url_prefix="/api/v1/sales")


@sales_bp.get("/<int:sale_id>")
@require_auth
def get_sale_route(sale_id: int):
    """
    Sale with its line items, payments and payment summary.

    Returns:
        200: {sale, payments, summary}
        404: Sale not found (or belongs to another tenant)
    """
    try:
        sale = payment_service.get_sale(sale_id, tenant_id=g.tenant_id)
        payments = sorted(
            (p for p in sale.payments if p.deleted_at is None),
            key=lambda p: p.id,
        )
        return jsonify({
            "sale": sale.to_dict(),
            "payments": [p.to_dict() for p in payments],
            "summary": payment_service.get_payment_summary(sale.id),
        }), 200

    except PaymentNotFoundError as e:
        return jsonify({"error": str(e), "details": e.details}), 404
    except Exception:
        current_app.logger.exception("Failed to get sale")
        return jsonify({"error": "Internal server error"}), 500
