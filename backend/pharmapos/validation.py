from __future__ import annotations
from datetime import date, datetime
from typing import Any

from flask import current_app

from .time_utils import parse_iso_datetime
from .services.checkout_service import CheckoutLine, CheckoutRequest


# Maximum amount: 9,999,999.99 (999,999,999 cents)
# Prevents database overflow and nonsensical amounts
MAX_AMOUNT_CENTS = 999_999_999


class ValidationError(ValueError):
    """400-level input problem."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def parse_int(value: Any, field: str, *, required: bool = True, minimum: int | None = None) -> int | None:
    """
    Strict integer parsing: rejects floats, booleans, decimals and
    scientific notation.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"{field} is required", {"field": field})
        return None

    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", {"field": field})
    if isinstance(value, int):
        result = value
    elif isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal", {"field": field})
    elif isinstance(value, str):
        stripped = value.strip()
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)", {"field": field})
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)", {"field": field})
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer", {"field": field})
    else:
        raise ValidationError(f"{field} must be an integer", {"field": field})

    if minimum is not None and result < minimum:
        raise ValidationError(f"{field} must be at least {minimum}", {"field": field, "value": result})
    return result


def parse_money_cents(value: Any, field: str, *, required: bool = True, allow_zero: bool = True) -> int | None:
    cents = parse_int(value, field, required=required, minimum=0 if allow_zero else 1)
    if cents is not None and cents > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} exceeds maximum of {MAX_AMOUNT_CENTS} cents", {"field": field})
    return cents


def parse_str(value: Any, field: str, *, required: bool = False, max_length: int | None = None) -> str | None:
    if value is None:
        if required:
            raise ValidationError(f"{field} is required", {"field": field})
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string", {"field": field})
    value = value.strip()
    if not value:
        if required:
            raise ValidationError(f"{field} is required", {"field": field})
        return None
    if max_length is not None and len(value) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters", {"field": field})
    return value


def parse_datetime(value: Any, field: str) -> datetime | None:
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO-8601 datetime", {"field": field})
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime", {"field": field})


def parse_date(value: Any, field: str) -> date | None:
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO-8601 date", {"field": field})
    try:
        return date.fromisoformat(value.strip())
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 date", {"field": field})


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def parse_pagination(args) -> tuple[int, int]:
    """(page, page_size) from query args, page_size capped at MAX_PAGE_SIZE."""
    default_size = current_app.config.get("DEFAULT_PAGE_SIZE", 50)
    max_size = current_app.config.get("MAX_PAGE_SIZE", 200)
    page = parse_int(args.get("page"), "page", required=False, minimum=1) or 1
    page_size = parse_int(args.get("page_size"), "page_size", required=False, minimum=1) or default_size
    return page, min(page_size, max_size)


def require_json_object(payload: Any) -> dict:
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def _parse_checkout_line(raw: Any, index: int) -> CheckoutLine:
    if not isinstance(raw, dict):
        raise ValidationError(f"items[{index}] must be an object", {"index": index})
    prefix = f"items[{index}]"
    line = CheckoutLine(
        product_id=parse_int(raw.get("product_id"), f"{prefix}.product_id", minimum=1),
        quantity=parse_int(raw.get("quantity"), f"{prefix}.quantity", minimum=1),
        unit_price_cents=parse_money_cents(raw.get("unit_price_cents"), f"{prefix}.unit_price_cents"),
        discount_cents=parse_money_cents(raw.get("discount_cents"), f"{prefix}.discount_cents", required=False) or 0,
        line_total_cents=parse_money_cents(raw.get("line_total_cents"), f"{prefix}.line_total_cents", required=False),
    )
    if line.total_cents() < 0:
        raise ValidationError(f"{prefix} discount exceeds line amount", {"index": index})
    return line


def parse_checkout_request(payload: Any, *, tenant_id: int, branch_id: int, cashier_id: int) -> CheckoutRequest:
    """
    Validate a checkout body into a CheckoutRequest.

    Request shape:
    {
        "items": [{"product_id": 1, "quantity": 2, "unit_price_cents": 450,
                   "discount_cents": 0}],
        "subtotal_cents": 900,
        "tax_cents": 144,
        "discount_cents": 0,
        "total_cents": 1044,
        "patient_id": 12,                     (optional)
        "payment_method": "cash",             (optional)
        "amount_paid_cents": 1044,            (optional)
        "payment_reference": "...",           (optional)
        "payment_details": {...},             (optional, tender specific)
        "notes": "...",                       (optional)
        "sale_date": "2026-01-14T09:30:00Z"   (optional)
    }

    Figures are taken as given; the only arithmetic check is
    total = subtotal + tax - discount.
    """
    payload = require_json_object(payload)

    items = payload.get("items")
    if not isinstance(items, list) or not items:
        raise ValidationError("At least one item is required", {"field": "items"})
    lines = [_parse_checkout_line(raw, i) for i, raw in enumerate(items)]

    subtotal = parse_money_cents(payload.get("subtotal_cents"), "subtotal_cents")
    tax = parse_money_cents(payload.get("tax_cents"), "tax_cents", required=False) or 0
    discount = parse_money_cents(payload.get("discount_cents"), "discount_cents", required=False) or 0
    total = parse_money_cents(payload.get("total_cents"), "total_cents")

    if total != subtotal + tax - discount:
        raise ValidationError(
            "total_cents must equal subtotal_cents + tax_cents - discount_cents",
            {"subtotal_cents": subtotal, "tax_cents": tax, "discount_cents": discount, "total_cents": total},
        )

    payment_details = payload.get("payment_details") or {}
    if not isinstance(payment_details, dict):
        raise ValidationError("payment_details must be an object", {"field": "payment_details"})

    return CheckoutRequest(
        tenant_id=tenant_id,
        branch_id=branch_id,
        cashier_id=cashier_id,
        items=lines,
        subtotal_cents=subtotal,
        tax_cents=tax,
        discount_cents=discount,
        total_cents=total,
        patient_id=parse_int(payload.get("patient_id"), "patient_id", required=False, minimum=1),
        payment_method=parse_str(payload.get("payment_method"), "payment_method", max_length=32),
        amount_paid_cents=parse_money_cents(payload.get("amount_paid_cents"), "amount_paid_cents", required=False) or 0,
        payment_reference=parse_str(payload.get("payment_reference"), "payment_reference", max_length=128),
        payment_details=payment_details,
        notes=parse_str(payload.get("notes"), "notes"),
        sale_date=parse_datetime(payload.get("sale_date"), "sale_date"),
    )
