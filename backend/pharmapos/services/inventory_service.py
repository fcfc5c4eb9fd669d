# Overview: Service-layer operations for inventory; stock checks, atomic decrements and receipts.

"""
Inventory Invariants (authoritative)

Inventory model:
- One InventoryRecord per (branch, product); quantity_on_hand is a stored counter.
- Records are created by receive_stock() only. Checkout never creates one: a
  product with no record at the selling branch is "not found in inventory".

Business invariants:
- quantity_on_hand may never go negative. Two layers enforce it: every
  decrement is a single conditional UPDATE (... WHERE quantity_on_hand >= :n)
  and the table carries CHECK (quantity_on_hand >= 0).
- Checkout validates every line before the first decrement is issued. A
  decrement that still loses a race (zero rows affected) raises
  InsufficientStockError and the caller rolls back the whole unit of work, so
  earlier decrements of the same checkout are undone too.
- Lines for the same product are summed before validation.

Transactions:
- check_availability() and reserve_and_decrement() never commit; they run
  inside the caller's unit of work.
- receive_stock() is a standalone unit of work and commits.
"""

from __future__ import annotations

from datetime import date
from typing import Iterable

from flask import current_app
from sqlalchemy import func, or_, update

from ..extensions import db
from ..models import Branch, InventoryRecord, Product
from .concurrency import run_with_retry


class InventoryError(Exception):
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class ProductNotFoundError(InventoryError):
    """The product has no live inventory record at the branch."""

    def __init__(self, product_id: int):
        super().__init__(
            f"Product {product_id} not found in inventory",
            {"product_id": product_id},
        )
        self.product_id = product_id


class InsufficientStockError(InventoryError):
    def __init__(self, product_id: int, product_name: str | None, available: int, requested: int):
        super().__init__(
            f"Insufficient stock for product {product_name or product_id}. "
            f"Available: {available}, Requested: {requested}",
            {
                "product_id": product_id,
                "product_name": product_name,
                "available": available,
                "requested": requested,
            },
        )
        self.product_id = product_id
        self.product_name = product_name
        self.available = available
        self.requested = requested


def aggregate_lines(lines: Iterable[tuple[int, int]]) -> dict[int, int]:
    """Sum quantities per product, keeping first-seen order."""
    totals: dict[int, int] = {}
    for product_id, quantity in lines:
        totals[product_id] = totals.get(product_id, 0) + quantity
    return totals


def _live_records(branch_id: int, product_ids: list[int]) -> dict[int, InventoryRecord]:
    if not product_ids:
        return {}
    rows = (
        db.session.query(InventoryRecord)
        .join(Product, Product.id == InventoryRecord.product_id)
        .filter(
            InventoryRecord.branch_id == branch_id,
            InventoryRecord.product_id.in_(product_ids),
            InventoryRecord.deleted_at.is_(None),
            Product.deleted_at.is_(None),
            Product.is_active.is_(True),
        )
        .all()
    )
    return {row.product_id: row for row in rows}


def get_record(branch_id: int, product_id: int) -> InventoryRecord | None:
    return _live_records(branch_id, [product_id]).get(product_id)


def check_availability(branch_id: int, lines: Iterable[tuple[int, int]]) -> dict[int, InventoryRecord]:
    """
    Validation pass: every product exists at the branch with enough stock.

    Returns {product_id: record} for the aggregated lines. Raises the first
    failure in line order. Nothing is written.
    """
    requested = aggregate_lines(lines)
    records = _live_records(branch_id, list(requested))

    for product_id, quantity in requested.items():
        record = records.get(product_id)
        if record is None:
            raise ProductNotFoundError(product_id)
        if record.quantity_on_hand < quantity:
            raise InsufficientStockError(
                product_id,
                record.product.name if record.product else None,
                record.quantity_on_hand,
                quantity,
            )
    return records


def reserve_and_decrement(branch_id: int, lines: Iterable[tuple[int, int]]) -> list[InventoryRecord]:
    """
    Validate all lines, then decrement each one atomically.

    Does not commit. On InsufficientStockError the caller must roll back:
    decrements already issued in this call are part of its transaction.
    """
    lines = list(lines)
    records = check_availability(branch_id, lines)
    requested = aggregate_lines(lines)

    updated = []
    for product_id, quantity in requested.items():
        record = records[product_id]
        stmt = (
            update(InventoryRecord)
            .where(
                InventoryRecord.id == record.id,
                InventoryRecord.deleted_at.is_(None),
                InventoryRecord.quantity_on_hand >= quantity,
            )
            .values(
                quantity_on_hand=InventoryRecord.quantity_on_hand - quantity,
                version_id=InventoryRecord.version_id + 1,
                updated_at=func.now(),
            )
            .execution_options(synchronize_session=False)
        )
        result = db.session.execute(stmt)
        if result.rowcount != 1:
            # Lost the race to a concurrent sale after validation
            db.session.refresh(record)
            current_app.logger.warning(
                "Stock changed during checkout: branch=%s product=%s available=%s requested=%s",
                branch_id, product_id, record.quantity_on_hand, quantity,
            )
            raise InsufficientStockError(
                product_id,
                record.product.name if record.product else None,
                record.quantity_on_hand,
                quantity,
            )
        updated.append(record)

    for record in updated:
        db.session.refresh(record)
    return updated


def _ensure_product_in_branch_tenant(branch_id: int, product_id: int) -> Product:
    branch = db.session.get(Branch, branch_id)
    product = db.session.get(Product, product_id)
    if (
        branch is None
        or product is None
        or product.tenant_id != branch.tenant_id
        or product.deleted_at is not None
        or not product.is_active
    ):
        raise ProductNotFoundError(product_id)
    return product


def receive_stock(
    *,
    branch_id: int,
    product_id: int,
    quantity: int,
    reorder_level: int | None = None,
    batch_number: str | None = None,
    expiry_date: date | None = None,
) -> InventoryRecord:
    """
    Add received units to a branch's stock.

    Increments the existing record atomically, or creates the record the first
    time a product is received at the branch.
    """
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
        raise InventoryError("quantity must be a positive integer", {"quantity": quantity})
    if reorder_level is not None and reorder_level < 0:
        raise InventoryError("reorder_level cannot be negative", {"reorder_level": reorder_level})

    def _op():
        _ensure_product_in_branch_tenant(branch_id, product_id)

        record = (
            db.session.query(InventoryRecord)
            .filter_by(branch_id=branch_id, product_id=product_id)
            .first()
        )
        if record is None:
            record = InventoryRecord(
                branch_id=branch_id,
                product_id=product_id,
                quantity_on_hand=quantity,
                reorder_level=reorder_level or 0,
                batch_number=batch_number,
                expiry_date=expiry_date,
            )
            db.session.add(record)
        else:
            values = {
                "quantity_on_hand": InventoryRecord.quantity_on_hand + quantity,
                "version_id": InventoryRecord.version_id + 1,
                "updated_at": func.now(),
                # Receiving into a retired record brings it back
                "deleted_at": None,
            }
            if reorder_level is not None:
                values["reorder_level"] = reorder_level
            if batch_number is not None:
                values["batch_number"] = batch_number
            if expiry_date is not None:
                values["expiry_date"] = expiry_date
            db.session.execute(
                update(InventoryRecord)
                .where(InventoryRecord.id == record.id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )

        db.session.commit()
        db.session.refresh(record)
        current_app.logger.info(
            "Stock received: branch=%s product=%s quantity=%s on_hand=%s",
            branch_id, product_id, quantity, record.quantity_on_hand,
        )
        return record

    return run_with_retry(_op)


def list_inventory(
    *,
    branch_id: int,
    search: str | None = None,
    low_stock: bool = False,
    page: int = 1,
    page_size: int = 50,
) -> tuple[list[InventoryRecord], int]:
    """Branch stock for the POS inventory screen. Returns (records, total)."""
    q = (
        db.session.query(InventoryRecord)
        .join(Product, Product.id == InventoryRecord.product_id)
        .filter(
            InventoryRecord.branch_id == branch_id,
            InventoryRecord.deleted_at.is_(None),
            Product.deleted_at.is_(None),
        )
    )
    if search:
        pattern = f"%{search.strip()}%"
        q = q.filter(
            or_(
                Product.name.ilike(pattern),
                Product.sku.ilike(pattern),
                Product.generic_name.ilike(pattern),
            )
        )
    if low_stock:
        q = q.filter(InventoryRecord.quantity_on_hand <= InventoryRecord.reorder_level)

    total = q.count()
    records = (
        q.order_by(Product.name.asc(), InventoryRecord.id.asc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return records, total
