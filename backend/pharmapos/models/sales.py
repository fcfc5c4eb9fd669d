from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

SALE_STATUS_PENDING = "pending"
SALE_STATUS_COMPLETED = "completed"

SALE_PAYMENT_STATUS_PENDING = "pending"
SALE_PAYMENT_STATUS_PARTIAL = "partial"
SALE_PAYMENT_STATUS_PAID = "paid"

PAYMENT_STATUS_PENDING = "pending"
PAYMENT_STATUS_COMPLETED = "completed"
PAYMENT_STATUS_FAILED = "failed"

class Sale(db.Model):
    """
    One checkout transaction.

    WHY: The sale records what was sold and for how much. How much of it has
    been paid is derived, not entered: payment_status and status are written
    exclusively by services.reconciliation from the completed payments.

    LIFECYCLE:
    - Created once by checkout with status=pending, payment_status=pending
    - status moves pending -> completed once fully paid and never regresses
    - payment_status is re-derived (pending/partial/paid) on every reconcile
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("sale_number", name="uq_sales_sale_number"),
        db.Index("ix_sales_branch_status_date", "branch_id", "status", "sale_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    # Human-readable number (e.g., "SALE20261234")
    sale_number = db.Column(db.String(32), nullable=False)

    # Patient records live in the clinical service; reference only
    patient_id = db.Column(db.Integer, nullable=True, index=True)
    cashier_id = db.Column(db.Integer, nullable=False, index=True)

    sale_date = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    # Caller-supplied figures (all amounts in cents)
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    payment_method = db.Column(db.String(32), nullable=True)

    # Derived state, see services.reconciliation
    payment_status = db.Column(db.String(16), nullable=False, default=SALE_PAYMENT_STATUS_PENDING, index=True)
    status = db.Column(db.String(16), nullable=False, default=SALE_STATUS_PENDING, index=True)

    notes = db.Column(db.Text, nullable=True)

    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    branch = db.relationship("Branch", backref=db.backref("sales", lazy=True))
    items = db.relationship(
        "SaleItem",
        back_populates="sale",
        order_by="SaleItem.position",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "branch_id": self.branch_id,
            "sale_number": self.sale_number,
            "patient_id": self.patient_id,
            "cashier_id": self.cashier_id,
            "sale_date": to_utc_z(self.sale_date),
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "status": self.status,
            "notes": self.notes,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data

class SaleItem(db.Model):
    """Individual line items on a sale, kept in request order."""
    __tablename__ = "sale_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    position = db.Column(db.Integer, nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    line_total_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", back_populates="items")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "position": self.position,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "discount_cents": self.discount_cents,
            "line_total_cents": self.line_total_cents,
        }

class Payment(db.Model):
    """
    One monetary movement, optionally tied to a sale.

    SIGN: amount_cents > 0 is a charge, amount_cents < 0 is a refund.
    Refunds are their own completed rows pointing at the charge through
    refund_of_payment_id; the charge itself is never edited.

    LIFECYCLE: pending -> completed | failed, exactly once. Retrying a failed
    payment means creating a new Payment.

    reference_number holds the gateway transaction id (mobile money polling
    looks payments up by it) or a caller-supplied reference.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.UniqueConstraint("payment_number", name="uq_payments_payment_number"),
        db.Index("ix_payments_sale_status", "sale_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)

    # Human-readable number (e.g., "PAY20265821")
    payment_number = db.Column(db.String(32), nullable=False)

    amount_cents = db.Column(db.Integer, nullable=False)
    method = db.Column(db.String(32), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default=PAYMENT_STATUS_PENDING, index=True)

    reference_number = db.Column(db.String(128), nullable=True, index=True)
    notes = db.Column(db.Text, nullable=True)

    refund_of_payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=True, index=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)

    payment_date = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    # Set while a gateway call for this payment is in flight
    processing_claimed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    sale = db.relationship("Sale", backref=db.backref("payments", lazy=True))
    refund_of = db.relationship("Payment", remote_side=[id], backref=db.backref("refunds", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_refund(self) -> bool:
        return self.amount_cents < 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "sale_id": self.sale_id,
            "payment_number": self.payment_number,
            "amount_cents": self.amount_cents,
            "method": self.method,
            "status": self.status,
            "reference_number": self.reference_number,
            "notes": self.notes,
            "refund_of_payment_id": self.refund_of_payment_id,
            "created_by_user_id": self.created_by_user_id,
            "payment_date": to_utc_z(self.payment_date),
            "processed_at": to_utc_z(self.processed_at) if self.processed_at else None,
            "processing_claimed_at": to_utc_z(self.processing_claimed_at) if self.processing_claimed_at else None,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
        }
