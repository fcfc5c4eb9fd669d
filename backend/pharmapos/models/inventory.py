from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

class Product(db.Model):
    """
    Catalog item.

    MULTI-TENANT: Products belong to a tenant; stock for a product is held
    per branch in InventoryRecord.

    Immutable once sold against: the checkout engine reads product names for
    error messages and never writes products.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "sku", name="uq_products_tenant_sku"),
        db.Index("ix_products_tenant_name", "tenant_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    generic_name = db.Column(db.String(255), nullable=True)
    category = db.Column(db.String(120), nullable=True, index=True)

    unit_price_cents = db.Column(db.Integer, nullable=True)

    requires_prescription = db.Column(db.Boolean, nullable=False, default=False)
    controlled_substance = db.Column(db.Boolean, nullable=False, default=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    tenant = db.relationship("Tenant", backref=db.backref("products", lazy=True))

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "sku": self.sku,
            "name": self.name,
            "generic_name": self.generic_name,
            "category": self.category,
            "unit_price_cents": self.unit_price_cents,
            "requires_prescription": self.requires_prescription,
            "controlled_substance": self.controlled_substance,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }

class InventoryRecord(db.Model):
    """
    On-hand stock for one product at one branch.

    INVARIANTS:
    - Exactly one live record per (branch, product).
    - quantity_on_hand >= 0, enforced by the conditional decrement in
      inventory_service and by the CHECK constraint below.
    - Never created implicitly by checkout; a missing record is
      ProductNotFound, not zero stock.
    """
    __tablename__ = "inventory_records"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "product_id", name="uq_inventory_records_branch_product"),
        db.CheckConstraint("quantity_on_hand >= 0", name="quantity_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity_on_hand = db.Column(db.Integer, nullable=False, default=0)
    reorder_level = db.Column(db.Integer, nullable=False, default=0)

    batch_number = db.Column(db.String(64), nullable=True)
    expiry_date = db.Column(db.Date, nullable=True)

    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    branch = db.relationship("Branch", backref=db.backref("inventory_records", lazy=True))
    product = db.relationship("Product")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_low_stock(self) -> bool:
        return self.quantity_on_hand <= self.reorder_level

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity_on_hand": self.quantity_on_hand,
            "reorder_level": self.reorder_level,
            "is_low_stock": self.is_low_stock,
            "batch_number": self.batch_number,
            "expiry_date": self.expiry_date.isoformat() if self.expiry_date else None,
            "version_id": self.version_id,
            "updated_at": to_utc_z(self.updated_at),
        }
