from __future__ import annotations

from ..extensions import db
from retail_ledger.time_utils import to_utc_z


PRODUCT_STATUSES = ("Active", "Inactive", "Draft")


class Product(db.Model):
    """
    Product master data.

    STOCK DESIGN DECISION:
    Product has no stock column. On-hand stock lives in InventoryRecord rows
    (one per location) and is only changed by the inventory ledger, which
    appends an InventoryTransaction for every change.

    Product.stock is the sum over all locations, for display and cart checks.
    Checkout re-validates against the selling location regardless.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_status_name", "status", "name"),
        db.CheckConstraint("price_cents >= 0", name="ck_products_price_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(120), nullable=True, index=True)

    # Authoritative storage in cents (frontend may only format for display)
    price_cents = db.Column(db.Integer, nullable=False, default=0)

    # Active, Inactive, Draft. Only Active products can be sold.
    status = db.Column(db.String(16), nullable=False, default="Active", index=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    inventory_records = db.relationship("InventoryRecord", back_populates="product", lazy="select")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_active(self) -> bool:
        return self.status == "Active"

    @property
    def stock(self) -> int:
        return sum(r.quantity for r in self.inventory_records)

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "price_cents": self.price_cents,
            "status": self.status,
            "stock": self.stock,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class InventoryLocation(db.Model):
    """
    Physical stock location (warehouse, shop floor).

    Optional dimension: a single-site deployment only ever uses the default
    location, which is created on first use.
    """
    __tablename__ = "inventory_locations"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    address = db.Column(db.String(255), nullable=True)
    is_default = db.Column(db.Boolean, nullable=False, default=False, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<InventoryLocation id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "is_default": self.is_default,
            "created_at": to_utc_z(self.created_at),
        }
