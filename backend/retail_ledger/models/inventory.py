from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from retail_ledger.time_utils import to_utc_z


LEDGER_TYPES = ("sale", "restock", "adjustment")


class InventoryRecord(db.Model):
    """
    Current stock for one (product, location) pair.

    INVARIANT: quantity == SUM(InventoryTransaction.quantity_delta) for the
    same (product, location). The ledger service is the only writer and
    changes quantity with a compare-and-swap UPDATE in the same unit of work
    that appends the ledger entry.

    quantity may never go negative (CHECK constraint backs the service check).
    low_stock_threshold NULL means "use LOW_STOCK_THRESHOLD from config".
    """
    __tablename__ = "inventory_records"
    __table_args__ = (
        db.UniqueConstraint("product_id", "location_id", name="uq_inventory_records_product_location"),
        db.CheckConstraint("quantity >= 0", name="ck_inventory_records_quantity_non_negative"),
        db.Index("ix_inventory_records_location_quantity", "location_id", "quantity"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("inventory_locations.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    low_stock_threshold = db.Column(db.Integer, nullable=True)
    last_restocked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product", back_populates="inventory_records")
    location = db.relationship("InventoryLocation")

    def __repr__(self) -> str:
        return (
            f"<InventoryRecord product_id={self.product_id} "
            f"location_id={self.location_id} quantity={self.quantity}>"
        )

    def to_dict(self, default_threshold: int | None = None) -> dict:
        threshold = self.low_stock_threshold
        if threshold is None:
            threshold = default_threshold
        return {
            "id": self.id,
            "product_id": self.product_id,
            "location_id": self.location_id,
            "quantity": self.quantity or 0,
            "low_stock_threshold": threshold,
            "threshold_overridden": self.low_stock_threshold is not None,
            "is_low_stock": threshold is not None and (self.quantity or 0) <= threshold,
            "last_restocked_at": to_utc_z(self.last_restocked_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class InventoryTransaction(db.Model):
    """
    Append-only inventory ledger entry.

    TYPES:
    - sale: negative delta, references the order that sold the stock
    - restock: positive delta (deliveries in, cancelled orders returned)
    - adjustment: manual correction, either sign

    IMMUTABLE: rows are never updated or deleted (enforced by mapper events
    below). Corrections are new entries.

    idempotency_key makes retried writes safe: a second write with the same
    key returns the first entry instead of applying the delta again.
    """
    __tablename__ = "inventory_transactions"
    __table_args__ = (
        db.Index("ix_invtx_product_location_occurred", "product_id", "location_id", "occurred_at"),
        db.UniqueConstraint("idempotency_key", name="uq_invtx_idempotency_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("inventory_locations.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False, index=True)
    quantity_delta = db.Column(db.Integer, nullable=False)
    # Balance of the (product, location) record right after this entry
    quantity_after = db.Column(db.Integer, nullable=False)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    actor_id = db.Column(db.String(64), nullable=True)
    idempotency_key = db.Column(db.String(128), nullable=True)

    note = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        index=True,
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "location_id": self.location_id,
            "type": self.type,
            "quantity_delta": self.quantity_delta,
            "quantity_after": self.quantity_after,
            "order_id": self.order_id,
            "actor_id": self.actor_id,
            "idempotency_key": self.idempotency_key,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class AppendOnlyViolation(RuntimeError):
    """Raised when code tries to update or delete an append-only row."""


@event.listens_for(InventoryTransaction, "before_update")
def _reject_ledger_update(mapper, connection, target):
    raise AppendOnlyViolation(f"inventory transaction {target.id} is append-only")


@event.listens_for(InventoryTransaction, "before_delete")
def _reject_ledger_delete(mapper, connection, target):
    raise AppendOnlyViolation(f"inventory transaction {target.id} is append-only")
