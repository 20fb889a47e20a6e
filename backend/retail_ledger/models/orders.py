from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from ..order_states import OrderStatus, PaymentStatus, OrderChannel
from retail_ledger.time_utils import to_utc_z, to_iso_date
from .inventory import AppendOnlyViolation


class Order(db.Model):
    """
    Placed order (online or point of sale).

    WHY: An order is created together with its lines and the ledger entries
    that sold its stock, in one unit of work. After that it only changes
    through the order state machine (order_states + order_service).

    Never hard-deleted: cancellation is a status.

    idempotency_key is unique so a replayed checkout finds the order it
    already created instead of placing a second one.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_orders_order_number"),
        db.UniqueConstraint("idempotency_key", name="uq_orders_idempotency_key"),
        db.Index("ix_orders_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable number (e.g., "ORD-000042")
    order_number = db.Column(db.String(32), nullable=False)
    idempotency_key = db.Column(db.String(128), nullable=False)

    channel = db.Column(db.String(16), nullable=False, default=OrderChannel.ONLINE.value)

    # Customer (external reference plus the contact snapshot taken at checkout)
    customer_id = db.Column(db.String(64), nullable=True, index=True)
    customer_name = db.Column(db.String(255), nullable=True)
    customer_email = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(64), nullable=True)
    shipping_address = db.Column(db.Text, nullable=True)

    # Payment (all amounts in cents)
    payment_method = db.Column(db.String(32), nullable=False)
    payment_status = db.Column(db.String(16), nullable=False, default=PaymentStatus.UNPAID.value)
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    # Lifecycle
    status = db.Column(db.String(16), nullable=False, default=OrderStatus.PENDING.value, index=True)
    delivery_status = db.Column(db.String(32), nullable=True, index=True)
    expected_action = db.Column(db.String(128), nullable=True)

    # Fulfilment (populated on shipment)
    estimated_delivery = db.Column(db.Date, nullable=True)
    tracking_number = db.Column(db.String(64), nullable=True)
    carrier = db.Column(db.String(120), nullable=True)
    delivery_notes = db.Column(db.Text, nullable=True)

    location_id = db.Column(db.Integer, db.ForeignKey("inventory_locations.id"), nullable=False)
    created_by = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    lines = db.relationship(
        "OrderLine",
        back_populates="order",
        order_by="OrderLine.line_number",
        lazy="select",
    )
    history = db.relationship(
        "OrderStatusHistory",
        back_populates="order",
        order_by="OrderStatusHistory.id",
        lazy="select",
    )
    location = db.relationship("InventoryLocation")
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order id={self.id} number={self.order_number!r} status={self.status!r}>"

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "idempotency_key": self.idempotency_key,
            "channel": self.channel,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "customer_phone": self.customer_phone,
            "shipping_address": self.shipping_address,
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "status": self.status,
            "delivery_status": self.delivery_status,
            "expected_action": self.expected_action,
            "estimated_delivery": to_iso_date(self.estimated_delivery),
            "tracking_number": self.tracking_number,
            "carrier": self.carrier,
            "delivery_notes": self.delivery_notes,
            "location_id": self.location_id,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class OrderLine(db.Model):
    """Individual line items on an order."""
    __tablename__ = "order_lines"
    __table_args__ = (
        db.UniqueConstraint("order_id", "line_number", name="uq_order_lines_order_line"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    # The sale ledger entry that took this line's stock
    inventory_transaction_id = db.Column(db.Integer, db.ForeignKey("inventory_transactions.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", back_populates="lines")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "line_number": self.line_number,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product is not None else None,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "inventory_transaction_id": self.inventory_transaction_id,
            "created_at": to_utc_z(self.created_at),
        }


class OrderStatusHistory(db.Model):
    """
    Append-only audit trail of order transitions.

    One row per transition, including delivery-only moves (failed attempt,
    re-dispatch) and the initial placement.
    """
    __tablename__ = "order_status_history"
    __table_args__ = (
        db.Index("ix_order_status_history_order_created", "order_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False)
    delivery_status = db.Column(db.String(32), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    actor_id = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", back_populates="history")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "status": self.status,
            "delivery_status": self.delivery_status,
            "notes": self.notes,
            "actor_id": self.actor_id,
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(OrderStatusHistory, "before_update")
def _reject_history_update(mapper, connection, target):
    raise AppendOnlyViolation(f"order status history {target.id} is append-only")


@event.listens_for(OrderStatusHistory, "before_delete")
def _reject_history_delete(mapper, connection, target):
    raise AppendOnlyViolation(f"order status history {target.id} is append-only")
