# Overview: Service-layer operations for orders; lifecycle transitions, delivery tracking and history.

"""
Order lifecycle service.

All rules about which moves are legal live in order_states; this module
applies them to stored orders and carries out the side effects:

- Pending -> Packed: delivery sub-status Awaiting Dispatch
- Packed -> Shipped: Out for Delivery, tracking number, carrier, estimate
- Shipped -> Delivered: only while Out for Delivery
- -> Cancelled: every line's stock goes back to the ledger (restock)
- Delivered -> Exchanged: recorded only

Each change is one unit of work: the order row, its history row and any
ledger entries commit together or not at all. A rejected request leaves the
order exactly as it was.
"""

from __future__ import annotations

import secrets

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Order, OrderStatusHistory
from ..order_states import (
    OrderStatus,
    DeliveryStatus,
    PaymentStatus,
    allowed_transitions,
    can_transition,
    can_transition_delivery,
    delivery_precondition_met,
    expected_next_action,
    parse_delivery_status,
    parse_order_status,
)
from ..time_utils import add_business_days, utcnow
from ..validation import ValidationError
from . import inventory_service
from .concurrency import begin_write_lock, lock_for_update, run_with_retry
from .errors import InvalidTransition, LedgerError, OrderNotFound
from .identity_service import resolve_actor_id
from .notification_service import notify


ACTIVE_DELIVERY_STATUSES = (OrderStatus.PACKED.value, OrderStatus.SHIPPED.value)


def get_order(order_id: int, *, lock: bool = False) -> Order:
    query = db.session.query(Order).filter_by(id=order_id)
    if lock:
        query = lock_for_update(query)
    order = query.first()
    if order is None:
        raise OrderNotFound(f"Order {order_id} not found", details={"order_id": order_id})
    return order


def get_order_by_number(order_number: str) -> Order:
    order = db.session.query(Order).filter_by(order_number=order_number).first()
    if order is None:
        raise OrderNotFound(f"Order {order_number} not found", details={"order_number": order_number})
    return order


def list_orders(status: str | None = None, limit: int = 100) -> list[Order]:
    query = db.session.query(Order)
    if status is not None:
        parsed = parse_order_status(status)
        if parsed is None:
            raise ValidationError(f"Unknown order status: {status}")
        query = query.filter(Order.status == parsed.value)
    return query.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).all()


def list_status_history(order_id: int) -> list[OrderStatusHistory]:
    get_order(order_id)
    return (
        db.session.query(OrderStatusHistory)
        .filter_by(order_id=order_id)
        .order_by(OrderStatusHistory.id.asc())
        .all()
    )


def list_active_deliveries() -> list[Order]:
    """Orders still moving through fulfilment (Packed or Shipped), oldest first."""
    return (
        db.session.query(Order)
        .filter(Order.status.in_(ACTIVE_DELIVERY_STATUSES))
        .order_by(Order.created_at.asc(), Order.id.asc())
        .all()
    )


def delivery_stats() -> dict[str, int]:
    """Count of orders per delivery sub-status (every sub-status present, zero if none)."""
    stats = {ds.value: 0 for ds in DeliveryStatus}
    rows = (
        db.session.query(Order.delivery_status, func.count(Order.id))
        .filter(Order.delivery_status.isnot(None))
        .group_by(Order.delivery_status)
        .all()
    )
    for delivery_status, count in rows:
        stats[delivery_status] = int(count)
    return stats


def record_history(order: Order, *, notes: str | None = None, actor_id: str | None = None) -> OrderStatusHistory:
    """Append the order's current (status, delivery_status) to its history. No commit."""
    entry = OrderStatusHistory(
        order_id=order.id,
        status=order.status,
        delivery_status=order.delivery_status,
        notes=notes,
        actor_id=resolve_actor_id(actor_id),
        created_at=utcnow(),
    )
    db.session.add(entry)
    return entry


def generate_tracking_number() -> str:
    return f"TRK-{secrets.token_hex(5).upper()}"


def _estimate_delivery():
    lead = int(current_app.config.get("DELIVERY_LEAD_BUSINESS_DAYS", 5))
    return add_business_days(utcnow().date(), lead)


def _reject(order: Order, message: str, **details) -> None:
    raise InvalidTransition(
        message,
        details={
            "order_id": order.id,
            "status": order.status,
            "delivery_status": order.delivery_status,
            "allowed": allowed_transitions(order.status),
            **details,
        },
    )


def _return_stock(order: Order, actor_id: str | None) -> None:
    """Book one restock entry per line, reversing the sale."""
    for line in order.lines:
        inventory_service.restock(
            product_id=line.product_id,
            quantity=line.quantity,
            location_id=order.location_id,
            order_id=order.id,
            note=f"Cancelled order {order.order_number}",
            idempotency_key=f"{order.order_number}:{line.line_number}:cancel",
            actor_id=actor_id,
            commit=False,
        )


def _apply_transition(
    order: Order,
    target: OrderStatus,
    *,
    notes: str | None,
    carrier: str | None,
    tracking_number: str | None,
    actor_id: str | None,
) -> None:
    """Validate and apply a commercial status change to a locked order. No commit."""
    if not can_transition(order.status, target):
        _reject(order, f"Cannot move order from {order.status} to {target.value}", requested=target.value)
    if not delivery_precondition_met(target, order.delivery_status):
        _reject(
            order,
            f"Order cannot be {target.value} while delivery is {order.delivery_status}",
            requested=target.value,
        )

    if target is OrderStatus.PACKED:
        order.delivery_status = DeliveryStatus.AWAITING_DISPATCH.value
    elif target is OrderStatus.SHIPPED:
        order.delivery_status = DeliveryStatus.OUT_FOR_DELIVERY.value
        order.tracking_number = tracking_number or order.tracking_number or generate_tracking_number()
        order.carrier = carrier or order.carrier or current_app.config.get("DEFAULT_CARRIER")
        order.estimated_delivery = _estimate_delivery()
    elif target is OrderStatus.DELIVERED:
        order.delivery_status = DeliveryStatus.DELIVERED.value
        if notes:
            order.delivery_notes = notes
    elif target is OrderStatus.CANCELLED:
        _return_stock(order, actor_id)
        order.delivery_status = None
        if order.payment_status == PaymentStatus.PAID.value:
            order.payment_status = PaymentStatus.REFUND_PENDING.value

    order.status = target.value
    order.expected_action = expected_next_action(order.status, order.delivery_status)
    record_history(order, notes=notes, actor_id=actor_id)


def _change_order(order_id: int, mutate, *, event: str) -> Order:
    """
    Run mutate(order) on the locked order as one unit of work and commit.

    Domain errors roll back and propagate; transient store errors are
    retried by run_with_retry.
    """
    def _op():
        begin_write_lock()
        order = get_order(order_id, lock=True)
        previous = (order.status, order.delivery_status)
        mutate(order)
        db.session.commit()
        return order, previous

    try:
        order, previous = run_with_retry(_op)
    except InvalidTransition as e:
        db.session.rollback()
        notify(f"{event}.rejected", e.message, level="warning", order_id=order_id)
        raise
    except LedgerError:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Order %s: %s/%s -> %s/%s",
        order.order_number, previous[0], previous[1], order.status, order.delivery_status,
    )
    notify(
        event,
        f"Order {order.order_number} is now {order.status}",
        level="success",
        order_id=order.id,
        order_number=order.order_number,
        status=order.status,
        delivery_status=order.delivery_status,
    )
    return order


def transition_order(
    order_id: int,
    target_status,
    *,
    notes: str | None = None,
    carrier: str | None = None,
    tracking_number: str | None = None,
    actor_id: str | None = None,
) -> Order:
    """
    Move an order to target_status.

    Any pair not allowed by order_states (same-state and unknown status
    strings included) raises InvalidTransition and changes nothing.
    """
    target = parse_order_status(target_status)
    if target is None:
        order = get_order(order_id)
        _reject(order, f"Unknown order status: {target_status}", requested=str(target_status))

    def _mutate(order):
        _apply_transition(
            order,
            target,
            notes=notes,
            carrier=carrier,
            tracking_number=tracking_number,
            actor_id=actor_id,
        )

    return _change_order(order_id, _mutate, event="order.transitioned")


def record_delivery_attempt(
    order_id: int,
    delivered: bool,
    *,
    notes: str | None = None,
    actor_id: str | None = None,
) -> Order:
    """
    Outcome of a delivery run for a Shipped order that is Out for Delivery.

    Success delivers the order; failure keeps it Shipped with delivery
    Failed Delivery, ready for redispatch().
    """
    if delivered:
        return transition_order(order_id, OrderStatus.DELIVERED, notes=notes, actor_id=actor_id)

    def _mutate(order):
        if order.status != OrderStatus.SHIPPED.value or not can_transition_delivery(
            order.delivery_status, DeliveryStatus.FAILED_DELIVERY
        ):
            _reject(
                order,
                f"Cannot record a failed delivery for an order that is {order.status}"
                + (f"/{order.delivery_status}" if order.delivery_status else ""),
                requested=DeliveryStatus.FAILED_DELIVERY.value,
            )
        order.delivery_status = DeliveryStatus.FAILED_DELIVERY.value
        if notes:
            order.delivery_notes = notes
        order.expected_action = expected_next_action(order.status, order.delivery_status)
        record_history(order, notes=notes, actor_id=actor_id)

    return _change_order(order_id, _mutate, event="order.delivery_failed")


def redispatch(
    order_id: int,
    *,
    carrier: str | None = None,
    notes: str | None = None,
    actor_id: str | None = None,
) -> Order:
    """Send a Failed Delivery order out again; the estimate is recomputed from today."""
    def _mutate(order):
        if order.status != OrderStatus.SHIPPED.value or not can_transition_delivery(
            order.delivery_status, DeliveryStatus.OUT_FOR_DELIVERY
        ):
            _reject(
                order,
                "Only orders with a failed delivery can be re-dispatched",
                requested=DeliveryStatus.OUT_FOR_DELIVERY.value,
            )
        order.delivery_status = DeliveryStatus.OUT_FOR_DELIVERY.value
        if carrier:
            order.carrier = carrier
        order.estimated_delivery = _estimate_delivery()
        order.expected_action = expected_next_action(order.status, order.delivery_status)
        record_history(order, notes=notes, actor_id=actor_id)

    return _change_order(order_id, _mutate, event="order.redispatched")


def update_delivery_status(
    order_id: int,
    delivery_status,
    *,
    notes: str | None = None,
    carrier: str | None = None,
    actor_id: str | None = None,
) -> Order:
    """
    Apply a delivery sub-status request.

    - Delivered: successful attempt
    - Failed Delivery: failed attempt
    - Out for Delivery: ships a Packed order, re-dispatches a failed one
    """
    target = parse_delivery_status(delivery_status)
    if target is DeliveryStatus.DELIVERED:
        return record_delivery_attempt(order_id, True, notes=notes, actor_id=actor_id)
    if target is DeliveryStatus.FAILED_DELIVERY:
        return record_delivery_attempt(order_id, False, notes=notes, actor_id=actor_id)
    if target is DeliveryStatus.OUT_FOR_DELIVERY:
        order = get_order(order_id)
        if order.status == OrderStatus.PACKED.value:
            return transition_order(order_id, OrderStatus.SHIPPED, notes=notes, carrier=carrier, actor_id=actor_id)
        return redispatch(order_id, carrier=carrier, notes=notes, actor_id=actor_id)

    order = get_order(order_id)
    _reject(order, f"Cannot set delivery status to {delivery_status}", requested=str(delivery_status))
