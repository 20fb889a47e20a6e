"""
Retail Ledger Order State Machine (authoritative)

================================================================================
PURPOSE: Single source of truth for order status and delivery sub-status rules
================================================================================

ORDER STATUS:
    Pending -> Packed -> Shipped -> Delivered -> Exchanged
    Pending/Packed/Shipped -> Cancelled

    Terminal: Delivered (only Exchanged may follow), Cancelled, Exchanged.

DELIVERY SUB-STATUS (attached once the order is Packed):
    Awaiting Dispatch -> Out for Delivery -> Delivered
    Out for Delivery -> Failed Delivery -> Out for Delivery (re-attempt)

    A failed delivery never cancels the order. The order stays Shipped.

RULES:
1. Transitions not listed in ORDER_TRANSITIONS are rejected (no coercion).
2. Same-state requests are rejected; callers must not rely on no-ops.
3. Display text ("expected next action") is derived from the pair
   (status, delivery_status) and never drives business logic.

Everything here is pure: no database access, safe to import from models.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class OrderStatus(str, Enum):
    PENDING = "Pending"
    PACKED = "Packed"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"
    EXCHANGED = "Exchanged"


class DeliveryStatus(str, Enum):
    AWAITING_DISPATCH = "Awaiting Dispatch"
    OUT_FOR_DELIVERY = "Out for Delivery"
    DELIVERED = "Delivered"
    FAILED_DELIVERY = "Failed Delivery"


class PaymentStatus(str, Enum):
    UNPAID = "Unpaid"
    PAID = "Paid"
    REFUND_PENDING = "Refund Pending"


class OrderChannel(str, Enum):
    ONLINE = "online"
    POS = "pos"


ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PACKED, OrderStatus.CANCELLED}),
    OrderStatus.PACKED: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.EXCHANGED}),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.EXCHANGED: frozenset(),
}

DELIVERY_TRANSITIONS: dict[DeliveryStatus, frozenset[DeliveryStatus]] = {
    DeliveryStatus.AWAITING_DISPATCH: frozenset({DeliveryStatus.OUT_FOR_DELIVERY}),
    DeliveryStatus.OUT_FOR_DELIVERY: frozenset({DeliveryStatus.DELIVERED, DeliveryStatus.FAILED_DELIVERY}),
    DeliveryStatus.FAILED_DELIVERY: frozenset({DeliveryStatus.OUT_FOR_DELIVERY}),
    DeliveryStatus.DELIVERED: frozenset(),
}

# Delivery sub-status an order must hold before the commercial transition is allowed.
# Missing entries mean "no delivery precondition".
DELIVERY_PRECONDITIONS: dict[OrderStatus, frozenset[Optional[DeliveryStatus]]] = {
    OrderStatus.DELIVERED: frozenset({DeliveryStatus.OUT_FOR_DELIVERY}),
}

TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED, OrderStatus.EXCHANGED})

# Statuses whose orders still hold sold stock that a cancellation must return.
CANCELLABLE_STATUSES = frozenset(
    s for s, targets in ORDER_TRANSITIONS.items() if OrderStatus.CANCELLED in targets
)


def parse_order_status(value) -> Optional[OrderStatus]:
    """Return the OrderStatus for a value, or None if it is not a known status."""
    if isinstance(value, OrderStatus):
        return value
    try:
        return OrderStatus(value)
    except ValueError:
        return None


def parse_delivery_status(value) -> Optional[DeliveryStatus]:
    if isinstance(value, DeliveryStatus):
        return value
    try:
        return DeliveryStatus(value)
    except ValueError:
        return None


def can_transition(from_status, to_status) -> bool:
    """
    Check a commercial status transition against ORDER_TRANSITIONS.

    Unknown statuses on either side are never allowed.
    """
    src = parse_order_status(from_status)
    dst = parse_order_status(to_status)
    if src is None or dst is None:
        return False
    return dst in ORDER_TRANSITIONS[src]


def can_transition_delivery(from_status, to_status) -> bool:
    src = parse_delivery_status(from_status)
    dst = parse_delivery_status(to_status)
    if src is None or dst is None:
        return False
    return dst in DELIVERY_TRANSITIONS[src]


def delivery_precondition_met(to_status, delivery_status) -> bool:
    dst = parse_order_status(to_status)
    required = DELIVERY_PRECONDITIONS.get(dst)
    if required is None:
        return True
    return parse_delivery_status(delivery_status) in required


def allowed_transitions(from_status) -> list[str]:
    src = parse_order_status(from_status)
    if src is None:
        return []
    return sorted(s.value for s in ORDER_TRANSITIONS[src])


def expected_next_action(status, delivery_status=None) -> str:
    """
    Human-readable projection of what should happen next for an order.

    Shipped orders depend on the delivery sub-status: a failed attempt asks
    for a re-attempt instead of quoting a delivery window.
    """
    st = parse_order_status(status)
    ds = parse_delivery_status(delivery_status)

    if st is OrderStatus.PENDING:
        return "Confirm within 24 hrs"
    if st is OrderStatus.PACKED:
        return "Ready for shipping"
    if st is OrderStatus.SHIPPED:
        if ds is DeliveryStatus.FAILED_DELIVERY:
            return "Re-attempt delivery"
        return "Delivery expected in 3-5 days"
    if st is OrderStatus.DELIVERED:
        return "Delivered successfully"
    if st is OrderStatus.CANCELLED:
        return "Refund initiated"
    if st is OrderStatus.EXCHANGED:
        return "New item dispatched"
    return ""
