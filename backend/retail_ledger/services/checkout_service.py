# Overview: Service-layer operations for checkout; one atomic unit of work from cart to order.

"""
Checkout orchestration.

A checkout is a single database transaction:

    validate cart against ledger stock
    allocate order number
    insert Order + OrderLines
    decrement stock per line (ledger entry + record update)
    append the first status history row
    COMMIT

Nothing is committed before the final commit, so any failure (domain error,
store error, crash) rolls back to a state with no order, no lines, no ledger
entries and no stock change.

Replays are idempotent: the order's idempotency_key is unique, and a
checkout presenting a key that already placed an order gets that order
back untouched.
"""

from __future__ import annotations

import uuid

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..models import InventoryTransaction, Order, OrderLine
from ..order_states import (
    OrderStatus,
    DeliveryStatus,
    PaymentStatus,
    OrderChannel,
    expected_next_action,
)
from ..validation import ValidationError
from . import inventory_service
from .cart_service import Cart
from .concurrency import begin_write_lock, run_with_retry
from .errors import CheckoutFailed, EmptyCart, InsufficientStock, LedgerError, ProductUnavailable
from .identity_service import resolve_actor_id
from .notification_service import notify
from .order_service import record_history
from .products_service import get_product, resolve_location
from .sequence_service import next_document_number

POS_NOTES = "In-store purchase via POS"

CUSTOMER_FIELDS = {
    "customer_id": ("customer_id", "id"),
    "customer_name": ("customer_name", "name"),
    "customer_email": ("customer_email", "email"),
    "customer_phone": ("customer_phone", "phone"),
    "shipping_address": ("shipping_address", "address"),
}


def quote(cart: Cart) -> dict:
    """Totals for the cart as it stands. No stock check, no side effects."""
    return cart.to_dict()


def find_order_by_idempotency_key(idempotency_key: str) -> Order | None:
    return db.session.query(Order).filter_by(idempotency_key=idempotency_key).first()


def _customer_fields(customer_info: dict | None) -> dict:
    info = customer_info or {}
    if not isinstance(info, dict):
        raise ValidationError("customer_info must be an object")
    fields = {}
    for column, keys in CUSTOMER_FIELDS.items():
        for key in keys:
            value = info.get(key)
            if value not in (None, ""):
                fields[column] = str(value).strip()
                break
    return fields


def _validate_cart(cart: Cart, location_id: int) -> None:
    """
    Check every cart item against current ledger stock.

    Reports every short product at once rather than the first one found.
    """
    shortages = []
    for item in cart:
        product = get_product(item.product_id)
        if not product.is_active:
            raise ProductUnavailable(
                f"{product.name} is not available for sale",
                details={"product_id": product.id, "status": product.status},
            )
        on_hand = inventory_service.get_quantity(product.id, location_id)
        if item.quantity > on_hand:
            shortages.append({
                "product_id": product.id,
                "name": product.name,
                "requested_quantity": item.quantity,
                "on_hand": on_hand,
            })
    if shortages:
        names = ", ".join(s["name"] for s in shortages)
        raise InsufficientStock(f"Insufficient stock for {names}", details={"items": shortages})


def _partial_state(idempotency_key: str, order_number: str | None) -> dict | None:
    """After a rollback: is any trace of this checkout still in the store?"""
    try:
        orders = db.session.query(Order.id).filter_by(idempotency_key=idempotency_key).count()
        entries = 0
        if order_number:
            entries = (
                db.session.query(InventoryTransaction.id)
                .filter(InventoryTransaction.idempotency_key.like(f"{order_number}:%"))
                .count()
            )
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Could not inspect store after failed checkout %s", idempotency_key)
        return None
    return {"orders": orders, "ledger_entries": entries, "leaked": bool(orders or entries)}


def checkout(
    cart: Cart,
    payment_method: str,
    customer_info: dict | None = None,
    *,
    idempotency_key: str | None = None,
    immediate: bool = False,
    location_id: int | None = None,
    actor_id: str | None = None,
) -> Order:
    """
    Turn a cart into a placed order.

    immediate=True is a point-of-sale sale: the order is created Delivered
    and Paid. Otherwise it starts Pending and Unpaid for fulfilment.

    Raises EmptyCart, ProductNotFound, ProductUnavailable, InsufficientStock
    (listing every short product) or CheckoutFailed on store errors. On any
    failure nothing is persisted.
    """
    if not payment_method or not str(payment_method).strip():
        raise ValidationError("payment_method is required")
    payment_method = str(payment_method).strip()
    customer = _customer_fields(customer_info)
    key = idempotency_key or uuid.uuid4().hex
    actor = resolve_actor_id(actor_id)

    existing = find_order_by_idempotency_key(key)
    if existing is not None:
        current_app.logger.info("Checkout replay for key %s returned order %s", key, existing.order_number)
        cart.clear()
        return existing

    if cart.is_empty():
        notify("checkout.failed", "Cart is empty", level="error")
        raise EmptyCart("Cart is empty")

    attempt_state = {"order_number": None}

    def _op():
        begin_write_lock()

        replayed = find_order_by_idempotency_key(key)
        if replayed is not None:
            db.session.commit()
            return replayed, False

        location = resolve_location(location_id)
        _validate_cart(cart, location.id)

        order_number = next_document_number(document_type="order", prefix="ORD")
        attempt_state["order_number"] = order_number

        if immediate:
            status = OrderStatus.DELIVERED.value
            delivery_status = DeliveryStatus.DELIVERED.value
            payment_status = PaymentStatus.PAID.value
            channel = OrderChannel.POS.value
            notes = POS_NOTES
        else:
            status = OrderStatus.PENDING.value
            delivery_status = None
            payment_status = PaymentStatus.UNPAID.value
            channel = OrderChannel.ONLINE.value
            notes = None

        order = Order(
            order_number=order_number,
            idempotency_key=key,
            channel=channel,
            payment_method=payment_method,
            payment_status=payment_status,
            subtotal_cents=cart.subtotal_cents,
            tax_cents=cart.tax_cents,
            total_cents=cart.total_cents,
            status=status,
            delivery_status=delivery_status,
            expected_action=expected_next_action(status, delivery_status),
            delivery_notes=notes,
            location_id=location.id,
            created_by=actor,
            **customer,
        )
        db.session.add(order)
        db.session.flush()

        for line_number, item in enumerate(cart.items, start=1):
            tx = inventory_service.decrement(
                product_id=item.product_id,
                quantity=item.quantity,
                location_id=location.id,
                order_id=order.id,
                note=f"Order {order_number}",
                idempotency_key=f"{order_number}:{line_number}",
                actor_id=actor,
                commit=False,
            )
            db.session.add(OrderLine(
                order_id=order.id,
                line_number=line_number,
                product_id=item.product_id,
                quantity=item.quantity,
                unit_price_cents=item.unit_price_cents,
                line_total_cents=item.line_total_cents,
                inventory_transaction_id=tx.id,
            ))

        record_history(order, notes=notes or "Order placed", actor_id=actor)
        db.session.commit()
        return order, True

    try:
        order, created = run_with_retry(_op)
    except LedgerError as e:
        db.session.rollback()
        notify("checkout.failed", e.message, level="error", code=e.code, details=e.details)
        raise
    except IntegrityError as e:
        db.session.rollback()
        # Lost a race with a concurrent replay of the same key
        existing = find_order_by_idempotency_key(key)
        if existing is not None:
            cart.clear()
            return existing
        raise _checkout_failed(e, key, attempt_state["order_number"]) from e
    except SQLAlchemyError as e:
        db.session.rollback()
        raise _checkout_failed(e, key, attempt_state["order_number"]) from e
    except Exception:
        db.session.rollback()
        notify("checkout.failed", "Checkout failed", level="error", idempotency_key=key)
        raise

    cart.clear()
    if not created:
        return order

    current_app.logger.info(
        "Checkout placed %s (%s, %d lines, total %d cents)",
        order.order_number, order.channel, len(order.lines), order.total_cents,
    )
    notify(
        "checkout.completed",
        f"Order {order.order_number} placed",
        level="success",
        order_id=order.id,
        order_number=order.order_number,
        total_cents=order.total_cents,
    )
    return order


def _checkout_failed(exc: Exception, key: str, order_number: str | None) -> CheckoutFailed:
    current_app.logger.exception("Checkout %s failed in the store", key)
    partial = _partial_state(key, order_number)
    notify("checkout.failed", "Checkout could not be saved", level="error", idempotency_key=key)
    return CheckoutFailed(
        "Checkout could not be saved; nothing was charged or reserved",
        details={
            "idempotency_key": key,
            "cause": type(exc).__name__,
            "partial_state": partial,
        },
    )
