import pytest
from sqlalchemy.exc import DatabaseError

from conftest import place_order
from retail_ledger.extensions import db
from retail_ledger.models import DocumentSequence, InventoryTransaction, Order, OrderLine, OrderStatusHistory
from retail_ledger.services import checkout_service, inventory_service, products_service
from retail_ledger.services.errors import (
    CheckoutFailed,
    EmptyCart,
    InsufficientStock,
    ProductUnavailable,
)
from retail_ledger.validation import ValidationError


def _sale_entries():
    return db.session.query(InventoryTransaction).filter_by(type="sale").order_by(InventoryTransaction.id).all()


def test_checkout_two_a_one_b(cart, product_a, product_b, notifications):
    order = place_order(cart, (product_a, 2), (product_b, 1))

    assert order.order_number == "ORD-000001"
    assert order.status == "Pending"
    assert order.payment_status == "Unpaid"
    assert order.channel == "online"
    assert order.delivery_status is None
    assert order.expected_action == "Confirm within 24 hrs"
    assert (order.subtotal_cents, order.tax_cents, order.total_cents) == (4000, 200, 4200)

    assert inventory_service.get_quantity(product_a.id) == 3
    assert inventory_service.get_quantity(product_b.id) == 0

    entries = _sale_entries()
    assert [(e.product_id, e.quantity_delta) for e in entries] == [(product_a.id, -2), (product_b.id, -1)]
    assert all(e.order_id == order.id for e in entries)
    assert [e.idempotency_key for e in entries] == ["ORD-000001:1", "ORD-000001:2"]

    lines = order.lines
    assert [(l.line_number, l.quantity, l.unit_price_cents, l.line_total_cents) for l in lines] == [
        (1, 2, 1000, 2000),
        (2, 1, 2000, 2000),
    ]
    assert [l.inventory_transaction_id for l in lines] == [e.id for e in entries]

    assert [(h.status, h.notes) for h in order.history] == [("Pending", "Order placed")]
    assert cart.is_empty()
    assert notifications[-1]["event"] == "checkout.completed"
    assert notifications[-1]["level"] == "success"
    assert inventory_service.reconcile_ledger() == []


def test_order_numbers_are_sequential(cart, make_product):
    product = make_product(stock=10)
    first = place_order(cart, (product, 1))
    second = place_order(cart, (product, 1))

    assert (first.order_number, second.order_number) == ("ORD-000001", "ORD-000002")


def test_insufficient_stock_lists_every_short_product(cart, product_a, product_b):
    cart.add(product_a, 6, available=100)
    cart.add(product_b, 2, available=100)

    with pytest.raises(InsufficientStock) as exc:
        checkout_service.checkout(cart, "card")

    short = {item["product_id"]: item for item in exc.value.details["items"]}
    assert set(short) == {product_a.id, product_b.id}
    assert short[product_a.id]["on_hand"] == 5
    assert short[product_b.id]["requested_quantity"] == 2

    assert db.session.query(Order).count() == 0
    assert _sale_entries() == []
    assert not cart.is_empty()


def test_failure_at_second_line_rolls_back_everything(cart, product_a, product_b, monkeypatch, notifications):
    real_decrement = inventory_service.decrement
    calls = {"n": 0}

    def flaky_decrement(**kwargs):
        calls["n"] += 1
        if calls["n"] == 2:
            raise DatabaseError("UPDATE inventory_records", {}, Exception("disk I/O error"))
        return real_decrement(**kwargs)

    monkeypatch.setattr(inventory_service, "decrement", flaky_decrement)
    cart.add(product_a, 2)
    cart.add(product_b, 1)

    with pytest.raises(CheckoutFailed) as exc:
        checkout_service.checkout(cart, "card", idempotency_key="atomic-1")

    assert exc.value.status_code == 500
    assert exc.value.details["cause"] == "DatabaseError"
    assert exc.value.details["partial_state"] == {"orders": 0, "ledger_entries": 0, "leaked": False}

    assert db.session.query(Order).count() == 0
    assert db.session.query(OrderLine).count() == 0
    assert db.session.query(OrderStatusHistory).count() == 0
    assert db.session.query(DocumentSequence).count() == 0
    assert _sale_entries() == []
    assert inventory_service.get_quantity(product_a.id) == 5
    assert inventory_service.get_quantity(product_b.id) == 1
    assert notifications[-1]["event"] == "checkout.failed"


def test_domain_failure_mid_checkout_rolls_back(cart, product_a, product_b, monkeypatch):
    real_decrement = inventory_service.decrement

    def decrement_then_fail(**kwargs):
        if kwargs["product_id"] == product_b.id:
            raise InsufficientStock("Insufficient stock", details={"items": []})
        return real_decrement(**kwargs)

    monkeypatch.setattr(inventory_service, "decrement", decrement_then_fail)
    cart.add(product_a, 1)
    cart.add(product_b, 1)

    with pytest.raises(InsufficientStock):
        checkout_service.checkout(cart, "cash")

    assert db.session.query(Order).count() == 0
    assert inventory_service.get_quantity(product_a.id) == 5


def test_replay_with_same_key_returns_same_order(cart, product_a):
    first = place_order(cart, (product_a, 2), idempotency_key="client-key-1")
    again = place_order(cart, (product_a, 2), idempotency_key="client-key-1")

    assert again.id == first.id
    assert db.session.query(Order).count() == 1
    assert len(_sale_entries()) == 1
    assert inventory_service.get_quantity(product_a.id) == 3


def test_generated_keys_are_distinct(cart, product_a):
    first = place_order(cart, (product_a, 1))
    second = place_order(cart, (product_a, 1))

    assert first.idempotency_key != second.idempotency_key
    assert inventory_service.get_quantity(product_a.id) == 3


def test_empty_cart(cart, db_session, notifications):
    with pytest.raises(EmptyCart):
        checkout_service.checkout(cart, "card")
    assert notifications[-1]["event"] == "checkout.failed"


def test_inactive_product_cannot_be_sold(cart, product_a):
    cart.add(product_a, 1)
    products_service.set_product_status(product_a.id, "Inactive")

    with pytest.raises(ProductUnavailable):
        checkout_service.checkout(cart, "card")
    assert inventory_service.get_quantity(product_a.id) == 5


def test_payment_method_required(cart, product_a):
    cart.add(product_a, 1)
    with pytest.raises(ValidationError):
        checkout_service.checkout(cart, "  ")


def test_immediate_sale_is_delivered_and_paid(cart, product_a):
    order = place_order(cart, (product_a, 1), payment_method="cash", immediate=True)

    assert order.status == "Delivered"
    assert order.delivery_status == "Delivered"
    assert order.payment_status == "Paid"
    assert order.channel == "pos"
    assert order.delivery_notes == "In-store purchase via POS"
    assert order.expected_action == "Delivered successfully"
    assert inventory_service.get_quantity(product_a.id) == 4


def test_customer_info_and_actor_are_recorded(cart, product_a):
    order = place_order(
        cart,
        (product_a, 1),
        customer_info={"name": "Ada Lovelace", "email": "ada@example.com", "address": "12 Analytical Way"},
        actor_id="clerk-7",
    )

    assert order.customer_name == "Ada Lovelace"
    assert order.customer_email == "ada@example.com"
    assert order.shipping_address == "12 Analytical Way"
    assert order.created_by == "clerk-7"
    assert _sale_entries()[0].actor_id == "clerk-7"
    assert order.history[0].actor_id == "clerk-7"


def test_quote_has_no_side_effects(cart, product_a):
    cart.add(product_a, 3)

    quote = checkout_service.quote(cart)

    assert quote["subtotal_cents"] == 3000
    assert quote["tax_cents"] == 150
    assert quote["total_cents"] == 3150
    assert db.session.query(Order).count() == 0
    assert not cart.is_empty()
