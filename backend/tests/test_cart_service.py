import pytest

from retail_ledger.services import cart_service
from retail_ledger.services.cart_service import Cart, compute_tax_cents
from retail_ledger.services.errors import OutOfStock, ProductNotFound, StockLimitExceeded
from retail_ledger.validation import ValidationError


def test_totals_for_two_a_and_one_b(cart, product_a, product_b):
    cart.add(product_a, 2)
    cart.add(product_b, 1)

    assert cart.subtotal_cents == 4000
    assert cart.tax_cents == 200
    assert cart.total_cents == 4200
    assert cart.item_count == 3


def test_repeated_add_increments_single_entry(cart, product_a):
    cart.add(product_a)
    cart.add(product_a, 2)

    assert len(cart) == 1
    assert cart.get(product_a.id).quantity == 3


def test_add_beyond_stock_raises_with_available(cart, product_a):
    cart.add(product_a, 4)
    with pytest.raises(StockLimitExceeded) as exc:
        cart.add(product_a, 2)

    assert exc.value.details["available"] == 5
    assert cart.get(product_a.id).quantity == 4


def test_add_out_of_stock(cart, make_product):
    empty = make_product(name="Sold out", stock=0)
    with pytest.raises(OutOfStock):
        cart.add(empty)
    assert cart.is_empty()


def test_add_rejects_non_positive_quantity(cart, product_a):
    with pytest.raises(ValidationError):
        cart.add(product_a, 0)


def test_set_quantity_clamps_with_warning(cart, product_a):
    cart.add(product_a, 1)

    update = cart.set_quantity(product_a.id, 9)

    assert update.clamped
    assert update.quantity == 5
    assert update.message == "Only 5 units available"
    assert cart.get(product_a.id).quantity == 5


def test_set_quantity_zero_removes(cart, product_a, product_b):
    cart.add(product_a, 2)
    cart.add(product_b, 1)

    update = cart.set_quantity(product_a.id, 0)

    assert update.removed
    assert [item.product_id for item in cart] == [product_b.id]


def test_set_quantity_unknown_product(cart):
    with pytest.raises(ProductNotFound):
        cart.set_quantity(12345, 1)


def test_remove_and_clear(cart, product_a, product_b):
    cart.add(product_a, 1)
    cart.add(product_b, 1)

    cart.remove(product_a.id)
    cart.remove(product_a.id)
    assert cart.item_count == 1

    cart.clear()
    assert cart.is_empty()
    assert cart.total_cents == 0


def test_items_keep_insertion_order(cart, product_a, product_b):
    cart.add(product_b, 1)
    cart.add(product_a, 1)
    cart.add(product_a, 1)

    assert [item.product_id for item in cart.items] == [product_b.id, product_a.id]


@pytest.mark.parametrize("subtotal, bps, expected", [
    (4000, 500, 200),
    (999, 500, 50),     # 49.95 -> 50
    (990, 500, 50),     # 49.5 -> 50 (half-up)
    (989, 500, 49),     # 49.45 -> 49
    (1234, 0, 0),
    (1, 825, 0),
])
def test_tax_rounds_half_up(subtotal, bps, expected):
    assert compute_tax_cents(subtotal, bps) == expected


def test_build_cart_uses_ledger_stock(db_session, product_a, product_b):
    cart = cart_service.build_cart([
        {"product_id": product_a.id, "quantity": 1},
        {"product_id": product_a.id, "quantity": 1},
        {"product_id": product_b.id, "quantity": 1},
    ])

    assert cart.tax_rate_bps == 500
    assert cart.get(product_a.id).quantity == 2
    assert cart.get(product_a.id).available == 5
    assert cart.to_dict()["total_cents"] == 4200


def test_build_cart_rejects_more_than_stock(db_session, product_b):
    with pytest.raises(StockLimitExceeded):
        cart_service.build_cart([{"product_id": product_b.id, "quantity": 2}])


def test_negative_tax_rate_rejected():
    with pytest.raises(ValidationError):
        Cart(tax_rate_bps=-1)


def test_build_cart_without_stock_check_keeps_requested_quantity(db_session, product_b):
    cart = cart_service.build_cart(
        [{"product_id": product_b.id, "quantity": 3}],
        validate_stock=False,
    )

    item = cart.get(product_b.id)
    assert item.quantity == 3
    assert item.available == 1


def test_cart_defaults_to_configured_tax_rate(app, monkeypatch):
    monkeypatch.setitem(app.config, "TAX_RATE_BPS", 800)

    assert Cart().tax_rate_bps == 800
    assert Cart(tax_rate_bps=0).tax_rate_bps == 0
