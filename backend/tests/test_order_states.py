import pytest

from retail_ledger.order_states import (
    OrderStatus,
    DeliveryStatus,
    ORDER_TRANSITIONS,
    CANCELLABLE_STATUSES,
    TERMINAL_STATUSES,
    allowed_transitions,
    can_transition,
    can_transition_delivery,
    delivery_precondition_met,
    expected_next_action,
    parse_order_status,
)


ALLOWED = {
    ("Pending", "Packed"),
    ("Pending", "Cancelled"),
    ("Packed", "Shipped"),
    ("Packed", "Cancelled"),
    ("Shipped", "Delivered"),
    ("Shipped", "Cancelled"),
    ("Delivered", "Exchanged"),
}


def test_transition_table_matches_lifecycle():
    for src in OrderStatus:
        for dst in OrderStatus:
            assert can_transition(src.value, dst.value) == ((src.value, dst.value) in ALLOWED)


def test_same_state_is_never_allowed():
    for status in OrderStatus:
        assert not can_transition(status, status)


def test_unknown_statuses_are_rejected():
    assert not can_transition("Pending", "Teleported")
    assert not can_transition("Lost", "Packed")
    assert not can_transition(None, "Packed")
    assert parse_order_status("pending") is None


def test_cancelled_and_exchanged_admit_nothing():
    assert ORDER_TRANSITIONS[OrderStatus.CANCELLED] == frozenset()
    assert ORDER_TRANSITIONS[OrderStatus.EXCHANGED] == frozenset()
    assert allowed_transitions("Delivered") == ["Exchanged"]
    assert allowed_transitions("bogus") == []


def test_cancellable_and_terminal_sets():
    assert CANCELLABLE_STATUSES == {OrderStatus.PENDING, OrderStatus.PACKED, OrderStatus.SHIPPED}
    assert TERMINAL_STATUSES == {OrderStatus.DELIVERED, OrderStatus.CANCELLED, OrderStatus.EXCHANGED}


def test_delivery_sub_status_loop():
    assert can_transition_delivery("Awaiting Dispatch", "Out for Delivery")
    assert can_transition_delivery("Out for Delivery", "Failed Delivery")
    assert can_transition_delivery("Failed Delivery", "Out for Delivery")
    assert can_transition_delivery("Out for Delivery", "Delivered")
    assert not can_transition_delivery("Failed Delivery", "Delivered")
    assert not can_transition_delivery("Delivered", "Out for Delivery")
    assert not can_transition_delivery(None, "Out for Delivery")


def test_delivered_requires_out_for_delivery():
    assert delivery_precondition_met("Delivered", "Out for Delivery")
    assert not delivery_precondition_met("Delivered", "Failed Delivery")
    assert not delivery_precondition_met("Delivered", None)
    assert delivery_precondition_met("Cancelled", "Failed Delivery")


@pytest.mark.parametrize("status, delivery, expected", [
    ("Pending", None, "Confirm within 24 hrs"),
    ("Packed", "Awaiting Dispatch", "Ready for shipping"),
    ("Shipped", "Out for Delivery", "Delivery expected in 3-5 days"),
    ("Shipped", "Failed Delivery", "Re-attempt delivery"),
    ("Delivered", "Delivered", "Delivered successfully"),
    ("Cancelled", None, "Refund initiated"),
    ("Exchanged", "Delivered", "New item dispatched"),
])
def test_expected_next_action(status, delivery, expected):
    assert expected_next_action(status, delivery) == expected


def test_enums_compare_as_strings():
    assert OrderStatus.PENDING == "Pending"
    assert DeliveryStatus.FAILED_DELIVERY == "Failed Delivery"
