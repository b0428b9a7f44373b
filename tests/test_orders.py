# tests/test_orders.py
from concurrent.futures import ThreadPoolExecutor

import pytest

from storechat.ordering.cart import Discount
from storechat.ordering.orders import DeliveryMode, OrderDraft, OrderLine, OrderSink, format_order_id


def draft(customer_id="c1", name="Ana", subtotal=3000.0, discount=0, fee=0.0, mode=DeliveryMode.PICKUP, token=None):
    return OrderDraft(
        customer_id=customer_id,
        customer_name=name,
        lines=(OrderLine(name="Cuaderno A4", quantity=2, unit_price=1500.0, subtotal=3000.0),),
        subtotal=subtotal,
        discount=Discount(amount=discount, percent=10 if discount else 0),
        delivery_fee=fee,
        delivery_mode=mode,
        checkout_token=token,
    )


def test_format_order_id():
    assert format_order_id("PED", 7) == "PED-007"
    assert format_order_id("PED", 1234) == "PED-1234"


def test_ids_are_sequential(orders):
    first = orders.record(draft())
    second = orders.record(draft(customer_id="c2"))
    assert (first.id, second.id) == ("PED-001", "PED-002")


def test_custom_prefix(session_factory):
    sink = OrderSink(session_factory, prefix="ORD")
    assert sink.record(draft()).id == "ORD-001"


def test_total_is_subtotal_minus_discount_plus_fee(orders):
    order = orders.record(draft(subtotal=6000, discount=600, fee=800, mode=DeliveryMode.DELIVERY))
    assert order.total == 6000 - 600 + 800
    assert order.fulfillment_status == "confirmed"
    assert order.payment_status == "pending"

    stored = orders.get(order.id)
    assert stored.total == order.total
    assert stored.delivery_mode == DeliveryMode.DELIVERY
    assert stored.lines[0].name == "Cuaderno A4"


def test_customer_aggregates(orders):
    orders.record(draft(subtotal=1000))
    orders.record(draft(subtotal=2500, name="Ana María"))

    stats = orders.customer_stats("c1")
    assert stats.order_count == 2
    assert stats.total_spent == 3500
    assert stats.name == "Ana María"
    assert [o.id for o in stats.recent] == ["PED-002", "PED-001"]


def test_unknown_customer_has_no_stats(orders):
    assert orders.customer_stats("nobody") is None
    assert orders.recent_orders("nobody") == []


def test_same_checkout_is_recorded_once(orders):
    first = orders.record(draft(token="chk-1"))
    again = orders.record(draft(token="chk-1"))
    other = orders.record(draft(token="chk-2"))

    assert (first.id, again.id, other.id) == ("PED-001", "PED-001", "PED-002")
    assert again.total == first.total
    assert orders.customer_stats("c1", recent=0).order_count == 2


def test_recent_orders_limit(orders):
    for _ in range(7):
        orders.record(draft())
    assert [o.id for o in orders.recent_orders("c1", limit=3)] == ["PED-007", "PED-006", "PED-005"]


def test_concurrent_records_never_duplicate_ids(orders):
    with ThreadPoolExecutor(max_workers=8) as pool:
        placed = list(pool.map(lambda i: orders.record(draft(customer_id=f"c{i % 4}")), range(40)))

    ids = [o.id for o in placed]
    assert len(set(ids)) == 40
    assert sorted(ids) == [format_order_id("PED", n) for n in range(1, 41)]
    assert sum(orders.customer_stats(f"c{i}").order_count for i in range(4)) == 40


def test_failed_transaction_does_not_burn_an_id(orders, monkeypatch):
    def broken(db, order, number, checkout_token=None):
        raise RuntimeError("disk full")

    monkeypatch.setattr(orders, "persist", broken)
    with pytest.raises(RuntimeError):
        orders.record(draft())
    monkeypatch.undo()

    assert orders.record(draft()).id == "PED-001"
    assert orders.customer_stats("c1").order_count == 1
