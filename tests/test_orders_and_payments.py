import asyncio
import copy

import pytest

from kaapav.core.errors import ConflictError, NotFoundError, ValidationError
from kaapav.models.customer import Customer
from kaapav.models.order import Order
from kaapav.services.customers import touch_customer
from kaapav.services.event_bus import EventBus
from kaapav.services.orders import (
    can_transition,
    cancel_order,
    create_manual_order,
    create_order,
    transition_order,
)
from kaapav.services.payments import handle_callback, handle_webhook_event, mark_order_paid
from kaapav.whatsapp.menus import LINKS
from tests.fixtures_data import CUSTOMER_PHONE, PAYMENT_CAPTURED_EVENT, build_runtime

ITEMS = [{"product_id": "EAR-001", "name": "Golden Hoop Earrings", "price": 300, "quantity": 1}]


def _order(db, **overrides):
    options = {
        "phone": CUSTOMER_PHONE,
        "items": ITEMS,
        "shipping_address": "12 MG Road, Bengaluru 560001",
        "shipping_pincode": "560001",
    }
    options.update(overrides)
    order, _ = create_order(db, **options)
    return order


def _setup():
    runtime = build_runtime()
    db = runtime.session_factory()
    touch_customer(db, CUSTOMER_PHONE, "Priya Sharma")
    return runtime, db


def test_create_order_computes_totals_and_counts_the_order():
    _, db = _setup()

    order = _order(db)

    assert order.order_id.startswith("KAA-")
    assert (order.subtotal, order.shipping_cost, order.total) == (300, 49, 349)
    assert order.customer_name == "Priya Sharma"
    customer = db.query(Customer).filter(Customer.phone == CUSTOMER_PHONE).one()
    assert customer.order_count == 1


def test_create_order_with_same_idempotency_key_returns_existing():
    _, db = _setup()

    first, created_first = create_order(
        db, phone=CUSTOMER_PHONE, items=ITEMS, shipping_address="x", shipping_pincode="560001", idempotency_key="k1"
    )
    second, created_second = create_order(
        db, phone=CUSTOMER_PHONE, items=ITEMS, shipping_address="x", shipping_pincode="560001", idempotency_key="k1"
    )

    assert created_first is True
    assert created_second is False
    assert first.order_id == second.order_id
    assert db.query(Order).count() == 1


def test_create_order_requires_items():
    _, db = _setup()

    with pytest.raises(ValidationError):
        _order(db, items=[])


def test_duplicate_payment_is_credited_once():
    _, db = _setup()
    order = _order(db)

    _, changed_first = mark_order_paid(db, order.order_id, "pay_1", method="upi")
    _, changed_second = mark_order_paid(db, order.order_id, "pay_1", method="upi")

    db.refresh(order)
    customer = db.query(Customer).filter(Customer.phone == CUSTOMER_PHONE).one()
    assert changed_first is True
    assert changed_second is False
    assert order.payment_status == "paid"
    assert order.status == "confirmed"
    assert customer.total_spent == 349


def test_paid_event_is_published_once():
    _, db = _setup()
    order = _order(db)
    bus = EventBus()
    received = []
    bus.subscribe("order.paid", lambda event: received.append(event))

    mark_order_paid(db, order.order_id, "pay_1", events=bus)
    mark_order_paid(db, order.order_id, "pay_1", events=bus)

    assert len(received) == 1


def test_mark_order_paid_unknown_order():
    _, db = _setup()

    with pytest.raises(NotFoundError):
        mark_order_paid(db, "KAA-000000", "pay_1")


def test_webhook_capture_marks_order_paid_and_confirms_to_customer():
    runtime, db = _setup()
    order = _order(db)
    event = copy.deepcopy(PAYMENT_CAPTURED_EVENT)
    event["payload"]["payment"]["entity"]["notes"]["order_id"] = order.order_id

    outcome = asyncio.run(handle_webhook_event(db, runtime.gateway(db), event))
    again = asyncio.run(handle_webhook_event(db, runtime.gateway(db), event))

    db.refresh(order)
    assert outcome == "paid"
    assert again == "paid"
    assert order.payment_id == "pay_123"
    assert order.payment_method == "upi"
    assert len(runtime.transport.sent_to(CUSTOMER_PHONE)) == 1
    customer = db.query(Customer).filter(Customer.phone == CUSTOMER_PHONE).one()
    assert customer.total_spent == 349


def test_webhook_for_unknown_order_is_ignored():
    runtime, db = _setup()
    event = copy.deepcopy(PAYMENT_CAPTURED_EVENT)
    event["payload"]["payment"]["entity"]["notes"]["order_id"] = "KAA-000000"

    assert asyncio.run(handle_webhook_event(db, runtime.gateway(db), event)) == "ignored"
    assert asyncio.run(handle_webhook_event(db, runtime.gateway(db), {"event": "order.paid"})) == "ignored"


def test_callback_without_gateway_credentials_is_not_trusted():
    runtime, db = _setup()
    order = _order(db)
    params = {
        "order_id": order.order_id,
        "razorpay_payment_id": "pay_9",
        "razorpay_payment_link_status": "paid",
    }

    target = asyncio.run(handle_callback(db, runtime.gateway(db), None, params))

    db.refresh(order)
    assert target == f"{LINKS['website']}/payment-failed?order_id={order.order_id}"
    assert order.payment_status == "unpaid"


def test_callback_for_missing_order():
    runtime, db = _setup()

    target = asyncio.run(handle_callback(db, runtime.gateway(db), None, {}))

    assert target.endswith("error=missing_order")


def test_status_transitions_move_forward_only():
    assert can_transition("pending", "confirmed") is True
    assert can_transition("confirmed", "shipped") is True
    assert can_transition("shipped", "confirmed") is False
    assert can_transition("delivered", "returned") is True
    assert can_transition("shipped", "returned") is False
    assert can_transition("cancelled", "confirmed") is False


def test_transition_order_stamps_timestamps():
    _, db = _setup()
    order = _order(db)

    shipped = transition_order(db, order.order_id, "shipped")

    assert shipped.status == "shipped"
    assert shipped.shipped_at is not None
    with pytest.raises(ConflictError):
        transition_order(db, order.order_id, "pending")


def test_cancel_order_from_non_terminal_states_only():
    _, db = _setup()
    order = _order(db)

    cancelled = cancel_order(db, order.order_id, "changed my mind")

    assert cancelled.status == "cancelled"
    assert cancelled.cancellation_reason == "changed my mind"

    shipped = _order(db)
    transition_order(db, shipped.order_id, "shipped")
    assert cancel_order(db, shipped.order_id).status == "cancelled"

    delivered = _order(db)
    transition_order(db, delivered.order_id, "delivered")
    with pytest.raises(ConflictError):
        cancel_order(db, delivered.order_id)


def test_manual_order_requires_valid_phone():
    _, db = _setup()

    with pytest.raises(ValidationError):
        create_manual_order(db, {"phone": "12", "items": ITEMS})

    order = create_manual_order(
        db,
        {"phone": "98765 43210", "items": ITEMS, "shipping_address": "MG Road", "shipping_pincode": "560001"},
    )
    assert order.phone == CUSTOMER_PHONE
    assert order.source == "manual"
