import asyncio

from kaapav.conversation.dispatcher import handle_message, process_batch
from kaapav.conversation.inbound import parse_webhook
from kaapav.conversation.text_router import handle_text
from kaapav.core.rate_limiter import InMemoryRateLimiterService
from kaapav.models.cart import Cart
from kaapav.models.chat import Chat
from kaapav.models.customer import Customer
from kaapav.models.error_log import ErrorLog
from kaapav.models.message import Message
from kaapav.models.order import Order
from kaapav.models.quick_reply import QuickReply
from kaapav.services import carts as cart_service
from kaapav.services.customers import set_language, touch_customer
from kaapav.utils.text import MAX_TEXT_LENGTH
from kaapav.whatsapp.menus import FALLBACK_TEXT, LINKS
from tests.fixtures_data import (
    CUSTOMER_PHONE,
    add_product,
    build_runtime,
    button_message,
    reply_button_ids,
    text_bodies,
    text_message,
)

MAIN_MENU_BUTTONS = ["JEWELLERY_MENU", "CHAT_MENU", "OFFERS_MENU"]


def _setup():
    runtime = build_runtime()
    db = runtime.session_factory()
    return runtime, db, runtime.context(db)


def test_greeting_creates_customer_and_sends_main_menu():
    runtime, db, ctx = _setup()

    asyncio.run(handle_message(ctx, text_message("wamid.1", "hi")))

    customer = db.query(Customer).filter(Customer.phone == CUSTOMER_PHONE).first()
    assert customer is not None
    assert customer.name == "Priya Sharma"
    assert customer.message_count == 1

    sent = runtime.transport.sent_to(CUSTOMER_PHONE)
    assert sent[0]["reaction"] == {"message_id": "wamid.1", "emoji": "👋"}
    assert reply_button_ids(sent[1]) == MAIN_MENU_BUTTONS
    assert len(sent) == 2
    assert runtime.transport.read_receipts == ["wamid.1"]

    chat = db.query(Chat).filter(Chat.phone == CUSTOMER_PHONE).first()
    assert chat is not None
    assert chat.last_direction == "outgoing"
    directions = sorted(row.direction for row in db.query(Message).all())
    assert directions == ["incoming", "outgoing", "outgoing"]


def test_duplicate_delivery_is_handled_once():
    runtime, db, ctx = _setup()

    asyncio.run(handle_message(ctx, text_message("wamid.dup", "menu")))
    asyncio.run(handle_message(ctx, text_message("wamid.dup", "menu")))

    assert len(runtime.transport.sent_to(CUSTOMER_PHONE)) == 2
    assert db.query(Message).filter(Message.direction == "incoming").count() == 1


def test_unknown_order_offers_support_and_retry():
    runtime, _, ctx = _setup()

    asyncio.run(handle_message(ctx, text_message("wamid.2", "Where is KAA-999999?")))

    last = runtime.transport.sent_to(CUSTOMER_PHONE)[-1]
    assert "KAA-999999" in last["interactive"]["body"]["text"]
    assert reply_button_ids(last) == ["CHAT_NOW", "TRACK_ORDER"]


def test_checkout_with_address_creates_order_and_clears_state():
    runtime, db, ctx = _setup()
    product = add_product(db)
    cart_service.add_item(db, CUSTOMER_PHONE, cart_service.item_from_product(product, 1))
    ctx.states.set(CUSTOMER_PHONE, "order", "address", {})

    asyncio.run(handle_message(ctx, text_message("wamid.3", "Priya, 12 MG Road, Bengaluru 560001")))

    summary = runtime.transport.sent_to(CUSTOMER_PHONE)[-1]
    assert "Total: ₹349" in summary["interactive"]["body"]["text"]
    assert reply_button_ids(summary) == ["CONFIRM_ORDER", "MODIFY_ORDER", "CANCEL_ORDER"]

    asyncio.run(handle_message(ctx, button_message("wamid.4", "CONFIRM_ORDER")))

    order = db.query(Order).one()
    assert order.phone == CUSTOMER_PHONE
    assert order.subtotal == 300
    assert order.shipping_cost == 49
    assert order.total == 349
    assert order.shipping_pincode == "560001"
    assert order.status == "pending"
    assert order.payment_status == "unpaid"
    assert ctx.states.get(CUSTOMER_PHONE) is None
    assert db.query(Cart).one().status == "converted"

    bodies = text_bodies(runtime.transport.sent_to(CUSTOMER_PHONE))
    assert any(order.order_id in body and LINKS["payment"] in body for body in bodies)


def test_repeated_confirm_reuses_the_order():
    runtime, db, ctx = _setup()
    product = add_product(db)
    cart_service.add_item(db, CUSTOMER_PHONE, cart_service.item_from_product(product, 1))
    ctx.states.set(CUSTOMER_PHONE, "order", "confirm", {"address": "12 MG Road 560001", "pincode": "560001"})

    asyncio.run(handle_message(ctx, button_message("wamid.5", "CONFIRM_ORDER")))
    asyncio.run(handle_message(ctx, button_message("wamid.6", "checkout")))

    orders = db.query(Order).all()
    assert len(orders) == 1
    bodies = text_bodies(runtime.transport.sent_to(CUSTOMER_PHONE))
    assert sum(orders[0].order_id in body for body in bodies) == 2


def test_confirm_without_address_asks_for_it():
    runtime, db, ctx = _setup()
    product = add_product(db)
    cart_service.add_item(db, CUSTOMER_PHONE, cart_service.item_from_product(product, 2))

    asyncio.run(handle_message(ctx, button_message("wamid.7", "CONFIRM_ORDER")))

    assert db.query(Order).count() == 0
    state = ctx.states.get(CUSTOMER_PHONE)
    assert state is not None
    assert state.step == "address"
    assert "Delivery Address" in text_bodies(runtime.transport.sent_to(CUSTOMER_PHONE))[-1]


def test_cancel_word_exits_active_flow():
    runtime, _, ctx = _setup()
    ctx.states.set(CUSTOMER_PHONE, "order", "address", {})

    asyncio.run(handle_message(ctx, text_message("wamid.8", "cancel")))

    assert ctx.states.get(CUSTOMER_PHONE) is None
    sent = runtime.transport.sent_to(CUSTOMER_PHONE)
    assert sent[0]["text"]["body"] == "Cancelled! ✅"
    assert reply_button_ids(sent[1]) == MAIN_MENU_BUTTONS


def test_higher_priority_quick_reply_wins_over_keyword_routes():
    runtime, db, ctx = _setup()
    db.add(QuickReply(keyword="earrings", match_type="contains", response="Earrings from ₹199 💎", priority=1))
    db.add(QuickReply(keyword="earrings", match_type="contains", response="Top earring picks ✨", priority=5))
    db.commit()

    asyncio.run(handle_text(ctx, CUSTOMER_PHONE, "show me earrings"))

    assert text_bodies(runtime.transport.sent_to(CUSTOMER_PHONE)) == ["Top earring picks ✨"]
    winner = db.query(QuickReply).filter(QuickReply.priority == 5).one()
    assert winner.use_count == 1


def test_menu_keywords_bypass_quick_replies():
    runtime, db, ctx = _setup()
    db.add(QuickReply(keyword="hi", match_type="exact", response="Custom hello"))
    db.commit()

    asyncio.run(handle_text(ctx, CUSTOMER_PHONE, "hi"))

    sent = runtime.transport.sent_to(CUSTOMER_PHONE)
    assert reply_button_ids(sent[-1]) == MAIN_MENU_BUTTONS


def test_unrecognised_text_falls_back_to_menu():
    runtime, _, ctx = _setup()

    asyncio.run(handle_text(ctx, CUSTOMER_PHONE, "lorem ipsum dolor"))

    sent = runtime.transport.sent_to(CUSTOMER_PHONE)
    assert sent[0]["type"] == "text"
    assert reply_button_ids(sent[-1]) == MAIN_MENU_BUTTONS


def test_button_taps_are_rate_limited():
    runtime = build_runtime(button_limiter=InMemoryRateLimiterService(limit=1, window_seconds=60))
    db = runtime.session_factory()
    ctx = runtime.context(db)

    asyncio.run(handle_message(ctx, button_message("wamid.9", "MAIN_MENU")))
    asyncio.run(handle_message(ctx, button_message("wamid.10", "MAIN_MENU")))

    sent = runtime.transport.sent_to(CUSTOMER_PHONE)
    assert reply_button_ids(sent[0]) == MAIN_MENU_BUTTONS
    assert "Whoa" in sent[1]["text"]["body"]


def test_status_batch_updates_outgoing_message():
    runtime, db, ctx = _setup()
    asyncio.run(ctx.gateway.send_text(CUSTOMER_PHONE, "Hello"))
    outgoing = db.query(Message).filter(Message.direction == "outgoing").one()

    payload = {
        "entry": [
            {
                "changes": [
                    {
                        "value": {
                            "statuses": [
                                {
                                    "id": outgoing.message_id,
                                    "status": "read",
                                    "recipient_id": CUSTOMER_PHONE,
                                    "timestamp": "1700000000",
                                }
                            ]
                        }
                    }
                ]
            }
        ]
    }
    result = asyncio.run(process_batch(ctx, parse_webhook(payload)))

    db.refresh(outgoing)
    assert result == {"statuses": 1, "messages": 0}
    assert outgoing.status == "read"


def test_handler_failure_is_logged_and_answered_with_apology(monkeypatch):
    runtime, db, ctx = _setup()

    async def broken_route(ctx, message):
        raise RuntimeError("catalog offline")

    monkeypatch.setattr("kaapav.conversation.dispatcher.route_message", broken_route)

    asyncio.run(handle_message(ctx, text_message("wamid.11", "show me bangles")))

    error = db.query(ErrorLog).one()
    assert error.source == "webhook"
    assert error.phone == CUSTOMER_PHONE
    assert error.error_message == "catalog offline"
    assert "RuntimeError" in error.stack
    sent = runtime.transport.sent_to(CUSTOMER_PHONE)
    assert text_bodies(sent) == [FALLBACK_TEXT]
    assert reply_button_ids(sent[-1]) == MAIN_MENU_BUTTONS


def test_customer_language_is_resolved_before_routing():
    runtime, db, ctx = _setup()
    touch_customer(db, CUSTOMER_PHONE, "Priya Sharma")
    set_language(db, CUSTOMER_PHONE, "hi")

    asyncio.run(handle_message(ctx, text_message("wamid.12", "menu")))

    assert ctx.language == "hi"


def test_inbound_text_is_trimmed_and_truncated():
    runtime, db, ctx = _setup()
    long_text = "   " + "a" * 5000 + "   "

    asyncio.run(handle_message(ctx, text_message("wamid.13", long_text)))

    stored = db.query(Message).filter(Message.direction == "incoming").one()
    assert stored.text == "a" * MAX_TEXT_LENGTH
