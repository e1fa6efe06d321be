import asyncio
import json

import httpx
import pytest

from kaapav.ai.mock_provider import MockAIProvider
from kaapav.ai.openai_provider import OpenAIProvider
from kaapav.ai.responder import AIResponder, detect_intent
from kaapav.core.errors import ConfigurationError, ProviderError, WhatsAppSendError
from kaapav.integrations.razorpay import RazorpayClient
from kaapav.integrations.shiprocket import ShiprocketClient
from kaapav.models.chat import Chat
from kaapav.services.orders import create_order
from kaapav.services.payments import handle_callback, verify_payment
from kaapav.whatsapp.cloud_provider import CloudWhatsAppTransport
from tests.fixtures_data import CUSTOMER_PHONE, build_runtime, reply_button_ids, text_bodies


def _client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


async def _no_sleep(seconds):
    return None


def test_cloud_transport_retries_transient_errors():
    calls = []

    def handler(request):
        calls.append(json.loads(request.content))
        if len(calls) == 1:
            return httpx.Response(500, json={"error": {"code": 131000, "message": "Something went wrong"}})
        return httpx.Response(200, json={"messages": [{"id": "wamid.out"}]})

    transport = CloudWhatsAppTransport(phone_id="123", token="tok", client=_client(handler), sleep=_no_sleep)

    result = asyncio.run(transport.post({"to": CUSTOMER_PHONE, "type": "text", "text": {"body": "hi"}}))

    assert result["messages"][0]["id"] == "wamid.out"
    assert len(calls) == 2


def test_cloud_transport_does_not_retry_permanent_errors():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(400, json={"error": {"code": 131026, "message": "Undeliverable"}})

    transport = CloudWhatsAppTransport(phone_id="123", token="tok", client=_client(handler), sleep=_no_sleep)

    with pytest.raises(WhatsAppSendError) as excinfo:
        asyncio.run(transport.post({"to": CUSTOMER_PHONE, "type": "text"}))

    assert excinfo.value.provider_code == 131026
    assert excinfo.value.transient is False
    assert len(calls) == 1


def test_cloud_transport_requires_credentials():
    transport = CloudWhatsAppTransport(phone_id="", token="")

    with pytest.raises(ConfigurationError):
        asyncio.run(transport.post({"to": CUSTOMER_PHONE}))


def test_verify_payment_checks_status_and_order():
    def handler(request):
        assert request.url.path == "/v1/payments/pay_1"
        return httpx.Response(
            200,
            json={"id": "pay_1", "status": "captured", "method": "card", "amount": 34900, "notes": {"order_id": "KAA-1"}},
        )

    razorpay = RazorpayClient("key", "secret", client=_client(handler))

    ok = asyncio.run(verify_payment(razorpay, "pay_1", "KAA-1"))
    mismatch = asyncio.run(verify_payment(razorpay, "pay_1", "KAA-2"))

    assert ok.verified is True
    assert ok.amount == 349
    assert ok.method == "card"
    assert mismatch.verified is False
    assert mismatch.error == "Order ID mismatch"


def test_razorpay_errors_surface_as_provider_errors():
    razorpay = RazorpayClient(
        "key", "secret", client=_client(lambda request: httpx.Response(401, json={"error": {"code": "BAD"}}))
    )

    with pytest.raises(ProviderError):
        asyncio.run(razorpay.fetch_payment("pay_1"))
    assert asyncio.run(verify_payment(razorpay, "pay_1", "KAA-1")).verified is False


def test_verified_callback_marks_order_paid():
    runtime = build_runtime()
    db = runtime.session_factory()
    order, _ = create_order(
        db,
        phone=CUSTOMER_PHONE,
        items=[{"product_id": "EAR-001", "name": "Hoops", "price": 300, "quantity": 1}],
        shipping_address="12 MG Road",
        shipping_pincode="560001",
    )

    def handler(request):
        return httpx.Response(
            200,
            json={"id": "pay_7", "status": "captured", "method": "upi", "amount": 34900, "notes": {"order_id": order.order_id}},
        )

    razorpay = RazorpayClient("key", "secret", client=_client(handler))
    params = {"order_id": order.order_id, "razorpay_payment_id": "pay_7", "razorpay_payment_link_status": "paid"}

    target = asyncio.run(handle_callback(db, runtime.gateway(db), razorpay, params))

    db.refresh(order)
    assert target.endswith(f"/order-success?order_id={order.order_id}")
    assert order.payment_status == "paid"
    assert order.payment_method == "upi"


def test_shiprocket_logs_in_once_and_reuses_token():
    logins = []

    def handler(request):
        if request.url.path.endswith("/auth/login"):
            logins.append(json.loads(request.content))
            return httpx.Response(200, json={"token": "sr-token"})
        assert request.headers["Authorization"] == "Bearer sr-token"
        return httpx.Response(200, json={"tracking_data": {"shipment_status": 6}})

    shiprocket = ShiprocketClient(email="ops@kaapav.com", password="pw", client=_client(handler))

    asyncio.run(shiprocket.track_awb("AWB1"))
    asyncio.run(shiprocket.track_awb("AWB1"))

    assert logins == [{"email": "ops@kaapav.com", "password": "pw"}]


def test_shiprocket_without_credentials_is_unconfigured():
    shiprocket = ShiprocketClient()

    assert shiprocket.configured is False
    with pytest.raises(ConfigurationError):
        asyncio.run(shiprocket.token())


def test_openai_provider_returns_first_choice():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"content": "  Hello from KAAPAV ✨ "}}]})

    provider = OpenAIProvider("sk-test", client=_client(handler))

    reply = asyncio.run(provider.complete([{"role": "user", "content": "hi"}]))

    assert reply == "Hello from KAAPAV ✨"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"]["model"] == "gpt-3.5-turbo"


def test_ai_responder_replies_and_flags_human_requests():
    runtime = build_runtime()
    db = runtime.session_factory()
    db.add(Chat(phone=CUSTOMER_PHONE, customer_name="Priya"))
    db.commit()
    provider = MockAIProvider("Sorry about that! Let me connect you with our team.")
    responder = AIResponder(provider)

    replied = asyncio.run(
        responder.respond(db, runtime.gateway(db), CUSTOMER_PHONE, "I want to talk to a human about my order")
    )

    assert replied is True
    sent = runtime.transport.sent_to(CUSTOMER_PHONE)
    assert text_bodies(sent) == ["Sorry about that! Let me connect you with our team."]
    assert reply_button_ids(sent[-1]) == ["START_ORDER", "OPEN_CATALOG"]
    assert db.query(Chat).one().needs_attention is True
    assert provider.calls[0][0]["role"] == "system"


def test_ai_responder_skips_short_text_and_failures():
    runtime = build_runtime()
    db = runtime.session_factory()

    assert asyncio.run(AIResponder(MockAIProvider("hi")).respond(db, runtime.gateway(db), CUSTOMER_PHONE, "ok")) is False
    failing = AIResponder(MockAIProvider(error=ProviderError("openai", 500, "boom")))
    assert asyncio.run(failing.respond(db, runtime.gateway(db), CUSTOMER_PHONE, "tell me about bangles")) is False
    assert asyncio.run(AIResponder(None).respond(db, runtime.gateway(db), CUSTOMER_PHONE, "tell me about bangles")) is False
    assert runtime.transport.sent == []


def test_detect_intent():
    assert detect_intent("where is KAA-123456")[0] == "tracking"
    assert detect_intent("any discount today?")[0] == "offers"
    assert detect_intent("hello there") == ("general", [])
