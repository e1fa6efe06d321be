import hashlib
import hmac
import json

from fastapi import FastAPI
from fastapi.testclient import TestClient

from kaapav.core.database import get_db
from kaapav.models.customer import Customer
from kaapav.models.order import Order
from kaapav.routers.payments import router as payments_router
from kaapav.routers.webhook import router as webhook_router
from kaapav.routers.webhook import verify_signature
from kaapav.services.orders import create_order
from tests.fixtures_data import CUSTOMER_PHONE, PAYMENT_CAPTURED_EVENT, build_runtime, reply_button_ids


def _build_client():
    runtime = build_runtime()
    db = runtime.session_factory()

    app = FastAPI()
    app.include_router(webhook_router)
    app.include_router(payments_router)
    app.state.runtime = runtime
    app.dependency_overrides[get_db] = lambda: db
    return TestClient(app), runtime, db


def _text_payload(message_id: str, text: str) -> dict:
    return {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "changes": [
                    {
                        "field": "messages",
                        "value": {
                            "contacts": [{"profile": {"name": "Priya Sharma"}, "wa_id": CUSTOMER_PHONE}],
                            "messages": [
                                {
                                    "id": message_id,
                                    "from": CUSTOMER_PHONE,
                                    "type": "text",
                                    "text": {"body": text},
                                    "timestamp": "1700000000",
                                }
                            ],
                        },
                    }
                ]
            }
        ],
    }


def _sign(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def test_verify_webhook_echoes_challenge(monkeypatch):
    monkeypatch.setattr("kaapav.core.config.VERIFY_TOKEN", "kaapav-verify")
    client, _, _ = _build_client()

    response = client.get(
        "/webhook",
        params={"hub.mode": "subscribe", "hub.verify_token": "kaapav-verify", "hub.challenge": "1158201444"},
    )

    assert response.status_code == 200
    assert response.text == "1158201444"


def test_verify_webhook_rejects_wrong_token(monkeypatch):
    monkeypatch.setattr("kaapav.core.config.VERIFY_TOKEN", "kaapav-verify")
    client, _, _ = _build_client()

    response = client.get(
        "/webhook",
        params={"hub.mode": "subscribe", "hub.verify_token": "nope", "hub.challenge": "1"},
    )

    assert response.status_code == 403


def test_webhook_rejects_bad_signature(monkeypatch):
    monkeypatch.setattr("kaapav.core.config.APP_SECRET", "app-secret")
    client, runtime, _ = _build_client()
    body = json.dumps(_text_payload("wamid.1", "hi")).encode()

    response = client.post(
        "/webhook",
        content=body,
        headers={"Content-Type": "application/json", "x-hub-signature-256": "sha256=deadbeef"},
    )

    assert response.status_code == 403
    assert runtime.transport.sent == []


def test_webhook_rejects_malformed_json(monkeypatch):
    monkeypatch.setattr("kaapav.core.config.APP_SECRET", "")
    client, _, _ = _build_client()

    response = client.post("/webhook", content=b"{not json", headers={"Content-Type": "application/json"})

    assert response.status_code == 400


def test_signed_webhook_is_processed_in_background(monkeypatch):
    monkeypatch.setattr("kaapav.core.config.APP_SECRET", "app-secret")
    client, runtime, db = _build_client()
    body = json.dumps(_text_payload("wamid.2", "hi")).encode()

    response = client.post(
        "/webhook",
        content=body,
        headers={"Content-Type": "application/json", "x-hub-signature-256": f"sha256={_sign('app-secret', body)}"},
    )

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert reply_button_ids(runtime.transport.sent_to(CUSTOMER_PHONE)[-1]) == [
        "JEWELLERY_MENU",
        "CHAT_MENU",
        "OFFERS_MENU",
    ]
    assert db.query(Customer).filter(Customer.phone == CUSTOMER_PHONE).count() == 1


def test_webhook_without_messages_is_ignored(monkeypatch):
    monkeypatch.setattr("kaapav.core.config.APP_SECRET", "")
    client, _, _ = _build_client()

    response = client.post("/webhook", json={"entry": []})

    assert response.json() == {"status": "ignored"}


def test_verify_signature_without_secret_skips_check():
    assert verify_signature(b"{}", None, "") is True
    assert verify_signature(b"{}", None, "secret") is False
    assert verify_signature(b"{}", "sha256=" + _sign("secret", b"{}"), "secret") is True


def test_payment_webhook_requires_valid_signature(monkeypatch):
    monkeypatch.setattr("kaapav.core.config.RAZORPAY_WEBHOOK_SECRET", "rzp-secret")
    client, _, _ = _build_client()

    response = client.post(
        "/api/payment/webhook",
        content=json.dumps(PAYMENT_CAPTURED_EVENT).encode(),
        headers={"Content-Type": "application/json", "X-Razorpay-Signature": "bad"},
    )

    assert response.status_code == 400


def test_signed_payment_webhook_marks_order_paid(monkeypatch):
    monkeypatch.setattr("kaapav.core.config.RAZORPAY_WEBHOOK_SECRET", "rzp-secret")
    client, _, db = _build_client()
    order, _ = create_order(
        db,
        phone=CUSTOMER_PHONE,
        items=[{"product_id": "EAR-001", "name": "Hoops", "price": 300, "quantity": 1}],
        shipping_address="12 MG Road",
        shipping_pincode="560001",
    )
    event = json.loads(json.dumps(PAYMENT_CAPTURED_EVENT))
    event["payload"]["payment"]["entity"]["notes"]["order_id"] = order.order_id
    body = json.dumps(event).encode()

    response = client.post(
        "/api/payment/webhook",
        content=body,
        headers={"Content-Type": "application/json", "X-Razorpay-Signature": _sign("rzp-secret", body)},
    )

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "result": "paid"}
    paid = db.query(Order).filter(Order.order_id == order.order_id).one()
    assert paid.payment_status == "paid"


def test_payment_callback_redirects_to_failure_page_when_unverified():
    client, _, db = _build_client()
    order, _ = create_order(
        db,
        phone=CUSTOMER_PHONE,
        items=[{"product_id": "EAR-001", "name": "Hoops", "price": 300, "quantity": 1}],
        shipping_address="12 MG Road",
        shipping_pincode="560001",
    )

    response = client.get(
        "/api/payment/callback",
        params={"order_id": order.order_id, "razorpay_payment_link_status": "failed"},
        follow_redirects=False,
    )

    assert response.status_code == 302
    assert response.headers["location"].endswith(f"/payment-failed?order_id={order.order_id}")
