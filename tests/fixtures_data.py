"""Reusable data and builders for backend test scenarios."""

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import kaapav.models  # noqa: F401
from kaapav.conversation.inbound import InboundMessage
from kaapav.core.database import Base
from kaapav.core.kv_store import InMemoryTTLStore
from kaapav.core.rate_limiter import InMemoryRateLimiterService
from kaapav.models.product import Product
from kaapav.runtime import Runtime
from kaapav.whatsapp.mock_provider import MockWhatsAppTransport

CUSTOMER_PHONE = "919876543210"

EARRING_PRODUCT = {
    "product_id": "EAR-001",
    "name": "Golden Hoop Earrings",
    "category": "earrings",
    "price": 300,
    "stock": 10,
}

NECKLACE_PRODUCT = {
    "product_id": "NEC-001",
    "name": "Pearl Layer Necklace",
    "category": "necklaces",
    "price": 1000,
    "stock": 5,
}

PAYMENT_CAPTURED_EVENT = {
    "event": "payment.captured",
    "payload": {
        "payment": {
            "entity": {
                "id": "pay_123",
                "method": "upi",
                "amount": 34900,
                "notes": {"order_id": None},
            }
        }
    },
}


def build_session_factory() -> sessionmaker:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def build_runtime(session_factory=None, **overrides) -> Runtime:
    options = {
        "session_factory": session_factory or build_session_factory(),
        "transport": MockWhatsAppTransport(),
        "kv": InMemoryTTLStore(),
        "button_limiter": InMemoryRateLimiterService(limit=100, window_seconds=10),
    }
    options.update(overrides)
    return Runtime(**options)


def add_product(db, **fields) -> Product:
    product = Product(**{**EARRING_PRODUCT, **fields})
    db.add(product)
    db.commit()
    db.refresh(product)
    return product


def text_message(message_id: str, text: str, phone: str = CUSTOMER_PHONE, name: str = "Priya Sharma") -> InboundMessage:
    return InboundMessage(message_id=message_id, phone=phone, type="text", name=name, text=text)


def button_message(message_id: str, button_id: str, phone: str = CUSTOMER_PHONE, title: str = "") -> InboundMessage:
    return InboundMessage(
        message_id=message_id,
        phone=phone,
        type="interactive",
        interactive_type="button_reply",
        button_id=button_id,
        button_title=title or button_id,
    )


def reply_button_ids(payload: dict) -> list[str]:
    buttons = payload.get("interactive", {}).get("action", {}).get("buttons", [])
    return [entry["reply"]["id"] for entry in buttons]


def text_bodies(payloads: list[dict]) -> list[str]:
    return [payload["text"]["body"] for payload in payloads if payload.get("type") == "text"]
