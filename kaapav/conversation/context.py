from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy.orm import Session

from kaapav.ai.responder import AIResponder
from kaapav.conversation.state import ConversationStateStore
from kaapav.core.kv_store import TTLStore
from kaapav.core.rate_limiter import RateLimiterService
from kaapav.integrations.razorpay import RazorpayClient
from kaapav.integrations.shiprocket import ShiprocketClient
from kaapav.services.carts import get_active_cart
from kaapav.services.customers import get_customer
from kaapav.services.event_bus import EventBus
from kaapav.services.orders import recent_orders
from kaapav.whatsapp.gateway import MessageGateway

CONTEXT_TTL_SECONDS = 60


@dataclass
class ConversationContext:
    """Everything a conversational handler needs for one inbound event."""

    db: Session
    gateway: MessageGateway
    states: ConversationStateStore
    kv: TTLStore
    button_limiter: RateLimiterService
    razorpay: RazorpayClient | None = None
    shiprocket: ShiprocketClient | None = None
    ai: AIResponder | None = None
    events: EventBus | None = None
    language: str = "en"


def _context_key(phone: str) -> str:
    return f"ctx:{phone}"


def load_customer_context(ctx: ConversationContext, phone: str) -> dict[str, Any]:
    """Customer, cart and last orders for ``phone``, cached for a minute."""
    key = _context_key(phone)
    cached = ctx.kv.get(key)
    if cached is not None:
        return cached

    customer = get_customer(ctx.db, phone)
    cart = get_active_cart(ctx.db, phone)
    summary = {
        "customer": {
            "name": customer.name if customer else "",
            "segment": customer.segment if customer else "new",
            "language": customer.language if customer else "en",
            "order_count": customer.order_count if customer else 0,
        },
        "cart": {
            "items": list(cart.items or []) if cart else [],
            "total": cart.total if cart else 0,
            "item_count": cart.item_count if cart else 0,
        },
        "orders": [
            {
                "order_id": order.order_id,
                "status": order.status,
                "total": order.total,
                "tracking_id": order.tracking_id,
            }
            for order in recent_orders(ctx.db, phone, limit=3)
        ],
    }
    ctx.kv.set(key, summary, ttl_seconds=CONTEXT_TTL_SECONDS)
    return summary


def invalidate_customer_context(ctx: ConversationContext, phone: str) -> None:
    ctx.kv.delete(_context_key(phone))
