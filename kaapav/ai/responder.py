from __future__ import annotations

import asyncio
import logging
import re

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from kaapav.ai.base import AIProvider
from kaapav.core.errors import KaapavError
from kaapav.models.message import Message
from kaapav.services.analytics import track_event
from kaapav.services.chats import flag_for_attention
from kaapav.whatsapp.gateway import MessageGateway
from kaapav.whatsapp.menus import LINKS

logger = logging.getLogger(__name__)

AI_TIMEOUT_SECONDS = 8.0
MIN_TEXT_LENGTH = 10
CONTEXT_MESSAGES = 6

SYSTEM_PROMPT = f"""You are KAAPAV's friendly WhatsApp assistant for a fashion jewellery brand in India.

ABOUT KAAPAV:
- Premium fashion jewellery brand
- Products: Earrings, Necklaces, Bangles, Rings, Pendants, Bracelets
- Price range: ₹99 - ₹1999
- Free shipping above ₹498
- No COD available (prepaid only via UPI/Cards)
- Delivery: 3-5 business days pan India
- 7-day easy returns

YOUR PERSONALITY:
- Warm, friendly, professional
- Use emojis appropriately (💎✨👑🛍️)
- Keep responses concise (under 200 words)

LINKS TO SHARE:
- Website: {LINKS['website']}
- Catalog: {LINKS['whatsapp_catalog']}
- Payment: {LINKS['payment']}
- Tracking: {LINKS['shiprocket']}

IMPORTANT RULES:
1. Never make up product prices or availability
2. For specific orders, ask for Order ID (format: KAA-XXXXXX)
3. For complaints, empathize and offer to connect with support
4. Don't discuss competitors
5. If unsure, offer to connect with human support"""

_HUMAN_RE = re.compile(r"\b(human|agent|person|complain|complaint|manager|representative)\b", re.IGNORECASE)

# intent -> (pattern over the customer's text, follow-up buttons)
INTENT_RULES = [
    (
        "order",
        re.compile(r"order|buy|purchase|checkout|cart", re.IGNORECASE),
        [{"id": "START_ORDER", "title": "🛒 Order Now"}, {"id": "OPEN_CATALOG", "title": "📱 Catalog"}],
    ),
    (
        "tracking",
        re.compile(r"track|shipping|delivery|where|status|kaa-\d+", re.IGNORECASE),
        [{"id": "TRACK_ORDER", "title": "📦 Track"}, {"id": "CHAT_NOW", "title": "💬 Support"}],
    ),
    (
        "offers",
        re.compile(r"price|cost|offer|discount|sale|cheap", re.IGNORECASE),
        [{"id": "OFFERS_MENU", "title": "🎉 Offers"}, {"id": "BESTSELLERS", "title": "🏆 Bestsellers"}],
    ),
]


def detect_intent(text: str) -> tuple[str, list[dict[str, str]]]:
    for intent, pattern, buttons in INTENT_RULES:
        if pattern.search(text or ""):
            return intent, buttons
    return "general", []


def wants_human(text: str) -> bool:
    return bool(_HUMAN_RE.search(text or ""))


class AIResponder:
    """Free-text fallback backed by an LLM. ``respond`` returns True when it replied."""

    def __init__(self, provider: AIProvider | None, *, timeout: float = AI_TIMEOUT_SECONDS) -> None:
        self.provider = provider
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return self.provider is not None and self.provider.configured

    def _history(self, db: Session, phone: str) -> list[dict[str, str]]:
        rows = (
            db.query(Message.direction, Message.text)
            .filter(Message.phone == phone, Message.text.isnot(None), Message.text != "")
            .order_by(Message.created_at.desc(), Message.id.desc())
            .limit(CONTEXT_MESSAGES)
            .all()
        )
        return [
            {"role": "user" if direction == "incoming" else "assistant", "content": text}
            for direction, text in reversed(rows)
        ]

    async def respond(self, db: Session, gateway: MessageGateway, phone: str, text: str) -> bool:
        if not self.enabled or len((text or "").strip()) < MIN_TEXT_LENGTH:
            return False

        messages = [{"role": "system", "content": SYSTEM_PROMPT}, *self._history(db, phone)]
        if not messages[-1:] or messages[-1].get("content") != text:
            messages.append({"role": "user", "content": text})

        try:
            reply = await asyncio.wait_for(self.provider.complete(messages), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning("AI reply timed out", extra={"phone": phone})
            return False
        except (KaapavError, httpx.HTTPError, ValueError) as exc:
            logger.warning("AI provider failed: %s", exc, extra={"phone": phone})
            return False
        if not reply:
            return False

        intent, buttons = detect_intent(text)
        result = await gateway.send_text(phone, reply)
        self._mark_processed(db, phone, result.provider_message_id, intent)
        track_event(db, "ai_response", intent, phone=phone, data={"user_message": text[:200], "ai_response": reply[:200]})

        if wants_human(text):
            flag_for_attention(db, phone)
            logger.info("chat flagged for a human", extra={"phone": phone})
        if buttons:
            await gateway.send_buttons(phone, "Need anything else?", buttons)
        return True

    def _mark_processed(self, db: Session, phone: str, provider_message_id: str | None, intent: str) -> None:
        try:
            if provider_message_id:
                outgoing = db.query(Message).filter(Message.message_id == provider_message_id).first()
                if outgoing is not None:
                    outgoing.ai_processed = True
                    outgoing.ai_intent = intent
            incoming = (
                db.query(Message)
                .filter(Message.phone == phone, Message.direction == "incoming")
                .order_by(Message.created_at.desc(), Message.id.desc())
                .first()
            )
            if incoming is not None:
                incoming.ai_processed = True
                incoming.ai_intent = intent
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.warning("AI message flags not saved: %s", exc, extra={"phone": phone})
