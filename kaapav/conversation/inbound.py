from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from kaapav.utils.phone import normalize_phone

logger = logging.getLogger(__name__)

MEDIA_TYPES = ("image", "video", "audio", "voice", "document", "sticker")


@dataclass
class StatusUpdate:
    message_id: str
    status: str
    recipient: str
    timestamp: str | None = None
    errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def error_code(self) -> int | None:
        if not self.errors:
            return None
        code = self.errors[0].get("code")
        return int(code) if isinstance(code, (int, str)) and str(code).isdigit() else None


@dataclass
class InboundMessage:
    message_id: str
    phone: str
    type: str
    name: str = ""
    text: str = ""
    interactive_type: str | None = None
    button_id: str | None = None
    button_title: str | None = None
    media: dict[str, Any] = field(default_factory=dict)
    location: dict[str, Any] = field(default_factory=dict)
    contacts: list[dict[str, Any]] = field(default_factory=list)
    order_items: list[dict[str, Any]] = field(default_factory=list)
    reaction: dict[str, Any] = field(default_factory=dict)
    flow_response: dict[str, Any] = field(default_factory=dict)
    product: dict[str, Any] = field(default_factory=dict)
    context_id: str | None = None
    timestamp: str | None = None

    @property
    def media_id(self) -> str | None:
        return self.media.get("id")

    @property
    def caption(self) -> str:
        return self.media.get("caption") or ""


@dataclass
class WebhookBatch:
    statuses: list[StatusUpdate] = field(default_factory=list)
    messages: list[InboundMessage] = field(default_factory=list)


def _parse_interactive(message: InboundMessage, interactive: dict[str, Any]) -> None:
    kind = interactive.get("type")
    message.interactive_type = kind
    if kind in ("button_reply", "list_reply"):
        reply = interactive.get(kind) or {}
        message.button_id = reply.get("id")
        message.button_title = reply.get("title")
    elif kind == "nfm_reply":
        raw = (interactive.get("nfm_reply") or {}).get("response_json")
        if raw:
            try:
                message.flow_response = json.loads(raw)
            except ValueError:
                logger.warning("flow reply is not JSON", extra={"phone": message.phone})
    elif kind in ("product", "product_list_reply"):
        message.product = interactive.get(kind) or {}


def _parse_message(raw: dict[str, Any], contact_name: str) -> InboundMessage | None:
    message_id = raw.get("id")
    sender = raw.get("from")
    if not message_id or not sender:
        return None
    msg_type = raw.get("type") or "unknown"
    message = InboundMessage(
        message_id=message_id,
        phone=normalize_phone(sender),
        type=msg_type,
        name=contact_name,
        context_id=(raw.get("context") or {}).get("id"),
        timestamp=raw.get("timestamp"),
    )
    if msg_type == "text":
        message.text = ((raw.get("text") or {}).get("body") or "").strip()
    elif msg_type == "interactive":
        _parse_interactive(message, raw.get("interactive") or {})
    elif msg_type == "button":
        button = raw.get("button") or {}
        message.button_id = button.get("payload")
        message.button_title = button.get("text")
        message.text = button.get("text") or ""
    elif msg_type in MEDIA_TYPES:
        message.media = dict(raw.get(msg_type) or {})
    elif msg_type == "location":
        message.location = dict(raw.get("location") or {})
    elif msg_type == "contacts":
        message.contacts = list(raw.get("contacts") or [])
    elif msg_type == "order":
        order = raw.get("order") or {}
        message.order_items = list(order.get("product_items") or [])
        message.text = order.get("text") or ""
    elif msg_type == "reaction":
        message.reaction = dict(raw.get("reaction") or {})
    return message


def parse_webhook(payload: dict[str, Any]) -> WebhookBatch:
    """Statuses and messages of a Cloud API webhook delivery.

    Changes for fields other than ``messages`` are ignored.
    """
    batch = WebhookBatch()
    for entry in payload.get("entry") or []:
        for change in entry.get("changes") or []:
            if change.get("field", "messages") != "messages":
                continue
            value = change.get("value") or {}
            for status in value.get("statuses") or []:
                if not status.get("id"):
                    continue
                batch.statuses.append(
                    StatusUpdate(
                        message_id=status["id"],
                        status=status.get("status") or "",
                        recipient=normalize_phone(status.get("recipient_id") or ""),
                        timestamp=status.get("timestamp"),
                        errors=list(status.get("errors") or []),
                    )
                )
            contacts = value.get("contacts") or []
            contact_name = ""
            if contacts:
                contact_name = ((contacts[0].get("profile") or {}).get("name")) or ""
            for raw in value.get("messages") or []:
                message = _parse_message(raw, contact_name)
                if message is not None:
                    batch.messages.append(message)
    return batch


def display_text(message: InboundMessage) -> str:
    """Text stored in the message log and chat list for ``message``."""
    kind = message.type
    if kind == "text":
        return message.text
    if kind == "interactive":
        if message.interactive_type == "list_reply":
            return f"[List: {message.button_title or message.button_id}]"
        if message.interactive_type == "button_reply":
            return f"[Button: {message.button_title or message.button_id}]"
        if message.interactive_type in ("product", "product_list_reply"):
            return f"[Product: {message.product.get('product_retailer_id', '')}]"
        return "[Interactive]"
    if kind == "button":
        return f"[Button: {message.button_title or message.button_id}]"
    if kind == "image":
        return message.caption or "[Image]"
    if kind == "video":
        return message.caption or "[Video]"
    if kind in ("audio", "voice"):
        return "[Audio Message]"
    if kind == "document":
        return f"[Document: {message.media.get('filename') or 'file'}]"
    if kind == "sticker":
        return "[Sticker]"
    if kind == "location":
        where = message.location.get("name") or message.location.get("address")
        if not where:
            where = f"{message.location.get('latitude')}, {message.location.get('longitude')}"
        return f"[Location: {where}]"
    if kind == "contacts":
        names = [((c.get("name") or {}).get("formatted_name") or "") for c in message.contacts]
        return f"[Contact: {', '.join(n for n in names if n) or 'shared'}]"
    if kind == "order":
        return f"[WhatsApp Order: {len(message.order_items)} items]"
    if kind == "reaction":
        return f"[Reaction: {message.reaction.get('emoji', '')}]"
    return f"[{kind}]"
