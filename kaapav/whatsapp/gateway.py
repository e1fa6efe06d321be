from __future__ import annotations

import logging
from typing import Any, Iterable

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from kaapav.core.config import CATALOG_ID
from kaapav.core.errors import KaapavError
from kaapav.models.chat import Chat
from kaapav.models.message import Message
from kaapav.utils.clock import utcnow
from kaapav.utils.phone import normalize_phone
from kaapav.whatsapp.base import (
    WhatsAppSendResult,
    WhatsAppTransport,
    safe_json,
    sanitize_payload,
    summarize_payload,
)
from kaapav.whatsapp.menus import LINKS, SHIPPING_STATUS_TEXT, ListMenu, Menu
from kaapav.whatsapp.telemetry import TelemetrySink

logger = logging.getLogger(__name__)

MAX_BUTTONS = 3
MAX_LIST_ROWS = 10


def _with_footer(interactive: dict[str, Any], footer: str | None) -> dict[str, Any]:
    if footer:
        interactive["footer"] = {"text": footer[:60]}
    return interactive


class MessageGateway:
    """Shaped senders over a single ``send_raw`` primitive.

    Every send is mirrored to the ``messages`` table, the chat summary and the
    optional telemetry sinks. Those mirrors are best-effort; only the provider
    call itself can raise.
    """

    def __init__(
        self,
        db: Session,
        transport: WhatsAppTransport,
        *,
        telemetry: TelemetrySink | None = None,
        catalog_id: str | None = None,
    ) -> None:
        self.db = db
        self.transport = transport
        self.telemetry = telemetry or TelemetrySink(sheets_url="", n8n_url="")
        self.catalog_id = CATALOG_ID if catalog_id is None else catalog_id

    # -- primitive -------------------------------------------------------

    async def send_raw(self, payload: dict[str, Any], *, auto_reply: bool = True) -> WhatsAppSendResult:
        payload = {"messaging_product": "whatsapp", **payload}
        phone = payload.get("to") or ""
        message_type = payload.get("type") or "text"
        try:
            response = await self.transport.post(payload)
        except (KaapavError, httpx.HTTPError) as exc:
            reason = getattr(exc, "message", None) or str(exc)
            logger.warning(
                "WhatsApp send failed to=%s type=%s: %s",
                phone,
                message_type,
                reason,
                extra={"event": "wa_send_failed", "phone": phone},
            )
            self._record(payload, status="failed", provider_message_id=None, error=reason, auto_reply=auto_reply)
            await self.telemetry.append_row([utcnow().isoformat(), "ERROR", phone, message_type, reason[:500]])
            raise

        messages = response.get("messages") or [{}]
        provider_message_id = messages[0].get("id")
        self._record(payload, status="sent", provider_message_id=provider_message_id, error=None, auto_reply=auto_reply)
        await self.telemetry.append_row(
            [utcnow().isoformat(), "OUT", phone, message_type, safe_json(sanitize_payload(payload))[:500]]
        )
        await self.telemetry.notify("wa_outgoing", sanitize_payload(payload))
        return WhatsAppSendResult(
            status="sent",
            provider_message_id=provider_message_id,
            response_payload=response,
        )

    def _record(
        self,
        payload: dict[str, Any],
        *,
        status: str,
        provider_message_id: str | None,
        error: str | None,
        auto_reply: bool,
    ) -> None:
        phone = payload.get("to") or ""
        text = summarize_payload(payload)
        now = utcnow()
        try:
            self.db.add(
                Message(
                    message_id=provider_message_id,
                    phone=phone,
                    direction="outgoing",
                    message_type=payload.get("type") or "text",
                    text=text,
                    status=status,
                    error=error,
                    payload_json=safe_json(sanitize_payload(payload)),
                    is_auto_reply=auto_reply,
                )
            )
            chat = self.db.query(Chat).filter(Chat.phone == phone).first()
            if chat is not None:
                chat.last_message = text[:500]
                chat.last_message_type = payload.get("type") or "text"
                chat.last_timestamp = now
                chat.last_direction = "outgoing"
                chat.total_messages = (chat.total_messages or 0) + 1
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.warning("outgoing message log failed: %s", exc, extra={"phone": phone})

    # -- basic shapes ----------------------------------------------------

    async def send_text(self, phone: str, text: str, *, preview_url: bool = False, auto_reply: bool = True):
        payload = {
            "to": normalize_phone(phone),
            "type": "text",
            "text": {"body": text[:4096], "preview_url": preview_url},
        }
        return await self.send_raw(payload, auto_reply=auto_reply)

    async def send_buttons(
        self,
        phone: str,
        body: str,
        buttons: Iterable[dict[str, str]] | None,
        *,
        footer: str | None = None,
        header: str | None = None,
    ):
        buttons = list(buttons or [])
        if not buttons:
            return await self.send_text(phone, body)
        interactive: dict[str, Any] = {
            "type": "button",
            "body": {"text": body[:1024]},
            "action": {
                "buttons": [
                    {"type": "reply", "reply": {"id": str(b["id"])[:256], "title": str(b["title"])[:20]}}
                    for b in buttons[:MAX_BUTTONS]
                ]
            },
        }
        if header:
            interactive["header"] = {"type": "text", "text": header[:60]}
        payload = {"to": normalize_phone(phone), "type": "interactive", "interactive": _with_footer(interactive, footer)}
        return await self.send_raw(payload)

    async def send_list(
        self,
        phone: str,
        body: str,
        button_text: str,
        sections: Iterable[dict[str, Any]],
        *,
        footer: str | None = None,
    ):
        interactive: dict[str, Any] = {
            "type": "list",
            "body": {"text": body[:1024]},
            "action": {
                "button": button_text[:20],
                "sections": [
                    {
                        "title": str(section.get("title", ""))[:24],
                        "rows": [
                            {
                                "id": str(row["id"])[:200],
                                "title": str(row["title"])[:24],
                                "description": str(row.get("description") or "")[:72],
                            }
                            for row in list(section.get("rows") or [])[:MAX_LIST_ROWS]
                        ],
                    }
                    for section in sections
                ],
            },
        }
        payload = {"to": normalize_phone(phone), "type": "interactive", "interactive": _with_footer(interactive, footer)}
        return await self.send_raw(payload)

    async def send_cta_url(
        self,
        phone: str,
        body: str,
        display_text: str,
        url: str,
        *,
        footer: str | None = None,
    ):
        """Send the link as plain text, then try the interactive CTA button.

        Some clients render ``cta_url`` without a tappable link, so the text
        copy always goes first and the button is best-effort.
        """
        to = normalize_phone(phone)
        first = await self.send_text(to, f"{body}\n\n🔗 {display_text}: {url}")
        interactive = {
            "type": "cta_url",
            "body": {"text": body[:1024]},
            "action": {"name": "cta_url", "parameters": {"display_text": display_text[:20], "url": url}},
        }
        payload = {"to": to, "type": "interactive", "interactive": _with_footer(interactive, footer)}
        try:
            return await self.send_raw(payload)
        except (KaapavError, httpx.HTTPError):
            logger.info("cta_url fell back to text", extra={"phone": to})
            return first

    async def send_media(
        self,
        phone: str,
        kind: str,
        url: str,
        *,
        caption: str | None = None,
        auto_reply: bool = True,
    ):
        media: dict[str, Any] = {"link": url}
        if caption and kind in {"image", "video", "document"}:
            media["caption"] = caption[:1024]
        payload = {"to": normalize_phone(phone), "type": kind, kind: media}
        return await self.send_raw(payload, auto_reply=auto_reply)

    async def send_image(self, phone: str, url: str, caption: str | None = None, *, auto_reply: bool = True):
        return await self.send_media(phone, "image", url, caption=caption, auto_reply=auto_reply)

    async def send_template(
        self,
        phone: str,
        name: str,
        *,
        language: str = "en",
        components: list[dict[str, Any]] | None = None,
        auto_reply: bool = True,
    ):
        payload = {
            "to": normalize_phone(phone),
            "type": "template",
            "template": {"name": name, "language": {"code": language}, "components": components or []},
        }
        return await self.send_raw(payload, auto_reply=auto_reply)

    async def send_reaction(self, phone: str, message_id: str, emoji: str) -> WhatsAppSendResult | None:
        payload = {
            "to": normalize_phone(phone),
            "type": "reaction",
            "reaction": {"message_id": message_id, "emoji": emoji},
        }
        try:
            return await self.send_raw(payload)
        except (KaapavError, httpx.HTTPError) as exc:
            logger.warning("reaction failed: %s", exc, extra={"phone": payload["to"]})
            return None

    async def mark_as_read(self, message_id: str) -> None:
        try:
            await self.transport.mark_read(message_id)
        except Exception as exc:  # read receipts are fire-and-forget
            logger.warning("markAsRead failed: %s", exc)

    # -- catalog ---------------------------------------------------------

    async def send_product(self, phone: str, product_retailer_id: str, body: str = ""):
        if not self.catalog_id:
            return await self.send_cta_url(
                phone, body or "✨ Check out our beautiful collection!", "📱 View Catalog", LINKS["whatsapp_catalog"]
            )
        interactive = {
            "type": "product",
            "body": {"text": body or "✨ Check out this beautiful piece!"},
            "footer": {"text": "Tap to view details 💎"},
            "action": {"catalog_id": self.catalog_id, "product_retailer_id": product_retailer_id},
        }
        return await self.send_raw({"to": normalize_phone(phone), "type": "interactive", "interactive": interactive})

    async def send_product_list(
        self,
        phone: str,
        sections: Iterable[dict[str, Any]],
        *,
        header: str = "",
        body: str = "",
    ):
        if not self.catalog_id:
            return await self.send_cta_url(
                phone, body or "Browse our catalog", "📱 Catalogue", LINKS["whatsapp_catalog"]
            )
        formatted = [
            {
                "title": str(section.get("title", ""))[:24],
                "product_items": [
                    {"product_retailer_id": p if isinstance(p, str) else p["product_retailer_id"]}
                    for p in list(section.get("products") or [])[:30]
                ],
            }
            for section in sections
        ]
        interactive = {
            "type": "product_list",
            "header": {"type": "text", "text": (header or "💎 KAAPAV Collection")[:60]},
            "body": {"text": (body or "Browse our exclusive designs")[:1024]},
            "footer": {"text": "Free shipping above ₹498 🚚"},
            "action": {"catalog_id": self.catalog_id, "sections": formatted},
        }
        return await self.send_raw({"to": normalize_phone(phone), "type": "interactive", "interactive": interactive})

    # -- menus and order messages -----------------------------------------

    async def send_menu(self, phone: str, menu: Menu | ListMenu):
        if isinstance(menu, ListMenu):
            return await self.send_list(phone, menu.body, menu.button_text, menu.sections, footer=menu.footer)
        return await self.send_buttons(phone, menu.body, menu.buttons, footer=menu.footer)

    async def send_order_confirmation(self, phone: str, order) -> WhatsAppSendResult:
        items_text = "\n".join(
            f"• {item.get('name')} x{item.get('quantity') or 1} - ₹{item.get('price')}" for item in (order.items or [])
        )
        body = (
            "✅ *Order Confirmed!* ✅\n\n"
            f"📦 Order ID: *{order.order_id}*\n\n"
            f"*Items:*\n{items_text}\n\n"
            f"💰 Total: *₹{order.total}*\n\n"
            f"📍 Shipping to:\n{order.shipping_address or ''}\n{order.shipping_pincode or ''}\n\n"
            "🚚 Estimated Delivery: 3-5 business days\n\n"
            "Thank you for shopping with KAAPAV! 💎"
        )
        return await self.send_buttons(
            phone,
            body,
            [{"id": f"TRACK_{order.order_id}", "title": "📦 Track Order"}, {"id": "MAIN_MENU", "title": "🏠 Home"}],
            footer="👑 Crafted with love by KAAPAV",
        )

    async def send_payment_link(self, phone: str, order_id: str, amount: int, link: str):
        body = (
            "💳 *Complete Your Payment* 💳\n\n"
            f"📦 Order: *{order_id}*\n"
            f"💰 Amount: *₹{amount}*\n\n"
            "🔒 Secure Payment Options:\n"
            "✅ UPI (GPay, PhonePe, Paytm)\n"
            "✅ Credit/Debit Cards\n"
            "✅ Net Banking\n\n"
            "Tap below to pay 👇"
        )
        return await self.send_cta_url(phone, body, "💳 Pay Now", link, footer="🔐 100% Secure Checkout")

    async def send_shipping_update(self, phone: str, order_id: str, tracking_id: str, courier: str, status: str):
        emoji = {"shipped": "🚚", "in_transit": "🛣️", "out_for_delivery": "🏃", "delivered": "🎉"}.get(status, "📦")
        status_text = SHIPPING_STATUS_TEXT.get(status, "Order Update")
        body = (
            f"{emoji} *{status_text}* {emoji}\n\n"
            f"📦 Order: *{order_id}*\n"
            f"🚚 Courier: {courier or 'Courier'}\n"
            f"📋 Tracking: {tracking_id}\n\n"
            "Track your package in real-time 👇"
        )
        url = f"{LINKS['shiprocket']}?tracking_id={tracking_id}"
        return await self.send_cta_url(phone, body, "📦 Track Package", url)
