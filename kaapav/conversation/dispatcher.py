from __future__ import annotations

import json
import logging
import traceback
from typing import Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from kaapav.conversation.button_router import handle_button, send_main_menu
from kaapav.conversation.buttons import Action
from kaapav.conversation.context import ConversationContext
from kaapav.conversation.inbound import MEDIA_TYPES, InboundMessage, StatusUpdate, WebhookBatch, display_text
from kaapav.conversation.media import handle_media
from kaapav.conversation.order_flow import ORDER_FLOW, OrderAction, continue_flow, handle_order_action
from kaapav.conversation.text_router import handle_text
from kaapav.core.request_context import get_request_id, set_request_context
from kaapav.models.error_log import ErrorLog
from kaapav.models.message import Message
from kaapav.services.analytics import track_event
from kaapav.services.chats import upsert_inbound_chat
from kaapav.services.customers import customer_language, mark_invalid_whatsapp, save_location, touch_customer
from kaapav.utils.text import MAX_TEXT_LENGTH, sanitize
from kaapav.whatsapp.menus import FALLBACK_TEXT

logger = logging.getLogger(__name__)

DEDUPE_TTL_SECONDS = 300
INVALID_NUMBER_ERROR = 131026
CANCEL_WORDS = frozenset({"cancel", "exit", "quit", "stop", "back"})

# WhatsApp Flow screen -> order action
FLOW_SCREENS = {
    "ORDER_DETAILS": OrderAction.PRODUCT_SELECTED,
    "ADDRESS": OrderAction.ADDRESS_RECEIVED,
    "PAYMENT": OrderAction.CONFIRM,
}


# -- statuses --------------------------------------------------------------


def apply_status(ctx: ConversationContext, update: StatusUpdate) -> None:
    """Mirror a delivery receipt onto the outgoing message row."""
    message = ctx.db.query(Message).filter(Message.message_id == update.message_id).first()
    if message is not None:
        message.status = update.status
        message.status_timestamp = update.timestamp
        if update.errors:
            message.error = json.dumps(update.errors)[:2000]
        ctx.db.commit()
    if update.status == "failed" and update.error_code == INVALID_NUMBER_ERROR and update.recipient:
        mark_invalid_whatsapp(ctx.db, update.recipient)
        logger.info("number not on WhatsApp", extra={"phone": update.recipient})
    track_event(
        ctx.db,
        "message_status",
        update.status,
        phone=update.recipient or None,
        data={"message_id": update.message_id, "error_code": update.error_code},
    )


# -- persistence -------------------------------------------------------------


def _persist(ctx: ConversationContext, message: InboundMessage) -> None:
    text = sanitize(display_text(message), MAX_TEXT_LENGTH)
    try:
        ctx.db.add(
            Message(
                message_id=message.message_id,
                phone=message.phone,
                direction="incoming",
                message_type=message.type,
                text=text,
                status="received",
                media_id=message.media_id,
                media_url=message.media.get("link") or message.media.get("url"),
                button_id=message.button_id,
                button_title=message.button_title,
                context_message_id=message.context_id,
            )
        )
        ctx.db.commit()
    except IntegrityError:
        ctx.db.rollback()
        logger.info("message %s already stored", message.message_id, extra={"phone": message.phone})
    upsert_inbound_chat(ctx.db, message.phone, customer_name=message.name, text=text, message_type=message.type)
    touch_customer(ctx.db, message.phone, message.name)


# -- per type handlers -------------------------------------------------------


async def _interactive(ctx: ConversationContext, message: InboundMessage) -> None:
    phone = message.phone
    kind = message.interactive_type
    if kind in ("button_reply", "list_reply"):
        await handle_button(ctx, phone, message.button_id, title=message.button_title)
        return
    if kind == "nfm_reply":
        response = message.flow_response or {}
        action = FLOW_SCREENS.get(str(response.get("screen") or response.get("flow_token") or "").upper())
        if action is None:
            logger.info("unmapped flow reply", extra={"phone": phone})
            await send_main_menu(ctx, phone)
            return
        await handle_order_action(ctx, phone, action, dict(response))
        return
    if kind in ("product", "product_list_reply"):
        product_id = message.product.get("product_retailer_id")
        await handle_order_action(ctx, phone, OrderAction.PRODUCT_SELECTED, {"product_id": product_id})
        return
    if kind == "catalog_message":
        await handle_button(ctx, phone, Action.OPEN_CATALOG.value)
        return
    await send_main_menu(ctx, phone)


async def _location(ctx: ConversationContext, message: InboundMessage) -> None:
    phone = message.phone
    location = message.location
    state = ctx.states.get(phone)
    if state is not None and state.flow == ORDER_FLOW:
        await handle_order_action(ctx, phone, OrderAction.LOCATION_RECEIVED, dict(location))
        return
    save_location(
        ctx.db,
        phone,
        location.get("latitude"),
        location.get("longitude"),
        location.get("address") or location.get("name"),
    )
    await ctx.gateway.send_text(
        phone,
        "📍 Thanks for sharing your location!\n\nWe deliver across India 🚚. Share your pincode to check delivery time.",
    )


async def _contacts(ctx: ConversationContext, message: InboundMessage) -> None:
    await ctx.gateway.send_text(message.phone, "📇 Thanks for sharing the contact! Our team will take it from here. 💎")


async def _order(ctx: ConversationContext, message: InboundMessage) -> None:
    await handle_order_action(ctx, message.phone, OrderAction.CATALOG_ORDER, {"items": message.order_items})


async def _template_button(ctx: ConversationContext, message: InboundMessage) -> None:
    if message.button_id:
        await handle_button(ctx, message.phone, message.button_id, title=message.button_title)
        return
    await handle_text(ctx, message.phone, message.text)


async def route_message(ctx: ConversationContext, message: InboundMessage) -> None:
    """Send ``message`` to the handler for its type."""
    kind = message.type
    if kind == "text":
        await handle_text(ctx, message.phone, message.text, message.message_id)
    elif kind == "interactive":
        await _interactive(ctx, message)
    elif kind == "button":
        await _template_button(ctx, message)
    elif kind in MEDIA_TYPES:
        await handle_media(ctx, message)
    elif kind == "location":
        await _location(ctx, message)
    elif kind == "contacts":
        await _contacts(ctx, message)
    elif kind == "order":
        await _order(ctx, message)
    elif kind == "reaction":
        logger.info("reaction %s", message.reaction.get("emoji"), extra={"phone": message.phone})
    else:
        logger.info("unsupported message type %s", kind, extra={"phone": message.phone})
        await send_main_menu(ctx, message.phone)


# -- entry point ---------------------------------------------------------------


def _log_error(ctx: ConversationContext, message: InboundMessage, exc: Exception) -> None:
    try:
        ctx.db.rollback()
        ctx.db.add(
            ErrorLog(
                source="webhook",
                endpoint=f"message:{message.type}",
                phone=message.phone,
                error_message=str(exc)[:2000],
                stack=traceback.format_exc()[-8000:],
                request_id=get_request_id(),
            )
        )
        ctx.db.commit()
    except SQLAlchemyError as log_exc:
        ctx.db.rollback()
        logger.warning("error log write failed: %s", log_exc)


async def handle_message(ctx: ConversationContext, message: InboundMessage) -> None:
    phone = message.phone
    set_request_context(phone=phone)
    if not ctx.kv.set_if_absent(f"msg:{message.message_id}", True, ttl_seconds=DEDUPE_TTL_SECONDS):
        logger.info("duplicate message %s", message.message_id, extra={"phone": phone})
        return

    await ctx.gateway.mark_as_read(message.message_id)
    try:
        ctx.language = customer_language(ctx.db, phone)
        logger.info("inbound %s", message.type, extra={"phone": phone, "language": ctx.language})
        _persist(ctx, message)

        state = ctx.states.get(phone)
        if state is not None:
            if message.type == "text" and message.text.strip().lower() in CANCEL_WORDS:
                ctx.states.clear(phone)
                await ctx.gateway.send_text(phone, "Cancelled! ✅")
                await send_main_menu(ctx, phone)
                return
            if await continue_flow(ctx, state, message):
                return

        await route_message(ctx, message)
    except Exception as exc:
        logger.exception("inbound handling failed: %s", exc, extra={"phone": phone})
        _log_error(ctx, message, exc)
        try:
            await ctx.gateway.send_text(phone, FALLBACK_TEXT)
            await send_main_menu(ctx, phone)
        except Exception as send_exc:
            logger.warning("fallback reply failed: %s", send_exc, extra={"phone": phone})


async def process_batch(ctx: ConversationContext, batch: WebhookBatch) -> dict[str, Any]:
    """Apply statuses, or handle the first message when there are none."""
    if batch.statuses:
        for update in batch.statuses:
            try:
                apply_status(ctx, update)
            except SQLAlchemyError as exc:
                ctx.db.rollback()
                logger.warning("status update failed: %s", exc, extra={"phone": update.recipient})
        return {"statuses": len(batch.statuses), "messages": 0}
    if not batch.messages:
        return {"statuses": 0, "messages": 0}
    await handle_message(ctx, batch.messages[0])
    return {"statuses": 0, "messages": 1}
