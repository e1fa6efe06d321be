from __future__ import annotations

import logging
import re

from kaapav.conversation.button_router import handle_button, send_main_menu, send_order_status
from kaapav.conversation.buttons import MENU_KEYWORDS, Action, button
from kaapav.conversation.context import ConversationContext, load_customer_context
from kaapav.conversation.order_flow import ADDRESS_STEPS, ORDER_FLOW, OrderAction, handle_order_action
from kaapav.services.orders import recent_orders
from kaapav.services.pricing import DELIVERY_MAX_DAYS, DELIVERY_MIN_DAYS, calculate_shipping
from kaapav.services.quick_replies import find_quick_reply, record_use, reply_buttons
from kaapav.services.shipping import check_serviceability
from kaapav.utils.phone import normalize_phone
from kaapav.utils.text import MAX_TEXT_LENGTH, extract_order_id, extract_pincode, sanitize

logger = logging.getLogger(__name__)

# (keywords, canonical button id); first table hit wins
CATEGORY_KEYWORDS: list[tuple[tuple[str, ...], str]] = [
    (("earring", "earrings", "tops", "jhumka"), "CAT_EARRINGS"),
    (("necklace", "necklaces", "chain", "haar"), "CAT_NECKLACES"),
    (("bangle", "bangles", "kangan"), "CAT_BANGLES"),
    (("ring", "rings"), "CAT_RINGS"),
    (("pendant", "pendants", "locket"), "CAT_PENDANTS"),
    (("bracelet", "bracelets"), "CAT_BRACELETS"),
]

ACTION_KEYWORDS: list[tuple[tuple[str, ...], Action]] = [
    (("order", "buy", "purchase", "khareed"), Action.START_ORDER),
    (("catalog", "catalogue", "shop", "products"), Action.OPEN_CATALOG),
    (("pay", "payment", "upi", "gpay"), Action.PAY_NOW),
    (("track", "tracking", "status", "where", "kahan"), Action.TRACK_ORDER),
    (("offer", "offers", "discount"), Action.OFFERS_MENU),
    (("sale", "best", "popular", "trending"), Action.BESTSELLERS),
    (("support", "help", "complaint", "problem", "issue"), Action.CHAT_NOW),
    (("return", "refund", "exchange"), Action.RETURN_POLICY),
    (("cancel",), Action.CANCEL_ORDER),
    (("size", "sizing"), Action.SIZE_GUIDE),
]

GREETINGS = ("good morning", "good afternoon", "good evening", "namaskar", "hi there", "hello there")
THANKS = ("thank", "thanks", "thx", "dhanyavad", "shukriya", "great", "awesome")

_TEN_DIGITS = re.compile(r"\b\d{10}\b")


def _words(text: str) -> set[str]:
    return set(re.findall(r"[a-z]+", text))


def match_category(text: str) -> str | None:
    lowered = text.lower()
    for keywords, category in CATEGORY_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return category
    return None


def match_action(text: str) -> Action | None:
    """Substring match, so "payments" and "tracking" route like their stems."""
    lowered = text.lower()
    for keywords, action in ACTION_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return action
    return None


async def _quick_reply(ctx: ConversationContext, phone: str, text: str) -> bool:
    reply = find_quick_reply(ctx.db, text)
    if reply is None:
        return False
    record_use(ctx.db, reply)
    buttons = reply_buttons(reply)
    if reply.response_type == "image" and reply.media_url:
        await ctx.gateway.send_image(phone, reply.media_url, reply.response)
    elif buttons:
        await ctx.gateway.send_buttons(phone, reply.response, buttons)
    else:
        await ctx.gateway.send_text(phone, reply.response)
    logger.info("quick reply %s", reply.id, extra={"phone": phone})
    return True


async def _orders_for_phone(ctx: ConversationContext, phone: str, lookup: str) -> None:
    orders = recent_orders(ctx.db, normalize_phone(lookup), limit=5)
    if not orders:
        await ctx.gateway.send_buttons(
            phone,
            f"📭 No orders found for {lookup}.",
            [button(Action.START_ORDER), button(Action.CHAT_NOW, "💬 Support")],
        )
        return
    lines = [f"📦 *Orders for {lookup}:*\n"]
    for order in orders:
        lines.append(f"• *{order.order_id}* - {order.status} - ₹{order.total}")
    lines.append("\nReply with an Order ID for details")
    await ctx.gateway.send_text(phone, "\n".join(lines))


async def _pincode(ctx: ConversationContext, phone: str, pincode: str) -> None:
    state = ctx.states.get(phone)
    if state is not None and state.flow == ORDER_FLOW and state.step in ADDRESS_STEPS:
        await handle_order_action(ctx, phone, OrderAction.PINCODE_RECEIVED, {"text": pincode})
        return

    result = await check_serviceability(ctx.shiprocket, pincode)
    if not result.serviceable:
        await ctx.gateway.send_buttons(
            phone,
            f"❌ *Sorry!*\n\nWe don't deliver to *{pincode}* yet.\n\nPlease try another pincode or contact support.",
            [button(Action.CHAT_NOW, "💬 Support"), button(Action.MAIN_MENU)],
        )
        return

    shipping = calculate_shipping(0, pincode)
    recommended = result.recommended
    eta = f"{recommended['etd']}" if recommended and recommended.get("etd") else f"{DELIVERY_MIN_DAYS}-{DELIVERY_MAX_DAYS} business days"
    await ctx.gateway.send_buttons(
        phone,
        f"✅ *Great News!*\n\n"
        f"We deliver to *{pincode}*! 🎉\n\n"
        f"🚚 Delivery: {eta}\n"
        f"📦 Shipping: ₹{shipping} (FREE above ₹498)",
        [button(Action.START_ORDER), button(Action.OPEN_CATALOG, "📱 Browse"), button(Action.MAIN_MENU)],
    )


def _customer_first_name(ctx: ConversationContext, phone: str) -> str:
    name = (load_customer_context(ctx, phone)["customer"].get("name") or "").strip()
    return name.split()[0] if name else ""


async def _greet(ctx: ConversationContext, phone: str) -> None:
    name = _customer_first_name(ctx, phone)
    hello = f"Hello {name}! 👋" if name else "Hello! 👋"
    await ctx.gateway.send_text(phone, f"{hello}\n\nWelcome back to *KAAPAV* 💎 How can we make you sparkle today?")
    await send_main_menu(ctx, phone)


async def _thank(ctx: ConversationContext, phone: str) -> None:
    name = _customer_first_name(ctx, phone)
    await ctx.gateway.send_buttons(
        phone,
        f"You're most welcome{', ' + name if name else ''}! 💖\n\nIt's always a pleasure to help. Anything else?",
        [button(Action.OPEN_CATALOG, "📱 Browse"), button(Action.GIVE_REVIEW, "⭐ Review Us"), button(Action.MAIN_MENU)],
    )


async def _fallback(ctx: ConversationContext, phone: str, text: str) -> None:
    if text.endswith("?"):
        reply = "🤔 Great question! Our team will get back to you shortly.\n\nMeanwhile, explore the options below 👇"
    elif len(text) > 100:
        reply = "📝 Thanks for the detailed message! Our team will review it and respond soon.\n\nMeanwhile 👇"
    else:
        reply = "Thanks for your message! 💎\n\nHere's what I can help you with 👇"
    await ctx.gateway.send_text(phone, reply)
    await send_main_menu(ctx, phone)


async def handle_text(ctx: ConversationContext, phone: str, text: str, message_id: str | None = None) -> None:
    """Route free text through the first-match-wins chain."""
    body = sanitize(text, MAX_TEXT_LENGTH)
    lowered = body.lower()

    if not body or lowered in MENU_KEYWORDS:
        if body and message_id:
            await ctx.gateway.send_reaction(phone, message_id, "👋")
        await send_main_menu(ctx, phone)
        return

    if await _quick_reply(ctx, phone, body):
        return

    order_id = extract_order_id(body)
    if order_id:
        await send_order_status(ctx, phone, order_id)
        return

    lookup = _TEN_DIGITS.search(body)
    if lookup and "order" in lowered:
        await _orders_for_phone(ctx, phone, lookup.group(0))
        return

    category = match_category(lowered)
    if category:
        await handle_button(ctx, phone, category)
        return

    action = match_action(lowered)
    if action is not None:
        await handle_button(ctx, phone, action.value)
        return

    pincode = extract_pincode(body)
    if pincode:
        await _pincode(ctx, phone, pincode)
        return

    if any(phrase in lowered for phrase in GREETINGS):
        await _greet(ctx, phone)
        return
    if _words(lowered).intersection(THANKS) or "thank" in lowered:
        await _thank(ctx, phone)
        return

    if ctx.ai is not None and await ctx.ai.respond(ctx.db, ctx.gateway, phone, body):
        return

    await _fallback(ctx, phone, body)
