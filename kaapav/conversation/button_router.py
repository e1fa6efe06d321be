from __future__ import annotations

import difflib
import logging
import re
from typing import Any, Awaitable, Callable

from sqlalchemy.exc import SQLAlchemyError

from kaapav.conversation.buttons import (
    CATEGORIES,
    Action,
    button,
    normalize_button_id,
    split_dynamic,
    to_action,
)
from kaapav.conversation.context import (
    ConversationContext,
    invalidate_customer_context,
    load_customer_context,
)
from kaapav.conversation.order_flow import ORDER_FLOW, OrderAction, handle_order_action
from kaapav.core.errors import KaapavError
from kaapav.services import carts as cart_service
from kaapav.services.analytics import next_actions, recent_button_clicks, track_event
from kaapav.services.chats import flag_for_attention
from kaapav.services.customers import set_language
from kaapav.services.orders import get_order
from kaapav.services.products import get_product, products_in_category
from kaapav.whatsapp import menus
from kaapav.whatsapp.menus import LINKS, STATUS_EMOJI

logger = logging.getLogger(__name__)

ButtonHandler = Callable[[ConversationContext, str, dict[str, Any]], Awaitable[None]]
DynamicHandler = Callable[[ConversationContext, str, str], Awaitable[None]]

_ORDER_ID_VALUE = re.compile(r"^KAA[-_]?(\d{6})$", re.IGNORECASE)

SLOW_DOWN_TEXT = "⏳ Whoa, that's a lot of taps! Please wait a few seconds and try again. 😊"

MAIN_MENU_TRIO = [
    button(Action.JEWELLERY_MENU),
    button(Action.CHAT_MENU),
    button(Action.OFFERS_MENU),
]


def _order_id(value: str) -> str:
    match = _ORDER_ID_VALUE.match(value.strip())
    if match:
        return f"KAA-{match.group(1)}"
    return value.strip().upper()


# -- shared replies ----------------------------------------------------------


async def send_main_menu(ctx: ConversationContext, phone: str) -> None:
    await ctx.gateway.send_menu(phone, menus.MAIN_MENU)


async def send_order_status(ctx: ConversationContext, phone: str, order_id: str) -> None:
    order = get_order(ctx.db, order_id)
    if order is None:
        await ctx.gateway.send_buttons(
            phone,
            f"❌ Order *{order_id}* not found.\n\n"
            "Please check the order ID and try again.\n"
            "Format: KAA-XXXXXX\n\n"
            "Or contact our support team for help.",
            [button(Action.CHAT_NOW, "💬 Contact Support"), button(Action.TRACK_ORDER, "🔄 Try Again")],
        )
        return

    emoji = STATUS_EMOJI.get(order.status, "📦")
    message = (
        f"{emoji} *Order: {order.order_id}*\n\n"
        f"📋 Status: {order.status.upper()}\n"
        f"💰 Total: ₹{order.total}\n"
        f"📅 Placed: {order.created_at.strftime('%d/%m/%Y') if order.created_at else '-'}\n"
    )
    if order.payment_status != "paid" and order.status == "pending":
        message += "💳 Payment: Pending\n"
    if order.tracking_id:
        message += f"\n📦 Tracking: {order.tracking_id}\n"
        if order.courier:
            message += f"🚚 Courier: {order.courier}\n"
        message += f"🔗 {order.tracking_url or LINKS['shiprocket'] + '?tracking_id=' + order.tracking_id}"
    buttons = [button(Action.CHAT_NOW, "💬 Need Help?"), button(Action.MAIN_MENU)]
    if order.payment_status != "paid" and order.status == "pending":
        buttons.insert(0, {"id": f"PAY_{order.order_id}", "title": "💳 Pay Now"})
    await ctx.gateway.send_buttons(phone, message, buttons)


# -- menus -------------------------------------------------------------------


def _menu(menu) -> ButtonHandler:
    async def handler(ctx: ConversationContext, phone: str, info: dict[str, Any]) -> None:
        await ctx.gateway.send_menu(phone, menu)

    return handler


def _cta(body: str, display_text: str, url: str, footer: str | None = None) -> ButtonHandler:
    async def handler(ctx: ConversationContext, phone: str, info: dict[str, Any]) -> None:
        await ctx.gateway.send_cta_url(phone, body, display_text, url, footer=footer)

    return handler


def _text(body: str) -> ButtonHandler:
    async def handler(ctx: ConversationContext, phone: str, info: dict[str, Any]) -> None:
        await ctx.gateway.send_text(phone, body)

    return handler


def _order(action: OrderAction) -> ButtonHandler:
    async def handler(ctx: ConversationContext, phone: str, info: dict[str, Any]) -> None:
        await handle_order_action(ctx, phone, action)

    return handler


def _language(code: str, confirmation: str) -> ButtonHandler:
    async def handler(ctx: ConversationContext, phone: str, info: dict[str, Any]) -> None:
        set_language(ctx.db, phone, code)
        invalidate_customer_context(ctx, phone)
        await ctx.gateway.send_text(phone, confirmation)
        await send_main_menu(ctx, phone)

    return handler


async def track_order(ctx: ConversationContext, phone: str, info: dict[str, Any]) -> None:
    orders = info.get("orders") or []
    if orders:
        message = "📦 *Your Recent Orders:*\n\n"
        for order in orders:
            message += f"{STATUS_EMOJI.get(order['status'], '📦')} *{order['order_id']}*\n"
            message += f"   Status: {order['status']}\n"
            message += f"   Amount: ₹{order['total']}\n"
            if order.get("tracking_id"):
                message += f"   Tracking: {order['tracking_id']}\n"
            message += "\n"
        message += "Reply with Order ID for details"
        await ctx.gateway.send_buttons(phone, message, [button(Action.CHAT_NOW, "💬 Need Help?"), button(Action.MAIN_MENU)])
        return
    await ctx.gateway.send_cta_url(
        phone,
        "📦 *Track Your KAAPAV Order* 📦\n\n"
        "Enter your AWB/Tracking number on Shiprocket\n\n"
        "Or reply with your Order ID\n"
        "(Format: KAA-XXXXXX)",
        "📦 Track Order",
        LINKS["shiprocket"],
    )


async def chat_now(ctx: ConversationContext, phone: str, info: dict[str, Any]) -> None:
    flag_for_attention(ctx.db, phone)
    await ctx.gateway.send_text(
        phone,
        "💬 *Great! Our team is here for you!* 💬\n\n"
        "Please share your query, and we'll assist you promptly.\n\n"
        "💎 Average response: 10-15 minutes\n"
        "⏰ Available: 9 AM - 9 PM IST\n\n"
        "You can also:\n"
        "📞 Call: +91 91483 30016\n"
        "📧 Email: support@kaapav.com",
    )


async def modify_order(ctx: ConversationContext, phone: str, info: dict[str, Any]) -> None:
    await ctx.gateway.send_buttons(
        phone,
        "✏️ *Modify Your Order*\n\nWhat would you like to change?",
        [button(Action.VIEW_CART), button(Action.CLEAR_CART, "🗑️ Clear Cart"), button(Action.START_ORDER, "➕ Add Items")],
    )


async def view_cart(ctx: ConversationContext, phone: str, info: dict[str, Any]) -> None:
    cart = cart_service.get_active_cart(ctx.db, phone)
    if cart is None or not cart.items:
        await ctx.gateway.send_buttons(
            phone,
            "🛒 *Your Cart is Empty*\n\nAdd some beautiful pieces to your cart!",
            [button(Action.OPEN_CATALOG, "📱 Browse Catalog"), button(Action.BESTSELLERS), button(Action.MAIN_MENU)],
        )
        return
    message = "🛒 *Your Cart*\n\n"
    for index, item in enumerate(cart.items, start=1):
        message += f"{index}. {item.get('name')}\n   Qty: {item.get('quantity') or 1} × ₹{item.get('price')}\n\n"
    message += f"💰 *Total: ₹{cart.total}*"
    await ctx.gateway.send_buttons(
        phone,
        message,
        [
            button(Action.CONFIRM_ORDER, "✅ Checkout"),
            button(Action.CLEAR_CART, "🗑️ Clear"),
            button(Action.OPEN_CATALOG, "➕ Add More"),
        ],
    )


async def clear_cart(ctx: ConversationContext, phone: str, info: dict[str, Any]) -> None:
    cart_service.clear_cart(ctx.db, phone)
    invalidate_customer_context(ctx, phone)
    await ctx.gateway.send_buttons(
        phone,
        "🗑️ *Cart Cleared*\n\nReady to start fresh!",
        [button(Action.OPEN_CATALOG, "📱 Browse Catalog"), button(Action.MAIN_MENU)],
    )


def _in_order_flow(ctx: ConversationContext, phone: str) -> bool:
    state = ctx.states.get(phone)
    return state is not None and state.flow == ORDER_FLOW


async def yes(ctx: ConversationContext, phone: str, info: dict[str, Any]) -> None:
    if _in_order_flow(ctx, phone):
        await handle_order_action(ctx, phone, OrderAction.CONFIRM)
        return
    await send_main_menu(ctx, phone)


async def no(ctx: ConversationContext, phone: str, info: dict[str, Any]) -> None:
    if _in_order_flow(ctx, phone):
        ctx.states.clear(phone)
    await ctx.gateway.send_buttons(
        phone,
        "No problem! Is there anything else I can help you with?",
        [button(Action.OPEN_CATALOG, "📱 Browse"), button(Action.CHAT_NOW, "💬 Support"), button(Action.MAIN_MENU)],
    )


ACTION_HANDLERS: dict[Action, ButtonHandler] = {
    Action.MAIN_MENU: _menu(menus.MAIN_MENU),
    Action.JEWELLERY_MENU: _menu(menus.JEWELLERY_MENU),
    Action.CHAT_MENU: _menu(menus.CHAT_MENU),
    Action.OFFERS_MENU: _menu(menus.OFFERS_MENU),
    Action.PAYMENT_MENU: _menu(menus.PAYMENT_MENU),
    Action.SOCIAL_MENU: _menu(menus.SOCIAL_MENU),
    Action.ORDER_MENU: _menu(menus.ORDER_MENU),
    Action.ALL_CATEGORIES: _menu(menus.CATEGORY_MENU),
    Action.CHANGE_LANGUAGE: _menu(menus.LANGUAGE_MENU),
    Action.OPEN_WEBSITE: _cta(
        "🌐 *Explore KAAPAV's Luxury World* ✨\n\n"
        "Discover handcrafted elegance at kaapav.com\n"
        "💎 500+ Exclusive Designs\n"
        "🚚 Free Shipping above ₹498",
        "🌐 Visit Website",
        LINKS["website"],
    ),
    Action.OPEN_CATALOG: _cta(
        "📱 *Browse Our WhatsApp Catalog* 📱\n\n"
        "✨ 500+ Exclusive Designs\n"
        "🆕 New arrivals every week\n"
        "💝 Easy ordering via WhatsApp",
        "📱 Open Catalog",
        LINKS["whatsapp_catalog"],
    ),
    Action.BESTSELLERS: _cta(
        "🏆 *KAAPAV Bestsellers!* 🏆\n\n"
        "✨ Top-rated by 10,000+ customers\n"
        "🎉 Up to 50% OFF\n"
        "🚚 FREE Shipping above ₹498\n\n"
        "Don't miss these favorites! 💎",
        "🛍️ Shop Now",
        LINKS["offers_bestsellers"],
    ),
    Action.NEW_ARRIVALS: _cta(
        "✨ *Just Arrived!* ✨\n\n"
        "Fresh designs added this week\n"
        "Be the first to own these beauties!\n\n"
        "💎 Exclusive & Limited Edition",
        "🆕 View New",
        f"{LINKS['website']}/shop/category/new-arrivals",
    ),
    Action.SALE: _cta(
        "🔥 *MASSIVE SALE!* 🔥\n\n"
        "🎉 Flat 50% OFF on select styles\n"
        "⏰ Limited time only!\n"
        "🚚 FREE Shipping above ₹498",
        "🔥 Shop Sale",
        LINKS["offers_bestsellers"],
    ),
    Action.PAY_NOW: _cta(
        "💳 *Secure Payment with KAAPAV* 💳\n\n"
        "✅ UPI (GPay, PhonePe, Paytm)\n"
        "✅ Credit/Debit Cards\n"
        "✅ Net Banking\n"
        "✅ Wallets\n\n"
        "🔒 100% Secure Checkout\n"
        "🚫 No COD Available",
        "💳 Pay Now",
        LINKS["payment"],
        footer="👑 Secure • Fast • Easy",
    ),
    Action.OPEN_FACEBOOK: _cta(
        "📘 *Follow us on Facebook!*\n\n"
        "Stay updated with:\n"
        "✨ Latest designs\n"
        "🎉 Exclusive offers\n"
        "💎 Behind-the-scenes",
        "📘 Facebook",
        LINKS["facebook"],
    ),
    Action.OPEN_INSTAGRAM: _cta(
        "📸 *Follow us on Instagram!*\n\n"
        "Daily inspiration:\n"
        "✨ Styling tips\n"
        "🆕 First look at new arrivals\n"
        "💎 Customer spotlights",
        "📸 Instagram",
        LINKS["instagram"],
    ),
    Action.GIVE_REVIEW: _cta(
        "⭐ *Love KAAPAV?* ⭐\n\n"
        "Your review helps us serve you better!\n\n"
        "Share your experience and help other jewellery lovers discover KAAPAV 💎",
        "⭐ Write Review",
        LINKS["google_review"],
    ),
    Action.TRACK_ORDER: track_order,
    Action.CHAT_NOW: chat_now,
    Action.LANG_EN: _language("en", "✅ Language set to English"),
    Action.LANG_HI: _language("hi", "✅ भाषा हिंदी में सेट की गई"),
    Action.LANG_KN: _language("kn", "✅ ಭಾಷೆಯನ್ನು ಕನ್ನಡಕ್ಕೆ ಹೊಂದಿಸಲಾಗಿದೆ"),
    Action.START_ORDER: _order(OrderAction.START),
    Action.CONFIRM_ORDER: _order(OrderAction.CONFIRM),
    Action.CANCEL_ORDER: _order(OrderAction.CANCEL),
    Action.COLLECT_ADDRESS: _order(OrderAction.COLLECT_ADDRESS),
    Action.MODIFY_ORDER: modify_order,
    Action.VIEW_CART: view_cart,
    Action.CLEAR_CART: clear_cart,
    Action.YES: yes,
    Action.NO: no,
    Action.RETURN_POLICY: _text(
        "↩️ *KAAPAV Return Policy*\n\n"
        "📅 *7-Day Easy Returns*\n\n"
        "✅ Product must be unused\n"
        "✅ Original packaging required\n"
        "✅ Tags must be intact\n\n"
        "📞 To initiate return:\n"
        "Reply with your Order ID\n\n"
        "💡 Refund within 7-10 business days"
    ),
    Action.SHIPPING_INFO: _text(
        "🚚 *KAAPAV Shipping Info*\n\n"
        "📦 *Delivery Time:* 3-5 business days\n"
        "🌍 *Coverage:* Pan India\n\n"
        "💰 *Shipping Charges:*\n"
        "• Orders above ₹498: FREE 🎉\n"
        "• Below ₹498: ₹49\n\n"
        "📍 We ship via trusted partners:\n"
        "Shiprocket, Delhivery, BlueDart"
    ),
    Action.ABOUT_US: _text(
        "👑 *About KAAPAV*\n\n"
        "KAAPAV Fashion Jewellery brings you handcrafted elegance at affordable prices.\n\n"
        "✨ *Our Promise:*\n"
        "• Premium quality materials\n"
        "• Handpicked designs\n"
        "• Skin-friendly & hypoallergenic\n"
        "• 10,000+ happy customers\n\n"
        "💎 *Crafted Elegance • Timeless Sparkle*\n\n"
        "🌐 kaapav.com"
    ),
    Action.SIZE_GUIDE: _text(
        "📏 *KAAPAV Size Guide*\n\n"
        "💍 *Rings:* Adjustable, fits sizes 6-12\n"
        "💫 *Bangles:* 2.4 (small), 2.6 (medium), 2.8 (large)\n"
        "📿 *Necklaces:* 16-18 inch with extender chain\n"
        "✨ *Bracelets:* 6.5-7.5 inch adjustable\n\n"
        "Not sure? Reply with your question and we'll help you pick. 💎"
    ),
}


# -- generated ids -------------------------------------------------------------


async def product_button(ctx: ConversationContext, phone: str, product_id: str) -> None:
    if _in_order_flow(ctx, phone):
        await handle_order_action(ctx, phone, OrderAction.PRODUCT_SELECTED, {"product_id": product_id})
        return
    product = get_product(ctx.db, product_id)
    if product is None:
        await ctx.gateway.send_cta_url(phone, "View this product in our catalog", "📱 Catalog", LINKS["whatsapp_catalog"])
        return
    await ctx.gateway.send_product(phone, product.product_id, f"✨ {product.name}\n💰 ₹{product.price}")


async def order_button(ctx: ConversationContext, phone: str, value: str) -> None:
    await send_order_status(ctx, phone, _order_id(value))


async def category_button(ctx: ConversationContext, phone: str, value: str) -> None:
    slug = CATEGORIES.get(f"CAT_{value.upper()}", value.lower())
    name = slug.replace("-", " ").title()
    products = products_in_category(ctx.db, slug, limit=10)
    if products and ctx.gateway.catalog_id:
        await ctx.gateway.send_product_list(
            phone,
            [{"title": name, "products": [p.product_id for p in products]}],
            header=f"💎 {name.upper()}",
            body=f"Explore our {name.lower()} collection",
        )
        return
    if products:
        message = f"💎 *{name}*\n\n"
        message += "\n".join(f"{index}. {p.name} - ₹{p.price}" for index, p in enumerate(products, 1))
        message += "\n\n📱 View full collection in our catalog"
        await ctx.gateway.send_buttons(
            phone,
            message,
            [button(Action.OPEN_CATALOG, "📱 Open Catalog"), button(Action.START_ORDER), button(Action.MAIN_MENU)],
        )
        return
    await ctx.gateway.send_cta_url(
        phone,
        f"💎 *{name} Collection* 💎\n\n"
        f"Explore our beautiful {name.lower()} designs!\n"
        "✨ Premium quality\n"
        "🚚 Free shipping above ₹498",
        f"💎 View {name}"[:20],
        f"{LINKS['website']}/shop/category/{slug}",
    )


async def quantity_button(ctx: ConversationContext, phone: str, value: str) -> None:
    if not value.isdigit():
        await unknown_button(ctx, phone, f"QTY_{value}")
        return
    cart = cart_service.set_last_item_quantity(ctx.db, phone, int(value))
    if cart is None:
        await view_cart(ctx, phone, {})
        return
    invalidate_customer_context(ctx, phone)
    last = cart.items[-1]
    await ctx.gateway.send_buttons(
        phone,
        f"✅ Quantity updated!\n\n📦 {last.get('name')} × {last.get('quantity')}\n🛒 Cart Total: ₹{cart.total}",
        [button(Action.CONFIRM_ORDER, "✅ Checkout"), button(Action.VIEW_CART), button(Action.OPEN_CATALOG, "➕ Add More")],
    )


async def pay_button(ctx: ConversationContext, phone: str, value: str) -> None:
    await handle_order_action(ctx, phone, OrderAction.PAYMENT, {"order_id": _order_id(value)})


async def cancel_button(ctx: ConversationContext, phone: str, value: str) -> None:
    await handle_order_action(ctx, phone, OrderAction.CANCEL, {"order_id": _order_id(value)})


DYNAMIC_HANDLERS: dict[str, DynamicHandler] = {
    "PROD_": product_button,
    "VARIANT_": product_button,
    "ORDER_": order_button,
    "TRACK_": order_button,
    "CAT_": category_button,
    "QTY_": quantity_button,
    "PAY_": pay_button,
    "CANCEL_": cancel_button,
}


def suggest_actions(ctx: ConversationContext, phone: str, canonical: str, *, limit: int = 3) -> list[Action]:
    """Likely next buttons for an unrecognised ``canonical`` id."""
    suggestions: list[Action] = []
    neighbours = difflib.get_close_matches(canonical, [action.value for action in Action], n=1, cutoff=0.5)
    candidates = next_actions(ctx.db, neighbours[0]) if neighbours else []
    candidates += recent_button_clicks(ctx.db, phone, limit=5)
    for candidate in candidates:
        action = to_action(candidate)
        if action is None or action in suggestions or candidate == canonical:
            continue
        suggestions.append(action)
        if len(suggestions) == limit:
            break
    return suggestions


async def unknown_button(ctx: ConversationContext, phone: str, canonical: str) -> None:
    suggestions = suggest_actions(ctx, phone, canonical)
    buttons = [button(action) for action in suggestions] or MAIN_MENU_TRIO
    logger.info("unknown button %s", canonical, extra={"phone": phone, "button_id": canonical})
    await ctx.gateway.send_buttons(
        phone,
        "🤔 I didn't recognise that option.\n\nHere are some things you can do:",
        buttons,
        footer="💎 KAAPAV",
    )


async def handle_button(ctx: ConversationContext, phone: str, button_id: str | None, *, title: str | None = None) -> None:
    """Rate-limit, track and dispatch one button or list selection."""
    decision = ctx.button_limiter.check(key=phone, scope="button")
    if not decision.allowed:
        logger.info("button rate limited", extra={"phone": phone})
        await ctx.gateway.send_text(phone, SLOW_DOWN_TEXT)
        return

    canonical = normalize_button_id(button_id)
    previous = recent_button_clicks(ctx.db, phone, limit=1)
    track_event(
        ctx.db,
        "button_click",
        canonical,
        phone=phone,
        data={"raw": button_id, "title": title, "previous": previous[0] if previous else None},
    )
    logger.info("button %s", canonical, extra={"phone": phone, "button_id": canonical})

    try:
        action = to_action(canonical)
        if action is not None:
            info = load_customer_context(ctx, phone)
            await ACTION_HANDLERS[action](ctx, phone, info)
            return
        dynamic = split_dynamic(button_id) or split_dynamic(canonical)
        if dynamic is not None:
            prefix, value = dynamic
            await DYNAMIC_HANDLERS[prefix](ctx, phone, value)
            return
        await unknown_button(ctx, phone, canonical)
    except (KaapavError, SQLAlchemyError) as exc:
        ctx.db.rollback()
        logger.exception("button %s failed: %s", canonical, exc, extra={"phone": phone})
        await ctx.gateway.send_text(phone, "Oops! Something went wrong. Let me show you the menu again.")
        await send_main_menu(ctx, phone)
