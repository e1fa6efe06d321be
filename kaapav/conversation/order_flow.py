from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from kaapav.conversation.buttons import MENU_KEYWORDS, Action, button
from kaapav.conversation.context import ConversationContext, invalidate_customer_context
from kaapav.conversation.state import FlowState
from kaapav.core.errors import ConflictError, KaapavError
from kaapav.services import carts as cart_service
from kaapav.services import payments as payment_service
from kaapav.services.customers import save_location
from kaapav.services.orders import cancel_order, create_order, find_by_idempotency_key, get_order, make_idempotency_key
from kaapav.services.pricing import DISCOUNT_CODES, apply_discount, compute_totals, delivery_range_text
from kaapav.services.products import find_product_by_text, get_product
from kaapav.utils.text import extract_pincode, extract_quantity, is_valid_pincode

logger = logging.getLogger(__name__)

ORDER_FLOW = "order"
ADDRESS_STEPS = ("address", "pincode", "location")


class OrderAction(str, Enum):
    START = "START"
    PRODUCT_SELECTED = "PRODUCT_SELECTED"
    CATALOG_ORDER = "CATALOG_ORDER"
    COLLECT_ADDRESS = "COLLECT_ADDRESS"
    ADDRESS_RECEIVED = "ADDRESS_RECEIVED"
    LOCATION_RECEIVED = "LOCATION_RECEIVED"
    PINCODE_RECEIVED = "PINCODE_RECEIVED"
    SUMMARY = "SUMMARY"
    CONFIRM = "CONFIRM"
    PAYMENT = "PAYMENT"
    PAYMENT_SUCCESS = "PAYMENT_SUCCESS"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    CANCEL = "CANCEL"
    APPLY_COUPON = "APPLY_COUPON"


def _flow_data(ctx: ConversationContext, phone: str) -> dict[str, Any]:
    state = ctx.states.get(phone)
    if state is None or state.flow != ORDER_FLOW:
        return {}
    return state.data


def _cart_lines(items: list[dict[str, Any]]) -> str:
    lines = []
    for index, item in enumerate(items, start=1):
        quantity = int(item.get("quantity") or 1)
        price = int(item.get("price") or 0)
        lines.append(f"{index}. {item.get('name')}\n   {quantity} × ₹{price} = ₹{price * quantity}")
    return "\n".join(lines)


async def start_order(ctx: ConversationContext, phone: str, data: dict[str, Any]) -> None:
    ctx.states.set(phone, ORDER_FLOW, "product", {})
    await ctx.gateway.send_buttons(
        phone,
        "🛒 *Let's Create Your Order!* 🛒\n\n"
        "How would you like to add products?\n\n"
        "1️⃣ Browse our catalog\n"
        "2️⃣ Send product name/photo\n"
        "3️⃣ Share from our website",
        [
            button(Action.OPEN_CATALOG, "📱 Browse Catalog"),
            button(Action.BESTSELLERS, "🏆 Bestsellers"),
            button(Action.MAIN_MENU, "❌ Cancel"),
        ],
        footer="💎 KAAPAV - Crafted for you",
    )


async def add_product(ctx: ConversationContext, phone: str, data: dict[str, Any]) -> None:
    product = None
    if data.get("product_id"):
        product = get_product(ctx.db, str(data["product_id"]))
    elif data.get("text"):
        product = find_product_by_text(ctx.db, data["text"])

    if product is None:
        await ctx.gateway.send_buttons(
            phone,
            "I couldn't identify the product. Please:\n\n"
            "• Select from our catalog, or\n"
            "• Share the exact product name",
            [button(Action.OPEN_CATALOG, "📱 Open Catalog"), button(Action.MAIN_MENU)],
        )
        return

    quantity = int(data.get("quantity") or (extract_quantity(data["text"]) if data.get("text") else 1))
    cart = cart_service.add_item(ctx.db, phone, cart_service.item_from_product(product, quantity))
    ctx.states.set(phone, ORDER_FLOW, "product", {"last_product_id": product.product_id})
    invalidate_customer_context(ctx, phone)
    await ctx.gateway.send_buttons(
        phone,
        "✅ *Added to Cart!*\n\n"
        f"📦 {product.name}\n"
        f"💰 ₹{product.price}\n\n"
        f"🛒 Cart Total: ₹{cart.total}\n\n"
        "Would you like to add more items?",
        [
            button(Action.OPEN_CATALOG, "➕ Add More"),
            button(Action.CONFIRM_ORDER, "✅ Checkout"),
            button(Action.VIEW_CART),
        ],
    )


async def catalog_order(ctx: ConversationContext, phone: str, data: dict[str, Any]) -> None:
    """Replace the cart with the items of a native WhatsApp catalog order."""
    items = []
    for entry in data.get("items") or []:
        retailer_id = str(entry.get("product_retailer_id") or "")
        product = get_product(ctx.db, retailer_id) if retailer_id else None
        price = int(float(entry.get("item_price") or (product.price if product else 0) or 0))
        items.append(
            {
                "product_id": retailer_id,
                "name": product.name if product else retailer_id,
                "price": price,
                "quantity": max(1, int(entry.get("quantity") or 1)),
            }
        )
    if not items:
        await ctx.gateway.send_text(phone, "Unable to process order. Please try again.")
        return

    cart = cart_service.set_items(ctx.db, phone, items)
    ctx.states.set(phone, ORDER_FLOW, "address", {})
    invalidate_customer_context(ctx, phone)
    lines = "\n\n".join(
        f"{index}. {item['name']}\n   Qty: {item['quantity']} × ₹{item['price']}" for index, item in enumerate(items, 1)
    )
    await ctx.gateway.send_buttons(
        phone,
        f"🛒 *Order Summary*\n\n{lines}\n\n💰 *Total: ₹{cart.total}*\n\nPlease share your delivery address:",
        [button(Action.MODIFY_ORDER, "✏️ Modify"), button(Action.CANCEL_ORDER, "❌ Cancel")],
        footer="📍 Share address or location",
    )


async def collect_address(ctx: ConversationContext, phone: str, data: dict[str, Any]) -> None:
    ctx.states.set(phone, ORDER_FLOW, "address", {})
    await ctx.gateway.send_text(
        phone,
        "📍 *Delivery Address*\n\n"
        "Please share your complete address:\n\n"
        "Include:\n"
        "• Full name\n"
        "• House/Flat no., Street\n"
        "• Landmark\n"
        "• City, State\n"
        "• Pincode\n\n"
        "Or tap 📎 → Location to share your location.",
    )


async def address_received(ctx: ConversationContext, phone: str, data: dict[str, Any]) -> None:
    address = (data.get("text") or data.get("address") or "").strip()
    pincode = data.get("pincode") or extract_pincode(address)
    if not pincode or not is_valid_pincode(pincode):
        ctx.states.set(phone, ORDER_FLOW, "address", {})
        await ctx.gateway.send_text(phone, "Please include your 6-digit pincode in the address.")
        return
    ctx.states.set(phone, ORDER_FLOW, "confirm", {"address": address, "pincode": pincode})
    await show_summary(ctx, phone, {})


async def location_received(ctx: ConversationContext, phone: str, data: dict[str, Any]) -> None:
    latitude = data.get("latitude")
    longitude = data.get("longitude")
    address = (data.get("address") or data.get("name") or "").strip() or f"📍 {latitude}, {longitude}"
    save_location(ctx.db, phone, latitude, longitude, address)
    pincode = extract_pincode(address)
    if pincode:
        ctx.states.set(phone, ORDER_FLOW, "confirm", {"address": address, "pincode": pincode})
        await show_summary(ctx, phone, {})
        return
    ctx.states.set(phone, ORDER_FLOW, "pincode", {"address": address, "latitude": latitude, "longitude": longitude})
    await ctx.gateway.send_text(
        phone, f"📍 Location saved!\n\n{address}\n\nPlease share your 6-digit pincode for delivery estimation:"
    )


async def pincode_received(ctx: ConversationContext, phone: str, data: dict[str, Any]) -> None:
    pincode = extract_pincode(data.get("text") or data.get("pincode") or "")
    if not pincode:
        await ctx.gateway.send_text(phone, "Please enter a valid 6-digit pincode.")
        return
    ctx.states.set(phone, ORDER_FLOW, "confirm", {"pincode": pincode})
    await show_summary(ctx, phone, {})


async def _send_empty_cart(ctx: ConversationContext, phone: str) -> None:
    await ctx.gateway.send_buttons(
        phone,
        "Your cart is empty! 🛒\n\nAdd some sparkle from our catalog first.",
        [button(Action.OPEN_CATALOG, "📱 Browse Catalog"), button(Action.MAIN_MENU)],
    )


async def show_summary(ctx: ConversationContext, phone: str, data: dict[str, Any]) -> None:
    cart = cart_service.get_active_cart(ctx.db, phone)
    if cart is None or not cart.items:
        await _send_empty_cart(ctx, phone)
        return

    flow = _flow_data(ctx, phone)
    totals = compute_totals(cart.items, pincode=flow.get("pincode"), discount_code=flow.get("discount_code"))
    message = f"📋 *Order Summary*\n\n{_cart_lines(cart.items)}\n\n💰 Subtotal: ₹{totals.subtotal}\n"
    if totals.discount:
        message += f"🎁 Discount ({flow.get('discount_code')}): -₹{totals.discount}\n"
    message += f"🚚 Shipping: {'FREE ✨' if totals.shipping == 0 else f'₹{totals.shipping}'}\n"
    message += f"━━━━━━━━━━━━━━\n✨ *Total: ₹{totals.total}*\n\n"
    if flow.get("address"):
        message += f"*Delivery Address:*\n📍 {flow['address']}\n\n"
    message += f"📅 Estimated Delivery: {delivery_range_text()}\n"

    ctx.states.set(phone, ORDER_FLOW, "confirm", {})
    if flow.get("address"):
        first = button(Action.CONFIRM_ORDER, "✅ Place Order")
    else:
        first = button(Action.COLLECT_ADDRESS, "📍 Add Address")
    await ctx.gateway.send_buttons(
        phone,
        message,
        [first, button(Action.MODIFY_ORDER, "✏️ Modify"), button(Action.CANCEL_ORDER, "❌ Cancel")],
    )


async def _send_order_created(ctx: ConversationContext, phone: str, order, link: str) -> None:
    await ctx.gateway.send_cta_url(
        phone,
        "✅ *Order Created!* ✅\n\n"
        f"📦 Order ID: *{order.order_id}*\n"
        f"💰 Amount: *₹{order.total}*\n\n"
        "*Next Step:* Complete payment\n\n"
        "🔒 Secure payment via Razorpay",
        "💳 Pay Now",
        link,
        footer=f"Order: {order.order_id}",
    )


async def confirm_order(ctx: ConversationContext, phone: str, data: dict[str, Any]) -> None:
    """Turn the active cart into an order and send its payment link.

    The idempotency key is derived from the cart, so a repeated confirm for
    the same cart returns the existing order instead of creating another.
    """
    cart = cart_service.get_active_cart(ctx.db, phone)
    if cart is None or not cart.items:
        converted = cart_service.last_converted_cart(ctx.db, phone)
        if converted is not None:
            existing = find_by_idempotency_key(ctx.db, make_idempotency_key(phone, converted.id, converted.updated_at))
            if existing is not None and existing.payment_status == "unpaid" and existing.status == "pending":
                link = await payment_service.create_payment_link(ctx.db, existing, ctx.razorpay)
                await _send_order_created(ctx, phone, existing, link)
                return
        await ctx.gateway.send_buttons(
            phone,
            "No items in order. Please add products first.",
            [button(Action.START_ORDER, "🛒 Start Order")],
        )
        return

    flow = _flow_data(ctx, phone)
    if not flow.get("address"):
        await collect_address(ctx, phone, {})
        return

    order, created = create_order(
        ctx.db,
        phone=phone,
        items=list(cart.items),
        shipping_address=flow["address"],
        shipping_pincode=flow.get("pincode"),
        discount_code=flow.get("discount_code"),
        idempotency_key=make_idempotency_key(phone, cart.id, cart.updated_at),
        cart=cart,
        events=ctx.events,
    )
    if not created:
        logger.info("confirm repeated for %s", order.order_id, extra={"phone": phone, "order_id": order.order_id})
    link = await payment_service.create_payment_link(ctx.db, order, ctx.razorpay)
    ctx.states.clear(phone)
    invalidate_customer_context(ctx, phone)
    await _send_order_created(ctx, phone, order, link)


async def send_payment(ctx: ConversationContext, phone: str, data: dict[str, Any]) -> None:
    order = get_order(ctx.db, data.get("order_id") or "")
    if order is None or order.phone != phone:
        await ctx.gateway.send_text(phone, "Order not found.")
        return
    if order.payment_status == "paid":
        await ctx.gateway.send_buttons(
            phone,
            f"✅ Order *{order.order_id}* is already paid. Thank you! 💎",
            [button(Action.TRACK_ORDER), button(Action.MAIN_MENU)],
        )
        return
    link = await payment_service.create_payment_link(ctx.db, order, ctx.razorpay)
    await ctx.gateway.send_payment_link(phone, order.order_id, order.total, link)


async def payment_success(ctx: ConversationContext, phone: str, data: dict[str, Any]) -> None:
    await payment_service.handle_payment_success(
        ctx.db,
        ctx.gateway,
        data["order_id"],
        data.get("payment_id") or "",
        method=data.get("method"),
        events=ctx.events,
    )
    invalidate_customer_context(ctx, phone)


async def payment_failed(ctx: ConversationContext, phone: str, data: dict[str, Any]) -> None:
    order = get_order(ctx.db, data.get("order_id") or "")
    if order is None:
        await ctx.gateway.send_text(phone, "Order not found.")
        return
    await payment_service.handle_payment_failed(ctx.db, ctx.gateway, order, reason=data.get("reason"))


async def cancel(ctx: ConversationContext, phone: str, data: dict[str, Any]) -> None:
    order_id = data.get("order_id")
    if order_id:
        order = get_order(ctx.db, order_id)
        if order is None or order.phone != phone:
            await ctx.gateway.send_text(phone, "Order not found.")
            return
        try:
            cancel_order(ctx.db, order.order_id, data.get("reason"), events=ctx.events)
        except ConflictError:
            await ctx.gateway.send_buttons(
                phone,
                f"Order {order.order_id} can no longer be cancelled ({order.status}).\n\nOur team can help with returns.",
                [button(Action.CHAT_NOW), button(Action.MAIN_MENU)],
            )
            return
        invalidate_customer_context(ctx, phone)
        await ctx.gateway.send_text(
            phone,
            f"❌ Order {order.order_id} has been cancelled.\n\n"
            "If you paid, refund will be processed within 7-10 business days.",
        )
        return

    # the cart stays active so the customer can resume later
    ctx.states.clear(phone)
    await ctx.gateway.send_buttons(
        phone,
        "❌ *Order Cancelled*\n\nNo worries! Your cart items are saved.\n\nCome back anytime to complete your order. 💎",
        [
            button(Action.START_ORDER, "🛒 New Order"),
            button(Action.OPEN_CATALOG, "📱 Catalog"),
            button(Action.MAIN_MENU),
        ],
    )


async def apply_coupon(ctx: ConversationContext, phone: str, data: dict[str, Any]) -> None:
    cart = cart_service.get_active_cart(ctx.db, phone)
    if cart is None or not cart.items:
        await _send_empty_cart(ctx, phone)
        return
    result = apply_discount(int(cart.total or 0), data.get("code"))
    if not result.valid:
        await ctx.gateway.send_text(phone, f"❌ {result.error}")
        return
    ctx.states.set(phone, ORDER_FLOW, "confirm", {"discount_code": result.code})
    await ctx.gateway.send_text(phone, f"🎉 Code *{result.code}* applied! {result.description or ''}".strip())
    await show_summary(ctx, phone, {})


HANDLERS = {
    OrderAction.START: start_order,
    OrderAction.PRODUCT_SELECTED: add_product,
    OrderAction.CATALOG_ORDER: catalog_order,
    OrderAction.COLLECT_ADDRESS: collect_address,
    OrderAction.ADDRESS_RECEIVED: address_received,
    OrderAction.LOCATION_RECEIVED: location_received,
    OrderAction.PINCODE_RECEIVED: pincode_received,
    OrderAction.SUMMARY: show_summary,
    OrderAction.CONFIRM: confirm_order,
    OrderAction.PAYMENT: send_payment,
    OrderAction.PAYMENT_SUCCESS: payment_success,
    OrderAction.PAYMENT_FAILED: payment_failed,
    OrderAction.CANCEL: cancel,
    OrderAction.APPLY_COUPON: apply_coupon,
}


async def handle_order_action(
    ctx: ConversationContext,
    phone: str,
    action: OrderAction,
    data: dict[str, Any] | None = None,
) -> None:
    logger.info("order action %s", action.value, extra={"phone": phone})
    try:
        await HANDLERS[action](ctx, phone, data or {})
    except (KaapavError, SQLAlchemyError) as exc:
        ctx.db.rollback()
        logger.exception("order action %s failed: %s", action.value, exc, extra={"phone": phone})
        await ctx.gateway.send_buttons(
            phone,
            "Sorry, something went wrong with your order.\n\nPlease try again or contact support.",
            [
                button(Action.START_ORDER, "🔄 Try Again"),
                button(Action.CHAT_NOW, "💬 Support"),
                button(Action.MAIN_MENU),
            ],
        )


def _looks_like_coupon(text: str) -> bool:
    return text.strip().upper() in DISCOUNT_CODES


async def continue_flow(ctx: ConversationContext, state: FlowState, message) -> bool:
    """Feed an inbound message to the active order step. True when consumed."""
    if state.flow != ORDER_FLOW:
        return False
    phone = state.phone
    text = (message.text or "").strip()

    if state.step == "product":
        if message.type == "image":
            await ctx.gateway.send_text(phone, "📸 Got it! Please share the product name or item code from our catalog.")
            return True
        if message.type == "text" and text and text.lower() not in MENU_KEYWORDS:
            await handle_order_action(ctx, phone, OrderAction.PRODUCT_SELECTED, {"text": text})
            return True
        return False

    if state.step in ADDRESS_STEPS:
        if message.type == "location":
            await handle_order_action(ctx, phone, OrderAction.LOCATION_RECEIVED, dict(message.location or {}))
            return True
        if message.type != "text" or not text:
            return False
        if state.step == "pincode" or (is_valid_pincode(text) and state.data.get("address")):
            await handle_order_action(ctx, phone, OrderAction.PINCODE_RECEIVED, {"text": text})
        else:
            await handle_order_action(ctx, phone, OrderAction.ADDRESS_RECEIVED, {"text": text})
        return True

    if state.step == "confirm" and message.type == "text" and text:
        if _looks_like_coupon(text):
            await handle_order_action(ctx, phone, OrderAction.APPLY_COUPON, {"code": text})
            return True
        if is_valid_pincode(text):
            await handle_order_action(ctx, phone, OrderAction.PINCODE_RECEIVED, {"text": text})
            return True
    return False
