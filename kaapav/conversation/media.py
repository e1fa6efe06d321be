from __future__ import annotations

import logging

from kaapav.conversation.button_router import send_main_menu
from kaapav.conversation.buttons import Action, button
from kaapav.conversation.context import ConversationContext
from kaapav.conversation.inbound import InboundMessage
from kaapav.services.chats import flag_for_attention

logger = logging.getLogger(__name__)

PAYMENT_PROOF_WORDS = ("payment", "paid", "receipt", "screenshot", "transaction", "upi")


def _is_payment_proof(message: InboundMessage) -> bool:
    hint = f"{message.caption} {message.media.get('filename') or ''}".lower()
    return any(word in hint for word in PAYMENT_PROOF_WORDS)


async def handle_media(ctx: ConversationContext, message: InboundMessage) -> None:
    phone = message.phone
    kind = message.type
    logger.info("media message %s", kind, extra={"phone": phone})

    if kind == "image":
        if _is_payment_proof(message):
            flag_for_attention(ctx.db, phone, label="payment-proof")
            await ctx.gateway.send_text(
                phone,
                "🧾 Thanks for sharing your payment proof!\n\nOur team will verify it and update your order shortly. ✅",
            )
            return
        await ctx.gateway.send_buttons(
            phone,
            "📸 *Thanks for the image!*\n\n"
            "Looking for something similar? Browse our catalog or tell us the product name and we'll help you find it. 💎",
            [button(Action.OPEN_CATALOG, "📱 Browse Catalog"), button(Action.CHAT_NOW, "💬 Chat Now"), button(Action.MAIN_MENU)],
        )
        return

    if kind == "video":
        await ctx.gateway.send_buttons(
            phone,
            "🎥 Thanks for the video! Our team will take a look.",
            [button(Action.CHAT_NOW, "💬 Chat Now"), button(Action.MAIN_MENU)],
        )
        return

    if kind in ("audio", "voice"):
        flag_for_attention(ctx.db, phone, label="voice-note", priority="normal")
        await ctx.gateway.send_buttons(
            phone,
            "🎤 *Voice message received!*\n\n"
            "Our team will listen and respond shortly.\n\n"
            "💡 Tip: For faster help, you can also type your question.",
            [button(Action.CHAT_NOW, "💬 Chat Now"), button(Action.MAIN_MENU)],
        )
        return

    if kind == "document":
        if _is_payment_proof(message):
            flag_for_attention(ctx.db, phone, label="payment-proof")
            await ctx.gateway.send_text(
                phone,
                "🧾 Thanks for sharing your payment proof!\n\nOur team will verify it and update your order shortly. ✅",
            )
            return
        await ctx.gateway.send_text(phone, "📄 Document received! Our team will review it and get back to you.")
        return

    if kind == "sticker":
        await ctx.gateway.send_text(phone, "😊 Love it! How can we help you today?")
        await send_main_menu(ctx, phone)
        return

    await send_main_menu(ctx, phone)
