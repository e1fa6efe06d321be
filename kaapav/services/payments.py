from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from sqlalchemy.orm import Session

from kaapav.core.config import WORKER_URL
from kaapav.core.errors import ConfigurationError, ConflictError, KaapavError, ProviderError, ValidationError
from kaapav.integrations.razorpay import RazorpayClient
from kaapav.models.order import Order
from kaapav.services import customers as customer_service
from kaapav.services.analytics import track_event
from kaapav.services.event_bus import EventBus
from kaapav.services.order_events import emit_order_paid, emit_order_status_changed
from kaapav.services.orders import get_order, require_order
from kaapav.utils.clock import utcnow
from kaapav.whatsapp.gateway import MessageGateway
from kaapav.whatsapp.menus import LINKS

logger = logging.getLogger(__name__)

PAYMENT_LINK_TTL = timedelta(hours=24)


@dataclass
class PaymentVerification:
    verified: bool
    payment_id: str | None = None
    method: str | None = None
    amount: int = 0
    error: str | None = None


def _paise(amount: int) -> int:
    return int(round(int(amount or 0) * 100))


def build_payment_link_payload(order: Order, *, base_url: str = WORKER_URL) -> dict[str, Any]:
    expire_by = int((utcnow() + PAYMENT_LINK_TTL).timestamp())
    return {
        "amount": _paise(order.total),
        "currency": "INR",
        "accept_partial": False,
        "description": f"KAAPAV Order: {order.order_id}",
        "customer": {"name": order.customer_name or "Customer", "contact": f"+{order.phone}"},
        "notify": {"sms": True, "email": False, "whatsapp": False},
        "reminder_enable": True,
        "notes": {"order_id": order.order_id, "phone": order.phone, "source": order.source or "whatsapp"},
        "callback_url": f"{base_url}/api/payment/callback?order_id={order.order_id}",
        "callback_method": "get",
        "expire_by": expire_by,
    }


async def create_payment_link(db: Session, order: Order, razorpay: RazorpayClient | None) -> str:
    """Payment URL for ``order``; the static link when Razorpay is unavailable."""
    if order.payment_link:
        return order.payment_link
    if razorpay is None or not razorpay.configured:
        logger.warning("Razorpay not configured, using static link", extra={"order_id": order.order_id})
        return LINKS["payment"]
    try:
        data = await razorpay.create_payment_link(build_payment_link_payload(order))
    except (KaapavError, ValueError) as exc:
        logger.error("payment link creation failed: %s", exc, extra={"order_id": order.order_id})
        return LINKS["payment"]
    short_url = data.get("short_url")
    if not short_url:
        return LINKS["payment"]
    order.payment_link = short_url
    order.payment_link_id = data.get("id")
    db.commit()
    logger.info("payment link created", extra={"order_id": order.order_id})
    return short_url


async def verify_payment(razorpay: RazorpayClient | None, payment_id: str, order_id: str) -> PaymentVerification:
    if razorpay is None or not razorpay.configured:
        return PaymentVerification(verified=False, error="Razorpay not configured")
    try:
        payment = await razorpay.fetch_payment(payment_id)
    except KaapavError as exc:
        return PaymentVerification(verified=False, error=exc.message)
    if payment.get("status") != "captured":
        return PaymentVerification(verified=False, error=f"Payment status: {payment.get('status')}")
    notes_order = (payment.get("notes") or {}).get("order_id")
    if notes_order and notes_order != order_id:
        return PaymentVerification(verified=False, error="Order ID mismatch")
    return PaymentVerification(
        verified=True,
        payment_id=payment.get("id") or payment_id,
        method=payment.get("method"),
        amount=int(payment.get("amount") or 0) // 100,
    )


def mark_order_paid(
    db: Session,
    order_id: str,
    payment_id: str,
    *,
    method: str | None = None,
    events: EventBus | None = None,
) -> tuple[Order, bool]:
    """Record a successful payment. Returns ``(order, changed)``.

    Repeated deliveries for an already paid order are no-ops, so the
    customer's lifetime value is credited exactly once.
    """
    order = require_order(db, order_id)
    if order.payment_status == "paid":
        if order.payment_id and order.payment_id != payment_id:
            logger.warning(
                "second payment %s for paid order",
                payment_id,
                extra={"order_id": order.order_id},
            )
        return order, False

    now = utcnow()
    previous = order.status
    order.payment_status = "paid"
    order.payment_id = payment_id
    order.payment_method = method or "razorpay"
    order.paid_at = now
    if order.status == "pending":
        order.status = "confirmed"
        order.confirmed_at = now
    order.updated_at = now
    customer_service.record_purchase(db, order.phone, int(order.total or 0), now=now)
    db.commit()
    db.refresh(order)
    logger.info("order paid", extra={"order_id": order.order_id, "phone": order.phone})
    emit_order_paid(events, order)
    emit_order_status_changed(events, order, previous)
    return order, True


async def handle_payment_success(
    db: Session,
    gateway: MessageGateway,
    order_id: str,
    payment_id: str,
    *,
    method: str | None = None,
    events: EventBus | None = None,
) -> Order:
    order, changed = mark_order_paid(db, order_id, payment_id, method=method, events=events)
    if changed:
        try:
            await gateway.send_order_confirmation(order.phone, order)
        except KaapavError as exc:
            logger.warning("order confirmation not sent: %s", exc, extra={"order_id": order.order_id})
    return order


async def handle_payment_failed(db: Session, gateway: MessageGateway, order: Order, *, reason: str | None = None) -> None:
    track_event(db, "payment", "failed", phone=order.phone, order_id=order.order_id, data={"reason": reason})
    body = (
        "❌ *Payment Not Completed*\n\n"
        f"Order: {order.order_id}\n"
        f"Amount: ₹{order.total}\n\n"
        "Please try again or contact support if you need help."
    )
    try:
        await gateway.send_buttons(
            order.phone,
            body,
            [{"id": f"PAY_{order.order_id}", "title": "🔄 Try Again"}, {"id": "CHAT_NOW", "title": "💬 Support"}],
        )
    except KaapavError as exc:
        logger.warning("payment failure notice not sent: %s", exc, extra={"order_id": order.order_id})


async def handle_callback(
    db: Session,
    gateway: MessageGateway,
    razorpay: RazorpayClient | None,
    params: dict[str, str],
    *,
    events: EventBus | None = None,
) -> str:
    """Process the browser redirect from Razorpay and return where to send the user."""
    website = LINKS["website"]
    order_id = (params.get("order_id") or "").strip()
    if not order_id:
        return f"{website}/payment-error?error=missing_order"
    order = get_order(db, order_id)
    if order is None:
        return f"{website}/payment-error?error=order_not_found"

    payment_id = params.get("razorpay_payment_id")
    status = params.get("razorpay_payment_link_status")
    if status == "paid" and payment_id:
        verification = await verify_payment(razorpay, payment_id, order.order_id)
        if verification.verified:
            await handle_payment_success(
                db, gateway, order.order_id, payment_id, method=verification.method, events=events
            )
            return f"{website}/order-success?order_id={order.order_id}"
        logger.warning("payment verification failed: %s", verification.error, extra={"order_id": order.order_id})

    await handle_payment_failed(db, gateway, order, reason=status or "unverified")
    return f"{website}/payment-failed?order_id={order.order_id}"


async def handle_webhook_event(
    db: Session,
    gateway: MessageGateway,
    event: dict[str, Any],
    *,
    events: EventBus | None = None,
) -> str:
    """Apply one Razorpay webhook event. Returns a short outcome label."""
    event_name = event.get("event") or ""
    payload = event.get("payload") or {}
    payment = (payload.get("payment") or {}).get("entity") or {}

    if event_name in ("payment.captured", "payment_link.paid"):
        if event_name == "payment_link.paid":
            link = (payload.get("payment_link") or {}).get("entity") or {}
            order_id = (link.get("notes") or {}).get("order_id") or (payment.get("notes") or {}).get("order_id")
        else:
            order_id = (payment.get("notes") or {}).get("order_id")
        if not order_id or get_order(db, order_id) is None:
            logger.warning("webhook for unknown order", extra={"event": event_name, "order_id": order_id})
            return "ignored"
        await handle_payment_success(
            db, gateway, order_id, payment.get("id") or "", method=payment.get("method"), events=events
        )
        return "paid"

    if event_name == "payment.failed":
        order_id = (payment.get("notes") or {}).get("order_id")
        order = get_order(db, order_id) if order_id else None
        track_event(
            db,
            "payment",
            "webhook_failed",
            phone=order.phone if order else None,
            order_id=order_id,
            data={"error_code": payment.get("error_code"), "error_description": payment.get("error_description")},
        )
        return "failed"

    if event_name == "refund.created":
        refund = (payload.get("refund") or {}).get("entity") or {}
        order = db.query(Order).filter(Order.payment_id == refund.get("payment_id")).first()
        if order is None:
            return "ignored"
        amount = int(refund.get("amount") or 0) // 100
        order.payment_status = "refunded" if amount >= int(order.total or 0) else "partial_refund"
        db.commit()
        try:
            await gateway.send_text(
                order.phone,
                "💸 *Refund Processed*\n\n"
                f"Order: {order.order_id}\n"
                f"Amount: ₹{amount}\n\n"
                "The refund will reflect in 5-7 business days.\n\n"
                "Thank you for shopping with KAAPAV! 💎",
            )
        except KaapavError as exc:
            logger.warning("refund notice not sent: %s", exc, extra={"order_id": order.order_id})
        return "refunded"

    logger.info("unhandled payment webhook %s", event_name, extra={"event": event_name})
    return "ignored"


async def create_refund(
    db: Session,
    razorpay: RazorpayClient | None,
    order_id: str,
    *,
    amount: int | None = None,
    reason: str | None = None,
    events: EventBus | None = None,
) -> Order:
    order = require_order(db, order_id)
    if order.payment_status != "paid" or not order.payment_id:
        raise ConflictError("Order has no captured payment", details={"order_id": order.order_id})
    if razorpay is None or not razorpay.configured:
        raise ConfigurationError("Razorpay credentials are not configured")
    refund_amount = int(amount if amount is not None else order.total or 0)
    if refund_amount <= 0 or refund_amount > int(order.total or 0):
        raise ValidationError("Invalid refund amount", details={"amount": refund_amount})

    try:
        await razorpay.refund(
            order.payment_id,
            {
                "amount": _paise(refund_amount),
                "speed": "normal",
                "notes": {"order_id": order.order_id, "reason": reason or "Customer request"},
            },
        )
    except ProviderError:
        logger.exception("refund failed", extra={"order_id": order.order_id})
        raise

    now = utcnow()
    previous = order.status
    order.payment_status = "refunded" if refund_amount >= int(order.total or 0) else "partial_refund"
    if order.status not in ("cancelled", "delivered", "returned"):
        order.status = "cancelled"
        order.cancelled_at = now
    order.cancellation_reason = reason or "Refund processed"
    order.updated_at = now
    db.commit()
    db.refresh(order)
    track_event(db, "payment", "refund", phone=order.phone, order_id=order.order_id, data={"amount": refund_amount})
    emit_order_status_changed(events, order, previous)
    return order
