"""Cron jobs, dispatched by crontab expression.

The same :func:`run_cron` entry point serves the in-process APScheduler and
``scripts/run_cron.py`` for one-shot execution from an external cron.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable

import httpx
from sqlalchemy import case, func
from sqlalchemy.orm import Session

from kaapav.conversation.state import ConversationStateStore
from kaapav.core.errors import KaapavError
from kaapav.models.customer import Customer
from kaapav.models.message import Message
from kaapav.models.order import Order
from kaapav.runtime import Runtime
from kaapav.services.analytics import prune_events, track_event
from kaapav.services.broadcasts import BroadcastExecutor, due_broadcasts
from kaapav.services.carts import carts_needing_reminder, mark_stale_carts
from kaapav.services.customers import customers_to_reengage, resegment_customers, score_engagement
from kaapav.services.orders import (
    auto_cancel_unpaid,
    orders_due_delivery_reminder,
    orders_due_payment_reminder,
    orders_to_sync_tracking,
)
from kaapav.services.shipping import public_tracking_url, sync_tracking
from kaapav.utils.clock import utcnow

logger = logging.getLogger(__name__)

SEND_ERRORS = (KaapavError, httpx.HTTPError)

Job = Callable[[Runtime, Session], Awaitable[Any]]


async def send_payment_reminders(runtime: Runtime, db: Session) -> dict[str, int]:
    gateway = runtime.gateway(db)
    sent = 0
    for order in orders_due_payment_reminder(db):
        try:
            await gateway.send_buttons(
                order.phone,
                "💳 *Payment Pending*\n\n"
                f"📦 Order: *{order.order_id}*\n"
                f"💰 Amount: *₹{order.total}*\n\n"
                "Your order is waiting! Complete payment to ship within 24 hours.\n\n"
                "⏰ Order expires in 24 hours",
                [
                    {"id": f"PAY_{order.order_id}", "title": "💳 Pay Now"},
                    {"id": "CHAT_NOW", "title": "💬 Need Help?"},
                    {"id": f"CANCEL_{order.order_id}", "title": "❌ Cancel"},
                ],
                footer=f"Order: {order.order_id}",
            )
        except SEND_ERRORS as exc:
            logger.warning("payment reminder failed: %s", exc, extra={"order_id": order.order_id})
            continue
        order.last_reminder_at = utcnow()
        db.commit()
        track_event(db, "reminder", "payment_reminder", phone=order.phone, order_id=order.order_id)
        sent += 1
    return {"payment_reminders": sent}


async def run_due_broadcasts(runtime: Runtime, db: Session) -> dict[str, int]:
    executor = BroadcastExecutor(db, runtime.gateway(db))
    executed = 0
    for broadcast in due_broadcasts(db):
        try:
            await executor.execute(broadcast.broadcast_id)
        except SEND_ERRORS as exc:
            logger.warning("scheduled broadcast skipped: %s", exc, extra={"broadcast_id": broadcast.broadcast_id})
            continue
        executed += 1
    return {"broadcasts": executed}


async def send_cart_reminders(runtime: Runtime, db: Session) -> dict[str, int]:
    gateway = runtime.gateway(db)
    sent = 0
    for cart in carts_needing_reminder(db):
        customer = db.query(Customer).filter(Customer.phone == cart.phone).first()
        if customer is not None and (not customer.opted_in_marketing or customer.is_blocked):
            continue
        items = list(cart.items or [])
        if not items:
            continue
        name = (customer.name if customer else "") or "there"
        more = f" and {len(items) - 1} more" if len(items) > 1 else ""
        try:
            await gateway.send_buttons(
                cart.phone,
                f"Hey {name}! 💎\n\n"
                "You left something beautiful in your cart:\n\n"
                f"🛒 *{items[0].get('name')}*{more}\n"
                f"💰 Total: ₹{cart.total}\n\n"
                "Complete your order and sparkle! ✨\n\n"
                "🚚 FREE shipping on orders above ₹498",
                [
                    {"id": "VIEW_CART", "title": "🛒 View Cart"},
                    {"id": "OPEN_CATALOG", "title": "📱 Add More"},
                    {"id": "CLEAR_CART", "title": "🗑️ Clear Cart"},
                ],
            )
        except SEND_ERRORS as exc:
            logger.warning("cart reminder failed: %s", exc, extra={"phone": cart.phone})
            continue
        cart.reminder_count = (cart.reminder_count or 0) + 1
        cart.last_reminder_at = utcnow()
        db.commit()
        track_event(db, "reminder", "cart_reminder", phone=cart.phone, data={"total": cart.total, "items": len(items)})
        sent += 1
    return {"cart_reminders": sent}


async def mark_abandoned_carts(runtime: Runtime, db: Session) -> dict[str, int]:
    return mark_stale_carts(db)


async def send_reengagement(runtime: Runtime, db: Session) -> dict[str, int]:
    gateway = runtime.gateway(db)
    sent = 0
    for customer in customers_to_reengage(db):
        first_name = (customer.name or "").split(" ")[0]
        greeting = f"Hey {first_name}! " if first_name else ""
        try:
            await gateway.send_buttons(
                customer.phone,
                f"{greeting}💎 We miss you at KAAPAV!\n\n"
                "✨ Check out what's new:\n\n"
                "🆕 Fresh arrivals this week\n"
                "🎉 Exclusive offers waiting for you\n"
                "🚚 FREE shipping above ₹498\n\n"
                "Come back and sparkle! 👑",
                [
                    {"id": "NEW_ARRIVALS", "title": "✨ New Arrivals"},
                    {"id": "BESTSELLERS", "title": "🏆 Bestsellers"},
                    {"id": "MAIN_MENU", "title": "📱 Explore"},
                ],
            )
        except SEND_ERRORS as exc:
            logger.warning("re-engagement failed: %s", exc, extra={"phone": customer.phone})
            continue
        customer.last_campaign_at = utcnow()
        customer.campaign_count = (customer.campaign_count or 0) + 1
        db.commit()
        sent += 1
    return {"reengagement": sent}


async def send_delivery_reminders(runtime: Runtime, db: Session) -> dict[str, int]:
    gateway = runtime.gateway(db)
    sent = 0
    for order in orders_due_delivery_reminder(db):
        tracking_url = order.tracking_url or (public_tracking_url(order.tracking_id) if order.tracking_id else "")
        try:
            await gateway.send_buttons(
                order.phone,
                "🎉 *Delivery Update!*\n\n"
                f"📦 Order: *{order.order_id}*\n\n"
                "Your package is on its way and will arrive soon!\n\n"
                f"🚚 Courier: {order.courier or 'Our delivery partner'}\n"
                f"📋 Tracking: {order.tracking_id or 'Check link below'}\n\n"
                f"Track your package in real-time 👇\n{tracking_url}".rstrip(),
                [
                    {"id": f"TRACK_{order.order_id}", "title": "📦 Track Package"},
                    {"id": "CHAT_NOW", "title": "💬 Need Help?"},
                ],
            )
        except SEND_ERRORS as exc:
            logger.warning("delivery reminder failed: %s", exc, extra={"order_id": order.order_id})
            continue
        order.delivery_reminder_sent = True
        db.commit()
        sent += 1
    return {"delivery_reminders": sent}


async def run_cleanup(runtime: Runtime, db: Session) -> dict[str, int]:
    states = ConversationStateStore(db).purge_expired(older_than=timedelta(days=1))
    cancelled = auto_cancel_unpaid(db, events=runtime.events)
    pruned = prune_events(db, older_than_days=90)
    carts = mark_stale_carts(db)
    purged = runtime.kv.purge_expired()
    logger.info(
        "cleanup done states=%s cancelled=%s events=%s kv=%s",
        states,
        cancelled,
        pruned,
        purged,
        extra={"cron": "cleanup"},
    )
    return {"states": states, "auto_cancelled": cancelled, "events": pruned, "kv": purged, **carts}


def build_daily_report(db: Session, *, now: datetime | None = None) -> dict[str, Any]:
    now = now or utcnow()
    end = datetime.combine(now.date(), datetime.min.time())
    start = end - timedelta(days=1)

    messages = (
        db.query(
            func.count(Message.id),
            func.coalesce(func.sum(case((Message.direction == "incoming", 1), else_=0)), 0),
            func.coalesce(func.sum(case((Message.direction == "outgoing", 1), else_=0)), 0),
            func.coalesce(func.sum(case((Message.is_auto_reply.is_(True), 1), else_=0)), 0),
        )
        .filter(Message.created_at >= start, Message.created_at < end)
        .one()
    )
    orders = (
        db.query(
            func.count(Order.id),
            func.coalesce(
                func.sum(case((Order.status.in_(("confirmed", "shipped", "delivered")), 1), else_=0)), 0
            ),
            func.coalesce(func.sum(Order.total), 0),
        )
        .filter(Order.created_at >= start, Order.created_at < end)
        .one()
    )
    new_customers = db.query(Customer).filter(Customer.created_at >= start, Customer.created_at < end).count()
    return {
        "date": start.date().isoformat(),
        "messages": {
            "total": int(messages[0]),
            "incoming": int(messages[1]),
            "outgoing": int(messages[2]),
            "auto_replies": int(messages[3]),
        },
        "orders": {"total": int(orders[0]), "successful": int(orders[1]), "revenue": int(orders[2])},
        "customers": {"new_customers": new_customers},
    }


async def send_daily_report(runtime: Runtime, db: Session) -> dict[str, Any]:
    report = build_daily_report(db)
    track_event(db, "report", "daily_report", data=report)
    await runtime.telemetry.notify("daily_report", report)
    logger.info("daily report generated for %s", report["date"], extra={"cron": "daily_report"})
    return report


async def update_segments(runtime: Runtime, db: Session) -> dict[str, int]:
    counts = resegment_customers(db)
    counts["engagement_updated"] = score_engagement(db)
    return counts


async def sync_shipments(runtime: Runtime, db: Session) -> dict[str, int]:
    if runtime.shiprocket is None or not runtime.shiprocket.configured:
        return {"tracking_synced": 0}
    gateway = runtime.gateway(db)
    synced = 0
    for order in orders_to_sync_tracking(db):
        try:
            moved = await sync_tracking(db, runtime.shiprocket, gateway, order, events=runtime.events)
        except SEND_ERRORS as exc:
            logger.warning("tracking sync failed: %s", exc, extra={"order_id": order.order_id})
            continue
        synced += int(moved)
    return {"tracking_synced": synced}


CRON_JOBS: dict[str, tuple[Job, ...]] = {
    "*/5 * * * *": (send_payment_reminders, run_due_broadcasts),
    "0 3 * * *": (send_cart_reminders, mark_abandoned_carts),
    "0 12 * * *": (send_reengagement, send_delivery_reminders),
    "0 0 * * *": (run_cleanup, send_daily_report, update_segments),
    "0 */6 * * *": (sync_shipments,),
}


async def run_cron(expression: str, runtime: Runtime) -> dict[str, Any]:
    """Run every job registered for ``expression``; one failing job does not stop the rest."""
    jobs = CRON_JOBS.get(expression)
    if jobs is None:
        logger.warning("unknown cron pattern: %s", expression)
        return {}

    logger.info("cron triggered: %s", expression, extra={"cron": expression})
    results: dict[str, Any] = {}
    for job in jobs:
        db = runtime.session_factory()
        try:
            results[job.__name__] = await job(runtime, db)
        except Exception as exc:
            db.rollback()
            logger.exception("cron job %s failed", job.__name__, extra={"cron": expression})
            results[job.__name__] = {"error": str(exc)}
        finally:
            db.close()
    logger.info("cron completed: %s", expression, extra={"cron": expression})
    return results
