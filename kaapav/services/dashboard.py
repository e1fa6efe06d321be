from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from kaapav.models.broadcast import Broadcast
from kaapav.models.chat import Chat
from kaapav.models.customer import Customer
from kaapav.models.message import Message
from kaapav.models.order import Order
from kaapav.utils.clock import utcnow


def dashboard_stats(db: Session, *, now: datetime | None = None) -> dict[str, Any]:
    now = now or utcnow()
    today = datetime.combine(now.date(), datetime.min.time())
    week_ago = today - timedelta(days=7)

    revenue_today = (
        db.query(func.coalesce(func.sum(Order.total), 0))
        .filter(Order.paid_at >= today, Order.payment_status == "paid")
        .scalar()
    )
    revenue_week = (
        db.query(func.coalesce(func.sum(Order.total), 0))
        .filter(Order.paid_at >= week_ago, Order.payment_status == "paid")
        .scalar()
    )
    return {
        "chats": {
            "open": db.query(Chat).filter(Chat.status == "open").count(),
            "unread": int(db.query(func.coalesce(func.sum(Chat.unread_count), 0)).scalar() or 0),
            "needs_attention": db.query(Chat).filter(Chat.needs_attention.is_(True)).count(),
        },
        "messages": {
            "today": db.query(Message).filter(Message.created_at >= today).count(),
            "incoming_today": db.query(Message)
            .filter(Message.created_at >= today, Message.direction == "incoming")
            .count(),
        },
        "customers": {
            "total": db.query(Customer).filter(Customer.is_deleted.is_(False)).count(),
            "new_today": db.query(Customer).filter(Customer.created_at >= today).count(),
            "vip": db.query(Customer).filter(Customer.segment == "vip").count(),
        },
        "orders": {
            "today": db.query(Order).filter(Order.created_at >= today).count(),
            "pending_payment": db.query(Order)
            .filter(Order.status == "pending", Order.payment_status == "unpaid")
            .count(),
            "to_ship": db.query(Order).filter(Order.status.in_(("confirmed", "processing"))).count(),
        },
        "revenue": {"today": int(revenue_today or 0), "week": int(revenue_week or 0)},
        "broadcasts": {
            "scheduled": db.query(Broadcast).filter(Broadcast.status == "scheduled").count(),
            "sending": db.query(Broadcast).filter(Broadcast.status == "sending").count(),
        },
    }
