from __future__ import annotations

import hashlib
import logging
from datetime import date, datetime, timedelta
from typing import Any

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from kaapav.core.errors import ConflictError, NotFoundError, ValidationError
from kaapav.models.cart import Cart
from kaapav.models.customer import Customer
from kaapav.models.order import ORDER_STATUSES, Order
from kaapav.services import customers as customer_service
from kaapav.services.carts import convert_cart
from kaapav.services.event_bus import EventBus
from kaapav.services.order_events import emit_order_created, emit_order_status_changed
from kaapav.services.pricing import apply_discount, compute_totals, estimate_delivery
from kaapav.services.products import get_product
from kaapav.utils.clock import utcnow
from kaapav.utils.phone import normalize_phone
from kaapav.utils.text import generate_order_id

logger = logging.getLogger(__name__)

# forward progression; a later status may be reached directly from an earlier one
ORDER_PROGRESSION = (
    "pending",
    "confirmed",
    "processing",
    "shipped",
    "in_transit",
    "out_for_delivery",
    "delivered",
)
TERMINAL_STATUSES = {"delivered", "cancelled", "returned"}
STATUS_TIMESTAMPS = {
    "confirmed": "confirmed_at",
    "shipped": "shipped_at",
    "delivered": "delivered_at",
    "cancelled": "cancelled_at",
}
TRACKING_FIELDS = ("tracking_id", "courier", "tracking_url", "estimated_delivery")


def can_transition(current: str, target: str) -> bool:
    if current == target:
        return False
    if target == "cancelled":
        return current not in TERMINAL_STATUSES
    if target == "returned":
        return current == "delivered"
    if current in ORDER_PROGRESSION and target in ORDER_PROGRESSION:
        return ORDER_PROGRESSION.index(target) > ORDER_PROGRESSION.index(current)
    return False


def make_idempotency_key(phone: str, cart_id: int | None, cart_updated_at: datetime | None) -> str:
    raw = f"{phone}:{cart_id or 0}:{cart_updated_at.isoformat() if cart_updated_at else ''}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:40]


def get_order(db: Session, order_id: str) -> Order | None:
    return db.query(Order).filter(Order.order_id == (order_id or "").strip().upper()).first()


def require_order(db: Session, order_id: str) -> Order:
    order = get_order(db, order_id)
    if order is None:
        raise NotFoundError("Order not found", details={"order_id": order_id})
    return order


def find_by_idempotency_key(db: Session, key: str) -> Order | None:
    return db.query(Order).filter(Order.idempotency_key == key).first()


def recent_orders(db: Session, phone: str, *, limit: int = 3) -> list[Order]:
    return (
        db.query(Order)
        .filter(Order.phone == phone)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(limit)
        .all()
    )


def _unique_order_id(db: Session) -> str:
    for _ in range(10):
        candidate = generate_order_id()
        if db.query(Order.id).filter(Order.order_id == candidate).first() is None:
            return candidate
    raise ConflictError("Could not allocate an order id")


def create_order(
    db: Session,
    *,
    phone: str,
    items: list[dict[str, Any]],
    shipping_address: str | None,
    shipping_pincode: str | None,
    discount_code: str | None = None,
    idempotency_key: str | None = None,
    cart: Cart | None = None,
    source: str = "whatsapp",
    events: EventBus | None = None,
) -> tuple[Order, bool]:
    """Materialize an order. Returns ``(order, created)``.

    When ``idempotency_key`` matches an existing order that order is returned
    untouched. The order row, the customer's order count and the cart
    conversion are committed together.
    """
    if not items:
        raise ValidationError("Order has no items")
    phone = normalize_phone(phone)
    if idempotency_key:
        existing = find_by_idempotency_key(db, idempotency_key)
        if existing is not None:
            return existing, False

    totals = compute_totals(items, pincode=shipping_pincode, discount_code=discount_code)
    applied_code = None
    if discount_code and apply_discount(totals.subtotal, discount_code).valid:
        applied_code = discount_code.strip().upper()
    customer = db.query(Customer).filter(Customer.phone == phone).first()
    now = utcnow()
    order = Order(
        order_id=_unique_order_id(db),
        phone=phone,
        customer_name=(customer.name if customer else "") or "",
        items=[dict(item) for item in items],
        item_count=totals.item_count,
        subtotal=totals.subtotal,
        discount=totals.discount,
        discount_code=applied_code,
        shipping_cost=totals.shipping,
        total=totals.total,
        shipping_address=shipping_address,
        shipping_pincode=shipping_pincode,
        status="pending",
        payment_status="unpaid",
        idempotency_key=idempotency_key,
        estimated_delivery=estimate_delivery(now),
        source=source,
        created_at=now,
        updated_at=now,
    )
    db.add(order)
    if customer is not None:
        customer.order_count = (customer.order_count or 0) + 1
    if cart is not None:
        convert_cart(db, cart, now=now)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        if idempotency_key:
            existing = find_by_idempotency_key(db, idempotency_key)
            if existing is not None:
                return existing, False
        raise
    db.refresh(order)
    logger.info(
        "order created %s total=%s",
        order.order_id,
        order.total,
        extra={"order_id": order.order_id, "phone": phone},
    )
    emit_order_created(events, order)
    return order, True


def create_manual_order(db: Session, data: dict[str, Any], *, events: EventBus | None = None) -> Order:
    phone = normalize_phone(data.get("phone") or "")
    if len(phone) < 10:
        raise ValidationError("A valid phone is required")
    items: list[dict[str, Any]] = []
    for raw in data.get("items") or []:
        quantity = max(1, int(raw.get("quantity") or 1))
        product_id = raw.get("product_id")
        product = get_product(db, product_id) if product_id else None
        if product is not None:
            items.append({"product_id": product.product_id, "name": product.name, "price": int(product.price or 0), "quantity": quantity})
        elif raw.get("name") and raw.get("price") is not None:
            items.append({"product_id": product_id, "name": raw["name"], "price": int(raw["price"]), "quantity": quantity})
        else:
            raise ValidationError("Unknown item", details={"item": raw})
    if data.get("customer_name"):
        customer_service.touch_customer(db, phone, data["customer_name"])
    order, _ = create_order(
        db,
        phone=phone,
        items=items,
        shipping_address=data.get("shipping_address"),
        shipping_pincode=data.get("shipping_pincode"),
        discount_code=data.get("discount_code"),
        source="manual",
        events=events,
    )
    return order


def transition_order(
    db: Session,
    order_id: str,
    status: str,
    *,
    tracking: dict[str, Any] | None = None,
    reason: str | None = None,
    events: EventBus | None = None,
) -> Order:
    if status not in ORDER_STATUSES:
        raise ValidationError("Unknown order status", details={"status": status})
    order = require_order(db, order_id)
    previous = order.status
    if not can_transition(previous, status):
        raise ConflictError(
            f"Cannot move order from {previous} to {status}",
            details={"order_id": order.order_id, "from": previous, "to": status},
        )
    now = utcnow()
    order.status = status
    stamp = STATUS_TIMESTAMPS.get(status)
    if stamp:
        setattr(order, stamp, now)
    if status == "cancelled":
        order.cancellation_reason = reason or "Cancelled"
    for key in TRACKING_FIELDS:
        value = (tracking or {}).get(key)
        if value is not None:
            setattr(order, key, value)
    order.updated_at = now
    db.commit()
    db.refresh(order)
    emit_order_status_changed(events, order, previous)
    return order


def update_tracking(db: Session, order_id: str, tracking: dict[str, Any]) -> Order:
    order = require_order(db, order_id)
    for key in TRACKING_FIELDS:
        value = tracking.get(key)
        if value is not None:
            setattr(order, key, value)
    db.commit()
    db.refresh(order)
    return order


def cancel_order(db: Session, order_id: str, reason: str | None = None, *, events: EventBus | None = None) -> Order:
    return transition_order(db, order_id, "cancelled", reason=reason or "Customer requested", events=events)


def list_orders(
    db: Session,
    *,
    status: str | None = None,
    payment_status: str | None = None,
    phone: str | None = None,
    search: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Order], int]:
    query = db.query(Order)
    if status:
        query = query.filter(Order.status == status)
    if payment_status:
        query = query.filter(Order.payment_status == payment_status)
    if phone:
        query = query.filter(Order.phone == normalize_phone(phone))
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(or_(Order.order_id.ilike(like), Order.customer_name.ilike(like), Order.phone.like(like)))
    if date_from:
        query = query.filter(Order.created_at >= datetime.combine(date_from, datetime.min.time()))
    if date_to:
        query = query.filter(Order.created_at < datetime.combine(date_to + timedelta(days=1), datetime.min.time()))
    total = query.count()
    rows = query.order_by(Order.created_at.desc()).offset(max(0, offset)).limit(min(max(1, limit), 100)).all()
    return rows, total


def _period_start(period: str, now: datetime) -> datetime:
    today = datetime.combine(now.date(), datetime.min.time())
    if period == "week":
        return today - timedelta(days=7)
    if period == "month":
        return today - timedelta(days=30)
    return today


def order_stats(db: Session, *, period: str = "today", now: datetime | None = None) -> dict[str, Any]:
    now = now or utcnow()
    since = _period_start(period, now)
    base = db.query(Order).filter(Order.created_at >= since)
    by_status = dict(
        db.query(Order.status, func.count(Order.id)).filter(Order.created_at >= since).group_by(Order.status).all()
    )
    revenue = (
        db.query(func.coalesce(func.sum(Order.total), 0))
        .filter(Order.created_at >= since, Order.payment_status == "paid")
        .scalar()
    )
    paid_count = base.filter(Order.payment_status == "paid").count()
    return {
        "period": period,
        "total_orders": base.count(),
        "paid_orders": paid_count,
        "revenue": int(revenue or 0),
        "average_order_value": round(int(revenue or 0) / paid_count) if paid_count else 0,
        "by_status": {status: int(by_status.get(status, 0)) for status in ORDER_STATUSES},
    }


def orders_due_payment_reminder(db: Session, *, now: datetime | None = None, limit: int = 10) -> list[Order]:
    now = now or utcnow()
    rows = (
        db.query(Order)
        .filter(
            Order.status == "pending",
            Order.payment_status == "unpaid",
            Order.created_at < now - timedelta(hours=2),
            Order.created_at > now - timedelta(hours=24),
        )
        .order_by(Order.created_at)
        .all()
    )
    due = [o for o in rows if o.last_reminder_at is None or o.last_reminder_at < now - timedelta(hours=4)]
    return due[:limit]


def auto_cancel_unpaid(db: Session, *, now: datetime | None = None, events: EventBus | None = None) -> int:
    now = now or utcnow()
    stale = (
        db.query(Order)
        .filter(
            Order.status == "pending",
            Order.payment_status == "unpaid",
            Order.created_at < now - timedelta(hours=48),
        )
        .all()
    )
    for order in stale:
        previous = order.status
        order.status = "cancelled"
        order.cancelled_at = now
        order.cancellation_reason = "Auto-cancelled: payment not received"
        emit_order_status_changed(events, order, previous)
    db.commit()
    return len(stale)


def orders_due_delivery_reminder(db: Session, *, now: datetime | None = None, limit: int = 20) -> list[Order]:
    now = now or utcnow()
    horizon = (now + timedelta(days=1)).date()
    return (
        db.query(Order)
        .filter(
            Order.status.in_(("shipped", "in_transit", "out_for_delivery")),
            Order.delivery_reminder_sent.is_(False),
            Order.estimated_delivery.isnot(None),
            Order.estimated_delivery <= horizon,
        )
        .limit(limit)
        .all()
    )


def orders_to_sync_tracking(db: Session, *, limit: int = 50) -> list[Order]:
    return (
        db.query(Order)
        .filter(Order.status.in_(("shipped", "in_transit", "out_for_delivery")), Order.tracking_id.isnot(None))
        .order_by(Order.updated_at)
        .limit(limit)
        .all()
    )
