from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import or_
from sqlalchemy.orm import Session

from kaapav.core.errors import NotFoundError, ValidationError
from kaapav.models.chat import Chat
from kaapav.models.customer import SEGMENTS, Customer
from kaapav.models.order import Order
from kaapav.utils.clock import utcnow
from kaapav.utils.phone import normalize_phone

logger = logging.getLogger(__name__)

VIP_SPEND_THRESHOLD = 5000
REGULAR_ORDER_COUNT = 2
INACTIVE_AFTER_DAYS = 30
NEW_WITHIN_DAYS = 7
SUPPORTED_LANGUAGES = ("en", "hi", "kn")

EDITABLE_FIELDS = {"name", "email", "language", "segment", "opted_in_marketing", "is_blocked"}


def get_customer(db: Session, phone: str) -> Customer | None:
    return db.query(Customer).filter(Customer.phone == normalize_phone(phone)).first()


def require_customer(db: Session, phone: str) -> Customer:
    customer = get_customer(db, phone)
    if customer is None or customer.is_deleted:
        raise NotFoundError("Customer not found", details={"phone": phone})
    return customer


def touch_customer(db: Session, phone: str, name: str | None = None, *, now: datetime | None = None) -> Customer:
    """Create the customer on first contact, otherwise bump activity counters."""
    now = now or utcnow()
    phone = normalize_phone(phone)
    customer = db.query(Customer).filter(Customer.phone == phone).first()
    if customer is None:
        customer = Customer(
            phone=phone,
            name=(name or "").strip(),
            first_seen=now,
            last_seen=now,
            message_count=1,
            segment="new",
        )
        db.add(customer)
        logger.info("new customer", extra={"phone": phone})
    else:
        if name and name.strip():
            customer.name = name.strip()
        customer.last_seen = now
        customer.message_count = (customer.message_count or 0) + 1
        if customer.is_deleted:
            customer.is_deleted = False
    db.commit()
    db.refresh(customer)
    return customer


def customer_language(db: Session, phone: str) -> str:
    customer = get_customer(db, phone)
    return customer.language if customer is not None and customer.language else "en"


def set_language(db: Session, phone: str, language: str) -> None:
    if language not in SUPPORTED_LANGUAGES:
        raise ValidationError("Unsupported language", details={"language": language})
    customer = get_customer(db, phone)
    if customer is None:
        return
    customer.language = language
    db.commit()


def save_location(db: Session, phone: str, lat: float | None, lng: float | None, address: str | None) -> None:
    customer = get_customer(db, phone)
    if customer is None:
        return
    customer.last_location_lat = lat
    customer.last_location_lng = lng
    customer.last_location_address = (address or "")[:500] or None
    db.commit()


def mark_invalid_whatsapp(db: Session, phone: str) -> None:
    customer = get_customer(db, phone)
    if customer is not None and customer.is_valid_whatsapp:
        customer.is_valid_whatsapp = False
        db.commit()


def record_purchase(db: Session, phone: str, amount: int, *, now: datetime | None = None) -> None:
    """Add a paid order to the lifetime value. Caller commits."""
    now = now or utcnow()
    customer = get_customer(db, phone)
    if customer is None:
        return
    customer.total_spent = (customer.total_spent or 0) + int(amount or 0)
    customer.last_purchase = now
    if customer.first_purchase is None:
        customer.first_purchase = now


def list_customers(
    db: Session,
    *,
    segment: str | None = None,
    label: str | None = None,
    search: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Customer], int]:
    query = db.query(Customer).filter(Customer.is_deleted.is_(False))
    if segment:
        query = query.filter(Customer.segment == segment)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(or_(Customer.name.ilike(like), Customer.phone.like(like), Customer.email.ilike(like)))
    if label:
        phones = [chat.phone for chat in db.query(Chat).all() if label in (chat.labels or [])]
        query = query.filter(Customer.phone.in_(phones))
    total = query.count()
    rows = query.order_by(Customer.last_seen.desc()).offset(max(0, offset)).limit(min(max(1, limit), 100)).all()
    return rows, total


def customer_profile(db: Session, phone: str) -> dict[str, Any]:
    customer = require_customer(db, phone)
    orders = (
        db.query(Order)
        .filter(Order.phone == customer.phone)
        .order_by(Order.created_at.desc())
        .all()
    )
    paid = [order for order in orders if order.payment_status == "paid"]
    total_spent = int(customer.total_spent or 0)
    avg_order_value = round(total_spent / len(paid)) if paid else 0
    chat = db.query(Chat).filter(Chat.phone == customer.phone).first()
    return {
        "customer": customer,
        "labels": list(chat.labels or []) if chat else [],
        "stats": {
            "order_count": len(orders),
            "paid_order_count": len(paid),
            "total_spent": total_spent,
            "average_order_value": avg_order_value,
            "lifetime_value": total_spent,
            "message_count": int(customer.message_count or 0),
        },
        "recent_orders": orders[:5],
    }


def update_customer(db: Session, phone: str, changes: dict[str, Any]) -> Customer:
    customer = require_customer(db, phone)
    for key, value in changes.items():
        if key not in EDITABLE_FIELDS or value is None:
            continue
        if key == "segment" and value not in SEGMENTS:
            raise ValidationError("Invalid segment", details={"segment": value})
        if key == "language" and value not in SUPPORTED_LANGUAGES:
            raise ValidationError("Unsupported language", details={"language": value})
        setattr(customer, key, value)
    db.commit()
    db.refresh(customer)
    return customer


def soft_delete_customer(db: Session, phone: str) -> None:
    customer = require_customer(db, phone)
    customer.is_deleted = True
    customer.opted_in_marketing = False
    db.commit()


def resegment_customers(db: Session, *, now: datetime | None = None) -> dict[str, int]:
    """Recompute every segment from scratch. Rules are applied in priority order."""
    now = now or utcnow()
    inactive_cutoff = now - timedelta(days=INACTIVE_AFTER_DAYS)
    new_cutoff = now - timedelta(days=NEW_WITHIN_DAYS)
    counts = {segment: 0 for segment in SEGMENTS}
    changed = 0

    for customer in db.query(Customer).filter(Customer.is_deleted.is_(False)).all():
        segment = customer.segment or "new"
        if (customer.total_spent or 0) >= VIP_SPEND_THRESHOLD:
            segment = "vip"
        elif customer.last_seen is not None and customer.last_seen < inactive_cutoff:
            segment = "inactive"
        elif (customer.order_count or 0) >= REGULAR_ORDER_COUNT:
            segment = "regular"
        elif customer.created_at is not None and customer.created_at >= new_cutoff and not customer.order_count:
            segment = "new"
        if segment != customer.segment:
            customer.segment = segment
            changed += 1
        counts[segment] = counts.get(segment, 0) + 1

    db.commit()
    logger.info("customer segmentation complete: %s changed", changed, extra={"cron": "segmentation"})
    return {**counts, "changed": changed}


def score_engagement(db: Session, *, now: datetime | None = None) -> int:
    """Recency score plus an order-count bonus, 20 to 130."""
    now = now or utcnow()
    updated = 0
    for customer in db.query(Customer).filter(Customer.is_deleted.is_(False)).all():
        last_seen = customer.last_seen or customer.created_at or now
        age = now - last_seen
        if age < timedelta(days=1):
            score = 100
        elif age < timedelta(days=7):
            score = 80
        elif age < timedelta(days=30):
            score = 50
        else:
            score = 20
        orders = customer.order_count or 0
        if orders >= 5:
            score += 30
        elif orders >= 2:
            score += 20
        elif orders >= 1:
            score += 10
        if customer.engagement_score != score:
            customer.engagement_score = score
            updated += 1
    db.commit()
    return updated


def customers_to_reengage(db: Session, *, now: datetime | None = None, limit: int = 20) -> list[Customer]:
    now = now or utcnow()
    week_ago = now - timedelta(days=7)
    return (
        db.query(Customer)
        .filter(
            Customer.is_deleted.is_(False),
            Customer.is_blocked.is_(False),
            Customer.opted_in_marketing.is_(True),
            Customer.is_valid_whatsapp.is_(True),
            Customer.last_seen < week_ago,
            Customer.last_seen > now - timedelta(days=30),
            or_(Customer.last_campaign_at.is_(None), Customer.last_campaign_at < week_ago),
        )
        .order_by(Customer.last_seen.desc())
        .limit(limit)
        .all()
    )
