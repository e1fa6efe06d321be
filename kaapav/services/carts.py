from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.orm import Session

from kaapav.models.cart import Cart
from kaapav.models.product import Product
from kaapav.services.pricing import cart_subtotal
from kaapav.utils.clock import utcnow


def get_active_cart(db: Session, phone: str) -> Cart | None:
    return (
        db.query(Cart)
        .filter(Cart.phone == phone, Cart.status == "active")
        .order_by(Cart.id.desc())
        .first()
    )


def last_converted_cart(db: Session, phone: str, *, within: timedelta = timedelta(hours=24)) -> Cart | None:
    return (
        db.query(Cart)
        .filter(Cart.phone == phone, Cart.status == "converted", Cart.converted_at >= utcnow() - within)
        .order_by(Cart.converted_at.desc(), Cart.id.desc())
        .first()
    )


def get_or_create_cart(db: Session, phone: str) -> Cart:
    cart = get_active_cart(db, phone)
    if cart is None:
        cart = Cart(phone=phone, items=[], total=0, item_count=0, status="active")
        db.add(cart)
        db.commit()
        db.refresh(cart)
    return cart


def item_from_product(product: Product, quantity: int = 1) -> dict[str, Any]:
    return {
        "product_id": product.product_id,
        "name": product.name,
        "price": int(product.price or 0),
        "quantity": max(1, int(quantity or 1)),
    }


def set_items(db: Session, phone: str, items: list[dict[str, Any]], *, now: datetime | None = None) -> Cart:
    cart = get_or_create_cart(db, phone)
    subtotal, count = cart_subtotal(items)
    # reassign so the JSON column is flagged dirty
    cart.items = [dict(item) for item in items]
    cart.total = subtotal
    cart.item_count = count
    cart.updated_at = now or utcnow()
    db.commit()
    db.refresh(cart)
    return cart


def add_item(db: Session, phone: str, item: dict[str, Any]) -> Cart:
    cart = get_or_create_cart(db, phone)
    items = [dict(existing) for existing in (cart.items or [])]
    for existing in items:
        if existing.get("product_id") == item["product_id"]:
            existing["quantity"] = int(existing.get("quantity") or 1) + int(item.get("quantity") or 1)
            break
    else:
        items.append(dict(item))
    return set_items(db, phone, items)


def set_last_item_quantity(db: Session, phone: str, quantity: int) -> Cart | None:
    cart = get_active_cart(db, phone)
    if cart is None or not cart.items:
        return None
    items = [dict(existing) for existing in cart.items]
    items[-1]["quantity"] = max(1, min(100, int(quantity)))
    return set_items(db, phone, items)


def clear_cart(db: Session, phone: str) -> bool:
    cart = get_active_cart(db, phone)
    if cart is None:
        return False
    cart.status = "cleared"
    cart.items = []
    cart.total = 0
    cart.item_count = 0
    cart.updated_at = utcnow()
    db.commit()
    return True


def convert_cart(db: Session, cart: Cart, *, now: datetime | None = None) -> None:
    """Mark the cart converted. Caller commits."""
    cart.status = "converted"
    cart.converted_at = now or utcnow()


def carts_needing_reminder(db: Session, *, now: datetime | None = None, limit: int = 20) -> list[Cart]:
    now = now or utcnow()
    cutoff = now - timedelta(hours=24)
    rows = (
        db.query(Cart)
        .filter(Cart.status == "active", Cart.item_count > 0, Cart.updated_at < cutoff, Cart.reminder_count < 2)
        .order_by(Cart.updated_at)
        .limit(limit * 3)
        .all()
    )
    due = [
        cart
        for cart in rows
        if cart.last_reminder_at is None or cart.last_reminder_at < now - timedelta(hours=24)
    ]
    return due[:limit]


def mark_stale_carts(db: Session, *, now: datetime | None = None) -> dict[str, int]:
    now = now or utcnow()
    abandoned = (
        db.query(Cart)
        .filter(Cart.status == "active", Cart.updated_at < now - timedelta(days=7))
        .update({Cart.status: "abandoned", Cart.abandoned_at: now}, synchronize_session=False)
    )
    expired = (
        db.query(Cart)
        .filter(Cart.status.in_(("active", "abandoned")), Cart.updated_at < now - timedelta(days=30))
        .update({Cart.status: "expired"}, synchronize_session=False)
    )
    db.commit()
    return {"abandoned": int(abandoned or 0), "expired": int(expired or 0)}
