from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Iterable

FREE_SHIPPING_THRESHOLD = 498
STANDARD_SHIPPING = 49
REMOTE_SHIPPING = 99
REMOTE_PINCODES = {"110001", "400001"}

DELIVERY_MIN_DAYS = 3
DELIVERY_MAX_DAYS = 5


@dataclass(frozen=True)
class DiscountRule:
    kind: str  # percent / flat / shipping
    value: int
    min_order: int
    description: str
    max_discount: int | None = None


DISCOUNT_CODES: dict[str, DiscountRule] = {
    "WELCOME10": DiscountRule("percent", 10, 299, "10% off on first order", max_discount=100),
    "FLAT50": DiscountRule("flat", 50, 499, "₹50 off on orders above ₹499"),
    "KAAPAV20": DiscountRule("percent", 20, 999, "20% off on orders above ₹999"),
    "FREESHIP": DiscountRule("shipping", 0, 0, "Free shipping on any order"),
    "DIWALI25": DiscountRule("percent", 25, 599, "Diwali special 25% off", max_discount=250),
}


@dataclass
class DiscountResult:
    valid: bool
    code: str | None = None
    discount_amount: int = 0
    free_shipping: bool = False
    description: str | None = None
    error: str | None = None


@dataclass
class OrderTotals:
    subtotal: int
    discount: int
    shipping: int
    total: int
    item_count: int


def apply_discount(subtotal: int, discount_code: str | None) -> DiscountResult:
    if not discount_code or not discount_code.strip():
        return DiscountResult(valid=False, error="No discount code provided")

    code = discount_code.strip().upper()
    rule = DISCOUNT_CODES.get(code)
    if rule is None:
        return DiscountResult(valid=False, code=code, error="Invalid discount code")
    if subtotal < rule.min_order:
        return DiscountResult(valid=False, code=code, error=f"Minimum order ₹{rule.min_order} required for this code")

    amount = 0
    if rule.kind == "percent":
        amount = round(subtotal * rule.value / 100)
        if rule.max_discount is not None:
            amount = min(amount, rule.max_discount)
    elif rule.kind == "flat":
        amount = rule.value

    return DiscountResult(
        valid=True,
        code=code,
        discount_amount=min(int(amount), int(subtotal)),
        free_shipping=rule.kind == "shipping",
        description=rule.description,
    )


def calculate_shipping(amount: int, pincode: str | None = None) -> int:
    """Flat-rate shipping for the amount payable before shipping."""
    if amount >= FREE_SHIPPING_THRESHOLD:
        return 0
    if pincode and pincode in REMOTE_PINCODES:
        return REMOTE_SHIPPING
    return STANDARD_SHIPPING


def cart_subtotal(items: Iterable[dict[str, Any]]) -> tuple[int, int]:
    subtotal = 0
    count = 0
    for item in items:
        qty = int(item.get("quantity") or 1)
        subtotal += int(item.get("price") or 0) * qty
        count += qty
    return subtotal, count


def compute_totals(
    items: Iterable[dict[str, Any]],
    *,
    pincode: str | None = None,
    discount_code: str | None = None,
) -> OrderTotals:
    subtotal, count = cart_subtotal(items)
    discount = 0
    free_shipping = False
    if discount_code:
        result = apply_discount(subtotal, discount_code)
        if result.valid:
            discount = result.discount_amount
            free_shipping = result.free_shipping
    shipping = 0 if free_shipping else calculate_shipping(subtotal - discount, pincode)
    return OrderTotals(
        subtotal=subtotal,
        discount=discount,
        shipping=shipping,
        total=subtotal - discount + shipping,
        item_count=count,
    )


def estimate_delivery(start: date | datetime | None = None, days: int = DELIVERY_MIN_DAYS) -> date:
    base = start or datetime.now()
    current = base.date() if isinstance(base, datetime) else base
    remaining = days
    while remaining > 0:
        current = current + timedelta(days=1)
        if current.weekday() != 6:
            remaining -= 1
    return current


def delivery_range_text(start: date | datetime | None = None) -> str:
    earliest = estimate_delivery(start, DELIVERY_MIN_DAYS)
    latest = estimate_delivery(start, DELIVERY_MAX_DAYS)
    return f"{earliest.strftime('%d %b')} - {latest.strftime('%d %b')}"
