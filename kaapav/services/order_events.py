from __future__ import annotations

from kaapav.models.order import Order
from kaapav.services.event_bus import EventBus


def build_order_payload(order: Order, previous_status: str | None = None) -> dict:
    return {
        "order_id": order.order_id,
        "phone": order.phone,
        "status": order.status,
        "previous_status": previous_status,
        "payment_status": order.payment_status,
        "customer_name": order.customer_name,
        "total": int(order.total or 0),
        "item_count": int(order.item_count or 0),
        "source": order.source,
    }


def emit_order_created(events: EventBus | None, order: Order) -> None:
    if events is not None:
        events.emit("order.created", build_order_payload(order))


def emit_order_paid(events: EventBus | None, order: Order) -> None:
    if events is not None:
        events.emit("order.paid", build_order_payload(order))


def emit_order_status_changed(events: EventBus | None, order: Order, previous_status: str | None) -> None:
    if events is None or previous_status == order.status:
        return
    events.emit("order.status.changed", build_order_payload(order, previous_status=previous_status))
