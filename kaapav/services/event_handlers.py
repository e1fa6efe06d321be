from __future__ import annotations

from typing import Callable

from sqlalchemy.orm import Session

from kaapav.services.analytics import track_event
from kaapav.services.event_bus import EventBus


def _with_session(session_factory: Callable[[], Session], handler):
    def wrapper(payload: dict) -> None:
        db: Session = session_factory()
        try:
            handler(db, payload)
        finally:
            db.close()

    return wrapper


def handle_order_created(db: Session, payload: dict) -> None:
    track_event(
        db,
        "order",
        "created",
        phone=payload.get("phone"),
        order_id=payload.get("order_id"),
        data={"total": payload.get("total"), "items": payload.get("item_count"), "source": payload.get("source")},
    )


def handle_order_paid(db: Session, payload: dict) -> None:
    track_event(
        db,
        "payment",
        "success",
        phone=payload.get("phone"),
        order_id=payload.get("order_id"),
        data={"amount": payload.get("total")},
    )


def handle_order_status_changed(db: Session, payload: dict) -> None:
    track_event(
        db,
        "order",
        f"status_{payload.get('status')}",
        phone=payload.get("phone"),
        order_id=payload.get("order_id"),
        data={"from": payload.get("previous_status"), "to": payload.get("status")},
    )


def register_handlers(bus: EventBus, session_factory: Callable[[], Session]) -> EventBus:
    bus.subscribe("order.created", _with_session(session_factory, handle_order_created))
    bus.subscribe("order.paid", _with_session(session_factory, handle_order_paid))
    bus.subscribe("order.status.changed", _with_session(session_factory, handle_order_status_changed))
    return bus
