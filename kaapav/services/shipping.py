from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.orm import Session

from kaapav.core.config import SHIPROCKET_PICKUP_LOCATION, SHIPROCKET_PICKUP_PINCODE
from kaapav.core.errors import ConflictError, KaapavError
from kaapav.integrations.shiprocket import ShiprocketClient
from kaapav.models.order import Order
from kaapav.services.event_bus import EventBus
from kaapav.services.order_events import emit_order_status_changed
from kaapav.services.orders import can_transition, require_order
from kaapav.utils.clock import utcnow
from kaapav.whatsapp.gateway import MessageGateway
from kaapav.whatsapp.menus import LINKS

logger = logging.getLogger(__name__)

# Shiprocket shipment_status_id -> order status
SHIPROCKET_STATUS_MAP = {
    1: "shipped",
    2: "shipped",
    3: "shipped",
    4: "shipped",
    5: "in_transit",
    6: "out_for_delivery",
    7: "delivered",
    8: "cancelled",
    9: "cancelled",
    10: "returned",
}
NOTIFY_STATUSES = {"shipped", "in_transit", "out_for_delivery", "delivered"}


@dataclass
class TrackingInfo:
    awb: str
    tracking_url: str
    status: str | None = None
    status_id: int | None = None
    edd: str | None = None
    activities: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class Serviceability:
    serviceable: bool
    couriers: list[dict[str, Any]] = field(default_factory=list)

    @property
    def recommended(self) -> dict[str, Any] | None:
        return self.couriers[0] if self.couriers else None


def public_tracking_url(awb: str) -> str:
    return f"{LINKS['shiprocket']}?tracking_id={awb}"


def _set_status(order: Order, status: str, *, now) -> None:
    order.status = status
    if status == "shipped" and order.shipped_at is None:
        order.shipped_at = now
    elif status == "delivered":
        order.delivered_at = now
    elif status == "cancelled":
        order.cancelled_at = now
    order.updated_at = now


def build_shipment_payload(order: Order, *, pickup_location: str = SHIPROCKET_PICKUP_LOCATION) -> dict[str, Any]:
    items = [
        {
            "name": item.get("name"),
            "sku": item.get("product_id") or item.get("sku") or order.order_id,
            "units": int(item.get("quantity") or 1),
            "selling_price": int(item.get("price") or 0),
            "discount": 0,
            "tax": 0,
            "hsn": "",
        }
        for item in (order.items or [])
    ]
    phone = order.phone[2:] if order.phone.startswith("91") and len(order.phone) == 12 else order.phone
    return {
        "order_id": order.order_id,
        "order_date": (order.created_at or utcnow()).strftime("%Y-%m-%d"),
        "pickup_location": pickup_location,
        "comment": f"WhatsApp Order - {order.order_id}",
        "billing_customer_name": order.customer_name or "Customer",
        "billing_last_name": "",
        "billing_address": order.shipping_address or "",
        "billing_city": "City",
        "billing_pincode": order.shipping_pincode or "",
        "billing_state": "State",
        "billing_country": "India",
        "billing_email": "",
        "billing_phone": phone,
        "shipping_is_billing": True,
        "order_items": items,
        "payment_method": "Prepaid" if order.payment_status == "paid" else "COD",
        "shipping_charges": int(order.shipping_cost or 0),
        "total_discount": int(order.discount or 0),
        "sub_total": int(order.subtotal or order.total or 0),
        "length": 10,
        "breadth": 10,
        "height": 5,
        "weight": 0.2,
    }


async def create_shipment(
    db: Session,
    shiprocket: ShiprocketClient,
    order_id: str,
    *,
    events: EventBus | None = None,
) -> Order:
    order = require_order(db, order_id)
    if order.status in ("cancelled", "delivered", "returned"):
        raise ConflictError("Order cannot be shipped", details={"order_id": order.order_id, "status": order.status})
    data = await shiprocket.create_order(build_shipment_payload(order))
    if not data.get("order_id"):
        raise ConflictError(data.get("message") or "Shiprocket did not accept the order")
    previous = order.status
    order.shiprocket_order_id = str(data["order_id"])
    order.shipment_id = str(data.get("shipment_id") or "") or None
    if can_transition(order.status, "processing"):
        _set_status(order, "processing", now=utcnow())
    db.commit()
    db.refresh(order)
    logger.info("shipment created", extra={"order_id": order.order_id})
    emit_order_status_changed(events, order, previous)
    return order


async def assign_awb(
    db: Session,
    shiprocket: ShiprocketClient,
    gateway: MessageGateway | None,
    order_id: str,
    *,
    courier_id: int | None = None,
    events: EventBus | None = None,
) -> Order:
    order = require_order(db, order_id)
    if not order.shipment_id:
        raise ConflictError("Order has no shipment yet", details={"order_id": order.order_id})
    data = await shiprocket.assign_awb(order.shipment_id, courier_id)
    if data.get("awb_assign_status") != 1:
        raise ConflictError(data.get("message") or "AWB generation failed", details={"order_id": order.order_id})
    assigned = ((data.get("response") or {}).get("data")) or {}
    awb = assigned.get("awb_code")
    previous = order.status
    order.tracking_id = awb
    order.courier = assigned.get("courier_name")
    order.tracking_url = public_tracking_url(awb)
    if can_transition(order.status, "shipped"):
        _set_status(order, "shipped", now=utcnow())
    db.commit()
    db.refresh(order)
    emit_order_status_changed(events, order, previous)
    if gateway is not None and previous != order.status:
        await _notify(gateway, order)
    return order


async def ship_order(
    db: Session,
    shiprocket: ShiprocketClient,
    gateway: MessageGateway | None,
    order_id: str,
    *,
    courier_id: int | None = None,
    events: EventBus | None = None,
) -> Order:
    order = require_order(db, order_id)
    if not order.shipment_id:
        order = await create_shipment(db, shiprocket, order_id, events=events)
    return await assign_awb(db, shiprocket, gateway, order.order_id, courier_id=courier_id, events=events)


async def get_tracking(shiprocket: ShiprocketClient | None, awb: str) -> TrackingInfo | None:
    if shiprocket is None or not shiprocket.configured:
        return TrackingInfo(awb=awb, tracking_url=public_tracking_url(awb), status="unknown")
    data = await shiprocket.track_awb(awb)
    tracking = data.get("tracking_data") or {}
    if not tracking:
        return None
    status_id = tracking.get("shipment_status_id")
    if status_id is None:
        status_id = tracking.get("shipment_status")
    return TrackingInfo(
        awb=awb,
        tracking_url=tracking.get("track_url") or public_tracking_url(awb),
        status=str(tracking.get("shipment_status")) if tracking.get("shipment_status") is not None else None,
        status_id=int(status_id) if isinstance(status_id, (int, str)) and str(status_id).isdigit() else None,
        edd=tracking.get("edd"),
        activities=list(tracking.get("shipment_track_activities") or []),
    )


async def check_serviceability(
    shiprocket: ShiprocketClient | None,
    pincode: str,
    *,
    pickup_pincode: str = SHIPROCKET_PICKUP_PINCODE,
) -> Serviceability:
    if shiprocket is None or not shiprocket.configured:
        return Serviceability(serviceable=True)
    try:
        data = await shiprocket.serviceability(pickup_pincode, pincode)
    except KaapavError as exc:
        logger.warning("serviceability check failed: %s", exc)
        return Serviceability(serviceable=True)
    couriers = ((data.get("data") or {}).get("available_courier_companies")) or []
    return Serviceability(
        serviceable=bool(couriers),
        couriers=[
            {
                "id": courier.get("courier_company_id"),
                "name": courier.get("courier_name"),
                "rate": courier.get("rate"),
                "etd": courier.get("etd"),
            }
            for courier in couriers
        ],
    )


async def _notify(gateway: MessageGateway, order: Order) -> None:
    if order.status not in NOTIFY_STATUSES:
        return
    try:
        await gateway.send_shipping_update(
            order.phone, order.order_id, order.tracking_id or "", order.courier or "Courier", order.status
        )
    except KaapavError as exc:
        logger.warning("shipping update not sent: %s", exc, extra={"order_id": order.order_id})


async def sync_tracking(
    db: Session,
    shiprocket: ShiprocketClient | None,
    gateway: MessageGateway | None,
    order: Order,
    *,
    events: EventBus | None = None,
) -> bool:
    """Pull the courier status for ``order``. Returns True when the status moved."""
    if not order.tracking_id:
        return False
    tracking = await get_tracking(shiprocket, order.tracking_id)
    if tracking is None or tracking.status_id is None:
        return False
    new_status = SHIPROCKET_STATUS_MAP.get(tracking.status_id, order.status)
    if new_status == order.status or not can_transition(order.status, new_status):
        return False
    previous = order.status
    _set_status(order, new_status, now=utcnow())
    if tracking.tracking_url:
        order.tracking_url = tracking.tracking_url
    db.commit()
    logger.info("order %s status %s -> %s", order.order_id, previous, new_status, extra={"order_id": order.order_id})
    emit_order_status_changed(events, order, previous)
    if gateway is not None:
        await _notify(gateway, order)
    return True


async def cancel_shipment(db: Session, shiprocket: ShiprocketClient, order_id: str) -> Order:
    order = require_order(db, order_id)
    if not order.tracking_id:
        raise ConflictError("Order has no AWB to cancel", details={"order_id": order.order_id})
    await shiprocket.cancel_awbs([order.tracking_id])
    logger.info("shipment cancelled", extra={"order_id": order.order_id})
    return order
