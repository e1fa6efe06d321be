from __future__ import annotations

from datetime import date
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from kaapav.conversation.context import ConversationContext
from kaapav.core.errors import ConfigurationError
from kaapav.deps import get_context, get_current_agent, require_admin
from kaapav.models.order import Order
from kaapav.services.orders import (
    cancel_order,
    create_manual_order,
    list_orders,
    order_stats,
    require_order,
    transition_order,
    update_tracking,
)
from kaapav.services.payments import create_payment_link, create_refund
from kaapav.services.shipping import cancel_shipment, ship_order

router = APIRouter(prefix="/api/orders", tags=["orders"], dependencies=[Depends(get_current_agent)])


class OrderItemPayload(BaseModel):
    product_id: Optional[str] = None
    name: Optional[str] = None
    price: Optional[int] = Field(None, ge=0)
    quantity: int = Field(1, ge=1, le=99)


class ManualOrderPayload(BaseModel):
    phone: str
    customer_name: Optional[str] = None
    items: List[OrderItemPayload] = Field(..., min_length=1)
    shipping_address: Optional[str] = None
    shipping_pincode: Optional[str] = Field(None, pattern=r"^\d{6}$")
    discount_code: Optional[str] = None


class OrderUpdate(BaseModel):
    status: Optional[str] = None
    tracking_id: Optional[str] = None
    courier: Optional[str] = None
    tracking_url: Optional[str] = None
    estimated_delivery: Optional[date] = None
    reason: Optional[str] = None


class CancelPayload(BaseModel):
    reason: Optional[str] = None


class ShipPayload(BaseModel):
    courier_id: Optional[int] = None


class RefundPayload(BaseModel):
    amount: Optional[int] = Field(None, gt=0)
    reason: Optional[str] = None


def order_to_dict(order: Order) -> dict[str, Any]:
    return {
        "order_id": order.order_id,
        "phone": order.phone,
        "customer_name": order.customer_name,
        "items": list(order.items or []),
        "item_count": order.item_count,
        "subtotal": order.subtotal,
        "discount": order.discount,
        "discount_code": order.discount_code,
        "shipping_cost": order.shipping_cost,
        "total": order.total,
        "shipping_address": order.shipping_address,
        "shipping_pincode": order.shipping_pincode,
        "status": order.status,
        "payment_status": order.payment_status,
        "payment_link": order.payment_link,
        "payment_id": order.payment_id,
        "tracking_id": order.tracking_id,
        "courier": order.courier,
        "tracking_url": order.tracking_url,
        "estimated_delivery": order.estimated_delivery,
        "cancellation_reason": order.cancellation_reason,
        "source": order.source,
        "created_at": order.created_at,
        "paid_at": order.paid_at,
        "shipped_at": order.shipped_at,
        "delivered_at": order.delivered_at,
    }


@router.get("")
def get_orders(
    status: Optional[str] = None,
    payment_status: Optional[str] = None,
    phone: Optional[str] = None,
    search: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    ctx: ConversationContext = Depends(get_context),
):
    rows, total = list_orders(
        ctx.db,
        status=status,
        payment_status=payment_status,
        phone=phone,
        search=search,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
        offset=offset,
    )
    return {"orders": [order_to_dict(o) for o in rows], "total": total, "limit": limit, "offset": offset}


@router.get("/stats")
def get_order_stats(
    period: str = Query("today", pattern="^(today|week|month)$"),
    ctx: ConversationContext = Depends(get_context),
):
    return order_stats(ctx.db, period=period)


@router.get("/{order_id}")
def get_order(order_id: str, ctx: ConversationContext = Depends(get_context)):
    return order_to_dict(require_order(ctx.db, order_id))


@router.post("")
def post_order(payload: ManualOrderPayload, ctx: ConversationContext = Depends(get_context)):
    order = create_manual_order(ctx.db, payload.model_dump(), events=ctx.events)
    return order_to_dict(order)


@router.put("/{order_id}")
def put_order(order_id: str, payload: OrderUpdate, ctx: ConversationContext = Depends(get_context)):
    data = payload.model_dump(exclude_unset=True)
    tracking = {key: data[key] for key in ("tracking_id", "courier", "tracking_url", "estimated_delivery") if key in data}
    if data.get("status"):
        order = transition_order(
            ctx.db, order_id, data["status"], tracking=tracking, reason=data.get("reason"), events=ctx.events
        )
    else:
        order = update_tracking(ctx.db, order_id, tracking)
    return order_to_dict(order)


@router.post("/{order_id}/cancel")
async def post_cancel(order_id: str, payload: CancelPayload, ctx: ConversationContext = Depends(get_context)):
    order = require_order(ctx.db, order_id)
    if order.tracking_id and ctx.shiprocket is not None and ctx.shiprocket.configured:
        await cancel_shipment(ctx.db, ctx.shiprocket, order.order_id)
    return order_to_dict(cancel_order(ctx.db, order.order_id, payload.reason, events=ctx.events))


@router.post("/{order_id}/ship")
async def post_ship(order_id: str, payload: ShipPayload, ctx: ConversationContext = Depends(get_context)):
    if ctx.shiprocket is None or not ctx.shiprocket.configured:
        raise ConfigurationError("Shiprocket credentials are not configured")
    order = await ship_order(
        ctx.db, ctx.shiprocket, ctx.gateway, order_id, courier_id=payload.courier_id, events=ctx.events
    )
    return order_to_dict(order)


@router.post("/{order_id}/refund", dependencies=[Depends(require_admin)])
async def post_refund(order_id: str, payload: RefundPayload, ctx: ConversationContext = Depends(get_context)):
    order = await create_refund(
        ctx.db, ctx.razorpay, order_id, amount=payload.amount, reason=payload.reason, events=ctx.events
    )
    return order_to_dict(order)


@router.post("/{order_id}/payment-link")
async def post_payment_link(order_id: str, ctx: ConversationContext = Depends(get_context)):
    order = require_order(ctx.db, order_id)
    url = await create_payment_link(ctx.db, order, ctx.razorpay)
    return {"order_id": order.order_id, "payment_link": url}
