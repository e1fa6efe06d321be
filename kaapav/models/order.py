import sqlalchemy as sa
from sqlalchemy import Boolean, Column, Date, DateTime, Integer, String, Text

from kaapav.core.database import Base
from kaapav.utils.clock import utcnow

ORDER_STATUSES = (
    "pending",
    "confirmed",
    "processing",
    "shipped",
    "in_transit",
    "out_for_delivery",
    "delivered",
    "cancelled",
    "returned",
)
PAYMENT_STATUSES = ("unpaid", "paid", "refunded", "partial_refund")


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True)
    order_id = Column(String(20), unique=True, nullable=False, index=True)
    phone = Column(String(20), nullable=False, index=True)
    customer_name = Column(String(120), nullable=False, default="")

    # snapshot of cart items at checkout
    items = Column(sa.JSON(), nullable=False, default=list)
    item_count = Column(Integer, nullable=False, default=0)
    subtotal = Column(Integer, nullable=False, default=0)
    discount = Column(Integer, nullable=False, default=0)
    discount_code = Column(String(30), nullable=True)
    shipping_cost = Column(Integer, nullable=False, default=0)
    total = Column(Integer, nullable=False, default=0)

    shipping_address = Column(Text, nullable=True)
    shipping_pincode = Column(String(6), nullable=True)

    status = Column(String(20), nullable=False, default="pending", index=True)
    payment_status = Column(String(20), nullable=False, default="unpaid", index=True)
    payment_link = Column(Text, nullable=True)
    payment_link_id = Column(String(64), nullable=True)
    payment_id = Column(String(64), nullable=True, index=True)
    payment_method = Column(String(30), nullable=True)
    idempotency_key = Column(String(64), unique=True, nullable=True)

    tracking_id = Column(String(64), nullable=True)
    courier = Column(String(60), nullable=True)
    tracking_url = Column(Text, nullable=True)
    shiprocket_order_id = Column(String(40), nullable=True)
    shipment_id = Column(String(40), nullable=True)
    estimated_delivery = Column(Date, nullable=True)

    cancellation_reason = Column(Text, nullable=True)
    last_reminder_at = Column(DateTime, nullable=True)
    delivery_reminder_sent = Column(Boolean, nullable=False, default=False)
    source = Column(String(20), nullable=False, default="whatsapp")

    paid_at = Column(DateTime, nullable=True)
    confirmed_at = Column(DateTime, nullable=True)
    shipped_at = Column(DateTime, nullable=True)
    delivered_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
