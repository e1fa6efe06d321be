import sqlalchemy as sa
from sqlalchemy import Column, DateTime, Integer, String

from kaapav.core.database import Base
from kaapav.utils.clock import utcnow

CART_STATUSES = ("active", "abandoned", "converted", "expired", "cleared")


class Cart(Base):
    __tablename__ = "carts"

    id = Column(Integer, primary_key=True)
    phone = Column(String(20), nullable=False, index=True)
    # [{product_id, name, price, quantity}]
    items = Column(sa.JSON(), nullable=False, default=list)
    total = Column(Integer, nullable=False, default=0)
    item_count = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default="active", index=True)
    reminder_count = Column(Integer, nullable=False, default=0)
    last_reminder_at = Column(DateTime, nullable=True)
    abandoned_at = Column(DateTime, nullable=True)
    converted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)
