from sqlalchemy import Boolean, Column, DateTime, Float, Integer, String

from kaapav.core.database import Base
from kaapav.utils.clock import utcnow

SEGMENTS = ("new", "regular", "vip", "inactive")


class Customer(Base):
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True)
    phone = Column(String(20), unique=True, nullable=False, index=True)
    name = Column(String(120), nullable=False, default="")
    email = Column(String(160), nullable=True)
    language = Column(String(8), nullable=False, default="en")

    segment = Column(String(20), nullable=False, default="new", index=True)
    opted_in_marketing = Column(Boolean, nullable=False, default=True)
    is_blocked = Column(Boolean, nullable=False, default=False)
    is_deleted = Column(Boolean, nullable=False, default=False)
    is_valid_whatsapp = Column(Boolean, nullable=False, default=True)

    total_spent = Column(Integer, nullable=False, default=0)
    order_count = Column(Integer, nullable=False, default=0)
    message_count = Column(Integer, nullable=False, default=0)
    engagement_score = Column(Integer, nullable=False, default=0)
    campaign_count = Column(Integer, nullable=False, default=0)

    last_location_lat = Column(Float, nullable=True)
    last_location_lng = Column(Float, nullable=True)
    last_location_address = Column(String(500), nullable=True)

    first_seen = Column(DateTime, default=utcnow)
    last_seen = Column(DateTime, default=utcnow, index=True)
    first_purchase = Column(DateTime, nullable=True)
    last_purchase = Column(DateTime, nullable=True)
    last_campaign_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
