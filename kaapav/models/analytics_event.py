import sqlalchemy as sa
from sqlalchemy import Column, DateTime, Index, Integer, String

from kaapav.core.database import Base
from kaapav.utils.clock import utcnow


class AnalyticsEvent(Base):
    __tablename__ = "analytics_events"

    id = Column(Integer, primary_key=True)
    event_type = Column(String(40), nullable=False)
    event_name = Column(String(120), nullable=False)
    phone = Column(String(20), nullable=True, index=True)
    order_id = Column(String(20), nullable=True)
    data = Column(sa.JSON(), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)


Index("ix_analytics_events_type_name", AnalyticsEvent.event_type, AnalyticsEvent.event_name)
