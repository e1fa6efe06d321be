from sqlalchemy import Column, DateTime, Integer, String

from kaapav.core.database import Base
from kaapav.utils.clock import utcnow


class Label(Base):
    __tablename__ = "labels"

    id = Column(Integer, primary_key=True)
    name = Column(String(60), unique=True, nullable=False)
    color = Column(String(20), nullable=False, default="#9CA3AF")
    description = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
