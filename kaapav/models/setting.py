from sqlalchemy import Column, DateTime, String, Text

from kaapav.core.database import Base
from kaapav.utils.clock import utcnow


class Setting(Base):
    __tablename__ = "settings"

    key = Column(String(80), primary_key=True)
    value = Column(Text, nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
