from sqlalchemy import Column, DateTime, Integer, String, Text

from kaapav.core.database import Base
from kaapav.utils.clock import utcnow


class ErrorLog(Base):
    __tablename__ = "error_logs"

    id = Column(Integer, primary_key=True)
    source = Column(String(60), nullable=False)
    endpoint = Column(String(255), nullable=True)
    phone = Column(String(20), nullable=True)
    error_message = Column(Text, nullable=False)
    stack = Column(Text, nullable=True)
    request_id = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
