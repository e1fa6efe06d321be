from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text

from kaapav.core.database import Base
from kaapav.utils.clock import utcnow

MATCH_TYPES = ("exact", "starts", "ends", "contains", "word", "regex")
RESPONSE_TYPES = ("text", "buttons", "image")


class QuickReply(Base):
    __tablename__ = "quick_replies"

    id = Column(Integer, primary_key=True)
    keyword = Column(String(120), nullable=False, index=True)
    match_type = Column(String(10), nullable=False, default="contains")
    response = Column(Text, nullable=False)
    response_type = Column(String(10), nullable=False, default="text")
    media_url = Column(Text, nullable=True)
    # optional buttons appended to the reply: [{"id": ..., "title": ...}]
    buttons_json = Column(Text, nullable=True)
    priority = Column(Integer, nullable=False, default=0)
    use_count = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    last_used_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
