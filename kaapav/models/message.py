from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String, Text

from kaapav.core.database import Base
from kaapav.utils.clock import utcnow


class Message(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True)
    message_id = Column(String(128), unique=True, nullable=True)
    phone = Column(String(20), nullable=False)
    direction = Column(String(10), nullable=False)  # incoming / outgoing
    message_type = Column(String(30), nullable=False, default="text")
    text = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default="received")
    status_timestamp = Column(String(20), nullable=True)
    error = Column(Text, nullable=True)

    media_id = Column(String(128), nullable=True)
    media_url = Column(Text, nullable=True)
    button_id = Column(String(256), nullable=True)
    button_title = Column(String(120), nullable=True)
    context_message_id = Column(String(128), nullable=True)
    payload_json = Column(Text, nullable=True)

    is_auto_reply = Column(Boolean, nullable=False, default=False)
    ai_processed = Column(Boolean, nullable=False, default=False)
    ai_intent = Column(String(40), nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


Index("ix_messages_phone_created", Message.phone, Message.created_at)
