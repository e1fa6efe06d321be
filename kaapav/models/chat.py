import sqlalchemy as sa
from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text

from kaapav.core.database import Base
from kaapav.utils.clock import utcnow

CHAT_STATUSES = ("open", "pending", "resolved", "archived")


class Chat(Base):
    __tablename__ = "chats"

    id = Column(Integer, primary_key=True)
    phone = Column(String(20), unique=True, nullable=False, index=True)
    customer_name = Column(String(120), nullable=False, default="")

    last_message = Column(Text, nullable=True)
    last_message_type = Column(String(30), nullable=True)
    last_timestamp = Column(DateTime, nullable=True, index=True)
    last_direction = Column(String(10), nullable=True)
    last_customer_message_at = Column(DateTime, nullable=True)
    last_read_at = Column(DateTime, nullable=True)

    unread_count = Column(Integer, nullable=False, default=0)
    total_messages = Column(Integer, nullable=False, default=0)
    labels = Column(sa.JSON(), nullable=False, default=list)

    status = Column(String(20), nullable=False, default="open", index=True)
    assigned_to = Column(String(120), nullable=True)
    priority = Column(String(10), nullable=False, default="normal")
    needs_attention = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
