import sqlalchemy as sa
from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text

from kaapav.core.database import Base
from kaapav.utils.clock import utcnow

BROADCAST_STATUSES = ("draft", "scheduled", "sending", "completed", "failed", "cancelled")
TARGET_TYPES = ("all", "segment", "labels", "custom")


class Broadcast(Base):
    __tablename__ = "broadcasts"

    id = Column(Integer, primary_key=True)
    broadcast_id = Column(String(40), unique=True, nullable=False, index=True)
    name = Column(String(120), nullable=False)
    description = Column(Text, nullable=False, default="")

    message = Column(Text, nullable=True)
    message_type = Column(String(20), nullable=False, default="text")
    template_name = Column(String(120), nullable=True)
    template_params = Column(sa.JSON(), nullable=True)
    media_url = Column(Text, nullable=True)
    buttons = Column(sa.JSON(), nullable=True)

    target_type = Column(String(20), nullable=False, default="all")
    target_labels = Column(sa.JSON(), nullable=True)
    target_segment = Column(String(20), nullable=True)
    target_phones = Column(sa.JSON(), nullable=True)

    send_rate = Column(Integer, nullable=False, default=20)  # messages per minute
    status = Column(String(20), nullable=False, default="draft", index=True)
    target_count = Column(Integer, nullable=False, default=0)
    sent_count = Column(Integer, nullable=False, default=0)
    failed_count = Column(Integer, nullable=False, default=0)

    scheduled_at = Column(DateTime, nullable=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class BroadcastRecipient(Base):
    __tablename__ = "broadcast_recipients"

    id = Column(Integer, primary_key=True)
    broadcast_id = Column(String(40), ForeignKey("broadcasts.broadcast_id"), nullable=False)
    phone = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False)  # sent / failed
    error_message = Column(Text, nullable=True)
    provider_message_id = Column(String(128), nullable=True)
    sent_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)


Index("ix_broadcast_recipients_broadcast", BroadcastRecipient.broadcast_id, BroadcastRecipient.status)
