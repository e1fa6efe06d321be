import sqlalchemy as sa
from sqlalchemy import Column, DateTime, String

from kaapav.core.database import Base
from kaapav.utils.clock import utcnow


class ConversationState(Base):
    __tablename__ = "conversation_state"

    # one row per phone, so there is never more than one active flow
    phone = Column(String(20), primary_key=True)
    current_flow = Column(String(40), nullable=False)
    current_step = Column(String(40), nullable=False)
    flow_data = Column(sa.JSON(), nullable=False, default=dict)
    expires_at = Column(DateTime, nullable=False, index=True)
    started_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)
