import sqlalchemy as sa
from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text

from kaapav.core.database import Base
from kaapav.utils.clock import utcnow


class MessageTemplate(Base):
    __tablename__ = "templates"

    id = Column(Integer, primary_key=True)
    name = Column(String(120), unique=True, nullable=False)
    language = Column(String(10), nullable=False, default="en")
    category = Column(String(30), nullable=False, default="MARKETING")
    body = Column(Text, nullable=False, default="")
    components = Column(sa.JSON(), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
