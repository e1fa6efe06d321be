from __future__ import annotations

from datetime import datetime

from sqlalchemy.orm import Session

from kaapav.models.message import Message
from kaapav.utils.phone import normalize_phone

MAX_HISTORY = 500


def message_history(
    db: Session,
    phone: str,
    *,
    limit: int = 100,
    offset: int = 0,
    before: datetime | None = None,
) -> list[Message]:
    """Messages for ``phone``, oldest first within the requested page."""
    query = db.query(Message).filter(Message.phone == normalize_phone(phone))
    if before is not None:
        query = query.filter(Message.created_at < before)
    rows = (
        query.order_by(Message.created_at.desc(), Message.id.desc())
        .offset(max(0, offset))
        .limit(min(max(1, limit), MAX_HISTORY))
        .all()
    )
    return list(reversed(rows))
