from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from kaapav.models.conversation_state import ConversationState
from kaapav.utils.clock import utcnow

logger = logging.getLogger(__name__)

STATE_TTL_SECONDS = 2 * 60 * 60


@dataclass
class FlowState:
    phone: str
    flow: str
    step: str
    data: dict[str, Any] = field(default_factory=dict)
    expires_at: datetime | None = None


def _to_state(row: ConversationState) -> FlowState:
    return FlowState(
        phone=row.phone,
        flow=row.current_flow,
        step=row.current_step,
        data=dict(row.flow_data or {}),
        expires_at=row.expires_at,
    )


class ConversationStateStore:
    """Per-phone flow record with a sliding two hour expiry.

    Storage errors are logged and swallowed; a lost write means the flow
    restarts on the next message.
    """

    def __init__(
        self,
        db: Session,
        *,
        ttl_seconds: int = STATE_TTL_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.db = db
        self.ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock

    def get(self, phone: str) -> FlowState | None:
        try:
            row = self.db.get(ConversationState, phone)
        except SQLAlchemyError as exc:
            logger.warning("state read failed: %s", exc, extra={"phone": phone})
            return None
        if row is None or row.expires_at <= self._clock():
            return None
        return _to_state(row)

    def set(self, phone: str, flow: str, step: str, data: dict[str, Any] | None = None) -> FlowState | None:
        now = self._clock()
        try:
            row = self.db.get(ConversationState, phone)
            if row is None:
                row = ConversationState(phone=phone, started_at=now, flow_data={})
                self.db.add(row)
            elif row.expires_at <= now or row.current_flow != flow:
                # expired or different flow: start over with fresh data
                row.flow_data = {}
                row.started_at = now
            merged = dict(row.flow_data or {})
            merged.update(data or {})
            row.current_flow = flow
            row.current_step = step
            row.flow_data = merged
            row.expires_at = now + self.ttl
            row.updated_at = now
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.warning("state write failed: %s", exc, extra={"phone": phone})
            return None
        return _to_state(row)

    def clear(self, phone: str) -> None:
        try:
            row = self.db.get(ConversationState, phone)
            if row is not None:
                self.db.delete(row)
                self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.warning("state clear failed: %s", exc, extra={"phone": phone})

    def purge_expired(self, *, older_than: timedelta = timedelta(days=1)) -> int:
        cutoff = self._clock() - older_than
        deleted = (
            self.db.query(ConversationState)
            .filter(ConversationState.expires_at < cutoff)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return int(deleted or 0)
