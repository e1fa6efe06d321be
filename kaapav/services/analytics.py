from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from kaapav.models.analytics_event import AnalyticsEvent
from kaapav.utils.clock import utcnow

logger = logging.getLogger(__name__)


def track_event(
    db: Session,
    event_type: str,
    event_name: str,
    *,
    phone: str | None = None,
    order_id: str | None = None,
    data: dict[str, Any] | None = None,
) -> None:
    """Append an analytics row. Never raises."""
    try:
        db.add(
            AnalyticsEvent(
                event_type=event_type,
                event_name=event_name,
                phone=phone,
                order_id=order_id,
                data=data or {},
            )
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning("analytics write failed: %s", exc, extra={"event": event_type})


def event_counts(db: Session, *, days: int = 7, event_type: str | None = None) -> list[dict[str, Any]]:
    since = utcnow() - timedelta(days=max(1, days))
    query = db.query(
        AnalyticsEvent.event_type,
        AnalyticsEvent.event_name,
        func.count(AnalyticsEvent.id),
    ).filter(AnalyticsEvent.created_at >= since)
    if event_type:
        query = query.filter(AnalyticsEvent.event_type == event_type)
    rows = (
        query.group_by(AnalyticsEvent.event_type, AnalyticsEvent.event_name)
        .order_by(func.count(AnalyticsEvent.id).desc())
        .all()
    )
    return [{"event_type": row[0], "event_name": row[1], "count": int(row[2])} for row in rows]


def daily_series(db: Session, *, event_type: str, days: int = 7) -> list[dict[str, Any]]:
    since = utcnow() - timedelta(days=max(1, days))
    day = func.date(AnalyticsEvent.created_at)
    rows = (
        db.query(day, func.count(AnalyticsEvent.id))
        .filter(AnalyticsEvent.created_at >= since, AnalyticsEvent.event_type == event_type)
        .group_by(day)
        .order_by(day)
        .all()
    )
    return [{"date": str(row[0]), "count": int(row[1])} for row in rows]


def recent_button_clicks(db: Session, phone: str, *, limit: int = 5) -> list[str]:
    rows = (
        db.query(AnalyticsEvent.event_name)
        .filter(AnalyticsEvent.event_type == "button_click", AnalyticsEvent.phone == phone)
        .order_by(AnalyticsEvent.created_at.desc(), AnalyticsEvent.id.desc())
        .limit(limit)
        .all()
    )
    return [row[0] for row in rows]


def next_actions(db: Session, after: str, *, limit: int = 3, sample: int = 500) -> list[str]:
    """Buttons most often clicked right after ``after`` in recent traffic."""
    rows = (
        db.query(AnalyticsEvent.event_name, AnalyticsEvent.data)
        .filter(AnalyticsEvent.event_type == "button_click")
        .order_by(AnalyticsEvent.id.desc())
        .limit(sample)
        .all()
    )
    counts: dict[str, int] = {}
    for name, data in rows:
        if (data or {}).get("previous") == after and name != after:
            counts[name] = counts.get(name, 0) + 1
    return [name for name, _ in sorted(counts.items(), key=lambda item: (-item[1], item[0]))][:limit]


def prune_events(db: Session, *, older_than_days: int = 90, now: datetime | None = None) -> int:
    cutoff = (now or utcnow()) - timedelta(days=older_than_days)
    deleted = db.query(AnalyticsEvent).filter(AnalyticsEvent.created_at < cutoff).delete(synchronize_session=False)
    db.commit()
    return int(deleted or 0)
