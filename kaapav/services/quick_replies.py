from __future__ import annotations

import json
import logging
import re
from typing import Any

from sqlalchemy.orm import Session

from kaapav.core.errors import NotFoundError, ValidationError
from kaapav.models.quick_reply import MATCH_TYPES, RESPONSE_TYPES, QuickReply
from kaapav.utils.clock import utcnow

logger = logging.getLogger(__name__)

MATCH_ALIASES = {"startswith": "starts", "endswith": "ends"}
EDITABLE_FIELDS = ("keyword", "match_type", "response", "response_type", "media_url", "priority", "is_active")


def matches(reply: QuickReply, text: str) -> bool:
    keyword = (reply.keyword or "").strip().lower()
    candidate = (text or "").strip().lower()
    if not keyword or not candidate:
        return False
    match_type = MATCH_ALIASES.get(reply.match_type, reply.match_type)
    if match_type == "exact":
        return candidate == keyword
    if match_type == "starts":
        return candidate.startswith(keyword)
    if match_type == "ends":
        return candidate.endswith(keyword)
    if match_type == "word":
        return re.search(rf"\b{re.escape(keyword)}\b", candidate) is not None
    if match_type == "regex":
        try:
            return re.search(keyword, candidate, re.IGNORECASE) is not None
        except re.error:
            logger.warning("invalid quick reply regex id=%s", reply.id)
            return False
    return keyword in candidate


def find_quick_reply(db: Session, text: str) -> QuickReply | None:
    """First active reply matching ``text``, highest priority then most used."""
    replies = (
        db.query(QuickReply)
        .filter(QuickReply.is_active.is_(True))
        .order_by(QuickReply.priority.desc(), QuickReply.use_count.desc(), QuickReply.id)
        .all()
    )
    for reply in replies:
        if matches(reply, text):
            return reply
    return None


def record_use(db: Session, reply: QuickReply) -> None:
    reply.use_count = (reply.use_count or 0) + 1
    reply.last_used_at = utcnow()
    db.commit()


def reply_buttons(reply: QuickReply) -> list[dict[str, str]]:
    if not reply.buttons_json:
        return []
    try:
        buttons = json.loads(reply.buttons_json)
    except ValueError:
        return []
    return [b for b in buttons if isinstance(b, dict) and b.get("id") and b.get("title")][:3]


def list_quick_replies(db: Session) -> list[QuickReply]:
    return db.query(QuickReply).order_by(QuickReply.priority.desc(), QuickReply.use_count.desc()).all()


def _apply(reply: QuickReply, data: dict[str, Any]) -> None:
    for key in EDITABLE_FIELDS:
        if data.get(key) is None:
            continue
        value = data[key]
        if key == "keyword":
            value = str(value).strip().lower()
        if key == "match_type":
            value = MATCH_ALIASES.get(value, value)
            if value not in MATCH_TYPES:
                raise ValidationError("Invalid match type", details={"match_type": value})
        if key == "response_type" and value not in RESPONSE_TYPES:
            raise ValidationError("Invalid response type", details={"response_type": value})
        setattr(reply, key, value)
    if data.get("buttons") is not None:
        reply.buttons_json = json.dumps(data["buttons"], ensure_ascii=False)


def create_quick_reply(db: Session, data: dict[str, Any]) -> QuickReply:
    if not (data.get("keyword") or "").strip() or not (data.get("response") or "").strip():
        raise ValidationError("keyword and response are required")
    reply = QuickReply(match_type="contains", priority=0, use_count=0, is_active=True)
    _apply(reply, data)
    if reply.match_type == "regex":
        try:
            re.compile(reply.keyword)
        except re.error:
            raise ValidationError("Invalid regular expression", details={"keyword": reply.keyword})
    db.add(reply)
    db.commit()
    db.refresh(reply)
    return reply


def update_quick_reply(db: Session, reply_id: int, data: dict[str, Any]) -> QuickReply:
    reply = db.get(QuickReply, reply_id)
    if reply is None:
        raise NotFoundError("Quick reply not found", details={"id": reply_id})
    _apply(reply, data)
    db.commit()
    db.refresh(reply)
    return reply


def delete_quick_reply(db: Session, reply_id: int) -> None:
    reply = db.get(QuickReply, reply_id)
    if reply is None:
        raise NotFoundError("Quick reply not found", details={"id": reply_id})
    db.delete(reply)
    db.commit()
