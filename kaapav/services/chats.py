from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import or_
from sqlalchemy.orm import Session

from kaapav.core.errors import NotFoundError, ValidationError
from kaapav.models.chat import CHAT_STATUSES, Chat
from kaapav.utils.clock import utcnow
from kaapav.utils.phone import normalize_phone

HUMAN_REQUESTED_LABEL = "human-requested"
PRIORITIES = ("low", "normal", "high", "urgent")


def upsert_inbound_chat(
    db: Session,
    phone: str,
    *,
    customer_name: str | None,
    text: str,
    message_type: str,
    now: datetime | None = None,
) -> Chat:
    now = now or utcnow()
    chat = db.query(Chat).filter(Chat.phone == phone).first()
    if chat is None:
        chat = Chat(phone=phone, status="open", labels=[], unread_count=0, total_messages=0)
        db.add(chat)
    elif chat.status == "resolved":
        chat.status = "open"
        chat.needs_attention = True
    if customer_name:
        chat.customer_name = customer_name
    chat.last_message = (text or "")[:500]
    chat.last_message_type = message_type
    chat.last_timestamp = now
    chat.last_direction = "incoming"
    chat.last_customer_message_at = now
    chat.unread_count = (chat.unread_count or 0) + 1
    chat.total_messages = (chat.total_messages or 0) + 1
    db.commit()
    return chat


def flag_for_attention(db: Session, phone: str, *, label: str = HUMAN_REQUESTED_LABEL, priority: str = "high") -> None:
    chat = db.query(Chat).filter(Chat.phone == phone).first()
    if chat is None:
        return
    chat.needs_attention = True
    chat.priority = priority
    labels = list(chat.labels or [])
    if label not in labels:
        labels.append(label)
    chat.labels = labels
    db.commit()


def list_chats(
    db: Session,
    *,
    status: str | None = None,
    label: str | None = None,
    search: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Chat], int]:
    query = db.query(Chat)
    if status:
        query = query.filter(Chat.status == status)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(or_(Chat.phone.like(like), Chat.customer_name.ilike(like), Chat.last_message.ilike(like)))
    rows = query.order_by(Chat.last_timestamp.desc()).all()
    if label:
        # JSON list column, filtered in Python
        rows = [chat for chat in rows if label in (chat.labels or [])]
    total = len(rows)
    limit = min(max(1, limit), 100)
    return rows[offset : offset + limit], total


def require_chat(db: Session, phone: str) -> Chat:
    chat = db.query(Chat).filter(Chat.phone == normalize_phone(phone)).first()
    if chat is None:
        raise NotFoundError("Chat not found", details={"phone": phone})
    return chat


def update_chat(db: Session, phone: str, changes: dict[str, Any]) -> Chat:
    chat = require_chat(db, phone)
    status = changes.get("status")
    if status is not None:
        if status not in CHAT_STATUSES:
            raise ValidationError("Invalid chat status", details={"status": status})
        chat.status = status
    priority = changes.get("priority")
    if priority is not None:
        if priority not in PRIORITIES:
            raise ValidationError("Invalid priority", details={"priority": priority})
        chat.priority = priority
    if "assigned_to" in changes:
        chat.assigned_to = changes["assigned_to"]
    if changes.get("labels") is not None:
        chat.labels = sorted({str(label).strip() for label in changes["labels"] if str(label).strip()})
    if changes.get("needs_attention") is not None:
        chat.needs_attention = bool(changes["needs_attention"])
    db.commit()
    db.refresh(chat)
    return chat


def mark_chat_read(db: Session, phone: str) -> Chat:
    chat = require_chat(db, phone)
    chat.unread_count = 0
    chat.last_read_at = utcnow()
    db.commit()
    return chat


def add_label(db: Session, phone: str, label: str) -> list[str]:
    chat = require_chat(db, phone)
    labels = list(chat.labels or [])
    if label not in labels:
        labels.append(label)
    chat.labels = labels
    db.commit()
    return labels


def remove_label(db: Session, phone: str, label: str) -> list[str]:
    chat = require_chat(db, phone)
    chat.labels = [item for item in (chat.labels or []) if item != label]
    db.commit()
    return list(chat.labels)
