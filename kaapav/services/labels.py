from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session

from kaapav.core.errors import ConflictError, NotFoundError, ValidationError
from kaapav.models.chat import Chat
from kaapav.models.label import Label


def list_labels(db: Session) -> list[dict[str, Any]]:
    """Labels with the number of chats carrying each one."""
    usage: dict[str, int] = {}
    for (labels,) in db.query(Chat.labels).all():
        for name in labels or []:
            usage[name] = usage.get(name, 0) + 1
    return [
        {
            "id": label.id,
            "name": label.name,
            "color": label.color,
            "description": label.description,
            "chat_count": usage.get(label.name, 0),
        }
        for label in db.query(Label).order_by(Label.name).all()
    ]


def create_label(db: Session, data: dict[str, Any]) -> Label:
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("Label name is required")
    if db.query(Label).filter(Label.name == name).first() is not None:
        raise ConflictError("Label already exists", details={"name": name})
    label = Label(name=name, color=data.get("color") or "#9CA3AF", description=data.get("description"))
    db.add(label)
    db.commit()
    db.refresh(label)
    return label


def delete_label(db: Session, label_id: int) -> None:
    label = db.get(Label, label_id)
    if label is None:
        raise NotFoundError("Label not found", details={"id": label_id})
    for chat in db.query(Chat).all():
        if label.name in (chat.labels or []):
            chat.labels = [name for name in chat.labels if name != label.name]
    db.delete(label)
    db.commit()
