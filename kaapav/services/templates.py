from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session

from kaapav.core.errors import ConflictError, NotFoundError, ValidationError
from kaapav.models.template import MessageTemplate

TEMPLATE_CATEGORIES = ("MARKETING", "UTILITY", "AUTHENTICATION")
EDITABLE_FIELDS = ("language", "category", "body", "components", "is_active")


def list_templates(db: Session, *, active_only: bool = False) -> list[MessageTemplate]:
    query = db.query(MessageTemplate)
    if active_only:
        query = query.filter(MessageTemplate.is_active.is_(True))
    return query.order_by(MessageTemplate.name).all()


def get_template(db: Session, template_id: int) -> MessageTemplate:
    template = db.get(MessageTemplate, template_id)
    if template is None:
        raise NotFoundError("Template not found", details={"id": template_id})
    return template


def _apply(template: MessageTemplate, data: dict[str, Any]) -> None:
    for key in EDITABLE_FIELDS:
        if data.get(key) is not None:
            setattr(template, key, data[key])
    if template.category not in TEMPLATE_CATEGORIES:
        raise ValidationError("Invalid template category", details={"category": template.category})


def create_template(db: Session, data: dict[str, Any]) -> MessageTemplate:
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("Template name is required")
    if db.query(MessageTemplate).filter(MessageTemplate.name == name).first() is not None:
        raise ConflictError("Template already exists", details={"name": name})
    template = MessageTemplate(name=name, language="en", category="MARKETING", body="", is_active=True)
    _apply(template, data)
    db.add(template)
    db.commit()
    db.refresh(template)
    return template


def update_template(db: Session, template_id: int, data: dict[str, Any]) -> MessageTemplate:
    template = get_template(db, template_id)
    _apply(template, data)
    db.commit()
    db.refresh(template)
    return template


def delete_template(db: Session, template_id: int) -> None:
    db.delete(get_template(db, template_id))
    db.commit()
