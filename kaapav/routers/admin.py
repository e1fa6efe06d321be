from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from kaapav.core.database import get_db
from kaapav.deps import get_current_agent, require_admin
from kaapav.models.template import MessageTemplate
from kaapav.routers.auth import agent_to_dict
from kaapav.services import labels as label_service
from kaapav.services import templates as template_service
from kaapav.services.analytics import daily_series, event_counts
from kaapav.services.auth import create_agent, list_agents, update_agent
from kaapav.services.dashboard import dashboard_stats
from kaapav.services.settings import get_settings, update_settings

router = APIRouter(prefix="/api", tags=["admin"], dependencies=[Depends(get_current_agent)])


class LabelCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=60)
    color: Optional[str] = Field(None, max_length=20)
    description: Optional[str] = Field(None, max_length=255)


class TemplatePayload(BaseModel):
    name: Optional[str] = Field(None, max_length=120)
    language: Optional[str] = None
    category: Optional[str] = None
    body: Optional[str] = None
    components: Optional[List[dict]] = None
    is_active: Optional[bool] = None


class AgentCreate(BaseModel):
    email: str = Field(..., min_length=3)
    name: str = ""
    password: str = Field(..., min_length=6)
    role: str = "agent"


class AgentUpdate(BaseModel):
    name: Optional[str] = None
    role: Optional[str] = None
    active: Optional[bool] = None
    password: Optional[str] = Field(None, min_length=6)


def template_to_dict(template: MessageTemplate) -> dict[str, Any]:
    return {
        "id": template.id,
        "name": template.name,
        "language": template.language,
        "category": template.category,
        "body": template.body,
        "components": template.components,
        "is_active": bool(template.is_active),
    }


@router.get("/stats")
def get_stats(db: Session = Depends(get_db)):
    return dashboard_stats(db)


@router.get("/analytics")
def get_analytics(
    days: int = Query(7, ge=1, le=90),
    event_type: Optional[str] = None,
    db: Session = Depends(get_db),
):
    payload: dict[str, Any] = {"days": days, "events": event_counts(db, days=days, event_type=event_type)}
    if event_type:
        payload["series"] = daily_series(db, event_type=event_type, days=days)
    return payload


@router.get("/settings")
def read_settings(db: Session = Depends(get_db)):
    return get_settings(db)


@router.put("/settings", dependencies=[Depends(require_admin)])
def write_settings(payload: Dict[str, Any], db: Session = Depends(get_db)):
    return update_settings(db, payload)


@router.get("/labels")
def get_labels(db: Session = Depends(get_db)):
    return {"labels": label_service.list_labels(db)}


@router.post("/labels")
def post_label(payload: LabelCreate, db: Session = Depends(get_db)):
    label = label_service.create_label(db, payload.model_dump())
    return {"id": label.id, "name": label.name, "color": label.color, "description": label.description}


@router.delete("/labels/{label_id}")
def delete_label(label_id: int, db: Session = Depends(get_db)):
    label_service.delete_label(db, label_id)
    return {"ok": True}


@router.get("/templates")
def get_templates(active_only: bool = False, db: Session = Depends(get_db)):
    return {"templates": [template_to_dict(t) for t in template_service.list_templates(db, active_only=active_only)]}


@router.post("/templates")
def post_template(payload: TemplatePayload, db: Session = Depends(get_db)):
    return template_to_dict(template_service.create_template(db, payload.model_dump(exclude_none=True)))


@router.get("/templates/{template_id}")
def get_template(template_id: int, db: Session = Depends(get_db)):
    return template_to_dict(template_service.get_template(db, template_id))


@router.put("/templates/{template_id}")
def put_template(template_id: int, payload: TemplatePayload, db: Session = Depends(get_db)):
    return template_to_dict(template_service.update_template(db, template_id, payload.model_dump(exclude_unset=True)))


@router.delete("/templates/{template_id}")
def delete_template(template_id: int, db: Session = Depends(get_db)):
    template_service.delete_template(db, template_id)
    return {"ok": True}


@router.get("/agents", dependencies=[Depends(require_admin)])
def get_agents(db: Session = Depends(get_db)):
    return {"agents": [agent_to_dict(a) for a in list_agents(db)]}


@router.post("/agents", dependencies=[Depends(require_admin)])
def post_agent(payload: AgentCreate, db: Session = Depends(get_db)):
    agent = create_agent(db, email=payload.email, name=payload.name, password=payload.password, role=payload.role)
    return agent_to_dict(agent)


@router.put("/agents/{agent_id}", dependencies=[Depends(require_admin)])
def put_agent(agent_id: int, payload: AgentUpdate, db: Session = Depends(get_db)):
    return agent_to_dict(update_agent(db, agent_id, payload.model_dump(exclude_unset=True)))
