from __future__ import annotations

from typing import Any, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from kaapav.core.database import get_db
from kaapav.deps import get_current_agent
from kaapav.models.quick_reply import QuickReply
from kaapav.services.quick_replies import (
    create_quick_reply,
    delete_quick_reply,
    list_quick_replies,
    reply_buttons,
    update_quick_reply,
)

router = APIRouter(prefix="/api/quick-replies", tags=["quick-replies"], dependencies=[Depends(get_current_agent)])


class QuickReplyButton(BaseModel):
    id: str = Field(..., min_length=1, max_length=256)
    title: str = Field(..., min_length=1, max_length=20)


class QuickReplyPayload(BaseModel):
    keyword: Optional[str] = Field(None, max_length=120)
    match_type: Optional[str] = None
    response: Optional[str] = None
    response_type: Optional[str] = None
    media_url: Optional[str] = None
    buttons: Optional[List[QuickReplyButton]] = Field(None, max_length=3)
    priority: Optional[int] = None
    is_active: Optional[bool] = None


def quick_reply_to_dict(reply: QuickReply) -> dict[str, Any]:
    return {
        "id": reply.id,
        "keyword": reply.keyword,
        "match_type": reply.match_type,
        "response": reply.response,
        "response_type": reply.response_type,
        "media_url": reply.media_url,
        "buttons": reply_buttons(reply),
        "priority": reply.priority,
        "use_count": reply.use_count,
        "is_active": bool(reply.is_active),
        "last_used_at": reply.last_used_at,
    }


@router.get("")
def get_quick_replies(db: Session = Depends(get_db)):
    return {"quick_replies": [quick_reply_to_dict(r) for r in list_quick_replies(db)]}


@router.post("")
def post_quick_reply(payload: QuickReplyPayload, db: Session = Depends(get_db)):
    return quick_reply_to_dict(create_quick_reply(db, payload.model_dump(exclude_none=True)))


@router.put("/{reply_id}")
def put_quick_reply(reply_id: int, payload: QuickReplyPayload, db: Session = Depends(get_db)):
    return quick_reply_to_dict(update_quick_reply(db, reply_id, payload.model_dump(exclude_unset=True)))


@router.delete("/{reply_id}")
def remove_quick_reply(reply_id: int, db: Session = Depends(get_db)):
    delete_quick_reply(db, reply_id)
    return {"ok": True}
