from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from kaapav.conversation.context import ConversationContext
from kaapav.deps import get_context, get_current_agent
from kaapav.models.chat import Chat
from kaapav.models.message import Message
from kaapav.services.chats import list_chats, mark_chat_read, require_chat, update_chat
from kaapav.services.messages import message_history

router = APIRouter(prefix="/api", tags=["chats"], dependencies=[Depends(get_current_agent)])


class ChatUpdate(BaseModel):
    status: Optional[str] = None
    assigned_to: Optional[str] = None
    priority: Optional[str] = None
    labels: Optional[List[str]] = None
    needs_attention: Optional[bool] = None


class ButtonPayload(BaseModel):
    id: str = Field(..., min_length=1, max_length=256)
    title: str = Field(..., min_length=1, max_length=20)


class SendMessagePayload(BaseModel):
    phone: str
    text: str = Field(..., min_length=1, max_length=4096)
    buttons: Optional[List[ButtonPayload]] = None


class TemplateMessagePayload(BaseModel):
    phone: str
    template_name: str
    language: str = "en"
    components: Optional[List[dict]] = None


def chat_to_dict(chat: Chat) -> dict[str, Any]:
    return {
        "phone": chat.phone,
        "customer_name": chat.customer_name,
        "last_message": chat.last_message,
        "last_message_type": chat.last_message_type,
        "last_timestamp": chat.last_timestamp,
        "last_direction": chat.last_direction,
        "unread_count": chat.unread_count,
        "total_messages": chat.total_messages,
        "labels": list(chat.labels or []),
        "status": chat.status,
        "assigned_to": chat.assigned_to,
        "priority": chat.priority,
        "needs_attention": bool(chat.needs_attention),
    }


def message_to_dict(message: Message) -> dict[str, Any]:
    return {
        "id": message.id,
        "message_id": message.message_id,
        "phone": message.phone,
        "direction": message.direction,
        "message_type": message.message_type,
        "text": message.text,
        "status": message.status,
        "media_url": message.media_url,
        "button_id": message.button_id,
        "button_title": message.button_title,
        "is_auto_reply": bool(message.is_auto_reply),
        "ai_processed": bool(message.ai_processed),
        "created_at": message.created_at,
    }


@router.get("/chats")
def get_chats(
    status: Optional[str] = None,
    label: Optional[str] = None,
    search: Optional[str] = None,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    ctx: ConversationContext = Depends(get_context),
):
    rows, total = list_chats(ctx.db, status=status, label=label, search=search, limit=limit, offset=offset)
    return {"chats": [chat_to_dict(chat) for chat in rows], "total": total, "limit": limit, "offset": offset}


@router.get("/chats/{phone}")
def get_chat(phone: str, ctx: ConversationContext = Depends(get_context)):
    chat = require_chat(ctx.db, phone)
    messages = message_history(ctx.db, chat.phone, limit=50)
    return {"chat": chat_to_dict(chat), "messages": [message_to_dict(m) for m in messages]}


@router.put("/chats/{phone}")
def put_chat(phone: str, payload: ChatUpdate, ctx: ConversationContext = Depends(get_context)):
    chat = update_chat(ctx.db, phone, payload.model_dump(exclude_unset=True))
    return chat_to_dict(chat)


@router.post("/chats/{phone}/read")
def read_chat(phone: str, ctx: ConversationContext = Depends(get_context)):
    chat = mark_chat_read(ctx.db, phone)
    return {"ok": True, "unread_count": chat.unread_count}


@router.get("/messages/{phone}")
def get_messages(
    phone: str,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    before: Optional[datetime] = None,
    ctx: ConversationContext = Depends(get_context),
):
    rows = message_history(ctx.db, phone, limit=limit, offset=offset, before=before)
    return {"messages": [message_to_dict(m) for m in rows], "count": len(rows)}


@router.post("/messages/send")
async def send_message(payload: SendMessagePayload, ctx: ConversationContext = Depends(get_context)):
    if payload.buttons:
        if len(payload.buttons) > 3:
            raise HTTPException(status_code=400, detail="At most 3 buttons")
        result = await ctx.gateway.send_buttons(
            payload.phone, payload.text, [b.model_dump() for b in payload.buttons]
        )
    else:
        result = await ctx.gateway.send_text(payload.phone, payload.text, auto_reply=False)
    return {"status": result.status, "message_id": result.provider_message_id}


@router.post("/messages/template")
async def send_template(payload: TemplateMessagePayload, ctx: ConversationContext = Depends(get_context)):
    result = await ctx.gateway.send_template(
        payload.phone, payload.template_name, language=payload.language, components=payload.components
    )
    return {"status": result.status, "message_id": result.provider_message_id}
