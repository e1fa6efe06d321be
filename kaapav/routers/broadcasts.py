from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from kaapav.core.database import get_db
from kaapav.core.errors import KaapavError
from kaapav.deps import get_current_agent, get_runtime, require_admin
from kaapav.models.broadcast import Broadcast
from kaapav.runtime import Runtime
from kaapav.services.broadcasts import (
    BroadcastExecutor,
    cancel_broadcast,
    create_broadcast,
    delete_broadcast,
    get_broadcast,
    list_broadcasts,
    preview_recipients,
    queue_broadcast,
    recipient_stats,
    update_broadcast,
)

router = APIRouter(prefix="/api/broadcasts", tags=["broadcasts"], dependencies=[Depends(get_current_agent)])
logger = logging.getLogger(__name__)


class BroadcastPayload(BaseModel):
    name: Optional[str] = Field(None, max_length=120)
    description: Optional[str] = None
    message: Optional[str] = Field(None, max_length=4096)
    message_type: Optional[str] = None
    template_name: Optional[str] = None
    template_params: Optional[List[Any]] = None
    media_url: Optional[str] = None
    buttons: Optional[List[dict]] = None
    target_type: Optional[str] = None
    target_labels: Optional[List[str]] = None
    target_segment: Optional[str] = None
    target_phones: Optional[List[str]] = None
    send_rate: Optional[int] = Field(None, gt=0, le=1000)
    scheduled_at: Optional[datetime] = None


class PreviewPayload(BaseModel):
    target_type: str = "all"
    target_segment: Optional[str] = None
    target_labels: Optional[List[str]] = None
    target_phones: Optional[List[str]] = None


def broadcast_to_dict(broadcast: Broadcast) -> dict[str, Any]:
    return {
        "broadcast_id": broadcast.broadcast_id,
        "name": broadcast.name,
        "description": broadcast.description,
        "message": broadcast.message,
        "message_type": broadcast.message_type,
        "template_name": broadcast.template_name,
        "media_url": broadcast.media_url,
        "target_type": broadcast.target_type,
        "target_labels": broadcast.target_labels,
        "target_segment": broadcast.target_segment,
        "send_rate": broadcast.send_rate,
        "status": broadcast.status,
        "target_count": broadcast.target_count,
        "sent_count": broadcast.sent_count,
        "failed_count": broadcast.failed_count,
        "scheduled_at": broadcast.scheduled_at,
        "started_at": broadcast.started_at,
        "completed_at": broadcast.completed_at,
        "created_at": broadcast.created_at,
    }


async def run_broadcast(runtime: Runtime, broadcast_id: str) -> None:
    db = runtime.session_factory()
    try:
        await BroadcastExecutor(db, runtime.gateway(db)).execute(broadcast_id)
    except KaapavError as exc:
        logger.warning("broadcast %s not sent: %s", broadcast_id, exc.message, extra={"broadcast_id": broadcast_id})
    finally:
        db.close()


@router.get("")
def get_broadcasts(
    status: Optional[str] = None,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    rows = list_broadcasts(db, status=status, limit=limit, offset=offset)
    return {"broadcasts": [broadcast_to_dict(b) for b in rows]}


@router.post("/preview")
def post_preview(payload: PreviewPayload, db: Session = Depends(get_db)):
    return preview_recipients(db, payload.model_dump())


@router.post("")
def post_broadcast(payload: BroadcastPayload, db: Session = Depends(get_db)):
    broadcast, estimated = create_broadcast(db, payload.model_dump(exclude_none=True))
    return {"broadcast": broadcast_to_dict(broadcast), "estimated_recipients": estimated}


@router.get("/{broadcast_id}")
def get_broadcast_detail(broadcast_id: str, db: Session = Depends(get_db)):
    broadcast = get_broadcast(db, broadcast_id)
    return {"broadcast": broadcast_to_dict(broadcast), "recipients": recipient_stats(db, broadcast_id)}


@router.put("/{broadcast_id}")
def put_broadcast(broadcast_id: str, payload: BroadcastPayload, db: Session = Depends(get_db)):
    return broadcast_to_dict(update_broadcast(db, broadcast_id, payload.model_dump(exclude_unset=True)))


@router.delete("/{broadcast_id}", dependencies=[Depends(require_admin)])
def remove_broadcast(broadcast_id: str, db: Session = Depends(get_db)):
    delete_broadcast(db, broadcast_id)
    return {"ok": True}


@router.post("/{broadcast_id}/send")
def send_broadcast(
    broadcast_id: str,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    runtime: Runtime = Depends(get_runtime),
):
    broadcast = queue_broadcast(db, broadcast_id)
    background_tasks.add_task(run_broadcast, runtime, broadcast.broadcast_id)
    return {"broadcast_id": broadcast.broadcast_id, "status": "queued"}


@router.post("/{broadcast_id}/cancel")
def post_cancel(broadcast_id: str, db: Session = Depends(get_db)):
    return broadcast_to_dict(cancel_broadcast(db, broadcast_id))
