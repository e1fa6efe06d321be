from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from kaapav.core.errors import ConflictError, NotFoundError, ValidationError
from kaapav.models.broadcast import TARGET_TYPES, Broadcast, BroadcastRecipient
from kaapav.models.chat import Chat
from kaapav.models.customer import Customer
from kaapav.utils.clock import utcnow
from kaapav.utils.phone import is_valid_indian_phone, normalize_phone
from kaapav.utils.text import generate_broadcast_id
from kaapav.whatsapp.gateway import MessageGateway

logger = logging.getLogger(__name__)

BATCH_SIZE = 20
DEFAULT_SEND_RATE = 20
MESSAGE_TYPES = ("text", "template", "image")
EDITABLE_FIELDS = (
    "name",
    "description",
    "message",
    "message_type",
    "template_name",
    "template_params",
    "media_url",
    "buttons",
    "target_type",
    "target_labels",
    "target_segment",
    "target_phones",
    "scheduled_at",
    "send_rate",
)

Sleep = Callable[[float], Awaitable[None]]


def _validate(data: dict[str, Any]) -> None:
    if not (data.get("name") or "").strip():
        raise ValidationError("Name is required")
    message_type = data.get("message_type") or "text"
    if message_type not in MESSAGE_TYPES:
        raise ValidationError("Unsupported message type", details={"message_type": message_type})
    if message_type == "text" and not data.get("message"):
        raise ValidationError("Message is required for text broadcasts")
    if message_type == "template" and not data.get("template_name"):
        raise ValidationError("Template name is required for template broadcasts")
    if message_type == "image" and not data.get("media_url"):
        raise ValidationError("Media URL is required for image broadcasts")
    target_type = data.get("target_type") or "all"
    if target_type not in TARGET_TYPES:
        raise ValidationError("Unsupported target type", details={"target_type": target_type})
    if int(data.get("send_rate") or DEFAULT_SEND_RATE) <= 0:
        raise ValidationError("send_rate must be positive")


def _audience(db: Session):
    return db.query(Customer).filter(
        Customer.opted_in_marketing.is_(True),
        Customer.is_blocked.is_(False),
        Customer.is_deleted.is_(False),
    )


def resolve_recipients(
    db: Session,
    target_type: str,
    *,
    target_segment: str | None = None,
    target_labels: list[str] | None = None,
    target_phones: list[str] | None = None,
) -> list[str]:
    """Phones a broadcast would reach, de-duplicated and in a stable order."""
    if target_type == "custom":
        seen: dict[str, None] = {}
        for raw in target_phones or []:
            phone = normalize_phone(raw)
            if is_valid_indian_phone(phone):
                seen.setdefault(phone, None)
        return list(seen)

    query = _audience(db)
    if target_type == "segment":
        if not target_segment:
            return []
        query = query.filter(Customer.segment == target_segment)
    elif target_type == "labels":
        wanted = set(target_labels or [])
        if not wanted:
            return []
        labelled = {chat.phone for chat in db.query(Chat).all() if wanted.intersection(chat.labels or [])}
        if not labelled:
            return []
        query = query.filter(Customer.phone.in_(labelled))
    elif target_type != "all":
        return []
    return [row[0] for row in query.with_entities(Customer.phone).order_by(Customer.id).distinct().all()]


def recipients_for(db: Session, broadcast: Broadcast) -> list[str]:
    return resolve_recipients(
        db,
        broadcast.target_type,
        target_segment=broadcast.target_segment,
        target_labels=broadcast.target_labels,
        target_phones=broadcast.target_phones,
    )


def preview_recipients(db: Session, data: dict[str, Any]) -> dict[str, Any]:
    phones = resolve_recipients(
        db,
        data.get("target_type") or "all",
        target_segment=data.get("target_segment"),
        target_labels=data.get("target_labels"),
        target_phones=data.get("target_phones"),
    )
    sample_phones = phones[:10]
    names = dict(db.query(Customer.phone, Customer.name).filter(Customer.phone.in_(sample_phones)).all()) if sample_phones else {}
    return {
        "estimated_count": len(phones),
        "samples": [{"phone": phone, "name": names.get(phone, "")} for phone in sample_phones],
    }


def get_broadcast(db: Session, broadcast_id: str) -> Broadcast:
    broadcast = db.query(Broadcast).filter(Broadcast.broadcast_id == broadcast_id).first()
    if broadcast is None:
        raise NotFoundError("Broadcast not found", details={"broadcast_id": broadcast_id})
    return broadcast


def create_broadcast(db: Session, data: dict[str, Any]) -> tuple[Broadcast, int]:
    _validate(data)
    broadcast = Broadcast(broadcast_id=generate_broadcast_id())
    for key in EDITABLE_FIELDS:
        if data.get(key) is not None:
            setattr(broadcast, key, data[key])
    broadcast.message_type = data.get("message_type") or "text"
    broadcast.target_type = data.get("target_type") or "all"
    broadcast.send_rate = int(data.get("send_rate") or DEFAULT_SEND_RATE)
    broadcast.status = "scheduled" if data.get("scheduled_at") else "draft"
    db.add(broadcast)
    db.commit()
    db.refresh(broadcast)
    estimated = len(recipients_for(db, broadcast))
    logger.info("broadcast created", extra={"broadcast_id": broadcast.broadcast_id})
    return broadcast, estimated


def list_broadcasts(db: Session, *, status: str | None = None, limit: int = 50, offset: int = 0) -> list[Broadcast]:
    query = db.query(Broadcast)
    if status:
        query = query.filter(Broadcast.status == status)
    return query.order_by(Broadcast.created_at.desc()).offset(max(0, offset)).limit(min(max(1, limit), 100)).all()


def recipient_stats(db: Session, broadcast_id: str) -> dict[str, int]:
    rows = dict(
        db.query(BroadcastRecipient.status, func.count(BroadcastRecipient.id))
        .filter(BroadcastRecipient.broadcast_id == broadcast_id)
        .group_by(BroadcastRecipient.status)
        .all()
    )
    return {
        "total": int(sum(rows.values())),
        "sent": int(rows.get("sent", 0)),
        "delivered": int(rows.get("delivered", 0)),
        "failed": int(rows.get("failed", 0)),
    }


def update_broadcast(db: Session, broadcast_id: str, changes: dict[str, Any]) -> Broadcast:
    broadcast = get_broadcast(db, broadcast_id)
    if broadcast.status not in ("draft", "scheduled"):
        raise ConflictError("Cannot update broadcast in current status", details={"status": broadcast.status})
    touched = {key: value for key, value in changes.items() if key in EDITABLE_FIELDS and value is not None}
    if not touched:
        raise ValidationError("No valid fields to update")
    merged = {key: getattr(broadcast, key) for key in EDITABLE_FIELDS}
    merged.update(touched)
    _validate(merged)
    for key, value in touched.items():
        setattr(broadcast, key, value)
    if touched.get("scheduled_at"):
        broadcast.status = "scheduled"
    db.commit()
    db.refresh(broadcast)
    return broadcast


def delete_broadcast(db: Session, broadcast_id: str) -> None:
    broadcast = get_broadcast(db, broadcast_id)
    if broadcast.status == "sending":
        raise ConflictError("Cannot delete broadcast while sending")
    db.query(BroadcastRecipient).filter(BroadcastRecipient.broadcast_id == broadcast_id).delete(synchronize_session=False)
    db.delete(broadcast)
    db.commit()


def queue_broadcast(db: Session, broadcast_id: str) -> Broadcast:
    """Make a draft or scheduled broadcast due immediately."""
    broadcast = get_broadcast(db, broadcast_id)
    if broadcast.status not in ("draft", "scheduled"):
        raise ConflictError(f"Cannot send broadcast in status: {broadcast.status}")
    broadcast.status = "scheduled"
    broadcast.scheduled_at = utcnow()
    db.commit()
    db.refresh(broadcast)
    return broadcast


def cancel_broadcast(db: Session, broadcast_id: str) -> Broadcast:
    broadcast = get_broadcast(db, broadcast_id)
    if broadcast.status not in ("scheduled", "sending"):
        raise ConflictError("Broadcast cannot be cancelled", details={"status": broadcast.status})
    broadcast.status = "cancelled"
    db.commit()
    db.refresh(broadcast)
    return broadcast


def due_broadcasts(db: Session, *, now: datetime | None = None, limit: int = 5) -> list[Broadcast]:
    now = now or utcnow()
    return (
        db.query(Broadcast)
        .filter(Broadcast.status == "scheduled", Broadcast.scheduled_at.isnot(None), Broadcast.scheduled_at <= now)
        .order_by(Broadcast.scheduled_at)
        .limit(limit)
        .all()
    )


def batch_delay_seconds(send_rate: int | None, batch_size: int = BATCH_SIZE) -> float:
    rate = int(send_rate or DEFAULT_SEND_RATE)
    return batch_size * 60 / max(1, rate)


async def _send_one(gateway: MessageGateway, phone: str, broadcast: Broadcast):
    if broadcast.message_type == "template":
        return await gateway.send_template(
            phone,
            broadcast.template_name,
            language="en",
            components=list(broadcast.template_params or []),
            auto_reply=False,
        )
    if broadcast.message_type == "image":
        return await gateway.send_image(phone, broadcast.media_url, broadcast.message, auto_reply=False)
    return await gateway.send_text(phone, broadcast.message or "", auto_reply=False)


class BroadcastExecutor:
    """Fans a broadcast out in sequential batches of concurrent sends.

    The status is re-read before every batch so a cancel takes effect at the
    next batch boundary. Counters are written after every batch.
    """

    def __init__(
        self,
        db: Session,
        gateway: MessageGateway,
        *,
        batch_size: int = BATCH_SIZE,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.db = db
        self.gateway = gateway
        self.batch_size = batch_size
        self._sleep = sleep

    async def execute(self, broadcast_id: str) -> dict[str, Any]:
        broadcast = get_broadcast(self.db, broadcast_id)
        if broadcast.status not in ("scheduled", "draft"):
            raise ConflictError(f"Invalid status: {broadcast.status}")

        broadcast.status = "sending"
        broadcast.started_at = utcnow()
        broadcast.sent_count = 0
        broadcast.failed_count = 0
        self.db.commit()

        try:
            recipients = recipients_for(self.db, broadcast)
        except SQLAlchemyError:
            logger.exception("recipient resolution failed", extra={"broadcast_id": broadcast_id})
            self.db.rollback()
            broadcast.status = "failed"
            self.db.commit()
            return {"broadcast_id": broadcast_id, "status": "failed", "sent": 0, "failed": 0, "total": 0}

        broadcast.target_count = len(recipients)
        self.db.commit()
        logger.info("sending to %s recipients", len(recipients), extra={"broadcast_id": broadcast_id})

        sent = failed = 0
        delivered_to: list[str] = []
        delay = batch_delay_seconds(broadcast.send_rate, self.batch_size)
        batches = [recipients[i : i + self.batch_size] for i in range(0, len(recipients), self.batch_size)]
        for index, batch in enumerate(batches):
            self.db.refresh(broadcast)
            if broadcast.status == "cancelled":
                logger.info("broadcast cancelled mid-run", extra={"broadcast_id": broadcast_id})
                break

            results = await asyncio.gather(
                *(_send_one(self.gateway, phone, broadcast) for phone in batch),
                return_exceptions=True,
            )
            now = utcnow()
            for phone, result in zip(batch, results):
                if isinstance(result, BaseException):
                    failed += 1
                    self.db.add(
                        BroadcastRecipient(
                            broadcast_id=broadcast_id,
                            phone=phone,
                            status="failed",
                            error_message=str(getattr(result, "message", None) or result)[:500],
                        )
                    )
                else:
                    sent += 1
                    delivered_to.append(phone)
                    self.db.add(
                        BroadcastRecipient(
                            broadcast_id=broadcast_id,
                            phone=phone,
                            status="sent",
                            provider_message_id=getattr(result, "provider_message_id", None),
                            sent_at=now,
                        )
                    )
            broadcast.sent_count = sent
            broadcast.failed_count = failed
            self.db.commit()

            if index < len(batches) - 1:
                await self._sleep(delay)

        if broadcast.status != "cancelled":
            broadcast.status = "completed"
            broadcast.completed_at = utcnow()
        self._credit_campaign(delivered_to)
        self.db.commit()
        logger.info(
            "broadcast finished: %s sent, %s failed",
            sent,
            failed,
            extra={"broadcast_id": broadcast_id},
        )
        return {
            "broadcast_id": broadcast_id,
            "status": broadcast.status,
            "sent": sent,
            "failed": failed,
            "total": len(recipients),
        }

    def _credit_campaign(self, phones: list[str]) -> None:
        if not phones:
            return
        now = utcnow()
        for customer in self.db.query(Customer).filter(Customer.phone.in_(phones)).all():
            customer.campaign_count = (customer.campaign_count or 0) + 1
            customer.last_campaign_at = now
