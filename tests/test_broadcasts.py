import asyncio

import pytest

from kaapav.core.errors import ConflictError, ValidationError
from kaapav.models.broadcast import BroadcastRecipient
from kaapav.models.chat import Chat
from kaapav.models.message import Message
from kaapav.models.customer import Customer
from kaapav.services.broadcasts import (
    BroadcastExecutor,
    batch_delay_seconds,
    cancel_broadcast,
    create_broadcast,
    get_broadcast,
    preview_recipients,
    queue_broadcast,
    resolve_recipients,
)
from kaapav.whatsapp.mock_provider import MockWhatsAppTransport
from tests.fixtures_data import build_runtime

PHONES = ["919800000001", "919800000002", "919800000003", "919800000004", "919800000005"]


class RecordingSleep:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


def _setup(failing_phones=()):
    runtime = build_runtime(transport=MockWhatsAppTransport(failing_phones=set(failing_phones)))
    db = runtime.session_factory()
    for index, phone in enumerate(PHONES):
        db.add(Customer(phone=phone, name=f"Customer {index}", segment="vip" if index < 2 else "regular"))
    db.add(Customer(phone="919800000010", name="Opted out", opted_in_marketing=False))
    db.add(Customer(phone="919800000011", name="Blocked", is_blocked=True))
    db.add(Customer(phone="919800000012", name="Deleted", is_deleted=True))
    db.commit()
    return runtime, db


def _broadcast(db, **overrides):
    data = {"name": "Diwali drop", "message": "New festive collection is live ✨"}
    data.update(overrides)
    broadcast, _ = create_broadcast(db, data)
    return broadcast


def test_audience_excludes_opted_out_blocked_and_deleted():
    _, db = _setup()

    assert resolve_recipients(db, "all") == PHONES
    assert resolve_recipients(db, "segment", target_segment="vip") == PHONES[:2]
    assert resolve_recipients(db, "segment") == []


def test_custom_targets_are_normalized_and_deduplicated():
    _, db = _setup()

    phones = resolve_recipients(db, "custom", target_phones=["98765 43210", "+91 98765-43210", "123"])

    assert phones == ["919876543210"]


def test_label_targets_use_chat_labels():
    _, db = _setup()
    db.add(Chat(phone=PHONES[3], customer_name="Customer 3", labels=["festive"]))
    db.commit()

    assert resolve_recipients(db, "labels", target_labels=["festive"]) == [PHONES[3]]
    assert resolve_recipients(db, "labels", target_labels=["missing"]) == []


def test_create_broadcast_sets_status_and_estimate():
    _, db = _setup()

    broadcast, estimated = create_broadcast(db, {"name": "Drop", "message": "Hi"})

    assert broadcast.status == "draft"
    assert broadcast.broadcast_id
    assert estimated == len(PHONES)


def test_create_broadcast_validates_input():
    _, db = _setup()

    with pytest.raises(ValidationError):
        create_broadcast(db, {"message": "Hi"})
    with pytest.raises(ValidationError):
        create_broadcast(db, {"name": "No message"})
    with pytest.raises(ValidationError):
        create_broadcast(db, {"name": "Bad", "message": "Hi", "target_type": "everyone"})


def test_preview_returns_count_and_samples():
    _, db = _setup()

    preview = preview_recipients(db, {"target_type": "segment", "target_segment": "vip"})

    assert preview["estimated_count"] == 2
    assert preview["samples"][0] == {"phone": PHONES[0], "name": "Customer 0"}


def test_executor_counts_sends_and_failures():
    runtime, db = _setup(failing_phones={PHONES[1]})
    broadcast = _broadcast(db)
    sleep = RecordingSleep()
    executor = BroadcastExecutor(db, runtime.gateway(db), batch_size=2, sleep=sleep)

    result = asyncio.run(executor.execute(broadcast.broadcast_id))

    assert result == {
        "broadcast_id": broadcast.broadcast_id,
        "status": "completed",
        "sent": 4,
        "failed": 1,
        "total": 5,
    }
    db.refresh(broadcast)
    assert (broadcast.target_count, broadcast.sent_count, broadcast.failed_count) == (5, 4, 1)
    assert broadcast.completed_at is not None
    # three batches, two pauses between them
    assert sleep.calls == [batch_delay_seconds(broadcast.send_rate, 2)] * 2
    failed = db.query(BroadcastRecipient).filter(BroadcastRecipient.status == "failed").one()
    assert failed.phone == PHONES[1]


def test_cancel_between_batches_stops_the_run():
    runtime, db = _setup()
    broadcast = _broadcast(db)

    async def cancel_during_pause(seconds):
        cancel_broadcast(db, broadcast.broadcast_id)

    executor = BroadcastExecutor(db, runtime.gateway(db), batch_size=2, sleep=cancel_during_pause)

    result = asyncio.run(executor.execute(broadcast.broadcast_id))

    assert result["status"] == "cancelled"
    assert (result["sent"], result["total"]) == (2, 5)
    assert [payload["to"] for payload in runtime.transport.sent] == PHONES[:2]
    db.refresh(broadcast)
    assert broadcast.status == "cancelled"
    assert broadcast.completed_at is None


def test_image_broadcasts_are_not_logged_as_auto_replies():
    runtime, db = _setup()
    broadcast = _broadcast(
        db,
        message_type="image",
        media_url="https://cdn.kaapav.com/diwali.jpg",
        target_type="segment",
        target_segment="vip",
    )

    asyncio.run(BroadcastExecutor(db, runtime.gateway(db), sleep=RecordingSleep()).execute(broadcast.broadcast_id))

    outgoing = db.query(Message).filter(Message.direction == "outgoing").all()
    assert [row.message_type for row in outgoing] == ["image", "image"]
    assert all(row.is_auto_reply is False for row in outgoing)


def test_executor_credits_only_delivered_customers():
    runtime, db = _setup(failing_phones={PHONES[0]})
    broadcast = _broadcast(db)

    asyncio.run(BroadcastExecutor(db, runtime.gateway(db), sleep=RecordingSleep()).execute(broadcast.broadcast_id))

    counts = {c.phone: c.campaign_count for c in db.query(Customer).filter(Customer.phone.in_(PHONES)).all()}
    assert counts[PHONES[0]] == 0
    assert all(counts[phone] == 1 for phone in PHONES[1:])
    assert db.query(Customer).filter(Customer.phone == "919800000010").one().campaign_count == 0


def test_executor_refuses_completed_broadcast():
    runtime, db = _setup()
    broadcast = _broadcast(db)
    executor = BroadcastExecutor(db, runtime.gateway(db), sleep=RecordingSleep())
    asyncio.run(executor.execute(broadcast.broadcast_id))

    with pytest.raises(ConflictError):
        asyncio.run(executor.execute(broadcast.broadcast_id))


def test_cancel_and_queue_status_rules():
    _, db = _setup()
    draft = _broadcast(db)

    with pytest.raises(ConflictError):
        cancel_broadcast(db, draft.broadcast_id)

    queued = queue_broadcast(db, draft.broadcast_id)
    assert queued.status == "scheduled"
    assert queued.scheduled_at is not None

    cancelled = cancel_broadcast(db, draft.broadcast_id)
    assert cancelled.status == "cancelled"
    with pytest.raises(ConflictError):
        queue_broadcast(db, draft.broadcast_id)
    assert get_broadcast(db, draft.broadcast_id).status == "cancelled"


def test_batch_delay_follows_send_rate():
    assert batch_delay_seconds(20, 20) == 60
    assert batch_delay_seconds(60, 20) == 20
    assert batch_delay_seconds(None, 20) == 60
