from datetime import datetime, timedelta

from kaapav.conversation.state import STATE_TTL_SECONDS, ConversationStateStore
from kaapav.core.kv_store import InMemoryTTLStore, SqlTTLStore
from tests.fixtures_data import CUSTOMER_PHONE, build_session_factory


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


def _store():
    clock = FakeClock(datetime(2024, 3, 1, 10, 0, 0))
    db = build_session_factory()()
    return ConversationStateStore(db, clock=clock), clock


def test_state_ttl_is_two_hours():
    assert STATE_TTL_SECONDS == 7200


def test_state_is_readable_until_expiry():
    store, clock = _store()
    store.set(CUSTOMER_PHONE, "order", "address", {"address": "MG Road"})

    clock.advance(hours=1, minutes=59)
    state = store.get(CUSTOMER_PHONE)

    assert state is not None
    assert state.step == "address"
    assert state.data == {"address": "MG Road"}


def test_state_is_gone_at_two_hours():
    store, clock = _store()
    store.set(CUSTOMER_PHONE, "order", "address", {})

    clock.advance(hours=2)

    assert store.get(CUSTOMER_PHONE) is None


def test_writes_slide_the_expiry_and_merge_data():
    store, clock = _store()
    store.set(CUSTOMER_PHONE, "order", "address", {"address": "MG Road"})
    clock.advance(hours=1, minutes=30)
    store.set(CUSTOMER_PHONE, "order", "confirm", {"pincode": "560001"})

    clock.advance(hours=1, minutes=30)
    state = store.get(CUSTOMER_PHONE)

    assert state is not None
    assert state.step == "confirm"
    assert state.data == {"address": "MG Road", "pincode": "560001"}


def test_switching_flow_starts_with_fresh_data():
    store, _ = _store()
    store.set(CUSTOMER_PHONE, "order", "address", {"address": "MG Road"})
    store.set(CUSTOMER_PHONE, "support", "waiting", {"topic": "returns"})

    assert store.get(CUSTOMER_PHONE).data == {"topic": "returns"}


def test_clear_and_purge():
    store, clock = _store()
    store.set(CUSTOMER_PHONE, "order", "address", {})
    store.set("919000000001", "order", "product", {})
    store.clear(CUSTOMER_PHONE)

    assert store.get(CUSTOMER_PHONE) is None

    clock.advance(days=2)
    assert store.purge_expired(older_than=timedelta(days=1)) == 1


def test_in_memory_ttl_store_set_if_absent():
    clock = FakeClock(datetime(2024, 3, 1, 10, 0, 0))
    kv = InMemoryTTLStore(clock=clock)

    assert kv.set_if_absent("msg:1", True, ttl_seconds=300) is True
    assert kv.set_if_absent("msg:1", True, ttl_seconds=300) is False

    clock.advance(seconds=301)
    assert kv.set_if_absent("msg:1", True, ttl_seconds=300) is True


def test_sql_ttl_store_round_trip_and_expiry():
    clock = FakeClock(datetime(2024, 3, 1, 10, 0, 0))
    kv = SqlTTLStore(build_session_factory(), clock=clock)

    kv.set("ctx:1", {"cart": {"total": 300}}, ttl_seconds=60)
    assert kv.get("ctx:1") == {"cart": {"total": 300}}
    assert kv.set_if_absent("ctx:1", {}, ttl_seconds=60) is False

    clock.advance(seconds=61)
    assert kv.get("ctx:1") is None
    assert kv.purge_expired() == 1
