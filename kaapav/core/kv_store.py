from __future__ import annotations

import json
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from threading import Lock
from typing import Any, Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from kaapav.models.kv_entry import KVEntry
from kaapav.utils.clock import utcnow

Clock = Callable[[], datetime]


class TTLStore(ABC):
    """Shared key/value store with per-key expiry.

    Backs inbound dedupe, rate limiting and short-lived caches so that they
    keep working when the API runs in more than one process.
    """

    @abstractmethod
    def get(self, key: str) -> Any | None:
        """Value for ``key`` or None when missing or expired."""

    @abstractmethod
    def set(self, key: str, value: Any, *, ttl_seconds: int | None = None) -> None:
        """Store ``value`` (JSON serializable) replacing any previous one."""

    @abstractmethod
    def set_if_absent(self, key: str, value: Any, *, ttl_seconds: int | None = None) -> bool:
        """Store only when no live value exists. Returns True when stored."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove ``key`` if present."""

    @abstractmethod
    def purge_expired(self) -> int:
        """Drop expired entries and return how many were removed."""


class InMemoryTTLStore(TTLStore):
    def __init__(self, *, clock: Clock = utcnow) -> None:
        self._clock = clock
        self._data: dict[str, tuple[Any, datetime | None]] = {}
        self._lock = Lock()

    def _alive(self, expires_at: datetime | None) -> bool:
        return expires_at is None or expires_at > self._clock()

    def _expiry(self, ttl_seconds: int | None) -> datetime | None:
        if ttl_seconds is None:
            return None
        return self._clock() + timedelta(seconds=ttl_seconds)

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if not self._alive(expires_at):
                self._data.pop(key, None)
                return None
            return value

    def set(self, key: str, value: Any, *, ttl_seconds: int | None = None) -> None:
        with self._lock:
            self._data[key] = (value, self._expiry(ttl_seconds))

    def set_if_absent(self, key: str, value: Any, *, ttl_seconds: int | None = None) -> bool:
        with self._lock:
            entry = self._data.get(key)
            if entry is not None and self._alive(entry[1]):
                return False
            self._data[key] = (value, self._expiry(ttl_seconds))
            return True

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def purge_expired(self) -> int:
        with self._lock:
            dead = [key for key, (_, expires_at) in self._data.items() if not self._alive(expires_at)]
            for key in dead:
                self._data.pop(key, None)
            return len(dead)


class SqlTTLStore(TTLStore):
    """TTL store persisted in the ``kv_entries`` table.

    Every call uses its own short session so cache writes never interfere
    with the caller's unit of work.
    """

    def __init__(self, session_factory: Callable[[], Session], *, clock: Clock = utcnow) -> None:
        self._session_factory = session_factory
        self._clock = clock

    def _expiry(self, ttl_seconds: int | None) -> datetime | None:
        if ttl_seconds is None:
            return None
        return self._clock() + timedelta(seconds=ttl_seconds)

    def _is_live(self, row: KVEntry) -> bool:
        return row.expires_at is None or row.expires_at > self._clock()

    def get(self, key: str) -> Any | None:
        db = self._session_factory()
        try:
            row = db.get(KVEntry, key)
            if row is None or not self._is_live(row):
                return None
            return json.loads(row.value)
        finally:
            db.close()

    def set(self, key: str, value: Any, *, ttl_seconds: int | None = None) -> None:
        db = self._session_factory()
        try:
            row = db.get(KVEntry, key)
            if row is None:
                row = KVEntry(key=key)
                db.add(row)
            row.value = json.dumps(value, default=str)
            row.expires_at = self._expiry(ttl_seconds)
            db.commit()
        finally:
            db.close()

    def set_if_absent(self, key: str, value: Any, *, ttl_seconds: int | None = None) -> bool:
        db = self._session_factory()
        try:
            row = db.get(KVEntry, key)
            if row is not None:
                if self._is_live(row):
                    return False
                db.delete(row)
                db.flush()
            db.add(KVEntry(key=key, value=json.dumps(value, default=str), expires_at=self._expiry(ttl_seconds)))
            try:
                db.commit()
            except IntegrityError:
                # another worker stored the key first
                db.rollback()
                return False
            return True
        finally:
            db.close()

    def delete(self, key: str) -> None:
        db = self._session_factory()
        try:
            db.query(KVEntry).filter(KVEntry.key == key).delete(synchronize_session=False)
            db.commit()
        finally:
            db.close()

    def purge_expired(self) -> int:
        db = self._session_factory()
        try:
            removed = (
                db.query(KVEntry)
                .filter(KVEntry.expires_at.isnot(None), KVEntry.expires_at <= self._clock())
                .delete(synchronize_session=False)
            )
            db.commit()
            return int(removed or 0)
        finally:
            db.close()
