from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from threading import Lock

from kaapav.core.kv_store import TTLStore

DEFAULT_LIMIT = 120
DEFAULT_WINDOW_SECONDS = 60


@dataclass
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after_seconds: int


class RateLimiterService(ABC):
    @abstractmethod
    def check(self, *, key: str, scope: str) -> RateLimitDecision:
        """Record one hit for ``key`` within ``scope`` and decide if it may proceed."""


class InMemoryRateLimiterService(RateLimiterService):
    """Sliding-window limiter kept in process memory.

    Only correct for a single long-lived process; use
    ``KeyValueRateLimiterService`` when workers are scaled out.
    """

    def __init__(self, *, limit: int = DEFAULT_LIMIT, window_seconds: int = DEFAULT_WINDOW_SECONDS) -> None:
        self.limit = limit
        self.window_seconds = window_seconds
        self._store: dict[tuple[str, str], deque[float]] = {}
        self._lock = Lock()

    def check(self, *, key: str, scope: str) -> RateLimitDecision:
        now = time.monotonic()
        bucket_key = (scope, key)

        with self._lock:
            bucket = self._store.setdefault(bucket_key, deque())
            cutoff = now - self.window_seconds
            while bucket and bucket[0] <= cutoff:
                bucket.popleft()

            if len(bucket) >= self.limit:
                retry_after = max(1, int(self.window_seconds - (now - bucket[0])))
                return RateLimitDecision(allowed=False, limit=self.limit, remaining=0, retry_after_seconds=retry_after)

            bucket.append(now)
            return RateLimitDecision(
                allowed=True,
                limit=self.limit,
                remaining=max(0, self.limit - len(bucket)),
                retry_after_seconds=0,
            )


class KeyValueRateLimiterService(RateLimiterService):
    """Sliding-window limiter whose hit log lives in a shared TTL store.

    The read-modify-write is not atomic, so two workers racing on the same
    key can each admit one extra hit.
    """

    def __init__(
        self,
        store: TTLStore,
        *,
        limit: int = DEFAULT_LIMIT,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
        clock=time.time,
    ) -> None:
        self.store = store
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock

    def check(self, *, key: str, scope: str) -> RateLimitDecision:
        now = self._clock()
        store_key = f"ratelimit:{scope}:{key}"
        cutoff = now - self.window_seconds
        hits = [hit for hit in (self.store.get(store_key) or []) if hit > cutoff]

        if len(hits) >= self.limit:
            retry_after = max(1, int(self.window_seconds - (now - hits[0])))
            return RateLimitDecision(allowed=False, limit=self.limit, remaining=0, retry_after_seconds=retry_after)

        hits.append(now)
        self.store.set(store_key, hits, ttl_seconds=self.window_seconds)
        return RateLimitDecision(
            allowed=True,
            limit=self.limit,
            remaining=max(0, self.limit - len(hits)),
            retry_after_seconds=0,
        )
