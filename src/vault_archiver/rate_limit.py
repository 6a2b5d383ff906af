"""Sliding-window admission control keyed by requester identity."""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass
from typing import Callable, Protocol

from redis import Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

DEFAULT_QUOTA = 5
DEFAULT_WINDOW_S = 3600
KEY_PREFIX = "ratelimit"


@dataclass(frozen=True)
class Admission:
    allowed: bool
    remaining: int
    reset_at: float


class RateLimiter(Protocol):
    def admit(self, identity: str) -> Admission:
        """Count one job start for ``identity`` if the quota allows it."""


class MemoryRateLimiter:
    """Process-local sliding log guarded by a lock."""

    def __init__(
        self,
        *,
        quota: int = DEFAULT_QUOTA,
        window_s: int = DEFAULT_WINDOW_S,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.quota = quota
        self.window_s = window_s
        self._clock = clock
        self._lock = threading.Lock()
        self._hits: dict[str, deque[float]] = {}

    def admit(self, identity: str) -> Admission:
        now = self._clock()
        with self._lock:
            self._expire(now)
            hits = self._hits.setdefault(identity, deque())

            if len(hits) >= self.quota:
                return Admission(False, 0, hits[0] + self.window_s)

            hits.append(now)
            return Admission(True, self.quota - len(hits), hits[0] + self.window_s)

    @property
    def tracked_identities(self) -> int:
        with self._lock:
            return len(self._hits)

    def _expire(self, now: float) -> None:
        # Identities whose window has emptied are forgotten.
        for identity in list(self._hits):
            hits = self._hits[identity]
            while hits and hits[0] <= now - self.window_s:
                hits.popleft()
            if not hits:
                del self._hits[identity]


class RedisRateLimiter:
    """Sliding log stored in one sorted set per identity.

    Trim, insert and count run in a single MULTI/EXEC so concurrent callers
    never see each other's partial state. A request that lands over the quota
    removes its own entry again, so denials leave the window untouched.
    Fails open when Redis is unreachable.
    """

    def __init__(
        self,
        client: Redis,
        *,
        quota: int = DEFAULT_QUOTA,
        window_s: int = DEFAULT_WINDOW_S,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.client = client
        self.quota = quota
        self.window_s = window_s
        self._clock = clock

    def _key(self, identity: str) -> str:
        return f"{KEY_PREFIX}:{identity}"

    def admit(self, identity: str) -> Admission:
        now = self._clock()
        key = self._key(identity)
        member = f"{now:.6f}:{uuid.uuid4().hex}"

        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.zremrangebyscore(key, "-inf", now - self.window_s)
            pipe.zadd(key, {member: now})
            pipe.zcard(key)
            pipe.zrange(key, 0, 0, withscores=True)
            pipe.expire(key, self.window_s)
            _, _, count, oldest, _ = pipe.execute()
        except RedisError as exc:
            logger.warning("rate limit fail-open for %s: %s", identity, exc)
            return Admission(True, self.quota, now + self.window_s)

        oldest_at = float(oldest[0][1]) if oldest else now
        if count <= self.quota:
            return Admission(True, self.quota - count, oldest_at + self.window_s)

        try:
            self.client.zrem(key, member)
        except RedisError as exc:
            # The stray entry expires with the window.
            logger.warning("rate limit cleanup failed for %s: %s", identity, exc)
        return Admission(False, 0, oldest_at + self.window_s)
