from __future__ import annotations

import fnmatch
from typing import Callable

import pytest
import requests
from requests.structures import CaseInsensitiveDict
from redis.exceptions import RedisError

from vault_archiver.artifacts import MemoryArtifactStore
from vault_archiver.config import Settings
from vault_archiver.http_client import HttpClient
from vault_archiver.moderation import MemoryModerationStore
from vault_archiver.pipeline import ArchivePipeline
from vault_archiver.rate_limit import MemoryRateLimiter

ORIGIN = "https://site.example"
ROOT = f"{ORIGIN}/vault-a"


class FakeClock:
    def __init__(self, value: float = 1_700_000_000.0) -> None:
        self.value = value
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)


class FakeResponse:
    def __init__(
        self,
        status_code: int = 200,
        body: str | bytes = b"",
        *,
        content_type: str | None = "text/html; charset=utf-8",
        url: str = "",
        headers: dict[str, str] | None = None,
    ) -> None:
        self.status_code = status_code
        self.content = body.encode("utf-8") if isinstance(body, str) else body
        self.url = url
        merged = dict(headers or {})
        if content_type is not None:
            merged.setdefault("Content-Type", content_type)
        self.headers = CaseInsensitiveDict(merged)


class FakeSession:
    """Stands in for ``requests.Session``; unknown URLs answer 404."""

    def __init__(self, routes: dict[str, object] | None = None) -> None:
        self.routes: dict[str, object] = dict(routes or {})
        self.calls: list[str] = []
        self.headers_seen: list[dict[str, str]] = []

    def get(self, url: str, *, timeout=None, headers=None) -> FakeResponse:
        self.calls.append(url)
        self.headers_seen.append(dict(headers or {}))
        route = self.routes.get(url)
        if route is None:
            for pattern, candidate in self.routes.items():
                if "*" in pattern and fnmatch.fnmatch(url, pattern):
                    route = candidate
                    break
        if route is None:
            return FakeResponse(404, b"not found", url=url)
        if isinstance(route, Exception):
            raise route
        if callable(route):
            route = route(url)
        if not route.url:
            route.url = url
        return route

    def page_calls(self) -> list[str]:
        return [u for u in self.calls if not u.endswith("/robots.txt")]


def html_page(title: str, body: str, links: tuple[str, ...] = ()) -> FakeResponse:
    anchors = "".join(f'<a href="{href}">{href}</a>' for href in links)
    return FakeResponse(
        200,
        f"<html><head><title>{title}</title></head>"
        f"<body><nav>{anchors}</nav>"
        f'<div class="markdown-preview-view">{body}</div></body></html>',
    )


class FakePipeline:
    def __init__(self, client: "FakeRedis") -> None:
        self.client = client
        self.calls: list[tuple[Callable, tuple, dict]] = []

    def __getattr__(self, name: str):
        method = getattr(self.client, name)

        def queue(*args, **kwargs):
            self.calls.append((method, args, kwargs))
            return self

        return queue

    def execute(self) -> list:
        results = [method(*args, **kwargs) for method, args, kwargs in self.calls]
        self.calls = []
        return results


class FakeRedis:
    """In-process subset of the redis-py client used by the stores."""

    def __init__(self, clock: FakeClock | None = None) -> None:
        self.clock = clock or FakeClock()
        self.data: dict[str, object] = {}
        self.expire_at: dict[str, float] = {}

    def _expire(self, key: str) -> None:
        at = self.expire_at.get(key)
        if at is not None and self.clock() >= at:
            self.data.pop(key, None)
            self.expire_at.pop(key, None)

    def _get(self, key: str, factory):
        self._expire(key)
        if key not in self.data:
            self.data[key] = factory()
        return self.data[key]

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        return FakePipeline(self)

    def expire(self, key: str, ttl: int) -> bool:
        self.expire_at[key] = self.clock() + ttl
        return key in self.data

    def exists(self, key: str) -> int:
        self._expire(key)
        return int(key in self.data)

    def set(self, key: str, value, ex: int | None = None) -> bool:
        self.data[key] = value
        self.expire_at.pop(key, None)
        if ex is not None:
            self.expire(key, ex)
        return True

    def get(self, key: str):
        self._expire(key)
        return self.data.get(key)

    def getdel(self, key: str):
        self._expire(key)
        self.expire_at.pop(key, None)
        return self.data.pop(key, None)

    def incr(self, key: str) -> int:
        value = int(self._get(key, int)) + 1
        self.data[key] = value
        return value

    def sadd(self, key: str, *members) -> int:
        s = self._get(key, set)
        before = len(s)
        s.update(members)
        return len(s) - before

    def srem(self, key: str, *members) -> int:
        s = self._get(key, set)
        before = len(s)
        s.difference_update(members)
        return before - len(s)

    def sismember(self, key: str, member) -> int:
        return int(member in self._get(key, set))

    def smembers(self, key: str) -> set:
        return set(self._get(key, set))

    def hset(self, key: str, field=None, value=None, mapping=None) -> int:
        h = self._get(key, dict)
        if field is not None:
            h[field] = value
        h.update(mapping or {})
        return 1

    def hget(self, key: str, field):
        return self._get(key, dict).get(field)

    def hdel(self, key: str, *fields) -> int:
        h = self._get(key, dict)
        return sum(1 for f in fields if h.pop(f, None) is not None)

    def hgetall(self, key: str) -> dict:
        return dict(self._get(key, dict))

    def hincrby(self, key: str, field, amount: int = 1) -> int:
        h = self._get(key, dict)
        h[field] = int(h.get(field, 0)) + amount
        return h[field]

    def zadd(self, key: str, mapping: dict) -> int:
        z = self._get(key, dict)
        added = sum(1 for m in mapping if m not in z)
        z.update(mapping)
        return added

    def zrem(self, key: str, *members) -> int:
        z = self._get(key, dict)
        return sum(1 for m in members if z.pop(m, None) is not None)

    def zcard(self, key: str) -> int:
        return len(self._get(key, dict))

    def zremrangebyscore(self, key: str, min_score, max_score) -> int:
        z = self._get(key, dict)
        lo = float(min_score)
        hi = float(max_score)
        doomed = [m for m, s in z.items() if lo <= s <= hi]
        for m in doomed:
            del z[m]
        return len(doomed)

    def zrange(self, key: str, start: int, end: int, withscores: bool = False) -> list:
        z = self._get(key, dict)
        ordered = sorted(z.items(), key=lambda kv: (kv[1], kv[0]))
        end = len(ordered) if end == -1 else end + 1
        window = ordered[start:end]
        if withscores:
            return [(m, float(s)) for m, s in window]
        return [m for m, _ in window]


class BrokenRedis:
    """Every command fails as if the server were down."""

    def __getattr__(self, name: str):
        def _raise(*args, **kwargs):
            raise RedisError("connection refused")

        return _raise


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_redis(clock: FakeClock) -> FakeRedis:
    return FakeRedis(clock)


@pytest.fixture
def settings() -> Settings:
    return Settings(allowed_hosts=("site.example",), max_pages=50)


def make_http(session: FakeSession, clock: FakeClock | None = None) -> HttpClient:
    return HttpClient(
        session,  # type: ignore[arg-type]
        user_agent="VaultArchiver/test",
        max_retries=0,
        sleeper=(clock or FakeClock()).sleep,
    )


def make_pipeline(
    session: FakeSession,
    settings: Settings,
    clock: FakeClock,
    **overrides,
) -> ArchivePipeline:
    parts = {
        "moderation": MemoryModerationStore(clock=clock),
        "rate_limiter": MemoryRateLimiter(
            quota=settings.rate_limit_quota,
            window_s=settings.rate_limit_window_s,
            clock=clock,
        ),
        "artifacts": MemoryArtifactStore(clock=clock),
    }
    parts.update(overrides)
    return ArchivePipeline(
        http=make_http(session, clock),
        settings=settings,
        sleeper=clock.sleep,
        **parts,
    )


@pytest.fixture
def requests_error() -> Exception:
    return requests.ConnectionError("connection reset")
