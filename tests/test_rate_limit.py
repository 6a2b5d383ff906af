from __future__ import annotations

import logging
import threading

import pytest

from conftest import BrokenRedis, FakeClock, FakeRedis
from vault_archiver.rate_limit import MemoryRateLimiter, RedisRateLimiter


@pytest.fixture(params=["memory", "redis"])
def limiter_factory(request):
    def build(clock: FakeClock, quota: int = 5, window_s: int = 3600):
        if request.param == "memory":
            return MemoryRateLimiter(quota=quota, window_s=window_s, clock=clock)
        return RedisRateLimiter(FakeRedis(clock), quota=quota, window_s=window_s, clock=clock)

    return build


def test_five_of_six_admitted(limiter_factory, clock):
    limiter = limiter_factory(clock)

    results = []
    for _ in range(6):
        results.append(limiter.admit("203.0.113.7"))
        clock.advance(1)

    assert [r.allowed for r in results] == [True] * 5 + [False]
    assert [r.remaining for r in results] == [4, 3, 2, 1, 0, 0]


def test_identities_are_independent(limiter_factory, clock):
    limiter = limiter_factory(clock, quota=1)

    assert limiter.admit("a").allowed
    assert limiter.admit("b").allowed
    assert not limiter.admit("a").allowed


def test_window_rolls_over(limiter_factory, clock):
    limiter = limiter_factory(clock)
    start = clock()
    for _ in range(5):
        limiter.admit("a")

    denied = limiter.admit("a")
    clock.advance(3600)
    again = limiter.admit("a")

    assert not denied.allowed
    assert denied.reset_at == pytest.approx(start + 3600)
    assert again.allowed


def test_denials_do_not_extend_the_window(limiter_factory, clock):
    limiter = limiter_factory(clock)
    for _ in range(5):
        limiter.admit("a")

    clock.advance(1800)
    assert not limiter.admit("a").allowed
    assert not limiter.admit("a").allowed
    clock.advance(1800)

    assert limiter.admit("a").allowed


def test_redis_denial_removes_its_own_entry(clock):
    redis = FakeRedis(clock)
    limiter = RedisRateLimiter(redis, quota=2, clock=clock)
    for _ in range(4):
        limiter.admit("a")

    assert redis.zcard("ratelimit:a") == 2


def test_redis_unavailable_fails_open(clock, caplog):
    limiter = RedisRateLimiter(BrokenRedis(), quota=5, clock=clock)  # type: ignore[arg-type]

    with caplog.at_level(logging.WARNING, logger="vault_archiver.rate_limit"):
        results = [limiter.admit("a") for _ in range(10)]

    assert all(r.allowed for r in results)
    assert "rate limit fail-open" in caplog.text


def test_concurrent_admissions_respect_quota():
    limiter = MemoryRateLimiter(quota=5, window_s=3600)
    results = []
    lock = threading.Lock()

    def worker():
        admission = limiter.admit("shared")
        with lock:
            results.append(admission.allowed)

    threads = [threading.Thread(target=worker) for _ in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count(True) == 5


def test_memory_limiter_forgets_identities_with_empty_windows(clock):
    limiter = MemoryRateLimiter(quota=5, window_s=3600, clock=clock)
    limiter.admit("a")
    limiter.admit("b")
    assert limiter.tracked_identities == 2

    clock.advance(3600)
    limiter.admit("c")

    assert limiter.tracked_identities == 1
