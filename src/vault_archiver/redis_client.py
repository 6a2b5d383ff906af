from __future__ import annotations

from functools import lru_cache

from redis import Redis


@lru_cache(maxsize=4)
def get_redis(url: str, *, decode_responses: bool = True) -> Redis:
    """Return a cached Redis client for ``url``.

    Artifact payloads are binary, so the artifact store asks for a client
    with ``decode_responses=False``.
    """

    return Redis.from_url(url, decode_responses=decode_responses)


def reset_cache() -> None:
    """Drop cached clients (testing helper)."""

    get_redis.cache_clear()
