"""Short-lived storage for finished archives with one-time retrieval."""

from __future__ import annotations

import logging
import secrets
import threading
import time
from dataclasses import dataclass
from typing import Callable, Protocol

from redis import Redis
from redis.exceptions import RedisError

from .errors import NotFound, StorageUnavailable

logger = logging.getLogger(__name__)

DEFAULT_TTL_S = 600
KEY_PREFIX = "download"
ID_PREFIX = "dl_"


def new_download_id() -> str:
    return ID_PREFIX + secrets.token_urlsafe(32)


class ArtifactStore(Protocol):
    def put(self, data: bytes, ttl_s: int = DEFAULT_TTL_S) -> str:
        """Store ``data`` and return its one-time download id."""

    def take_once(self, download_id: str) -> bytes:
        """Return and delete the payload, or raise ``NotFound``."""


class MemoryArtifactStore:
    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[bytes, float]] = {}

    def put(self, data: bytes, ttl_s: int = DEFAULT_TTL_S) -> str:
        download_id = new_download_id()
        with self._lock:
            self._purge_expired()
            self._entries[download_id] = (bytes(data), self._clock() + ttl_s)
        return download_id

    def take_once(self, download_id: str) -> bytes:
        with self._lock:
            entry = self._entries.pop(download_id, None)
        if entry is None or entry[1] <= self._clock():
            raise NotFound("Download not found or expired")
        return entry[0]

    def _purge_expired(self) -> None:
        now = self._clock()
        for key in [k for k, (_, exp) in self._entries.items() if exp <= now]:
            del self._entries[key]


class RedisArtifactStore:
    """Artifacts under ``download:<id>`` with ``SET EX`` and ``GETDEL``.

    The client must be created with ``decode_responses=False``.
    """

    def __init__(self, client: Redis) -> None:
        self.client = client

    def _key(self, download_id: str) -> str:
        return f"{KEY_PREFIX}:{download_id}"

    def put(self, data: bytes, ttl_s: int = DEFAULT_TTL_S) -> str:
        download_id = new_download_id()
        try:
            self.client.set(self._key(download_id), data, ex=ttl_s)
        except RedisError as exc:
            logger.error("artifact store unavailable: %s", exc)
            raise StorageUnavailable("Archive storage is unavailable") from exc
        return download_id

    def take_once(self, download_id: str) -> bytes:
        try:
            data = self.client.getdel(self._key(download_id))
        except RedisError as exc:
            logger.error("artifact store unavailable: %s", exc)
            raise StorageUnavailable("Archive storage is unavailable") from exc
        if data is None:
            raise NotFound("Download not found or expired")
        return bytes(data)


@dataclass(frozen=True)
class Download:
    filename: str
    data: bytes

    @property
    def content_length(self) -> int:
        return len(self.data)

    def headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/zip",
            "Content-Disposition": f'attachment; filename="{self.filename}"',
            "Content-Length": str(self.content_length),
        }


def retrieve(store: ArtifactStore, download_id: str) -> Download:
    """Take the archive for ``download_id`` in its delivery shape."""

    if not download_id or not download_id.startswith(ID_PREFIX):
        raise NotFound("Download not found or expired")
    data = store.take_once(download_id)
    return Download(filename=f"vault-archive-{int(time.time())}.zip", data=data)
