from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

import requests
from requests import exceptions as req_exc

from .errors import FetchFailure
from .urls import normalize_url

logger = logging.getLogger(__name__)

TRANSIENT_HTTP_STATUSES = {429, 500, 502, 503, 504}

PAGE_ACCEPT = "text/html,application/xhtml+xml,text/plain"


def _retry_after_seconds(headers: dict[str, str]) -> float | None:
    retry_after = headers.get("Retry-After")
    if not retry_after:
        return None
    try:
        return float(retry_after)
    except ValueError:
        return None


@dataclass(frozen=True)
class FetchResult:
    url: str
    final_url: str
    status_code: int
    headers: dict[str, str]
    fetched_at: float
    body: bytes

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def content_type(self) -> str | None:
        for key, value in self.headers.items():
            if key.lower() == "content-type":
                return value
        return None

    @property
    def charset(self) -> str | None:
        ct = self.content_type or ""
        for param in ct.split(";")[1:]:
            key, _, value = param.partition("=")
            if key.strip().lower() == "charset" and value.strip():
                return value.strip().strip("\"'")
        return None

    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


class HttpClient:
    def __init__(
        self,
        session: requests.Session,
        *,
        user_agent: str,
        timeout_s: float = 10.0,
        max_retries: int = 2,
        backoff_base_s: float = 1.0,
        max_retry_wait_s: float = 10.0,
        sleeper: Callable[[float], None] = time.sleep,
    ) -> None:
        self._session = session
        self._user_agent = user_agent
        self._timeout_s = timeout_s
        self._max_retries = max_retries
        self._backoff_base_s = backoff_base_s
        self._max_retry_wait_s = max_retry_wait_s
        self._sleep = sleeper

    def get(
        self,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        timeout_s: float | None = None,
        retries: int | None = None,
    ) -> FetchResult:
        """GET ``url``, retrying transient statuses and network errors.

        Non-transient error statuses are returned to the caller; only an
        exhausted retry budget raises ``FetchFailure``. A ``Retry-After``
        longer than ``max_retry_wait_s`` ends the retries and the transient
        response is returned as is.
        """

        normalized = normalize_url(url)
        merged = {"User-Agent": self._user_agent}
        merged.update(headers or {})
        timeout = timeout_s if timeout_s is not None else self._timeout_s
        max_retries = retries if retries is not None else self._max_retries
        last_error: Exception | None = None

        for attempt in range(max_retries + 1):
            try:
                resp = self._session.get(normalized, timeout=timeout, headers=merged)

                if resp.status_code in TRANSIENT_HTTP_STATUSES and attempt < max_retries:
                    retry_after = _retry_after_seconds(dict(resp.headers))
                    wait_s = (
                        retry_after
                        if retry_after is not None
                        else self._backoff_base_s * (2**attempt)
                    )
                    if wait_s <= self._max_retry_wait_s:
                        logger.debug(
                            "retrying %s after status %s in %.1fs",
                            normalized,
                            resp.status_code,
                            wait_s,
                        )
                        self._sleep(wait_s)
                        continue
                    logger.info(
                        "not retrying %s: server asked to wait %.0fs",
                        normalized,
                        wait_s,
                    )

                return FetchResult(
                    url=normalized,
                    final_url=str(resp.url or normalized),
                    status_code=int(resp.status_code),
                    headers={k: str(v) for k, v in resp.headers.items()},
                    fetched_at=time.time(),
                    body=resp.content,
                )
            except req_exc.RequestException as e:
                last_error = e
                if attempt >= max_retries:
                    break
                self._sleep(min(self._backoff_base_s * (2**attempt), self._max_retry_wait_s))

        raise FetchFailure(f"Failed to fetch {normalized}: {last_error}", url=normalized)
