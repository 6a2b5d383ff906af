from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from urllib.parse import urlparse

from .errors import FetchFailure
from .http_client import HttpClient

logger = logging.getLogger(__name__)

DEFAULT_CRAWL_DELAY_MS = 1000
MIN_CRAWL_DELAY_MS = 500


@dataclass(frozen=True)
class PolicyDecision:
    allowed: bool = True
    crawl_delay_ms: int = DEFAULT_CRAWL_DELAY_MS
    allow_prefixes: tuple[str, ...] = field(default=())
    disallow_prefixes: tuple[str, ...] = field(default=())

    def can_fetch(self, url: str) -> bool:
        """Prefix-match ``url`` against the applicable group's rules.

        The longest matching prefix decides; Allow wins a tie.
        """

        if not self.allowed:
            return False
        path = urlparse(url).path or "/"
        allow = max((len(p) for p in self.allow_prefixes if path.startswith(p)), default=-1)
        disallow = max((len(p) for p in self.disallow_prefixes if path.startswith(p)), default=-1)
        return allow >= disallow


DEFAULT_DECISION = PolicyDecision()


class _Group:
    def __init__(self) -> None:
        self.allowed = True
        self.crawl_delay_ms = DEFAULT_CRAWL_DELAY_MS
        self.allow: list[str] = []
        self.disallow: list[str] = []

    def decision(self) -> PolicyDecision:
        return PolicyDecision(
            allowed=self.allowed,
            crawl_delay_ms=self.crawl_delay_ms,
            allow_prefixes=tuple(sorted(self.allow, key=len, reverse=True)),
            disallow_prefixes=tuple(sorted(self.disallow, key=len, reverse=True)),
        )


def _parse_delay_ms(value: str) -> int | None:
    try:
        seconds = float(value)
    except ValueError:
        return None
    if not math.isfinite(seconds) or seconds < 0:
        return None
    return max(int(seconds * 1000), MIN_CRAWL_DELAY_MS)


def parse_crawl_policy(raw_text: str, *, agent_token: str) -> PolicyDecision:
    """Evaluate a robots.txt document for ``agent_token``.

    Consecutive User-agent lines form one group. A group applies when one of
    its agents is ``*`` or equals ``agent_token`` (case-insensitive). When
    several groups apply, the last one wins.
    """

    agent_token = agent_token.strip().lower()
    result = DEFAULT_DECISION
    current: _Group | None = None
    in_agent_run = False

    for line in raw_text.splitlines():
        if "#" in line:
            line = line.split("#", 1)[0]
        line = line.strip()
        if not line:
            continue

        key, sep, value = line.partition(":")
        if not sep:
            continue
        key = key.strip().lower()
        value = value.strip()

        if key == "user-agent":
            if not in_agent_run:
                if current is not None:
                    result = current.decision()
                current = None
                in_agent_run = True
            agent = value.lower()
            if agent == "*" or agent == agent_token:
                current = current or _Group()
            continue

        in_agent_run = False
        if current is None:
            continue

        if key == "disallow":
            if value == "/":
                current.allowed = False
            elif value:
                current.disallow.append(value)
        elif key == "allow" and value:
            current.allow.append(value)
        elif key == "crawl-delay":
            delay = _parse_delay_ms(value)
            if delay is not None:
                current.crawl_delay_ms = delay

    if current is not None:
        result = current.decision()
    return result


class PolicyEvaluator:
    """Fetches and evaluates an origin's robots.txt on every call."""

    def __init__(self, http: HttpClient, *, agent_token: str, timeout_s: float = 5.0):
        self.http = http
        self.agent_token = agent_token
        self.timeout_s = timeout_s

    def evaluate(self, origin: str) -> PolicyDecision:
        robots_url = origin.rstrip("/") + "/robots.txt"
        try:
            res = self.http.get(robots_url, timeout_s=self.timeout_s, retries=0)
        except FetchFailure as e:
            logger.info("robots.txt unreachable for %s: %s", origin, e)
            return DEFAULT_DECISION
        if not res.ok:
            return DEFAULT_DECISION

        try:
            return parse_crawl_policy(res.text(), agent_token=self.agent_token)
        except (ValueError, UnicodeError) as e:
            logger.warning("robots.txt for %s could not be parsed: %s", origin, e)
            return DEFAULT_DECISION
