"""Blocked sites, consent audit log, takedown reports and run counters.

Audit paths (``log_consent``, ``increment_counters``) log and swallow
storage failures so a run is never aborted by bookkeeping. Gate paths
(``is_blocked``, ``block``, ``unblock``, ``file_report``) raise
``StorageUnavailable``.
"""

from __future__ import annotations

import json
import logging
import re
import secrets
import threading
import time
from collections import Counter
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable, Mapping, Protocol

from redis import Redis
from redis.exceptions import RedisError

from .errors import StorageUnavailable, ValidationError
from .urls import is_http_url, site_id_for_url

logger = logging.getLogger(__name__)

CONSENT_RETENTION_S = 30 * 24 * 60 * 60
DAILY_COUNTER_TTL_S = 8 * 24 * 60 * 60

BLOCKED_KEY = "blocked_vaults"
BLOCK_REASONS_KEY = "blocked_vaults:reasons"
PENDING_REPORTS_KEY = "pending_reports"
TOTAL_RUNS_KEY = "stats:total_runs"
SITE_RUNS_KEY = "stats:site_runs"

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

DETAILS_MIN = 10
DETAILS_MAX = 1000


class ReportReason(str, Enum):
    OWNER = "owner"
    COPYRIGHT = "copyright"
    PRIVACY = "privacy"
    OTHER = "other"


class ReportStatus(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    REJECTED = "rejected"


@dataclass(frozen=True)
class ConsentEntry:
    requester_ip: str
    root_url: str
    site_id: str
    timestamp: str


@dataclass(frozen=True)
class ReportTicket:
    vault_url: str
    reporter_email: str
    reason: ReportReason
    details: str
    verification_url: str | None = None
    site_id: str = field(default="", init=False)

    def __post_init__(self) -> None:
        if not is_http_url(self.vault_url):
            raise ValidationError("vaultUrl must be an absolute http(s) URL")
        site_id = site_id_for_url(self.vault_url)
        if not site_id:
            raise ValidationError("Invalid vault URL")
        object.__setattr__(self, "site_id", site_id)

        if not _EMAIL_RE.match(self.reporter_email or ""):
            raise ValidationError("email must be a valid address")
        try:
            object.__setattr__(self, "reason", ReportReason(self.reason))
        except ValueError as exc:
            raise ValidationError(f"Unknown reason: {self.reason}") from exc

        details = (self.details or "").strip()
        if not DETAILS_MIN <= len(details) <= DETAILS_MAX:
            raise ValidationError(
                f"details must be {DETAILS_MIN}-{DETAILS_MAX} characters"
            )
        object.__setattr__(self, "details", details)

        if self.verification_url is not None and not is_http_url(self.verification_url):
            raise ValidationError("verificationUrl must be an absolute http(s) URL")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ReportTicket":
        """Build a ticket from the report intake payload (camelCase keys)."""

        missing = [k for k in ("vaultUrl", "email", "reason", "details") if not data.get(k)]
        if missing:
            raise ValidationError(f"Missing fields: {', '.join(missing)}")
        return cls(
            vault_url=str(data["vaultUrl"]),
            reporter_email=str(data["email"]),
            reason=data["reason"],
            details=str(data["details"]),
            verification_url=data.get("verificationUrl") or None,
        )


class ModerationStore(Protocol):
    def is_blocked(self, site_id: str) -> bool: ...

    def block(self, site_id: str, reason: str) -> None: ...

    def unblock(self, site_id: str) -> None: ...

    def log_consent(self, entry: ConsentEntry) -> None: ...

    def file_report(self, ticket: ReportTicket) -> str: ...

    def increment_counters(self, site_id: str) -> None: ...

    def block_reason(self, site_id: str) -> str | None: ...

    def pending_reports(self) -> dict[str, dict[str, str]]: ...

    def resolve_report(self, report_id: str, status: ReportStatus) -> None: ...


def new_report_id() -> str:
    return f"{int(time.time() * 1000)}_{secrets.token_hex(5)}"


def _report_fields(ticket: ReportTicket, filed_at: str) -> dict[str, str]:
    return {
        "vault_url": ticket.vault_url,
        "site_id": ticket.site_id,
        "email": ticket.reporter_email,
        "reason": ticket.reason.value,
        "details": ticket.details,
        "verification_url": ticket.verification_url or "",
        "status": ReportStatus.PENDING.value,
        "filed_at": filed_at,
    }


def _today(now: float) -> str:
    return time.strftime("%Y-%m-%d", time.gmtime(now))


def _iso(now: float) -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(now))


class MemoryModerationStore:
    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self.blocked: dict[str, str] = {}
        self.consents: list[tuple[float, ConsentEntry]] = []
        self.reports: dict[str, dict[str, str]] = {}
        self.counters: Counter[str] = Counter()

    def is_blocked(self, site_id: str) -> bool:
        with self._lock:
            return site_id in self.blocked

    def block(self, site_id: str, reason: str) -> None:
        with self._lock:
            self.blocked[site_id] = reason

    def block_reason(self, site_id: str) -> str | None:
        with self._lock:
            return self.blocked.get(site_id)

    def unblock(self, site_id: str) -> None:
        with self._lock:
            self.blocked.pop(site_id, None)

    def log_consent(self, entry: ConsentEntry) -> None:
        now = self._clock()
        with self._lock:
            self.consents = [
                (at, e) for at, e in self.consents if at > now - CONSENT_RETENTION_S
            ]
            self.consents.append((now, entry))

    def file_report(self, ticket: ReportTicket) -> str:
        if ticket.reason == ReportReason.OWNER:
            self.block(ticket.site_id, f"owner report: {ticket.reporter_email}")
        report_id = new_report_id()
        with self._lock:
            self.reports[report_id] = _report_fields(ticket, _iso(self._clock()))
        return report_id

    def pending_reports(self) -> dict[str, dict[str, str]]:
        with self._lock:
            return {
                rid: dict(fields)
                for rid, fields in self.reports.items()
                if fields["status"] == ReportStatus.PENDING.value
            }

    def resolve_report(self, report_id: str, status: ReportStatus) -> None:
        with self._lock:
            if report_id not in self.reports:
                raise ValidationError(f"Unknown report: {report_id}")
            self.reports[report_id]["status"] = ReportStatus(status).value

    def increment_counters(self, site_id: str) -> None:
        now = self._clock()
        with self._lock:
            self.counters["total_runs"] += 1
            self.counters[f"daily:{_today(now)}"] += 1
            self.counters[f"site:{site_id}"] += 1


class RedisModerationStore:
    """Moderation state in Redis (client created with ``decode_responses``)."""

    def __init__(self, client: Redis, *, clock: Callable[[], float] = time.time) -> None:
        self.client = client
        self._clock = clock

    def _unavailable(self, action: str, exc: RedisError) -> StorageUnavailable:
        logger.error("moderation store unavailable during %s: %s", action, exc)
        return StorageUnavailable("Moderation storage is unavailable")

    def is_blocked(self, site_id: str) -> bool:
        try:
            return bool(self.client.sismember(BLOCKED_KEY, site_id))
        except RedisError as exc:
            raise self._unavailable("is_blocked", exc) from exc

    def block(self, site_id: str, reason: str) -> None:
        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.sadd(BLOCKED_KEY, site_id)
            pipe.hset(BLOCK_REASONS_KEY, site_id, reason)
            pipe.execute()
        except RedisError as exc:
            raise self._unavailable("block", exc) from exc
        logger.info("blocked site %s: %s", site_id, reason)

    def block_reason(self, site_id: str) -> str | None:
        try:
            return self.client.hget(BLOCK_REASONS_KEY, site_id)
        except RedisError as exc:
            raise self._unavailable("block_reason", exc) from exc

    def unblock(self, site_id: str) -> None:
        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.srem(BLOCKED_KEY, site_id)
            pipe.hdel(BLOCK_REASONS_KEY, site_id)
            pipe.execute()
        except RedisError as exc:
            raise self._unavailable("unblock", exc) from exc
        logger.info("unblocked site %s", site_id)

    def log_consent(self, entry: ConsentEntry) -> None:
        key = f"consent:{entry.site_id}:{int(self._clock() * 1000)}"
        try:
            self.client.set(key, json.dumps(asdict(entry)), ex=CONSENT_RETENTION_S)
        except RedisError as exc:
            logger.warning("consent log failed for %s: %s", entry.site_id, exc)

    def file_report(self, ticket: ReportTicket) -> str:
        if ticket.reason == ReportReason.OWNER:
            self.block(ticket.site_id, f"owner report: {ticket.reporter_email}")

        report_id = new_report_id()
        fields = _report_fields(ticket, _iso(self._clock()))
        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.hset(f"report:{report_id}", mapping=fields)
            pipe.sadd(PENDING_REPORTS_KEY, report_id)
            pipe.execute()
        except RedisError as exc:
            raise self._unavailable("file_report", exc) from exc
        logger.info("report %s filed for %s (%s)", report_id, ticket.site_id, ticket.reason.value)
        return report_id

    def pending_reports(self) -> dict[str, dict[str, str]]:
        try:
            ids = sorted(self.client.smembers(PENDING_REPORTS_KEY))
            return {rid: self.client.hgetall(f"report:{rid}") for rid in ids}
        except RedisError as exc:
            raise self._unavailable("pending_reports", exc) from exc

    def resolve_report(self, report_id: str, status: ReportStatus) -> None:
        status = ReportStatus(status)
        try:
            if not self.client.exists(f"report:{report_id}"):
                raise ValidationError(f"Unknown report: {report_id}")
            pipe = self.client.pipeline(transaction=True)
            pipe.hset(f"report:{report_id}", "status", status.value)
            if status != ReportStatus.PENDING:
                pipe.srem(PENDING_REPORTS_KEY, report_id)
            else:
                pipe.sadd(PENDING_REPORTS_KEY, report_id)
            pipe.execute()
        except RedisError as exc:
            raise self._unavailable("resolve_report", exc) from exc

    def increment_counters(self, site_id: str) -> None:
        daily_key = f"stats:daily:{_today(self._clock())}"
        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.incr(TOTAL_RUNS_KEY)
            pipe.incr(daily_key)
            pipe.expire(daily_key, DAILY_COUNTER_TTL_S)
            pipe.hincrby(SITE_RUNS_KEY, site_id, 1)
            pipe.execute()
        except RedisError as exc:
            logger.warning("counter update failed for %s: %s", site_id, exc)
