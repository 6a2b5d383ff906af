from __future__ import annotations

import logging
import time
from contextlib import closing
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Mapping

import requests

from .archive import build_archive
from .artifacts import ArtifactStore, MemoryArtifactStore, RedisArtifactStore
from .config import Settings, get_settings
from .content import BodyFormat
from .crawl import CrawlConfig, Crawler
from .errors import (
    ArchiverError,
    Blocked,
    Cancelled,
    EmptyResult,
    PolicyDenied,
    RateLimited,
    ValidationError,
)
from .events import ErrorEvent, Event, ProgressStream
from .http_client import HttpClient
from .moderation import (
    ConsentEntry,
    MemoryModerationStore,
    ModerationStore,
    RedisModerationStore,
)
from .rate_limit import Admission, MemoryRateLimiter, RateLimiter, RedisRateLimiter
from .redis_client import get_redis
from .robots import PolicyDecision, PolicyEvaluator
from .urls import CrawlTarget

logger = logging.getLogger(__name__)

# Crawl progress is mapped into this band of the overall stream.
CRAWL_PROGRESS_START = 5
CRAWL_PROGRESS_SPAN = 70


@dataclass(frozen=True)
class RunRequest:
    url: str
    consent: bool
    timestamp: str

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "RunRequest":
        url = data.get("url")
        consent = data.get("consent")
        timestamp = data.get("timestamp")
        if not isinstance(url, str) or not url.strip():
            raise ValidationError("url is required")
        if not isinstance(consent, bool):
            raise ValidationError("consent must be a boolean")
        if not isinstance(timestamp, str) or not timestamp.strip():
            raise ValidationError("timestamp is required")
        return cls(url=url.strip(), consent=consent, timestamp=timestamp.strip())


@dataclass(frozen=True)
class PreparedRun:
    target: CrawlTarget
    decision: PolicyDecision
    requester: str
    admission: Admission


class ArchivePipeline:
    """Runs one archive job: gatekeeping, crawl, packaging and storage.

    The shared stores are passed in so callers can swap Redis for the
    in-memory implementations.
    """

    def __init__(
        self,
        *,
        http: HttpClient,
        moderation: ModerationStore,
        rate_limiter: RateLimiter,
        artifacts: ArtifactStore,
        settings: Settings | None = None,
        body_format: BodyFormat = BodyFormat.TEXT,
        sleeper: Callable[[float], None] = time.sleep,
    ) -> None:
        self.http = http
        self.moderation = moderation
        self.rate_limiter = rate_limiter
        self.artifacts = artifacts
        self.settings = settings or get_settings()
        self.body_format = body_format
        self._sleep = sleeper
        self.policy = PolicyEvaluator(
            http,
            agent_token=self.settings.agent_token,
            timeout_s=self.settings.policy_timeout_s,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        body_format: BodyFormat = BodyFormat.TEXT,
    ) -> "ArchivePipeline":
        """Wire Redis-backed stores when a Redis URL is configured."""

        http = HttpClient(
            requests.Session(),
            user_agent=settings.user_agent,
            timeout_s=settings.page_timeout_s,
        )
        if settings.redis_url:
            text_client = get_redis(settings.redis_url)
            moderation: ModerationStore = RedisModerationStore(text_client)
            limiter: RateLimiter = RedisRateLimiter(
                text_client,
                quota=settings.rate_limit_quota,
                window_s=settings.rate_limit_window_s,
            )
            artifacts: ArtifactStore = RedisArtifactStore(
                get_redis(settings.redis_url, decode_responses=False)
            )
        else:
            moderation = MemoryModerationStore()
            limiter = MemoryRateLimiter(
                quota=settings.rate_limit_quota,
                window_s=settings.rate_limit_window_s,
            )
            artifacts = MemoryArtifactStore()

        return cls(
            http=http,
            moderation=moderation,
            rate_limiter=limiter,
            artifacts=artifacts,
            settings=settings,
            body_format=body_format,
        )

    def prepare(self, request: RunRequest, *, requester: str) -> PreparedRun:
        """Validate and gate a run request before any page is fetched."""

        if not request.consent:
            raise ValidationError("Consent required")

        target = CrawlTarget.from_url(
            request.url, allowed_hosts=self.settings.allowed_hosts
        )

        if self.moderation.is_blocked(target.site_id):
            raise Blocked("This vault has been blocked by the owner")

        admission = self.rate_limiter.admit(requester)
        if not admission.allowed:
            raise RateLimited(
                "Rate limit exceeded. Please try again later.",
                reset_at=admission.reset_at,
            )

        self.moderation.log_consent(
            ConsentEntry(
                requester_ip=requester,
                root_url=target.root_url,
                site_id=target.site_id,
                timestamp=request.timestamp,
            )
        )

        decision = self.policy.evaluate(target.origin)
        if not decision.can_fetch(target.root_url):
            raise PolicyDenied("This vault disallows crawling via robots.txt")

        logger.info(
            "run admitted: site=%s requester=%s delay_ms=%d remaining=%d",
            target.site_id,
            requester,
            decision.crawl_delay_ms,
            admission.remaining,
        )
        return PreparedRun(
            target=target,
            decision=decision,
            requester=requester,
            admission=admission,
        )

    def stream(
        self,
        prepared: PreparedRun,
        *,
        should_stop: Callable[[], bool] | None = None,
    ) -> Iterator[Event]:
        """Crawl, package and store; yields progress then one terminal event.

        Closing the iterator stops the crawl before its next fetch and
        nothing is stored.
        """

        stream = ProgressStream()
        should_stop = should_stop or (lambda: False)
        site_id = prepared.target.site_id
        try:
            yield stream.progress(CRAWL_PROGRESS_START, "Starting vault discovery...")

            crawler = Crawler(
                http=self.http,
                target=prepared.target,
                decision=prepared.decision,
                config=CrawlConfig(
                    max_pages=self.settings.max_pages,
                    body_format=self.body_format,
                ),
                sleeper=self._sleep,
                should_stop=should_stop,
            )
            with closing(crawler.iter_crawl()) as steps:
                for step in steps:
                    yield stream.progress(
                        CRAWL_PROGRESS_START + step.percent * CRAWL_PROGRESS_SPAN / 100,
                        step.message,
                    )

            if should_stop():
                raise Cancelled("Run cancelled")

            pages = crawler.pages
            if not pages:
                raise EmptyResult("No content found in vault")

            yield stream.progress(80, "Creating archive...")
            artifact = build_archive(pages, site_id)

            yield stream.progress(95, "Preparing download...")
            yield stream.progress(100, "Complete!")
            if should_stop():
                raise Cancelled("Run cancelled")

            # Nothing is yielded between storing the artifact and the complete event.
            download_id = self.artifacts.put(artifact.data, self.settings.artifact_ttl_s)
            self.moderation.increment_counters(site_id)
            logger.info(
                "run complete: site=%s pages=%d size=%d",
                site_id,
                artifact.page_count,
                artifact.size_bytes,
            )
            yield stream.complete(
                download_id,
                total_pages=artifact.page_count,
                archive_size=artifact.size_label,
            )
        except ArchiverError as e:
            logger.warning("run for %s failed: %s", site_id, e.message)
            yield stream.error(e.message, code=e.code)
        except Exception:
            logger.exception("run for %s failed unexpectedly", site_id)
            yield stream.error("Failed to download vault")

    def run(
        self,
        request: RunRequest | Mapping[str, Any],
        *,
        requester: str,
        should_stop: Callable[[], bool] | None = None,
    ) -> Iterator[Event]:
        """Full run as one event stream; gate failures become an error event."""

        try:
            if not isinstance(request, RunRequest):
                request = RunRequest.from_mapping(request)
            prepared = self.prepare(request, requester=requester)
        except ArchiverError as e:
            logger.info("run refused for %s: %s", requester, e.message)
            yield ErrorEvent(e.message, e.code)
            return

        yield from self.stream(prepared, should_stop=should_stop)
