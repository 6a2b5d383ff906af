from __future__ import annotations

import logging
import time
from collections import Counter
from dataclasses import dataclass
from typing import Callable, Iterator
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

from .content import BodyFormat, extract_from_soup, is_supported_content_type
from .convert.html_to_md import parse_html
from .errors import FetchFailure
from .frontier import Frontier
from .http_client import PAGE_ACCEPT, HttpClient
from .manifest import utc_iso
from .robots import PolicyDecision
from .urls import (
    CrawlTarget,
    archive_path_for_url,
    is_asset_intent_url,
    is_http_url,
    normalize_url,
    same_origin,
)

logger = logging.getLogger(__name__)

MAX_PATH_LEN = 500
_SKIPPED_SCHEMES = ("mailto:", "javascript:", "tel:", "data:")


@dataclass(frozen=True)
class PageRecord:
    path: str
    title: str
    text: str
    source_url: str
    crawled_at: str


@dataclass(frozen=True)
class CrawlProgress:
    percent: float
    message: str


@dataclass
class CrawlConfig:
    max_pages: int = 500
    body_format: BodyFormat = BodyFormat.TEXT


def extract_links(soup: BeautifulSoup, *, page_url: str) -> list[str]:
    """Return absolute, normalized anchor targets in document order."""

    def _attr_text(val: object) -> str:
        if isinstance(val, list):
            if not val:
                return ""
            return str(val[0])
        return str(val or "")

    effective_base = page_url
    base = soup.find("base")
    if base is not None:
        base_href = _attr_text(base.get("href")).strip()
        if base_href:
            effective_base = urljoin(page_url, base_href)

    out: list[str] = []
    seen: set[str] = set()
    for a in soup.select("a[href]"):
        href = _attr_text(a.get("href")).strip()
        if not href or href.startswith("#"):
            continue
        if href.lower().startswith(_SKIPPED_SCHEMES):
            continue
        abs_url = normalize_url(urljoin(effective_base, href))
        if abs_url in seen:
            continue
        seen.add(abs_url)
        out.append(abs_url)

    return out


class Crawler:
    """Sequential crawl of one site, driven by iterating ``iter_crawl``.

    The crawler waits ``decision.crawl_delay_ms`` before every fetch except
    the first. A progress step is yielded after each page completes, so
    closing the iterator stops the crawl before the next fetch.
    """

    def __init__(
        self,
        *,
        http: HttpClient,
        target: CrawlTarget,
        decision: PolicyDecision,
        config: CrawlConfig | None = None,
        sleeper: Callable[[float], None] = time.sleep,
        should_stop: Callable[[], bool] | None = None,
    ) -> None:
        self.http = http
        self.target = target
        self.decision = decision
        self.cfg = config or CrawlConfig()
        self._sleep = sleeper
        self._should_stop = should_stop or (lambda: False)

        self.frontier = Frontier(max_pages=self.cfg.max_pages)
        self._pages: dict[str, PageRecord] = {}
        self._stats: Counter[str] = Counter()

    @property
    def pages(self) -> list[PageRecord]:
        return list(self._pages.values())

    @property
    def stats(self) -> dict[str, int]:
        return dict(self._stats)

    def _should_enqueue(self, url: str) -> bool:
        if not is_http_url(url) or not same_origin(url, self.target.origin):
            return False
        if is_asset_intent_url(url):
            return False
        # Guard against URL explosion; skip long paths.
        if len(urlparse(url).path) > MAX_PATH_LEN:
            return False
        return self.decision.can_fetch(url)

    def iter_crawl(self) -> Iterator[CrawlProgress]:
        self.frontier.push(normalize_url(self.target.root_url))
        yield CrawlProgress(0.0, "Discovering pages...")

        fetches = 0
        percent = 0.0
        while not self.frontier.exhausted:
            if self._should_stop():
                logger.info("crawl of %s stopped by caller", self.target.root_url)
                self._stats["stopped"] += 1
                break

            url = self.frontier.pop()
            if url in self.frontier.visited:
                continue
            self.frontier.mark_visited(url)

            if fetches:
                self._sleep(self.decision.crawl_delay_ms / 1000)
            fetches += 1
            self._visit(url)

            # Measured after the page's links are queued; never goes back.
            percent = max(percent, self.frontier.progress_percent())
            yield CrawlProgress(
                percent,
                f"Processed page {len(self.frontier.visited)}...",
            )

        logger.info(
            "crawl of %s finished: visited=%d pages=%d stats=%s",
            self.target.root_url,
            len(self.frontier.visited),
            len(self._pages),
            dict(self._stats),
        )
        yield CrawlProgress(100.0, f"Discovered {len(self._pages)} pages")

    def _visit(self, url: str) -> None:
        try:
            res = self.http.get(url, headers={"Accept": PAGE_ACCEPT})
        except FetchFailure as e:
            logger.warning("skipping %s: %s", url, e)
            self._stats["error"] += 1
            return

        if not res.ok:
            logger.warning("skipping %s: status %s", url, res.status_code)
            self._stats["http_error"] += 1
            return

        final_url = normalize_url(res.final_url)
        if not same_origin(final_url, self.target.origin):
            logger.warning("skipping %s: redirected off-origin to %s", url, final_url)
            self._stats["offsite_redirect"] += 1
            return

        if not is_supported_content_type(res.content_type, res.body):
            logger.warning("skipping %s: unsupported content type %s", url, res.content_type)
            self._stats["unsupported"] += 1
            return

        soup = parse_html(res.body, encoding=res.charset)
        extracted = extract_from_soup(soup, body_format=self.cfg.body_format)
        if extracted is None:
            self._stats["empty"] += 1
        else:
            path = archive_path_for_url(url)
            if path in self._pages:
                self._stats["path_collision"] += 1
            self._pages[path] = PageRecord(
                path=path,
                title=extracted.title,
                text=extracted.text,
                source_url=url,
                crawled_at=utc_iso(),
            )
            self._stats["fetched"] += 1

        for link in extract_links(soup, page_url=final_url):
            if self._should_enqueue(link):
                self.frontier.push(link)
