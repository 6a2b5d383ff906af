from __future__ import annotations

import re
from dataclasses import dataclass
from urllib.parse import ParseResult, unquote, urlparse, urlunparse

from .errors import ValidationError

DOCUMENT_EXTENSION = ".md"
INDEX_NAME = "index"

_INVALID_FILENAME_CHARS = re.compile(r"[<>:\"\\|?*\x00-\x1F]")


def normalize_url(raw_url: str) -> str:
    """Normalize a URL for de-duplication.

    - Lowercases scheme + hostname.
    - Strips fragments.
    - Drops the default port for the scheme.
    """

    parsed: ParseResult = urlparse(raw_url)
    scheme = (parsed.scheme or "").lower()
    netloc = (parsed.netloc or "").lower()
    if (scheme, parsed.port) in {("http", 80), ("https", 443)}:
        netloc = netloc.rsplit(":", 1)[0]

    parsed = parsed._replace(scheme=scheme, netloc=netloc, fragment="")
    return urlunparse(parsed)


def origin_of(url: str) -> str:
    parsed = urlparse(normalize_url(url))
    return f"{parsed.scheme}://{parsed.netloc}"


def same_origin(url: str, origin: str) -> bool:
    return origin_of(url) == origin


def site_id_for_url(url: str) -> str:
    """Return the first path segment, the bucket key for moderation state."""

    segments = [s for s in urlparse(url).path.split("/") if s]
    return unquote(segments[0]) if segments else ""


_ASSET_EXTS = {
    ".css",
    ".js",
    ".mjs",
    ".map",
    ".png",
    ".jpg",
    ".jpeg",
    ".gif",
    ".webp",
    ".svg",
    ".ico",
    ".woff",
    ".woff2",
    ".ttf",
    ".otf",
    ".eot",
    ".pdf",
    ".zip",
    ".gz",
    ".tgz",
    ".mp3",
    ".mp4",
}


def is_asset_intent_url(url: str) -> bool:
    path = urlparse(url).path.lower()
    return any(path.endswith(ext) for ext in _ASSET_EXTS)


def is_http_url(url: str) -> bool:
    parsed = urlparse(url)
    return parsed.scheme in {"http", "https"} and bool(parsed.hostname)


def _safe_segment(segment: str) -> str:
    cleaned = _INVALID_FILENAME_CHARS.sub("_", unquote(segment)).strip()
    return cleaned.replace("/", "_")


def archive_path_for_url(url: str) -> str:
    """Map a page URL to its archive-relative document path.

    Different URLs may map to the same path; the later page wins.
    """

    segments = []
    for raw in urlparse(url).path.split("/"):
        seg = _safe_segment(raw)
        if seg in {"", ".", ".."}:
            continue
        segments.append(seg)

    path = "/".join(segments) or INDEX_NAME
    if not path.endswith(DOCUMENT_EXTENSION):
        path += DOCUMENT_EXTENSION
    # The archive's own README lives at the top level.
    if path.lower() == "readme" + DOCUMENT_EXTENSION:
        path = "README (page)" + DOCUMENT_EXTENSION
    return path


@dataclass(frozen=True)
class CrawlTarget:
    root_url: str
    origin: str
    site_id: str

    @classmethod
    def from_url(cls, raw_url: str, *, allowed_hosts: tuple[str, ...] = ()) -> "CrawlTarget":
        """Validate a submitted root URL and derive its target.

        Query strings and fragments are dropped; the root of a host is
        rejected because it names no site.
        """

        raw_url = (raw_url or "").strip()
        if not is_http_url(raw_url):
            raise ValidationError("URL must be an absolute http(s) URL")

        parsed = urlparse(normalize_url(raw_url))
        host = (parsed.hostname or "").lower()
        if allowed_hosts and host not in {h.lower() for h in allowed_hosts}:
            raise ValidationError(f"Host is not supported: {host}")

        if parsed.path in {"", "/"}:
            raise ValidationError("URL must point at a site, not the host root")

        root_url = urlunparse(parsed._replace(query="", params=""))
        site_id = site_id_for_url(root_url)
        if not site_id:
            raise ValidationError("Could not extract site identifier")

        return cls(root_url=root_url, origin=origin_of(root_url), site_id=site_id)
