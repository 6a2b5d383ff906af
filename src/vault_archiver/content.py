from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from bs4 import BeautifulSoup

from .convert.html_to_md import (
    extract_title,
    node_to_markdown,
    node_to_text,
    parse_html,
    pick_main_content,
)

SUPPORTED_CONTENT_TYPES = {"text/html", "application/xhtml+xml", "text/plain"}


class BodyFormat(str, Enum):
    TEXT = "text"
    MARKDOWN = "markdown"


@dataclass(frozen=True)
class ExtractedPage:
    title: str
    text: str


def looks_like_html(data: bytes) -> bool:
    head = data[:2048].lstrip()
    return head.startswith(b"<") and (
        b"<html" in head.lower()
        or b"<!doctype" in head.lower()
        or b"<head" in head.lower()
        or b"<body" in head.lower()
    )


def is_supported_content_type(content_type: str | None, body: bytes) -> bool:
    """Accept HTML and plain text; sniff the body when no header is sent."""

    if not content_type:
        return looks_like_html(body)
    ct = content_type.split(";", 1)[0].strip().lower()
    return ct in SUPPORTED_CONTENT_TYPES


def extract_from_soup(
    soup: BeautifulSoup,
    *,
    body_format: BodyFormat = BodyFormat.TEXT,
) -> ExtractedPage | None:
    """Extract the readable region of an already parsed page.

    Returns ``None`` when the page has no visible text at all.
    """

    render = node_to_markdown if body_format == BodyFormat.MARKDOWN else node_to_text

    region = pick_main_content(soup)
    text = render(region) if node_to_text(region) else ""
    if not text and soup.body is not None and region is not soup.body:
        text = render(soup.body) if node_to_text(soup.body) else ""
    if not text:
        return None

    return ExtractedPage(title=extract_title(soup), text=text)


def extract_page(
    markup: str,
    *,
    body_format: BodyFormat = BodyFormat.TEXT,
) -> ExtractedPage | None:
    return extract_from_soup(parse_html(markup), body_format=body_format)
