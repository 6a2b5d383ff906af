from __future__ import annotations

from bs4 import BeautifulSoup
from markdownify import markdownify as md

UNTITLED = "Untitled"

# Rendered-note region first, then the editor region, then generic layout.
CONTENT_SELECTORS = (
    ".markdown-preview-view",
    ".mod-cm6",
    "main",
    "article",
    ".content",
)


def _clean_soup_inplace(soup: BeautifulSoup) -> None:
    for tag_name in ["script", "style", "noscript", "template"]:
        for t in soup.find_all(tag_name):
            t.decompose()


def pick_main_content(soup: BeautifulSoup):
    for selector in CONTENT_SELECTORS:
        node = soup.select_one(selector)
        if node is not None:
            return node
    return soup.body or soup


def extract_title(soup: BeautifulSoup) -> str:
    if soup.title and soup.title.get_text(strip=True):
        return soup.title.get_text(" ", strip=True)
    h1 = soup.find("h1")
    if h1 and h1.get_text(strip=True):
        return h1.get_text(" ", strip=True)
    return UNTITLED


def node_to_text(node) -> str:
    text = node.get_text("\n")
    lines = [" ".join(ln.split()) for ln in text.splitlines()]
    out: list[str] = []
    blank_run = 0
    for ln in lines:
        if not ln:
            blank_run += 1
            if blank_run <= 1:
                out.append("")
            continue
        blank_run = 0
        out.append(ln)
    return "\n".join(out).strip()


def node_to_markdown(node) -> str:
    return md(str(node), heading_style="ATX").strip()


def parse_html(html: str | bytes, *, encoding: str | None = None) -> BeautifulSoup:
    """Parse markup; raw bytes are decoded by BeautifulSoup using ``encoding``
    when given, else the document's own declaration or detection."""

    if isinstance(html, bytes):
        soup = BeautifulSoup(html, "html.parser", from_encoding=encoding)
    else:
        soup = BeautifulSoup(html, "html.parser")
    _clean_soup_inplace(soup)
    return soup
