from __future__ import annotations

import json
import time
from typing import TYPE_CHECKING, Any, Iterable

if TYPE_CHECKING:
    from .crawl import PageRecord

MANIFEST_NAME = "vault-metadata.json"
INDEX_NAME = "README.md"

DOWNLOADER = "VaultArchiver/1.0"
SOURCE = "https://publish.obsidian.md"
LEGAL_NOTICE = (
    "This archive was created for personal/offline use only. "
    "Please respect copyright and licensing."
)


def utc_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


def build_manifest(
    pages: Iterable[PageRecord],
    site_id: str,
    *,
    generated_at: str,
) -> dict[str, Any]:
    pages = list(pages)
    return {
        "vault_id": site_id,
        "download_date": generated_at,
        "total_pages": len(pages),
        "downloader": DOWNLOADER,
        "source": f"{SOURCE}/{site_id}",
        "notice": LEGAL_NOTICE,
        "pages": [
            {
                "path": p.path,
                "title": p.title,
                "url": p.source_url,
                "crawled_at": p.crawled_at,
            }
            for p in pages
        ],
    }


def render_manifest(manifest: dict[str, Any]) -> str:
    return json.dumps(manifest, indent=2, ensure_ascii=False) + "\n"


def render_index(*, site_id: str, page_count: int, generated_at: str) -> str:
    return "\n".join(
        [
            "# Vault Archive",
            "",
            f"This archive contains a backup of the published vault `{site_id}`.",
            "",
            "## Contents",
            f"- {page_count} pages in Markdown format",
            f"- {MANIFEST_NAME}: archive information and page index",
            "",
            "## Usage",
            "Extract this archive and open the folder in Obsidian as a vault,",
            "or read the pages with any text editor.",
            "",
            "## Legal Notice",
            LEGAL_NOTICE,
            "If you are the original content owner and wish to request removal,",
            "file a report with reason `owner` and the vault will be blocked.",
            "",
            f"Generated on: {generated_at}",
            f"Source: {SOURCE}/{site_id}",
            "",
        ]
    )


def _quote(value: str) -> str:
    escaped = (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\r", "\\r")
    )
    return '"' + escaped + '"'


def render_page(page: PageRecord) -> str:
    header = "\n".join(
        [
            "---",
            f"title: {_quote(page.title)}",
            f"source_url: {_quote(page.source_url)}",
            f"archived_at: {_quote(page.crawled_at)}",
            "---",
            "",
            "",
        ]
    )
    return header + page.text
