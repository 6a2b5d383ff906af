from __future__ import annotations

import io
import logging
import time
import zipfile
from dataclasses import dataclass
from typing import TYPE_CHECKING, Sequence

from .errors import ArchiveError
from .manifest import (
    INDEX_NAME,
    MANIFEST_NAME,
    SOURCE,
    build_manifest,
    render_index,
    render_manifest,
    render_page,
    utc_iso,
)

if TYPE_CHECKING:
    from .crawl import PageRecord

logger = logging.getLogger(__name__)

COMPRESS_LEVEL = 9


@dataclass(frozen=True)
class ArchiveArtifact:
    data: bytes
    page_count: int

    @property
    def size_bytes(self) -> int:
        return len(self.data)

    @property
    def size_label(self) -> str:
        return f"{round(self.size_bytes / 1024)} KB"


def _zip_date_time(generated_at: str) -> tuple[int, int, int, int, int, int]:
    parsed = time.strptime(generated_at, "%Y-%m-%dT%H:%M:%SZ")
    return tuple(parsed)[:6]  # type: ignore[return-value]


def _member(name: str, date_time: tuple[int, int, int, int, int, int]) -> zipfile.ZipInfo:
    info = zipfile.ZipInfo(name, date_time=date_time)
    info.compress_type = zipfile.ZIP_DEFLATED
    info.external_attr = 0o644 << 16
    return info


def build_archive(
    pages: Sequence[PageRecord],
    site_id: str,
    *,
    generated_at: str | None = None,
) -> ArchiveArtifact:
    """Package pages into a zip with a manifest and a README.

    Member order and every byte outside the embedded timestamps depend only
    on ``pages`` and ``site_id``. Any failure raises ``ArchiveError`` and
    nothing is returned.
    """

    generated_at = generated_at or utc_iso()
    try:
        date_time = _zip_date_time(generated_at)
        manifest = build_manifest(pages, site_id, generated_at=generated_at)

        buf = io.BytesIO()
        with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            zf.comment = (
                f"Vault Archive - Downloaded from {SOURCE}/{site_id}".encode("utf-8")
            )
            entries = [
                (MANIFEST_NAME, render_manifest(manifest)),
                (
                    INDEX_NAME,
                    render_index(
                        site_id=site_id,
                        page_count=len(pages),
                        generated_at=generated_at,
                    ),
                ),
            ]
            entries.extend((p.path, render_page(p)) for p in pages)
            for name, body in entries:
                zf.writestr(
                    _member(name, date_time),
                    body.encode("utf-8"),
                    compresslevel=COMPRESS_LEVEL,
                )
    except (OSError, ValueError, TypeError, zipfile.BadZipFile) as e:
        logger.error("archive build for %s failed: %s", site_id, e)
        raise ArchiveError(f"Failed to build archive: {e}") from e

    return ArchiveArtifact(data=buf.getvalue(), page_count=len(pages))
