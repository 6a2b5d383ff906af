from __future__ import annotations

import io
import json
import zipfile

import pytest

from vault_archiver.archive import build_archive
from vault_archiver.crawl import PageRecord
from vault_archiver.errors import ArchiveError

GENERATED_AT = "2024-05-01T12:00:00Z"


def page(path: str, title: str, text: str) -> PageRecord:
    return PageRecord(
        path=path,
        title=title,
        text=text,
        source_url=f"https://site.example/{path[:-3]}",
        crawled_at="2024-05-01T11:59:00Z",
    )


PAGES = [
    page("vault-a.md", "Home", "Welcome home."),
    page("vault-a/notes/Plan.md", 'The "Plan"', "Step one."),
]


def open_zip(data: bytes) -> zipfile.ZipFile:
    return zipfile.ZipFile(io.BytesIO(data))


def test_archive_layout():
    artifact = build_archive(PAGES, "vault-a", generated_at=GENERATED_AT)

    zf = open_zip(artifact.data)
    assert zf.namelist() == [
        "vault-metadata.json",
        "README.md",
        "vault-a.md",
        "vault-a/notes/Plan.md",
    ]
    assert zf.comment.decode() == "Vault Archive - Downloaded from https://publish.obsidian.md/vault-a"
    assert all(info.compress_type == zipfile.ZIP_DEFLATED for info in zf.infolist())
    assert artifact.page_count == 2


def test_manifest_contents():
    zf = open_zip(build_archive(PAGES, "vault-a", generated_at=GENERATED_AT).data)

    manifest = json.loads(zf.read("vault-metadata.json"))

    assert manifest["vault_id"] == "vault-a"
    assert manifest["download_date"] == GENERATED_AT
    assert manifest["total_pages"] == 2
    assert manifest["source"] == "https://publish.obsidian.md/vault-a"
    assert manifest["notice"]
    assert [p["path"] for p in manifest["pages"]] == ["vault-a.md", "vault-a/notes/Plan.md"]
    assert manifest["pages"][1]["title"] == 'The "Plan"'


def test_page_front_matter_is_escaped():
    zf = open_zip(build_archive(PAGES, "vault-a", generated_at=GENERATED_AT).data)

    body = zf.read("vault-a/notes/Plan.md").decode("utf-8")

    assert body == (
        "---\n"
        'title: "The \\"Plan\\""\n'
        'source_url: "https://site.example/vault-a/notes/Plan"\n'
        'archived_at: "2024-05-01T11:59:00Z"\n'
        "---\n"
        "\n"
        "Step one."
    )


def test_readme_mentions_site_and_count():
    zf = open_zip(build_archive(PAGES, "vault-a", generated_at=GENERATED_AT).data)

    readme = zf.read("README.md").decode("utf-8")

    assert "`vault-a`" in readme
    assert "- 2 pages in Markdown format" in readme
    assert f"Generated on: {GENERATED_AT}" in readme


def test_same_inputs_give_identical_bytes():
    first = build_archive(PAGES, "vault-a", generated_at=GENERATED_AT)
    second = build_archive(list(PAGES), "vault-a", generated_at=GENERATED_AT)

    assert first.data == second.data


def test_generated_at_only_changes_timestamps():
    a = open_zip(build_archive(PAGES, "vault-a", generated_at=GENERATED_AT).data)
    b = open_zip(build_archive(PAGES, "vault-a", generated_at="2025-01-02T03:04:05Z").data)

    assert a.namelist() == b.namelist()
    for name in a.namelist()[2:]:
        assert a.read(name) == b.read(name)
    assert json.loads(a.read("vault-metadata.json"))["pages"] == json.loads(
        b.read("vault-metadata.json")
    )["pages"]
    assert a.getinfo("README.md").date_time == (2024, 5, 1, 12, 0, 0)


def test_size_label_rounds_to_kilobytes():
    artifact = build_archive(PAGES, "vault-a", generated_at=GENERATED_AT)

    assert artifact.size_label == f"{round(len(artifact.data) / 1024)} KB"
    assert artifact.size_bytes == len(artifact.data)


def test_unicode_text_survives():
    pages = [page("vault-a.md", "Café", "naïve ✓")]

    zf = open_zip(build_archive(pages, "vault-a", generated_at=GENERATED_AT).data)

    assert zf.read("vault-a.md").decode("utf-8").endswith("naïve ✓")


@pytest.mark.parametrize("generated_at", ["yesterday", "1970-01-01T00:00:00Z"])
def test_bad_timestamp_raises_archive_error(generated_at):
    with pytest.raises(ArchiveError):
        build_archive(PAGES, "vault-a", generated_at=generated_at)


def test_line_breaks_in_title_stay_on_one_front_matter_line():
    pages = [page("vault-a.md", "Two\nLines\r\nTitle", "Body.")]

    zf = open_zip(build_archive(pages, "vault-a", generated_at=GENERATED_AT).data)

    lines = zf.read("vault-a.md").decode("utf-8").split("\n")
    assert lines[0] == "---"
    assert lines[1] == 'title: "Two\\nLines\\r\\nTitle"'
    assert lines[2].startswith("source_url: ")
    assert lines[4] == "---"
