from __future__ import annotations

from vault_archiver.content import (
    BodyFormat,
    extract_page,
    is_supported_content_type,
)

NOTE = """
<html>
  <head><title>Daily Note</title><script>var x = 1;</script></head>
  <body>
    <nav>Home | Index</nav>
    <div class="markdown-preview-view">
      <h2>Plans</h2>
      <p>Water   the
         plants.</p>


      <p>Call <strong>Sam</strong>.</p>
      <style>.x { color: red }</style>
    </div>
    <footer>Powered by something</footer>
  </body>
</html>
"""


def test_extracts_rendered_note_region_only():
    page = extract_page(NOTE)

    assert page is not None
    assert page.title == "Daily Note"
    assert "Water the" in page.text
    assert "plants." in page.text
    assert "Home | Index" not in page.text
    assert "Powered by" not in page.text
    assert "color: red" not in page.text
    assert "\n\n\n" not in page.text


def test_markdown_format_keeps_structure():
    page = extract_page(NOTE, body_format=BodyFormat.MARKDOWN)

    assert page is not None
    assert "## Plans" in page.text
    assert "**Sam**" in page.text


def test_falls_back_to_body_and_h1_title():
    page = extract_page("<html><body><h1>Heading</h1><p>Only body text</p></body></html>")

    assert page is not None
    assert page.title == "Heading"
    assert "Only body text" in page.text


def test_empty_region_falls_back_to_body():
    page = extract_page(
        '<html><head><title>T</title></head><body>'
        '<div class="markdown-preview-view">   </div><p>Outside</p></body></html>'
    )

    assert page is not None
    assert page.text == "Outside"


def test_untitled_when_no_title_or_heading():
    page = extract_page("<html><body><p>text</p></body></html>")

    assert page is not None
    assert page.title == "Untitled"


def test_page_without_text_yields_none():
    assert extract_page("<html><head><title>Empty</title></head><body>  </body></html>") is None


def test_supported_content_types():
    assert is_supported_content_type("text/html; charset=utf-8", b"")
    assert is_supported_content_type("TEXT/PLAIN", b"")
    assert not is_supported_content_type("application/json", b"<html></html>")
    assert not is_supported_content_type("image/png", b"\x89PNG")


def test_missing_content_type_sniffs_body():
    assert is_supported_content_type(None, b"  <!DOCTYPE html><html></html>")
    assert not is_supported_content_type(None, b"\x89PNG\r\n")
