"""Tests for DOCX rendering and the legacy DOC extractor path."""

from __future__ import annotations

import io
import subprocess

import pytest
from docx import Document as DocxBuilder
from docx.opc.constants import RELATIONSHIP_TYPE as RT
from docx.oxml import OxmlElement
from docx.oxml.ns import qn
from docx.shared import Inches

from src.normalizer import external
from src.normalizer.base import DocumentFormat, ParseError, ParseErrorKind
from src.normalizer.dispatcher import parse_document
from src.normalizer.word import DOCX_MEDIA_TYPE, LEGACY_DOC_WARNING
from tests.normalizer.builders import build_docx_bytes, build_png


def _save(document) -> bytes:
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def test_docx_structure_is_preserved() -> None:
    document = parse_document(build_docx_bytes(), DOCX_MEDIA_TYPE, "report.docx")
    html = document.html

    assert document.metadata.format is DocumentFormat.DOCX
    assert document.metadata.has_structure is True
    assert html.startswith('<h1 class="title">Quarterly Report</h1><h1>Overview</h1>')
    assert "<p>Revenue grew <strong>strongly</strong> this <em>quarter</em>.</p>" in html
    assert "<ul><li>First bullet</li><li>Second bullet</li></ul><ol><li>Step one</li></ol>" in html
    assert "<table><tbody><tr><td>Region</td><td>Total</td></tr>" in html
    assert html.endswith("<p>Closing remarks.</p>")


def test_docx_text_projection_joins_blocks() -> None:
    document = parse_document(build_docx_bytes(with_image=False), DOCX_MEDIA_TYPE, "report.docx")

    blocks = document.text.split("\n\n")
    assert blocks[0] == "Quarterly Report"
    assert "Revenue grew strongly this quarter." in blocks
    assert "Region | Total\nNorth | 42" in blocks
    assert blocks[-1] == "Closing remarks."
    assert document.assets == ()


def test_docx_inline_image_becomes_asset() -> None:
    document = parse_document(build_docx_bytes(), DOCX_MEDIA_TYPE, "report.docx")

    assert len(document.assets) == 1
    asset = document.assets[0]
    assert asset.token.startswith("docx-image_")
    assert asset.asset_id.startswith("sha256:")
    assert asset.mime == "image/png"
    assert asset.width_px == 96
    assert asset.height_px == 96
    assert asset.is_resolved
    assert f'src="cid:{asset.asset_id}"' in document.html
    assert f'data-asset-token="{asset.token}"' in document.html
    assert document.asset_tokens() == [asset.token]
    assert document.metadata["image_count"] == 1


def test_docx_tokens_are_deterministic() -> None:
    payload = build_docx_bytes()

    first = parse_document(payload, DOCX_MEDIA_TYPE, "a.docx")
    second = parse_document(payload, DOCX_MEDIA_TYPE, "b.docx")

    assert first.asset_tokens() == second.asset_tokens()
    assert first.html == second.html


def test_docx_merged_cells_render_once() -> None:
    builder = DocxBuilder()
    table = builder.add_table(rows=3, cols=2)
    wide = table.cell(0, 0).merge(table.cell(0, 1))
    wide.paragraphs[0].add_run().add_picture(io.BytesIO(build_png(2, 2)), width=Inches(1))
    tall = table.cell(1, 0).merge(table.cell(2, 0))
    tall.text = "Tall"
    table.cell(1, 1).text = "A"
    table.cell(2, 1).text = "B"

    document = parse_document(_save(builder), DOCX_MEDIA_TYPE, "merged.docx")

    assert len(document.assets) == 1
    assert document.html.count("data-asset-token=") == 1
    assert '<tr><td colspan="2"><img ' in document.html
    assert '<tr><td rowspan="2">Tall</td><td>A</td></tr><tr><td>B</td></tr>' in document.html
    assert document.text == "Tall | A\nB"


def test_docx_repeated_picture_shares_asset_id_but_not_token() -> None:
    builder = DocxBuilder()
    builder.add_paragraph("Twice")
    picture = build_png(2, 2)
    builder.add_picture(io.BytesIO(picture), width=Inches(1))
    builder.add_picture(io.BytesIO(picture), width=Inches(1))

    document = parse_document(_save(builder), DOCX_MEDIA_TYPE, "twice.docx")

    first, second = document.assets
    assert len(document.assets) == 2
    assert first.asset_id == second.asset_id
    assert first.token != second.token
    assert document.asset_tokens() == [first.token, second.token]


def test_docx_core_properties_become_facts() -> None:
    document = parse_document(build_docx_bytes(), DOCX_MEDIA_TYPE, "report.docx")

    assert document.metadata["author"] == "Test Author"
    assert document.metadata["title"] == "Docx Fixture"
    assert document.metadata["table_count"] == 1
    assert document.metadata["paragraph_count"] >= 7


def test_docx_external_hyperlink_is_rendered() -> None:
    builder = DocxBuilder()
    paragraph = builder.add_paragraph("See ")
    rel_id = builder.part.relate_to("https://example.com/docs", RT.HYPERLINK, is_external=True)
    hyperlink = OxmlElement("w:hyperlink")
    hyperlink.set(qn("r:id"), rel_id)
    run = OxmlElement("w:r")
    text = OxmlElement("w:t")
    text.text = "the docs"
    run.append(text)
    hyperlink.append(run)
    paragraph._p.append(hyperlink)

    document = parse_document(_save(builder), DOCX_MEDIA_TYPE, "links.docx")

    assert '<p>See <a href="https://example.com/docs">the docs</a></p>' in document.html
    assert document.text == "See the docs"


def test_docx_unknown_paragraph_style_is_reported() -> None:
    builder = DocxBuilder()
    paragraph = builder.add_paragraph("Styled text")
    paragraph._p.get_or_add_pPr().style = "GhostStyle"

    document = parse_document(_save(builder), DOCX_MEDIA_TYPE, "styles.docx")

    assert "<p>Styled text</p>" in document.html
    assert "Unrecognised paragraph style 'GhostStyle'" in document.warnings


def test_docx_without_content_warns() -> None:
    document = parse_document(_save(DocxBuilder()), DOCX_MEDIA_TYPE, "blank.docx")

    assert document.text == ""
    assert document.html == "<p></p>"
    assert "DOCX file contained no extractable content" in document.warnings


def test_docx_empty_buffer() -> None:
    document = parse_document(b"", DOCX_MEDIA_TYPE, "empty.docx")

    assert document.is_empty()
    assert document.metadata.has_structure is True
    assert document.warnings == ("Document is empty",)


def test_docx_invalid_archive_is_malformed() -> None:
    with pytest.raises(ParseError) as excinfo:
        parse_document(b"definitely not a zip archive", DOCX_MEDIA_TYPE, "broken.docx")

    assert excinfo.value.kind is ParseErrorKind.MALFORMED
    assert excinfo.value.format is DocumentFormat.DOCX
    assert excinfo.value.reason.startswith("DOCX parsing error")


def test_legacy_doc_requires_extractor(monkeypatch) -> None:
    monkeypatch.setattr(external.shutil, "which", lambda name: None)

    with pytest.raises(ParseError) as excinfo:
        parse_document(b"\xd0\xcf\x11\xe0legacy", "application/msword", "old.doc")

    assert excinfo.value.kind is ParseErrorKind.UNSUPPORTED_FORMAT
    assert excinfo.value.format is DocumentFormat.DOC
    assert "antiword" in excinfo.value.reason
    assert "DOCX" in excinfo.value.reason


def test_legacy_doc_uses_extractor_output(monkeypatch) -> None:
    captured: dict[str, object] = {}

    def fake_run(argv, **kwargs):
        captured["argv"] = argv
        return subprocess.CompletedProcess(argv, 0, stdout=b"First paragraph\n\nSecond paragraph\n", stderr=b"")

    monkeypatch.setattr(external.shutil, "which", lambda name: f"/usr/bin/{name}")
    monkeypatch.setattr(external.subprocess, "run", fake_run)

    document = parse_document(b"\xd0\xcf\x11\xe0legacy", "application/msword", "old.doc")

    assert captured["argv"][0] == "antiword"
    assert str(captured["argv"][-1]).endswith("input.doc")
    assert document.metadata.format is DocumentFormat.DOC
    assert document.metadata.has_structure is False
    assert document.html == (
        '<div class="word-document word-document--legacy"><p>First paragraph</p><p>Second paragraph</p></div>'
    )
    assert document.text == "First paragraph\n\nSecond paragraph"
    assert document.warnings[0] == LEGACY_DOC_WARNING


def test_legacy_doc_extractor_failure_is_malformed(monkeypatch) -> None:
    def failing_run(argv, **kwargs):
        return subprocess.CompletedProcess(argv, 1, stdout=b"", stderr=b"not a Word document")

    monkeypatch.setattr(external.shutil, "which", lambda name: f"/usr/bin/{name}")
    monkeypatch.setattr(external.subprocess, "run", failing_run)

    with pytest.raises(ParseError) as excinfo:
        parse_document(b"garbage", "application/msword", "old.doc")

    assert excinfo.value.kind is ParseErrorKind.MALFORMED
    assert "not a Word document" in excinfo.value.reason


def test_legacy_doc_timeout_is_malformed(monkeypatch) -> None:
    def slow_run(argv, **kwargs):
        raise subprocess.TimeoutExpired(argv, kwargs.get("timeout"))

    monkeypatch.setattr(external.shutil, "which", lambda name: f"/usr/bin/{name}")
    monkeypatch.setattr(external.subprocess, "run", slow_run)

    with pytest.raises(ParseError) as excinfo:
        parse_document(b"slow", "application/msword", "old.doc")

    assert excinfo.value.kind is ParseErrorKind.MALFORMED
    assert "timed out" in excinfo.value.reason
