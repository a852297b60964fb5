"""Tests for positional PDF reconstruction."""

from __future__ import annotations

import io
import re

import pytest
from pypdf import PdfWriter
from pypdf.errors import PdfReadError

from src.normalizer import pdf as pdf_module
from src.normalizer.base import DocumentFormat, ParseError, ParseErrorKind
from src.normalizer.config import NormalizerConfig, PdfOptions
from src.normalizer.dispatcher import parse_document
from tests.normalizer.builders import build_pdf_bytes, text_stream


def _parse(buffer: bytes, config: NormalizerConfig | None = None):
    return parse_document(buffer, "application/pdf", "sample.pdf", config=config)


def test_pdf_spans_are_absolutely_positioned() -> None:
    document = _parse(build_pdf_bytes(text_stream("Hello PDF")))

    assert document.metadata.format is DocumentFormat.PDF
    assert document.metadata.has_structure is True
    assert document.text == "Hello PDF"
    assert document.html.startswith('<div class="pdf-document" data-page-count="1">')
    assert '<section class="pdf-page" data-page="1" style="position:relative;width:612.00px;height:792.00px;">' in document.html
    assert '<span class="pdf-text"' in document.html
    assert "left:72.00px" in document.html
    assert "top:48.00px" in document.html
    assert "font-size:24.00px" in document.html
    assert "font-family:Helvetica" in document.html
    assert ">Hello PDF</span>" in document.html


def test_pdf_metadata_facts() -> None:
    document = _parse(build_pdf_bytes(text_stream("Facts")))

    assert document.metadata["page_count"] == 1
    assert document.metadata["pdf_version"] == "1.4"
    assert document.metadata["pdf_metadata"]["Producer"] == "docnorm tests"


def test_pdf_baseline_gap_breaks_lines() -> None:
    document = _parse(build_pdf_bytes(text_stream("First line", "Second line")))

    assert document.text == "First line\nSecond line"
    assert document.html.count('class="pdf-text"') == 2


def test_pdf_line_break_ratio_is_configurable() -> None:
    config = NormalizerConfig(pdf=PdfOptions(line_break_ratio=2.0))
    document = _parse(build_pdf_bytes(text_stream("First", "Second")), config)

    assert "\n" not in document.text
    assert "First" in document.text and "Second" in document.text


def test_pdf_spacing_operators_become_css() -> None:
    stream = "BT\n/F1 12 Tf\n2 Tc\n3 Tw\n72 700 Td\n(Spaced out) Tj\nET\n"
    document = _parse(build_pdf_bytes(stream))

    assert "letter-spacing:2.00px" in document.html
    assert "word-spacing:3.00px" in document.html


def test_pdf_horizontal_scaling_emits_scale_transform() -> None:
    stream = "BT\n/F1 10 Tf\n2 0 0 1 72 700 Tm\n(Wide) Tj\nET\n"
    document = _parse(build_pdf_bytes(stream))

    assert "transform:scaleX(2.0000)" in document.html
    assert "font-size:10.00px" in document.html


def test_pdf_subset_font_prefix_is_removed() -> None:
    document = _parse(build_pdf_bytes(text_stream("Subset"), base_font="ABCDEF+Garamond"))

    assert "font-family:Garamond" in document.html
    assert "ABCDEF" not in document.html


def test_pdf_page_without_text_gets_placeholder() -> None:
    document = _parse(build_pdf_bytes(text_stream("Only page one"), ""))

    assert document.metadata["page_count"] == 2
    assert 'data-page-count="2"' in document.html
    assert 'class="pdf-page pdf-page--empty" data-page="2"' in document.html
    assert "Page 2 contains no extractable text layer." in document.warnings
    assert document.text == "Only page one"


def test_pdf_without_any_text_layer_keeps_page_sections() -> None:
    document = _parse(build_pdf_bytes(""))

    assert document.text == ""
    assert document.metadata.has_structure is False
    assert "Page 1 contains no extractable text layer." in document.warnings


def test_pdf_text_only_fallback_when_no_spans() -> None:
    page = pdf_module._PageLayout(number=1, width=612, height=792, flat_text="Alpha\n\nBeta")
    extraction = pdf_module._Extraction(pages=[page], version="1.7", info={})

    document = pdf_module._build_document(extraction, [])

    assert document.html == '<div class="pdf-document pdf-document--text-only"><p>Alpha</p><p>Beta</p></div>'
    assert document.text == "Alpha\n\nBeta"
    assert "No positional text extracted; generated HTML from plain text content." in document.warnings


def test_pdf_relaxed_retry_on_corruption_signature(monkeypatch) -> None:
    original = pdf_module._read_document
    calls: list[bool] = []

    def flaky_reader(buffer: bytes, *, strict: bool):
        calls.append(strict)
        if strict:
            raise PdfReadError("startxref not found")
        return original(buffer, strict=strict)

    monkeypatch.setattr(pdf_module, "_read_document", flaky_reader)
    document = _parse(build_pdf_bytes(text_stream("Recovered")))

    assert calls == [True, False]
    assert document.text == "Recovered"
    assert document.warnings[0] == "Extracted with relaxed parsing due to parse error: startxref not found"


def test_pdf_broken_xref_offset_is_recovered_by_relaxed_read() -> None:
    buffer = build_pdf_bytes(text_stream("Recovered"))
    trailer_offset = str(buffer.index(b"trailer")).encode("ascii")
    corrupted = re.sub(rb"startxref\n\d+", b"startxref\n" + trailer_offset, buffer)

    document = _parse(corrupted)

    assert document.text == "Recovered"
    assert document.warnings[0].startswith("Extracted with relaxed parsing due to parse error: ")
    assert "xref" in document.warnings[0].lower()


def test_pdf_unrecognised_read_error_is_malformed(monkeypatch) -> None:
    def broken_reader(buffer: bytes, *, strict: bool):
        raise PdfReadError("Unexpected token in content stream")

    monkeypatch.setattr(pdf_module, "_read_document", broken_reader)

    with pytest.raises(ParseError) as excinfo:
        _parse(build_pdf_bytes(text_stream("Nope")))

    assert excinfo.value.kind is ParseErrorKind.MALFORMED
    assert excinfo.value.format is DocumentFormat.PDF


def test_pdf_second_failure_is_malformed(monkeypatch) -> None:
    def always_broken(buffer: bytes, *, strict: bool):
        raise PdfReadError("EOF marker not found")

    monkeypatch.setattr(pdf_module, "_read_document", always_broken)

    with pytest.raises(ParseError) as excinfo:
        _parse(b"%PDF-1.4 truncated")

    assert excinfo.value.kind is ParseErrorKind.MALFORMED
    assert "EOF marker not found" in excinfo.value.reason


def test_pdf_garbage_input_is_malformed() -> None:
    with pytest.raises(ParseError) as excinfo:
        _parse(b"this is not a pdf document at all")

    assert excinfo.value.kind is ParseErrorKind.MALFORMED


def test_pdf_encrypted_with_unknown_password_is_unsupported() -> None:
    writer = PdfWriter()
    writer.add_blank_page(width=612, height=792)
    writer.encrypt(user_password="secret", owner_password="owner")
    buffer = io.BytesIO()
    writer.write(buffer)

    with pytest.raises(ParseError) as excinfo:
        _parse(buffer.getvalue())

    assert excinfo.value.kind is ParseErrorKind.UNSUPPORTED_FORMAT
    assert excinfo.value.retryable is False


def test_normalize_buffer_trims_leading_junk_and_adds_eof() -> None:
    normalized = pdf_module._normalize_buffer(b"junk%PDF-1.4\nbody\x00\x00")

    assert normalized.startswith(b"%PDF-1.4")
    assert normalized.endswith(b"%%EOF\n")


def test_empty_pdf_buffer_returns_empty_document() -> None:
    document = _parse(b"")

    assert document.text == ""
    assert document.warnings[0] == "Document is empty"
