"""PDF parser that reconstructs page layout from positioned text runs using pypdf."""

from __future__ import annotations

import io
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Sequence

from pypdf import PasswordType, PdfReader
from pypdf.errors import DependencyError, PdfReadError

from . import assets, markup
from .base import (
    DocumentFormat,
    FormatMetadata,
    NormalizedDocument,
    ParseError,
    ParseRequest,
    empty_document,
)
from .config import PdfOptions
from .registry import registry

logger = logging.getLogger(__name__)

_READ_ERRORS = (PdfReadError, ValueError, KeyError)
_CORRUPTION_SIGNATURES = (
    "xref",
    "startxref",
    "trailer",
    "eof marker",
    "invalid",
    "pdf starts with",
    "malformed",
    "stream has ended",
)
_PDF_HEADER = b"%PDF-"
_EOF_MARKER = b"%%EOF"
_SPAN_BASE_STYLE = ("position:absolute", "white-space:pre", "transform-origin:0 0")
_EXCESS_NEWLINES = re.compile(r"\n{3,}")
_INTRALINE_WHITESPACE_PATTERN = re.compile(r"[^\S\n]+")
_IDENTITY = (1.0, 0.0, 0.0, 1.0, 0.0, 0.0)


@dataclass(slots=True)
class _PageLayout:
    """Spans and text projection collected for a single page."""

    number: int
    width: float
    height: float
    spans: list[str] = field(default_factory=list)
    text: str = ""
    flat_text: str = ""


@dataclass(slots=True)
class _Extraction:
    pages: list[_PageLayout]
    version: str | None
    info: dict[str, str]


@dataclass(slots=True)
class PdfParser:
    """Concrete :class:`DocumentParser` for PDF sources."""

    name: str = "pdf"

    def parse(self, request: ParseRequest) -> NormalizedDocument:
        if not request.buffer.strip():
            return empty_document(
                DocumentFormat.PDF,
                '<div class="pdf-document pdf-document--empty"></div>',
                facts={"page_count": 0},
            )

        options = request.config.pdf
        warnings: list[str] = []
        try:
            extraction = _extract(request.buffer, options, strict=True)
        except _READ_ERRORS as exc:
            if not _should_retry(exc):
                raise ParseError.malformed(f"PDF parsing error: {exc}", format=DocumentFormat.PDF) from exc
            logger.info("Strict PDF read of %s failed (%s); retrying relaxed", request.label, exc)
            try:
                extraction = _extract(_normalize_buffer(request.buffer), options, strict=False)
            except _READ_ERRORS as retry_exc:
                raise ParseError.malformed(
                    f"PDF parsing error: {retry_exc}", format=DocumentFormat.PDF
                ) from retry_exc
            warnings.append(f"Extracted with relaxed parsing due to parse error: {exc}")

        return _build_document(extraction, warnings)


def _build_document(extraction: _Extraction, warnings: list[str]) -> NormalizedDocument:
    pages = extraction.pages
    has_spans = any(page.spans for page in pages)
    text = "\n\n".join(page.text for page in pages if page.text).strip()

    flat = "\n\n".join(page.flat_text.strip() for page in pages if page.flat_text.strip())

    if has_spans or not flat:
        sections = []
        for page in pages:
            if not page.spans:
                warnings.append(f"Page {page.number} contains no extractable text layer.")
            sections.append(_render_page(page))
        html = f'<div class="pdf-document" data-page-count="{len(pages)}">{"".join(sections)}</div>'
    else:
        warnings.append("No positional text extracted; generated HTML from plain text content.")
        text = text or flat
        html = _render_text_only(flat)

    if not text:
        warnings.append("PDF yielded no extractable text")

    return NormalizedDocument(
        text=text,
        html=html,
        metadata=FormatMetadata(
            format=DocumentFormat.PDF,
            has_structure=has_spans,
            warnings=tuple(warnings),
            facts={
                "page_count": len(pages),
                "pdf_version": extraction.version,
                "pdf_metadata": extraction.info,
            },
        ),
    )


def _read_document(buffer: bytes, *, strict: bool) -> PdfReader:
    return PdfReader(io.BytesIO(buffer), strict=strict)


def _extract(buffer: bytes, options: PdfOptions, *, strict: bool) -> _Extraction:
    reader = _read_document(buffer, strict=strict)
    if reader.is_encrypted and not _try_decrypt(reader):
        raise ParseError.unsupported(
            "PDF is encrypted and could not be opened without a password",
            format=DocumentFormat.PDF,
        )

    pages = [
        _collect_page(page, number, options)
        for number, page in enumerate(reader.pages, start=1)
    ]
    return _Extraction(
        pages=pages,
        version=_pdf_version(reader),
        info=_normalize_pdf_metadata(getattr(reader, "metadata", None) or {}),
    )


def _try_decrypt(reader: PdfReader) -> bool:
    try:
        result = reader.decrypt("")
    except (PdfReadError, DependencyError, NotImplementedError, ValueError) as exc:
        logger.warning("Unable to decrypt PDF with an empty password: %s", exc)
        return False
    return result != PasswordType.NOT_DECRYPTED


def _should_retry(exc: BaseException) -> bool:
    message = str(exc).lower()
    return any(signature in message for signature in _CORRUPTION_SIGNATURES)


def _normalize_buffer(buffer: bytes) -> bytes:
    """Drop junk before the header and make sure an EOF marker terminates the file."""

    start = buffer.find(_PDF_HEADER)
    normalized = buffer[start:] if start > 0 else buffer
    normalized = normalized.rstrip(b"\x00 \t\r\n")
    if _EOF_MARKER not in normalized[-1024:]:
        normalized += b"\n" + _EOF_MARKER
    return normalized + b"\n"


class _PageCollector:
    """Receives pypdf visitor callbacks and turns text runs into positioned spans."""

    def __init__(self, layout: _PageLayout, options: PdfOptions, origin: tuple[float, float]) -> None:
        self.layout = layout
        self.options = options
        self.origin_x, self.origin_y = origin
        self.char_spacing = 0.0
        self.word_spacing = 0.0
        self.last_baseline: float | None = None
        self.buffer: list[str] = []

    def before_operand(self, operator: Any, operands: Sequence[Any], cm: Any, tm: Any) -> None:
        if operator == b"Tc" and operands:
            self.char_spacing = _as_float(operands[0])
        elif operator == b"Tw" and operands:
            self.word_spacing = _as_float(operands[0])

    def visit_text(self, text: str, cm: Any, tm: Any, font_dict: Any, font_size: Any) -> None:
        flattened = (text or "").replace("\r", " ").replace("\n", " ")
        if not flattened.strip():
            if flattened and self.buffer and not self.buffer[-1].endswith((" ", "\n")):
                self.buffer.append(" ")
            return

        matrix = _multiply(_as_matrix(tm), _as_matrix(cm))
        size = _as_float(font_size) or 1.0
        font_height = math.hypot(matrix[2], matrix[3]) * size
        font_width = math.hypot(matrix[0], matrix[1]) * size or font_height
        left = matrix[4] - self.origin_x
        baseline = matrix[5] - self.origin_y
        top = self.layout.height - baseline - font_height

        self.layout.spans.append(
            _render_span(
                flattened.strip(),
                left=left,
                top=top,
                font_height=font_height,
                font_width=font_width,
                font_family=_font_family(font_dict),
                char_spacing=self.char_spacing,
                word_spacing=self.word_spacing,
                options=self.options,
            )
        )

        if self.last_baseline is not None and font_height:
            gap = abs(self.last_baseline - baseline)
            if gap > font_height * self.options.line_break_ratio:
                self.buffer.append("\n")
        self.buffer.append(flattened)
        self.last_baseline = baseline

    def finish(self) -> None:
        joined = "".join(self.buffer)
        lines = [_INTRALINE_WHITESPACE_PATTERN.sub(" ", line).strip() for line in joined.split("\n")]
        self.layout.text = _EXCESS_NEWLINES.sub("\n\n", "\n".join(lines)).strip()


def _collect_page(page: Any, number: int, options: PdfOptions) -> _PageLayout:
    box = page.cropbox
    layout = _PageLayout(number=number, width=float(box.width), height=float(box.height))
    collector = _PageCollector(layout, options, origin=(float(box.left), float(box.bottom)))
    flat = page.extract_text(
        visitor_operand_before=collector.before_operand,
        visitor_text=collector.visit_text,
    )
    collector.finish()
    layout.flat_text = (flat or "").replace("\u00a0", " ")
    return layout


def _render_span(
    text: str,
    *,
    left: float,
    top: float,
    font_height: float,
    font_width: float,
    font_family: str | None,
    char_spacing: float,
    word_spacing: float,
    options: PdfOptions,
) -> str:
    styles = list(_SPAN_BASE_STYLE)
    styles.append(f"left:{assets.format_px(left)}")
    styles.append(f"top:{assets.format_px(top)}")
    if font_height:
        styles.append(f"font-size:{assets.format_px(font_height)}")
        styles.append(f"line-height:{assets.format_px(font_height)}")
        if abs(font_width - font_height) > options.width_tolerance:
            scale = font_width / font_height
            if scale > 0 and abs(scale - 1) > options.scale_tolerance:
                styles.append(f"transform:scaleX({scale:.4f})")
    if font_family:
        styles.append(f"font-family:{font_family}")
    if char_spacing:
        styles.append(f"letter-spacing:{assets.format_px(char_spacing)}")
    if word_spacing:
        styles.append(f"word-spacing:{assets.format_px(word_spacing)}")
    return f'<span class="pdf-text" style="{markup.escape(";".join(styles))}">{markup.escape(text)}</span>'


def _render_page(page: _PageLayout) -> str:
    size = f"position:relative;width:{assets.format_px(page.width)};height:{assets.format_px(page.height)};"
    if page.spans:
        return f'<section class="pdf-page" data-page="{page.number}" style="{size}">{"".join(page.spans)}</section>'
    return (
        f'<section class="pdf-page pdf-page--empty" data-page="{page.number}" style="{size}">'
        '<div class="pdf-page__empty">No selectable text on this page.</div></section>'
    )


def _render_text_only(text: str) -> str:
    body = markup.text_to_paragraph_html(text)
    return f'<div class="pdf-document pdf-document--text-only">{body}</div>'


def _font_family(font_dict: Any) -> str | None:
    if not font_dict:
        return None
    try:
        base_font = font_dict.get("/BaseFont")
    except AttributeError:
        return None
    return assets.sanitize_font_family(str(base_font)) if base_font else None


def _multiply(first: Sequence[float], second: Sequence[float]) -> tuple[float, ...]:
    """Compose two PDF affine matrices (``first`` applied before ``second``)."""

    a1, b1, c1, d1, e1, f1 = first
    a2, b2, c2, d2, e2, f2 = second
    return (
        a1 * a2 + b1 * c2,
        a1 * b2 + b1 * d2,
        c1 * a2 + d1 * c2,
        c1 * b2 + d1 * d2,
        e1 * a2 + f1 * c2 + e2,
        e1 * b2 + f1 * d2 + f2,
    )


def _as_matrix(value: Any) -> tuple[float, ...]:
    if value is None or len(value) < 6:
        return _IDENTITY
    return tuple(_as_float(item) for item in value[:6])


def _as_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _pdf_version(reader: PdfReader) -> str | None:
    header = getattr(reader, "pdf_header", "") or ""
    if isinstance(header, bytes):
        header = header.decode("latin-1", errors="ignore")
    header = header.strip()
    if header.startswith("%PDF-"):
        return header[len("%PDF-"):]
    return None


def _normalize_pdf_metadata(metadata: Any) -> dict[str, str]:
    result: dict[str, str] = {}
    if isinstance(metadata, dict):
        items = metadata.items()
    else:
        items = getattr(metadata, "items", lambda: [])()

    for key, value in items:
        if not isinstance(key, str):
            continue
        key = key.lstrip("/")
        if value is None:
            continue
        result[key] = str(value)
    return result


pdf_parser = PdfParser()
registry.register_parser(
    pdf_parser,
    DocumentFormat.PDF,
    suffixes=(".pdf",),
    media_types=("application/pdf",),
    replace=True,
)

__all__ = ["PdfParser", "pdf_parser"]
