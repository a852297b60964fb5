"""Word document parsers: DOCX through python-docx, legacy DOC through an extractor."""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterator
from zipfile import BadZipFile

from docx import Document as load_docx
from docx.document import Document as DocxDocument
from docx.opc.exceptions import PackageNotFoundError
from docx.oxml.ns import qn
from docx.table import Table as DocxTable
from docx.table import _Cell
from docx.text.paragraph import Paragraph as DocxParagraph
from docx.text.run import Run as DocxRun

from . import assets, markup
from .base import (
    Asset,
    DocumentFormat,
    FormatMetadata,
    NormalizedDocument,
    ParseError,
    ParseRequest,
    empty_document,
)
from .external import ExternalTextExtractor, synthesize_text_document
from .registry import registry

logger = logging.getLogger(__name__)

DOCX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
LEGACY_DOC_WARNING = "Legacy DOC format - structure preservation is limited"

_LOAD_ERRORS = (PackageNotFoundError, BadZipFile, KeyError, ValueError)
_VMERGE_CONTINUE = "continue"
_FORMATTING_TAGS = (("strike", "s"), ("underline", "u"), ("italic", "em"), ("bold", "strong"))


@dataclass(slots=True)
class DocxParser:
    """Concrete :class:`DocumentParser` for DOCX sources."""

    name: str = "docx"

    def parse(self, request: ParseRequest) -> NormalizedDocument:
        if not request.buffer:
            return empty_document(DocumentFormat.DOCX, markup.EMPTY_PARAGRAPH, has_structure=True)

        try:
            docx_document = load_docx(io.BytesIO(request.buffer))
        except _LOAD_ERRORS as exc:
            raise ParseError.malformed(f"DOCX parsing error: {exc}", format=DocumentFormat.DOCX) from exc

        renderer = _DocxRenderer(docx_document)
        renderer.render()

        warnings = renderer.warnings
        text = "\n\n".join(renderer.text_blocks)
        if not text and not renderer.assets:
            warnings.insert(0, "DOCX file contained no extractable content")

        facts = _extract_core_properties(docx_document)
        facts.update(
            {
                "paragraph_count": renderer.paragraph_count,
                "table_count": renderer.table_count,
                "image_count": len(renderer.assets),
            }
        )
        return NormalizedDocument(
            text=text,
            html="".join(renderer.html_blocks) or markup.EMPTY_PARAGRAPH,
            assets=tuple(renderer.assets),
            metadata=FormatMetadata(
                format=DocumentFormat.DOCX,
                has_structure=True,
                warnings=tuple(warnings),
                facts=facts,
            ),
        )


@dataclass(slots=True)
class LegacyDocParser:
    """Text-only parser for binary ``.doc`` files."""

    name: str = "doc"

    def parse(self, request: ParseRequest) -> NormalizedDocument:
        options = request.config.extractors
        extractor = ExternalTextExtractor(
            options.doc,
            format=DocumentFormat.DOC,
            suffix=".doc",
            timeout=options.timeout,
        )
        text, warnings = extractor.extract(request.buffer)
        return synthesize_text_document(
            text,
            format=DocumentFormat.DOC,
            wrapper_class="word-document word-document--legacy",
            warnings=[LEGACY_DOC_WARNING, *warnings],
        )


@dataclass(slots=True)
class _DocxRenderer:
    """Single pass over the body producing HTML blocks, text blocks and assets."""

    document: DocxDocument
    html_blocks: list[str] = field(default_factory=list)
    text_blocks: list[str] = field(default_factory=list)
    assets: list[Asset] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    paragraph_count: int = 0
    table_count: int = 0
    _open_list: str | None = None
    _style_ids: frozenset[str] = frozenset()

    def render(self) -> None:
        self._style_ids = frozenset(
            style.style_id for style in self.document.styles if style.style_id
        )
        for block in _iter_document_blocks(self.document):
            if isinstance(block, DocxParagraph):
                self.paragraph_count += 1
                self._render_paragraph(block)
            else:
                self.table_count += 1
                self._close_list()
                self._render_table(block)
        self._close_list()

    def _render_paragraph(self, paragraph: DocxParagraph) -> None:
        self._check_style(paragraph)
        body, text = self._render_inline(paragraph)
        text = text.strip()
        if not body.strip():
            return

        list_tag = _list_tag(self.document, paragraph)
        if list_tag is not None:
            if self._open_list != list_tag:
                self._close_list()
                self.html_blocks.append(f"<{list_tag}>")
                self._open_list = list_tag
            self.html_blocks.append(f"<li>{body}</li>")
            if text:
                self.text_blocks.append(text)
            return

        self._close_list()
        style_name = _style_name(paragraph)
        heading_level = _detect_heading_level(paragraph)
        if style_name == "title":
            self.html_blocks.append(f'<h1 class="title">{body}</h1>')
        elif heading_level:
            self.html_blocks.append(f"<h{heading_level}>{body}</h{heading_level}>")
        else:
            self.html_blocks.append(f"<p>{body}</p>")
        if text:
            self.text_blocks.append(text)

    def _render_table(self, table: DocxTable) -> None:
        rows_html: list[str] = []
        rows_text: list[str] = []
        for row in table.rows:
            cells_html: list[str] = []
            cells_text: list[str] = []
            # row.cells repeats a merged cell once per grid column it spans
            for tc in row._tr.tc_lst:
                if tc.vMerge == _VMERGE_CONTINUE:
                    continue
                parts = [self._render_inline(paragraph) for paragraph in _Cell(tc, table).paragraphs]
                attributes = {
                    "colspan": tc.grid_span if tc.grid_span > 1 else None,
                    "rowspan": _row_span(tc),
                }
                body = "<br/>".join(body for body, _ in parts if body)
                cells_html.append(markup.wrap("td", body, attributes))
                cells_text.append(" ".join(text.strip() for _, text in parts if text.strip()))
            rows_html.append("<tr>" + "".join(cells_html) + "</tr>")
            if any(cells_text):
                rows_text.append(" | ".join(cells_text))

        if not rows_html:
            self.warnings.append("Encountered empty table while parsing DOCX")
            return
        self.html_blocks.append("<table><tbody>" + "".join(rows_html) + "</tbody></table>")
        if rows_text:
            self.text_blocks.append("\n".join(rows_text))

    def _render_inline(self, paragraph: DocxParagraph) -> tuple[str, str]:
        html_parts: list[str] = []
        text_parts: list[str] = []
        for child in paragraph._p.iterchildren():
            self._render_inline_element(child, paragraph, html_parts, text_parts)
        return "".join(html_parts), "".join(text_parts)

    def _render_inline_element(
        self,
        element: Any,
        paragraph: DocxParagraph,
        html_parts: list[str],
        text_parts: list[str],
    ) -> None:
        tag = element.tag
        if tag == qn("w:r"):
            self._render_run(DocxRun(element, paragraph), html_parts, text_parts)
        elif tag == qn("w:hyperlink"):
            inner_html: list[str] = []
            for child in element.iterchildren():
                self._render_inline_element(child, paragraph, inner_html, text_parts)
            href = self._hyperlink_target(element)
            body = "".join(inner_html)
            html_parts.append(markup.wrap("a", body, {"href": href}) if href else body)
        elif tag in (qn("w:ins"), qn("w:smartTag"), qn("w:fldSimple")):
            for child in element.iterchildren():
                self._render_inline_element(child, paragraph, html_parts, text_parts)

    def _render_run(self, run: DocxRun, html_parts: list[str], text_parts: list[str]) -> None:
        pieces: list[str] = []
        for child in run._r.iterchildren():
            tag = child.tag
            if tag == qn("w:t"):
                value = child.text or ""
                pieces.append(markup.escape(value))
                text_parts.append(value)
            elif tag == qn("w:tab"):
                pieces.append("\t")
                text_parts.append("\t")
            elif tag in (qn("w:br"), qn("w:cr")):
                pieces.append("<br/>")
                text_parts.append("\n")
            elif tag == qn("w:drawing"):
                image = self._register_image(child)
                if image:
                    pieces.append(image)

        body = "".join(pieces)
        if not body:
            return
        flags = {
            "bold": bool(run.bold),
            "italic": bool(run.italic),
            "underline": bool(run.underline),
            "strike": bool(run.font.strike),
        }
        for flag, wrapper in _FORMATTING_TAGS:
            if flags[flag]:
                body = f"<{wrapper}>{body}</{wrapper}>"
        html_parts.append(body)

    def _register_image(self, drawing: Any) -> str | None:
        embeds = drawing.xpath(".//a:blip/@r:embed")
        if not embeds:
            if drawing.xpath(".//a:blip/@r:link"):
                self.warnings.append("Skipped externally linked image in DOCX")
            return None

        rel_id = str(embeds[0])
        try:
            part = self.document.part.related_parts[rel_id]
            blob = part.blob
        except (KeyError, AttributeError):
            self.warnings.append(f"Image relationship '{rel_id}' could not be resolved")
            return None

        asset_id = assets.compute_asset_id(blob)
        token = assets.derive_asset_token("docx-image", len(self.assets), content_hash=asset_id)
        mime = getattr(part, "content_type", None) or "application/octet-stream"
        ext = assets.guess_extension(mime)
        width_px, height_px = _drawing_extent(drawing)
        alt_text = _drawing_alt_text(drawing)

        asset = Asset(
            token=token,
            asset_id=asset_id,
            data=blob,
            mime=mime,
            original_name=assets.sanitize_filename(alt_text or f"{token}.{ext}", ext),
            alt_text=alt_text,
            width_px=width_px,
            height_px=height_px,
        )
        self.assets.append(asset)
        return markup.asset_image_tag(asset)

    def _hyperlink_target(self, element: Any) -> str | None:
        rel_id = element.get(qn("r:id"))
        if rel_id:
            rel = self.document.part.rels.get(rel_id)
            if rel is not None and rel.is_external:
                return rel.target_ref
            self.warnings.append(f"Hyperlink relationship '{rel_id}' could not be resolved")
            return None
        anchor = element.get(qn("w:anchor"))
        return f"#{anchor}" if anchor else None

    def _check_style(self, paragraph: DocxParagraph) -> None:
        p_pr = paragraph._p.pPr
        if p_pr is None or p_pr.pStyle is None:
            return
        style_id = p_pr.pStyle.val
        if style_id and style_id not in self._style_ids:
            self.warnings.append(f"Unrecognised paragraph style '{style_id}'")

    def _close_list(self) -> None:
        if self._open_list is not None:
            self.html_blocks.append(f"</{self._open_list}>")
            self._open_list = None


def _iter_document_blocks(doc: DocxDocument) -> Iterator[DocxParagraph | DocxTable]:
    """Yield block-level elements preserving document order."""

    body = doc.element.body
    for child in body.iterchildren():
        if child.tag == qn("w:p"):
            yield DocxParagraph(child, doc)
        elif child.tag == qn("w:tbl"):
            yield DocxTable(child, doc)


def _row_span(tc: Any) -> int | None:
    if tc.vMerge is None:
        return None
    span = tc.bottom - tc.top
    return span if span > 1 else None


def _style_name(paragraph: DocxParagraph) -> str:
    style = paragraph.style
    if style is None or not style.name:
        return ""
    return style.name.lower()


def _detect_heading_level(paragraph: DocxParagraph) -> int | None:
    name = _style_name(paragraph)
    if name.startswith("heading"):
        parts = name.split()
        if len(parts) >= 2 and parts[1].isdigit():
            level = int(parts[1])
            if 1 <= level <= 6:
                return level
    return None


def _list_tag(doc: DocxDocument, paragraph: DocxParagraph) -> str | None:
    """Return ``"ul"``/``"ol"`` for list paragraphs, ``None`` otherwise."""

    num_pr = paragraph._p.pPr.numPr if paragraph._p.pPr is not None else None
    if num_pr is not None and num_pr.numId is not None:
        level = num_pr.ilvl.val if num_pr.ilvl is not None else 0
        fmt = _numbering_format(doc, num_pr.numId.val, level)
        if fmt is not None:
            return "ul" if fmt in ("bullet", "none") else "ol"
    if not _is_list_item(paragraph):
        return None
    return "ol" if "number" in _style_name(paragraph) else "ul"


def _is_list_item(paragraph: DocxParagraph) -> bool:
    style = getattr(paragraph.style, "name", "") or ""
    if "list" in style.lower():
        return True

    base_style = getattr(paragraph.style, "base_style", None)
    while base_style is not None:
        name = getattr(base_style, "name", "") or ""
        if "list" in name.lower():
            return True
        base_style = getattr(base_style, "base_style", None)
    return False


def _numbering_format(doc: DocxDocument, num_id: int, level: int) -> str | None:
    try:
        numbering = doc.part.numbering_part.element
    except (KeyError, NotImplementedError):
        return None
    abstract_ids = numbering.xpath(f'./w:num[@w:numId="{num_id}"]/w:abstractNumId/@w:val')
    if not abstract_ids:
        return None
    formats = numbering.xpath(
        f'./w:abstractNum[@w:abstractNumId="{abstract_ids[0]}"]/w:lvl[@w:ilvl="{level}"]/w:numFmt/@w:val'
    )
    return str(formats[0]) if formats else None


def _drawing_extent(drawing: Any) -> tuple[int | None, int | None]:
    extents = drawing.xpath(".//wp:extent")
    if not extents:
        return None, None
    extent = extents[0]
    return assets.emu_to_px(extent.get("cx")), assets.emu_to_px(extent.get("cy"))


def _drawing_alt_text(drawing: Any) -> str:
    for doc_pr in drawing.xpath(".//wp:docPr"):
        value = doc_pr.get("descr") or doc_pr.get("title") or ""
        if value.strip():
            return value.strip()
    return ""


def _extract_core_properties(doc: DocxDocument) -> dict[str, Any]:
    props = doc.core_properties
    mapping = {
        "title": props.title,
        "subject": props.subject,
        "author": props.author,
        "category": props.category,
        "comments": props.comments,
        "created": getattr(props, "created", None),
        "modified": getattr(props, "modified", None),
        "keywords": props.keywords,
    }
    sanitized: dict[str, Any] = {}
    for key, value in mapping.items():
        if value in (None, ""):
            continue
        if isinstance(value, datetime):
            sanitized[key] = value.isoformat()
        else:
            sanitized[key] = value
    return sanitized


docx_parser = DocxParser()
legacy_doc_parser = LegacyDocParser()
registry.register_parser(
    docx_parser,
    DocumentFormat.DOCX,
    suffixes=(".docx",),
    media_types=(DOCX_MEDIA_TYPE,),
    replace=True,
)
registry.register_parser(
    legacy_doc_parser,
    DocumentFormat.DOC,
    suffixes=(".doc",),
    media_types=("application/msword",),
    replace=True,
)

__all__ = ["DOCX_MEDIA_TYPE", "DocxParser", "LegacyDocParser", "docx_parser", "legacy_doc_parser"]
