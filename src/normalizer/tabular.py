"""Parsers for tabular and structured data: CSV, XML and JSON."""

from __future__ import annotations

import csv
import io
import json
import xml.etree.ElementTree as ElementTree
from dataclasses import dataclass
from typing import Any, Sequence

from . import markup, utils
from .base import (
    DocumentFormat,
    FormatMetadata,
    NormalizedDocument,
    ParseError,
    ParseRequest,
    empty_document,
)
from .registry import registry

_EMPTY_CSV_HTML = "<p>Empty CSV file</p>"
_XML_WRAPPER = '<pre class="xml-document"><code>{}</code></pre>'
_JSON_WRAPPER = '<pre class="json-document"><code>{}</code></pre>'


@dataclass(slots=True)
class CsvParser:
    """Render CSV records as an HTML table with a ``" | "`` text projection."""

    name: str = "csv"

    def parse(self, request: ParseRequest) -> NormalizedDocument:
        content, warnings = utils.decode_text(request.buffer)
        options = request.config.tabular

        try:
            records = [
                [cell.strip() for cell in record]
                for record in csv.reader(io.StringIO(content, newline=""), delimiter=options.csv_delimiter)
                if any(cell.strip() for cell in record)
            ]
        except csv.Error as exc:
            raise ParseError.malformed(f"CSV parsing error: {exc}", format=DocumentFormat.CSV) from exc

        if not records:
            return empty_document(
                DocumentFormat.CSV,
                _EMPTY_CSV_HTML,
                warnings=warnings,
                facts={"row_count": 0, "column_count": 0, "columns": [], "empty": True},
            )

        header, *body = records
        rows = [_fit_row(row, len(header), index, warnings) for index, row in enumerate(body, start=2)]

        if not rows:
            warnings.append("CSV file contains a header row but no data rows")

        lines = [options.csv_separator.join(row) for row in rows] or [options.csv_separator.join(header)]
        return NormalizedDocument(
            text="\n".join(lines),
            html=_render_table(header, rows),
            metadata=FormatMetadata(
                format=DocumentFormat.CSV,
                has_structure=bool(rows),
                warnings=tuple(warnings),
                facts={
                    "row_count": len(rows),
                    "column_count": len(header),
                    "columns": list(header),
                    "empty": not rows,
                },
            ),
        )


@dataclass(slots=True)
class XmlParser:
    """Extract leaf text from XML and show the original markup for review."""

    name: str = "xml"

    def parse(self, request: ParseRequest) -> NormalizedDocument:
        source, warnings = utils.decode_text(request.buffer)
        if not source.strip():
            return empty_document(DocumentFormat.XML, _XML_WRAPPER.format(""), warnings=warnings)

        try:
            root = ElementTree.fromstring(request.buffer)
        except ElementTree.ParseError as exc:
            raise ParseError.malformed(f"XML parsing error: {exc}", format=DocumentFormat.XML) from exc

        text = " ".join(" ".join(root.itertext()).split())
        if not text:
            warnings.append("XML document contains no text content")

        return NormalizedDocument(
            text=text,
            html=_XML_WRAPPER.format(markup.escape(source.strip())),
            metadata=FormatMetadata(
                format=DocumentFormat.XML,
                has_structure=True,
                warnings=tuple(warnings),
                facts={
                    "root_element": _local_name(root.tag),
                    "element_count": sum(1 for _ in root.iter()),
                },
            ),
        )


@dataclass(slots=True)
class JsonParser:
    """Pretty-print JSON for both the text projection and a preformatted block."""

    name: str = "json"

    def parse(self, request: ParseRequest) -> NormalizedDocument:
        content, warnings = utils.decode_text(request.buffer)
        if not content.strip():
            return empty_document(DocumentFormat.JSON, _JSON_WRAPPER.format(""), warnings=warnings)

        try:
            data = json.loads(content)
        except ValueError as exc:
            raise ParseError.malformed(f"JSON parsing error: {exc}", format=DocumentFormat.JSON) from exc

        text = json.dumps(data, indent=2, ensure_ascii=False)
        return NormalizedDocument(
            text=text,
            html=_JSON_WRAPPER.format(markup.escape(text)),
            metadata=FormatMetadata(
                format=DocumentFormat.JSON,
                has_structure=True,
                warnings=tuple(warnings),
                facts={
                    "is_array": isinstance(data, list),
                    "item_count": _item_count(data),
                },
            ),
        )


def _fit_row(row: list[str], width: int, line_number: int, warnings: list[str]) -> list[str]:
    if len(row) == width:
        return row
    if len(row) < width:
        return row + [""] * (width - len(row))
    warnings.append(f"Row {line_number} has {len(row)} cells but the header defines {width}; extra cells dropped")
    return row[:width]


def _render_table(header: Sequence[str], rows: Sequence[Sequence[str]]) -> str:
    head = "".join(f"<th>{markup.escape(cell)}</th>" for cell in header)
    body = "".join(
        "<tr>" + "".join(f"<td>{markup.escape(cell)}</td>" for cell in row) + "</tr>"
        for row in rows
    )
    return f'<table class="csv-table"><thead><tr>{head}</tr></thead><tbody>{body}</tbody></table>'


def _item_count(data: Any) -> int:
    if isinstance(data, (list, dict)):
        return len(data)
    return 0


def _local_name(tag: str) -> str:
    if tag.startswith("{"):
        return tag.split("}", 1)[1]
    return tag


csv_parser = CsvParser()
xml_parser = XmlParser()
json_parser = JsonParser()

registry.register_parser(
    csv_parser,
    DocumentFormat.CSV,
    suffixes=(".csv",),
    media_types=("text/csv", "application/csv"),
    replace=True,
)
registry.register_parser(
    xml_parser,
    DocumentFormat.XML,
    suffixes=(".xml",),
    media_types=("application/xml", "text/xml"),
    replace=True,
)
registry.register_parser(
    json_parser,
    DocumentFormat.JSON,
    suffixes=(".json",),
    media_types=("application/json", "text/json"),
    replace=True,
)

__all__ = ["CsvParser", "JsonParser", "XmlParser", "csv_parser", "json_parser", "xml_parser"]
