"""Plain text and Markdown parser."""

from __future__ import annotations

from dataclasses import dataclass

from markdown_it import MarkdownIt

from . import markup, utils
from .base import (
    DocumentFormat,
    FormatMetadata,
    NormalizedDocument,
    ParseRequest,
    empty_document,
)
from .config import MarkdownOptions
from .registry import registry


@dataclass(slots=True)
class TextParser:
    """Concrete :class:`DocumentParser` for plain text and Markdown sources."""

    name: str = "text"

    def parse(self, request: ParseRequest) -> NormalizedDocument:
        content, warnings = utils.decode_text(request.buffer)
        is_markdown = request.format is DocumentFormat.MARKDOWN

        if not content.strip():
            return empty_document(
                request.format,
                markup.EMPTY_PARAGRAPH,
                has_structure=is_markdown,
                warnings=warnings,
                facts={"line_count": 0, "char_count": 0},
            )

        if is_markdown:
            return _parse_markdown(content, request.config.markdown, warnings)
        return _parse_plain_text(content, warnings)


def build_markdown_renderer(options: MarkdownOptions) -> MarkdownIt:
    """Create a renderer for one parse call from immutable options."""

    renderer = MarkdownIt(
        "commonmark",
        {"breaks": options.breaks, "html": options.allow_html},
    )
    extensions = []
    if options.tables:
        extensions.append("table")
    if options.strikethrough:
        extensions.append("strikethrough")
    if extensions:
        renderer.enable(extensions)
    return renderer


def _parse_markdown(content: str, options: MarkdownOptions, warnings: list[str]) -> NormalizedDocument:
    renderer = build_markdown_renderer(options)
    tokens = renderer.parse(content)
    html = renderer.renderer.render(tokens, renderer.options, {})
    heading_count = sum(1 for token in tokens if token.type == "heading_open")

    return NormalizedDocument(
        text=content,
        html=html.strip() or markup.EMPTY_PARAGRAPH,
        metadata=FormatMetadata(
            format=DocumentFormat.MARKDOWN,
            has_structure=True,
            warnings=tuple(warnings),
            facts={
                "line_count": len(content.splitlines()),
                "char_count": len(content),
                "heading_count": heading_count,
            },
        ),
    )


def _parse_plain_text(content: str, warnings: list[str]) -> NormalizedDocument:
    html = markup.text_to_paragraph_html(content, separator="\n")
    return NormalizedDocument(
        text=content,
        html=html,
        metadata=FormatMetadata(
            format=DocumentFormat.TEXT,
            has_structure=False,
            warnings=tuple(warnings),
            facts={
                "line_count": len(content.splitlines()),
                "char_count": len(content),
            },
        ),
    )


text_parser = TextParser()
registry.register_parser(
    text_parser,
    DocumentFormat.TEXT,
    suffixes=(".txt", ".text", ".log"),
    media_types=("text/plain",),
    replace=True,
)
registry.register_parser(
    text_parser,
    DocumentFormat.MARKDOWN,
    suffixes=(".md", ".markdown"),
    media_types=("text/markdown", "text/x-markdown"),
    replace=True,
)

__all__ = ["TextParser", "build_markdown_renderer", "text_parser"]
