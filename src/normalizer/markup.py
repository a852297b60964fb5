"""HTML helpers shared by parsers that synthesize markup from text."""

from __future__ import annotations

import html
import re
from typing import TYPE_CHECKING, Mapping

if TYPE_CHECKING:  # pragma: no cover
    from .base import Asset

EMPTY_PARAGRAPH = "<p></p>"
DEFAULT_HEAD = '<head><meta charset="utf-8"/></head>'

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
_HTML_TAG = re.compile(r"<html[\s>]", re.IGNORECASE)


def escape(value: object) -> str:
    return html.escape("" if value is None else str(value), quote=True)


def escape_multiline(value: str) -> str:
    """Escape text and render its line breaks as ``<br/>``."""
    return escape(value).replace("\r\n", "\n").replace("\n", "<br/>")


def split_paragraphs(text: str) -> list[str]:
    normalized = text.replace("\r\n", "\n").replace("\r", "\n")
    return [block.strip() for block in _PARAGRAPH_BREAK.split(normalized) if block.strip()]


def text_to_paragraph_html(text: str, *, separator: str = "") -> str:
    """Wrap blank-line separated blocks in ``<p>`` elements.

    Without any paragraph boundary the whole escaped content becomes a single
    paragraph; empty input yields a single empty paragraph.
    """

    blocks = split_paragraphs(text or "")
    if not blocks:
        stripped = (text or "").strip()
        return f"<p>{escape_multiline(stripped)}</p>" if stripped else EMPTY_PARAGRAPH
    return separator.join(f"<p>{escape_multiline(block)}</p>" for block in blocks)


def render_attributes(attributes: Mapping[str, object | None]) -> str:
    """Render ``name="value"`` pairs, skipping ``None`` values."""

    parts = []
    for name, value in attributes.items():
        if value is None:
            continue
        if value is True:
            parts.append(name)
            continue
        parts.append(f'{name}="{escape(value)}"')
    return (" " + " ".join(parts)) if parts else ""


def wrap(tag: str, body: str, attributes: Mapping[str, object | None] | None = None) -> str:
    return f"<{tag}{render_attributes(attributes or {})}>{body}</{tag}>"


def asset_image_tag(asset: "Asset") -> str:
    """Render the ``<img>`` that references an extracted asset by ``cid:`` source."""

    attributes = {
        "src": f"cid:{asset.asset_id}",
        "data-asset-token": asset.token,
        "data-asset-id": asset.asset_id,
        "alt": asset.alt_text,
        "width": asset.width_px,
        "height": asset.height_px,
    }
    return f"<img{render_attributes(attributes)}/>"


def render_html_document(fragment: str, *, title: str | None = None) -> str:
    """Embed a fragment into a complete HTML document for storage and preview."""

    trimmed = (fragment or "").strip()
    if _HTML_TAG.search(trimmed):
        return trimmed
    head = DEFAULT_HEAD
    if title:
        head = f'<head><meta charset="utf-8"/><title>{escape(title)}</title></head>'
    return f"<html>{head}<body>{trimmed}</body></html>"


__all__ = [
    "DEFAULT_HEAD",
    "EMPTY_PARAGRAPH",
    "asset_image_tag",
    "escape",
    "escape_multiline",
    "render_attributes",
    "render_html_document",
    "split_paragraphs",
    "text_to_paragraph_html",
    "wrap",
]
