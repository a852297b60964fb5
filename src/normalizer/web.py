"""HTML parser that preserves markup and registers image assets."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import PurePosixPath
from urllib.parse import urlparse

from bs4 import BeautifulSoup
from bs4.element import Tag

from . import assets, utils
from .base import (
    Asset,
    DocumentFormat,
    FormatMetadata,
    NormalizedDocument,
    ParseRequest,
    empty_document,
)
from .fetch import Fetcher, build_fetcher
from .registry import registry

logger = logging.getLogger(__name__)

TOKEN_ATTRIBUTE = "data-asset-token"
UNRESOLVED_ATTRIBUTE = "data-asset-unresolved"

_STRIPPED_TAGS = ("script", "style", "noscript")
_PARAGRAPH_MARK = "\u2029"
_LINE_MARK = "\u2028"
_INLINE_WHITESPACE = re.compile(r"[^\S\u2028\u2029]+")
_PARAGRAPH_TAGS = (
    "p", "h1", "h2", "h3", "h4", "h5", "h6", "blockquote", "pre", "table",
    "ul", "ol", "dl", "section", "article", "header", "footer", "figure", "title",
)
_LINE_TAGS = ("div", "li", "tr", "dt", "dd", "figcaption", "caption")


@dataclass(slots=True)
class WebParser:
    """Concrete :class:`DocumentParser` for HTML sources."""

    name: str = "html"

    def parse(self, request: ParseRequest) -> NormalizedDocument:
        if not request.buffer.strip():
            return empty_document(DocumentFormat.HTML, "", has_structure=True)

        soup = BeautifulSoup(request.buffer, "html.parser")
        for node in soup.find_all(_STRIPPED_TAGS):
            node.decompose()

        fetcher = request.fetcher or build_fetcher(request.config.fetch)
        warnings: list[str] = []
        registered = _register_images(soup, request.label, fetcher, warnings)

        text = _extract_text(soup)
        title_tag = soup.find("title")
        title = title_tag.get_text(strip=True) if title_tag is not None else ""
        if not text:
            warnings.append("No extractable text found in HTML document")

        return NormalizedDocument(
            text=text,
            html=str(soup),
            assets=tuple(registered),
            metadata=FormatMetadata(
                format=DocumentFormat.HTML,
                has_structure=True,
                warnings=tuple(warnings),
                facts={
                    "title": title,
                    "image_count": len(registered),
                    "link_count": len(soup.find_all("a")),
                    "unresolved_asset_count": sum(1 for item in registered if not item.is_resolved),
                },
            ),
        )


def _register_images(soup: BeautifulSoup, scope: str, fetcher: Fetcher, warnings: list[str]) -> list[Asset]:
    """Tokenize every ``<img src>`` in document order.

    Tokens depend only on the document label and the image position, never on
    fetch results, so a retried parse yields the same tokens even if a remote
    image became reachable in between.
    """

    registered: list[Asset] = []
    for img in soup.find_all("img"):
        src = _attribute(img, "src")
        if not src:
            continue
        token = assets.derive_asset_token("html-image", len(registered), scope=scope)
        img[TOKEN_ATTRIBUTE] = token

        data, mime, source_url = _resolve_source(src, fetcher, warnings)
        if data is None:
            img[UNRESOLVED_ATTRIBUTE] = "true"

        mime = mime or assets.guess_mime_from_name(src) or "application/octet-stream"
        ext = assets.guess_extension(mime)
        name_hint = _attribute(img, "data-filename") or _name_from_source(src) or f"{token}.{ext}"

        registered.append(
            Asset(
                token=token,
                asset_id=assets.compute_asset_id(data if data is not None else src.encode("utf-8")),
                data=data,
                mime=mime,
                original_name=assets.sanitize_filename(name_hint, ext),
                alt_text=_attribute(img, "alt").strip(),
                width_px=assets.parse_pixel_attribute(_attribute(img, "width"))
                or assets.extract_width_from_style(_attribute(img, "style")),
                height_px=assets.parse_pixel_attribute(_attribute(img, "height"))
                or assets.extract_height_from_style(_attribute(img, "style")),
                keep_original_language=_attribute(img, "translate").lower() == "no",
                source_url=source_url,
            )
        )
    return registered


def _resolve_source(
    src: str,
    fetcher: Fetcher,
    warnings: list[str],
) -> tuple[bytes | None, str | None, str | None]:
    """Return ``(data, mime, source_url)``; ``source_url`` is set only when unresolved."""

    if src.lower().startswith("data:"):
        decoded = assets.decode_data_uri(src)
        if decoded is not None:
            return decoded.data, decoded.mime, None
        warnings.append("Could not decode inline data URI image; kept as unresolved reference")
        return None, None, src

    if utils.is_http_url(src):
        try:
            fetched = fetcher(src)
        except Exception as exc:
            logger.warning("Fetching remote image %s failed: %s", src, exc)
            fetched = None
        if fetched is not None:
            return fetched.content, fetched.content_type, None
        logger.info("Remote image %s left unresolved", src)
        warnings.append(f"Remote image could not be fetched: {src}")
        return None, None, src

    warnings.append(f"Relative image reference left unresolved: {src}")
    return None, None, src


def _extract_text(soup: BeautifulSoup) -> str:
    """Project visible text with blank lines between block-level elements.

    Works on a copy so separator markers never leak into the returned markup.
    """

    clone = BeautifulSoup(str(soup.body or soup), "html.parser")
    for tag in clone.find_all(_PARAGRAPH_TAGS):
        tag.insert_before(_PARAGRAPH_MARK)
        tag.append(_PARAGRAPH_MARK)
    for tag in clone.find_all(_LINE_TAGS):
        tag.append(_LINE_MARK)
    for tag in clone.find_all("br"):
        tag.replace_with(_LINE_MARK)

    collapsed = _INLINE_WHITESPACE.sub(" ", clone.get_text())
    paragraphs = []
    for block in collapsed.split(_PARAGRAPH_MARK):
        lines = [line.strip() for line in block.split(_LINE_MARK)]
        joined = "\n".join(line for line in lines if line)
        if joined:
            paragraphs.append(joined)
    return "\n\n".join(paragraphs)


def _name_from_source(src: str) -> str | None:
    if src.lower().startswith("data:"):
        return None
    name = PurePosixPath(urlparse(src).path).name
    return name or None


def _attribute(tag: Tag, name: str) -> str:
    value = tag.get(name)
    if value is None:
        return ""
    if isinstance(value, list):
        return " ".join(value)
    return str(value)


web_parser = WebParser()
registry.register_parser(
    web_parser,
    DocumentFormat.HTML,
    suffixes=(".html", ".htm", ".xhtml"),
    media_types=("text/html", "application/xhtml+xml"),
    replace=True,
)

__all__ = ["TOKEN_ATTRIBUTE", "UNRESOLVED_ATTRIBUTE", "WebParser", "web_parser"]
