"""Single entry point that routes raw buffers to the right format parser."""

from __future__ import annotations

import logging

from .base import DocumentFormat, NormalizedDocument, ParseError, ParseRequest
from .config import NormalizerConfig
from .fetch import Fetcher
from .registry import ParserRegistry, registry

# Parser modules register themselves with the default registry on import.
from . import pdf, rtf, tabular, text, web, word  # noqa: F401  isort: skip

logger = logging.getLogger(__name__)


def detect_format(
    content_type: str | None,
    filename: str | None,
    *,
    registry_override: ParserRegistry | None = None,
) -> DocumentFormat | None:
    """Resolve the document format from the filename extension, then the content type."""

    active_registry = registry_override or registry
    return active_registry.resolve_format(content_type, filename)


def parse_document(
    buffer: bytes,
    content_type: str | None,
    filename: str | None,
    *,
    config: NormalizerConfig | None = None,
    fetcher: Fetcher | None = None,
    registry_override: ParserRegistry | None = None,
) -> NormalizedDocument:
    """Normalize one document.

    Raises :class:`ParseError` with ``UNSUPPORTED_FORMAT`` when neither the
    filename nor the content type identify a known format, and with
    ``MALFORMED`` when the selected parser cannot read the input.
    """

    active_registry = registry_override or registry
    fmt = active_registry.resolve_format(content_type, filename)
    if fmt is None:
        raise ParseError.unsupported(
            f"Unsupported document type: {content_type or 'unknown'} ({filename or 'unnamed'})"
        )

    parser = active_registry.require_parser(fmt)
    request = ParseRequest(
        buffer=bytes(buffer or b""),
        format=fmt,
        config=config or NormalizerConfig.default(),
        filename=filename,
        content_type=content_type,
        fetcher=fetcher,
    )

    logger.debug("Parsing %s as %s with parser '%s'", request.label, fmt.value, parser.name)
    try:
        document = parser.parse(request)
    except ParseError as exc:
        if exc.format is None:
            exc.format = fmt
        logger.warning("Failed to parse %s: %s", request.label, exc.reason)
        raise
    except Exception as exc:
        logger.warning("Parser '%s' raised while reading %s: %s", parser.name, request.label, exc)
        raise ParseError.malformed(f"{fmt.value.upper()} parsing error: {exc}", format=fmt) from exc

    for warning in document.warnings:
        logger.info("%s: %s", request.label, warning)
    logger.debug(
        "Parsed %s: %d chars of text, %d assets",
        request.label,
        len(document.text),
        len(document.assets),
    )
    return document


__all__ = ["detect_format", "parse_document"]
