"""Parser registry mapping each document format to its implementation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

from . import utils
from .base import DocumentFormat, DocumentParser, ParseError

_GENERIC_TEXT_PREFIX = "text/"


@dataclass(slots=True)
class _RegistryEntry:
    format: DocumentFormat
    parser: DocumentParser
    suffixes: tuple[str, ...]
    media_types: tuple[str, ...]


class ParserRegistry:
    """Manage parser implementations and resolve formats from names and media types."""

    def __init__(self) -> None:
        self._entries: dict[DocumentFormat, _RegistryEntry] = {}

    def register_parser(
        self,
        parser: DocumentParser,
        format: DocumentFormat,
        *,
        suffixes: Sequence[str] | None = None,
        media_types: Sequence[str] | None = None,
        replace: bool = False,
    ) -> None:
        if not parser.name:
            raise ValueError("Parser must define a non-empty name")
        if not replace and format in self._entries:
            raise ValueError(f"Format '{format.value}' already registered")

        suffix_spec = utils.normalize_suffixes(suffixes, preserve_order=True)
        media_spec = _normalize_media_types(media_types)

        for other in self._entries.values():
            if other.format is format:
                continue
            clash = set(other.suffixes) & set(suffix_spec)
            if clash:
                raise ValueError(
                    f"Suffix {sorted(clash)} already claimed by format '{other.format.value}'"
                )

        self._entries[format] = _RegistryEntry(
            format=format,
            parser=parser,
            suffixes=suffix_spec,
            media_types=media_spec,
        )

    def unregister(self, format: DocumentFormat) -> None:
        self._entries.pop(format, None)

    def get_registered_formats(self) -> list[DocumentFormat]:
        return list(self._entries)

    def missing_formats(self) -> list[DocumentFormat]:
        """Formats of the closed ``DocumentFormat`` set that have no parser."""
        return [member for member in DocumentFormat if member not in self._entries]

    def supported_suffixes(self) -> tuple[str, ...]:
        suffixes: list[str] = []
        for entry in self._entries.values():
            suffixes.extend(entry.suffixes)
        return tuple(dict.fromkeys(suffixes))

    def resolve_format(self, content_type: str | None, filename: str | None) -> DocumentFormat | None:
        """Resolve a format from the filename suffix, then from the content type."""

        suffix = utils.filename_suffix(filename)
        if suffix:
            for entry in self._entries.values():
                if suffix in entry.suffixes:
                    return entry.format

        media_type = utils.normalize_media_type(content_type)
        if media_type is None:
            return None
        for entry in self._entries.values():
            if media_type in entry.media_types:
                return entry.format
        if media_type.startswith(_GENERIC_TEXT_PREFIX) and DocumentFormat.TEXT in self._entries:
            return DocumentFormat.TEXT
        return None

    def find_parser(self, format: DocumentFormat) -> DocumentParser | None:
        entry = self._entries.get(format)
        return entry.parser if entry is not None else None

    def require_parser(self, format: DocumentFormat) -> DocumentParser:
        parser = self.find_parser(format)
        if parser is None:
            raise ParseError.unsupported(
                f"No parser registered for format '{format.value}'",
                format=format,
            )
        return parser

    def __iter__(self) -> Iterable[DocumentParser]:
        for entry in self._entries.values():
            yield entry.parser


def _normalize_media_types(values: Sequence[str] | None) -> tuple[str, ...]:
    if not values:
        return ()
    normalized = {item.lower() for item in values if item}
    return tuple(sorted(normalized))


registry = ParserRegistry()
"""Default parser registry, populated as parser modules are imported."""
