"""Core normalization interfaces and data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Iterable, Mapping, Protocol

from .assets import asset_storage_key

if TYPE_CHECKING:  # pragma: no cover - import cycle guard
    from .config import NormalizerConfig
    from .fetch import Fetcher


class DocumentFormat(str, Enum):
    """Closed set of input formats understood by the dispatcher."""

    PDF = "pdf"
    DOCX = "docx"
    DOC = "doc"
    HTML = "html"
    TEXT = "text"
    MARKDOWN = "markdown"
    RTF = "rtf"
    ODT = "odt"
    CSV = "csv"
    XML = "xml"
    JSON = "json"


class ParseErrorKind(str, Enum):
    UNSUPPORTED_FORMAT = "unsupported_format"
    MALFORMED = "malformed"


class ParseError(RuntimeError):
    """Raised when no usable text or HTML can be produced for an input."""

    def __init__(
        self,
        reason: str,
        *,
        kind: ParseErrorKind = ParseErrorKind.MALFORMED,
        format: DocumentFormat | None = None,
    ) -> None:
        super().__init__(reason)
        self.reason = reason
        self.kind = kind
        self.format = format

    @classmethod
    def unsupported(cls, reason: str, *, format: DocumentFormat | None = None) -> "ParseError":
        return cls(reason, kind=ParseErrorKind.UNSUPPORTED_FORMAT, format=format)

    @classmethod
    def malformed(cls, reason: str, *, format: DocumentFormat | None = None) -> "ParseError":
        return cls(reason, kind=ParseErrorKind.MALFORMED, format=format)

    @property
    def retryable(self) -> bool:
        """Configuration gaps never succeed on retry; malformed input might after repair."""
        return self.kind is ParseErrorKind.MALFORMED

    def __repr__(self) -> str:
        return f"ParseError(kind={self.kind.value!r}, format={self.format!r}, reason={self.reason!r})"


@dataclass(frozen=True, slots=True)
class Asset:
    """An embedded binary extracted from a document and referenced from its HTML."""

    token: str
    asset_id: str
    data: bytes | None = None
    mime: str = "application/octet-stream"
    original_name: str = "asset.bin"
    alt_text: str = ""
    width_px: int | None = None
    height_px: int | None = None
    keep_original_language: bool = False
    source_url: str | None = None

    @property
    def is_resolved(self) -> bool:
        return self.data is not None

    @property
    def size(self) -> int:
        return len(self.data) if self.data is not None else 0

    def storage_key(self) -> str:
        """Content-addressed object key shared by byte-identical assets."""
        return asset_storage_key(self.asset_id, self.original_name)

    def to_dict(self) -> dict[str, Any]:
        return {
            "token": self.token,
            "asset_id": self.asset_id,
            "mime": self.mime,
            "original_name": self.original_name,
            "alt_text": self.alt_text,
            "width_px": self.width_px,
            "height_px": self.height_px,
            "keep_original_language": self.keep_original_language,
            "source_url": self.source_url,
            "bytes": self.size,
            "resolved": self.is_resolved,
        }


@dataclass(frozen=True, slots=True)
class FormatMetadata:
    """Format tag, fidelity flag, warnings and format-specific facts."""

    format: DocumentFormat
    has_structure: bool
    warnings: tuple[str, ...] = ()
    facts: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "warnings", _dedupe(self.warnings))
        object.__setattr__(self, "facts", MappingProxyType(dict(self.facts)))

    def __getitem__(self, key: str) -> Any:
        return self.facts[key]

    def __contains__(self, key: object) -> bool:
        return key in self.facts

    def get(self, key: str, default: Any = None) -> Any:
        return self.facts.get(key, default)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "format": self.format.value,
            "has_structure": self.has_structure,
            "warnings": list(self.warnings),
        }
        payload.update(self.facts)
        return payload


@dataclass(frozen=True, slots=True)
class NormalizedDocument:
    """Format-independent parser output: text, HTML and assets."""

    text: str
    html: str
    metadata: FormatMetadata
    assets: tuple[Asset, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "assets", tuple(self.assets))

    @property
    def warnings(self) -> tuple[str, ...]:
        return self.metadata.warnings

    def is_empty(self) -> bool:
        return not self.text.strip()

    def asset_tokens(self) -> list[str]:
        return [asset.token for asset in self.assets]

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "html": self.html,
            "assets": [asset.to_dict() for asset in self.assets],
            "metadata": self.metadata.to_dict(),
        }


@dataclass(frozen=True, slots=True)
class ParseRequest:
    """Everything a parser needs for one invocation."""

    buffer: bytes
    format: DocumentFormat
    config: "NormalizerConfig"
    filename: str | None = None
    content_type: str | None = None
    fetcher: "Fetcher | None" = None

    @property
    def label(self) -> str:
        return self.filename or f"document.{self.format.value}"


class DocumentParser(Protocol):
    """Contract shared by all concrete parsers."""

    @property
    def name(self) -> str:
        ...

    def parse(self, request: ParseRequest) -> NormalizedDocument:
        ...


def empty_document(
    format: DocumentFormat,
    html: str,
    *,
    has_structure: bool = False,
    warnings: Iterable[str] = (),
    facts: Mapping[str, Any] | None = None,
) -> NormalizedDocument:
    """Build the explicit empty-with-warning result used for empty input."""

    notes = ["Document is empty", *warnings]
    return NormalizedDocument(
        text="",
        html=html,
        metadata=FormatMetadata(
            format=format,
            has_structure=has_structure,
            warnings=tuple(notes),
            facts=facts or {},
        ),
    )


def _dedupe(values: Iterable[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(value for value in values if value))


__all__ = [
    "Asset",
    "DocumentFormat",
    "DocumentParser",
    "FormatMetadata",
    "NormalizedDocument",
    "ParseError",
    "ParseErrorKind",
    "ParseRequest",
    "empty_document",
]
