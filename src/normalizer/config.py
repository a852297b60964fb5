"""Configuration for normalization runs.

Every section is a frozen dataclass so a loaded configuration can be threaded
through concurrent parse calls without any shared mutable state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Sequence

import yaml
from jsonschema import ValidationError, validate

from src import paths
from . import utils

DEFAULT_LINE_BREAK_RATIO = 0.8
DEFAULT_FETCH_TIMEOUT = 10.0
DEFAULT_FETCH_MAX_BYTES = 10 * 1024 * 1024
DEFAULT_CSV_SEPARATOR = " | "

_DEFAULT_OUTPUT_ROOT = paths.get_normalized_root()
_DEFAULT_SCAN_SUFFIXES = (
    ".pdf",
    ".docx",
    ".doc",
    ".html",
    ".htm",
    ".txt",
    ".md",
    ".markdown",
    ".rtf",
    ".odt",
    ".csv",
    ".xml",
    ".json",
)
_DEFAULT_CONFIG_PATH = Path("config/normalizer.yaml")

_STRING_LIST = {"type": "array", "items": {"type": "string"}}
_PATTERNS = {"type": ["string", "array"], "items": {"type": "string"}}
_POSITIVE = {"type": "number", "exclusiveMinimum": 0}
_COMMAND = {
    "type": ["string", "array"],
    "minLength": 1,
    "minItems": 1,
    "items": {"type": "string"},
}

CONFIG_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "output_root": {"type": "string", "minLength": 1},
        "scan": {
            "type": ["object", "null"],
            "properties": {
                "suffixes": _STRING_LIST,
                "recursive": {"type": "boolean"},
                "include": _PATTERNS,
                "exclude": _PATTERNS,
            },
            "additionalProperties": False,
        },
        "markdown": {
            "type": ["object", "null"],
            "properties": {
                "breaks": {"type": "boolean"},
                "tables": {"type": "boolean"},
                "strikethrough": {"type": "boolean"},
                "allow_html": {"type": "boolean"},
            },
            "additionalProperties": False,
        },
        "fetch": {
            "type": ["object", "null"],
            "properties": {
                "enabled": {"type": "boolean"},
                "timeout": _POSITIVE,
                "max_bytes": {"type": "integer", "minimum": 1},
                "user_agent": {"type": "string"},
            },
            "additionalProperties": False,
        },
        "pdf": {
            "type": ["object", "null"],
            "properties": {
                "line_break_ratio": _POSITIVE,
                "scale_tolerance": _POSITIVE,
                "width_tolerance": _POSITIVE,
            },
            "additionalProperties": False,
        },
        "extractors": {
            "type": ["object", "null"],
            "properties": {
                "doc": _COMMAND,
                "odt": _COMMAND,
                "timeout": _POSITIVE,
            },
            "additionalProperties": False,
        },
        "tabular": {
            "type": ["object", "null"],
            "properties": {
                "csv_separator": {"type": "string"},
                "csv_delimiter": {"type": "string", "minLength": 1, "maxLength": 1},
            },
            "additionalProperties": False,
        },
    },
    "additionalProperties": False,
}



@dataclass(frozen=True, slots=True)
class ScanConfig:
    suffixes: tuple[str, ...] = _DEFAULT_SCAN_SUFFIXES
    recursive: bool = True
    include: tuple[str, ...] = ()
    exclude: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class MarkdownOptions:
    breaks: bool = True
    tables: bool = True
    strikethrough: bool = True
    allow_html: bool = False


@dataclass(frozen=True, slots=True)
class FetchOptions:
    enabled: bool = True
    timeout: float = DEFAULT_FETCH_TIMEOUT
    max_bytes: int = DEFAULT_FETCH_MAX_BYTES
    user_agent: str = "docnorm/0.1 (+asset-fetch)"


@dataclass(frozen=True, slots=True)
class PdfOptions:
    line_break_ratio: float = DEFAULT_LINE_BREAK_RATIO
    scale_tolerance: float = 0.05
    width_tolerance: float = 0.1


@dataclass(frozen=True, slots=True)
class ExtractorOptions:
    """External text extractors; ``{path}`` is replaced with a temporary input file."""

    doc: tuple[str, ...] = ("antiword", "{path}")
    odt: tuple[str, ...] = ("odt2txt", "{path}")
    timeout: float = 60.0


@dataclass(frozen=True, slots=True)
class TabularOptions:
    csv_separator: str = DEFAULT_CSV_SEPARATOR
    csv_delimiter: str = ","


@dataclass(frozen=True, slots=True)
class NormalizerConfig:
    output_root: Path = field(default_factory=lambda: _resolve_path(_DEFAULT_OUTPUT_ROOT, base=None))
    scan: ScanConfig = field(default_factory=ScanConfig)
    markdown: MarkdownOptions = field(default_factory=MarkdownOptions)
    fetch: FetchOptions = field(default_factory=FetchOptions)
    pdf: PdfOptions = field(default_factory=PdfOptions)
    extractors: ExtractorOptions = field(default_factory=ExtractorOptions)
    tabular: TabularOptions = field(default_factory=TabularOptions)

    @classmethod
    def default(cls) -> "NormalizerConfig":
        return cls()

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any], *, base_path: Path | None) -> "NormalizerConfig":
        output_value = payload.get("output_root")
        if output_value is None:
            output_root = _resolve_path(_DEFAULT_OUTPUT_ROOT, base=base_path)
        else:
            output_root = _resolve_path(Path(str(output_value)), base=base_path)

        return cls(
            output_root=output_root,
            scan=_build_scan_config(_section(payload, "scan")),
            markdown=_build_markdown_options(_section(payload, "markdown")),
            fetch=_build_fetch_options(_section(payload, "fetch")),
            pdf=_build_pdf_options(_section(payload, "pdf")),
            extractors=_build_extractor_options(_section(payload, "extractors")),
            tabular=_build_tabular_options(_section(payload, "tabular")),
        )


def load_normalizer_config(config_path: Path | None) -> NormalizerConfig:
    """Load normalizer configuration from YAML or fallback to defaults."""

    if config_path is not None:
        resolved = Path(config_path).expanduser()
        if not resolved.exists():
            raise FileNotFoundError(f"Normalizer config '{resolved}' does not exist")
        return _load_from_file(resolved)

    default_path = _DEFAULT_CONFIG_PATH
    if default_path.exists():
        return _load_from_file(default_path)

    return NormalizerConfig.default()


def _load_from_file(path: Path) -> NormalizerConfig:
    raw = path.read_text(encoding="utf-8")
    try:
        data = yaml.safe_load(raw) or {}
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML in normalizer config '{path}': {exc}") from exc
    if not isinstance(data, Mapping):
        raise ValueError("Normalizer config must be a mapping")
    try:
        validate(instance=data, schema=CONFIG_SCHEMA)
    except ValidationError as exc:
        raise ValueError(f"Configuration validation failed: {exc.message}") from exc
    return NormalizerConfig.from_dict(data, base_path=path.parent)


def _section(payload: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = payload.get(key) or {}
    if not isinstance(value, Mapping):
        raise ValueError(f"Config section '{key}' must be a mapping")
    return value


def _build_scan_config(payload: Mapping[str, Any]) -> ScanConfig:
    suffixes = utils.normalize_suffixes(
        payload.get("suffixes"),
        default=_DEFAULT_SCAN_SUFFIXES,
        preserve_order=True,
    )
    recursive = bool(payload.get("recursive", True))
    include = tuple(_normalize_patterns(payload.get("include")))
    exclude = tuple(_normalize_patterns(payload.get("exclude")))
    return ScanConfig(
        suffixes=suffixes,
        recursive=recursive,
        include=include,
        exclude=exclude,
    )


def _build_markdown_options(payload: Mapping[str, Any]) -> MarkdownOptions:
    defaults = MarkdownOptions()
    return MarkdownOptions(
        breaks=bool(payload.get("breaks", defaults.breaks)),
        tables=bool(payload.get("tables", defaults.tables)),
        strikethrough=bool(payload.get("strikethrough", defaults.strikethrough)),
        allow_html=bool(payload.get("allow_html", defaults.allow_html)),
    )


def _build_fetch_options(payload: Mapping[str, Any]) -> FetchOptions:
    defaults = FetchOptions()
    timeout = _positive_number(payload.get("timeout", defaults.timeout), "fetch.timeout")
    max_bytes = int(_positive_number(payload.get("max_bytes", defaults.max_bytes), "fetch.max_bytes"))
    return FetchOptions(
        enabled=bool(payload.get("enabled", defaults.enabled)),
        timeout=timeout,
        max_bytes=max_bytes,
        user_agent=str(payload.get("user_agent", defaults.user_agent)),
    )


def _build_pdf_options(payload: Mapping[str, Any]) -> PdfOptions:
    defaults = PdfOptions()
    return PdfOptions(
        line_break_ratio=_positive_number(
            payload.get("line_break_ratio", defaults.line_break_ratio), "pdf.line_break_ratio"
        ),
        scale_tolerance=_positive_number(
            payload.get("scale_tolerance", defaults.scale_tolerance), "pdf.scale_tolerance"
        ),
        width_tolerance=_positive_number(
            payload.get("width_tolerance", defaults.width_tolerance), "pdf.width_tolerance"
        ),
    )


def _build_extractor_options(payload: Mapping[str, Any]) -> ExtractorOptions:
    defaults = ExtractorOptions()
    return ExtractorOptions(
        doc=_normalize_command(payload.get("doc"), defaults.doc, "extractors.doc"),
        odt=_normalize_command(payload.get("odt"), defaults.odt, "extractors.odt"),
        timeout=_positive_number(payload.get("timeout", defaults.timeout), "extractors.timeout"),
    )


def _build_tabular_options(payload: Mapping[str, Any]) -> TabularOptions:
    defaults = TabularOptions()
    delimiter = str(payload.get("csv_delimiter", defaults.csv_delimiter))
    if len(delimiter) != 1:
        raise ValueError("tabular.csv_delimiter must be a single character")
    return TabularOptions(
        csv_separator=str(payload.get("csv_separator", defaults.csv_separator)),
        csv_delimiter=delimiter,
    )


def _normalize_command(value: Any, default: tuple[str, ...], key: str) -> tuple[str, ...]:
    if value is None:
        return default
    if isinstance(value, str):
        tokens = value.split()
    elif isinstance(value, Sequence):
        tokens = [str(item) for item in value]
    else:
        raise ValueError(f"{key} must be a string or a list of arguments")
    if not tokens:
        raise ValueError(f"{key} must not be empty")
    return tuple(tokens)


def _positive_number(value: Any, key: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{key} must be a number") from exc
    if number <= 0:
        raise ValueError(f"{key} must be greater than zero")
    return number


def _normalize_patterns(values: Any) -> Sequence[str]:
    if not values:
        return ()
    if isinstance(values, str):
        values = [values]
    patterns: list[str] = []
    for raw in values:
        token = str(raw).strip()
        if token:
            patterns.append(token)
    return tuple(dict.fromkeys(patterns))


def _resolve_path(path: Path, *, base: Path | None) -> Path:
    candidate = path.expanduser()
    if candidate.is_absolute() or base is None:
        return candidate.resolve()
    return (base / candidate).resolve()


__all__ = [
    "DEFAULT_CSV_SEPARATOR",
    "DEFAULT_LINE_BREAK_RATIO",
    "CONFIG_SCHEMA",
    "ExtractorOptions",
    "FetchOptions",
    "MarkdownOptions",
    "NormalizerConfig",
    "PdfOptions",
    "ScanConfig",
    "TabularOptions",
    "load_normalizer_config",
]
