"""Document normalization: one dispatcher and per-format parsers."""

from importlib import import_module

from .base import (
    Asset,
    DocumentFormat,
    DocumentParser,
    FormatMetadata,
    NormalizedDocument,
    ParseError,
    ParseErrorKind,
    ParseRequest,
)
from .assets import compute_asset_id, derive_asset_token
from .config import (
    ExtractorOptions,
    FetchOptions,
    MarkdownOptions,
    NormalizerConfig,
    PdfOptions,
    ScanConfig,
    TabularOptions,
    load_normalizer_config,
)
from .fetch import FetchedResource, Fetcher, RequestsFetcher, build_fetcher, null_fetcher
from .dispatcher import detect_format, parse_document
from .pdf import PdfParser, pdf_parser
from .rtf import OdtParser, RtfParser, odt_parser, rtf_parser
from .tabular import CsvParser, JsonParser, XmlParser, csv_parser, json_parser, xml_parser
from .text import TextParser, text_parser
from .web import WebParser, web_parser
from .word import DocxParser, LegacyDocParser, docx_parser, legacy_doc_parser
from .registry import ParserRegistry, registry
from .storage import ArtifactStore, Manifest, ManifestEntry
from .runner import ParseOutcome, collect_parse_candidates, normalize_path, scan_and_normalize

utils = import_module("src.normalizer.utils")

__all__ = [
    "Asset",
    "DocumentFormat",
    "DocumentParser",
    "FormatMetadata",
    "NormalizedDocument",
    "ParseError",
    "ParseErrorKind",
    "ParseRequest",
    "compute_asset_id",
    "derive_asset_token",
    "ExtractorOptions",
    "FetchOptions",
    "MarkdownOptions",
    "NormalizerConfig",
    "PdfOptions",
    "ScanConfig",
    "TabularOptions",
    "load_normalizer_config",
    "FetchedResource",
    "Fetcher",
    "RequestsFetcher",
    "build_fetcher",
    "null_fetcher",
    "detect_format",
    "parse_document",
    "PdfParser",
    "pdf_parser",
    "OdtParser",
    "RtfParser",
    "odt_parser",
    "rtf_parser",
    "CsvParser",
    "JsonParser",
    "XmlParser",
    "csv_parser",
    "json_parser",
    "xml_parser",
    "TextParser",
    "text_parser",
    "WebParser",
    "web_parser",
    "DocxParser",
    "LegacyDocParser",
    "docx_parser",
    "legacy_doc_parser",
    "ParserRegistry",
    "registry",
    "ArtifactStore",
    "Manifest",
    "ManifestEntry",
    "ParseOutcome",
    "collect_parse_candidates",
    "normalize_path",
    "scan_and_normalize",
    "utils",
]
