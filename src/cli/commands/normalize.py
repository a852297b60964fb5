"""CLI commands for normalizing documents into HTML, text and assets."""
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Iterable

from src import paths
from src.normalizer import utils
from src.normalizer.base import NormalizedDocument, ParseError
from src.normalizer.config import NormalizerConfig, load_normalizer_config
from src.normalizer.dispatcher import parse_document
from src.normalizer.runner import ParseOutcome, normalize_path, scan_and_normalize
from src.normalizer.storage import ArtifactStore

__all__ = ["build_parser", "normalize_cli", "register_commands"]


def register_commands(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    """Add normalization commands to the main CLI parser."""
    parser = subparsers.add_parser(
        "normalize",
        description="Normalize documents into HTML, text and extracted assets.",
        help="Normalize documents into HTML, text and extracted assets.",
    )
    _configure_parser(parser)


def build_parser(*, prog: str | None = None) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Normalize documents into HTML, text and extracted assets.",
        prog=prog,
    )
    _configure_parser(parser)
    return parser


def _configure_parser(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--output-root",
        type=Path,
        default=None,
        help="Directory for normalized artifacts (overrides configuration).",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Path to a normalizer YAML config (default: config/normalizer.yaml when present).",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Reprocess even when an identical checksum exists in the manifest.",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: WARNING).",
    )

    subcommands = parser.add_subparsers(dest="command", required=True)

    inspect_parser = subcommands.add_parser(
        "inspect",
        help="Normalize a single file and print the result without writing artifacts.",
    )
    inspect_parser.add_argument("path", type=Path, help="Document to normalize.")
    inspect_parser.add_argument(
        "--content-type",
        default=None,
        help="Declared media type (defaults to a guess from the filename).",
    )
    inspect_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the full normalized document as JSON.",
    )

    file_parser = subcommands.add_parser("file", help="Normalize one or more files and store artifacts.")
    file_parser.add_argument("paths", nargs="+", type=Path, help="Documents to normalize.")
    file_parser.add_argument(
        "--content-type",
        default=None,
        help="Declared media type applied to every path.",
    )

    scan_parser = subcommands.add_parser("scan", help="Scan a directory for supported documents.")
    scan_parser.add_argument(
        "--root",
        type=Path,
        default=paths.get_uploads_root(),
        help="Directory to scan for documents (defaults to <data root>/uploads).",
    )
    scan_parser.add_argument(
        "--suffix",
        action="append",
        default=[],
        help="File suffix to include (e.g. .pdf). Repeat to supply multiple values.",
    )
    scan_parser.add_argument(
        "--recursive",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Recursively scan subdirectories (default controlled by configuration).",
    )
    scan_parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Maximum number of documents to process during scanning.",
    )
    scan_parser.add_argument(
        "--include",
        action="append",
        dest="include",
        metavar="PATTERN",
        help="Glob pattern relative to the scan root to include. Repeat to supply multiple patterns.",
    )
    scan_parser.add_argument(
        "--exclude",
        action="append",
        dest="exclude",
        metavar="PATTERN",
        help="Glob pattern relative to the scan root to exclude. Repeat to supply multiple patterns.",
    )
    scan_parser.add_argument(
        "--clear-config-suffixes",
        action="store_true",
        help="Ignore suffixes defined in the config when combining with --suffix.",
    )
    scan_parser.set_defaults(include=None, exclude=None)

    parser.set_defaults(func=normalize_cli)


def normalize_cli(args: argparse.Namespace) -> int:
    logging.basicConfig(
        level=getattr(logging, args.log_level, logging.WARNING),
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        config = load_normalizer_config(args.config)
    except (FileNotFoundError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    if args.command == "inspect":
        return _inspect(args, config)

    output_root = args.output_root if args.output_root is not None else config.output_root
    store = ArtifactStore(Path(output_root).expanduser().resolve())
    outcomes: list[ParseOutcome] = []

    if args.command == "file":
        for path in args.paths:
            outcome = normalize_path(
                path,
                store=store,
                config=config,
                content_type=args.content_type,
                force=args.force,
            )
            outcomes.append(outcome)
            _emit_outcome(outcome)
    elif args.command == "scan":
        suffixes = _merge_cli_sequences(config.scan.suffixes, args.suffix, clear=args.clear_config_suffixes)
        recursive = config.scan.recursive if args.recursive is None else bool(args.recursive)
        try:
            results = scan_and_normalize(
                args.root,
                store=store,
                config=config,
                suffixes=suffixes,
                recursive=recursive,
                force=args.force,
                limit=args.limit,
                include_patterns=_merge_cli_sequences(config.scan.include, args.include, clear=False),
                exclude_patterns=_merge_cli_sequences(config.scan.exclude, args.exclude, clear=False),
            )
        except FileNotFoundError as exc:
            print(f"error: {exc}", file=sys.stderr)
            return 1
        if not results:
            print(f"No documents found under {args.root.expanduser().resolve()} matching the requested filters.")
            return 0
        for outcome in results:
            outcomes.append(outcome)
            _emit_outcome(outcome)
    else:  # pragma: no cover - argparse restricts choices
        raise ValueError(f"Unsupported normalize subcommand: {args.command}")

    return 1 if any(item.status == "error" for item in outcomes) else 0


def _inspect(args: argparse.Namespace, config: NormalizerConfig) -> int:
    path = args.path.expanduser().resolve()
    if not path.is_file():
        print(f"error: File '{path}' does not exist", file=sys.stderr)
        return 1

    content_type = args.content_type or utils.guess_media_type(path)
    try:
        document = parse_document(path.read_bytes(), content_type, path.name, config=config)
    except ParseError as exc:
        print(f"[error] {path}: {exc.reason} ({exc.kind.value})", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps(document.to_dict(), indent=2, default=str))
        return 0
    _print_summary(path, document)
    return 0


def _print_summary(path: Path, document: NormalizedDocument) -> None:
    metadata = document.metadata
    print(f"{path}: {metadata.format.value} (structure={'yes' if metadata.has_structure else 'no'})")
    print(f"  text: {len(document.text)} chars")
    print(f"  html: {len(document.html)} chars")
    print(f"  assets: {len(document.assets)}")
    for asset in document.assets:
        state = "resolved" if asset.is_resolved else f"unresolved {asset.source_url or ''}".rstrip()
        print(f"    {asset.token} {asset.mime} {asset.original_name} ({state})")
    for key, value in metadata.facts.items():
        print(f"  {key}: {value}")
    for warning in metadata.warnings:
        print(f"  warning: {warning}")


def _emit_outcome(outcome: ParseOutcome) -> None:
    status = outcome.status
    format_name = outcome.format or "unknown"
    if status == "error":
        message = outcome.error or "Normalization failed"
        print(f"[error] {outcome.source}: {message}", file=sys.stderr)
        return

    artifact = f" -> {outcome.artifact_path}" if outcome.artifact_path else ""
    memo = f" ({outcome.message})" if outcome.message else ""
    print(f"[{status}] {outcome.source} as {format_name}{artifact}{memo}")
    for warning in outcome.warnings:
        print(f"  warning: {warning}")


def _merge_cli_sequences(
    config_values: Iterable[str],
    cli_values: Iterable[str] | None,
    *,
    clear: bool,
) -> tuple[str, ...]:
    merged: list[str] = []
    if not clear:
        merged.extend(str(value).strip() for value in config_values)
    if cli_values:
        merged.extend(str(value).strip() for value in cli_values)
    return tuple(dict.fromkeys(value for value in merged if value))
