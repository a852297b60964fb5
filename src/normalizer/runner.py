"""High-level orchestration for normalizing files on disk."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from fnmatch import fnmatch
from pathlib import Path
from typing import Iterable, Sequence

from . import utils
from .base import ParseError
from .config import NormalizerConfig
from .dispatcher import detect_format, parse_document
from .fetch import Fetcher
from .registry import ParserRegistry
from .storage import ArtifactStore, ManifestEntry

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ParseOutcome:
    source: str
    format: str | None
    status: str
    artifact_path: str | None = None
    warnings: list[str] = field(default_factory=list)
    checksum: str | None = None
    error: str | None = None
    message: str | None = None
    asset_count: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status in {"completed", "empty", "skipped"}


def normalize_path(
    source: str | Path,
    *,
    store: ArtifactStore,
    config: NormalizerConfig | None = None,
    fetcher: Fetcher | None = None,
    registry_override: ParserRegistry | None = None,
    content_type: str | None = None,
    force: bool = False,
) -> ParseOutcome:
    path = Path(source).expanduser().resolve(strict=False)
    source_str = str(path)
    media_type = content_type or utils.guess_media_type(path)

    fmt = detect_format(media_type, path.name, registry_override=registry_override)
    if fmt is None:
        return ParseOutcome(
            source=source_str,
            format=None,
            status="error",
            error=f"Unsupported document type for '{path.name}'",
        )

    if not path.is_file():
        return ParseOutcome(
            source=source_str,
            format=fmt.value,
            status="error",
            error=f"File '{path}' does not exist",
        )

    buffer = path.read_bytes()
    checksum = utils.sha256_bytes(buffer)
    if not force and not store.should_process(checksum):
        return _outcome_from_manifest(
            source_str,
            fmt.value,
            store.manifest().get(checksum),
            checksum=checksum,
            message="Already processed",
        )

    try:
        document = parse_document(
            buffer,
            media_type,
            path.name,
            config=config,
            fetcher=fetcher,
            registry_override=registry_override,
        )
    except ParseError as exc:
        return ParseOutcome(
            source=source_str,
            format=fmt.value,
            status="error",
            checksum=checksum,
            error=exc.reason,
        )

    entry = store.persist_document(document, source=source_str, checksum=checksum)
    logger.info("Normalized %s -> %s (%s)", source_str, entry.artifact_path, entry.status)

    return ParseOutcome(
        source=source_str,
        format=fmt.value,
        status=entry.status,
        artifact_path=entry.artifact_path,
        warnings=list(document.warnings),
        checksum=checksum,
        asset_count=len(document.assets),
    )


def scan_and_normalize(
    root: str | Path,
    *,
    store: ArtifactStore,
    config: NormalizerConfig | None = None,
    fetcher: Fetcher | None = None,
    registry_override: ParserRegistry | None = None,
    suffixes: Sequence[str] | None = None,
    recursive: bool = True,
    force: bool = False,
    limit: int | None = None,
    include_patterns: Sequence[str] | None = None,
    exclude_patterns: Sequence[str] | None = None,
) -> list[ParseOutcome]:
    active_config = config or NormalizerConfig.default()
    candidates = collect_parse_candidates(
        root,
        suffixes=suffixes or active_config.scan.suffixes,
        recursive=recursive,
        storage_root=store.root,
        include_patterns=include_patterns,
        exclude_patterns=exclude_patterns,
    )
    if limit is not None and limit >= 0:
        candidates = candidates[:limit]

    results: list[ParseOutcome] = []
    for candidate in candidates:
        outcome = normalize_path(
            candidate,
            store=store,
            config=active_config,
            fetcher=fetcher,
            registry_override=registry_override,
            force=force,
        )
        results.append(outcome)
    return results


def collect_parse_candidates(
    root: str | Path,
    *,
    suffixes: Sequence[str] | None = None,
    recursive: bool = True,
    storage_root: Path | None = None,
    include_patterns: Sequence[str] | None = None,
    exclude_patterns: Sequence[str] | None = None,
) -> list[Path]:
    """Return candidate paths that match the scan filters without parsing them."""

    root_path = Path(root).expanduser().resolve()
    if not root_path.exists():
        raise FileNotFoundError(f"Scan root '{root_path}' does not exist")

    normalized_suffixes = utils.normalize_suffixes(
        suffixes,
        default=NormalizerConfig.default().scan.suffixes,
        sort=True,
        preserve_order=False,
    )

    return _collect_candidates(
        root_path,
        normalized_suffixes,
        recursive,
        storage_root,
        include_patterns,
        exclude_patterns,
    )


def _outcome_from_manifest(
    source: str,
    format_name: str | None,
    entry: ManifestEntry | None,
    *,
    checksum: str | None,
    message: str,
) -> ParseOutcome:
    if entry is not None:
        note = f"{message} (status={entry.status})" if entry.status else message
        return ParseOutcome(
            source=source,
            format=entry.format or format_name,
            status="skipped",
            artifact_path=entry.artifact_path,
            checksum=checksum,
            message=note,
            asset_count=entry.asset_count,
        )
    return ParseOutcome(
        source=source,
        format=format_name,
        status="skipped",
        checksum=checksum,
        message=message,
    )


def _collect_candidates(
    root: Path,
    suffixes: Sequence[str],
    recursive: bool,
    storage_root: Path | None,
    include_patterns: Sequence[str] | None,
    exclude_patterns: Sequence[str] | None,
) -> list[Path]:
    if recursive:
        iterator: Iterable[Path] = root.rglob("*")
    else:
        iterator = root.iterdir()

    include = tuple(include_patterns or ())
    exclude = tuple(exclude_patterns or ())

    candidates: list[Path] = []
    for path in iterator:
        if not path.is_file():
            continue
        if path.suffix.lower() not in suffixes:
            continue
        resolved = path.resolve()
        if storage_root is not None and _is_within(resolved, storage_root):
            continue
        rel_posix = resolved.relative_to(root).as_posix()
        if include and not any(fnmatch(rel_posix, pattern) for pattern in include):
            continue
        if exclude and any(fnmatch(rel_posix, pattern) for pattern in exclude):
            continue
        candidates.append(resolved)

    candidates.sort()
    return candidates


def _is_within(path: Path, ancestor: Path) -> bool:
    try:
        path.relative_to(ancestor)
    except ValueError:
        return False
    return True


__all__ = [
    "ParseOutcome",
    "collect_parse_candidates",
    "normalize_path",
    "scan_and_normalize",
]
