"""Persistence helpers for normalized document artifacts."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from . import markup, utils
from .base import NormalizedDocument

_MANIFEST_VERSION = 1
_DEFAULT_MANIFEST = "manifest.json"
HTML_FILENAME = "document.html"
TEXT_FILENAME = "text.txt"
METADATA_FILENAME = "metadata.json"
ASSETS_DIRNAME = "assets"


@dataclass(slots=True)
class ManifestEntry:
    source: str
    checksum: str
    format: str
    artifact_path: str
    processed_at: datetime
    status: str = "completed"
    metadata: dict[str, Any] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    asset_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "checksum": self.checksum,
            "format": self.format,
            "artifact_path": self.artifact_path,
            "processed_at": self.processed_at.isoformat(),
            "status": self.status,
            "metadata": self.metadata,
            "warnings": self.warnings,
            "asset_count": self.asset_count,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "ManifestEntry":
        processed_at = datetime.fromisoformat(payload["processed_at"])
        return cls(
            source=payload["source"],
            checksum=payload["checksum"],
            format=payload["format"],
            artifact_path=payload["artifact_path"],
            processed_at=processed_at,
            status=payload.get("status", "completed"),
            metadata=payload.get("metadata", {}),
            warnings=payload.get("warnings", []),
            asset_count=payload.get("asset_count", 0),
        )


@dataclass(slots=True)
class Manifest:
    version: int = _MANIFEST_VERSION
    entries: dict[str, ManifestEntry] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "entries": [entry.to_dict() for entry in self.entries.values()],
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Manifest":
        version = payload.get("version", _MANIFEST_VERSION)
        entries_payload = payload.get("entries", [])
        entries = {
            item["checksum"]: ManifestEntry.from_dict(item)
            for item in entries_payload
        }
        return cls(version=version, entries=entries)

    def get(self, checksum: str) -> ManifestEntry | None:
        return self.entries.get(checksum)

    def upsert(self, entry: ManifestEntry) -> None:
        self.entries[entry.checksum] = entry


class ArtifactStore:
    """Write normalized documents and their assets under a root directory.

    Each document gets its own folder holding ``document.html``, ``text.txt``,
    ``metadata.json`` and ``assets/<token>/<original_name>``. A JSON manifest
    keyed by input checksum records what has already been processed.
    """

    def __init__(self, root: Path, *, manifest_filename: str = _DEFAULT_MANIFEST) -> None:
        self.root = Path(root)
        self.root = self.root if self.root.is_absolute() else self.root.resolve()
        self._manifest_filename = manifest_filename
        utils.ensure_directory(self.root)
        self._manifest = self._load_manifest()

    @property
    def manifest_path(self) -> Path:
        return self.root / self._manifest_filename

    def manifest(self) -> Manifest:
        return self._manifest

    def should_process(self, checksum: str) -> bool:
        entry = self._manifest.get(checksum)
        if entry is None:
            return True
        return entry.status != "completed"

    def record_entry(self, entry: ManifestEntry) -> None:
        self._manifest.upsert(entry)
        self._write_manifest()

    def persist_document(
        self,
        document: NormalizedDocument,
        *,
        source: str,
        checksum: str,
        processed_at: datetime | None = None,
    ) -> ManifestEntry:
        """Write the document artifacts to disk and record a manifest entry."""

        processed_at = processed_at or datetime.now(timezone.utc)
        directory = self.make_artifact_dir(source, checksum, processed_at=processed_at)

        title = document.metadata.get("title") or Path(source).name
        _write_atomic(directory / HTML_FILENAME, markup.render_html_document(document.html, title=title))
        _write_atomic(directory / TEXT_FILENAME, document.text)
        _write_atomic(
            directory / METADATA_FILENAME,
            json.dumps(
                {
                    "source": source,
                    "checksum": checksum,
                    "metadata": document.metadata.to_dict(),
                    "assets": [asset.to_dict() for asset in document.assets],
                },
                indent=2,
                sort_keys=True,
                default=str,
            ),
        )
        for asset in document.assets:
            if not asset.is_resolved:
                continue
            asset_dir = directory / ASSETS_DIRNAME / asset.token
            utils.ensure_directory(asset_dir)
            (asset_dir / asset.original_name).write_bytes(asset.data or b"")

        entry = ManifestEntry(
            source=source,
            checksum=checksum,
            format=document.metadata.format.value,
            artifact_path=self.relative_artifact_path(directory),
            processed_at=processed_at,
            status="empty" if document.is_empty() else "completed",
            metadata=json.loads(json.dumps(dict(document.metadata.facts), default=str)),
            warnings=list(document.warnings),
            asset_count=len(document.assets),
        )

        self.record_entry(entry)
        return entry

    def make_artifact_dir(
        self,
        source: str,
        checksum: str,
        *,
        processed_at: datetime | None = None,
    ) -> Path:
        processed_at = processed_at or datetime.now(timezone.utc)
        year_folder = processed_at.strftime("%Y")
        slug = utils.slugify(Path(source).name or source)
        fingerprint = checksum[:12]
        directory = self.root / year_folder / f"{slug}-{fingerprint}"
        utils.ensure_directory(directory)
        return directory

    def relative_artifact_path(self, absolute_path: Path) -> str:
        return absolute_path.relative_to(self.root).as_posix()

    def _load_manifest(self) -> Manifest:
        path = self.manifest_path
        if not path.exists():
            return Manifest()
        raw = json.loads(path.read_text(encoding="utf-8"))
        return Manifest.from_dict(raw)

    def _write_manifest(self) -> None:
        payload = self._manifest.to_dict()
        tmp_path = self.manifest_path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
        tmp_path.replace(self.manifest_path)


def _write_atomic(path: Path, content: str) -> None:
    tmp_path = path.with_name(path.name + ".tmp")
    tmp_path.write_text(content, encoding="utf-8")
    tmp_path.replace(path)


__all__ = [
    "ASSETS_DIRNAME",
    "ArtifactStore",
    "HTML_FILENAME",
    "METADATA_FILENAME",
    "Manifest",
    "ManifestEntry",
    "TEXT_FILENAME",
]
