from __future__ import annotations

from pathlib import Path

import pytest

from src.normalizer.config import FetchOptions, NormalizerConfig
from src.normalizer.runner import collect_parse_candidates, normalize_path, scan_and_normalize
from src.normalizer.storage import HTML_FILENAME, ArtifactStore

OFFLINE = NormalizerConfig(fetch=FetchOptions(enabled=False))


def _populate(root: Path) -> None:
    (root / "docs").mkdir(parents=True)
    (root / "notes.md").write_text("# Notes\n\nBody", encoding="utf-8")
    (root / "docs" / "data.csv").write_text("a,b\n1,2\n", encoding="utf-8")
    (root / "docs" / "broken.json").write_text("{oops", encoding="utf-8")
    (root / "docs" / "image.bin").write_bytes(b"\x00\x01")
    (root / "docs" / ".~lock.notes.md#").write_text("lock", encoding="utf-8")


def test_normalize_path_persists_and_skips_repeats(tmp_path: Path) -> None:
    source = tmp_path / "notes.md"
    source.write_text("# Notes\n\nBody", encoding="utf-8")
    store = ArtifactStore(tmp_path / "out")

    first = normalize_path(source, store=store, config=OFFLINE)
    second = normalize_path(source, store=store, config=OFFLINE)
    forced = normalize_path(source, store=store, config=OFFLINE, force=True)

    assert first.status == "completed"
    assert first.format == "markdown"
    assert first.succeeded
    assert (store.root / first.artifact_path / HTML_FILENAME).exists()
    assert second.status == "skipped"
    assert second.message == "Already processed (status=completed)"
    assert second.artifact_path == first.artifact_path
    assert forced.status == "completed"


def test_normalize_path_reports_unsupported_and_missing(tmp_path: Path) -> None:
    store = ArtifactStore(tmp_path / "out")
    unknown = tmp_path / "archive.zip"
    unknown.write_bytes(b"PK")

    unsupported = normalize_path(unknown, store=store)
    missing = normalize_path(tmp_path / "ghost.pdf", store=store)

    assert unsupported.status == "error"
    assert unsupported.error == "Unsupported document type for 'archive.zip'"
    assert missing.status == "error"
    assert missing.format == "pdf"
    assert "does not exist" in (missing.error or "")
    assert not missing.succeeded


def test_normalize_path_reports_parse_errors(tmp_path: Path) -> None:
    source = tmp_path / "broken.json"
    source.write_text("{oops", encoding="utf-8")
    store = ArtifactStore(tmp_path / "out")

    outcome = normalize_path(source, store=store)

    assert outcome.status == "error"
    assert outcome.checksum is not None
    assert (outcome.error or "").startswith("JSON parsing error")
    assert store.manifest().entries == {}


def test_collect_parse_candidates_filters(tmp_path: Path) -> None:
    _populate(tmp_path)

    everything = collect_parse_candidates(tmp_path, suffixes=[".md", ".csv", ".json"])
    top_level = collect_parse_candidates(tmp_path, suffixes=[".md", ".csv"], recursive=False)
    included = collect_parse_candidates(tmp_path, suffixes=[".csv", ".json"], include_patterns=["docs/*.csv"])
    excluded = collect_parse_candidates(tmp_path, suffixes=[".json", ".csv"], exclude_patterns=["**/broken.*"])

    assert [path.name for path in everything] == ["broken.json", "data.csv", "notes.md"]
    assert [path.name for path in top_level] == ["notes.md"]
    assert [path.name for path in included] == ["data.csv"]
    assert [path.name for path in excluded] == ["data.csv"]


def test_collect_parse_candidates_missing_root(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        collect_parse_candidates(tmp_path / "absent")


def test_scan_skips_output_directory_and_applies_limit(tmp_path: Path) -> None:
    _populate(tmp_path)
    store = ArtifactStore(tmp_path / "normalized")
    (store.root / "stale.md").write_text("# old artifact", encoding="utf-8")

    results = scan_and_normalize(tmp_path, store=store, config=OFFLINE)
    limited = scan_and_normalize(tmp_path, store=store, config=OFFLINE, limit=1, force=True)

    statuses = {Path(outcome.source).name: outcome.status for outcome in results}
    assert statuses == {"broken.json": "error", "data.csv": "completed", "notes.md": "completed"}
    assert len(limited) == 1
