from __future__ import annotations

import json
from pathlib import Path

import pytest

from main import main


@pytest.fixture
def workspace(tmp_path: Path, monkeypatch) -> Path:
    monkeypatch.chdir(tmp_path)
    config = tmp_path / "offline.yaml"
    config.write_text("output_root: out\nfetch:\n  enabled: false\n", encoding="utf-8")
    return tmp_path


def test_inspect_prints_summary(workspace: Path, capsys) -> None:
    source = workspace / "page.html"
    source.write_text("<html><head><title>Hi</title></head><body><p>Hello</p></body></html>", encoding="utf-8")

    exit_code = main(["normalize", "--config", str(workspace / "offline.yaml"), "inspect", str(source)])

    captured = capsys.readouterr()
    assert exit_code == 0
    assert f"{source}: html (structure=yes)" in captured.out
    assert "  title: Hi" in captured.out
    assert not (workspace / "out").exists()


def test_inspect_json_output(workspace: Path, capsys) -> None:
    source = workspace / "data.csv"
    source.write_text("a,b\n1,2\n", encoding="utf-8")

    exit_code = main(["normalize", "inspect", str(source), "--json"])

    payload = json.loads(capsys.readouterr().out)
    assert exit_code == 0
    assert payload["text"] == "1 | 2"
    assert payload["metadata"]["format"] == "csv"


def test_inspect_reports_parse_errors(workspace: Path, capsys) -> None:
    source = workspace / "broken.xml"
    source.write_text("<a><b></a>", encoding="utf-8")

    exit_code = main(["normalize", "inspect", str(source)])

    assert exit_code == 1
    assert "(malformed)" in capsys.readouterr().err


def test_file_command_writes_artifacts(workspace: Path, capsys) -> None:
    source = workspace / "notes.txt"
    source.write_text("Some notes", encoding="utf-8")
    output = workspace / "artifacts"

    exit_code = main(["normalize", "--output-root", str(output), "file", str(source)])

    out = capsys.readouterr().out
    assert exit_code == 0
    assert out.startswith(f"[completed] {source} as text -> ")
    assert (output / "manifest.json").exists()

    main(["normalize", "--output-root", str(output), "file", str(source)])
    assert "Already processed" in capsys.readouterr().out


def test_file_command_fails_on_unsupported_input(workspace: Path, capsys) -> None:
    source = workspace / "archive.zip"
    source.write_bytes(b"PK")

    exit_code = main(["normalize", "--output-root", str(workspace / "o"), "file", str(source)])

    assert exit_code == 1
    assert "[error]" in capsys.readouterr().err


def test_scan_command_uses_config(workspace: Path, capsys) -> None:
    uploads = workspace / "uploads"
    uploads.mkdir()
    (uploads / "a.md").write_text("# A", encoding="utf-8")
    (uploads / "b.json").write_text("[1]", encoding="utf-8")

    exit_code = main(
        [
            "normalize",
            "--config",
            str(workspace / "offline.yaml"),
            "scan",
            "--root",
            str(uploads),
            "--suffix",
            ".md",
            "--clear-config-suffixes",
        ]
    )

    out = capsys.readouterr().out
    assert exit_code == 0
    assert "a.md as markdown" in out
    assert "b.json" not in out
    assert (workspace / "out" / "manifest.json").exists()


def test_scan_command_reports_missing_root(workspace: Path, capsys) -> None:
    exit_code = main(["normalize", "scan", "--root", str(workspace / "nowhere")])

    assert exit_code == 1
    assert "does not exist" in capsys.readouterr().err


def test_invalid_config_is_reported(workspace: Path, capsys) -> None:
    bad = workspace / "bad.yaml"
    bad.write_text("- nope\n", encoding="utf-8")

    exit_code = main(["normalize", "--config", str(bad), "inspect", str(bad)])

    assert exit_code == 1
    assert capsys.readouterr().err.startswith("error: Normalizer config must be a mapping")


def test_top_level_parser_requires_area() -> None:
    with pytest.raises(SystemExit):
        main([])
