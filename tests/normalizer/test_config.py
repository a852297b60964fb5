from __future__ import annotations

from pathlib import Path

import pytest

from src.normalizer.config import (
    DEFAULT_CSV_SEPARATOR,
    DEFAULT_LINE_BREAK_RATIO,
    NormalizerConfig,
    load_normalizer_config,
)


def test_default_config_values() -> None:
    config = NormalizerConfig.default()

    assert config.pdf.line_break_ratio == DEFAULT_LINE_BREAK_RATIO
    assert config.tabular.csv_separator == DEFAULT_CSV_SEPARATOR
    assert config.extractors.doc == ("antiword", "{path}")
    assert config.fetch.enabled is True
    assert config.markdown.allow_html is False
    assert ".pdf" in config.scan.suffixes


def test_load_config_from_yaml(tmp_path: Path) -> None:
    config_path = tmp_path / "normalizer.yaml"
    config_path.write_text(
        """
output_root: out
scan:
  suffixes: [PDF, .Docx]
  recursive: false
  include: ["reports/*"]
markdown:
  breaks: false
fetch:
  enabled: false
  timeout: 2.5
pdf:
  line_break_ratio: 1.2
extractors:
  doc: "catdoc -w {path}"
  timeout: 15
tabular:
  csv_delimiter: ";"
""",
        encoding="utf-8",
    )

    config = load_normalizer_config(config_path)

    assert config.output_root == (tmp_path / "out").resolve()
    assert config.scan.suffixes == (".pdf", ".docx")
    assert config.scan.recursive is False
    assert config.scan.include == ("reports/*",)
    assert config.markdown.breaks is False
    assert config.fetch.enabled is False
    assert config.fetch.timeout == 2.5
    assert config.pdf.line_break_ratio == 1.2
    assert config.extractors.doc == ("catdoc", "-w", "{path}")
    assert config.extractors.odt == ("odt2txt", "{path}")
    assert config.extractors.timeout == 15
    assert config.tabular.csv_delimiter == ";"


def test_missing_explicit_config_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_normalizer_config(tmp_path / "absent.yaml")


def test_missing_default_config_falls_back(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)

    assert load_normalizer_config(None) == NormalizerConfig.default()


@pytest.mark.parametrize(
    "body",
    [
        "- just\n- a list\n",
        "scan: [1, 2]\n",
        "pdf:\n  line_break_ratio: -1\n",
        "fetch:\n  max_bytes: lots\n",
        "tabular:\n  csv_delimiter: ';;'\n",
        "extractors:\n  doc: []\n",
    ],
)
def test_invalid_config_raises_value_error(tmp_path: Path, body: str) -> None:
    config_path = tmp_path / "normalizer.yaml"
    config_path.write_text(body, encoding="utf-8")

    with pytest.raises(ValueError):
        load_normalizer_config(config_path)


def test_bundled_config_loads() -> None:
    bundled = Path(__file__).resolve().parents[2] / "config" / "normalizer.yaml"

    config = load_normalizer_config(bundled)

    assert config.scan.exclude == ("**/.~lock*",)
    assert config.extractors.odt == ("odt2txt", "{path}")


def test_unknown_keys_fail_schema_validation(tmp_path: Path) -> None:
    config_path = tmp_path / "normalizer.yaml"
    config_path.write_text("pdf:\n  line_spacing: 2\n", encoding="utf-8")

    with pytest.raises(ValueError, match="Configuration validation failed"):
        load_normalizer_config(config_path)
