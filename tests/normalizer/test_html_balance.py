"""Every format renders non-empty text and tag-balanced HTML for valid input."""

from __future__ import annotations

import subprocess
from html.parser import HTMLParser

import pytest

from src.normalizer import external
from src.normalizer.base import DocumentFormat
from src.normalizer.dispatcher import parse_document
from src.normalizer.fetch import null_fetcher
from tests.normalizer.builders import build_docx_bytes, build_pdf_bytes, text_stream

VOID_ELEMENTS = frozenset(
    {"area", "base", "br", "col", "embed", "hr", "img", "input", "link", "meta", "source", "track", "wbr"}
)

RTF_SOURCE = (
    r"{\rtf1\ansi{\fonttbl{\f0 Arial;}}"
    r"\pard\qc\fs32 Hello \b bold\b0\line next\par"
    r"\trowd\cellx1000\cellx2000\intbl North\cell South\cell\row}"
)

MARKDOWN_SOURCE = "# Title\n\n- one\n- *two*\n\n| x | y |\n|---|---|\n| 1 | 2 |\n\nend  \nline\n"

HTML_SOURCE = (
    "<html><head><title>T</title></head><body><p>Hi<br>there</p>"
    "<img src='images/x.png'><ul><li>a</li><li>b</li></ul></body></html>"
)

SAMPLES = [
    (DocumentFormat.PDF, "doc.pdf", lambda: build_pdf_bytes(text_stream("Line one", "Line two"))),
    (DocumentFormat.DOCX, "doc.docx", build_docx_bytes),
    (DocumentFormat.DOC, "doc.doc", lambda: b"\xd0\xcf\x11\xe0legacy"),
    (DocumentFormat.RTF, "doc.rtf", lambda: RTF_SOURCE.encode("latin-1")),
    (DocumentFormat.ODT, "doc.odt", lambda: b"PK\x03\x04odt"),
    (DocumentFormat.HTML, "doc.html", lambda: HTML_SOURCE.encode("utf-8")),
    (DocumentFormat.TEXT, "doc.txt", lambda: b"one\ntwo <three>\n\nfour & five"),
    (DocumentFormat.MARKDOWN, "doc.md", lambda: MARKDOWN_SOURCE.encode("utf-8")),
    (DocumentFormat.CSV, "doc.csv", lambda: b"name,note\nAda,<b>\nBob,\"x, y\"\n"),
    (DocumentFormat.XML, "doc.xml", lambda: b"<root><item id='1'>Alpha</item><item>Beta</item></root>"),
    (DocumentFormat.JSON, "doc.json", lambda: b'{"items": ["<a>", 2], "ok": true}'),
]


class _BalanceChecker(HTMLParser):
    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.stack: list[str] = []
        self.errors: list[str] = []

    def handle_starttag(self, tag, attrs) -> None:
        if tag not in VOID_ELEMENTS:
            self.stack.append(tag)

    def handle_startendtag(self, tag, attrs) -> None:
        if tag not in VOID_ELEMENTS:
            self.errors.append(f"self-closed non-void <{tag}/>")

    def handle_endtag(self, tag) -> None:
        if tag in VOID_ELEMENTS:
            self.errors.append(f"end tag for void element </{tag}>")
        elif not self.stack or self.stack[-1] != tag:
            self.errors.append(f"unexpected </{tag}> with open {self.stack}")
        else:
            self.stack.pop()


def _unbalanced(html: str) -> list[str]:
    checker = _BalanceChecker()
    checker.feed(html)
    checker.close()
    return checker.errors + [f"unclosed <{tag}>" for tag in checker.stack]


@pytest.fixture
def fake_extractors(monkeypatch) -> None:
    def fake_run(argv, **kwargs):
        return subprocess.CompletedProcess(argv, 0, stdout=b"First <para>\n\nSecond & last\n", stderr=b"")

    monkeypatch.setattr(external.shutil, "which", lambda name: f"/usr/bin/{name}")
    monkeypatch.setattr(external.subprocess, "run", fake_run)


@pytest.mark.parametrize(("fmt", "filename", "build"), SAMPLES, ids=[fmt.value for fmt, _, _ in SAMPLES])
def test_valid_input_yields_text_and_balanced_html(fake_extractors, fmt, filename, build) -> None:
    document = parse_document(build(), None, filename, fetcher=null_fetcher)

    assert document.metadata.format is fmt
    assert document.text.strip()
    assert _unbalanced(document.html) == []


def test_balance_checker_flags_unclosed_tags() -> None:
    assert _unbalanced("<p>ok</p>") == []
    assert _unbalanced("<p>a<br/>b<img src='x'></p>") == []
    assert _unbalanced("<div><p>open</div>") != []
