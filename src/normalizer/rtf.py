"""Rich text parsers: RTF run reconstruction and ODT through an extractor."""

from __future__ import annotations

import codecs
import re
from dataclasses import dataclass, field, replace
from typing import Iterator

from . import assets, markup
from .base import (
    Asset,
    DocumentFormat,
    FormatMetadata,
    NormalizedDocument,
    ParseError,
    ParseRequest,
    empty_document,
)
from .external import ExternalTextExtractor, synthesize_text_document
from .registry import registry

ODT_WARNING = "ODT format - structure preservation limited"
DEFAULT_CODEPAGE = "cp1252"

_EMPTY_HTML = '<div class="rtf-document rtf-document--empty"></div>'
_TOKEN_PATTERN = re.compile(
    r"\\([a-zA-Z]+)(-?\d+)? ?"
    r"|\\'([0-9a-fA-F]{2})"
    r"|\\(.)"
    r"|([{}])"
    r"|([^\\{}\r\n]+)"
    r"|[\r\n]+",
    re.DOTALL,
)
_SKIPPED_DESTINATIONS = frozenset(
    {
        "annotation",
        "colorschememapping",
        "datastore",
        "fldinst",
        "footer",
        "footerf",
        "footerl",
        "footerr",
        "footnote",
        "generator",
        "header",
        "headerf",
        "headerl",
        "headerr",
        "info",
        "latentstyles",
        "listoverridetable",
        "listtable",
        "nonshppict",
        "object",
        "pgdsctbl",
        "rsidtbl",
        "stylesheet",
        "themedata",
        "xmlnstbl",
    }
)
_TRANSPARENT_IGNORABLES = frozenset({"shppict"})
_SYMBOLS = {
    "bullet": "\u2022",
    "emdash": "\u2014",
    "endash": "\u2013",
    "emspace": "\u2003",
    "enspace": "\u2002",
    "ldblquote": "\u201c",
    "lquote": "\u2018",
    "rdblquote": "\u201d",
    "rquote": "\u2019",
}
_CONTROL_SYMBOLS = {"~": "\u00a0", "_": "\u2011", "{": "{", "}": "}", "\\": "\\"}
_ALIGNMENTS = {"ql": None, "qc": "center", "qr": "right", "qj": "justify"}
_BLIP_TYPES = {"pngblip": "image/png", "jpegblip": "image/jpeg"}
_UNSUPPORTED_BLIPS = frozenset({"emfblip", "wmetafile", "macpict", "pmmetafile", "dibitmap", "wbitmap"})

_FONTTBL = "fonttbl"
_COLORTBL = "colortbl"
_PICT = "pict"
_SKIP = "skip"
_CELL_SEPARATOR = " | "
_REPLACEMENT_CHAR = "\ufffd"
_HIGH_SURROGATES = range(0xD800, 0xDC00)
_LOW_SURROGATES = range(0xDC00, 0xE000)


@dataclass(slots=True)
class _State:
    """Character and paragraph properties scoped to one RTF group."""

    destination: str | None = None
    bold: bool = False
    italic: bool = False
    underline: bool = False
    strike: bool = False
    font_size: int | None = None
    foreground: int | None = None
    background: int | None = None
    font: int | None = None
    rtl: bool = False
    unicode_skip: int = 1
    align: str | None = None
    left_indent: int = 0
    right_indent: int = 0
    first_indent: int = 0
    rtl_paragraph: bool = False
    pending_ignorable: bool = False

    def reset_character(self, default_font: int | None) -> None:
        self.bold = self.italic = self.underline = self.strike = self.rtl = False
        self.font_size = self.foreground = self.background = None
        self.font = default_font

    def reset_paragraph(self) -> None:
        self.align = None
        self.left_indent = self.right_indent = self.first_indent = 0
        self.rtl_paragraph = False


@dataclass(slots=True)
class _Run:
    style: str
    html: str
    text: str


@dataclass(slots=True)
class _Picture:
    mime: str | None = None
    unsupported: bool = False
    width_twips: int = 0
    height_twips: int = 0
    hex_digits: list[str] = field(default_factory=list)


@dataclass(slots=True)
class RtfParser:
    """Concrete :class:`DocumentParser` for RTF sources."""

    name: str = "rtf"

    def parse(self, request: ParseRequest) -> NormalizedDocument:
        source = request.buffer.decode("latin-1")
        if not source.strip():
            return empty_document(DocumentFormat.RTF, _EMPTY_HTML, has_structure=True)
        if not source.lstrip().startswith("{\\rtf"):
            raise ParseError.malformed("RTF parsing error: missing {\\rtf header", format=DocumentFormat.RTF)

        reader = _RtfReader()
        reader.feed(source)
        return reader.build()


@dataclass(slots=True)
class OdtParser:
    """Text-only parser for OpenDocument text files."""

    name: str = "odt"

    def parse(self, request: ParseRequest) -> NormalizedDocument:
        options = request.config.extractors
        extractor = ExternalTextExtractor(
            options.odt,
            format=DocumentFormat.ODT,
            suffix=".odt",
            timeout=options.timeout,
        )
        text, warnings = extractor.extract(request.buffer)
        return synthesize_text_document(
            text,
            format=DocumentFormat.ODT,
            wrapper_class="odt-document",
            warnings=[ODT_WARNING, *warnings],
        )


class _RtfReader:
    """Walk RTF tokens, tracking group state, and collect styled paragraphs."""

    def __init__(self) -> None:
        self.stack: list[_State] = [_State()]
        self.codepage = DEFAULT_CODEPAGE
        self.default_font: int | None = None
        self.fonts: dict[int, str] = {}
        self.colors: list[tuple[int, int, int] | None] = []
        self.paragraphs: list[tuple[str, list[_Run]]] = []
        self.runs: list[_Run] = []
        self.assets: list[Asset] = []
        self.warnings: list[str] = []
        self.skip_units = 0
        self.pending_bytes = bytearray()
        self.font_id: int | None = None
        self.font_name: list[str] = []
        self.color: list[int | None] = [None, None, None]
        self.picture: _Picture | None = None
        self.pending_surrogate: int | None = None
        self.cell_break = False
        self.unbalanced = False

    @property
    def state(self) -> _State:
        return self.stack[-1]

    def feed(self, source: str) -> None:
        for match in _TOKEN_PATTERN.finditer(source):
            word, param, hex_byte, symbol, brace, text = match.groups()
            if hex_byte is not None:
                self._hex(hex_byte)
                continue
            self._flush_bytes()
            if word is not None:
                self._control_word(word, int(param) if param is not None else None)
            elif symbol is not None:
                self._control_symbol(symbol)
            elif brace == "{":
                self.stack.append(replace(self.state, pending_ignorable=False))
            elif brace == "}":
                self._close_group()
            elif text is not None:
                self._text(text)
        self._flush_bytes()
        if len(self.stack) != 1:
            self.unbalanced = True
        if self.runs:
            self._end_paragraph()

    def build(self) -> NormalizedDocument:
        if self.unbalanced:
            self.warnings.append("RTF group nesting is unbalanced; output may be incomplete")

        if not self.paragraphs:
            self.warnings.append("RTF document contains no paragraphs")
            return NormalizedDocument(
                text="",
                html=_EMPTY_HTML,
                metadata=FormatMetadata(
                    format=DocumentFormat.RTF,
                    has_structure=True,
                    warnings=tuple(self.warnings),
                    facts={"paragraph_count": 0, "image_count": 0, "codepage": self.codepage},
                ),
            )

        blocks: list[str] = []
        texts: list[str] = []
        for style, runs in self.paragraphs:
            body = "".join(_render_runs(runs))
            blocks.append(f"<p{markup.render_attributes({'style': style or None})}>{body}</p>")
            text = "".join(run.text for run in runs).strip()
            if text:
                texts.append(text)

        return NormalizedDocument(
            text="\n\n".join(texts),
            html=f'<div class="rtf-document">{"".join(blocks)}</div>',
            assets=tuple(self.assets),
            metadata=FormatMetadata(
                format=DocumentFormat.RTF,
                has_structure=True,
                warnings=tuple(self.warnings),
                facts={
                    "paragraph_count": len(self.paragraphs),
                    "image_count": len(self.assets),
                    "codepage": self.codepage,
                },
            ),
        )

    def _close_group(self) -> None:
        if len(self.stack) == 1:
            self.unbalanced = True
            return
        closed = self.stack.pop()
        if closed.destination == _PICT and self.state.destination != _PICT:
            self._finish_picture()
        elif closed.destination == _FONTTBL and self.font_id is not None:
            self._commit_font()

    def _control_word(self, word: str, param: int | None) -> None:
        state = self.state
        if state.pending_ignorable:
            state.pending_ignorable = False
            if word not in _TRANSPARENT_IGNORABLES:
                state.destination = _SKIP
                return
        if state.destination == _SKIP:
            return

        if word in _SKIPPED_DESTINATIONS:
            state.destination = _SKIP
        elif word == _FONTTBL:
            state.destination = _FONTTBL
        elif word == _COLORTBL:
            state.destination = _COLORTBL
            self.colors = []
        elif word == _PICT:
            state.destination = _PICT
            self.picture = _Picture()
        elif state.destination == _FONTTBL:
            self._font_table_word(word, param)
        elif state.destination == _COLORTBL:
            self._color_table_word(word, param)
        elif state.destination == _PICT:
            self._picture_word(word, param)
        else:
            self._body_word(word, param)

    def _body_word(self, word: str, param: int | None) -> None:
        state = self.state
        enabled = param != 0
        if word == "par":
            self._end_paragraph()
        elif word == "pard":
            state.reset_paragraph()
        elif word == "plain":
            state.reset_character(self.default_font)
        elif word == "line":
            self._emit("\n", html="<br/>")
        elif word == "tab":
            self._emit("\t")
        elif word == "b":
            state.bold = enabled
        elif word == "i":
            state.italic = enabled
        elif word == "ul":
            state.underline = enabled
        elif word == "ulnone":
            state.underline = False
        elif word == "strike":
            state.strike = enabled
        elif word == "fs":
            state.font_size = param
        elif word == "cf":
            state.foreground = param or None
        elif word in ("cb", "highlight"):
            state.background = param or None
        elif word == "f":
            state.font = param
        elif word == "rtlch":
            state.rtl = True
        elif word == "ltrch":
            state.rtl = False
        elif word in _ALIGNMENTS:
            state.align = _ALIGNMENTS[word]
        elif word == "li":
            state.left_indent = param or 0
        elif word == "ri":
            state.right_indent = param or 0
        elif word == "fi":
            state.first_indent = param or 0
        elif word == "rtlpar":
            state.rtl_paragraph = True
        elif word == "ltrpar":
            state.rtl_paragraph = False
        elif word == "uc":
            state.unicode_skip = max(param or 0, 0)
        elif word == "u" and param is not None:
            self._unicode(param + 65536 if param < 0 else param)
            self.skip_units = state.unicode_skip
        elif word in ("cell", "nestcell"):
            self.cell_break = True
        elif word in ("row", "nestrow", "page"):
            self.cell_break = False
            self._end_paragraph()
        elif word == "ansicpg" and param:
            self.codepage = _resolve_codepage(param, self.warnings)
        elif word == "deff":
            self.default_font = param
            state.font = param
        elif word in _SYMBOLS:
            self._emit(_SYMBOLS[word])

    def _font_table_word(self, word: str, param: int | None) -> None:
        if word == "f":
            if self.font_id is not None:
                self._commit_font()
            self.font_id = param
            self.font_name = []

    def _color_table_word(self, word: str, param: int | None) -> None:
        index = {"red": 0, "green": 1, "blue": 2}.get(word)
        if index is not None:
            self.color[index] = param or 0

    def _picture_word(self, word: str, param: int | None) -> None:
        picture = self.picture
        if picture is None:
            return
        if word in _BLIP_TYPES:
            picture.mime = _BLIP_TYPES[word]
        elif word in _UNSUPPORTED_BLIPS:
            picture.unsupported = True
        elif word == "picwgoal":
            picture.width_twips = param or 0
        elif word == "pichgoal":
            picture.height_twips = param or 0

    def _control_symbol(self, symbol: str) -> None:
        state = self.state
        if symbol == "*":
            state.pending_ignorable = True
            return
        if state.destination == _SKIP:
            return
        if symbol in ("\n", "\r"):
            if state.destination is None:
                self._end_paragraph()
            return
        value = _CONTROL_SYMBOLS.get(symbol)
        if value is not None:
            self._text(value, decoded=True)

    def _hex(self, digits: str) -> None:
        if self.skip_units:
            self.skip_units -= 1
            return
        self.pending_bytes.append(int(digits, 16))

    def _flush_bytes(self) -> None:
        if not self.pending_bytes:
            return
        decoded = bytes(self.pending_bytes).decode(self.codepage, errors="replace")
        self.pending_bytes.clear()
        self._text(decoded, decoded=True)

    def _text(self, text: str, *, decoded: bool = False) -> None:
        if self.skip_units and not decoded:
            consumed = min(self.skip_units, len(text))
            text = text[consumed:]
            self.skip_units -= consumed
        if not text:
            return
        if not decoded and any(ord(char) > 0x7F for char in text):
            text = text.encode("latin-1").decode(self.codepage, errors="replace")

        destination = self.state.destination
        if destination is None:
            self._emit(text)
        elif destination == _FONTTBL:
            self._font_table_text(text)
        elif destination == _COLORTBL:
            self._color_table_text(text)
        elif destination == _PICT and self.picture is not None:
            self.picture.hex_digits.append("".join(text.split()))

    def _font_table_text(self, text: str) -> None:
        for index, chunk in enumerate(text.split(";")):
            if index > 0:
                self._commit_font()
            self.font_name.append(chunk)

    def _color_table_text(self, text: str) -> None:
        for _ in range(text.count(";")):
            if any(component is not None for component in self.color):
                red, green, blue = (component or 0 for component in self.color)
                self.colors.append((red, green, blue))
            else:
                self.colors.append(None)
            self.color = [None, None, None]

    def _commit_font(self) -> None:
        name = "".join(self.font_name).strip()
        if self.font_id is not None and name:
            self.fonts.setdefault(self.font_id, name)
        self.font_name = []

    def _unicode(self, code: int) -> None:
        """Emit one ``\\uN`` value, joining UTF-16 surrogate pairs into a single character."""

        high, self.pending_surrogate = self.pending_surrogate, None
        if code in _HIGH_SURROGATES:
            if high is not None:
                self._emit(_REPLACEMENT_CHAR)
            self.pending_surrogate = code
        elif code in _LOW_SURROGATES:
            if high is None:
                self._emit(_REPLACEMENT_CHAR)
            else:
                self._emit(chr(0x10000 + ((high - 0xD800) << 10) + (code - 0xDC00)))
        else:
            if high is not None:
                self._emit(_REPLACEMENT_CHAR)
            self._emit(chr(code))

    def _flush_surrogate(self) -> None:
        if self.pending_surrogate is not None:
            self.pending_surrogate = None
            self._emit(_REPLACEMENT_CHAR)

    def _emit(self, text: str, *, html: str | None = None) -> None:
        if self.state.destination is not None:
            return
        self._flush_surrogate()
        if self.cell_break:
            self.cell_break = False
            if self.runs:
                self.runs.append(_Run(style="", html=_CELL_SEPARATOR, text=_CELL_SEPARATOR))
        self.runs.append(
            _Run(
                style=self._run_style(),
                html=html if html is not None else markup.escape(text),
                text=text,
            )
        )

    def _end_paragraph(self) -> None:
        self._flush_surrogate()
        runs, self.runs = self.runs, []
        if not runs:
            return
        self.paragraphs.append((self._paragraph_style(), runs))

    def _finish_picture(self) -> None:
        picture, self.picture = self.picture, None
        if picture is None:
            return
        if picture.mime is None:
            if picture.unsupported:
                self.warnings.append("Skipped RTF picture in an unsupported format")
            return
        try:
            data = bytes.fromhex("".join(picture.hex_digits))
        except ValueError:
            self.warnings.append("Skipped RTF picture with invalid hex data")
            return
        if not data:
            return

        asset_id = assets.compute_asset_id(data)
        token = assets.derive_asset_token("rtf-image", len(self.assets), content_hash=asset_id)
        ext = assets.guess_extension(picture.mime)
        asset = Asset(
            token=token,
            asset_id=asset_id,
            data=data,
            mime=picture.mime,
            original_name=f"{token}.{ext}",
            width_px=_twips_to_int_px(picture.width_twips),
            height_px=_twips_to_int_px(picture.height_twips),
        )
        self.assets.append(asset)
        self.runs.append(_Run(style="", html=markup.asset_image_tag(asset), text=""))

    def _run_style(self) -> str:
        state = self.state
        declarations: list[str] = []
        if state.font_size:
            declarations.append(f"font-size:{assets.format_px(assets.half_points_to_px(state.font_size))}")
        if state.bold:
            declarations.append("font-weight:bold")
        if state.italic:
            declarations.append("font-style:italic")
        decorations = [name for flag, name in ((state.underline, "underline"), (state.strike, "line-through")) if flag]
        if decorations:
            declarations.append(f"text-decoration:{' '.join(decorations)}")
        foreground = self._color(state.foreground)
        if foreground:
            declarations.append(f"color:{foreground}")
        background = self._color(state.background)
        if background:
            declarations.append(f"background-color:{background}")
        if state.font is not None:
            family = assets.sanitize_font_family(self.fonts.get(state.font))
            if family:
                declarations.append(f"font-family:{family}")
        if state.rtl:
            declarations.append("direction:rtl")
        return ";".join(declarations)

    def _paragraph_style(self) -> str:
        state = self.state
        declarations: list[str] = []
        if state.align:
            declarations.append(f"text-align:{state.align}")
        for value, prop in (
            (state.left_indent, "margin-left"),
            (state.right_indent, "margin-right"),
            (state.first_indent, "text-indent"),
        ):
            if value:
                declarations.append(f"{prop}:{assets.format_px(assets.twips_to_px(value))}")
        if state.rtl_paragraph:
            declarations.append("direction:rtl")
        return ";".join(declarations)

    def _color(self, index: int | None) -> str | None:
        if index is None or index >= len(self.colors):
            return None
        rgb = self.colors[index]
        if rgb is None:
            return None
        return "#{:02x}{:02x}{:02x}".format(*rgb)


def _render_runs(runs: list[_Run]) -> Iterator[str]:
    """Yield HTML per run, merging neighbours that share a style."""

    pending_style: str | None = None
    pending: list[str] = []
    for run in runs:
        if run.style != pending_style and pending:
            yield _span(pending_style or "", "".join(pending))
            pending = []
        pending_style = run.style
        pending.append(run.html)
    if pending:
        yield _span(pending_style or "", "".join(pending))


def _span(style: str, body: str) -> str:
    if not style:
        return body
    return f'<span style="{markup.escape(style)}">{body}</span>'


def _resolve_codepage(number: int, warnings: list[str]) -> str:
    candidate = f"cp{number}"
    try:
        codecs.lookup(candidate)
    except LookupError:
        warnings.append(f"Unknown RTF code page {number}; decoding as {DEFAULT_CODEPAGE}")
        return DEFAULT_CODEPAGE
    return candidate


def _twips_to_int_px(value: int) -> int | None:
    if value <= 0:
        return None
    return round(assets.twips_to_px(value))


rtf_parser = RtfParser()
odt_parser = OdtParser()
registry.register_parser(
    rtf_parser,
    DocumentFormat.RTF,
    suffixes=(".rtf",),
    media_types=("application/rtf", "text/rtf"),
    replace=True,
)
registry.register_parser(
    odt_parser,
    DocumentFormat.ODT,
    suffixes=(".odt",),
    media_types=("application/vnd.oasis.opendocument.text",),
    replace=True,
)

__all__ = ["OdtParser", "RtfParser", "odt_parser", "rtf_parser"]
