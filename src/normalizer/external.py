"""Text extraction through external command line converters."""

from __future__ import annotations

import logging
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Iterable, Sequence

from . import markup, utils
from .base import (
    DocumentFormat,
    FormatMetadata,
    NormalizedDocument,
    ParseError,
    empty_document,
)

logger = logging.getLogger(__name__)

PATH_PLACEHOLDER = "{path}"


class ExternalTextExtractor:
    """Run a converter binary against a temporary copy of the input buffer.

    The command is an argument list in which ``{path}`` marks where the input
    file goes; when absent the path is appended. Standard output is decoded as
    the extracted text.
    """

    def __init__(
        self,
        command: Sequence[str],
        *,
        format: DocumentFormat,
        suffix: str,
        timeout: float,
    ) -> None:
        if not command:
            raise ValueError("Extractor command must not be empty")
        self.command = tuple(command)
        self.format = format
        self.suffix = suffix
        self.timeout = timeout

    @property
    def program(self) -> str:
        return self.command[0]

    def is_available(self) -> bool:
        return shutil.which(self.program) is not None

    def extract(self, buffer: bytes) -> tuple[str, list[str]]:
        """Return ``(text, warnings)`` produced by the converter."""

        if not self.is_available():
            raise ParseError.unsupported(
                f"{self.format.value.upper()} parsing requires the '{self.program}' extractor, "
                "which is not installed. Please convert to DOCX format.",
                format=self.format,
            )

        with tempfile.TemporaryDirectory(prefix="docnorm-") as workdir:
            source = Path(workdir) / f"input{self.suffix}"
            source.write_bytes(buffer)
            argv = self._build_argv(source)
            logger.debug("Running external extractor: %s", " ".join(argv))
            try:
                result = subprocess.run(
                    argv,
                    capture_output=True,
                    timeout=self.timeout,
                    check=False,
                )
            except subprocess.TimeoutExpired as exc:
                raise ParseError.malformed(
                    f"'{self.program}' timed out after {self.timeout:g} seconds",
                    format=self.format,
                ) from exc
            except FileNotFoundError as exc:
                raise ParseError.unsupported(
                    f"'{self.program}' could not be executed. Please convert to DOCX format.",
                    format=self.format,
                ) from exc
            except OSError as exc:
                raise ParseError.malformed(
                    f"Failed to execute '{self.program}': {exc}", format=self.format
                ) from exc

        if result.returncode != 0:
            stderr = _trim_output(result.stderr.decode("utf-8", errors="replace"))
            raise ParseError.malformed(
                f"'{self.program}' exited with status {result.returncode}: {stderr or 'no output'}",
                format=self.format,
            )

        return utils.decode_text(result.stdout or b"")

    def _build_argv(self, source: Path) -> list[str]:
        if PATH_PLACEHOLDER not in " ".join(self.command):
            return [*self.command, str(source)]
        return [part.replace(PATH_PLACEHOLDER, str(source)) for part in self.command]


def synthesize_text_document(
    text: str,
    *,
    format: DocumentFormat,
    wrapper_class: str,
    warnings: Iterable[str] = (),
) -> NormalizedDocument:
    """Wrap extracted plain text into paragraph HTML for formats without structure."""

    notes = list(warnings)
    cleaned = text.replace("\r\n", "\n").replace("\r", "\n").strip()
    if not cleaned:
        return empty_document(
            format,
            markup.wrap("div", markup.EMPTY_PARAGRAPH, {"class": wrapper_class}),
            warnings=notes,
        )

    return NormalizedDocument(
        text=cleaned,
        html=markup.wrap("div", markup.text_to_paragraph_html(cleaned), {"class": wrapper_class}),
        metadata=FormatMetadata(
            format=format,
            has_structure=False,
            warnings=tuple(notes),
            facts={"paragraph_count": len(markup.split_paragraphs(cleaned))},
        ),
    )


def _trim_output(text: str, limit: int = 500) -> str:
    data = (text or "").strip()
    if len(data) <= limit:
        return data
    return f"{data[:limit]}... [truncated]"


__all__ = ["ExternalTextExtractor", "PATH_PLACEHOLDER", "synthesize_text_document"]
