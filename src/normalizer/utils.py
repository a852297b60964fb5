"""Utility helpers shared across normalization components."""

from __future__ import annotations

import hashlib
import mimetypes
import re
from collections.abc import Sequence
from pathlib import Path, PurePosixPath
from urllib.parse import urlparse

_SLUG_PATTERN = re.compile(r"[^a-z0-9]+")
_FALLBACK_ENCODING = "cp1252"


def ensure_directory(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def guess_media_type(path: Path | str) -> str | None:
    media_type, _encoding = mimetypes.guess_type(str(path))
    return media_type


def sha256_bytes(data: bytes) -> str:
    digest = hashlib.sha256()
    digest.update(data)
    return digest.hexdigest()


def slugify(value: str, *, max_length: int = 48) -> str:
    candidate = value.encode("ascii", errors="ignore").decode().lower()
    candidate = candidate.replace("\\", "/")
    candidate = candidate.rsplit("/", 1)[-1]
    candidate = _SLUG_PATTERN.sub("-", candidate).strip("-")
    if not candidate:
        candidate = "document"
    if len(candidate) > max_length:
        candidate = candidate[:max_length].rstrip("-")
        if not candidate:
            candidate = "document"
    return candidate


def normalize_suffixes(
    values: Sequence[str] | str | None,
    *,
    default: Sequence[str] | None = None,
    sort: bool = False,
    preserve_order: bool = True,
) -> tuple[str, ...]:
    """Normalize file suffix tokens to lowercase dotted form.

    - ``default``: returned when input is falsy or normalizes to no tokens.
    - ``sort``: sort the unique suffixes lexicographically when ``True``.
    - ``preserve_order``: keep first-appearance ordering when ``True``.
    """

    if not values:
        cleaned: list[str] = []
    else:
        if isinstance(values, str):
            iterator = [values]
        else:
            iterator = values
        cleaned = []
        for raw in iterator:
            token = str(raw).strip().lower()
            if not token:
                continue
            if not token.startswith("."):
                token = f".{token}"
            cleaned.append(token)

    if not cleaned:
        if default is not None:
            return tuple(default)
        return ()

    if preserve_order:
        cleaned = list(dict.fromkeys(cleaned))
    else:
        cleaned = list(set(cleaned))

    if sort:
        cleaned.sort()

    return tuple(cleaned)


def filename_suffix(filename: str | None) -> str | None:
    """Return the lowercase dotted suffix of a filename or URL path."""

    if not filename:
        return None
    name = str(filename).replace("\\", "/")
    if is_http_url(name):
        name = urlparse(name).path
    suffix = PurePosixPath(name).suffix
    return suffix.lower() if suffix else None


def normalize_media_type(value: str | None) -> str | None:
    """Strip parameters such as ``; charset=utf-8`` and lowercase the type."""

    if not value:
        return None
    base = value.split(";", 1)[0].strip().lower()
    return base or None


def is_http_url(value: str) -> bool:
    """Return ``True`` when ``value`` looks like an HTTP or HTTPS URL."""

    try:
        parsed = urlparse(value)
    except ValueError:
        return False
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


def decode_text(buffer: bytes) -> tuple[str, list[str]]:
    """Decode uploaded text as UTF-8, falling back to cp1252 with a warning."""

    try:
        return buffer.decode("utf-8-sig"), []
    except UnicodeDecodeError:
        text = buffer.decode(_FALLBACK_ENCODING, errors="replace")
        return text, [f"Input is not valid UTF-8; decoded as {_FALLBACK_ENCODING}"]


__all__ = [
    "decode_text",
    "ensure_directory",
    "filename_suffix",
    "guess_media_type",
    "is_http_url",
    "normalize_media_type",
    "normalize_suffixes",
    "sha256_bytes",
    "slugify",
]
