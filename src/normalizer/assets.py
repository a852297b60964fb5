"""Pure helpers for asset identity, naming and unit conversion."""

from __future__ import annotations

import base64
import binascii
import hashlib
import re
from dataclasses import dataclass
from pathlib import PurePosixPath
from urllib.parse import unquote_to_bytes

ASSET_ID_PREFIX = "sha256:"
CSS_PX_PER_INCH = 96
EMU_PER_INCH = 914400
TWIPS_PER_INCH = 1440
POINTS_PER_INCH = 72

_MIME_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/gif": "gif",
    "image/svg+xml": "svg",
    "image/webp": "webp",
    "image/bmp": "bmp",
    "image/tiff": "tiff",
    "image/x-emf": "emf",
    "image/x-wmf": "wmf",
    "application/pdf": "pdf",
}
_EXTENSION_MIMES = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
    "svg": "image/svg+xml",
    "webp": "image/webp",
    "bmp": "image/bmp",
    "tif": "image/tiff",
    "tiff": "image/tiff",
    "emf": "image/x-emf",
    "wmf": "image/x-wmf",
}

_DATA_URI_PATTERN = re.compile(r"^data:([^;,]+)?((?:;[^;,]+)*?)(;base64)?,(.*)$", re.IGNORECASE | re.DOTALL)
_FILENAME_UNSAFE = re.compile(r"[^a-zA-Z0-9\-_.]")
_STEM_UNSAFE = re.compile(r"[^a-zA-Z0-9\-_]")
_FONT_UNSAFE = re.compile(r"[^a-zA-Z0-9 _\-]")
_FONT_SUBSET_PREFIX = re.compile(r"^[A-Z]{6}\+")
_STYLE_WIDTH = re.compile(r"(?:^|;)\s*width\s*:\s*([0-9.]+)\s*(px|pt)?", re.IGNORECASE)
_STYLE_HEIGHT = re.compile(r"(?:^|;)\s*height\s*:\s*([0-9.]+)\s*(px|pt)?", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class DecodedDataUri:
    data: bytes
    mime: str


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def compute_asset_id(data: bytes) -> str:
    """Return the ``sha256:<hex>`` content hash used as ``Asset.asset_id``."""
    return f"{ASSET_ID_PREFIX}{sha256_hex(data)}"


def derive_asset_token(
    kind: str,
    sequence_index: int,
    *,
    content_hash: str | None = None,
    scope: str | None = None,
) -> str:
    """Derive a deterministic asset token.

    The token depends only on its arguments, so two parses of byte-identical
    input that visit assets in the same order yield the same tokens. ``scope``
    is typically the document filename; ``content_hash`` is mixed in only when
    the asset bytes are intrinsic to the input.
    """

    if sequence_index < 0:
        raise ValueError("sequence_index must be non-negative")
    parts: list[str] = []
    if scope:
        parts.append(scope)
    if content_hash:
        parts.append(content_hash)
    parts.append(str(sequence_index))
    digest = sha256_hex("|".join(parts).encode("utf-8"))
    return f"{kind}_{digest[:24]}"


def guess_extension(mime: str | None, fallback: str = "bin") -> str:
    if not mime:
        return fallback
    base = mime.split(";", 1)[0].strip().lower()
    if base in _MIME_EXTENSIONS:
        return _MIME_EXTENSIONS[base]
    if base.startswith("image/"):
        subtype = re.sub(r"[^a-z0-9]", "", base[len("image/"):])
        return subtype or fallback
    return fallback


def guess_mime_from_name(name: str | None) -> str | None:
    if not name:
        return None
    suffix = PurePosixPath(name.split("?", 1)[0]).suffix.lower().lstrip(".")
    return _EXTENSION_MIMES.get(suffix)


def sanitize_filename(name: str | None, ext: str | None = None, *, max_length: int = 120) -> str:
    """Return a filesystem-safe name whose extension matches ``ext`` when given."""

    safe_ext = re.sub(r"[^a-z0-9]", "", (ext or "").lower())
    candidate = re.sub(r"\s+", "-", str(name or "asset").strip())
    candidate = _FILENAME_UNSAFE.sub("", candidate)
    candidate = candidate.lstrip(".-_")[:max_length] or "asset"

    path = PurePosixPath(candidate)
    stem = _STEM_UNSAFE.sub("", path.stem) or "asset"
    final_ext = f".{safe_ext}" if safe_ext else path.suffix.lower()
    return f"{stem}{final_ext}"


def asset_storage_key(asset_id: str | None, filename: str | None) -> str:
    digest = str(asset_id or "")
    if digest.startswith(ASSET_ID_PREFIX):
        digest = digest[len(ASSET_ID_PREFIX):]
    prefix = digest[:2] or "00"
    safe_name = sanitize_filename(filename or digest or "asset")
    return f"assets/{prefix}/{digest}/{safe_name}"


def decode_data_uri(uri: str) -> DecodedDataUri | None:
    """Decode a ``data:`` URI; return ``None`` when it is malformed."""

    match = _DATA_URI_PATTERN.match(uri or "")
    if not match:
        return None
    mime = (match.group(1) or "application/octet-stream").strip().lower()
    payload = match.group(4) or ""
    try:
        if match.group(3):
            data = base64.b64decode(re.sub(r"\s+", "", payload), validate=True)
        else:
            data = unquote_to_bytes(payload)
    except (binascii.Error, ValueError):
        return None
    return DecodedDataUri(data=data, mime=mime)


def sanitize_font_family(font_name: str | None) -> str | None:
    """Reduce an arbitrary font name to a safe CSS ``font-family`` value."""

    if not font_name:
        return None
    name = str(font_name).lstrip("/")
    name = _FONT_SUBSET_PREFIX.sub("", name)
    safe = _FONT_UNSAFE.sub("", name).strip()
    if not safe:
        return None
    if " " in safe:
        return f"'{safe}'"
    return safe


def emu_to_px(emu: int | float | str | None) -> int | None:
    value = _as_number(emu)
    if value is None or value <= 0:
        return None
    return round(value / EMU_PER_INCH * CSS_PX_PER_INCH)


def twips_to_px(twips: int | float | None) -> float:
    value = _as_number(twips) or 0.0
    return value / TWIPS_PER_INCH * CSS_PX_PER_INCH


def points_to_px(points: int | float | None) -> float:
    value = _as_number(points) or 0.0
    return value / POINTS_PER_INCH * CSS_PX_PER_INCH


def half_points_to_px(half_points: int | float | None) -> float:
    value = _as_number(half_points) or 0.0
    return points_to_px(value / 2)


def extract_width_from_style(style: str | None) -> int | None:
    return _dimension_from_style(_STYLE_WIDTH, style)


def extract_height_from_style(style: str | None) -> int | None:
    return _dimension_from_style(_STYLE_HEIGHT, style)


def parse_pixel_attribute(value: str | None) -> int | None:
    """Parse ``width``/``height`` attribute values such as ``"120"`` or ``"120px"``."""

    if not value:
        return None
    match = re.match(r"^\s*([0-9]+(?:\.[0-9]+)?)\s*(px)?\s*$", str(value), re.IGNORECASE)
    if not match:
        return None
    return round(float(match.group(1)))


def format_px(value: float) -> str:
    return f"{value:.2f}px"


def _dimension_from_style(pattern: re.Pattern[str], style: str | None) -> int | None:
    if not style:
        return None
    match = pattern.search(style)
    if not match:
        return None
    value = float(match.group(1))
    unit = (match.group(2) or "px").lower()
    if unit == "pt":
        return round(points_to_px(value))
    return round(value)


def _as_number(value: int | float | str | None) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


__all__ = [
    "ASSET_ID_PREFIX",
    "DecodedDataUri",
    "asset_storage_key",
    "compute_asset_id",
    "decode_data_uri",
    "derive_asset_token",
    "emu_to_px",
    "extract_height_from_style",
    "extract_width_from_style",
    "format_px",
    "guess_extension",
    "guess_mime_from_name",
    "half_points_to_px",
    "parse_pixel_attribute",
    "points_to_px",
    "sanitize_filename",
    "sanitize_font_family",
    "sha256_hex",
    "twips_to_px",
]
