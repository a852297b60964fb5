"""Best-effort retrieval of remote assets referenced by documents."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

import requests

from . import utils
from .config import FetchOptions

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True, slots=True)
class FetchedResource:
    url: str
    content: bytes
    content_type: str | None = None


class Fetcher(Protocol):
    """Side-effecting capability injected into parsers that resolve remote assets.

    Implementations return ``None`` instead of raising when a resource cannot
    be retrieved.
    """

    def __call__(self, url: str) -> FetchedResource | None:
        ...


class RequestsFetcher:
    """Fetch remote assets over HTTP with a hard timeout and size ceiling."""

    def __init__(self, options: FetchOptions | None = None) -> None:
        self.options = options or FetchOptions()

    def __call__(self, url: str) -> FetchedResource | None:
        if not utils.is_http_url(url):
            logger.debug("Skipping non-HTTP asset reference %s", url)
            return None

        headers = {"User-Agent": self.options.user_agent}
        try:
            with requests.get(url, headers=headers, timeout=self.options.timeout, stream=True) as response:
                if not response.ok:
                    logger.warning("Unable to fetch remote asset %s (status %s)", url, response.status_code)
                    return None
                content = self._read_limited(response, url)
                content_type = utils.normalize_media_type(response.headers.get("Content-Type"))
        except requests.RequestException as exc:
            logger.warning("Failed to download remote asset %s: %s", url, exc)
            return None

        if content is None:
            return None
        return FetchedResource(url=url, content=content, content_type=content_type)

    def _read_limited(self, response: requests.Response, url: str) -> bytes | None:
        limit = self.options.max_bytes
        buffer = bytearray()
        for chunk in response.iter_content(chunk_size=_CHUNK_SIZE):
            if not chunk:
                continue
            buffer.extend(chunk)
            if len(buffer) > limit:
                logger.warning("Remote asset %s exceeds %d bytes; leaving it unresolved", url, limit)
                return None
        return bytes(buffer)


def null_fetcher(url: str) -> FetchedResource | None:
    """Fetcher used when remote retrieval is disabled."""

    logger.debug("Remote fetch disabled; leaving %s unresolved", url)
    return None


def build_fetcher(options: FetchOptions) -> Fetcher:
    if not options.enabled:
        return null_fetcher
    return RequestsFetcher(options)


__all__ = [
    "FetchedResource",
    "Fetcher",
    "RequestsFetcher",
    "build_fetcher",
    "null_fetcher",
]
