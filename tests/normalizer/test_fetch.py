from __future__ import annotations

import requests
import responses

from src.normalizer.config import FetchOptions
from src.normalizer.fetch import RequestsFetcher, build_fetcher, null_fetcher

ASSET_URL = "https://assets.example.com/logo.png"


@responses.activate
def test_requests_fetcher_returns_content_and_type() -> None:
    responses.add(responses.GET, ASSET_URL, body=b"png-bytes", content_type="image/png; charset=binary")

    fetched = RequestsFetcher(FetchOptions(user_agent="docnorm-test"))(ASSET_URL)

    assert fetched is not None
    assert fetched.url == ASSET_URL
    assert fetched.content == b"png-bytes"
    assert fetched.content_type == "image/png"
    assert responses.calls[0].request.headers["User-Agent"] == "docnorm-test"


@responses.activate
def test_requests_fetcher_returns_none_on_http_error() -> None:
    responses.add(responses.GET, ASSET_URL, status=500)

    assert RequestsFetcher()(ASSET_URL) is None


@responses.activate
def test_requests_fetcher_returns_none_on_connection_error() -> None:
    responses.add(responses.GET, ASSET_URL, body=requests.ConnectionError("refused"))

    assert RequestsFetcher()(ASSET_URL) is None


@responses.activate
def test_requests_fetcher_enforces_size_limit() -> None:
    responses.add(responses.GET, ASSET_URL, body=b"x" * 2048, content_type="image/png")

    assert RequestsFetcher(FetchOptions(max_bytes=1024))(ASSET_URL) is None


def test_requests_fetcher_ignores_non_http_references() -> None:
    assert RequestsFetcher()("file:///etc/passwd") is None


def test_build_fetcher_respects_enabled_flag() -> None:
    assert build_fetcher(FetchOptions(enabled=False)) is null_fetcher
    assert isinstance(build_fetcher(FetchOptions()), RequestsFetcher)
    assert null_fetcher(ASSET_URL) is None
