"""Tests for HttpScraper: SSRF guard, scheme validation, fetch pipeline and crawl."""

from __future__ import annotations

import socket
import urllib.error
from unittest.mock import MagicMock, patch

import pytest

from ragline.errors import FatalIngestError, IngestError
from ragline.ingest.web import HttpScraper, SsrfError, _extract_links, _strip_fragment


def _patch_getaddrinfo(ip: str):
    addr_info = [(None, None, None, None, (ip, 0))]
    return patch("ragline.ingest.web.socket.getaddrinfo", return_value=addr_info)


def _page(title: str, body: str, links: tuple[str, ...] = ()) -> bytes:
    anchors = "".join(f'<a href="{href}">link</a>' for href in links)
    return f"<html><head><title>{title}</title></head><body><p>{body}</p>{anchors}</body></html>".encode()


# ------------------------------------------------------------------
# Scheme validation
# ------------------------------------------------------------------


@pytest.mark.parametrize("url", ["https://example.com/page", "http://example.com"])
def test_scheme_http_and_https_ok(url):
    HttpScraper._validate_scheme(url)


@pytest.mark.parametrize("url", ["ftp://example.com", "file:///etc/passwd", "javascript:alert(1)"])
def test_other_schemes_fatal(url):
    with pytest.raises(FatalIngestError, match="scheme"):
        HttpScraper._validate_scheme(url)


# ------------------------------------------------------------------
# SSRF guard
# ------------------------------------------------------------------


def test_no_hostname_fatal():
    with pytest.raises(FatalIngestError, match="hostname"):
        HttpScraper._check_ssrf("https://")


def test_public_ip_ok():
    with _patch_getaddrinfo("93.184.216.34"):
        HttpScraper._check_ssrf("https://example.com")


@pytest.mark.parametrize(
    "ip", ["127.0.0.1", "10.0.0.1", "192.168.1.1", "169.254.169.254", "::1", "0.0.0.0"]
)
def test_private_addresses_blocked(ip):
    with _patch_getaddrinfo(ip):
        with pytest.raises(SsrfError, match="private address"):
            HttpScraper._check_ssrf("http://internal.example/")


def test_ssrf_error_is_not_retryable():
    with _patch_getaddrinfo("127.0.0.1"):
        with pytest.raises(SsrfError) as exc_info:
            HttpScraper._check_ssrf("http://localhost/")
    assert exc_info.value.retryable is False


def test_dns_failure_is_retryable():
    with patch("ragline.ingest.web.socket.getaddrinfo", side_effect=socket.gaierror("nope")):
        with pytest.raises(IngestError) as exc_info:
            HttpScraper._check_ssrf("https://unknown.example")
    assert exc_info.value.retryable is True


# ------------------------------------------------------------------
# Fetch
# ------------------------------------------------------------------


def _mock_opener(body: bytes = b"<p>hi</p>", content_type: str = "text/html; charset=utf-8"):
    response = MagicMock()
    response.headers.get.return_value = content_type
    response.read.return_value = body
    opener = MagicMock()
    opener.open.return_value = response
    return patch("ragline.ingest.web.urllib.request.build_opener", return_value=opener)


def test_fetch_returns_body_and_bare_content_type():
    with _mock_opener(b"hello", "text/plain; charset=utf-8"):
        assert HttpScraper._fetch("https://example.com") == (b"hello", "text/plain")


def test_fetch_rejects_binary_content_type():
    with _mock_opener(b"%PDF", "application/pdf"):
        with pytest.raises(FatalIngestError, match="Content-Type"):
            HttpScraper._fetch("https://example.com/file.pdf")


def test_fetch_rejects_oversized_body():
    with _mock_opener(b"x" * (5 * 1024 * 1024 + 1)):
        with pytest.raises(FatalIngestError, match="5 MB"):
            HttpScraper._fetch("https://example.com/big")


@pytest.mark.parametrize("code,retryable", [(404, False), (403, False), (429, True), (503, True)])
def test_fetch_http_error_classification(code, retryable):
    opener = MagicMock()
    opener.open.side_effect = urllib.error.HTTPError("https://example.com", code, "err", {}, None)
    with patch("ragline.ingest.web.urllib.request.build_opener", return_value=opener):
        with pytest.raises(IngestError) as exc_info:
            HttpScraper._fetch("https://example.com")
    assert exc_info.value.retryable is retryable


def test_fetch_network_error_retryable():
    opener = MagicMock()
    opener.open.side_effect = urllib.error.URLError("connection refused")
    with patch("ragline.ingest.web.urllib.request.build_opener", return_value=opener):
        with pytest.raises(IngestError) as exc_info:
            HttpScraper._fetch("https://example.com")
    assert exc_info.value.retryable is True


# ------------------------------------------------------------------
# Scrape and crawl
# ------------------------------------------------------------------


def test_scrape_returns_titled_document():
    with _patch_getaddrinfo("93.184.216.34"), patch.object(
        HttpScraper, "_fetch", return_value=(_page("Pricing", "Plans start at $10."), "text/html")
    ):
        docs = HttpScraper().scrape("https://example.com/pricing")
    assert len(docs) == 1
    assert docs[0].title == "Pricing"
    assert docs[0].url == "https://example.com/pricing"
    assert "Plans start at $10." in docs[0].text


def test_scrape_blocked_before_fetch():
    with _patch_getaddrinfo("10.1.2.3"), patch.object(HttpScraper, "_fetch") as fetch:
        with pytest.raises(SsrfError):
            HttpScraper().scrape("http://intranet.example")
    fetch.assert_not_called()


def _site(pages: dict[str, bytes]):
    def fetch(url):
        if url not in pages:
            raise IngestError(f"Failed to fetch URL '{url}': HTTP 404", retryable=False)
        return pages[url], "text/html"

    return patch.object(HttpScraper, "_fetch_checked", side_effect=fetch)


def test_crawl_follows_same_host_links_breadth_first():
    pages = {
        "https://ex.com/": _page("Home", "Welcome", ("/a", "/b", "https://other.com/x")),
        "https://ex.com/a": _page("A", "Page A", ("/c",)),
        "https://ex.com/b": _page("B", "Page B"),
        "https://ex.com/c": _page("C", "Page C"),
    }
    with _site(pages) as fetch:
        docs = HttpScraper().crawl("https://ex.com/", limit=10)
    assert [d.url for d in docs] == [
        "https://ex.com/",
        "https://ex.com/a",
        "https://ex.com/b",
        "https://ex.com/c",
    ]
    assert "https://other.com/x" not in [c.args[0] for c in fetch.call_args_list]


def test_crawl_respects_limit():
    pages = {
        "https://ex.com/": _page("Home", "Welcome", ("/a", "/b")),
        "https://ex.com/a": _page("A", "Page A"),
        "https://ex.com/b": _page("B", "Page B"),
    }
    with _site(pages):
        docs = HttpScraper().crawl("https://ex.com/", limit=2)
    assert len(docs) == 2


def test_crawl_skips_broken_links():
    pages = {
        "https://ex.com/": _page("Home", "Welcome", ("/missing", "/b")),
        "https://ex.com/b": _page("B", "Page B"),
    }
    with _site(pages):
        docs = HttpScraper().crawl("https://ex.com/")
    assert [d.title for d in docs] == ["Home", "B"]


def test_crawl_start_page_failure_propagates():
    with _site({}):
        with pytest.raises(IngestError):
            HttpScraper().crawl("https://ex.com/")


def test_crawl_invalid_limit():
    with pytest.raises(FatalIngestError):
        HttpScraper().crawl("https://ex.com/", limit=0)


# ------------------------------------------------------------------
# Link helpers
# ------------------------------------------------------------------


def test_extract_links_absolute_and_defragmented():
    body = b'<a href="/docs#intro">d</a><a href="mailto:x@y.z">m</a><a href="https://ex.com/b">b</a>'
    assert _extract_links("https://ex.com/start", body) == [
        "https://ex.com/docs",
        "https://ex.com/b",
    ]


def test_strip_fragment():
    assert _strip_fragment("https://ex.com/p#section") == "https://ex.com/p"
