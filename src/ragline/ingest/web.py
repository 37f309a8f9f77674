"""Website scraping and same-host crawling with SSRF protection.

Security requirements:
- SSRF guard: ipaddress module blocks private/loopback/link-local ranges before
  any connection is established (checked again for every crawled URL).
- Allowed URL schemes: https:// and http:// only.
- Content-Type whitelist: text/html and text/plain only.
- Max response body: 5 MB.
- Timeout: 30 seconds (connect + read).
- Max redirects: 3.

Error classification: a malformed URL, a blocked address, an unsupported
content type or an oversized body is fatal; network failures are retryable.
"""

from __future__ import annotations

import ipaddress
import socket
import urllib.error
import urllib.parse
import urllib.request
from collections import deque
from http.client import HTTPResponse

import structlog
from bs4 import BeautifulSoup

from ragline.errors import FatalIngestError, IngestError
from ragline.ingest.chunker import Document
from ragline.ingest.parsers import html_to_text

logger = structlog.get_logger(logger_name=__name__)

_USER_AGENT = "ragline/0.1 (knowledge ingestion)"
_MAX_BYTES = 5 * 1024 * 1024  # 5 MB
_TIMEOUT = 30  # seconds
_MAX_REDIRECTS = 3
_ALLOWED_SCHEMES = {"https", "http"}
_ALLOWED_CONTENT_TYPES = {"text/html", "text/plain"}


class SsrfError(FatalIngestError):
    """Raised when a URL resolves to a private or reserved address."""


class HttpScraper:
    """Fetch a page (``scrape``) or a bounded same-host set of pages (``crawl``).

    Each returned Document carries the page URL and, for HTML, the page title.
    """

    def scrape(self, url: str) -> list[Document]:
        body, content_type = self._fetch_checked(url)
        doc = self._to_document(url, body, content_type)
        return [doc] if doc.text.strip() else []

    def crawl(self, url: str, limit: int = 10) -> list[Document]:
        """Breadth-first crawl of *url*'s host, visiting at most *limit* pages.

        A failure on the start page propagates. Failures on later pages are
        logged and skipped so one broken link does not sink the whole crawl.
        """
        if limit < 1:
            raise FatalIngestError(f"crawl limit must be >= 1, got {limit}")

        start = _strip_fragment(url)
        host = urllib.parse.urlparse(start).hostname
        queue: deque[str] = deque([start])
        seen: set[str] = {start}
        documents: list[Document] = []
        visited = 0

        while queue and visited < limit:
            page_url = queue.popleft()
            try:
                body, content_type = self._fetch_checked(page_url)
            except IngestError as exc:
                if page_url == start:
                    raise
                logger.warning("crawl_page_skipped", url=page_url, error=str(exc))
                continue
            visited += 1

            doc = self._to_document(page_url, body, content_type)
            if doc.text.strip():
                documents.append(doc)

            if content_type != "text/html":
                continue
            for link in _extract_links(page_url, body):
                if link in seen or urllib.parse.urlparse(link).hostname != host:
                    continue
                seen.add(link)
                queue.append(link)

        logger.info("crawl_finished", url=start, pages=visited, documents=len(documents))
        return documents

    # ------------------------------------------------------------------
    # Fetch pipeline
    # ------------------------------------------------------------------

    def _fetch_checked(self, url: str) -> tuple[bytes, str]:
        self._validate_scheme(url)
        self._check_ssrf(url)
        return self._fetch(url)

    @staticmethod
    def _validate_scheme(url: str) -> None:
        parsed = urllib.parse.urlparse(url)
        if parsed.scheme not in _ALLOWED_SCHEMES:
            raise FatalIngestError(
                f"Unsupported URL scheme '{parsed.scheme}'. Only https:// and http:// are allowed."
            )

    @staticmethod
    def _check_ssrf(url: str) -> None:
        """Resolve the hostname and block private/reserved IP ranges.

        Raises SsrfError if any resolved address is private, loopback,
        link-local, or otherwise reserved.
        """
        parsed = urllib.parse.urlparse(url)
        hostname = parsed.hostname
        if not hostname:
            raise FatalIngestError(f"URL has no hostname: {url}")

        try:
            addrinfos = socket.getaddrinfo(hostname, None)
        except socket.gaierror as exc:
            raise IngestError(f"DNS resolution failed for '{hostname}': {exc}") from exc

        for addrinfo in addrinfos:
            addr_str = addrinfo[4][0]
            try:
                ip = ipaddress.ip_address(addr_str)
            except ValueError:
                continue
            if (
                ip.is_private
                or ip.is_loopback
                or ip.is_link_local
                or ip.is_reserved
                or ip.is_multicast
                or ip.is_unspecified
            ):
                raise SsrfError(
                    f"URL resolves to private address ({ip}). "
                    "Access to internal network addresses is not allowed."
                )

    @staticmethod
    def _fetch(url: str) -> tuple[bytes, str]:
        """Fetch *url* with timeout, redirect limit, size cap, and Content-Type check.

        Returns (body_bytes, content_type_without_params).
        """
        request = urllib.request.Request(url, headers={"User-Agent": _USER_AGENT})
        opener = urllib.request.build_opener(_LimitedRedirectHandler(_MAX_REDIRECTS))

        try:
            response: HTTPResponse = opener.open(request, timeout=_TIMEOUT)
        except urllib.error.HTTPError as exc:
            # 4xx other than 408/429 will not fix itself
            retryable = exc.code in (408, 429) or exc.code >= 500
            raise IngestError(
                f"Failed to fetch URL '{url}': HTTP {exc.code}", retryable=retryable
            ) from exc
        except (urllib.error.URLError, TimeoutError, ConnectionError) as exc:
            raise IngestError(f"Failed to fetch URL '{url}': {exc}") from exc

        raw_ct = response.headers.get("Content-Type", "text/html")
        ct = raw_ct.split(";")[0].strip().lower()
        if ct not in _ALLOWED_CONTENT_TYPES:
            raise FatalIngestError(
                f"Unsupported Content-Type '{ct}' for URL '{url}'. "
                f"Accepted: {', '.join(sorted(_ALLOWED_CONTENT_TYPES))}"
            )

        body = response.read(_MAX_BYTES + 1)
        if len(body) > _MAX_BYTES:
            raise FatalIngestError(
                f"Response body exceeds {_MAX_BYTES // (1024 * 1024)} MB limit for URL '{url}'."
            )

        return body, ct

    @staticmethod
    def _to_document(url: str, body: bytes, content_type: str) -> Document:
        text = body.decode("utf-8", errors="replace")
        if content_type == "text/plain":
            return Document(text=text, url=url)

        soup = BeautifulSoup(text, "html.parser")
        title = soup.title.get_text(strip=True) if soup.title else None
        return Document(text=html_to_text(text), url=url, title=title or None)


class _LimitedRedirectHandler(urllib.request.HTTPRedirectHandler):
    """Raise an error after more than *max_redirects* redirects."""

    def __init__(self, max_redirects: int) -> None:
        self._max_redirects = max_redirects
        self._count = 0

    def redirect_request(self, req, fp, code, msg, headers, newurl):
        self._count += 1
        if self._count > self._max_redirects:
            raise FatalIngestError(
                f"Too many redirects (>{self._max_redirects}) for URL '{req.full_url}'."
            )
        HttpScraper._check_ssrf(newurl)
        return super().redirect_request(req, fp, code, msg, headers, newurl)


def _extract_links(base_url: str, body: bytes) -> list[str]:
    """Absolute http(s) links from an HTML page, fragments removed, in page order."""
    soup = BeautifulSoup(body.decode("utf-8", errors="replace"), "html.parser")
    links: list[str] = []
    for anchor in soup.find_all("a", href=True):
        absolute = _strip_fragment(urllib.parse.urljoin(base_url, anchor["href"]))
        if urllib.parse.urlparse(absolute).scheme in _ALLOWED_SCHEMES:
            links.append(absolute)
    return links


def _strip_fragment(url: str) -> str:
    return urllib.parse.urldefrag(url)[0]
