"""Tests for per-source-type fetch and parse dispatch."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from ragline.db.models import (
    CloudFileSource,
    FileSource,
    QASource,
    TextSource,
    WebsiteSource,
    WorkspacePageSource,
)
from ragline.errors import FatalIngestError
from ragline.ingest.chunker import Document
from ragline.ingest.fetchers import LocalFileStore, RawContent, SourceFetcher, qa_text

_BASE = {"id": "src-1", "tenant_id": "t1", "agent_id": "a1", "name": "Source"}


# ------------------------------------------------------------------
# Inline sources
# ------------------------------------------------------------------


def test_text_source_passes_content_through():
    raw = SourceFetcher().fetch(TextSource(content="Opening hours: 9-5", **_BASE))
    assert raw.data is None
    assert SourceFetcher().parse(raw) == [Document(text="Opening hours: 9-5")]


def test_qa_source_renders_question_and_answer():
    raw = SourceFetcher().fetch(QASource(question="Refunds?", answer="Within 30 days.", **_BASE))
    assert raw.documents[0].text == "Question: Refunds?\n\nAnswer: Within 30 days."
    assert qa_text("Q", "A") == "Question: Q\n\nAnswer: A"


def test_parse_drops_blank_documents():
    raw = RawContent(documents=[Document(text="  "), Document(text="kept")])
    assert [d.text for d in SourceFetcher().parse(raw)] == ["kept"]


# ------------------------------------------------------------------
# Files
# ------------------------------------------------------------------


def test_file_source_reads_bytes_and_parses():
    files = MagicMock()
    files.read.return_value = b"plain file body"
    fetcher = SourceFetcher(files=files)
    raw = fetcher.fetch(FileSource(file_id="f-9", mime_type="text/plain", **_BASE))
    files.read.assert_called_once_with("f-9")
    assert raw.size_kb == round(len(b"plain file body") / 1024, 2)
    assert fetcher.parse(raw)[0].text == "plain file body"


def test_file_source_without_store_is_fatal():
    with pytest.raises(FatalIngestError, match="file store"):
        SourceFetcher().fetch(FileSource(file_id="f", mime_type="text/plain", **_BASE))


def test_unsupported_file_type_is_fatal_on_parse():
    raw = RawContent(data=b"\x89PNG", media_type="image/png")
    with pytest.raises(FatalIngestError, match="Unsupported file type"):
        SourceFetcher().parse(raw)


def test_local_file_store_reads_relative_to_root(tmp_path):
    (tmp_path / "notes.txt").write_bytes(b"hello")
    assert LocalFileStore(tmp_path).read("notes.txt") == b"hello"
    assert LocalFileStore().read(str(tmp_path / "notes.txt")) == b"hello"


def test_local_file_store_missing_file_is_fatal(tmp_path):
    with pytest.raises(FatalIngestError, match="File not found"):
        LocalFileStore(tmp_path).read("missing.pdf")


# ------------------------------------------------------------------
# Websites
# ------------------------------------------------------------------


def test_website_scrape_mode():
    scraper = MagicMock()
    scraper.scrape.return_value = [Document(text="page", url="https://ex.com")]
    raw = SourceFetcher(scraper=scraper).fetch(WebsiteSource(url="https://ex.com", **_BASE))
    assert raw.documents[0].url == "https://ex.com"
    scraper.crawl.assert_not_called()


def test_website_crawl_mode_passes_limit():
    scraper = MagicMock()
    scraper.crawl.return_value = [Document(text="a"), Document(text="b")]
    source = WebsiteSource(url="https://ex.com", mode="crawl", crawl_limit=5, **_BASE)
    raw = SourceFetcher(scraper=scraper).fetch(source)
    scraper.crawl.assert_called_once_with("https://ex.com", 5)
    assert len(raw.documents) == 2


def test_website_without_content_is_fatal():
    scraper = MagicMock()
    scraper.scrape.return_value = [Document(text="   ")]
    with pytest.raises(FatalIngestError, match="No content found"):
        SourceFetcher(scraper=scraper).fetch(WebsiteSource(url="https://ex.com", **_BASE))


def test_website_unknown_mode_is_fatal():
    source = WebsiteSource(url="https://ex.com", mode="sitemap", **_BASE)
    with pytest.raises(FatalIngestError, match="mode"):
        SourceFetcher(scraper=MagicMock()).fetch(source)


# ------------------------------------------------------------------
# Workspace pages and cloud files
# ------------------------------------------------------------------


def test_workspace_page_rendered():
    client = MagicMock()
    client.list_children.return_value = [
        {"type": "paragraph", "paragraph": {"rich_text": [{"plain_text": "Hello"}]}}
    ]
    source = WorkspacePageSource(page_id="p1", page_url="https://ws/p1", **_BASE)
    raw = SourceFetcher(workspace=client).fetch(source)
    assert raw.documents == [Document(text="Hello", url="https://ws/p1")]


def test_workspace_page_without_connection_is_fatal():
    with pytest.raises(FatalIngestError, match="workspace connection"):
        SourceFetcher().fetch(WorkspacePageSource(page_id="p1", **_BASE))


def test_cloud_native_document_is_exported():
    drive = MagicMock()
    drive.export.return_value = b"exported"
    source = CloudFileSource(
        file_id="g1", mime_type="application/vnd.google-apps.spreadsheet", **_BASE
    )
    raw = SourceFetcher(drive=drive).fetch(source)
    drive.export.assert_called_once_with("g1", "text/csv")
    assert raw.media_type == "text/csv"


def test_cloud_binary_file_is_downloaded():
    drive = MagicMock()
    drive.download.return_value = b"%PDF"
    source = CloudFileSource(file_id="g2", mime_type="application/pdf", **_BASE)
    raw = SourceFetcher(drive=drive).fetch(source)
    drive.download.assert_called_once_with("g2")
    assert raw.media_type == "application/pdf"
