"""Per-source-type fetch and parse steps.

The pipeline never branches on source type itself: ``SourceFetcher.fetch``
dispatches on the Source variant and hands back either raw bytes (with a
media type) or already-extracted Documents; ``SourceFetcher.parse`` turns
either into Documents. Chunk, embed, store and finalize are shared.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

import structlog

from ragline.db.models import (
    CloudFileSource,
    FileSource,
    QASource,
    Source,
    TextSource,
    WebsiteSource,
    WorkspacePageSource,
)
from ragline.errors import FatalIngestError
from ragline.ingest.chunker import Document
from ragline.ingest.parsers import CSV, PLAIN, extract_documents
from ragline.ingest.workspace import WorkspaceClient, page_to_text

logger = structlog.get_logger(logger_name=__name__)

# Native cloud documents have no bytes of their own; they are exported.
CLOUD_EXPORT_TYPES: dict[str, str] = {
    "application/vnd.google-apps.document": PLAIN,
    "application/vnd.google-apps.spreadsheet": CSV,
}


# ------------------------------------------------------------------
# Collaborator interfaces
# ------------------------------------------------------------------


class FileStore(Protocol):
    def read(self, file_id: str) -> bytes: ...


class WebScraper(Protocol):
    def scrape(self, url: str) -> list[Document]: ...

    def crawl(self, url: str, limit: int = 10) -> list[Document]: ...


class CloudDriveClient(Protocol):
    def download(self, file_id: str) -> bytes: ...

    def export(self, file_id: str, media_type: str) -> bytes: ...


class LocalFileStore:
    """FileStore over the local filesystem; ``file_id`` is a path.

    Relative ids resolve against *root* (default: the working directory).
    """

    def __init__(self, root: Path | None = None) -> None:
        self.root = root

    def read(self, file_id: str) -> bytes:
        path = Path(file_id)
        if self.root is not None and not path.is_absolute():
            path = self.root / path
        try:
            return path.read_bytes()
        except FileNotFoundError as exc:
            raise FatalIngestError(f"File not found: {path}") from exc
        except IsADirectoryError as exc:
            raise FatalIngestError(f"Not a file: {path}") from exc


# ------------------------------------------------------------------
# Fetch + parse
# ------------------------------------------------------------------


@dataclass
class RawContent:
    """Output of the fetch step: bytes to parse, or text already extracted."""

    data: bytes | None = None
    media_type: str | None = None
    documents: list[Document] = field(default_factory=list)

    @property
    def size_kb(self) -> float | None:
        if self.data is None:
            return None
        return round(len(self.data) / 1024, 2)


def qa_text(question: str, answer: str) -> str:
    return f"Question: {question}\n\nAnswer: {answer}"


class SourceFetcher:
    """Dispatch fetch/parse on the Source variant.

    Collaborators are optional; a source whose collaborator is missing fails
    with a FatalIngestError (missing credential or connection).
    """

    def __init__(
        self,
        files: FileStore | None = None,
        scraper: WebScraper | None = None,
        workspace: WorkspaceClient | None = None,
        drive: CloudDriveClient | None = None,
    ) -> None:
        self._files = files
        self._scraper = scraper
        self._workspace = workspace
        self._drive = drive

    def fetch(self, source: Source) -> RawContent:
        if isinstance(source, TextSource):
            return RawContent(documents=[Document(text=source.content)])
        if isinstance(source, QASource):
            return RawContent(documents=[Document(text=qa_text(source.question, source.answer))])
        if isinstance(source, FileSource):
            files = self._require(self._files, "file store", source)
            return RawContent(data=files.read(source.file_id), media_type=source.mime_type)
        if isinstance(source, WebsiteSource):
            return RawContent(documents=self._fetch_website(source))
        if isinstance(source, WorkspacePageSource):
            client = self._require(self._workspace, "workspace connection", source)
            text = page_to_text(source.page_id, client)
            return RawContent(documents=[Document(text=text, url=source.page_url)])
        if isinstance(source, CloudFileSource):
            return self._fetch_cloud_file(source)
        raise FatalIngestError(f"Unsupported source type: {type(source).__name__}")

    def parse(self, raw: RawContent) -> list[Document]:
        """Extract Documents; blank documents are dropped."""
        if raw.data is not None:
            documents = extract_documents(raw.data, raw.media_type or "")
        else:
            documents = raw.documents
        return [doc for doc in documents if doc.text.strip()]

    # ------------------------------------------------------------------
    # Per-type helpers
    # ------------------------------------------------------------------

    def _fetch_website(self, source: WebsiteSource) -> list[Document]:
        scraper = self._require(self._scraper, "web scraper", source)
        if source.mode == "crawl":
            documents = scraper.crawl(source.url, source.crawl_limit)
        elif source.mode == "scrape":
            documents = scraper.scrape(source.url)
        else:
            raise FatalIngestError(f"Unknown website mode '{source.mode}'")
        if not any(doc.text.strip() for doc in documents):
            raise FatalIngestError(f"No content found at URL: {source.url}")
        logger.info("website_fetched", source_id=source.id, pages=len(documents))
        return documents

    def _fetch_cloud_file(self, source: CloudFileSource) -> RawContent:
        drive = self._require(self._drive, "cloud drive connection", source)
        export_type = CLOUD_EXPORT_TYPES.get(source.mime_type)
        if export_type is not None:
            return RawContent(data=drive.export(source.file_id, export_type), media_type=export_type)
        return RawContent(data=drive.download(source.file_id), media_type=source.mime_type)

    @staticmethod
    def _require(collaborator, what: str, source: Source):
        if collaborator is None:
            raise FatalIngestError(
                f"No {what} configured for {source.type} source '{source.name}'"
            )
        return collaborator
