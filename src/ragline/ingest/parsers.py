"""Text extraction for uploaded and downloaded files.

Supported media types:
- application/pdf            page-by-page via pypdf (one Document per page)
- DOCX                       zipfile + bs4 over ``word/document.xml``
- text/plain, text/markdown  decoded as UTF-8
- text/csv                   decoded as UTF-8, rows kept as lines
- text/html                  bs4 cleanup + html2text

Anything else raises FatalIngestError: retrying will not make an
unsupported format parseable.
"""

from __future__ import annotations

import io
import warnings
import zipfile

import html2text
import pypdf
from bs4 import BeautifulSoup, XMLParsedAsHTMLWarning
from pypdf.errors import PdfReadError

from ragline.errors import FatalIngestError
from ragline.ingest.chunker import Document

# html.parser is used for the DOCX XML part as well; lxml is not a dependency.
warnings.filterwarnings("ignore", category=XMLParsedAsHTMLWarning)

PDF = "application/pdf"
DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
PLAIN = "text/plain"
MARKDOWN = "text/markdown"
CSV = "text/csv"
HTML = "text/html"

SUPPORTED_MEDIA_TYPES: frozenset[str] = frozenset({PDF, DOCX, PLAIN, MARKDOWN, CSV, HTML})

_h2t = html2text.HTML2Text()
_h2t.ignore_links = True
_h2t.ignore_images = True
_h2t.body_width = 0


def html_to_text(html: str) -> str:
    """Strip non-content tags, then convert the rest to plain text."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup.find_all(["script", "style", "nav", "footer", "head"]):
        tag.decompose()
    return _h2t.handle(str(soup)).strip()


def normalize_media_type(media_type: str) -> str:
    return media_type.split(";")[0].strip().lower()


def extract_documents(data: bytes, media_type: str) -> list[Document]:
    """Extract text from *data* according to *media_type*.

    Returns:
        A list of Documents (several for PDFs, one otherwise). Pages or files
        without any text produce no Document, so an empty list means "no
        extractable text".

    Raises:
        FatalIngestError: Unsupported media type or a corrupt file.
    """
    media_type = normalize_media_type(media_type)
    if media_type == PDF:
        return _extract_pdf(data)
    if media_type == DOCX:
        return _single(_extract_docx(data))
    if media_type in (PLAIN, MARKDOWN, CSV):
        return _single(_decode(data))
    if media_type == HTML:
        return _single(html_to_text(_decode(data)))
    raise FatalIngestError(f"Unsupported file type: {media_type}")


def extract_text(data: bytes, media_type: str) -> str:
    """Convenience wrapper: all extracted text joined by blank lines."""
    return "\n\n".join(doc.text for doc in extract_documents(data, media_type))


# ------------------------------------------------------------------
# Format-specific extraction
# ------------------------------------------------------------------


def _extract_pdf(data: bytes) -> list[Document]:
    try:
        reader = pypdf.PdfReader(io.BytesIO(data))
        pages = list(reader.pages)
    except (PdfReadError, ValueError) as exc:
        raise FatalIngestError(f"Could not read PDF: {exc}") from exc

    documents: list[Document] = []
    for number, page in enumerate(pages, start=1):
        text = (page.extract_text() or "").strip()
        if text:
            documents.append(Document(text=text, page_number=number))
    return documents


def _extract_docx(data: bytes) -> str:
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            xml = zf.read("word/document.xml").decode("utf-8", errors="replace")
    except (zipfile.BadZipFile, KeyError) as exc:
        raise FatalIngestError(f"Could not read DOCX: {exc}") from exc

    soup = BeautifulSoup(xml, "html.parser")
    paragraphs: list[str] = []
    for para in soup.find_all("w:p"):
        text = "".join(node.get_text() for node in para.find_all("w:t"))
        if text.strip():
            paragraphs.append(text)
    return "\n".join(paragraphs)


def _decode(data: bytes) -> str:
    return data.decode("utf-8-sig", errors="replace")


def _single(text: str) -> list[Document]:
    return [Document(text=text)] if text.strip() else []
