"""ragline ingest pipeline: fetchers, parsers, chunker, embedder."""

from ragline.ingest.chunker import Chunker, Document, TextChunk, chunk_documents
from ragline.ingest.embedder import Embedder
from ragline.ingest.fetchers import SourceFetcher

__all__ = [
    "Chunker",
    "Document",
    "Embedder",
    "SourceFetcher",
    "TextChunk",
    "chunk_documents",
]
