"""Sliding-window text chunker with sentence-boundary preference.

Token counting uses a 4-chars-per-token approximation; no external tokenizer
dependency is required.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Iterable

CHARS_PER_TOKEN = 4

# Break region: the last 20 % of each window.
_BREAK_REGION = 0.2
_WHITESPACE_RE = re.compile(r"\s+")
# Sentence end followed by whitespace and an upper-case letter.
_SENTENCE_END_RE = re.compile(r"[.!?]\s+(?=[A-Z])")


@dataclass
class Document:
    """One unit of extracted text handed from a fetcher to the chunker.

    A PDF yields one Document per page, a crawl one per page visited; every
    other source type yields a single Document.
    """

    text: str
    page_number: int | None = None
    url: str | None = None
    title: str | None = None


@dataclass
class TextChunk:
    content: str
    ordinal: int
    start: int  # offsets into the normalised text
    end: int
    page_number: int | None = None
    url: str | None = None


def count_tokens(text: str) -> int:
    """Approximate token count: ceil(len / 4)."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def normalize_whitespace(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip()


class Chunker:
    """Split text into overlapping windows of roughly ``target_tokens`` tokens.

    Within the last 20 % of each window a break after sentence-ending
    punctuation is preferred, then the nearest space, then a hard cut at the
    window edge. Consecutive chunks overlap by ``overlap_tokens`` tokens.

    Args:
        target_tokens: Window size in tokens (window = target_tokens * 4 chars).
        overlap_tokens: Overlap in tokens; must be smaller than target_tokens.
    """

    def __init__(self, target_tokens: int = 500, overlap_tokens: int = 100) -> None:
        if target_tokens < 1:
            raise ValueError("target_tokens must be >= 1")
        if not 0 <= overlap_tokens < target_tokens:
            raise ValueError("overlap_tokens must be >= 0 and < target_tokens")
        self.target_tokens = target_tokens
        self.overlap_tokens = overlap_tokens

    @property
    def window_chars(self) -> int:
        return self.target_tokens * CHARS_PER_TOKEN

    @property
    def overlap_chars(self) -> int:
        return self.overlap_tokens * CHARS_PER_TOKEN

    def chunk(
        self,
        text: str,
        *,
        start_ordinal: int = 0,
        page_number: int | None = None,
        url: str | None = None,
    ) -> list[TextChunk]:
        """Split *text* into ordered, non-empty chunks.

        Returns an empty list only when *text* is empty or whitespace.
        """
        normalized = normalize_whitespace(text)
        if not normalized:
            return []

        length = len(normalized)
        window = self.window_chars
        if length <= window:
            return [
                TextChunk(normalized, start_ordinal, 0, length, page_number, url)
            ]

        chunks: list[TextChunk] = []
        ordinal = start_ordinal
        start = 0
        while start < length:
            end = min(start + window, length)
            cut = self._find_break(normalized, start, end) if end < length else end

            content = normalized[start:cut].strip()
            if content:
                chunks.append(TextChunk(content, ordinal, start, cut, page_number, url))
                ordinal += 1
            if cut >= length:
                break

            next_start = cut - self.overlap_chars
            min_progress = start + (window - self.overlap_chars) // 2
            if next_start <= min_progress:
                next_start = cut
            start = next_start

        return chunks

    def _find_break(self, text: str, start: int, end: int) -> int:
        """Return the cut position for the window ``text[start:end]``."""
        region_start = start + int((end - start) * (1 - _BREAK_REGION))

        # endpos is end + 1 so the capital-letter lookahead can see one char past the window.
        last_sentence_end = None
        for match in _SENTENCE_END_RE.finditer(text, region_start, min(end + 1, len(text))):
            if match.start() + 1 <= end:
                last_sentence_end = match.start() + 1
        if last_sentence_end is not None:
            return last_sentence_end

        space = text.rfind(" ", region_start, end)
        if space > start:
            return space

        return end


def chunk_documents(chunker: Chunker, documents: Iterable[Document]) -> list[TextChunk]:
    """Chunk several documents with one contiguous ordinal sequence."""
    chunks: list[TextChunk] = []
    for doc in documents:
        chunks.extend(
            chunker.chunk(
                doc.text,
                start_ordinal=len(chunks),
                page_number=doc.page_number,
                url=doc.url,
            )
        )
    return chunks
