"""Tests for the sliding-window chunker."""

from __future__ import annotations

import pytest

from ragline.ingest.chunker import (
    Chunker,
    Document,
    chunk_documents,
    count_tokens,
    normalize_whitespace,
)


def _sentences(n: int) -> str:
    return " ".join(f"Sentence number {i} talks about widgets and gadgets." for i in range(n))


def _assert_covers(text: str, chunks) -> None:
    """Every character of the normalised text lies inside some chunk's span."""
    normalized = normalize_whitespace(text)
    position = 0
    for chunk in chunks:
        assert chunk.start <= position, f"gap before offset {chunk.start}"
        position = max(position, chunk.end)
    assert position >= len(normalized)


# --- helpers ---

@pytest.mark.parametrize("text,expected", [("", 0), ("abcd", 1), ("abcde", 2), ("x" * 400, 100)])
def test_count_tokens_four_chars_per_token(text, expected):
    assert count_tokens(text) == expected


def test_normalize_whitespace():
    assert normalize_whitespace("  a\n\n b\t c  ") == "a b c"


# --- construction ---

@pytest.mark.parametrize("target,overlap", [(0, 0), (100, 100), (100, 150), (100, -1)])
def test_invalid_sizes_rejected(target, overlap):
    with pytest.raises(ValueError):
        Chunker(target, overlap)


# --- chunking ---

def test_empty_text_yields_no_chunks():
    assert Chunker().chunk("   \n\t ") == []


def test_short_text_is_single_chunk():
    chunks = Chunker().chunk("A short note.")
    assert len(chunks) == 1
    assert chunks[0].content == "A short note."
    assert chunks[0].ordinal == 0


def test_three_thousand_chars_make_several_bounded_chunks():
    text = ("The quick brown fox jumps over the lazy dog. " * 80)[:3000]
    chunks = Chunker(500, 100).chunk(text)
    assert len(chunks) >= 2
    assert all(len(c.content) <= 2000 for c in chunks)
    assert [c.ordinal for c in chunks] == list(range(len(chunks)))
    _assert_covers(text, chunks)


def test_prefers_sentence_boundary():
    text = _sentences(60)
    chunks = Chunker(100, 20).chunk(text)
    assert len(chunks) > 1
    for chunk in chunks[:-1]:
        assert chunk.content.endswith(".")


def test_falls_back_to_word_boundary():
    words = " ".join(f"word{i}" for i in range(400))
    chunks = Chunker(50, 10).chunk(words)
    assert len(chunks) > 1
    for chunk in chunks:
        assert not chunk.content.startswith(" ")
        # no chunk splits a token in half
        for token in chunk.content.split(" ")[1:-1]:
            assert token.startswith("word")


def test_hard_cut_without_spaces():
    text = "x" * 1000
    chunks = Chunker(50, 10).chunk(text)
    assert all(len(c.content) <= 200 for c in chunks)
    _assert_covers(text, chunks)


def test_consecutive_chunks_overlap():
    text = _sentences(80)
    chunks = Chunker(100, 25).chunk(text)
    for prev, nxt in zip(chunks, chunks[1:]):
        assert nxt.start < prev.end


def test_zero_overlap_chunks_are_contiguous():
    text = " ".join(f"w{i}" for i in range(2000))
    chunks = Chunker(40, 0).chunk(text)
    for prev, nxt in zip(chunks, chunks[1:]):
        assert nxt.start == prev.end
    _assert_covers(text, chunks)


def test_always_terminates_and_makes_progress():
    text = "a. B" * 5000
    chunks = Chunker(10, 9).chunk(text)
    starts = [c.start for c in chunks]
    assert starts == sorted(set(starts))
    _assert_covers(text, chunks)


def test_start_ordinal_and_location_carried():
    chunks = Chunker().chunk("Some page text.", start_ordinal=4, page_number=2, url="https://x")
    assert (chunks[0].ordinal, chunks[0].page_number, chunks[0].url) == (4, 2, "https://x")


def test_chunk_documents_uses_one_ordinal_sequence():
    docs = [
        Document(text=_sentences(40), page_number=1),
        Document(text="   "),
        Document(text=_sentences(40), page_number=3),
    ]
    chunks = chunk_documents(Chunker(100, 20), docs)
    assert [c.ordinal for c in chunks] == list(range(len(chunks)))
    assert {c.page_number for c in chunks} == {1, 3}
