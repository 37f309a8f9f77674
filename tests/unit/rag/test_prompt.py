"""Tests for grounded prompt assembly and citation extraction."""

from __future__ import annotations

from ragline.ingest.chunker import count_tokens
from ragline.rag.prompt import (
    CONTEXT_FOOTER,
    CONTEXT_HEADER,
    SNIPPET_CHARS,
    build_messages,
    build_rag_prompt,
    extract_citations,
    format_chunk,
)
from ragline.rag.retriever import RetrievedChunk


def _chunk(n: int, source_id: str = "s1", content: str | None = None, **extra) -> RetrievedChunk:
    return RetrievedChunk(
        chunk_id=f"c{n}",
        score=1.0 - n / 10,
        content=content or f"Fact number {n}. " * 20,
        source_id=source_id,
        source_type="file",
        source_name=f"doc-{source_id}.pdf",
        chunk_index=n,
        **extra,
    )


# ------------------------------------------------------------------
# format_chunk
# ------------------------------------------------------------------


def test_format_chunk_label():
    chunk = _chunk(1, content="Body", page_number=3, url="https://ex.com/doc")
    assert format_chunk(chunk, 2) == (
        "[2] Source: doc-s1.pdf (file) - Page 3 - https://ex.com/doc\nBody\n"
    )


def test_format_chunk_minimal_label():
    assert format_chunk(_chunk(1, content="Body"), 1).startswith("[1] Source: doc-s1.pdf (file)\n")


# ------------------------------------------------------------------
# build_rag_prompt
# ------------------------------------------------------------------


def test_no_chunks_leaves_system_prompt_alone():
    prompt = build_rag_prompt("  Be helpful.  ", [])
    assert prompt.system_prompt == "Be helpful."
    assert prompt.context_section == ""
    assert prompt.chunks_used == []


def test_context_appended_in_relevance_order():
    chunks = [_chunk(1), _chunk(2)]
    prompt = build_rag_prompt("Be helpful.", chunks)
    assert prompt.system_prompt.startswith("Be helpful.\n\n---")
    assert prompt.system_prompt.index("[1] Source") < prompt.system_prompt.index("[2] Source")
    assert prompt.system_prompt.endswith(CONTEXT_FOOTER)
    assert prompt.chunks_used == chunks
    assert prompt.truncated is False


def test_budget_stops_at_first_chunk_that_does_not_fit():
    chunks = [_chunk(1), _chunk(2), _chunk(3)]
    per_chunk = count_tokens(format_chunk(chunks[0], 1))
    budget = count_tokens(CONTEXT_HEADER) + count_tokens(CONTEXT_FOOTER) + 2 * per_chunk + 1
    prompt = build_rag_prompt("Be helpful.", chunks, max_context_tokens=budget)
    assert [c.chunk_id for c in prompt.chunks_used] == ["c1", "c2"]
    assert prompt.truncated is True
    assert "[3] Source" not in prompt.system_prompt


def test_nothing_fits_means_no_context():
    prompt = build_rag_prompt("Be helpful.", [_chunk(1)], max_context_tokens=10)
    assert prompt.chunks_used == []
    assert prompt.system_prompt == "Be helpful."
    assert prompt.truncated is True


# ------------------------------------------------------------------
# build_messages
# ------------------------------------------------------------------


def test_messages_order_system_history_user():
    prompt = build_rag_prompt("Be helpful.", [])
    history = [
        {"role": "user", "content": "Hi"},
        {"role": "assistant", "content": "Hello!"},
    ]
    result = build_messages(prompt, "Where are you?", history)
    assert [m["role"] for m in result.messages] == ["system", "user", "assistant", "user"]
    assert result.messages[-1]["content"] == "Where are you?"
    assert result.history_truncated is False


def test_history_keeps_most_recent_that_fits():
    prompt = build_rag_prompt("Be helpful.", [])
    history = [
        {"role": "user", "content": "old " * 100},
        {"role": "assistant", "content": "recent " * 10},
    ]
    result = build_messages(prompt, "Next?", history, max_history_tokens=30)
    assert len(result.messages) == 3
    assert result.messages[1]["content"].startswith("recent")
    assert result.history_truncated is True


def test_total_tokens_counts_everything():
    prompt = build_rag_prompt("Be helpful.", [])
    result = build_messages(prompt, "abcd", [{"role": "user", "content": "abcdefgh"}])
    assert result.total_tokens == prompt.total_tokens + 2 + 1


# ------------------------------------------------------------------
# extract_citations
# ------------------------------------------------------------------


def test_citations_one_per_source_best_chunk_first():
    chunks = [_chunk(1, "s1"), _chunk(2, "s2"), _chunk(3, "s1")]
    citations = extract_citations(chunks)
    assert [(c.source_id, c.chunk_id) for c in citations] == [("s1", "c1"), ("s2", "c2")]


def test_citation_snippet_truncated():
    citation = extract_citations([_chunk(1, content="x" * 500)])[0]
    assert len(citation.snippet) == SNIPPET_CHARS
