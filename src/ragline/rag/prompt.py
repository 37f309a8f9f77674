"""Prompt assembly for grounded answers.

Pipeline:
  1. build_rag_prompt: agent system prompt + numbered, source-labelled
     context excerpts, added best-first until the context token budget is hit.
  2. build_messages: system message, then as much recent history as fits the
     history budget (oldest dropped first), then the user message.
  3. extract_citations: one citation per source among the chunks used.

Token counts use the 4-chars-per-token approximation.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from ragline.db.models import Citation
from ragline.ingest.chunker import count_tokens
from ragline.rag.retriever import RetrievedChunk

CONTEXT_HEADER = (
    "\n\n---\n\nYou have access to the following knowledge base excerpts. "
    "Use them to answer questions accurately. Always cite your sources when using "
    "information from the knowledge base.\n\n"
)

CONTEXT_FOOTER = (
    "\n---\n\nWhen answering:\n"
    "- Use information from the knowledge base when relevant\n"
    "- Cite sources by name when referencing specific information\n"
    "- If the knowledge base doesn't contain relevant information, say so clearly\n"
    "- Do not make up information that isn't in the knowledge base or your general knowledge"
)

SNIPPET_CHARS = 200


@dataclass
class RagPrompt:
    system_prompt: str
    context_section: str = ""
    chunks_used: list[RetrievedChunk] = field(default_factory=list)
    total_tokens: int = 0
    truncated: bool = False


@dataclass
class ChatMessages:
    messages: list[dict[str, str]]
    total_tokens: int
    history_truncated: bool = False


def format_chunk(chunk: RetrievedChunk, number: int) -> str:
    """``[n] Source: name (type) - Page p - url`` followed by the chunk text."""
    label = f"[{number}] Source: {chunk.source_name}"
    if chunk.source_type:
        label += f" ({chunk.source_type})"
    if chunk.page_number is not None:
        label += f" - Page {chunk.page_number}"
    if chunk.url:
        label += f" - {chunk.url}"
    return f"{label}\n{chunk.content}\n"


def build_rag_prompt(
    system_prompt: str,
    chunks: list[RetrievedChunk],
    max_context_tokens: int = 4_000,
) -> RagPrompt:
    """Append retrieved context to *system_prompt* within *max_context_tokens*.

    Chunks are taken in the given (relevance) order; the first chunk that does
    not fit stops the loop and sets ``truncated``.
    """
    base = system_prompt.strip()
    if not chunks:
        return RagPrompt(system_prompt=base, total_tokens=count_tokens(base))

    available = max_context_tokens - count_tokens(CONTEXT_HEADER) - count_tokens(CONTEXT_FOOTER)
    used: list[RetrievedChunk] = []
    formatted: list[str] = []
    context_tokens = 0
    truncated = False

    for chunk in chunks:
        text = format_chunk(chunk, len(used) + 1)
        tokens = count_tokens(text)
        if context_tokens + tokens > available:
            truncated = True
            break
        used.append(chunk)
        formatted.append(text)
        context_tokens += tokens

    context = CONTEXT_HEADER + "\n".join(formatted) + CONTEXT_FOOTER if used else ""
    full = base + context
    return RagPrompt(
        system_prompt=full,
        context_section=context,
        chunks_used=used,
        total_tokens=count_tokens(full),
        truncated=truncated,
    )


def build_messages(
    rag_prompt: RagPrompt,
    user_message: str,
    history: list[dict[str, str]] | None = None,
    max_history_tokens: int = 2_000,
) -> ChatMessages:
    """Build the chat message list, keeping the most recent history that fits."""
    history = history or []
    kept: list[dict[str, str]] = []
    history_tokens = 0
    truncated = False

    for message in reversed(history):
        tokens = count_tokens(message["content"])
        if history_tokens + tokens > max_history_tokens:
            truncated = True
            break
        kept.insert(0, message)
        history_tokens += tokens

    messages = [{"role": "system", "content": rag_prompt.system_prompt}]
    messages.extend(kept)
    messages.append({"role": "user", "content": user_message})
    return ChatMessages(
        messages=messages,
        total_tokens=rag_prompt.total_tokens + history_tokens + count_tokens(user_message),
        history_truncated=truncated,
    )


def extract_citations(chunks: list[RetrievedChunk]) -> list[Citation]:
    """One citation per source, from the first (best) chunk of that source."""
    seen: set[str] = set()
    citations: list[Citation] = []
    for chunk in chunks:
        if chunk.source_id in seen:
            continue
        seen.add(chunk.source_id)
        citations.append(
            Citation(
                chunk_id=chunk.chunk_id,
                source_id=chunk.source_id,
                source_name=chunk.source_name,
                source_type=chunk.source_type,
                snippet=chunk.content[:SNIPPET_CHARS],
                page_number=chunk.page_number,
                url=chunk.url,
            )
        )
    return citations
