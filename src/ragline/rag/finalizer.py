"""Stream finalization: relay tokens, judge the full answer, persist once.

Session states: drafting → generated → judged → persisted.

Tokens are relayed to the client as they arrive and are never held back for
judging. Only the persisted record is gated by the judge: a failing answer is
stored as the fallback message, with the original text kept on the
evaluation record. The message row and its usage event commit in one
transaction keyed by message id, so a retried finalize never double-writes
or double-counts.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Callable, Iterable, Iterator

import structlog

from ragline.config import DEFAULT_FALLBACK_MESSAGE
from ragline.db.models import JudgeEvaluation, Message, UsageEvent, to_timestamp, utcnow
from ragline.db.repository import Repository
from ragline.ingest.chunker import count_tokens
from ragline.rag.judge import ResponseJudge
from ragline.rag.prompt import extract_citations
from ragline.rag.retriever import RetrievedChunk

logger = structlog.get_logger(logger_name=__name__)

CHAT_EVENT = "chat"


def usage_key(message_id: str) -> str:
    return f"chat:{message_id}"


class SessionState(StrEnum):
    DRAFTING = "drafting"
    GENERATED = "generated"
    JUDGED = "judged"
    PERSISTED = "persisted"


@dataclass
class GenerationDraft:
    """Everything the finalizer needs about one generated answer."""

    message_id: str
    conversation_id: str
    tenant_id: str
    agent_id: str
    model: str
    system_prompt: str
    user_message: str
    chunks: list[RetrievedChunk] = field(default_factory=list)
    content: str = ""
    tokens_prompt: int = 0
    tokens_completion: int = 0
    latency_ms: int = 0

    @property
    def context(self) -> str:
        """Retrieved excerpts as shown to the judge."""
        return "\n\n---\n\n".join(chunk.content for chunk in self.chunks)


@dataclass
class FinalizedMessage:
    message: Message
    evaluation: JudgeEvaluation | None
    already_finalized: bool = False

    @property
    def substituted(self) -> bool:
        """True when the fallback replaced the generated answer."""
        return self.evaluation is not None and not self.evaluation.passed


class StreamFinalizer:
    """Judge a completed draft and persist the final message exactly once.

    Args:
        repo: Open repository.
        judge: Judge used unless ``skip_judge`` is requested.
        fallback_message: Stored in place of an answer that fails the judge.
    """

    def __init__(
        self,
        repo: Repository,
        judge: ResponseJudge,
        fallback_message: str = DEFAULT_FALLBACK_MESSAGE,
    ) -> None:
        self._repo = repo
        self._judge = judge
        self.fallback_message = fallback_message

    def finalize(self, draft: GenerationDraft, skip_judge: bool = False) -> FinalizedMessage:
        """Judge (unless skipped) and persist *draft*.

        Calling this again for a message that is already finalized returns
        the stored record without re-judging or writing anything.
        """
        stored = self.lookup(draft.message_id)
        if stored is not None:
            return stored
        content, evaluation = self.review(draft, skip_judge=skip_judge)
        return self.persist(draft, content, evaluation)

    def review(
        self, draft: GenerationDraft, skip_judge: bool = False
    ) -> tuple[str, JudgeEvaluation | None]:
        """Return the content to persist and the evaluation (None when skipped)."""
        if skip_judge:
            return draft.content, None
        evaluation = self._judge.evaluate(
            draft.content, draft.system_prompt, draft.context, draft.user_message
        )
        if evaluation.passed:
            return draft.content, evaluation
        evaluation.original_content = draft.content
        return self.fallback_message, evaluation

    def persist(
        self,
        draft: GenerationDraft,
        content: str,
        evaluation: JudgeEvaluation | None,
    ) -> FinalizedMessage:
        """Write the message and its usage event in one transaction."""
        now = to_timestamp(utcnow())
        message = Message(
            id=draft.message_id,
            conversation_id=draft.conversation_id,
            tenant_id=draft.tenant_id,
            agent_id=draft.agent_id,
            content=content,
            model=draft.model,
            tokens_prompt=draft.tokens_prompt,
            tokens_completion=draft.tokens_completion,
            latency_ms=draft.latency_ms,
            chunk_ids=[chunk.chunk_id for chunk in draft.chunks],
            citations=extract_citations(draft.chunks),
            judge_evaluation=evaluation,
            finalized_at=now,
        )
        usage = UsageEvent(
            id=str(uuid.uuid4()),
            tenant_id=draft.tenant_id,
            agent_id=draft.agent_id,
            conversation_id=draft.conversation_id,
            message_id=draft.message_id,
            event_type=CHAT_EVENT,
            model=draft.model,
            tokens_prompt=draft.tokens_prompt,
            tokens_completion=draft.tokens_completion,
            latency_ms=draft.latency_ms,
            idempotency_key=usage_key(draft.message_id),
            created_at=now,
        )

        if not self._repo.finalize_message(message, usage):
            # Another finalize committed first; its record wins.
            stored = self.lookup(draft.message_id)
            if stored is not None:
                return stored

        logger.info(
            "message_finalized",
            message_id=draft.message_id,
            judged=evaluation is not None,
            substituted=evaluation is not None and not evaluation.passed,
        )
        return FinalizedMessage(message=message, evaluation=evaluation)

    def lookup(self, message_id: str) -> FinalizedMessage | None:
        """The already-finalized record for *message_id*, if any."""
        existing = self._repo.get_message(message_id)
        if existing is None or existing.finalized_at is None:
            return None
        return FinalizedMessage(
            message=existing,
            evaluation=existing.judge_evaluation,
            already_finalized=True,
        )


class StreamSession:
    """Relay streamed tokens and finalize when the stream ends.

    If the consumer stops reading (the relay generator is closed), the rest
    of the upstream tokens are drained server-side and the answer is still
    finalized.

    When *tokens* exposes a ``usage`` attribute (``llm_client.CompletionStream``
    does), the provider's counts replace the draft's estimates.
    """

    def __init__(
        self,
        finalizer: StreamFinalizer,
        draft: GenerationDraft,
        tokens: Iterable[str],
        skip_judge: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._finalizer = finalizer
        self.draft = draft
        self._tokens = tokens
        self._skip_judge = skip_judge
        self._clock = clock
        self._buffer: list[str] = []
        self.state = SessionState.DRAFTING
        self.result: FinalizedMessage | None = None

    def relay(self) -> Iterator[str]:
        started = self._clock()
        upstream = iter(self._tokens)
        try:
            for token in upstream:
                self._buffer.append(token)
                yield token
        except GeneratorExit:
            self._buffer.extend(upstream)
            self._finish(started)
            logger.info("client_disconnected", message_id=self.draft.message_id)
            raise
        self._finish(started)

    def collect(self) -> FinalizedMessage:
        """Consume the whole stream without a client and return the result."""
        for _ in self.relay():
            pass
        assert self.result is not None
        return self.result

    def _finish(self, started: float) -> None:
        self.draft.content = "".join(self._buffer)
        usage = getattr(self._tokens, "usage", None)
        if usage is not None:
            self.draft.tokens_prompt = usage.prompt_tokens
            self.draft.tokens_completion = usage.completion_tokens
        elif not self.draft.tokens_completion:
            self.draft.tokens_completion = count_tokens(self.draft.content)
        if not self.draft.latency_ms:
            self.draft.latency_ms = int((self._clock() - started) * 1000)
        self.state = SessionState.GENERATED

        stored = self._finalizer.lookup(self.draft.message_id)
        if stored is None:
            content, evaluation = self._finalizer.review(self.draft, skip_judge=self._skip_judge)
            self.state = SessionState.JUDGED
            stored = self._finalizer.persist(self.draft, content, evaluation)
        self.result = stored
        self.state = SessionState.PERSISTED
