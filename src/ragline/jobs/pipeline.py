"""Ingestion pipeline: one job, a fixed sequence of idempotent steps.

    status → fetch → parse → chunk → embed → store → finalize

After each committed step the job's step cursor is advanced. On a later
attempt, a job whose ``store`` step already committed (with the current
embedding model) goes straight to ``finalize``; otherwise the read-only steps
re-run and ``store`` repeats, inserting nothing that is already there.

This module is the one place that decides retryability and writes the
source's terminal status.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Protocol

import structlog

from ragline.db.models import (
    Chunk,
    ChunkMetadata,
    FileSource,
    JobStatus,
    Source,
    SourceStatus,
    WebsiteSource,
)
from ragline.db.repository import Repository, iter_batches
from ragline.db.vectors import ensure_vec_table, model_to_slug
from ragline.errors import EmptyContentError, IngestError, JobNotFoundError, JobStateError
from ragline.ingest.chunker import Chunker, Document, TextChunk, chunk_documents
from ragline.ingest.embedder import Embedder
from ragline.ingest.fetchers import SourceFetcher
from ragline.jobs.controller import (
    DEFAULT_MAX_ATTEMPTS,
    CreateJobResult,
    JobController,
    idempotency_key_for,
)

logger = structlog.get_logger(logger_name=__name__)

STEPS = ("status", "fetch", "parse", "chunk", "embed", "store", "finalize")
STEP_PROGRESS = {
    "status": 5,
    "fetch": 20,
    "parse": 30,
    "chunk": 40,
    "embed": 70,
    "store": 95,
    "finalize": 100,
}
DEFAULT_STORAGE_BATCH_SIZE = 50


class Rescheduler(Protocol):
    def reschedule(self, job_id: str, attempt: int) -> object: ...


@dataclass
class PipelineResult:
    job_id: str
    source_id: str | None
    status: JobStatus
    chunk_count: int = 0
    error: str | None = None
    attempt: int = 0


class IngestionPipeline:
    """Run ingestion jobs for any source type.

    Args:
        repo: Open repository (one connection per concurrently running job).
        controller: Job state machine bound to the same repository.
        fetcher: Source-type dispatch for fetch + parse.
        chunker: Text chunker.
        embedder: Embedding client; ``embedder.model`` is the model stored on
            each chunk and selects the vec table.
        dimensions: Vector length for the agent. Defaults to
            ``embedder.dimensions``, or the length of the first vector.
        storage_batch_size: Chunks per storage transaction.
        scheduler: Optional; told about every retryable failure so it can set
            the job's next run time.
    """

    def __init__(
        self,
        repo: Repository,
        controller: JobController,
        fetcher: SourceFetcher,
        chunker: Chunker,
        embedder: Embedder,
        *,
        dimensions: int | None = None,
        storage_batch_size: int = DEFAULT_STORAGE_BATCH_SIZE,
        scheduler: Rescheduler | None = None,
    ) -> None:
        if storage_batch_size < 1:
            raise ValueError("storage_batch_size must be >= 1")
        self._repo = repo
        self._controller = controller
        self._fetcher = fetcher
        self._chunker = chunker
        self._embedder = embedder
        self._dimensions = dimensions if dimensions is not None else embedder.dimensions
        self._storage_batch_size = storage_batch_size
        self._scheduler = scheduler

    def run(self, job_id: str) -> PipelineResult:
        """Run one attempt of *job_id*.

        Raises:
            JobNotFoundError: Unknown job id.
            JobStateError: The job is not pending (terminal, or started elsewhere).
        """
        job = self._controller.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)

        with structlog.contextvars.bound_contextvars(job_id=job_id, source_id=job.source_id):
            source = self._repo.get_source(job.source_id) if job.source_id else None
            attempt = self._controller.start(job_id)
            if source is None:
                message = f"Source not found: {job.source_id}"
                self._controller.fail(job_id, message, fatal=True)
                return PipelineResult(job_id, job.source_id, JobStatus.FAILED, error=message, attempt=attempt)

            try:
                chunk_count = self._run_steps(job_id, job.step, source)
            except (IngestError, sqlite3.Error, OSError) as exc:
                return self._handle_failure(job_id, source, exc, attempt)
            except JobStateError:
                raise
            except Exception as exc:
                # Collaborator bugs and SDK errors are treated as transient.
                logger.exception("ingestion_unexpected_error", error_type=type(exc).__name__)
                return self._handle_failure(job_id, source, exc, attempt)

            logger.info("ingestion_completed", chunk_count=chunk_count, attempt=attempt)
            return PipelineResult(
                job_id, source.id, JobStatus.COMPLETED, chunk_count=chunk_count, attempt=attempt
            )

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _run_steps(self, job_id: str, committed_step: str | None, source: Source) -> int:
        model = self._embedder.model
        documents: list[Document] | None = None

        if committed_step == "store" and self._repo.embedding_models_for_source(source.id) == {model}:
            logger.info("resuming_at_finalize")
        else:
            self._repo.update_source_status(source.id, SourceStatus.PROCESSING)
            self._commit(job_id, "status")

            raw = self._fetcher.fetch(source)
            self._commit(job_id, "fetch")

            documents = self._fetcher.parse(raw)
            if not documents:
                raise EmptyContentError("No text content could be extracted from the source")
            self._commit(job_id, "parse")

            text_chunks = chunk_documents(self._chunker, documents)
            if not text_chunks:
                raise EmptyContentError("Chunking produced no chunks")
            self._commit(job_id, "chunk")

            vectors = self._embedder.embed([c.content for c in text_chunks])
            self._commit(job_id, "embed")

            self._store(job_id, source, text_chunks, vectors, model)
            self._commit(job_id, "store")

        chunk_count = self._repo.count_chunks_by_source(source.id)
        if chunk_count == 0:
            raise EmptyContentError("No chunks stored for the source")
        self._repo.finalize_source(source.id, chunk_count)
        if documents is not None:
            self._record_source_details(source, documents)
        self._controller.complete(job_id)
        return chunk_count

    def _store(
        self,
        job_id: str,
        source: Source,
        text_chunks: list[TextChunk],
        vectors: list[list[float]],
        model: str,
    ) -> None:
        dims = self._dimensions or len(vectors[0])
        vec_table = ensure_vec_table(self._repo.conn, model_to_slug(model), dims)

        stale = self._repo.embedding_models_for_source(source.id) - {model}
        if stale:
            # Never mix models within one source: drop everything and re-ingest.
            removed = self._repo.delete_chunks_by_source(source.id)
            logger.info("stale_chunks_removed", models=sorted(stale), removed=removed)

        records = [
            Chunk(
                tenant_id=source.tenant_id,
                agent_id=source.agent_id,
                source_id=source.id,
                chunk_index=tc.ordinal,
                content=tc.content,
                embedding_model=model,
                metadata=ChunkMetadata(
                    source_type=str(source.type),
                    source_name=source.name,
                    page_number=tc.page_number,
                    url=tc.url or getattr(source, "url", None),
                ),
                embedding=vector,
            )
            for tc, vector in zip(text_chunks, vectors)
        ]

        start, span = STEP_PROGRESS["embed"], STEP_PROGRESS["store"] - STEP_PROGRESS["embed"]
        done = inserted = 0
        for batch in iter_batches(records, self._storage_batch_size):
            inserted += self._repo.upsert_chunks(batch, vec_table)
            done += len(batch)
            self._controller.progress(job_id, start + span * done / len(records))
        logger.info("chunks_stored", total=len(records), inserted=inserted, vec_table=vec_table)

    def _record_source_details(self, source: Source, documents: list[Document]) -> None:
        if isinstance(source, WebsiteSource) and source.mode == "crawl":
            self._repo.update_source_payload(source.id, crawled_pages=len(documents))
        elif isinstance(source, FileSource):
            pages = [d.page_number for d in documents if d.page_number is not None]
            if pages:
                self._repo.update_source_payload(source.id, page_count=max(pages))

    def _commit(self, job_id: str, step: str) -> None:
        self._controller.advance(job_id, step, STEP_PROGRESS[step])

    # ------------------------------------------------------------------
    # Failure handling
    # ------------------------------------------------------------------

    def _handle_failure(
        self, job_id: str, source: Source, exc: Exception, attempt: int
    ) -> PipelineResult:
        message = str(exc)
        retryable = exc.retryable if isinstance(exc, IngestError) else True
        result = self._controller.fail(job_id, message, fatal=not retryable)

        if result.can_retry:
            self._repo.update_source_status(source.id, SourceStatus.PENDING)
            if self._scheduler is not None:
                self._scheduler.reschedule(job_id, result.attempt_count)
            status = JobStatus.PENDING
        else:
            self._repo.update_source_status(source.id, SourceStatus.ERROR, error_message=message)
            status = JobStatus.FAILED

        logger.warning(
            "ingestion_failed",
            error=message,
            retryable=retryable,
            can_retry=result.can_retry,
            attempt=attempt,
        )
        return PipelineResult(job_id, source.id, status, error=message, attempt=attempt)


def submit_source(
    repo: Repository,
    controller: JobController,
    source: Source,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> CreateJobResult:
    """Record *source* (if new) and create its ingestion job.

    Safe to call repeatedly: the job is keyed on ``{job_type}_{source_id}``.
    """
    if repo.get_source(source.id, include_deleted=True) is None:
        repo.add_source(source)
    return controller.create(
        tenant_id=source.tenant_id,
        job_type=str(source.job_type),
        idempotency_key=idempotency_key_for(str(source.job_type), source.id),
        source_id=source.id,
        agent_id=source.agent_id,
        max_attempts=max_attempts,
    )
