"""Repository pattern for all knowledge-store database operations.

Single interface for: sources, chunks, vec embeddings + similarity search,
jobs + error history, finalized messages and usage events.
Vec tables are model-managed (ensure_vec_table); repository handles read + write.
"""

from __future__ import annotations

import json
import sqlite3
from dataclasses import asdict
from datetime import datetime
from typing import Any, Iterable

from ragline.db.models import (
    SOURCE_VARIANTS,
    Chunk,
    ChunkMetadata,
    Citation,
    Job,
    JobStatus,
    JudgeEvaluation,
    Message,
    Source,
    SourceStatus,
    SourceType,
    UsageEvent,
    to_timestamp,
    utcnow,
)
from ragline.db.vectors import list_vec_tables, table_dimensions
from ragline.errors import DimensionMismatchError, SourceNotFoundError

MIN_K = 1
MAX_K = 256

# Columns a caller may patch through update_job(); everything else is fixed at insert.
_JOB_MUTABLE = frozenset(
    {
        "status",
        "attempt_count",
        "progress",
        "step",
        "scheduled_at",
        "started_at",
        "completed_at",
        "last_heartbeat",
        "last_error",
    }
)

_SOURCE_COLS = (
    "id, tenant_id, agent_id, type, status, name, size_kb, chunk_count, "
    "error_message, payload, created_at, updated_at, deleted_at"
)
_CHUNK_COLS = (
    "rowid, id, tenant_id, agent_id, source_id, chunk_index, content, "
    "embedding_model, metadata, created_at"
)
_JOB_COLS = (
    "id, tenant_id, job_type, source_id, agent_id, status, attempt_count, "
    "max_attempts, progress, step, scheduled_at, started_at, completed_at, "
    "last_heartbeat, last_error, idempotency_key, created_at"
)


def clamp_k(k: int) -> int:
    """Clamp a requested result count to [1, 256]."""
    return max(MIN_K, min(MAX_K, int(k)))


class Repository:
    """Data access layer for all ragline database entities.

    Wraps an open sqlite3.Connection and provides typed methods. The
    connection is owned by the caller and must be closed after use.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with sqlite-vec loaded and schema
                initialised (see ragline.db.schema.initialize).
        """
        self._conn = conn

    @property
    def conn(self) -> sqlite3.Connection:
        return self._conn

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def add_source(self, source: Source) -> None:
        """Insert a new source record (status as given, normally ``pending``)."""
        now = to_timestamp(utcnow())
        source.created_at = source.created_at or now
        source.updated_at = now
        self._conn.execute(
            f"""
            INSERT INTO sources ({_SOURCE_COLS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                source.id,
                source.tenant_id,
                source.agent_id,
                str(source.type),
                str(source.status),
                source.name,
                source.size_kb,
                source.chunk_count,
                source.error_message,
                json.dumps(source.payload()),
                source.created_at,
                source.updated_at,
                source.deleted_at,
            ),
        )
        self._conn.commit()

    def get_source(self, source_id: str, include_deleted: bool = False) -> Source | None:
        """Return a source by ID, or None if not found (or tombstoned)."""
        row = self._conn.execute(
            f"SELECT {_SOURCE_COLS} FROM sources WHERE id = ?", (source_id,)
        ).fetchone()
        if row is None:
            return None
        if row["deleted_at"] is not None and not include_deleted:
            return None
        return _row_to_source(row)

    def list_sources(
        self, tenant_id: str, agent_id: str | None = None, limit: int = 100
    ) -> list[Source]:
        """Return live sources for a tenant (optionally one agent), newest first."""
        sql = f"SELECT {_SOURCE_COLS} FROM sources WHERE tenant_id = ? AND deleted_at IS NULL"
        params: list[Any] = [tenant_id]
        if agent_id is not None:
            sql += " AND agent_id = ?"
            params.append(agent_id)
        sql += " ORDER BY created_at DESC, rowid DESC LIMIT ?"
        params.append(limit)
        return [_row_to_source(r) for r in self._conn.execute(sql, params).fetchall()]

    def update_source_status(
        self,
        source_id: str,
        status: SourceStatus,
        error_message: str | None = None,
    ) -> None:
        """Set the lifecycle status. ``error_message`` is cleared unless status is ``error``."""
        cur = self._conn.execute(
            """
            UPDATE sources SET status = ?, error_message = ?, updated_at = ?
            WHERE id = ? AND deleted_at IS NULL
            """,
            (
                str(status),
                error_message if status == SourceStatus.ERROR else None,
                to_timestamp(utcnow()),
                source_id,
            ),
        )
        self._conn.commit()
        if cur.rowcount == 0:
            raise SourceNotFoundError(source_id)

    def finalize_source(self, source_id: str, chunk_count: int) -> None:
        """Mark a source ``ready`` with its final chunk count."""
        cur = self._conn.execute(
            """
            UPDATE sources SET status = ?, chunk_count = ?, error_message = NULL, updated_at = ?
            WHERE id = ? AND deleted_at IS NULL
            """,
            (str(SourceStatus.READY), chunk_count, to_timestamp(utcnow()), source_id),
        )
        self._conn.commit()
        if cur.rowcount == 0:
            raise SourceNotFoundError(source_id)

    def update_source_payload(self, source_id: str, **fields: Any) -> None:
        """Merge variant-specific fields (e.g. ``crawled_pages``) into the payload."""
        source = self.get_source(source_id)
        if source is None:
            raise SourceNotFoundError(source_id)
        payload = source.payload()
        payload.update(fields)
        self._conn.execute(
            "UPDATE sources SET payload = ?, updated_at = ? WHERE id = ?",
            (json.dumps(payload), to_timestamp(utcnow()), source_id),
        )
        self._conn.commit()

    def delete_source(self, source_id: str) -> int:
        """Soft-delete a source: drop its chunks + embeddings, then set the tombstone.

        Returns the number of chunks removed.
        """
        removed = self.delete_chunks_by_source(source_id)
        self._conn.execute(
            "UPDATE sources SET deleted_at = ?, updated_at = ? WHERE id = ? AND deleted_at IS NULL",
            (to_timestamp(utcnow()), to_timestamp(utcnow()), source_id),
        )
        self._conn.commit()
        return removed

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    def upsert_chunks(self, chunks: list[Chunk], vec_table: str) -> int:
        """Insert chunks + embeddings in one transaction, idempotently.

        Rows are keyed by (source_id, chunk_index); a chunk that already exists
        is left untouched, so replaying a batch inserts nothing new.

        Returns:
            Number of chunks newly inserted.

        Raises:
            DimensionMismatchError: If any embedding length differs from the
                table's dimensionality. Nothing from the batch is written.
        """
        dims = table_dimensions(vec_table)
        for chunk in chunks:
            if len(chunk.embedding) != dims:
                raise DimensionMismatchError(dims, len(chunk.embedding))

        inserted = 0
        now = to_timestamp(utcnow())
        with self._conn:
            for chunk in chunks:
                cur = self._conn.execute(
                    """
                    INSERT INTO chunks (id, tenant_id, agent_id, source_id, chunk_index,
                                        content, embedding_model, metadata, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(source_id, chunk_index) DO NOTHING
                    """,
                    (
                        chunk.id,
                        chunk.tenant_id,
                        chunk.agent_id,
                        chunk.source_id,
                        chunk.chunk_index,
                        chunk.content,
                        chunk.embedding_model,
                        json.dumps(asdict(chunk.metadata)),
                        now,
                    ),
                )
                if cur.rowcount == 0:
                    continue
                rowid = cur.lastrowid
                chunk.rowid = rowid
                chunk.created_at = now
                self._conn.execute(
                    f"INSERT INTO {vec_table}(rowid, tenant_id, agent_id, embedding) "
                    "VALUES (?, ?, ?, ?)",
                    (rowid, chunk.tenant_id, chunk.agent_id, json.dumps(chunk.embedding)),
                )
                inserted += 1
        return inserted

    def get_chunk_by_rowid(self, rowid: int) -> Chunk | None:
        row = self._conn.execute(
            f"SELECT {_CHUNK_COLS} FROM chunks WHERE rowid = ?", (rowid,)
        ).fetchone()
        return _row_to_chunk(row) if row else None

    def get_chunks_by_ids(self, chunk_ids: list[str]) -> list[Chunk]:
        """Hydrate chunks by id, in the order given. Unknown ids are skipped."""
        if not chunk_ids:
            return []
        placeholders = ",".join("?" * len(chunk_ids))
        rows = self._conn.execute(
            f"SELECT {_CHUNK_COLS} FROM chunks WHERE id IN ({placeholders})",
            chunk_ids,
        ).fetchall()
        by_id = {r["id"]: _row_to_chunk(r) for r in rows}
        return [by_id[cid] for cid in chunk_ids if cid in by_id]

    def list_chunks_by_source(self, source_id: str) -> list[Chunk]:
        rows = self._conn.execute(
            f"SELECT {_CHUNK_COLS} FROM chunks WHERE source_id = ? ORDER BY chunk_index",
            (source_id,),
        ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def count_chunks_by_source(self, source_id: str) -> int:
        return self._conn.execute(
            "SELECT COUNT(*) FROM chunks WHERE source_id = ?", (source_id,)
        ).fetchone()[0]

    def embedding_models_for_source(self, source_id: str) -> set[str]:
        rows = self._conn.execute(
            "SELECT DISTINCT embedding_model FROM chunks WHERE source_id = ?",
            (source_id,),
        ).fetchall()
        return {r[0] for r in rows}

    def delete_chunks_by_source(self, source_id: str) -> int:
        """Delete chunks and their embeddings (every vec table) for a source."""
        rowids = [
            r[0]
            for r in self._conn.execute(
                "SELECT rowid FROM chunks WHERE source_id = ?", (source_id,)
            ).fetchall()
        ]
        if not rowids:
            return 0
        placeholders = ",".join("?" * len(rowids))
        with self._conn:
            for table in list_vec_tables(self._conn):
                self._conn.execute(
                    f"DELETE FROM [{table}] WHERE rowid IN ({placeholders})",  # noqa: S608
                    rowids,
                )
            self._conn.execute("DELETE FROM chunks WHERE source_id = ?", (source_id,))
        return len(rowids)

    # ------------------------------------------------------------------
    # Similarity search
    # ------------------------------------------------------------------

    def similarity_search(
        self,
        vec_table: str,
        tenant_id: str,
        agent_id: str,
        query_vector: list[float],
        k: int = 10,
    ) -> list[tuple[str, float]]:
        """KNN search restricted to one tenant + agent. Returns [(chunk_id, score)].

        Score is cosine similarity (1 - cosine distance), best first. Equal
        scores keep insertion order. ``k`` is clamped to [1, 256].
        """
        dims = table_dimensions(vec_table)
        if len(query_vector) != dims:
            raise DimensionMismatchError(dims, len(query_vector))

        vec_rows = self._conn.execute(
            f"""
            SELECT rowid, distance FROM {vec_table}
            WHERE embedding MATCH ?
              AND k = ?
              AND tenant_id = ?
              AND agent_id = ?
            ORDER BY distance
            """,
            (json.dumps(query_vector), clamp_k(k), tenant_id, agent_id),
        ).fetchall()
        if not vec_rows:
            return []

        ranked = sorted(
            ((1.0 - row["distance"], row["rowid"]) for row in vec_rows),
            key=lambda pair: (-pair[0], pair[1]),
        )
        placeholders = ",".join("?" * len(ranked))
        id_rows = self._conn.execute(
            f"SELECT rowid, id FROM chunks WHERE rowid IN ({placeholders})",
            [rowid for _, rowid in ranked],
        ).fetchall()
        ids = {r["rowid"]: r["id"] for r in id_rows}
        return [(ids[rowid], score) for score, rowid in ranked if rowid in ids]

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def insert_job(self, job: Job) -> bool:
        """Insert *job* unless its idempotency key is taken. Returns True if inserted."""
        job.created_at = job.created_at or to_timestamp(utcnow())
        cur = self._conn.execute(
            f"""
            INSERT INTO jobs ({_JOB_COLS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(idempotency_key) DO NOTHING
            """,
            (
                job.id,
                job.tenant_id,
                job.job_type,
                job.source_id,
                job.agent_id,
                str(job.status),
                job.attempt_count,
                job.max_attempts,
                job.progress,
                job.step,
                job.scheduled_at,
                job.started_at,
                job.completed_at,
                job.last_heartbeat,
                job.last_error,
                job.idempotency_key,
                job.created_at,
            ),
        )
        self._conn.commit()
        return cur.rowcount == 1

    def get_job(self, job_id: str) -> Job | None:
        row = self._conn.execute(
            f"SELECT {_JOB_COLS} FROM jobs WHERE id = ?", (job_id,)
        ).fetchone()
        return self._hydrate_job(row) if row else None

    def get_job_by_key(self, idempotency_key: str) -> Job | None:
        row = self._conn.execute(
            f"SELECT {_JOB_COLS} FROM jobs WHERE idempotency_key = ?", (idempotency_key,)
        ).fetchone()
        return self._hydrate_job(row) if row else None

    def get_job_by_source(self, source_id: str) -> Job | None:
        """Most recently created job for *source_id*."""
        row = self._conn.execute(
            f"""
            SELECT {_JOB_COLS} FROM jobs WHERE source_id = ?
            ORDER BY created_at DESC, rowid DESC LIMIT 1
            """,
            (source_id,),
        ).fetchone()
        return self._hydrate_job(row) if row else None

    def update_job(
        self,
        job_id: str,
        expected_status: JobStatus | None = None,
        **fields: Any,
    ) -> bool:
        """Patch mutable job columns. Unknown column names raise ValueError.

        With *expected_status* the update only applies while the job is still in
        that status (compare-and-set). Returns True if a row was updated.
        """
        with self._conn:
            return self._update_job_row(job_id, expected_status, fields)

    def record_job_failure(
        self, job_id: str, message: str, recorded_at: str, **fields: Any
    ) -> bool:
        """Append *message* to the error history and patch the job atomically.

        Either both writes land or neither does.
        """
        with self._conn:
            self._insert_job_error(job_id, message, recorded_at)
            return self._update_job_row(job_id, None, fields)

    def _update_job_row(
        self, job_id: str, expected_status: JobStatus | None, fields: dict[str, Any]
    ) -> bool:
        unknown = set(fields) - _JOB_MUTABLE
        if unknown:
            raise ValueError(f"Cannot update job columns: {sorted(unknown)}")
        if not fields:
            return False
        assignments = ", ".join(f"{name} = ?" for name in fields)
        values = [str(v) if isinstance(v, JobStatus) else v for v in fields.values()]
        sql = f"UPDATE jobs SET {assignments} WHERE id = ?"
        params: list[Any] = [*values, job_id]
        if expected_status is not None:
            sql += " AND status = ?"
            params.append(str(expected_status))
        return self._conn.execute(sql, params).rowcount == 1

    def _insert_job_error(self, job_id: str, message: str, recorded_at: str) -> None:
        self._conn.execute(
            """
            INSERT INTO job_errors (job_id, seq, message, recorded_at)
            VALUES (?, (SELECT COALESCE(MAX(seq), 0) + 1 FROM job_errors WHERE job_id = ?), ?, ?)
            """,
            (job_id, job_id, message, recorded_at),
        )

    def job_error_history(self, job_id: str) -> list[str]:
        rows = self._conn.execute(
            "SELECT message, recorded_at FROM job_errors WHERE job_id = ? ORDER BY seq",
            (job_id,),
        ).fetchall()
        return [f"[{r['recorded_at']}] {r['message']}" for r in rows]

    def list_jobs(
        self, tenant_id: str, status: JobStatus | None = None, limit: int = 50
    ) -> list[Job]:
        sql = f"SELECT {_JOB_COLS} FROM jobs WHERE tenant_id = ?"
        params: list[Any] = [tenant_id]
        if status is not None:
            sql += " AND status = ?"
            params.append(str(status))
        sql += " ORDER BY created_at DESC, rowid DESC LIMIT ?"
        params.append(limit)
        return [self._hydrate_job(r) for r in self._conn.execute(sql, params).fetchall()]

    def count_jobs_by_status(self, tenant_id: str) -> dict[str, int]:
        rows = self._conn.execute(
            "SELECT status, COUNT(*) AS n FROM jobs WHERE tenant_id = ? GROUP BY status",
            (tenant_id,),
        ).fetchall()
        return {r["status"]: r["n"] for r in rows}

    def list_due_jobs(self, now: datetime, limit: int = 50) -> list[Job]:
        """Pending jobs whose scheduled time has passed, oldest schedule first."""
        rows = self._conn.execute(
            f"""
            SELECT {_JOB_COLS} FROM jobs
            WHERE status = ? AND (scheduled_at IS NULL OR scheduled_at <= ?)
            ORDER BY scheduled_at, rowid LIMIT ?
            """,
            (str(JobStatus.PENDING), to_timestamp(now), limit),
        ).fetchall()
        return [self._hydrate_job(r) for r in rows]

    def _hydrate_job(self, row: sqlite3.Row) -> Job:
        job = _row_to_job(row)
        job.error_history = self.job_error_history(job.id)
        return job

    # ------------------------------------------------------------------
    # Messages + usage events
    # ------------------------------------------------------------------

    def add_message(self, message: Message) -> None:
        """Create the placeholder row a streaming answer will be finalized into."""
        self._conn.execute(
            """
            INSERT INTO messages (id, conversation_id, tenant_id, agent_id, content)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                message.id,
                message.conversation_id,
                message.tenant_id,
                message.agent_id,
                message.content,
            ),
        )
        self._conn.commit()

    def get_message(self, message_id: str) -> Message | None:
        row = self._conn.execute(
            "SELECT * FROM messages WHERE id = ?", (message_id,)
        ).fetchone()
        return _row_to_message(row) if row else None

    def finalize_message(self, message: Message, usage: UsageEvent | None) -> bool:
        """Persist the final answer and its usage event atomically, exactly once.

        Returns False (and writes nothing) if the message was already finalized.
        The usage event is keyed by its idempotency key, so a replay never
        double-counts tokens.
        """
        with self._conn:
            cur = self._conn.execute(
                """
                INSERT INTO messages (id, conversation_id, tenant_id, agent_id, content, model,
                                      tokens_prompt, tokens_completion, latency_ms, chunk_ids,
                                      citations, judge_evaluation, finalized_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    content = excluded.content,
                    model = excluded.model,
                    tokens_prompt = excluded.tokens_prompt,
                    tokens_completion = excluded.tokens_completion,
                    latency_ms = excluded.latency_ms,
                    chunk_ids = excluded.chunk_ids,
                    citations = excluded.citations,
                    judge_evaluation = excluded.judge_evaluation,
                    finalized_at = excluded.finalized_at
                WHERE messages.finalized_at IS NULL
                """,
                (
                    message.id,
                    message.conversation_id,
                    message.tenant_id,
                    message.agent_id,
                    message.content,
                    message.model,
                    message.tokens_prompt,
                    message.tokens_completion,
                    message.latency_ms,
                    json.dumps(message.chunk_ids),
                    json.dumps([asdict(c) for c in message.citations]),
                    json.dumps(asdict(message.judge_evaluation))
                    if message.judge_evaluation is not None
                    else None,
                    message.finalized_at,
                ),
            )
            if cur.rowcount == 0:
                return False
            if usage is not None:
                self._conn.execute(
                    """
                    INSERT INTO usage_events (id, tenant_id, agent_id, conversation_id,
                                              message_id, event_type, model, tokens_prompt,
                                              tokens_completion, latency_ms, idempotency_key,
                                              created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(idempotency_key) DO NOTHING
                    """,
                    (
                        usage.id,
                        usage.tenant_id,
                        usage.agent_id,
                        usage.conversation_id,
                        usage.message_id,
                        usage.event_type,
                        usage.model,
                        usage.tokens_prompt,
                        usage.tokens_completion,
                        usage.latency_ms,
                        usage.idempotency_key,
                        usage.created_at or to_timestamp(utcnow()),
                    ),
                )
        return True

    def list_usage_events(self, tenant_id: str, limit: int = 100) -> list[UsageEvent]:
        rows = self._conn.execute(
            """
            SELECT * FROM usage_events WHERE tenant_id = ?
            ORDER BY created_at DESC, rowid DESC LIMIT ?
            """,
            (tenant_id, limit),
        ).fetchall()
        return [UsageEvent(**{k: r[k] for k in r.keys()}) for r in rows]


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _row_to_source(row: sqlite3.Row) -> Source:
    cls = SOURCE_VARIANTS[SourceType(row["type"])]
    payload = json.loads(row["payload"] or "{}")
    return cls(
        id=row["id"],
        tenant_id=row["tenant_id"],
        agent_id=row["agent_id"],
        name=row["name"],
        status=SourceStatus(row["status"]),
        size_kb=row["size_kb"],
        chunk_count=row["chunk_count"],
        error_message=row["error_message"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        deleted_at=row["deleted_at"],
        **payload,
    )


def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    meta = json.loads(row["metadata"] or "{}")
    return Chunk(
        rowid=row["rowid"],
        id=row["id"],
        tenant_id=row["tenant_id"],
        agent_id=row["agent_id"],
        source_id=row["source_id"],
        chunk_index=row["chunk_index"],
        content=row["content"],
        embedding_model=row["embedding_model"],
        metadata=ChunkMetadata(**meta),
        created_at=row["created_at"],
    )


def _row_to_job(row: sqlite3.Row) -> Job:
    return Job(
        id=row["id"],
        tenant_id=row["tenant_id"],
        job_type=row["job_type"],
        idempotency_key=row["idempotency_key"],
        source_id=row["source_id"],
        agent_id=row["agent_id"],
        status=JobStatus(row["status"]),
        attempt_count=row["attempt_count"],
        max_attempts=row["max_attempts"],
        progress=row["progress"],
        step=row["step"],
        scheduled_at=row["scheduled_at"],
        started_at=row["started_at"],
        completed_at=row["completed_at"],
        last_heartbeat=row["last_heartbeat"],
        last_error=row["last_error"],
        created_at=row["created_at"],
    )


def _row_to_message(row: sqlite3.Row) -> Message:
    judge = json.loads(row["judge_evaluation"]) if row["judge_evaluation"] else None
    return Message(
        id=row["id"],
        conversation_id=row["conversation_id"],
        tenant_id=row["tenant_id"],
        agent_id=row["agent_id"],
        content=row["content"],
        model=row["model"],
        tokens_prompt=row["tokens_prompt"],
        tokens_completion=row["tokens_completion"],
        latency_ms=row["latency_ms"],
        chunk_ids=json.loads(row["chunk_ids"] or "[]"),
        citations=[Citation(**c) for c in json.loads(row["citations"] or "[]")],
        judge_evaluation=JudgeEvaluation(**judge) if judge else None,
        finalized_at=row["finalized_at"],
    )


def iter_batches(items: list, size: int) -> Iterable[list]:
    """Yield consecutive slices of *items* of at most *size* elements."""
    if size < 1:
        raise ValueError("batch size must be >= 1")
    for start in range(0, len(items), size):
        yield items[start : start + size]
