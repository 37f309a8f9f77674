"""Tests for database schema initialization."""

from __future__ import annotations

import sqlite3

import pytest

from ragline.db.connection import Database
from ragline.db.schema import CURRENT_VERSION, initialize, schema_version


def _table_columns(conn, table: str) -> set[str]:
    rows = conn.execute(f"PRAGMA table_info({table})").fetchall()
    return {row["name"] for row in rows}


def test_sources_columns(tmp_db):
    cols = _table_columns(tmp_db, "sources")
    assert {"id", "tenant_id", "agent_id", "type", "status", "payload", "deleted_at"} <= cols


def test_chunks_columns(tmp_db):
    cols = _table_columns(tmp_db, "chunks")
    assert cols == {
        "id",
        "tenant_id",
        "agent_id",
        "source_id",
        "chunk_index",
        "content",
        "embedding_model",
        "metadata",
        "created_at",
    }


def test_jobs_columns(tmp_db):
    cols = _table_columns(tmp_db, "jobs")
    assert {"idempotency_key", "attempt_count", "max_attempts", "step", "scheduled_at"} <= cols


def test_schema_version_matches_latest(tmp_db):
    assert schema_version(tmp_db) == CURRENT_VERSION


def test_schema_version_zero_before_initialize(tmp_path):
    conn = Database(tmp_path / "blank.db").connect()
    assert schema_version(conn) == 0
    conn.close()


def test_initialize_idempotent(tmp_db):
    initialize(tmp_db)
    initialize(tmp_db)
    assert schema_version(tmp_db) == CURRENT_VERSION


def test_chunk_position_unique_per_source(tmp_db):
    now = "2026-01-01T00:00:00.000000Z"
    tmp_db.execute(
        "INSERT INTO sources (id, tenant_id, agent_id, type, name, created_at, updated_at) "
        "VALUES ('s1', 't1', 'a1', 'text', 'n', ?, ?)",
        (now, now),
    )
    insert = (
        "INSERT INTO chunks (id, tenant_id, agent_id, source_id, chunk_index, content, "
        "embedding_model, created_at) VALUES (?, 't1', 'a1', 's1', 0, 'x', 'm', ?)"
    )
    tmp_db.execute(insert, ("c1", now))
    with pytest.raises(sqlite3.IntegrityError):
        tmp_db.execute(insert, ("c2", now))


def test_job_idempotency_key_unique(tmp_db):
    now = "2026-01-01T00:00:00.000000Z"
    insert = (
        "INSERT INTO jobs (id, tenant_id, job_type, idempotency_key, created_at) "
        "VALUES (?, 't1', 'text_snippet', 'text_snippet_s1', ?)"
    )
    tmp_db.execute(insert, ("j1", now))
    with pytest.raises(sqlite3.IntegrityError):
        tmp_db.execute(insert, ("j2", now))
