"""Per-(model, dimensions) sqlite-vec virtual table management.

Each table carries ``tenant_id`` as a partition key and ``agent_id`` as a
metadata column, so tenant/agent filters are applied inside the KNN scan
rather than after it.
"""

from __future__ import annotations

import re
import sqlite3

_TABLE_RE = re.compile(r"vec_chunks_([a-z0-9_]+)_(\d+)")


def model_to_slug(model: str) -> str:
    """Convert a provider/model string to a valid table name suffix.

    Examples:
        "openai/text-embedding-3-small" -> "openai_text_embedding_3_small"
        "text-embedding-3-large" -> "text_embedding_3_large"
    """
    return re.sub(r"[^a-z0-9]", "_", model.lower())


def vec_table_name(model_slug: str, dimensions: int) -> str:
    """Return the full vec table name for a model slug and dimensionality."""
    return f"vec_chunks_{model_slug}_{dimensions}"


def vec_table_for(model: str, dimensions: int) -> str:
    """Shortcut: table name for a raw model string."""
    return vec_table_name(model_to_slug(model), dimensions)


def table_dimensions(table: str) -> int:
    """Parse the dimensionality encoded in a vec table name."""
    match = _TABLE_RE.fullmatch(table)
    if match is None:
        raise ValueError(f"Not a vec chunk table: '{table}'")
    return int(match.group(2))


def vec_table_exists(conn: sqlite3.Connection, table: str) -> bool:
    return (
        conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table,)
        ).fetchone()
        is not None
    )


def list_vec_tables(conn: sqlite3.Connection) -> list[str]:
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name LIKE 'vec_chunks_%'"
    ).fetchall()
    return [r[0] for r in rows if _TABLE_RE.fullmatch(r[0])]


def ensure_vec_table(conn: sqlite3.Connection, model_slug: str, dimensions: int) -> str:
    """Create the vec table for *model_slug* / *dimensions* if it doesn't already exist.

    Args:
        conn: Active database connection (sqlite-vec must be loaded).
        model_slug: Sanitized model identifier (use model_to_slug() to generate).
        dimensions: Embedding vector dimensions (configured per agent).

    Returns:
        The table name (vec_chunks_{model_slug}_{dimensions}).
    """
    if not re.fullmatch(r"[a-z0-9_]+", model_slug):
        raise ValueError(
            f"Invalid model_slug '{model_slug}' — use model_to_slug() to sanitize."
        )
    if dimensions < 1:
        raise ValueError(f"dimensions must be >= 1, got {dimensions}")

    table = vec_table_name(model_slug, dimensions)
    if not vec_table_exists(conn, table):
        conn.execute(
            f"""
            CREATE VIRTUAL TABLE {table} USING vec0(
                tenant_id text partition key,
                agent_id text,
                embedding float[{dimensions}] distance_metric=cosine
            )
            """
        )
        conn.commit()

    return table
