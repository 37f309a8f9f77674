"""Tests for per-(model, dimensions) sqlite-vec virtual tables."""

from __future__ import annotations

import pytest

from ragline.db.vectors import (
    ensure_vec_table,
    list_vec_tables,
    model_to_slug,
    table_dimensions,
    vec_table_exists,
    vec_table_for,
    vec_table_name,
)


# --- naming ---

@pytest.mark.parametrize("model,expected", [
    ("openai/text-embedding-3-small", "openai_text_embedding_3_small"),
    ("openai/text-embedding-3-large", "openai_text_embedding_3_large"),
    ("cohere/embed-english-v3.0", "cohere_embed_english_v3_0"),
    ("local/all-MiniLM-L6-v2", "local_all_minilm_l6_v2"),
])
def test_model_to_slug(model, expected):
    assert model_to_slug(model) == expected


def test_vec_table_name_includes_dimensions():
    slug = model_to_slug("openai/text-embedding-3-small")
    assert vec_table_name(slug, 1536) == "vec_chunks_openai_text_embedding_3_small_1536"


def test_vec_table_for_raw_model():
    assert vec_table_for("openai/text-embedding-3-small", 512) == (
        "vec_chunks_openai_text_embedding_3_small_512"
    )


def test_table_dimensions_parses_suffix():
    assert table_dimensions("vec_chunks_openai_text_embedding_3_small_1536") == 1536


def test_table_dimensions_rejects_other_tables():
    with pytest.raises(ValueError):
        table_dimensions("chunks")


# --- ensure_vec_table ---

def test_ensure_vec_table_creates_table(tmp_db):
    table = ensure_vec_table(tmp_db, model_to_slug("openai/text-embedding-3-small"), 1536)
    assert table == "vec_chunks_openai_text_embedding_3_small_1536"
    assert vec_table_exists(tmp_db, table)


def test_ensure_vec_table_idempotent(tmp_db):
    slug = model_to_slug("openai/text-embedding-3-small")
    assert ensure_vec_table(tmp_db, slug, 8) == ensure_vec_table(tmp_db, slug, 8)
    assert list_vec_tables(tmp_db) == ["vec_chunks_openai_text_embedding_3_small_8"]


def test_same_model_different_dimensions_get_separate_tables(tmp_db):
    slug = model_to_slug("openai/text-embedding-3-small")
    ensure_vec_table(tmp_db, slug, 512)
    ensure_vec_table(tmp_db, slug, 1536)
    assert sorted(list_vec_tables(tmp_db)) == [
        "vec_chunks_openai_text_embedding_3_small_1536",
        "vec_chunks_openai_text_embedding_3_small_512",
    ]


def test_ensure_vec_table_rejects_unsanitized_slug(tmp_db):
    with pytest.raises(ValueError, match="model_to_slug"):
        ensure_vec_table(tmp_db, "openai/text-embedding", 8)


def test_ensure_vec_table_rejects_zero_dimensions(tmp_db):
    with pytest.raises(ValueError):
        ensure_vec_table(tmp_db, "model", 0)


def test_vec_table_accepts_tenant_partition(tmp_db):
    table = ensure_vec_table(tmp_db, "m", 2)
    tmp_db.execute(
        f"INSERT INTO {table}(rowid, tenant_id, agent_id, embedding) VALUES (1, 't1', 'a1', '[1, 0]')"
    )
    rows = tmp_db.execute(
        f"SELECT rowid FROM {table} WHERE embedding MATCH '[1, 0]' AND k = 5 AND tenant_id = 't1'"
    ).fetchall()
    assert [r[0] for r in rows] == [1]
