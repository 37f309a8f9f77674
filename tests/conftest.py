"""Shared pytest fixtures."""

from __future__ import annotations

import hashlib
import json

import pytest
import structlog

from ragline.db.connection import Database
from ragline.db.repository import Repository
from ragline.db.schema import initialize
from ragline.ingest.embedder import Embedder

EMBED_MODEL = "test/embed-small"
EMBED_DIMS = 4


class FakeEmbeddings:
    """Drop-in for ``litellm.embedding``: deterministic vectors, records every call.

    Identical texts get identical vectors, so a query equal to a chunk's
    content scores 1.0 against it.
    """

    def __init__(self, dims: int = EMBED_DIMS) -> None:
        self.dims = dims
        self.calls: list[dict] = []

    def vector(self, text: str) -> list[float]:
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        return [float(b + 1) for b in digest[: self.dims]]

    def __call__(self, *, model, input, num_retries=0, dimensions=None):
        self.calls.append({"model": model, "input": list(input), "dimensions": dimensions})
        return {
            "data": [
                {"index": i, "embedding": self.vector(text)} for i, text in enumerate(input)
            ],
            "usage": {"prompt_tokens": len(input), "total_tokens": len(input)},
        }


class FakeCompletion:
    """Drop-in for ``llm_client.complete`` returning queued replies in order."""

    def __init__(self, *replies) -> None:
        self.replies = list(replies)
        self.calls: list[dict] = []

    def __call__(self, **kwargs):
        self.calls.append(kwargs)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply if isinstance(reply, str) else json.dumps(reply)


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / ".ragline.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def repo(tmp_db):
    return Repository(tmp_db)


@pytest.fixture
def fake_embed():
    return FakeEmbeddings()


@pytest.fixture
def embedder(fake_embed):
    return Embedder(EMBED_MODEL, batch_size=8, dimensions=EMBED_DIMS, embed_fn=fake_embed)


@pytest.fixture
def verdict():
    """Factory for judge replies."""

    def _make(safety=0.9, grounded=0.9, brand=0.9, reasoning="ok", flagged=False):
        return {
            "safety_score": safety,
            "groundedness_score": grounded,
            "brand_alignment_score": brand,
            "reasoning": reasoning,
            "flagged": flagged,
        }

    return _make


@pytest.fixture
def fake_completion():
    """Factory: ``fake_completion(reply, ...)`` builds a FakeCompletion."""
    return FakeCompletion


# ------------------------------------------------------------------
# CLI
# ------------------------------------------------------------------

CLI_PROJECT_YAML = f"""\
embedding:
  model: {EMBED_MODEL}
  dimensions: {EMBED_DIMS}
  batch_size: 8
generation:
  model: ollama/llama3
judge:
  model: ollama/llama3
jobs:
  backoff:
    jitter: 0
"""


@pytest.fixture
def cli_project(tmp_path, monkeypatch):
    """CWD with a ragline.yaml on the fake embedding model and no global config."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr("ragline.config._GLOBAL_CONFIG_PATH", tmp_path / "global-config.yaml")
    monkeypatch.setattr("ragline.cli.runtime.configure_logging", lambda *a, **kw: None)
    for name in (
        "RAGLINE_EMBEDDING_MODEL",
        "RAGLINE_JUDGE_MODEL",
        "RAGLINE_GENERATION_MODEL",
        "RAGLINE_LOG_LEVEL",
        "RAGLINE_DB",
    ):
        monkeypatch.delenv(name, raising=False)
    (tmp_path / "ragline.yaml").write_text(CLI_PROJECT_YAML, encoding="utf-8")
    structlog.configure(logger_factory=structlog.ReturnLoggerFactory())
    yield tmp_path
    structlog.reset_defaults()


@pytest.fixture
def cli_embed(monkeypatch, fake_embed):
    """Route the CLI's litellm embedding calls to FakeEmbeddings."""
    monkeypatch.setattr("ragline.ingest.embedder.litellm.embedding", fake_embed)
    return fake_embed
