"""Tests for ragline worker."""

from __future__ import annotations

from pathlib import Path

from typer.testing import CliRunner

from ragline.cli.main import app
from ragline.db.connection import Database
from ragline.db.models import SourceStatus
from ragline.db.repository import Repository

runner = CliRunner()


def _queue(source_id: str) -> None:
    result = runner.invoke(
        app, ["ingest", "qa", "-t", "t1", "-a", "a1", "--id", source_id, "--no-run", "Hours?", "9 to 5."]
    )
    assert result.exit_code == 0, result.output


def test_worker_runs_queued_jobs(cli_project: Path, cli_embed) -> None:
    _queue("qa-1")
    _queue("qa-2")

    result = runner.invoke(app, ["worker"])

    assert result.exit_code == 0, result.output
    assert "Worker pass" in result.output
    assert result.output.count("completed") == 2

    conn = Database(cli_project / ".ragline.db").connect()
    try:
        repo = Repository(conn)
        assert repo.get_source("qa-1").status == SourceStatus.READY
        assert repo.get_source("qa-2").status == SourceStatus.READY
    finally:
        conn.close()


def test_worker_nothing_due(cli_project: Path, cli_embed) -> None:
    result = runner.invoke(app, ["worker"])
    assert result.exit_code == 0
    assert "No jobs due" in result.output


def test_worker_second_pass_is_idle(cli_project: Path, cli_embed) -> None:
    _queue("qa-1")
    runner.invoke(app, ["worker"])
    result = runner.invoke(app, ["worker"])
    assert "No jobs due" in result.output


def test_worker_limit(cli_project: Path, cli_embed) -> None:
    _queue("qa-1")
    _queue("qa-2")
    result = runner.invoke(app, ["worker", "--limit", "1"])
    assert result.output.count("completed") == 1


def test_worker_requires_api_key(cli_project: Path, monkeypatch) -> None:
    monkeypatch.setenv("RAGLINE_EMBEDDING_MODEL", "openai/text-embedding-3-small")
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    result = runner.invoke(app, ["worker"])
    assert result.exit_code == 1
    assert "OPENAI_API_KEY" in result.output
