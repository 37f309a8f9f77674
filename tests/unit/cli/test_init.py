"""Tests for ragline init."""

from __future__ import annotations

import stat
from pathlib import Path

import yaml
from typer.testing import CliRunner

from ragline.cli.main import app
from ragline.db.connection import Database
from ragline.db.models import TextSource
from ragline.db.repository import Repository
from ragline.db.vectors import list_vec_tables

runner = CliRunner()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run_init(tmp_path: Path, project: Path) -> object:
    return runner.invoke(
        app, ["init", str(project), "--global-config", str(tmp_path / "global" / "config.yaml")]
    )


def _vec_tables(db_path: Path) -> list[str]:
    conn = Database(db_path).connect()
    try:
        return list_vec_tables(conn)
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Scaffold
# ---------------------------------------------------------------------------


def test_init_creates_files(cli_project: Path) -> None:
    project = cli_project / "kb"
    result = _run_init(cli_project, project)

    assert result.exit_code == 0, result.output
    assert (project / "ragline.yaml").exists()
    assert (project / ".ragline.db").exists()
    assert (cli_project / "global" / "config.yaml").exists()
    assert "ragline initialized" in result.output


def test_init_project_yaml_is_valid(cli_project: Path) -> None:
    project = cli_project / "kb"
    _run_init(cli_project, project)

    data = yaml.safe_load((project / "ragline.yaml").read_text(encoding="utf-8"))
    assert data["embedding"]["model"] == "openai/text-embedding-3-small"
    assert data["judge"]["pass_threshold"] == 0.7
    assert data["jobs"]["max_attempts"] == 3


def test_init_creates_active_vec_table(cli_project: Path) -> None:
    project = cli_project / "kb"
    _run_init(cli_project, project)
    assert _vec_tables(project / ".ragline.db") == ["vec_chunks_openai_text_embedding_3_small_1536"]


def test_init_global_config_is_private(cli_project: Path) -> None:
    _run_init(cli_project, cli_project / "kb")
    mode = stat.S_IMODE((cli_project / "global" / "config.yaml").stat().st_mode)
    assert mode == 0o600


# ---------------------------------------------------------------------------
# Re-running
# ---------------------------------------------------------------------------


def test_init_keeps_existing_yaml(cli_project: Path) -> None:
    project = cli_project / "kb"
    project.mkdir()
    (project / "ragline.yaml").write_text(
        "embedding:\n  model: test/embed-small\n  dimensions: 4\n", encoding="utf-8"
    )

    result = _run_init(cli_project, project)

    assert result.exit_code == 0, result.output
    assert "kept existing" in result.output
    assert _vec_tables(project / ".ragline.db") == ["vec_chunks_test_embed_small_4"]


def test_init_twice_preserves_data(cli_project: Path) -> None:
    project = cli_project / "kb"
    _run_init(cli_project, project)

    conn = Database(project / ".ragline.db").connect()
    Repository(conn).add_source(
        TextSource(id="s1", tenant_id="t1", agent_id="a1", name="Kept", content="x")
    )
    conn.close()

    result = _run_init(cli_project, project)
    assert "existing data preserved" in result.output

    conn = Database(project / ".ragline.db").connect()
    assert Repository(conn).get_source("s1").name == "Kept"
    conn.close()


def test_init_invalid_yaml_exits_1(cli_project: Path) -> None:
    project = cli_project / "kb"
    project.mkdir()
    (project / "ragline.yaml").write_text("chunking:\n  target_tokens: 0\n", encoding="utf-8")

    result = _run_init(cli_project, project)
    assert result.exit_code == 1
    assert "Invalid configuration" in result.output


# ---------------------------------------------------------------------------
# .gitignore
# ---------------------------------------------------------------------------


def test_init_updates_existing_gitignore(cli_project: Path) -> None:
    project = cli_project / "kb"
    project.mkdir()
    (project / ".gitignore").write_text("*.pyc\n", encoding="utf-8")

    _run_init(cli_project, project)

    lines = (project / ".gitignore").read_text(encoding="utf-8").splitlines()
    assert "*.pyc" in lines
    assert ".ragline.db" in lines
    assert ".ragline.db-wal" in lines


def test_init_gitignore_not_duplicated(cli_project: Path) -> None:
    project = cli_project / "kb"
    project.mkdir()
    (project / ".gitignore").write_text(".ragline.db\n", encoding="utf-8")

    _run_init(cli_project, project)
    _run_init(cli_project, project)

    lines = (project / ".gitignore").read_text(encoding="utf-8").splitlines()
    assert lines.count(".ragline.db") == 1
    assert lines.count(".ragline.db-shm") == 1


def test_init_does_not_create_gitignore(cli_project: Path) -> None:
    project = cli_project / "kb"
    _run_init(cli_project, project)
    assert not (project / ".gitignore").exists()
