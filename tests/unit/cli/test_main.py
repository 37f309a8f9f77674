"""Tests for the ragline entry point: --version, version, help."""

from __future__ import annotations

from typer.testing import CliRunner

from ragline.cli.main import app

runner = CliRunner()


def test_version_flag_exits_zero() -> None:
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert result.output.startswith("ragline ")


def test_version_command_shows_version() -> None:
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert "ragline" in result.output


def test_help_lists_commands() -> None:
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    for command in ("init", "ingest", "worker", "jobs", "search", "ask", "status", "remove"):
        assert command in result.output


def test_ingest_help_lists_source_types() -> None:
    result = runner.invoke(app, ["ingest", "--help"])
    assert result.exit_code == 0
    for kind in ("text", "qa", "file", "url"):
        assert kind in result.output
