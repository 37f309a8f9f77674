"""ragline CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from ragline.cli.ask import ask_cmd
from ragline.cli.ingest import ingest_app
from ragline.cli.init import init_cmd
from ragline.cli.jobs import jobs_app
from ragline.cli.remove import remove_cmd
from ragline.cli.search import search_cmd
from ragline.cli.status import status_cmd
from ragline.cli.worker import worker_cmd


def _installed_version() -> str:
    try:
        return importlib.metadata.version("ragline")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"ragline {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="ragline",
    help=(
        "ragline — multi-tenant knowledge ingestion and grounded answers.\n\n"
        "  ragline ingest  Add sources; each becomes a retryable ingestion job.\n"
        "  ragline ask     Answer from an agent's knowledge, reviewed by a judge model."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """ragline — multi-tenant knowledge ingestion and grounded answers."""


app.command("init")(init_cmd)
app.command("worker")(worker_cmd)
app.command("search")(search_cmd)
app.command("ask")(ask_cmd)
app.command("status")(status_cmd)
app.command("remove")(remove_cmd)
app.add_typer(ingest_app, name="ingest")
app.add_typer(jobs_app, name="jobs")


@app.command("version")
def version_cmd() -> None:
    """Show the installed ragline version."""
    typer.echo(f"ragline {_installed_version()}")


if __name__ == "__main__":
    app()
