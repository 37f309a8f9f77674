"""ragline status command.

Shows the knowledge store overview (database, schema, vec tables, models)
and, with ``--tenant``, that tenant's sources and job counts.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from ragline.cli.runtime import load_settings, open_db, resolve_db
from ragline.config import RaglineConfig
from ragline.db.models import Source, SourceStatus
from ragline.db.repository import Repository
from ragline.db.schema import schema_version
from ragline.db.vectors import list_vec_tables, vec_table_for
from ragline.jobs.controller import JobController

console = Console()

_SOURCE_STATUS_STYLE = {
    SourceStatus.PENDING: "[yellow]pending[/]",
    SourceStatus.PROCESSING: "[cyan]processing[/]",
    SourceStatus.READY: "[green]ready[/]",
    SourceStatus.ERROR: "[red]error[/]",
}


def status_cmd(
    tenant: Annotated[
        str | None,
        typer.Option("--tenant", "-t", help="Show this tenant's sources and jobs."),
    ] = None,
    agent: Annotated[
        str | None,
        typer.Option("--agent", "-a", help="Only sources for this agent."),
    ] = None,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the knowledge store (default from config)."),
    ] = None,
) -> None:
    """Show knowledge store status."""
    cfg = load_settings()
    db_path = resolve_db(db, cfg)

    if not db_path.exists():
        console.print(
            Panel(
                "[yellow]No database found.[/]\n"
                "  Run:  ragline init",
                title="[bold]Knowledge Store[/]",
                expand=False,
            )
        )
        raise typer.Exit(0)

    conn = open_db(db_path)
    repo = Repository(conn)
    try:
        _show_store_panel(db_path, conn, cfg)
        if tenant is not None:
            _show_sources_table(repo, tenant, agent)
            _show_jobs_line(JobController(repo), tenant)
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Panel renderers
# ---------------------------------------------------------------------------


def _show_store_panel(db_path: Path, conn: sqlite3.Connection, cfg: RaglineConfig) -> None:
    size_mb = db_path.stat().st_size / (1024 * 1024)
    total_chunks = conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0]
    live_sources = conn.execute(
        "SELECT COUNT(*) FROM sources WHERE deleted_at IS NULL"
    ).fetchone()[0]
    vec_tables = list_vec_tables(conn)
    active = vec_table_for(cfg.embedding.model, cfg.embedding.dimensions)

    lines = [
        f"Database:  {db_path} ({size_mb:.1f} MB)",
        f"Schema:    v{schema_version(conn)}",
        f"Embedding: {cfg.embedding.model} ({cfg.embedding.dimensions} dims)",
        f"Judge:     {cfg.judge.model}"
        + ("" if cfg.judge.enabled else " [yellow](disabled)[/]"),
        f"Sources: [bold]{live_sources}[/]  |  "
        f"Chunks: [bold]{total_chunks:,}[/]  |  "
        f"Vec tables: [bold]{len(vec_tables)}[/]",
    ]
    for vt in vec_tables:
        marker = " [green](active)[/]" if vt == active else ""
        lines.append(f"  {vt}{marker}")

    console.print(Panel("\n".join(lines), title="[bold]Knowledge Store[/]", expand=False))


def _show_sources_table(repo: Repository, tenant: str, agent: str | None) -> None:
    sources = repo.list_sources(tenant, agent_id=agent)
    if not sources:
        console.print(f"[dim]No sources for tenant '{tenant}'.[/]")
        return

    table = Table(title=f"Sources — {tenant}", show_header=True, header_style="bold")
    table.add_column("Id")
    table.add_column("Agent")
    table.add_column("Type")
    table.add_column("Name")
    table.add_column("Status")
    table.add_column("Chunks", justify="right")
    table.add_column("Error", overflow="fold")

    for source in sources:
        table.add_row(
            source.id[:8],
            source.agent_id,
            str(source.type),
            source.name,
            _SOURCE_STATUS_STYLE.get(source.status, str(source.status)),
            _chunk_count(source),
            escape(source.error_message or ""),
        )
    console.print(table)


def _show_jobs_line(controller: JobController, tenant: str) -> None:
    stats = controller.stats(tenant)
    console.print(
        f"Jobs: {stats['total']} total  |  "
        f"[yellow]{stats['pending']} pending[/]  |  "
        f"[cyan]{stats['processing']} processing[/]  |  "
        f"[green]{stats['completed']} completed[/]  |  "
        f"[red]{stats['failed']} failed[/]"
    )


def _chunk_count(source: Source) -> str:
    return "" if source.chunk_count is None else str(source.chunk_count)
