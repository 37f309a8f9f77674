"""ragline worker — run one pass over due ingestion jobs."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ragline.cli.runtime import build_pipeline, load_settings, open_db, require_api_key, resolve_db
from ragline.db.models import JobStatus
from ragline.db.repository import Repository
from ragline.jobs.worker import IngestionWorker

console = Console()

_STATUS_STYLE = {
    JobStatus.COMPLETED: "[green]completed[/]",
    JobStatus.PENDING: "[yellow]retry scheduled[/]",
    JobStatus.FAILED: "[red]failed[/]",
}


def worker_cmd(
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the knowledge store (default from config)."),
    ] = None,
    limit: Annotated[
        int,
        typer.Option("--limit", min=1, help="Maximum jobs to run in this pass."),
    ] = 50,
) -> None:
    """Run every pending job whose scheduled time has passed."""
    cfg = load_settings()
    db_path = resolve_db(db, cfg)
    require_api_key(cfg.embedding.model)

    conn = open_db(db_path)
    try:
        pipeline, scheduler = build_pipeline(Repository(conn), cfg)
        results = IngestionWorker(pipeline, scheduler).run_once(limit=limit)
    finally:
        conn.close()

    if not results:
        console.print("[dim]No jobs due.[/]")
        return

    table = Table(title="Worker pass", show_header=True, header_style="bold")
    table.add_column("Job")
    table.add_column("Source")
    table.add_column("Attempt", justify="right")
    table.add_column("Result")
    table.add_column("Chunks", justify="right")
    table.add_column("Error", overflow="fold")

    for r in results:
        table.add_row(
            r.job_id[:8],
            (r.source_id or "")[:8],
            str(r.attempt),
            _STATUS_STYLE.get(r.status, str(r.status)),
            str(r.chunk_count) if r.status == JobStatus.COMPLETED else "",
            escape(r.error or ""),
        )
    console.print(table)
