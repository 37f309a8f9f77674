"""ragline jobs CLI commands.

Commands:
  ragline jobs list  --tenant T [--status S]   — recent jobs, newest first
  ragline jobs stats --tenant T                — counts per status
  ragline jobs show  JOB_ID                    — one job with its error history
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from ragline.cli.errors import err_bad_status, err_job_not_found, err_no_db
from ragline.cli.runtime import load_settings, open_db, resolve_db
from ragline.db.models import Job, JobStatus
from ragline.db.repository import Repository
from ragline.jobs.controller import JobController

console = Console()

jobs_app = typer.Typer(
    name="jobs",
    help="Inspect ingestion jobs (list, stats, show).",
    add_completion=False,
)

_STATUS_COLOURS = {
    JobStatus.PENDING: "yellow",
    JobStatus.PROCESSING: "cyan",
    JobStatus.COMPLETED: "green",
    JobStatus.FAILED: "red",
}

DbOpt = Annotated[
    Path | None,
    typer.Option("--db", help="Path to the knowledge store (default from config)."),
]


@jobs_app.command("list")
def jobs_list_cmd(
    tenant: Annotated[str, typer.Option("--tenant", "-t", help="Tenant to list jobs for.")],
    status: Annotated[
        str | None,
        typer.Option("--status", help="Only jobs in this status."),
    ] = None,
    limit: Annotated[int, typer.Option("--limit", min=1, help="Maximum rows.")] = 50,
    db: DbOpt = None,
) -> None:
    """List a tenant's jobs, newest first."""
    status_filter: JobStatus | None = None
    if status is not None:
        try:
            status_filter = JobStatus(status)
        except ValueError:
            console.print(err_bad_status(status, [str(s) for s in JobStatus]))
            raise typer.Exit(1)

    controller, conn = _open_controller(db)
    try:
        jobs = controller.list_jobs(tenant, status=status_filter, limit=limit)
    finally:
        conn.close()

    if not jobs:
        console.print(f"[yellow]No jobs for tenant '{tenant}'.[/]")
        raise typer.Exit(0)

    table = Table(title=f"Jobs — {tenant}", show_header=True, header_style="bold")
    table.add_column("Job")
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Step")
    table.add_column("Progress", justify="right")
    table.add_column("Attempts", justify="right")
    table.add_column("Last error", overflow="fold")

    for job in jobs:
        table.add_row(
            job.id[:8],
            job.job_type,
            _styled(job.status),
            job.step or "",
            f"{job.progress}%",
            f"{job.attempt_count}/{job.max_attempts}",
            escape(job.last_error or ""),
        )
    console.print(table)


@jobs_app.command("stats")
def jobs_stats_cmd(
    tenant: Annotated[str, typer.Option("--tenant", "-t", help="Tenant to summarise.")],
    db: DbOpt = None,
) -> None:
    """Show job counts per status for a tenant."""
    controller, conn = _open_controller(db)
    try:
        stats = controller.stats(tenant)
    finally:
        conn.close()

    lines = [f"  {_styled(JobStatus(s))}: {stats[str(s)]}" for s in JobStatus]
    lines.append(f"  [bold]total[/]: {stats['total']}")
    console.print(Panel("\n".join(lines), title=f"Job stats — {tenant}", expand=False))


@jobs_app.command("show")
def jobs_show_cmd(
    job_id: Annotated[str, typer.Argument(help="Job id.")],
    db: DbOpt = None,
) -> None:
    """Show one job, including every recorded error."""
    controller, conn = _open_controller(db)
    try:
        job = controller.get(job_id)
    finally:
        conn.close()

    if job is None:
        console.print(err_job_not_found(job_id))
        raise typer.Exit(1)
    console.print(Panel(_describe(job), title=f"Job {job.id}", expand=False))


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _open_controller(db: Path | None):
    cfg = load_settings()
    db_path = resolve_db(db, cfg)
    if not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)
    conn = open_db(db_path)
    return JobController(Repository(conn)), conn


def _styled(status: JobStatus) -> str:
    colour = _STATUS_COLOURS.get(status, "white")
    return f"[{colour}]{status}[/]"


def _describe(job: Job) -> str:
    lines = [
        f"  Type:      {job.job_type}",
        f"  Tenant:    {job.tenant_id}",
        f"  Source:    {job.source_id or '—'}",
        f"  Status:    {_styled(job.status)}",
        f"  Step:      {job.step or '—'}",
        f"  Progress:  {job.progress}%",
        f"  Attempts:  {job.attempt_count}/{job.max_attempts}",
        f"  Scheduled: {job.scheduled_at or '—'}",
        f"  Completed: {job.completed_at or '—'}",
    ]
    if job.error_history:
        lines.append("\n  [bold]Errors[/]")
        lines.extend(f"    {escape(entry)}" for entry in job.error_history)
    return "\n".join(lines)
