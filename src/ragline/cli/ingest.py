"""ragline ingest — register a source and run its ingestion job.

Subcommands (one per source type available from the command line):
  ragline ingest text   --tenant T --agent A --name N "some text"
  ragline ingest qa     --tenant T --agent A "question?" "answer."
  ragline ingest file   --tenant T --agent A path/to/handbook.pdf
  ragline ingest url    --tenant T --agent A https://example.com [--crawl]

Each submission creates (or finds) the source's job. With ``--no-run`` the
job is only queued and ``ragline worker`` picks it up later.
"""

from __future__ import annotations

import uuid
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn

from ragline.cli.errors import err_file_not_found, err_unsupported_file
from ragline.cli.runtime import (
    build_pipeline,
    load_settings,
    open_db,
    require_api_key,
    resolve_db,
)
from ragline.config import RaglineConfig
from ragline.db.models import FileSource, JobStatus, QASource, Source, TextSource, WebsiteSource
from ragline.db.repository import Repository
from ragline.ingest.parsers import CSV, DOCX, HTML, MARKDOWN, PDF, PLAIN
from ragline.jobs.controller import JobController
from ragline.jobs.pipeline import PipelineResult, submit_source

console = Console()

ingest_app = typer.Typer(
    name="ingest",
    help="Add a knowledge source (text, qa, file, url) for an agent.",
    add_completion=False,
)

_SUFFIX_MEDIA_TYPES: dict[str, str] = {
    ".pdf": PDF,
    ".docx": DOCX,
    ".txt": PLAIN,
    ".text": PLAIN,
    ".md": MARKDOWN,
    ".markdown": MARKDOWN,
    ".csv": CSV,
    ".html": HTML,
    ".htm": HTML,
}

TenantOpt = Annotated[str, typer.Option("--tenant", "-t", help="Tenant that owns the source.")]
AgentOpt = Annotated[str, typer.Option("--agent", "-a", help="Agent the source belongs to.")]
DbOpt = Annotated[
    Path | None,
    typer.Option("--db", help="Path to the knowledge store (default from config)."),
]
RunOpt = Annotated[
    bool,
    typer.Option("--run/--no-run", help="Run the job now, or only queue it."),
]
IdOpt = Annotated[
    str | None,
    typer.Option("--id", help="Source id. Re-submitting the same id reuses its job."),
]


@ingest_app.command("text")
def ingest_text_cmd(
    content: Annotated[str, typer.Argument(help="Text to add to the knowledge base.")],
    tenant: TenantOpt,
    agent: AgentOpt,
    name: Annotated[str, typer.Option("--name", "-n", help="Display name.")] = "Text snippet",
    db: DbOpt = None,
    run: RunOpt = True,
    source_id: IdOpt = None,
) -> None:
    """Add a text snippet."""
    source = TextSource(
        id=source_id or str(uuid.uuid4()),
        tenant_id=tenant,
        agent_id=agent,
        name=name,
        content=content,
        size_kb=round(len(content.encode("utf-8")) / 1024, 2),
    )
    _submit(source, db, run)


@ingest_app.command("qa")
def ingest_qa_cmd(
    question: Annotated[str, typer.Argument(help="The question.")],
    answer: Annotated[str, typer.Argument(help="The answer.")],
    tenant: TenantOpt,
    agent: AgentOpt,
    db: DbOpt = None,
    run: RunOpt = True,
    source_id: IdOpt = None,
) -> None:
    """Add a question/answer pair."""
    source = QASource(
        id=source_id or str(uuid.uuid4()),
        tenant_id=tenant,
        agent_id=agent,
        name=question[:80],
        question=question,
        answer=answer,
    )
    _submit(source, db, run)


@ingest_app.command("file")
def ingest_file_cmd(
    path: Annotated[Path, typer.Argument(help="PDF, DOCX, text, Markdown, CSV or HTML file.")],
    tenant: TenantOpt,
    agent: AgentOpt,
    name: Annotated[str | None, typer.Option("--name", "-n", help="Display name.")] = None,
    db: DbOpt = None,
    run: RunOpt = True,
    source_id: IdOpt = None,
) -> None:
    """Add a local file."""
    if not path.is_file():
        console.print(err_file_not_found(str(path)))
        raise typer.Exit(1)
    media_type = _SUFFIX_MEDIA_TYPES.get(path.suffix.lower())
    if media_type is None:
        console.print(err_unsupported_file(str(path), sorted(_SUFFIX_MEDIA_TYPES)))
        raise typer.Exit(1)

    resolved = path.resolve()
    source = FileSource(
        id=source_id or str(uuid.uuid4()),
        tenant_id=tenant,
        agent_id=agent,
        name=name or path.name,
        file_id=str(resolved),
        mime_type=media_type,
        size_kb=round(resolved.stat().st_size / 1024, 2),
    )
    _submit(source, db, run)


@ingest_app.command("url")
def ingest_url_cmd(
    url: Annotated[str, typer.Argument(help="http(s) URL to scrape.")],
    tenant: TenantOpt,
    agent: AgentOpt,
    crawl: Annotated[
        bool,
        typer.Option("--crawl", help="Follow same-site links instead of a single page."),
    ] = False,
    limit: Annotated[
        int,
        typer.Option("--limit", min=1, help="Maximum pages to visit when crawling."),
    ] = 10,
    name: Annotated[str | None, typer.Option("--name", "-n", help="Display name.")] = None,
    db: DbOpt = None,
    run: RunOpt = True,
    source_id: IdOpt = None,
) -> None:
    """Add a web page (or a small same-site crawl)."""
    source = WebsiteSource(
        id=source_id or str(uuid.uuid4()),
        tenant_id=tenant,
        agent_id=agent,
        name=name or url,
        url=url,
        mode="crawl" if crawl else "scrape",
        crawl_limit=limit,
    )
    _submit(source, db, run)


# ------------------------------------------------------------------
# Submit + run
# ------------------------------------------------------------------


def _submit(source: Source, db: Path | None, run: bool) -> None:
    cfg = load_settings()
    db_path = resolve_db(db, cfg)
    if run:
        require_api_key(cfg.embedding.model)

    conn = open_db(db_path)
    repo = Repository(conn)
    controller = JobController(repo)
    try:
        created = submit_source(repo, controller, source, max_attempts=cfg.jobs.max_attempts)
        if created.already_exists:
            console.print(f"[yellow]⚠[/]  Job already exists for source {source.id}")
        else:
            console.print(f"[green]✓[/] Queued {source.type} source [bold]{source.name}[/]")
        console.print(f"  source: {source.id}\n  job:    {created.job_id}")

        if not run:
            console.print("[dim]Run 'ragline worker' to process queued jobs.[/]")
            return

        job = controller.get(created.job_id)
        if job is None or job.is_terminal:
            return
        result = _run_job(repo, cfg, created.job_id)
        _print_result(result)
        if result.status == JobStatus.FAILED:
            raise typer.Exit(1)
    finally:
        conn.close()


def _run_job(repo: Repository, cfg: RaglineConfig, job_id: str) -> PipelineResult:
    pipeline, _ = build_pipeline(repo, cfg)
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True,
    ) as progress:
        progress.add_task("Ingesting…", total=None)
        return pipeline.run(job_id)


def _print_result(result: PipelineResult) -> None:
    if result.status == JobStatus.COMPLETED:
        console.print(f"[green]✓[/] Ready: {result.chunk_count} chunks stored")
    elif result.status == JobStatus.PENDING:
        console.print(
            f"[yellow]⚠[/]  Attempt {result.attempt} failed: {escape(result.error or '')}\n"
            "  A retry is scheduled. Run 'ragline worker' later."
        )
    else:
        console.print(f"[red]✗ Failed:[/] {escape(result.error or '')}")
