"""ragline search — similarity search over one agent's knowledge."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from ragline.cli.errors import err_no_db
from ragline.cli.runtime import build_embedder, load_settings, open_db, require_api_key, resolve_db
from ragline.db.repository import Repository
from ragline.errors import IngestError
from ragline.rag.retriever import Retriever

console = Console()

_SNIPPET = 120


def search_cmd(
    query: Annotated[str, typer.Argument(help="Natural-language query.")],
    tenant: Annotated[str, typer.Option("--tenant", "-t", help="Tenant to search.")],
    agent: Annotated[str, typer.Option("--agent", "-a", help="Agent to search.")],
    k: Annotated[
        int | None,
        typer.Option("--k", "-k", min=1, max=256, help="Number of results (default from config)."),
    ] = None,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the knowledge store (default from config)."),
    ] = None,
) -> None:
    """Show the chunks most similar to QUERY for one tenant and agent."""
    cfg = load_settings()
    db_path = resolve_db(db, cfg)
    if not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)
    require_api_key(cfg.embedding.model)

    conn = open_db(db_path)
    try:
        retriever = Retriever(build_embedder(cfg), Repository(conn), cfg.embedding.dimensions)
        results = retriever.retrieve(tenant, agent, query, k=k or cfg.retrieval.top_k)
    except IngestError as exc:
        console.print(f"[red]Error:[/] {exc}")
        raise typer.Exit(1)
    finally:
        conn.close()

    if not results:
        console.print(f"[yellow]No matching chunks for agent '{agent}'.[/]")
        raise typer.Exit(0)

    table = Table(title=f"Results for: {query}", show_header=True, header_style="bold")
    table.add_column("#", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("Source")
    table.add_column("Chunk", justify="right")
    table.add_column("Text", overflow="fold")

    for rank, hit in enumerate(results, start=1):
        where = hit.source_name
        if hit.page_number is not None:
            where += f" (p. {hit.page_number})"
        snippet = hit.content[:_SNIPPET].replace("\n", " ")
        if len(hit.content) > _SNIPPET:
            snippet += "…"
        table.add_row(str(rank), f"{hit.score:.3f}", where, str(hit.chunk_index), snippet)
    console.print(table)
