"""ragline remove — soft-delete a source.

Removes the source's chunks and embeddings (from every vec table) and marks
the source deleted. The source row stays as a tombstone so its job history
remains readable.

Usage:
  ragline remove SOURCE_ID
  ragline remove SOURCE_ID --yes
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from ragline.cli.errors import err_no_db, err_source_not_found
from ragline.cli.runtime import load_settings, open_db, resolve_db
from ragline.db.repository import Repository

console = Console()


def remove_cmd(
    source_id: Annotated[str, typer.Argument(help="Id of the source to remove.")],
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the knowledge store (default from config)."),
    ] = None,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
) -> None:
    """Remove a source and all its chunks from the knowledge store."""
    cfg = load_settings()
    db_path = resolve_db(db, cfg)
    if not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)

    conn = open_db(db_path)
    repo = Repository(conn)
    try:
        source = repo.get_source(source_id)
        if source is None:
            console.print(err_source_not_found(source_id))
            raise typer.Exit(0)

        chunk_count = repo.count_chunks_by_source(source.id)
        console.print(f"\nRemove source: [bold]{source.name}[/] ({source.type})")
        console.print(f"  Tenant: {source.tenant_id}  |  Agent: {source.agent_id}  |  Chunks: {chunk_count}")

        if not yes:
            if not typer.confirm("Confirm removal?", default=False):
                console.print("[dim]Cancelled.[/]")
                raise typer.Exit(0)

        removed = repo.delete_source(source.id)
        console.print(f"\n[green]✓[/] Removed: {source.name}")
        console.print(f"  {removed} chunks deleted")
    finally:
        conn.close()
