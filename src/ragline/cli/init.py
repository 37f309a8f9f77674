"""ragline init — scaffold a knowledge store.

Creates:
  .ragline.db              — knowledge store with schema + active vec table
  ragline.yaml             — project config (models, chunking, retrieval, jobs)
  ~/.ragline/config.yaml   — global model config (created once, mode 0o600)
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from ragline.cli.errors import err_config
from ragline.config import DEFAULT_DB_NAME, ConfigError, ensure_global_config, load_config
from ragline.db.connection import Database
from ragline.db.schema import initialize
from ragline.db.vectors import ensure_vec_table, model_to_slug

console = Console()

_DEFAULT_PROJECT_DIR = Path(".")

_PROJECT_YAML = """\
# ragline project configuration.
# API keys are read from environment variables, never from this file.

embedding:
  model: openai/text-embedding-3-small
  dimensions: 1536
  batch_size: 100

chunking:
  target_tokens: 500
  overlap_tokens: 100

retrieval:
  top_k: 5
  max_context_tokens: 4000

generation:
  model: openai/gpt-4o-mini

judge:
  model: openai/gpt-4o-mini
  pass_threshold: 0.7
  enabled: true

jobs:
  max_attempts: 3
  backoff:
    base_seconds: 30
    max_seconds: 900
"""


def init_cmd(
    project_dir: Annotated[
        Path,
        typer.Argument(help="Directory to initialize. Defaults to current directory."),
    ] = _DEFAULT_PROJECT_DIR,
    global_config: Annotated[
        Path | None,
        typer.Option("--global-config", hidden=True, help="Override global config path (for testing)."),
    ] = None,
) -> None:
    """Create the knowledge store and config files."""
    project_dir = project_dir.resolve()
    project_dir.mkdir(parents=True, exist_ok=True)

    cfg_path = ensure_global_config(global_config)
    console.print(f"  [green]✓[/] {cfg_path} (global config)")

    yaml_path = project_dir / "ragline.yaml"
    if yaml_path.exists():
        console.print("  [dim]-[/] ragline.yaml (kept existing)")
    else:
        yaml_path.write_text(_PROJECT_YAML, encoding="utf-8")
        console.print("  [green]✓[/] ragline.yaml")

    try:
        cfg = load_config(project_dir, global_config_path=cfg_path)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)

    db_path = project_dir / DEFAULT_DB_NAME
    existed = db_path.exists()
    conn = Database(db_path).connect()
    try:
        initialize(conn)
        vec_table = ensure_vec_table(
            conn, model_to_slug(cfg.embedding.model), cfg.embedding.dimensions
        )
    finally:
        conn.close()
    note = " (existing data preserved)" if existed else ""
    console.print(f"  [green]✓[/] {DEFAULT_DB_NAME}{note}")
    console.print(f"  [green]✓[/] {vec_table}")

    _update_gitignore(project_dir)

    console.print("\n[bold green]✓ ragline initialized.[/]")
    console.print("\nNext steps:")
    console.print("  1. export OPENAI_API_KEY=sk-...")
    console.print("  2. ragline ingest file -t <tenant> -a <agent> handbook.pdf")
    console.print("  3. ragline search -t <tenant> -a <agent> \"your question\"")
    console.print("  4. ragline ask -t <tenant> -a <agent> \"your question\"")


def _update_gitignore(project_dir: Path) -> None:
    """Add the knowledge store to .gitignore if it already exists."""
    gitignore = project_dir / ".gitignore"
    entries = [DEFAULT_DB_NAME, f"{DEFAULT_DB_NAME}-wal", f"{DEFAULT_DB_NAME}-shm"]

    if gitignore.exists():
        existing = gitignore.read_text(encoding="utf-8").splitlines()
        to_add = [e for e in entries if e not in existing]
        if to_add:
            with gitignore.open("a", encoding="utf-8") as f:
                f.write("\n# ragline\n")
                for entry in to_add:
                    f.write(f"{entry}\n")
            console.print("  [green]✓[/] .gitignore (updated with ragline entries)")
