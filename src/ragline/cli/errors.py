"""ragline rich error messages — actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from ragline.cli.errors import err_no_db
    console.print(err_no_db(".ragline.db"))
    raise typer.Exit(1)
"""

from __future__ import annotations

from ragline.rag.llm_client import _PROVIDER_ENV


def err_no_api_key(model: str) -> str:
    """No API key for the provider of *model*.

    Example:
        No API key for 'openai'. Set:  export OPENAI_API_KEY=sk-...
    """
    provider = model.split("/")[0].lower() if "/" in model else "openai"
    env_var = _PROVIDER_ENV.get(provider) or f"{provider.upper()}_API_KEY"
    return (
        f"[red]Error:[/] No API key for '{provider}' (model '{model}').\n"
        f"  Set:  export {env_var}=sk-..."
    )


def err_no_db(db_path: str = ".ragline.db") -> str:
    """No knowledge store at *db_path*."""
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  ragline init"
    )


def err_config(message: str) -> str:
    """Invalid ragline.yaml or global config."""
    return (
        f"[red]Error:[/] Invalid configuration.\n"
        f"  {message}\n"
        "  Fix ragline.yaml (or ~/.ragline/config.yaml) and retry."
    )


def err_unsupported_file(path: str, suffixes: list[str]) -> str:
    """File extension ragline cannot parse."""
    return (
        f"[red]Error:[/] Unsupported file type: {path}\n"
        f"  Supported extensions: {', '.join(suffixes)}"
    )


def err_file_not_found(path: str) -> str:
    return (
        f"[red]Error:[/] File not found: {path}\n"
        "  Check the path and retry."
    )


def err_source_not_found(source_id: str) -> str:
    """No live source with this id."""
    return (
        f"[yellow]Not found:[/] No source with id '{source_id}'.\n"
        "  List sources with:  ragline status --tenant <tenant>"
    )


def err_job_not_found(job_id: str) -> str:
    return (
        f"[red]Error:[/] No job with id '{job_id}'.\n"
        "  List jobs with:  ragline jobs list --tenant <tenant>"
    )


def err_bad_status(value: str, allowed: list[str]) -> str:
    return (
        f"[red]Error:[/] Unknown job status '{value}'.\n"
        f"  Use one of: {', '.join(allowed)}"
    )
