"""ragline ask — grounded answer with judge review.

Flow:
  1. Retrieve the top-k chunks for the agent.
  2. Build the system prompt with context excerpts.
  3. Stream the answer to the terminal as it is generated.
  4. Judge the complete answer, then store the final message and its usage
     event. A failing answer is stored as the fallback message.
"""

from __future__ import annotations

import uuid
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel

from ragline.cli.errors import err_no_db
from ragline.cli.runtime import build_embedder, load_settings, open_db, require_api_key, resolve_db
from ragline.db.repository import Repository
from ragline.errors import IngestError
from ragline.rag import llm_client
from ragline.rag.finalizer import FinalizedMessage, GenerationDraft, StreamFinalizer, StreamSession
from ragline.rag.judge import ResponseJudge
from ragline.rag.prompt import build_messages, build_rag_prompt
from ragline.rag.retriever import Retriever

console = Console()


def ask_cmd(
    question: Annotated[str, typer.Argument(help="Question for the agent.")],
    tenant: Annotated[str, typer.Option("--tenant", "-t", help="Tenant that owns the agent.")],
    agent: Annotated[str, typer.Option("--agent", "-a", help="Agent to answer as.")],
    conversation: Annotated[
        str | None,
        typer.Option("--conversation", "-c", help="Conversation id (new one if omitted)."),
    ] = None,
    no_judge: Annotated[
        bool,
        typer.Option("--no-judge", help="Store the answer without judge review."),
    ] = False,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the knowledge store (default from config)."),
    ] = None,
) -> None:
    """Answer QUESTION from the agent's knowledge base."""
    cfg = load_settings()
    db_path = resolve_db(db, cfg)
    if not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)

    skip_judge = no_judge or not cfg.judge.enabled
    require_api_key(cfg.embedding.model)
    require_api_key(cfg.generation.model)
    if not skip_judge:
        require_api_key(cfg.judge.model)

    conn = open_db(db_path)
    repo = Repository(conn)
    try:
        retriever = Retriever(build_embedder(cfg), repo, cfg.embedding.dimensions)
        try:
            chunks = retriever.retrieve(tenant, agent, question, k=cfg.retrieval.top_k)
        except IngestError as exc:
            console.print(f"[red]Error:[/] Retrieval failed: {exc}")
            raise typer.Exit(1)

        rag = build_rag_prompt(
            cfg.generation.system_prompt, chunks, cfg.retrieval.max_context_tokens
        )
        chat = build_messages(rag, question, max_history_tokens=cfg.retrieval.max_history_tokens)
        draft = GenerationDraft(
            message_id=str(uuid.uuid4()),
            conversation_id=conversation or str(uuid.uuid4()),
            tenant_id=tenant,
            agent_id=agent,
            model=cfg.generation.model,
            system_prompt=rag.system_prompt,
            user_message=question,
            chunks=rag.chunks_used,
            tokens_prompt=chat.total_tokens,
        )
        tokens = llm_client.stream(
            cfg.generation.model,
            chat.messages,
            max_tokens=cfg.generation.max_tokens,
            temperature=cfg.generation.temperature,
        )
        finalizer = StreamFinalizer(
            repo,
            ResponseJudge(cfg.judge.model, pass_threshold=cfg.judge.pass_threshold),
            cfg.judge.fallback_message,
        )
        session = StreamSession(finalizer, draft, tokens, skip_judge=skip_judge)

        for token in session.relay():
            console.print(token, end="", markup=False, highlight=False)
        console.print()
    finally:
        conn.close()

    assert session.result is not None
    _print_outcome(session.result)


def _print_outcome(result: FinalizedMessage) -> None:
    evaluation = result.evaluation
    if result.substituted and evaluation is not None:
        console.print(
            Panel(
                f"{result.message.content}\n\n[dim]{evaluation.reasoning}[/]",
                title="[yellow]Answer withheld by judge — stored fallback[/]",
                expand=False,
            )
        )
    elif evaluation is not None:
        console.print(
            f"[green]✓[/] Judge passed  "
            f"[dim](safety {evaluation.safety_score:.2f}, "
            f"grounded {evaluation.groundedness_score:.2f}, "
            f"brand {evaluation.brand_alignment_score:.2f})[/]"
        )

    if result.message.citations:
        console.print("\n[bold]Sources[/]")
        for n, citation in enumerate(result.message.citations, start=1):
            where = f" - page {citation.page_number}" if citation.page_number else ""
            where += f" - {citation.url}" if citation.url else ""
            console.print(f"  [{n}] {citation.source_name}{where}", markup=False)
    console.print(f"\n[dim]message {result.message.id}[/]")
