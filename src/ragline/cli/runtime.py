"""Shared wiring for CLI commands: config, logging, database, pipeline."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import typer
from rich.console import Console

from ragline.cli.errors import err_config, err_no_api_key
from ragline.config import ConfigError, RaglineConfig, load_config
from ragline.db.connection import Database
from ragline.db.repository import Repository
from ragline.db.schema import initialize
from ragline.ingest.chunker import Chunker
from ragline.ingest.embedder import Embedder
from ragline.ingest.fetchers import LocalFileStore, SourceFetcher
from ragline.ingest.web import HttpScraper
from ragline.jobs.controller import JobController
from ragline.jobs.pipeline import IngestionPipeline
from ragline.jobs.scheduler import BackoffPolicy, RetryScheduler
from ragline.log import configure_logging
from ragline.rag.llm_client import validate_api_key

console = Console()


def load_settings() -> RaglineConfig:
    """Load config and set up logging, or exit with an actionable error."""
    try:
        cfg = load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)
    configure_logging(cfg.logging.level, json_output=cfg.logging.json)
    return cfg


def resolve_db(db: Path | None, cfg: RaglineConfig) -> Path:
    return db if db is not None else Path(cfg.database.path)


def open_db(db_path: Path) -> sqlite3.Connection:
    db = Database(db_path)
    conn = db.connect()
    initialize(conn)
    return conn


def require_api_key(model: str) -> None:
    try:
        validate_api_key(model)
    except EnvironmentError:
        console.print(err_no_api_key(model))
        raise typer.Exit(1)


def build_embedder(cfg: RaglineConfig) -> Embedder:
    e = cfg.embedding
    return Embedder(
        e.model,
        batch_size=e.batch_size,
        dimensions=e.dimensions,
        num_retries=e.num_retries,
    )


def build_pipeline(
    repo: Repository, cfg: RaglineConfig
) -> tuple[IngestionPipeline, RetryScheduler]:
    """Wire the ingestion pipeline with local files and the HTTP scraper."""
    controller = JobController(repo)
    scheduler = RetryScheduler(
        controller, repo, policy=BackoffPolicy.from_config(cfg.jobs.backoff)
    )
    pipeline = IngestionPipeline(
        repo,
        controller,
        SourceFetcher(files=LocalFileStore(), scraper=HttpScraper()),
        Chunker(cfg.chunking.target_tokens, cfg.chunking.overlap_tokens),
        build_embedder(cfg),
        dimensions=cfg.embedding.dimensions,
        storage_batch_size=cfg.jobs.storage_batch_size,
        scheduler=scheduler,
    )
    return pipeline, scheduler
