"""Domain models for the ragline database layer."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, ClassVar

# Namespace for deterministic chunk ids: uuid5(namespace, f"{source_id}:{ordinal}")
_CHUNK_NAMESPACE = uuid.UUID("6f1d3c0e-3a57-4b8e-9a51-2b0f6c1a9e44")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_timestamp(dt: datetime) -> str:
    """Fixed-width UTC ISO-8601 string; lexicographic order == time order."""
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def chunk_id(source_id: str, chunk_index: int) -> str:
    return str(uuid.uuid5(_CHUNK_NAMESPACE, f"{source_id}:{chunk_index}"))


class SourceType(StrEnum):
    FILE = "file"
    WEBSITE = "website"
    TEXT = "text"
    QA = "qa"
    WORKSPACE_PAGE = "workspace-page"
    CLOUD_FILE = "cloud-file"


class SourceStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    READY = "ready"
    ERROR = "error"


class JobStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_JOB_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})


class JobType(StrEnum):
    FILE_PROCESSING = "file_processing"
    WEB_SCRAPING = "web_scraping"
    TEXT_SNIPPET = "text_snippet"
    QA_PAIR = "qa_pair"
    WORKSPACE_IMPORT = "workspace_import"
    CLOUD_IMPORT = "cloud_import"


# ------------------------------------------------------------------
# Sources (tagged union on ``type``)
# ------------------------------------------------------------------


@dataclass(kw_only=True)
class Source:
    """Fields shared by every source variant. Use a concrete subclass."""

    type: ClassVar[SourceType]
    job_type: ClassVar[JobType]

    id: str
    tenant_id: str
    agent_id: str
    name: str
    status: SourceStatus = SourceStatus.PENDING
    size_kb: float | None = None
    chunk_count: int | None = None
    error_message: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    deleted_at: str | None = None

    def payload(self) -> dict[str, Any]:
        """Variant-specific fields, stored in the ``payload`` JSON column."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name not in _BASE_SOURCE_FIELDS
        }


@dataclass(kw_only=True)
class FileSource(Source):
    type: ClassVar[SourceType] = SourceType.FILE
    job_type: ClassVar[JobType] = JobType.FILE_PROCESSING

    file_id: str
    mime_type: str
    page_count: int | None = None


@dataclass(kw_only=True)
class WebsiteSource(Source):
    type: ClassVar[SourceType] = SourceType.WEBSITE
    job_type: ClassVar[JobType] = JobType.WEB_SCRAPING

    url: str
    mode: str = "scrape"  # scrape | crawl
    crawl_limit: int = 10
    crawled_pages: int | None = None


@dataclass(kw_only=True)
class TextSource(Source):
    type: ClassVar[SourceType] = SourceType.TEXT
    job_type: ClassVar[JobType] = JobType.TEXT_SNIPPET

    content: str


@dataclass(kw_only=True)
class QASource(Source):
    type: ClassVar[SourceType] = SourceType.QA
    job_type: ClassVar[JobType] = JobType.QA_PAIR

    question: str
    answer: str


@dataclass(kw_only=True)
class WorkspacePageSource(Source):
    type: ClassVar[SourceType] = SourceType.WORKSPACE_PAGE
    job_type: ClassVar[JobType] = JobType.WORKSPACE_IMPORT

    page_id: str
    page_url: str | None = None
    connection_id: str | None = None


@dataclass(kw_only=True)
class CloudFileSource(Source):
    type: ClassVar[SourceType] = SourceType.CLOUD_FILE
    job_type: ClassVar[JobType] = JobType.CLOUD_IMPORT

    file_id: str
    mime_type: str
    connection_id: str | None = None


_BASE_SOURCE_FIELDS = frozenset(f.name for f in fields(Source))

SOURCE_VARIANTS: dict[SourceType, type[Source]] = {
    cls.type: cls
    for cls in (
        FileSource,
        WebsiteSource,
        TextSource,
        QASource,
        WorkspacePageSource,
        CloudFileSource,
    )
}


# ------------------------------------------------------------------
# Chunks
# ------------------------------------------------------------------


@dataclass
class ChunkMetadata:
    source_type: str
    source_name: str
    page_number: int | None = None
    url: str | None = None


@dataclass
class Chunk:
    tenant_id: str
    agent_id: str
    source_id: str
    chunk_index: int
    content: str
    embedding_model: str
    metadata: ChunkMetadata
    embedding: list[float] = field(default_factory=list)
    id: str = ""
    created_at: str | None = None
    rowid: int | None = None  # set after insert; None for unsaved chunks

    def __post_init__(self) -> None:
        if not self.id:
            self.id = chunk_id(self.source_id, self.chunk_index)


# ------------------------------------------------------------------
# Jobs
# ------------------------------------------------------------------


@dataclass
class Job:
    id: str
    tenant_id: str
    job_type: str
    idempotency_key: str
    source_id: str | None = None
    agent_id: str | None = None
    status: JobStatus = JobStatus.PENDING
    attempt_count: int = 0
    max_attempts: int = 3
    progress: int = 0
    step: str | None = None  # last committed pipeline step
    scheduled_at: str | None = None
    started_at: str | None = None
    completed_at: str | None = None
    last_heartbeat: str | None = None
    last_error: str | None = None
    error_history: list[str] = field(default_factory=list)
    created_at: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES


# ------------------------------------------------------------------
# Conversation records (stand-in for the external conversation store)
# ------------------------------------------------------------------


@dataclass
class Citation:
    chunk_id: str
    source_id: str
    source_name: str
    source_type: str
    snippet: str = ""
    page_number: int | None = None
    url: str | None = None


@dataclass
class JudgeEvaluation:
    passed: bool
    safety_score: float
    groundedness_score: float
    brand_alignment_score: float
    reasoning: str
    flagged: bool
    original_content: str | None = None
    judge_model: str = ""
    judge_latency_ms: int = 0


@dataclass
class Message:
    id: str
    conversation_id: str
    tenant_id: str
    agent_id: str
    content: str = ""
    model: str | None = None
    tokens_prompt: int | None = None
    tokens_completion: int | None = None
    latency_ms: int | None = None
    chunk_ids: list[str] = field(default_factory=list)
    citations: list[Citation] = field(default_factory=list)
    judge_evaluation: JudgeEvaluation | None = None
    finalized_at: str | None = None


@dataclass
class UsageEvent:
    id: str
    tenant_id: str
    agent_id: str
    conversation_id: str
    message_id: str
    event_type: str
    model: str
    tokens_prompt: int
    tokens_completion: int
    latency_ms: int
    idempotency_key: str
    created_at: str | None = None
