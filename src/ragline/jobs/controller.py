"""Durable job state machine for ingestion work.

States: pending → processing → {completed | pending (retry) | failed}.
``completed`` and ``failed`` are terminal: any further mutation raises
JobStateError.

The controller never sleeps and holds no locks. Duplicate creation is
absorbed by the unique idempotency key; concurrent ``start`` calls are
settled by a compare-and-set on status. Backoff is the scheduler's job
(ragline.jobs.scheduler); the controller only reports retryability.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

import structlog

from ragline.db.models import Job, JobStatus, to_timestamp, utcnow
from ragline.db.repository import Repository
from ragline.errors import JobNotFoundError, JobStateError

logger = structlog.get_logger(logger_name=__name__)

DEFAULT_MAX_ATTEMPTS = 3


@dataclass(frozen=True)
class CreateJobResult:
    job_id: str
    already_exists: bool


@dataclass(frozen=True)
class FailResult:
    can_retry: bool
    attempt_count: int
    max_attempts: int


def idempotency_key_for(job_type: str, source_id: str) -> str:
    """Key used to deduplicate job creation for one source."""
    return f"{job_type}_{source_id}"


class JobController:
    """Job lifecycle API: create, start, progress, advance, complete, fail.

    Args:
        repo: Open repository.
        clock: Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        repo: Repository,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repo = repo
        self._clock = clock

    def _now(self) -> str:
        return to_timestamp(self._clock())

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def create(
        self,
        tenant_id: str,
        job_type: str,
        idempotency_key: str,
        source_id: str | None = None,
        agent_id: str | None = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> CreateJobResult:
        """Create a pending job, or return the existing one for *idempotency_key*."""
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

        now = self._now()
        job = Job(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            job_type=job_type,
            idempotency_key=idempotency_key,
            source_id=source_id,
            agent_id=agent_id,
            max_attempts=max_attempts,
            scheduled_at=now,
            created_at=now,
        )
        if self._repo.insert_job(job):
            logger.info("job_created", job_id=job.id, job_type=job_type, source_id=source_id)
            return CreateJobResult(job_id=job.id, already_exists=False)

        existing = self._repo.get_job_by_key(idempotency_key)
        if existing is None:  # pragma: no cover - key row vanished between statements
            raise JobStateError(f"Job for key '{idempotency_key}' could not be created")
        logger.info("job_exists", job_id=existing.id, idempotency_key=idempotency_key)
        return CreateJobResult(job_id=existing.id, already_exists=True)

    def start(self, job_id: str) -> int:
        """pending → processing. Returns the new attempt count.

        Raises:
            JobNotFoundError: Unknown job id.
            JobStateError: Job is not pending, or its attempt budget is spent.
        """
        job = self._require(job_id)
        if job.status != JobStatus.PENDING:
            raise JobStateError(f"Cannot start job {job_id} in status '{job.status}'")
        if job.attempt_count >= job.max_attempts:
            raise JobStateError(
                f"Job {job_id} has used all {job.max_attempts} attempts"
            )

        now = self._now()
        attempt = job.attempt_count + 1
        started = self._repo.update_job(
            job_id,
            expected_status=JobStatus.PENDING,
            status=JobStatus.PROCESSING,
            attempt_count=attempt,
            started_at=now,
            last_heartbeat=now,
            progress=0,
        )
        if not started:
            raise JobStateError(f"Job {job_id} was started concurrently")
        logger.info("job_started", job_id=job_id, attempt=attempt, max_attempts=job.max_attempts)
        return attempt

    def progress(self, job_id: str, percent: float) -> None:
        """Record progress (clamped to [0, 100]) and a heartbeat. Status is unchanged."""
        self._require_active(job_id)
        self._repo.update_job(
            job_id,
            progress=_clamp_percent(percent),
            last_heartbeat=self._now(),
        )

    def advance(self, job_id: str, step: str, percent: float) -> None:
        """Mark *step* as the last committed pipeline step, with progress + heartbeat."""
        self._require_active(job_id)
        self._repo.update_job(
            job_id,
            step=step,
            progress=_clamp_percent(percent),
            last_heartbeat=self._now(),
        )

    def complete(self, job_id: str) -> None:
        self._require_active(job_id)
        now = self._now()
        self._repo.update_job(
            job_id,
            status=JobStatus.COMPLETED,
            progress=100,
            completed_at=now,
            last_heartbeat=now,
        )
        logger.info("job_completed", job_id=job_id)

    def fail(self, job_id: str, message: str, *, fatal: bool = False) -> FailResult:
        """Record a failure and decide whether the job goes back to pending.

        The error is appended to the job's history (never overwritten). A job
        with attempts left returns to ``pending``; otherwise, or when *fatal*,
        it becomes ``failed``.
        """
        job = self._require_active(job_id)
        now = self._now()
        can_retry = not fatal and job.attempt_count < job.max_attempts
        self._repo.record_job_failure(
            job_id,
            message,
            now,
            status=JobStatus.PENDING if can_retry else JobStatus.FAILED,
            last_error=message,
            completed_at=None if can_retry else now,
            last_heartbeat=now,
        )
        logger.warning(
            "job_failed",
            job_id=job_id,
            attempt=job.attempt_count,
            max_attempts=job.max_attempts,
            can_retry=can_retry,
            fatal=fatal,
            error=message,
        )
        return FailResult(
            can_retry=can_retry,
            attempt_count=job.attempt_count,
            max_attempts=job.max_attempts,
        )

    def reschedule(self, job_id: str, at: datetime) -> None:
        """Set the earliest time a pending job may be started again."""
        job = self._require(job_id)
        if job.status != JobStatus.PENDING:
            raise JobStateError(f"Cannot reschedule job {job_id} in status '{job.status}'")
        self._repo.update_job(job_id, scheduled_at=to_timestamp(at))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, job_id: str) -> Job | None:
        return self._repo.get_job(job_id)

    def get_by_source(self, source_id: str) -> Job | None:
        return self._repo.get_job_by_source(source_id)

    def list_jobs(
        self, tenant_id: str, status: JobStatus | None = None, limit: int = 50
    ) -> list[Job]:
        return self._repo.list_jobs(tenant_id, status=status, limit=limit)

    def stats(self, tenant_id: str) -> dict[str, int]:
        """Job counts per status (every status present, zero if none) plus ``total``."""
        counts = self._repo.count_jobs_by_status(tenant_id)
        result = {str(status): counts.get(str(status), 0) for status in JobStatus}
        result["total"] = sum(result.values())
        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require(self, job_id: str) -> Job:
        job = self._repo.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def _require_active(self, job_id: str) -> Job:
        job = self._require(job_id)
        if job.is_terminal:
            raise JobStateError(f"Job {job_id} is {job.status}; terminal jobs are read-only")
        return job


def _clamp_percent(percent: float) -> int:
    return int(max(0, min(100, round(percent))))
