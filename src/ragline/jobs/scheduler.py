"""Retry scheduling: exponential backoff with jitter.

The controller only says whether a job may retry; this module decides *when*
by setting the job's ``scheduled_at``. Due jobs are picked up by
``ragline.jobs.worker.IngestionWorker``.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable

import structlog

from ragline.config import BackoffCfg
from ragline.db.models import Job, utcnow
from ragline.db.repository import Repository
from ragline.jobs.controller import JobController

logger = structlog.get_logger(logger_name=__name__)


@dataclass
class BackoffPolicy:
    """delay(attempt) = min(max, base * multiplier ** (attempt - 1)) ± jitter.

    ``jitter`` is a fraction of the delay: 0.2 spreads retries over ±20 %.
    """

    base_seconds: float = 30.0
    max_seconds: float = 900.0
    multiplier: float = 2.0
    jitter: float = 0.2
    rng: random.Random = field(default_factory=random.Random, repr=False)

    @classmethod
    def from_config(cls, cfg: BackoffCfg) -> BackoffPolicy:
        return cls(
            base_seconds=cfg.base_seconds,
            max_seconds=cfg.max_seconds,
            multiplier=cfg.multiplier,
            jitter=cfg.jitter,
        )

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait before the attempt after *attempt* (1-based)."""
        exponent = max(0, attempt - 1)
        delay = min(self.max_seconds, self.base_seconds * self.multiplier**exponent)
        if self.jitter:
            delay *= 1 + self.rng.uniform(-self.jitter, self.jitter)
        return max(0.0, delay)


class RetryScheduler:
    def __init__(
        self,
        controller: JobController,
        repo: Repository,
        policy: BackoffPolicy | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._controller = controller
        self._repo = repo
        self.policy = policy or BackoffPolicy()
        self._clock = clock

    def reschedule(self, job_id: str, attempt: int) -> datetime:
        """Push a pending job's next run time out by the backoff delay."""
        run_at = self._clock() + timedelta(seconds=self.policy.delay_for(attempt))
        self._controller.reschedule(job_id, run_at)
        logger.info("job_rescheduled", job_id=job_id, attempt=attempt, run_at=run_at.isoformat())
        return run_at

    def due_jobs(self, now: datetime | None = None, limit: int = 50) -> list[Job]:
        """Pending jobs whose scheduled time has passed."""
        return self._repo.list_due_jobs(now or self._clock(), limit=limit)
