"""Run due ingestion jobs."""

from __future__ import annotations

import structlog

from ragline.errors import JobStateError
from ragline.jobs.pipeline import IngestionPipeline, PipelineResult
from ragline.jobs.scheduler import RetryScheduler

logger = structlog.get_logger(logger_name=__name__)


class IngestionWorker:
    """Pick up due jobs and run one attempt of each, sequentially."""

    def __init__(self, pipeline: IngestionPipeline, scheduler: RetryScheduler) -> None:
        self._pipeline = pipeline
        self._scheduler = scheduler

    def run_once(self, limit: int = 50) -> list[PipelineResult]:
        results: list[PipelineResult] = []
        for job in self._scheduler.due_jobs(limit=limit):
            try:
                results.append(self._pipeline.run(job.id))
            except JobStateError as exc:
                # Another worker got there first.
                logger.info("job_skipped", job_id=job.id, reason=str(exc))
        logger.info("worker_pass_finished", ran=len(results))
        return results
