"""ragline ingestion jobs: state machine, pipeline, retry scheduling."""

from ragline.jobs.controller import CreateJobResult, FailResult, JobController
from ragline.jobs.pipeline import IngestionPipeline, PipelineResult, submit_source
from ragline.jobs.scheduler import BackoffPolicy, RetryScheduler
from ragline.jobs.worker import IngestionWorker

__all__ = [
    "BackoffPolicy",
    "CreateJobResult",
    "FailResult",
    "IngestionPipeline",
    "IngestionWorker",
    "JobController",
    "PipelineResult",
    "RetryScheduler",
    "submit_source",
]
