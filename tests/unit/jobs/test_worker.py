"""Tests for the due-job worker."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import MagicMock

from ragline.db.models import JobStatus, QASource, WorkspacePageSource, utcnow
from ragline.errors import JobStateError
from ragline.ingest.chunker import Chunker
from ragline.ingest.fetchers import SourceFetcher
from ragline.jobs.controller import JobController
from ragline.jobs.pipeline import IngestionPipeline, submit_source
from ragline.jobs.scheduler import BackoffPolicy, RetryScheduler
from ragline.jobs.worker import IngestionWorker


def _qa(source_id: str) -> QASource:
    return QASource(
        id=source_id,
        tenant_id="t1",
        agent_id="a1",
        name=f"QA {source_id}",
        question="Do you ship abroad?",
        answer="Yes, to most EU countries.",
    )


def test_run_once_processes_due_jobs(repo, embedder):
    controller = JobController(repo)
    scheduler = RetryScheduler(controller, repo, BackoffPolicy(jitter=0))
    pipeline = IngestionPipeline(
        repo, controller, SourceFetcher(), Chunker(), embedder, dimensions=4, scheduler=scheduler
    )
    for source_id in ("q1", "q2"):
        submit_source(repo, controller, _qa(source_id))

    results = IngestionWorker(pipeline, scheduler).run_once()

    assert sorted(r.source_id for r in results) == ["q1", "q2"]
    assert all(r.status == JobStatus.COMPLETED for r in results)
    assert IngestionWorker(pipeline, scheduler).run_once() == []


def test_rescheduled_job_waits(repo, embedder):
    controller = JobController(repo)
    scheduler = RetryScheduler(controller, repo, BackoffPolicy(jitter=0))
    pipeline = IngestionPipeline(repo, controller, SourceFetcher(), Chunker(), embedder, dimensions=4)
    job_id = submit_source(repo, controller, _qa("q1")).job_id
    controller.reschedule(job_id, utcnow() + timedelta(hours=1))

    assert IngestionWorker(pipeline, scheduler).run_once() == []


def test_job_started_elsewhere_is_skipped():
    job = MagicMock(id="j1")
    scheduler = MagicMock()
    scheduler.due_jobs.return_value = [job]
    pipeline = MagicMock()
    pipeline.run.side_effect = JobStateError("Job j1 was started concurrently")

    assert IngestionWorker(pipeline, scheduler).run_once(limit=5) == []
    scheduler.due_jobs.assert_called_once_with(limit=5)


def test_unexpected_error_does_not_abort_the_pass(repo, embedder):
    controller = JobController(repo)
    scheduler = RetryScheduler(controller, repo, BackoffPolicy(jitter=0))
    workspace = MagicMock()
    workspace.list_children.side_effect = RuntimeError("workspace API returned 502")
    pipeline = IngestionPipeline(
        repo, controller, SourceFetcher(workspace=workspace), Chunker(), embedder, dimensions=4
    )
    submit_source(
        repo,
        controller,
        WorkspacePageSource(id="w1", tenant_id="t1", agent_id="a1", name="Handbook", page_id="p1"),
    )
    submit_source(repo, controller, _qa("q1"))

    results = IngestionWorker(pipeline, scheduler).run_once()

    statuses = {r.source_id: r.status for r in results}
    assert statuses == {"w1": JobStatus.PENDING, "q1": JobStatus.COMPLETED}
