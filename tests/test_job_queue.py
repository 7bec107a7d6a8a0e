"""Tests for background job lifecycle tracking."""

import pytest

from casesim.core.job_queue import JobQueue
from casesim.db.jobs import InMemoryJobStore


@pytest.fixture
def queue():
    queue = JobQueue(InMemoryJobStore(), workers=1)
    yield queue
    queue.shutdown()


def test_successful_job_completes(queue):
    job, future = queue.submit("knowledge_ingest", lambda: {"success": True, "chunks": 3}, {"source": "a.txt"}, "case-1")
    assert job.status == "queued"

    future.result(timeout=5)

    stored = queue.get(job.id)
    assert stored.status == "completed"
    assert stored.output["chunks"] == 3
    assert stored.started_at is not None
    assert stored.completed_at is not None


def test_unsuccessful_output_marks_failed(queue):
    job, future = queue.submit(
        "knowledge_ingest",
        lambda: {"success": False, "code": "EMPTY_TEXT", "error": "No extractable text"},
        {"source": "blank.txt"},
    )
    future.result(timeout=5)

    stored = queue.get(job.id)
    assert stored.status == "failed"
    assert stored.error == "EMPTY_TEXT: No extractable text"


def test_exception_marks_failed(queue):
    def explode():
        raise RuntimeError("disk full")

    job, future = queue.submit("case_sync", explode, {})
    future.result(timeout=5)

    stored = queue.get(job.id)
    assert stored.status == "failed"
    assert "disk full" in stored.error


def test_list_jobs_filters_by_case(queue):
    _, f1 = queue.submit("case_sync", lambda: {"success": True}, {}, "case-1")
    _, f2 = queue.submit("case_sync", lambda: {"success": True}, {}, "case-2")
    f1.result(timeout=5)
    f2.result(timeout=5)

    jobs = queue.store.list_jobs(case_id="case-1")

    assert [j.case_id for j in jobs] == ["case-1"]
