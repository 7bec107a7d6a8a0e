"""Background job execution with recorded lifecycle.

Work submitted here runs on a thread pool. Every job is persisted through a
JobStore as queued, then processing, then completed or failed, so failures
are queryable instead of lost.
"""

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable

from casesim.core.logging import get_logger, log_with_context
from casesim.core.schemas_jobs import Job
from casesim.db.jobs import JobStore

logger = get_logger(__name__)

JobFn = Callable[[], dict[str, Any]]


class JobQueue:
    """Thread-pool job runner."""

    def __init__(self, store: JobStore, workers: int = 2):
        self.store = store
        self._executor = ThreadPoolExecutor(max_workers=max(1, workers), thread_name_prefix="casesim-job")

    def submit(
        self,
        job_type: str,
        fn: JobFn,
        input_json: dict[str, Any],
        case_id: str | None = None,
    ) -> tuple[Job, Future]:
        """
        Record a queued job and schedule it.

        ``fn`` returns the job output. An output with ``success: False`` marks
        the job failed with its error; an exception does the same.
        """
        job = self.store.create_job(job_type, input_json, case_id=case_id)
        future = self._executor.submit(self._execute, job.id, job_type, fn)
        return job, future

    def _execute(self, job_id: str, job_type: str, fn: JobFn) -> None:
        try:
            self.store.start_job(job_id)
            log_with_context(logger, logging.INFO, f"Started {job_type} job", job_id=job_id)

            output = fn()

            if output.get("success") is False:
                error = f"{output.get('code') or 'UNKNOWN_ERROR'}: {output.get('error') or 'job failed'}"
                self.store.fail_job(job_id, error)
                log_with_context(logger, logging.WARNING, f"{job_type} job failed: {error}", job_id=job_id)
                return

            self.store.complete_job(job_id, output)
            log_with_context(logger, logging.INFO, f"Completed {job_type} job", job_id=job_id)

        except Exception as e:
            error_msg = f"{job_type} job failed: {e}"
            logger.exception(error_msg, extra={"job_id": job_id})
            self.store.fail_job(job_id, error_msg)

    def get(self, job_id: str) -> Job | None:
        return self.store.get_job(job_id)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
