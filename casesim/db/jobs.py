"""Job lifecycle storage (table ``jobs``)."""

import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

from supabase import Client

from casesim.core.errors import PersistenceFailure
from casesim.core.logging import get_logger
from casesim.core.schemas_jobs import Job

logger = get_logger(__name__)

TABLE = "jobs"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class JobStore(ABC):
    @abstractmethod
    def create_job(self, job_type: str, input_json: dict[str, Any], case_id: str | None = None) -> Job:
        """Create a queued job."""

    @abstractmethod
    def start_job(self, job_id: str) -> None:
        """Mark a job as processing."""

    @abstractmethod
    def complete_job(self, job_id: str, output_json: dict[str, Any]) -> None:
        """Mark a job as completed with output."""

    @abstractmethod
    def fail_job(self, job_id: str, error_message: str) -> None:
        """Mark a job as failed with an error message."""

    @abstractmethod
    def get_job(self, job_id: str) -> Job | None:
        """Job by id, or None."""

    @abstractmethod
    def list_jobs(self, case_id: str | None = None, limit: int = 50) -> list[Job]:
        """Jobs ordered newest first."""


class InMemoryJobStore(JobStore):
    def __init__(self):
        self._lock = threading.Lock()
        self._jobs: dict[str, Job] = {}

    def create_job(self, job_type: str, input_json: dict[str, Any], case_id: str | None = None) -> Job:
        job = Job(
            id=str(uuid.uuid4()),
            job_type=job_type,
            case_id=case_id,
            input=input_json,
            created_at=_utc_now(),
        )
        with self._lock:
            self._jobs[job.id] = job
        logger.info(f"Created job {job.id} of type {job_type}", extra={"job_id": job.id})
        return job

    def _update(self, job_id: str, **changes: Any) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise PersistenceFailure(f"Job {job_id} not found")
            self._jobs[job_id] = job.model_copy(update=changes)

    def start_job(self, job_id: str) -> None:
        self._update(job_id, status="processing", started_at=_utc_now())

    def complete_job(self, job_id: str, output_json: dict[str, Any]) -> None:
        self._update(job_id, status="completed", output=output_json, completed_at=_utc_now())

    def fail_job(self, job_id: str, error_message: str) -> None:
        self._update(job_id, status="failed", error=error_message, completed_at=_utc_now())

    def get_job(self, job_id: str) -> Job | None:
        with self._lock:
            return self._jobs.get(job_id)

    def list_jobs(self, case_id: str | None = None, limit: int = 50) -> list[Job]:
        with self._lock:
            jobs = [j for j in self._jobs.values() if case_id is None or j.case_id == case_id]
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return jobs[:limit]


class SupabaseJobStore(JobStore):
    def __init__(self, client: Client):
        self.client = client

    def create_job(self, job_type: str, input_json: dict[str, Any], case_id: str | None = None) -> Job:
        """
        Create a new job record.

        Args:
            job_type: Type of job (e.g., "ingest_document", "sync_case_data")
            input_json: Input parameters for the job
            case_id: Optional case the job belongs to

        Returns:
            The created Job

        Raises:
            PersistenceFailure: If database operation fails
        """
        try:
            response = (
                self.client.table(TABLE)
                .insert(
                    {
                        "case_id": case_id,
                        "job_type": job_type,
                        "status": "queued",
                        "input": input_json,
                        "output": {},
                    }
                )
                .execute()
            )
        except Exception as e:
            logger.error(f"Failed to create job: {e}")
            raise PersistenceFailure(f"Failed to create job: {e}") from e

        if not response.data:
            raise PersistenceFailure("No data returned from create_job")

        job = Job.model_validate(response.data[0])
        logger.info(f"Created job {job.id} of type {job_type}", extra={"job_id": job.id})
        return job

    def _update(self, job_id: str, values: dict[str, Any]) -> None:
        try:
            self.client.table(TABLE).update(values).eq("id", job_id).execute()
        except Exception as e:
            logger.error(f"Failed to update job: {e}", extra={"job_id": job_id})
            raise PersistenceFailure(f"Failed to update job {job_id}: {e}") from e

    def start_job(self, job_id: str) -> None:
        self._update(job_id, {"status": "processing", "started_at": _utc_now().isoformat()})
        logger.info(f"Started job {job_id}", extra={"job_id": job_id})

    def complete_job(self, job_id: str, output_json: dict[str, Any]) -> None:
        self._update(
            job_id,
            {"status": "completed", "output": output_json, "completed_at": _utc_now().isoformat()},
        )
        logger.info(f"Completed job {job_id}", extra={"job_id": job_id})

    def fail_job(self, job_id: str, error_message: str) -> None:
        self._update(
            job_id,
            {"status": "failed", "error": error_message, "completed_at": _utc_now().isoformat()},
        )
        logger.info(f"Failed job {job_id}: {error_message}", extra={"job_id": job_id})

    def get_job(self, job_id: str) -> Job | None:
        try:
            response = self.client.table(TABLE).select("*").eq("id", job_id).execute()
        except Exception as e:
            logger.error(f"Failed to get job {job_id}: {e}")
            raise PersistenceFailure(f"Failed to get job: {e}") from e

        if response.data:
            return Job.model_validate(response.data[0])

        logger.warning(f"Job {job_id} not found")
        return None

    def list_jobs(self, case_id: str | None = None, limit: int = 50) -> list[Job]:
        try:
            query = self.client.table(TABLE).select("*")
            if case_id:
                query = query.eq("case_id", case_id)
            response = query.order("created_at", desc=True).limit(limit).execute()
        except Exception as e:
            logger.error(f"Failed to list jobs: {e}")
            raise PersistenceFailure(f"Failed to list jobs: {e}") from e
        return [Job.model_validate(row) for row in response.data or []]
