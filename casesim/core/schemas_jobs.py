"""Schemas for background job records."""

from datetime import datetime
from typing import Any, Literal

from pydantic import Field

from casesim.core.schemas_base import CamelModel

JobStatus = Literal["queued", "processing", "completed", "failed"]


class Job(CamelModel):
    id: str
    job_type: str
    status: JobStatus = "queued"
    case_id: str | None = None
    input: dict[str, Any] = Field(default_factory=dict)
    output: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
