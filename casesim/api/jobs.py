"""API endpoints for background job status."""

import asyncio

from fastapi import APIRouter, Depends, HTTPException, Query

from casesim.api.deps import EngineContext, get_engine
from casesim.core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


@router.get("/{job_id}")
async def get_job_status(job_id: str, engine: EngineContext = Depends(get_engine)) -> dict:
    """
    Get job status and details by job ID.

    Args:
        job_id: Job id

    Returns:
        Job details including status, input, output, error, timestamps

    Raises:
        HTTPException 404: If job not found
    """
    job = await asyncio.to_thread(engine.job_queue.get, job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return job.to_wire()


@router.get("")
async def list_jobs(
    case_id: str | None = Query(default=None, alias="caseId"),
    limit: int = Query(default=50, ge=1, le=200),
    engine: EngineContext = Depends(get_engine),
) -> dict:
    jobs = await asyncio.to_thread(engine.jobs.list_jobs, case_id=case_id, limit=limit)
    return {"jobs": [job.to_wire() for job in jobs]}
