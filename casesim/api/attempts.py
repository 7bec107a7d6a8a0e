"""API endpoints for attempt stage state."""

import asyncio

from fastapi import APIRouter, Depends, Path, Query

from casesim.api.deps import EngineContext, get_engine

router = APIRouter()


@router.get("/{attempt_id}/stages/{stage_index}")
async def get_stage_status(
    attempt_id: str,
    stage_index: int = Path(..., ge=0),
    case_id: str | None = Query(default=None, alias="caseId"),
    engine: EngineContext = Depends(get_engine),
) -> dict:
    """Counters, state and eligibility of one stage of an attempt."""
    resolved = await asyncio.to_thread(engine.cases.resolve_case_id, case_id) if case_id else None
    status = await asyncio.to_thread(engine.evaluator.status, attempt_id, stage_index, resolved)
    return status.to_wire()


@router.post("/{attempt_id}/stages/{stage_index}/reset")
async def reset_stage(
    attempt_id: str,
    stage_index: int = Path(..., ge=0),
    engine: EngineContext = Depends(get_engine),
) -> dict:
    generation = await asyncio.to_thread(engine.evaluator.reset_stage, attempt_id, stage_index)
    return {"success": True, "attemptId": attempt_id, "stageIndex": stage_index, "generation": generation}


@router.delete("/{attempt_id}")
async def delete_attempt(attempt_id: str, engine: EngineContext = Depends(get_engine)) -> dict:
    generation = await asyncio.to_thread(engine.evaluator.delete_attempt, attempt_id)
    return {"success": True, "attemptId": attempt_id, "generation": generation}
