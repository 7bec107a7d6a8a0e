"""API endpoints for per-case stage overrides."""

import asyncio
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import ValidationError

from casesim.api.deps import EngineContext, get_engine
from casesim.core.errors import EngineError, ErrorCode
from casesim.core.logging import get_logger
from casesim.core.schemas_cases import CaseDefinition, StageOverride, parse_stage_overrides

logger = get_logger(__name__)

router = APIRouter()


def _wire(overrides: dict[str, StageOverride]) -> dict[str, dict]:
    return {key: value.to_wire() for key, value in sorted(overrides.items(), key=lambda kv: int(kv[0]))}


def _require_case(engine: EngineContext, case_id: str) -> CaseDefinition:
    case = engine.cases.find_case(case_id)
    if case is None:
        raise EngineError(f"Case {case_id} not found", ErrorCode.NOT_FOUND)
    return case


def merge_stage_settings(
    current: dict[str, StageOverride],
    payload: dict[str, Any],
    stage_count: int,
) -> dict[str, StageOverride]:
    """
    Apply a stage-settings payload to the current override map.

    Accepts either ``{"stageOverrides": {index: override}}`` (replaces the map)
    or a single-stage patch ``{"stageIndex": n, ...fields}``.

    Raises:
        ValueError: Unknown stage index or malformed payload
    """
    if "stageOverrides" in payload or "stage_overrides" in payload:
        raw = payload.get("stageOverrides", payload.get("stage_overrides"))
        if not isinstance(raw, dict):
            raise ValueError("stageOverrides must be an object keyed by stage index")
        updated = parse_stage_overrides(raw)
    elif "stageIndex" in payload or "stage_index" in payload:
        index = int(payload.get("stageIndex", payload.get("stage_index")))
        fields = {k: v for k, v in payload.items() if k not in ("stageIndex", "stage_index")}
        key = str(index)
        existing = current.get(key, StageOverride()).model_dump(by_alias=True)
        existing.update(fields)
        updated = dict(current)
        updated[key] = StageOverride.model_validate(existing)
    else:
        raise ValueError("Provide stageOverrides or stageIndex")

    for key in updated:
        if not 0 <= int(key) < stage_count:
            raise ValueError(f"Stage index {key} out of range (case has {stage_count} stages)")
    return updated


@router.get("/cases/{case_id}/stage-settings")
async def get_stage_settings(case_id: str, engine: EngineContext = Depends(get_engine)) -> dict:
    case = await asyncio.to_thread(_require_case, engine, case_id)
    overrides = await asyncio.to_thread(engine.cases.get_stage_overrides, case.id)
    return {"caseId": case.id, "stageCount": len(case.stages), "stageOverrides": _wire(overrides)}


@router.post("/cases/{case_id}/stage-settings")
async def update_stage_settings(
    case_id: str,
    payload: dict[str, Any] = Body(...),
    engine: EngineContext = Depends(get_engine),
) -> dict:
    """
    Update stage overrides for a case.

    Raises:
        HTTPException 400: Malformed payload or unknown stage index
        EngineError NOT_FOUND (404): Unknown case
    """
    case = await asyncio.to_thread(_require_case, engine, case_id)
    current = await asyncio.to_thread(engine.cases.get_stage_overrides, case.id)

    try:
        updated = merge_stage_settings(current, payload, len(case.stages))
    except (ValueError, TypeError, ValidationError) as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    saved = await asyncio.to_thread(engine.cases.save_stage_overrides, case.id, updated)
    logger.info(f"Updated stage overrides for {len(saved)} stages", extra={"case_id": case.id})
    return {"caseId": case.id, "stageCount": len(case.stages), "stageOverrides": _wire(saved)}
