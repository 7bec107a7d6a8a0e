"""API endpoint for persona chat replies."""

import asyncio

from fastapi import APIRouter, Depends

from casesim.api.deps import EngineContext, get_engine
from casesim.core.logging import get_logger
from casesim.core.schemas_chat import ChatRequest

logger = get_logger(__name__)

router = APIRouter()


@router.post("/chat")
async def chat(request: ChatRequest, engine: EngineContext = Depends(get_engine)) -> dict:
    """
    Generate the persona reply to the latest learner message.

    Provider outages produce a marked apology reply (``fallback: true``)
    with status 200 so the conversation keeps going.

    Args:
        request: ChatRequest with caseId, stageIndex, optional attemptId and messages

    Returns:
        ChatReply as JSON

    Raises:
        EngineError NOT_FOUND (404): Unknown case or stage
    """
    reply = await asyncio.to_thread(
        engine.orchestrator.generate_reply,
        request.attempt_id,
        request.case_id,
        request.stage_index,
        request.messages,
    )
    return reply.to_wire()
