"""Schemas for chat generation and attempt counters."""

from typing import Any, Literal

from pydantic import Field

from casesim.core.errors import ErrorCode
from casesim.core.schemas_base import CamelModel

MessageRole = Literal["user", "assistant", "system"]


class Message(CamelModel):
    role: MessageRole
    content: str
    id: str | None = Field(default=None, description="Client message id, used for de-duplication")
    stage_index: int | None = None


class ChatRequest(CamelModel):
    case_id: str
    stage_index: int = Field(..., ge=0)
    attempt_id: str | None = None
    messages: list[Message] = Field(..., min_length=1)


class ChatReply(CamelModel):
    content: str
    display_role: str
    persona_role_key: str
    portrait_url: str | None = None
    voice_id: str | None = None
    media: list[dict[str, Any]] | None = None
    fallback: bool = Field(default=False, description="True when this is a system apology")
    error_code: ErrorCode | None = None


class StageCounterState(CamelModel):
    """Per-attempt, per-stage counters. Non-decreasing until the stage is reset."""

    user_turns: int = 0
    assistant_turns: int = 0
    keyword_hits: int = 0


class StageStatus(CamelModel):
    attempt_id: str
    stage_index: int
    state: Literal["locked", "active", "completed", "skipped"]
    counters: StageCounterState
    eligible: bool
