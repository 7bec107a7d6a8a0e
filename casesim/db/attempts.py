"""Per-attempt stage counter state.

Each attempt carries a generation number. Resetting a stage or deleting the
attempt bumps it, so writes prepared against an older generation are
rejected instead of resurrecting cleared counters.
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from supabase import Client

from casesim.core.errors import PersistenceFailure
from casesim.core.logging import get_logger
from casesim.core.schemas_chat import StageCounterState

logger = get_logger(__name__)

TABLE = "attempt_stage_counters"


@dataclass
class CounterDelta:
    user_turns: int = 0
    assistant_turns: int = 0
    keyword_hits: int = 0


@dataclass
class _StageRecord:
    counters: StageCounterState = field(default_factory=StageCounterState)
    seen_events: set[str] = field(default_factory=set)


class AttemptStore(ABC):
    @abstractmethod
    def generation(self, attempt_id: str) -> int:
        """Current generation of an attempt (0 for unseen attempts)."""

    @abstractmethod
    def get_counters(self, attempt_id: str, stage_index: int) -> StageCounterState:
        """Counters for a stage; zeros when nothing was recorded."""

    @abstractmethod
    def apply(
        self,
        attempt_id: str,
        stage_index: int,
        event_id: str,
        delta: CounterDelta,
        generation: int,
    ) -> tuple[bool, StageCounterState]:
        """
        Apply a counter delta once per event id.

        Returns (applied, counters). Not applied when the event id was already
        seen or the generation is stale.
        """

    @abstractmethod
    def reset_stage(self, attempt_id: str, stage_index: int) -> int:
        """Clear one stage's counters. Returns the new generation."""

    @abstractmethod
    def delete_attempt(self, attempt_id: str) -> int:
        """Drop all counters of an attempt. Returns the new generation."""


class InMemoryAttemptStore(AttemptStore):
    def __init__(self):
        self._lock = threading.Lock()
        self._generations: dict[str, int] = {}
        self._stages: dict[tuple[str, int], _StageRecord] = {}

    def generation(self, attempt_id: str) -> int:
        with self._lock:
            return self._generations.get(attempt_id, 0)

    def get_counters(self, attempt_id: str, stage_index: int) -> StageCounterState:
        with self._lock:
            record = self._stages.get((attempt_id, stage_index))
            return record.counters.model_copy() if record else StageCounterState()

    def apply(
        self,
        attempt_id: str,
        stage_index: int,
        event_id: str,
        delta: CounterDelta,
        generation: int,
    ) -> tuple[bool, StageCounterState]:
        with self._lock:
            if generation != self._generations.get(attempt_id, 0):
                record = self._stages.get((attempt_id, stage_index))
                return False, record.counters.model_copy() if record else StageCounterState()

            record = self._stages.setdefault((attempt_id, stage_index), _StageRecord())
            if event_id in record.seen_events:
                return False, record.counters.model_copy()

            record.seen_events.add(event_id)
            counters = record.counters
            record.counters = StageCounterState(
                user_turns=counters.user_turns + delta.user_turns,
                assistant_turns=counters.assistant_turns + delta.assistant_turns,
                keyword_hits=counters.keyword_hits + delta.keyword_hits,
            )
            return True, record.counters.model_copy()

    def reset_stage(self, attempt_id: str, stage_index: int) -> int:
        with self._lock:
            self._stages.pop((attempt_id, stage_index), None)
            self._generations[attempt_id] = self._generations.get(attempt_id, 0) + 1
            return self._generations[attempt_id]

    def delete_attempt(self, attempt_id: str) -> int:
        with self._lock:
            for key in [k for k in self._stages if k[0] == attempt_id]:
                del self._stages[key]
            self._generations[attempt_id] = self._generations.get(attempt_id, 0) + 1
            return self._generations[attempt_id]


class SupabaseAttemptStore(AttemptStore):
    """Counters persisted as one row per (attempt, stage).

    Generations live in the ``generation`` column of the stage rows and in a
    sentinel row with stage_index -1 per attempt. Writes for one attempt are
    serialized in-process by the stage evaluator.
    """

    GENERATION_ROW = -1

    def __init__(self, client: Client):
        self.client = client

    def _fetch(self, attempt_id: str, stage_index: int) -> dict | None:
        try:
            response = (
                self.client.table(TABLE)
                .select("*")
                .eq("attempt_id", attempt_id)
                .eq("stage_index", stage_index)
                .limit(1)
                .execute()
            )
        except Exception as e:
            raise PersistenceFailure(f"Failed to read attempt counters: {e}") from e
        return response.data[0] if response.data else None

    def _upsert(self, row: dict) -> None:
        try:
            self.client.table(TABLE).upsert(row, on_conflict="attempt_id,stage_index").execute()
        except Exception as e:
            logger.error(f"Failed to write attempt counters: {e}", extra={"attempt_id": row["attempt_id"]})
            raise PersistenceFailure(f"Failed to write attempt counters: {e}") from e

    def generation(self, attempt_id: str) -> int:
        row = self._fetch(attempt_id, self.GENERATION_ROW)
        return int(row["generation"]) if row else 0

    def _bump_generation(self, attempt_id: str) -> int:
        new_generation = self.generation(attempt_id) + 1
        self._upsert(
            {
                "attempt_id": attempt_id,
                "stage_index": self.GENERATION_ROW,
                "generation": new_generation,
                "user_turns": 0,
                "assistant_turns": 0,
                "keyword_hits": 0,
                "seen_event_ids": [],
            }
        )
        return new_generation

    def get_counters(self, attempt_id: str, stage_index: int) -> StageCounterState:
        row = self._fetch(attempt_id, stage_index)
        if not row:
            return StageCounterState()
        return StageCounterState(
            user_turns=row.get("user_turns") or 0,
            assistant_turns=row.get("assistant_turns") or 0,
            keyword_hits=row.get("keyword_hits") or 0,
        )

    def apply(
        self,
        attempt_id: str,
        stage_index: int,
        event_id: str,
        delta: CounterDelta,
        generation: int,
    ) -> tuple[bool, StageCounterState]:
        row = self._fetch(attempt_id, stage_index) or {}
        counters = StageCounterState(
            user_turns=row.get("user_turns") or 0,
            assistant_turns=row.get("assistant_turns") or 0,
            keyword_hits=row.get("keyword_hits") or 0,
        )
        seen = list(row.get("seen_event_ids") or [])
        if generation != self.generation(attempt_id) or event_id in seen:
            return False, counters

        updated = StageCounterState(
            user_turns=counters.user_turns + delta.user_turns,
            assistant_turns=counters.assistant_turns + delta.assistant_turns,
            keyword_hits=counters.keyword_hits + delta.keyword_hits,
        )
        self._upsert(
            {
                "attempt_id": attempt_id,
                "stage_index": stage_index,
                "generation": generation,
                "user_turns": updated.user_turns,
                "assistant_turns": updated.assistant_turns,
                "keyword_hits": updated.keyword_hits,
                "seen_event_ids": [*seen, event_id],
            }
        )
        return True, updated

    def reset_stage(self, attempt_id: str, stage_index: int) -> int:
        try:
            (
                self.client.table(TABLE)
                .delete()
                .eq("attempt_id", attempt_id)
                .eq("stage_index", stage_index)
                .execute()
            )
        except Exception as e:
            raise PersistenceFailure(f"Failed to reset stage counters: {e}") from e
        return self._bump_generation(attempt_id)

    def delete_attempt(self, attempt_id: str) -> int:
        try:
            (
                self.client.table(TABLE)
                .delete()
                .eq("attempt_id", attempt_id)
                .neq("stage_index", self.GENERATION_ROW)
                .execute()
            )
        except Exception as e:
            raise PersistenceFailure(f"Failed to delete attempt counters: {e}") from e
        return self._bump_generation(attempt_id)
