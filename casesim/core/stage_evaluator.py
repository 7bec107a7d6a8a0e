"""Stage completion eligibility.

Per (attempt, stage) counters are kept in an AttemptStore. A stage is
eligible to advance once every counter reaches its configured minimum.
The evaluator only reports eligibility; it never moves a learner.
"""

import logging
import threading
import uuid
from contextlib import contextmanager
from typing import Iterator, Literal

from casesim.core.logging import get_logger, log_with_context
from casesim.core.schemas_cases import StageOverride
from casesim.core.schemas_chat import StageCounterState, StageStatus
from casesim.db.attempts import AttemptStore, CounterDelta
from casesim.db.cases import CaseRepository

logger = get_logger(__name__)

TurnRole = Literal["user", "assistant"]
StageState = Literal["locked", "active", "completed", "skipped"]


def meets_thresholds(counters: StageCounterState, override: StageOverride) -> bool:
    return (
        counters.user_turns >= override.min_user_turns
        and counters.assistant_turns >= override.min_assistant_turns
        and counters.keyword_hits >= override.min_assistant_keyword_hits
    )


class TurnSequencer:
    """First-come, first-served tickets for the messages of each attempt.

    A ticket is taken when a message arrives. ``wait`` blocks until every
    earlier ticket of the same attempt has been released. No lock is held
    while the caller works between ``wait`` and ``release``.
    """

    def __init__(self):
        self._cond = threading.Condition()
        self._next: dict[str, int] = {}
        self._serving: dict[str, int] = {}

    def take(self, attempt_id: str) -> int:
        with self._cond:
            ticket = self._next.get(attempt_id, 0)
            self._next[attempt_id] = ticket + 1
            self._serving.setdefault(attempt_id, 0)
            return ticket

    def wait(self, attempt_id: str, ticket: int) -> None:
        with self._cond:
            self._cond.wait_for(lambda: self._serving.get(attempt_id, ticket) >= ticket)

    def release(self, attempt_id: str, ticket: int) -> None:
        with self._cond:
            serving = max(self._serving.get(attempt_id, 0), ticket + 1)
            if serving >= self._next.get(attempt_id, 0):
                self._next.pop(attempt_id, None)
                self._serving.pop(attempt_id, None)
            else:
                self._serving[attempt_id] = serving
            self._cond.notify_all()

    def pending(self, attempt_id: str) -> int:
        with self._cond:
            return self._next.get(attempt_id, 0) - self._serving.get(attempt_id, 0)


class StageCompletionEvaluator:
    """Records turns and answers eligibility questions for attempts."""

    def __init__(self, cases: CaseRepository, attempts: AttemptStore):
        self.cases = cases
        self.attempts = attempts
        self._attempt_cases: dict[str, str] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()
        self.sequencer = TurnSequencer()

    def _lock_for(self, attempt_id: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(attempt_id, threading.Lock())

    @contextmanager
    def ordered_turn(self, attempt_id: str) -> Iterator[int]:
        """Run one message of an attempt after all messages that arrived before it."""
        ticket = self.sequencer.take(attempt_id)
        try:
            self.sequencer.wait(attempt_id, ticket)
            yield ticket
        finally:
            self.sequencer.release(attempt_id, ticket)

    def bind_attempt(self, attempt_id: str, case_id: str) -> None:
        """Associate an attempt with its case so thresholds can be looked up."""
        with self._guard:
            self._attempt_cases[attempt_id] = case_id

    def case_for(self, attempt_id: str) -> str | None:
        with self._guard:
            return self._attempt_cases.get(attempt_id)

    def current_generation(self, attempt_id: str) -> int:
        return self.attempts.generation(attempt_id)

    def override_for(self, case_id: str | None, stage_index: int) -> StageOverride:
        """Stage override for a case, or the all-defaults override."""
        if not case_id:
            return StageOverride()
        return self.cases.get_stage_overrides(case_id).get(str(stage_index), StageOverride())

    def record_turn(
        self,
        attempt_id: str,
        stage_index: int,
        role: TurnRole,
        keyword_hit: bool = False,
        event_id: str | None = None,
        generation: int | None = None,
    ) -> StageCounterState:
        """
        Count one learner message or persona reply.

        Args:
            attempt_id: Attempt the turn belongs to
            stage_index: Stage the turn was made in
            role: "user" for learner messages, "assistant" for persona replies
            keyword_hit: Whether an assistant reply matched the stage keywords
            event_id: Idempotency key; replaying the same id is a no-op
            generation: Attempt generation captured when the turn started.
                Writes from an older generation (after a reset or delete) are dropped.

        Returns:
            Counters after the write (unchanged when the write was dropped)
        """
        if role not in ("user", "assistant"):
            raise ValueError(f"Unknown turn role: {role}")

        if role == "user":
            delta = CounterDelta(user_turns=1)
        else:
            delta = CounterDelta(assistant_turns=1, keyword_hits=1 if keyword_hit else 0)

        event_id = event_id or str(uuid.uuid4())

        with self._lock_for(attempt_id):
            if generation is None:
                generation = self.attempts.generation(attempt_id)
            before_eligible = self._eligible_locked(attempt_id, stage_index)
            applied, counters = self.attempts.apply(attempt_id, stage_index, event_id, delta, generation)

        if not applied:
            log_with_context(
                logger,
                logging.DEBUG,
                f"Ignored {role} turn for stage {stage_index}",
                attempt_id=attempt_id,
                event_id=event_id,
                generation=generation,
            )
            return counters

        override = self.override_for(self.case_for(attempt_id), stage_index)
        if not before_eligible and meets_thresholds(counters, override):
            log_with_context(
                logger,
                logging.INFO,
                f"Stage {stage_index} is eligible to advance",
                attempt_id=attempt_id,
                user_turns=counters.user_turns,
                assistant_turns=counters.assistant_turns,
                keyword_hits=counters.keyword_hits,
            )
        return counters

    def _eligible_locked(self, attempt_id: str, stage_index: int) -> bool:
        counters = self.attempts.get_counters(attempt_id, stage_index)
        return meets_thresholds(counters, self.override_for(self.case_for(attempt_id), stage_index))

    def is_eligible_to_advance(self, attempt_id: str, stage_index: int, case_id: str | None = None) -> bool:
        """True when every counter of the stage is at or above its minimum."""
        if case_id:
            self.bind_attempt(attempt_id, case_id)
        counters = self.attempts.get_counters(attempt_id, stage_index)
        return meets_thresholds(counters, self.override_for(case_id or self.case_for(attempt_id), stage_index))

    def stage_state(self, attempt_id: str, case_id: str, stage_index: int) -> StageState:
        """
        Position of a stage in the attempt's locked/active/completed sequence.

        Inactive stages are skipped: they never become active and do not
        block the stages after them.
        """
        overrides = self.cases.get_stage_overrides(case_id)

        def override(index: int) -> StageOverride:
            return overrides.get(str(index), StageOverride())

        if not override(stage_index).active:
            return "skipped"

        for index in range(stage_index):
            prior = override(index)
            if not prior.active:
                continue
            if not meets_thresholds(self.attempts.get_counters(attempt_id, index), prior):
                return "locked"

        counters = self.attempts.get_counters(attempt_id, stage_index)
        return "completed" if meets_thresholds(counters, override(stage_index)) else "active"

    def next_active_stage(self, case_id: str, after_index: int, stage_count: int) -> int | None:
        """Index of the first active stage after ``after_index``, or None."""
        overrides = self.cases.get_stage_overrides(case_id)
        for index in range(after_index + 1, stage_count):
            if overrides.get(str(index), StageOverride()).active:
                return index
        return None

    def status(self, attempt_id: str, stage_index: int, case_id: str | None = None) -> StageStatus:
        case_id = case_id or self.case_for(attempt_id)
        if case_id:
            self.bind_attempt(attempt_id, case_id)
            state = self.stage_state(attempt_id, case_id, stage_index)
        else:
            state = "completed" if self.is_eligible_to_advance(attempt_id, stage_index) else "active"
        return StageStatus(
            attempt_id=attempt_id,
            stage_index=stage_index,
            state=state,
            counters=self.attempts.get_counters(attempt_id, stage_index),
            eligible=self.is_eligible_to_advance(attempt_id, stage_index, case_id),
        )

    def reset_stage(self, attempt_id: str, stage_index: int) -> int:
        """Clear a stage's counters; in-flight turns of the old generation are dropped."""
        with self._lock_for(attempt_id):
            generation = self.attempts.reset_stage(attempt_id, stage_index)
        log_with_context(
            logger, logging.INFO, f"Reset stage {stage_index}", attempt_id=attempt_id, generation=generation
        )
        return generation

    def delete_attempt(self, attempt_id: str) -> int:
        """Make every counter of an attempt unreachable."""
        with self._lock_for(attempt_id):
            generation = self.attempts.delete_attempt(attempt_id)
        with self._guard:
            self._attempt_cases.pop(attempt_id, None)
            self._locks.pop(attempt_id, None)
        log_with_context(logger, logging.INFO, "Deleted attempt state", attempt_id=attempt_id, generation=generation)
        return generation
