"""Tests for stage completion counters and eligibility."""

import threading
import time

import pytest

from casesim.core.schemas_cases import StageOverride
from casesim.core.stage_evaluator import StageCompletionEvaluator, TurnSequencer
from casesim.db.attempts import InMemoryAttemptStore
from casesim.db.cases import InMemoryCaseRepository
from tests.support import sample_case


@pytest.fixture
def cases():
    return InMemoryCaseRepository([sample_case()])


@pytest.fixture
def evaluator(cases):
    evaluator = StageCompletionEvaluator(cases, InMemoryAttemptStore())
    evaluator.bind_attempt("att-1", "case-1")
    return evaluator


def _complete_stage(evaluator, stage_index, keyword_hit=True):
    evaluator.record_turn("att-1", stage_index, "user")
    evaluator.record_turn("att-1", stage_index, "assistant", keyword_hit=keyword_hit)


def test_default_thresholds_need_one_of_each(evaluator):
    assert not evaluator.is_eligible_to_advance("att-1", 0)

    evaluator.record_turn("att-1", 0, "user")
    evaluator.record_turn("att-1", 0, "assistant", keyword_hit=False)
    assert not evaluator.is_eligible_to_advance("att-1", 0)

    evaluator.record_turn("att-1", 0, "assistant", keyword_hit=True)
    assert evaluator.is_eligible_to_advance("att-1", 0)


def test_eligibility_boundary_and_monotonic(evaluator, cases):
    cases.save_stage_overrides(
        "case-1", {"0": StageOverride(min_user_turns=2, min_assistant_turns=2, min_assistant_keyword_hits=1)}
    )
    evaluator.record_turn("att-1", 0, "user")
    evaluator.record_turn("att-1", 0, "assistant", keyword_hit=True)
    evaluator.record_turn("att-1", 0, "user")
    assert not evaluator.is_eligible_to_advance("att-1", 0)

    evaluator.record_turn("att-1", 0, "assistant")
    assert evaluator.is_eligible_to_advance("att-1", 0)

    evaluator.record_turn("att-1", 0, "user")
    assert evaluator.is_eligible_to_advance("att-1", 0)


def test_zero_thresholds_are_immediately_eligible(evaluator, cases):
    cases.save_stage_overrides(
        "case-1", {"1": StageOverride(min_user_turns=0, min_assistant_turns=0, min_assistant_keyword_hits=0)}
    )

    assert evaluator.is_eligible_to_advance("att-1", 1)


def test_duplicate_event_is_counted_once(evaluator):
    evaluator.record_turn("att-1", 0, "user", event_id="msg-1")
    counters = evaluator.record_turn("att-1", 0, "user", event_id="msg-1")

    assert counters.user_turns == 1


def test_unknown_role_rejected(evaluator):
    with pytest.raises(ValueError):
        evaluator.record_turn("att-1", 0, "system")


def test_reset_drops_stale_writes(evaluator):
    _complete_stage(evaluator, 0)
    stale_generation = evaluator.current_generation("att-1")

    evaluator.reset_stage("att-1", 0)
    counters = evaluator.record_turn("att-1", 0, "assistant", keyword_hit=True, generation=stale_generation)

    assert counters.assistant_turns == 0
    assert not evaluator.is_eligible_to_advance("att-1", 0)


def test_delete_attempt_clears_every_stage(evaluator):
    _complete_stage(evaluator, 0)
    _complete_stage(evaluator, 1)
    generation = evaluator.current_generation("att-1")

    evaluator.delete_attempt("att-1")
    evaluator.record_turn("att-1", 1, "user", generation=generation)

    status = evaluator.status("att-1", 1, case_id="case-1")
    assert status.counters.user_turns == 0
    assert evaluator.case_for("att-1") == "case-1"


def test_delete_attempt_leaves_no_per_attempt_state(cases):
    store = InMemoryAttemptStore()
    evaluator = StageCompletionEvaluator(cases, store)
    evaluator.bind_attempt("att-1", "case-1")
    evaluator.record_turn("att-1", 0, "user")
    generation = evaluator.current_generation("att-1")

    evaluator.delete_attempt("att-1")
    assert "att-1" not in evaluator._locks
    assert evaluator.case_for("att-1") is None

    evaluator.record_turn("att-1", 2, "user", generation=generation)

    assert not [key for key in store._stages if key[0] == "att-1"]


def test_stage_states(evaluator):
    assert evaluator.status("att-1", 0).state == "active"
    assert evaluator.status("att-1", 1).state == "locked"

    _complete_stage(evaluator, 0)

    assert evaluator.status("att-1", 0).state == "completed"
    assert evaluator.status("att-1", 1).state == "active"


def test_inactive_stage_is_skipped(evaluator, cases):
    cases.save_stage_overrides("case-1", {"1": StageOverride(active=False)})
    _complete_stage(evaluator, 0)

    assert evaluator.stage_state("att-1", "case-1", 1) == "skipped"
    assert evaluator.stage_state("att-1", "case-1", 2) == "active"
    assert evaluator.next_active_stage("case-1", 0, 3) == 2
    assert evaluator.next_active_stage("case-1", 2, 3) is None


def test_concurrent_turns_are_all_counted(evaluator):
    def send(n):
        for i in range(25):
            evaluator.record_turn("att-1", 0, "user", event_id=f"t{n}-{i}")

    threads = [threading.Thread(target=send, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert evaluator.status("att-1", 0).counters.user_turns == 100


def test_sequencer_serves_tickets_in_arrival_order():
    sequencer = TurnSequencer()
    first = sequencer.take("att-1")
    second = sequencer.take("att-1")
    other = sequencer.take("att-2")
    served = []

    def serve(ticket):
        sequencer.wait("att-1", ticket)
        served.append(ticket)
        sequencer.release("att-1", ticket)

    waiter = threading.Thread(target=serve, args=(second,))
    waiter.start()
    time.sleep(0.05)
    assert served == []

    sequencer.wait("att-2", other)
    sequencer.release("att-2", other)

    serve(first)
    waiter.join(5)

    assert served == [first, second]
    assert sequencer.pending("att-1") == 0
    assert sequencer._next == {}


def test_ordered_turn_releases_on_error(evaluator):
    with pytest.raises(RuntimeError):
        with evaluator.ordered_turn("att-1"):
            raise RuntimeError("provider blew up")

    with evaluator.ordered_turn("att-1") as ticket:
        assert ticket == 0
    assert evaluator.sequencer.pending("att-1") == 0
