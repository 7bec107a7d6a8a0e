"""Tests for persona reply generation."""

import threading
import time

import pytest

from casesim.core.errors import EngineError, ErrorCode, ProviderUnavailable
from casesim.core.orchestrator import DialogueOrchestrator, turn_event_id
from casesim.core.personas import PersonaIdentityResolver
from casesim.core.prompts import APOLOGY_MESSAGE, KNOWLEDGE_HEADER, build_knowledge_context
from casesim.core.providers.base import ChatResult
from casesim.core.retrieval import KnowledgeRetriever
from casesim.core.schemas_chat import Message
from casesim.core.schemas_knowledge import ChunkMetadata, KnowledgeChunk, RankedChunk
from casesim.core.stage_evaluator import StageCompletionEvaluator
from casesim.db.attempts import InMemoryAttemptStore
from casesim.db.cases import InMemoryCaseRepository
from casesim.db.knowledge import InMemoryKnowledgeStore
from tests.support import FakeChatAdapter, FakeEmbeddingAdapter, make_router, sample_case


def _meta(index=0):
    return ChunkMetadata(source="notes.txt", chunk_index=index, total_chunks=1)


@pytest.fixture
def chat_adapter():
    return FakeChatAdapter(replies=["Heart rate is 64 beats per minute."])


def _build_orchestrator(settings, chat_adapter):
    settings = settings.model_copy(update={"RETRIEVAL_STRATEGY": "lexical", "KNOWLEDGE_CONTEXT_MAX_CHARS": 200})
    cases = InMemoryCaseRepository([sample_case()])
    store = InMemoryKnowledgeStore()
    store.insert_chunk(
        KnowledgeChunk(case_id="case-1", content="Heart rate 64 bpm, mucous membranes pink.", metadata=_meta())
    )
    router = make_router(settings, [FakeEmbeddingAdapter(), chat_adapter], chat="anthropic")
    return DialogueOrchestrator(
        cases,
        PersonaIdentityResolver(),
        KnowledgeRetriever(store, router, settings),
        router,
        StageCompletionEvaluator(cases, InMemoryAttemptStore()),
        settings,
    )


@pytest.fixture
def orchestrator(settings, chat_adapter):
    return _build_orchestrator(settings, chat_adapter)


def _history(text="What is the heart rate?", message_id=None):
    return [Message(role="user", content=text, id=message_id)]


def test_prompt_blocks_in_order(orchestrator, chat_adapter):
    reply = orchestrator.generate_reply("att-1", "case-1", 1, _history())

    prompt = chat_adapter.system_prompts[0]
    persona_at = prompt.index("Your name is")
    base_at = prompt.index("Share exam findings on request.")
    knowledge_at = prompt.index(KNOWLEDGE_HEADER)
    assert persona_at < base_at < knowledge_at
    assert "Heart rate 64 bpm" in prompt
    assert reply.persona_role_key == "veterinary-nurse"
    assert reply.display_role == "Veterinary Nurse"
    assert not reply.fallback


def test_slug_resolves_to_case(orchestrator):
    reply = orchestrator.generate_reply(None, "equine-colic", 0, _history("When did it start?"))

    assert reply.persona_role_key == "owner"
    assert reply.display_role == "Horse owner (Catalina)"


def test_reply_records_turns_and_keyword_hit(orchestrator):
    orchestrator.generate_reply("att-1", "case-1", 1, _history())

    status = orchestrator.evaluator.status("att-1", 1)
    assert status.counters.user_turns == 1
    assert status.counters.assistant_turns == 1
    assert status.counters.keyword_hits == 1
    assert status.eligible


def test_retry_of_same_message_is_not_double_counted(orchestrator):
    orchestrator.generate_reply("att-1", "case-1", 1, _history(message_id="m-1"))
    orchestrator.generate_reply("att-1", "case-1", 1, _history(message_id="m-1"))

    assert orchestrator.evaluator.status("att-1", 1).counters.user_turns == 1


def test_provider_failure_returns_apology(orchestrator, chat_adapter):
    chat_adapter.error = ProviderUnavailable("503 overloaded", provider="anthropic", status=503)

    reply = orchestrator.generate_reply("att-1", "case-1", 1, _history())

    assert reply.fallback
    assert reply.content == APOLOGY_MESSAGE
    assert reply.error_code == ErrorCode.PROVIDER_ERROR
    counters = orchestrator.evaluator.status("att-1", 1).counters
    assert counters.user_turns == 1
    assert counters.assistant_turns == 0


def test_unknown_case_is_not_found(orchestrator):
    with pytest.raises(EngineError) as exc_info:
        orchestrator.generate_reply("att-1", "missing-case", 0, _history())

    assert exc_info.value.code == ErrorCode.NOT_FOUND


def test_unknown_stage_is_not_found(orchestrator):
    with pytest.raises(EngineError):
        orchestrator.generate_reply("att-1", "case-1", 9, _history())


def test_knowledge_context_is_capped():
    chunks = [
        RankedChunk(id="1", content="a" * 120, score=2.0, metadata=_meta(0)),
        RankedChunk(id="2", content="b" * 120, score=1.0, metadata=_meta(1)),
    ]

    context = build_knowledge_context(chunks, 200)

    assert len(context) == 200
    assert context.startswith("a" * 120 + "\n\n")
    assert context.endswith("b" * 78)


def test_turn_event_id_format():
    assert turn_event_id("att-1", 2, "assistant", 5) == "att-1:2:assistant:5"


class SlowFirstChatAdapter(FakeChatAdapter):
    """Echoes the latest learner message; the message "first" takes a while."""

    def __init__(self):
        super().__init__()
        self.events: list[str] = []
        self.first_started = threading.Event()

    def chat(self, system_prompt, messages, temperature=0.7, max_tokens=1000) -> ChatResult:
        text = messages[-1]["content"]
        self.events.append(f"start:{text}")
        if text == "first":
            self.first_started.set()
            time.sleep(0.5)
        self.events.append(f"end:{text}")
        return ChatResult(content=f"reply-to-{text}", model="fake-chat", provider=self.name)


def test_replies_within_attempt_follow_arrival_order(settings):
    adapter = SlowFirstChatAdapter()
    orchestrator = _build_orchestrator(settings, adapter)
    completed = []

    def send(history):
        reply = orchestrator.generate_reply("att-1", "case-1", 0, history)
        completed.append(reply.content)

    first_history = _history("first", message_id="m-1")
    second_history = first_history + [
        Message(role="assistant", content="reply-to-first"),
        Message(role="user", content="second", id="m-2"),
    ]
    first = threading.Thread(target=send, args=(first_history,))
    first.start()
    assert adapter.first_started.wait(5)
    second = threading.Thread(target=send, args=(second_history,))
    second.start()
    first.join()
    second.join()

    assert completed == ["reply-to-first", "reply-to-second"]
    assert adapter.events == ["start:first", "end:first", "start:second", "end:second"]
    counters = orchestrator.evaluator.status("att-1", 0).counters
    assert counters.user_turns == 2
    assert counters.assistant_turns == 2
    assert orchestrator.evaluator.sequencer.pending("att-1") == 0


def test_different_attempts_are_not_serialized(settings):
    adapter = SlowFirstChatAdapter()
    orchestrator = _build_orchestrator(settings, adapter)
    completed = []

    def send(attempt_id, text):
        reply = orchestrator.generate_reply(attempt_id, "case-1", 0, _history(text))
        completed.append(reply.content)

    first = threading.Thread(target=send, args=("att-1", "first"))
    first.start()
    assert adapter.first_started.wait(5)
    second = threading.Thread(target=send, args=("att-2", "second"))
    second.start()
    second.join()
    first.join()

    assert completed == ["reply-to-second", "reply-to-first"]
