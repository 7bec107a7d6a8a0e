"""Persona reply generation for one learner message."""

import logging

from casesim.core.config import Settings
from casesim.core.errors import (
    ConfigurationMissing,
    EngineError,
    ErrorCode,
    PersistenceFailure,
    ProviderUnavailable,
)
from casesim.core.logging import get_logger, log_with_context
from casesim.core.personas import PersonaIdentityResolver, display_role_for, seed_context_from_case
from casesim.core.prompts import (
    APOLOGY_MESSAGE,
    build_knowledge_context,
    compose_system_prompt,
    persona_directives,
)
from casesim.core.providers.router import ProviderRouter
from casesim.core.retrieval import KnowledgeRetriever
from casesim.core.role_mapping import canonicalize_role, count_keyword_hits, default_keywords_for
from casesim.core.schemas_cases import CaseDefinition, Stage, StageOverride
from casesim.core.schemas_chat import ChatReply, Message
from casesim.core.stage_evaluator import StageCompletionEvaluator
from casesim.db.cases import CaseRepository

logger = get_logger(__name__)


def turn_event_id(attempt_id: str, stage_index: int, role: str, message_index: int) -> str:
    """Stable idempotency key for a turn, used when the client sends no message id."""
    return f"{attempt_id}:{stage_index}:{role}:{message_index}"


def last_user_message(history: list[Message]) -> tuple[int, Message] | None:
    for index in range(len(history) - 1, -1, -1):
        if history[index].role == "user":
            return index, history[index]
    return None


class DialogueOrchestrator:
    """Composes persona prompts, calls the chat provider and records turns."""

    def __init__(
        self,
        cases: CaseRepository,
        personas: PersonaIdentityResolver,
        retriever: KnowledgeRetriever,
        router: ProviderRouter,
        evaluator: StageCompletionEvaluator,
        settings: Settings,
    ):
        self.cases = cases
        self.personas = personas
        self.retriever = retriever
        self.router = router
        self.evaluator = evaluator
        self.temperature = settings.CHAT_TEMPERATURE
        self.max_tokens = settings.CHAT_MAX_TOKENS
        self.max_context_chars = settings.KNOWLEDGE_CONTEXT_MAX_CHARS
        self.top_k = settings.RETRIEVAL_TOP_K

    def _load_stage(self, case_id: str, stage_index: int) -> tuple[CaseDefinition, Stage, StageOverride]:
        case = self.cases.find_case(case_id)
        if case is None:
            raise EngineError(f"Case {case_id} not found", ErrorCode.NOT_FOUND)
        if stage_index >= len(case.stages):
            raise EngineError(f"Stage {stage_index} not found in case {case.id}", ErrorCode.NOT_FOUND)

        override = self.cases.get_stage_overrides(case.id).get(str(stage_index), StageOverride())
        stage = override.apply(case.stages[stage_index])
        return case, stage, override

    def _knowledge_for(self, case_id: str, query: str) -> str:
        try:
            retrieval = self.retriever.query(case_id, query, self.top_k)
        except PersistenceFailure as e:
            log_with_context(
                logger, logging.WARNING, f"Knowledge lookup failed, replying without it: {e.message}",
                case_id=case_id,
            )
            return ""
        return build_knowledge_context(retrieval.results, self.max_context_chars)

    def _record(
        self,
        attempt_id: str,
        stage_index: int,
        role: str,
        event_id: str,
        generation: int,
        keyword_hit: bool = False,
    ) -> None:
        try:
            self.evaluator.record_turn(
                attempt_id, stage_index, role, keyword_hit=keyword_hit, event_id=event_id, generation=generation
            )
        except PersistenceFailure as e:
            log_with_context(
                logger, logging.ERROR, f"Failed to record {role} turn: {e.message}",
                attempt_id=attempt_id, stage_index=stage_index,
            )

    def generate_reply(
        self,
        attempt_id: str | None,
        case_id: str,
        stage_index: int,
        history: list[Message],
    ) -> ChatReply:
        """
        Generate the persona reply for the latest learner message.

        Messages of one attempt are answered and counted in arrival order.

        Args:
            attempt_id: Learner attempt; turns are only counted when present
            case_id: Case id or slug
            stage_index: Stage the learner is in
            history: Full conversation so far, oldest first

        Returns:
            ChatReply. Provider failures produce an apology reply with
            ``fallback=True`` instead of raising.

        Raises:
            EngineError: NOT_FOUND for unknown cases or stages
        """
        if not attempt_id:
            return self._generate(None, case_id, stage_index, history)
        with self.evaluator.ordered_turn(attempt_id):
            return self._generate(attempt_id, case_id, stage_index, history)

    def _generate(
        self,
        attempt_id: str | None,
        case_id: str,
        stage_index: int,
        history: list[Message],
    ) -> ChatReply:
        case, stage, override = self._load_stage(case_id, stage_index)
        snapshot = case.fields_snapshot()
        case_data = snapshot.model_dump()

        role_key = canonicalize_role(stage.role)
        seed = seed_context_from_case(snapshot)
        identity = self.personas.resolve(case.id, role_key, seed)
        display_role = display_role_for(role_key, case_data)

        if not override.active:
            log_with_context(
                logger, logging.WARNING, f"Reply requested for inactive stage {stage_index}",
                case_id=case.id, attempt_id=attempt_id,
            )

        latest = last_user_message(history)
        knowledge = self._knowledge_for(case.id, latest[1].content) if latest else ""
        system_prompt = compose_system_prompt(
            persona_directives(identity, display_role, case.species),
            stage.base_prompt,
            knowledge,
        )

        # Snapshot the generation before any provider call so a reset
        # during generation drops this turn's counts
        generation = 0
        if attempt_id:
            self.evaluator.bind_attempt(attempt_id, case.id)
            generation = self.evaluator.current_generation(attempt_id)
            if latest:
                index, message = latest
                event_id = message.id or turn_event_id(attempt_id, stage_index, "user", index)
                self._record(attempt_id, stage_index, "user", event_id, generation)

        reply = ChatReply(
            content=APOLOGY_MESSAGE,
            display_role=display_role,
            persona_role_key=role_key,
            portrait_url=seed.portrait_url,
            voice_id=identity.voice_id,
        )

        messages = [{"role": m.role, "content": m.content} for m in history if m.role in ("user", "assistant")]
        try:
            result = self.router.call_chat(
                system_prompt, messages, temperature=self.temperature, max_tokens=self.max_tokens
            )
        except (ProviderUnavailable, ConfigurationMissing) as e:
            log_with_context(
                logger, logging.ERROR, f"Chat providers failed, returning apology: {e.message}",
                case_id=case.id, attempt_id=attempt_id, code=e.code.value,
            )
            return reply.model_copy(update={"fallback": True, "error_code": e.code})

        content = result.content.strip()
        if attempt_id:
            keywords = stage.keywords or list(default_keywords_for(role_key))
            hit = count_keyword_hits(content, keywords) > 0
            event_id = turn_event_id(attempt_id, stage_index, "assistant", len(history))
            self._record(attempt_id, stage_index, "assistant", event_id, generation, keyword_hit=hit)

        log_with_context(
            logger, logging.INFO, f"Generated {role_key} reply via {result.provider or 'chat provider'}",
            case_id=case.id, attempt_id=attempt_id, stage_index=stage_index, model=result.model,
        )
        return reply.model_copy(update={"content": content})
