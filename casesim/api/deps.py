"""Engine construction and the FastAPI dependency that exposes it."""

from dataclasses import dataclass

from fastapi import Request
from supabase import Client

from casesim.core.chunking import KnowledgeChunker
from casesim.core.config import Settings, get_settings
from casesim.core.document_processing import ExtractorRegistry, build_default_registry
from casesim.core.ingestion import KnowledgeIngestionPipeline
from casesim.core.job_queue import JobQueue
from casesim.core.logging import get_logger
from casesim.core.orchestrator import DialogueOrchestrator
from casesim.core.personas import PersonaIdentityResolver
from casesim.core.providers import ProviderConfigStore, ProviderRouter, build_provider_router
from casesim.core.retrieval import KnowledgeRetriever
from casesim.core.stage_evaluator import StageCompletionEvaluator
from casesim.db.attempts import AttemptStore, InMemoryAttemptStore, SupabaseAttemptStore
from casesim.db.cases import CaseRepository, InMemoryCaseRepository, SupabaseCaseRepository
from casesim.db.jobs import InMemoryJobStore, JobStore, SupabaseJobStore
from casesim.db.knowledge import InMemoryKnowledgeStore, KnowledgeStore, SupabaseKnowledgeStore
from casesim.db.supabase_client import create_supabase

logger = get_logger(__name__)


@dataclass
class EngineContext:
    """Every collaborator of one running engine, built once per process."""

    settings: Settings
    cases: CaseRepository
    knowledge: KnowledgeStore
    attempts: AttemptStore
    jobs: JobStore
    provider_config: ProviderConfigStore
    router: ProviderRouter
    registry: ExtractorRegistry
    chunker: KnowledgeChunker
    ingestion: KnowledgeIngestionPipeline
    retriever: KnowledgeRetriever
    personas: PersonaIdentityResolver
    evaluator: StageCompletionEvaluator
    orchestrator: DialogueOrchestrator
    job_queue: JobQueue

    def close(self) -> None:
        self.job_queue.shutdown(wait=True)


def build_engine(
    settings: Settings | None = None,
    supabase_client: Client | None = None,
    router: ProviderRouter | None = None,
    cases: CaseRepository | None = None,
) -> EngineContext:
    """
    Wire stores, providers and components.

    Args:
        settings: Settings (defaults to get_settings())
        supabase_client: Client to use for the supabase backend (created when omitted)
        router: Provider router override, mainly for tests
        cases: Case repository override, mainly for tests

    Returns:
        EngineContext
    """
    settings = settings or get_settings()
    backend = settings.storage_backend

    if backend == "supabase":
        client = supabase_client or create_supabase(settings)
        case_repo: CaseRepository = cases or SupabaseCaseRepository(client)
        knowledge: KnowledgeStore = SupabaseKnowledgeStore(client)
        attempts: AttemptStore = SupabaseAttemptStore(client)
        jobs: JobStore = SupabaseJobStore(client)
    elif backend == "memory":
        case_repo = cases or InMemoryCaseRepository()
        knowledge = InMemoryKnowledgeStore()
        attempts = InMemoryAttemptStore()
        jobs = InMemoryJobStore()
    else:
        raise ValueError(f"Unknown STORAGE_BACKEND: {backend}")

    provider_config = router.config_store if router else ProviderConfigStore(settings)
    router = router or build_provider_router(settings, provider_config)

    registry = build_default_registry(settings.MAX_UPLOAD_BYTES)
    chunker = KnowledgeChunker(settings.CHUNK_SIZE, settings.CHUNK_OVERLAP)
    ingestion = KnowledgeIngestionPipeline(knowledge, case_repo, router, chunker, registry)
    retriever = KnowledgeRetriever(knowledge, router, settings)
    personas = PersonaIdentityResolver()
    evaluator = StageCompletionEvaluator(case_repo, attempts)
    orchestrator = DialogueOrchestrator(case_repo, personas, retriever, router, evaluator, settings)

    logger.info(f"Engine built with {backend} storage")

    return EngineContext(
        settings=settings,
        cases=case_repo,
        knowledge=knowledge,
        attempts=attempts,
        jobs=jobs,
        provider_config=provider_config,
        router=router,
        registry=registry,
        chunker=chunker,
        ingestion=ingestion,
        retriever=retriever,
        personas=personas,
        evaluator=evaluator,
        orchestrator=orchestrator,
        job_queue=JobQueue(jobs, settings.JOB_WORKERS),
    )


def get_engine(request: Request) -> EngineContext:
    return request.app.state.engine
