"""API router for v1 endpoints."""

from fastapi import APIRouter

from casesim.api import attempts, chat, jobs, knowledge, providers, stage_settings

router = APIRouter()

# Knowledge ingestion, retrieval and audit routes
router.include_router(knowledge.router, tags=["knowledge"])

# Persona chat route
router.include_router(chat.router, tags=["chat"])

# Stage override routes
router.include_router(stage_settings.router, tags=["stage-settings"])

# Provider configuration routes
router.include_router(providers.router, prefix="/providers", tags=["providers"])

# Attempt counter routes
router.include_router(attempts.router, prefix="/attempts", tags=["attempts"])

# Job status routes
router.include_router(jobs.router, prefix="/jobs", tags=["jobs"])
