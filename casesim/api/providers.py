"""API endpoints for provider configuration."""

import asyncio

from fastapi import APIRouter, Depends, HTTPException

from casesim.api.deps import EngineContext, get_engine
from casesim.core.logging import get_logger
from casesim.core.schemas_providers import FEATURES, ProviderConfig

logger = get_logger(__name__)

router = APIRouter()


def _resolved(engine: EngineContext) -> dict[str, str]:
    return {feature: engine.router.resolve_provider(feature) for feature in FEATURES}


@router.get("/config")
async def get_provider_config(engine: EngineContext = Depends(get_engine)) -> dict:
    """Current provider configuration plus the provider each feature resolves to."""
    config = engine.provider_config.load()
    return {
        "config": config.to_wire(),
        "resolved": _resolved(engine),
        "providers": engine.router.provider_names,
    }


@router.put("/config")
async def put_provider_config(config: ProviderConfig, engine: EngineContext = Depends(get_engine)) -> dict:
    """
    Replace the persisted provider configuration.

    Raises:
        HTTPException 400: If a named provider is not registered
        HTTPException 500: If the configuration cannot be written
    """
    known = set(engine.router.provider_names) | {"primary"}
    named = [config.default_provider, *config.feature_overrides.model_dump().values()]
    for providers in config.fallback_lists.values():
        named.extend(providers)
    unknown = sorted({n.lower() for n in named if n} - known)
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown providers: {', '.join(unknown)}")

    try:
        saved = await asyncio.to_thread(engine.provider_config.save, config)
    except OSError as e:
        logger.error(f"Failed to save provider config: {e}")
        raise HTTPException(status_code=500, detail="Failed to save provider configuration") from e

    return {"config": saved.to_wire(), "resolved": _resolved(engine)}


@router.get("/resolve/{feature}")
async def resolve_feature(feature: str, engine: EngineContext = Depends(get_engine)) -> dict:
    """
    Provider resolution for one feature.

    Raises:
        HTTPException 400: If the feature is unknown
    """
    if feature not in FEATURES:
        raise HTTPException(status_code=400, detail=f"Unknown feature: {feature}")

    return {
        "feature": feature,
        "provider": engine.router.resolve_provider(feature),
        "candidates": engine.router.candidates(feature),
        "hasCredentials": engine.router.has_credentials(feature),
    }
