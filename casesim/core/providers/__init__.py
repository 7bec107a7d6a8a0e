"""AI provider adapters and the feature router."""

from casesim.core.providers.base import (
    ChatResult,
    EmbeddingResult,
    ProviderAdapter,
    SpeechResult,
    call_with_retries,
    classify_provider_error,
)
from casesim.core.providers.config_store import ProviderConfigStore
from casesim.core.providers.router import ProviderRouter, build_provider_router

__all__ = [
    "ChatResult",
    "EmbeddingResult",
    "ProviderAdapter",
    "SpeechResult",
    "call_with_retries",
    "classify_provider_error",
    "ProviderConfigStore",
    "ProviderRouter",
    "build_provider_router",
]
