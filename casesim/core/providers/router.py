"""Routes chat, embeddings and speech calls to configured providers.

Resolution order for a feature: per-feature override from the persisted
configuration, then the configured default provider, then the built-in
default. Each call walks the resolved provider followed by the feature's
fallback list; the first success wins.
"""

import logging
from typing import Callable, TypeVar

from casesim.core.config import Settings
from casesim.core.errors import ConfigurationMissing, ProviderUnavailable
from casesim.core.logging import get_logger, log_with_context
from casesim.core.providers.anthropic_provider import AnthropicAdapter
from casesim.core.providers.base import (
    ChatResult,
    EmbeddingResult,
    ProviderAdapter,
    SpeechResult,
    parse_model_list,
)
from casesim.core.providers.config_store import ProviderConfigStore
from casesim.core.providers.elevenlabs_provider import ElevenLabsAdapter
from casesim.core.providers.gemini_provider import GeminiAdapter
from casesim.core.providers.openai_provider import OpenAIAdapter
from casesim.core.schemas_providers import BUILTIN_DEFAULT_PROVIDER, FEATURES

logger = get_logger(__name__)

T = TypeVar("T")

BROWSER_PROVIDER = "browser"
DEFAULT_TTS_CHAIN = ("elevenlabs", "openai")


class BrowserSpeechAdapter(ProviderAdapter):
    """Always-available speech fallback: the client synthesizes locally."""

    name = BROWSER_PROVIDER
    features = frozenset({"tts"})

    def __init__(self):
        super().__init__(api_key=None)

    def has_credentials(self) -> bool:
        return True

    def synthesize(self, text: str, voice: str) -> SpeechResult:
        return SpeechResult(provider=self.name, voice=voice, metadata={"text": text})


class ProviderRouter:
    """Feature-to-provider resolution with ordered fallback."""

    def __init__(
        self,
        config_store: ProviderConfigStore,
        adapters: list[ProviderAdapter],
        aliases: dict[str, str] | None = None,
    ):
        self.config_store = config_store
        self._adapters: dict[str, ProviderAdapter] = {a.name: a for a in adapters}
        if BROWSER_PROVIDER not in self._adapters:
            self._adapters[BROWSER_PROVIDER] = BrowserSpeechAdapter()
        self._aliases = {k.lower(): v for k, v in (aliases or {}).items()}

    @property
    def provider_names(self) -> list[str]:
        return sorted(self._adapters)

    def resolve_provider(self, feature: str) -> str:
        """
        Resolve the provider name for a feature.

        Args:
            feature: One of chat, embeddings, tts

        Returns:
            Provider name (never raises on store problems)

        Raises:
            ValueError: If feature is unknown
        """
        if feature not in FEATURES:
            raise ValueError(f"Unknown feature: {feature}")

        config = self.config_store.load()
        override = config.override_for(feature)
        if override:
            return override
        return config.default_provider or BUILTIN_DEFAULT_PROVIDER

    def candidates(self, feature: str, provider: str | None = None) -> list[str]:
        """Ordered provider names tried for a feature."""
        first = provider or self.resolve_provider(feature)
        config = self.config_store.load()
        chain = [first, *config.fallback_lists.get(feature, [])]
        if feature == "tts":
            if feature not in config.fallback_lists:
                chain.extend(DEFAULT_TTS_CHAIN)
            chain.append(BROWSER_PROVIDER)

        ordered: list[str] = []
        for name in chain:
            canonical = self._canonical(name)
            if canonical not in ordered:
                ordered.append(canonical)
        return ordered

    def _canonical(self, name: str) -> str:
        lowered = (name or "").strip().lower()
        return self._aliases.get(lowered, lowered)

    def get_adapter(self, name: str) -> ProviderAdapter:
        """
        Look up an adapter by provider name or alias.

        Raises:
            ConfigurationMissing: When no such provider is registered
        """
        adapter = self._adapters.get(self._canonical(name))
        if adapter is None:
            raise ConfigurationMissing(f"Provider '{name}' is not configured")
        return adapter

    def has_credentials(self, feature: str, provider: str | None = None) -> bool:
        try:
            adapter = self.get_adapter(provider or self.resolve_provider(feature))
        except ConfigurationMissing:
            return False
        return adapter.supports(feature) and adapter.has_credentials()

    def _run_chain(
        self,
        feature: str,
        fn: Callable[[ProviderAdapter], T],
        provider: str | None = None,
        abort_on_fatal: bool = True,
    ) -> T:
        names = self.candidates(feature, provider)
        last_error: ProviderUnavailable | None = None

        for name in names:
            try:
                adapter = self.get_adapter(name)
            except ConfigurationMissing as e:
                logger.warning(f"{feature} provider {name} is not configured")
                if abort_on_fatal:
                    raise
                last_error = ProviderUnavailable(e.message, provider=name)
                continue

            try:
                if not adapter.supports(feature):
                    raise ProviderUnavailable(f"{name} does not support {feature}", provider=name)
                result = fn(adapter)
            except ProviderUnavailable as e:
                last_error = e
                log_with_context(
                    logger,
                    logging.WARNING,
                    f"{feature} call failed on provider {name}: {e.message}",
                    provider=name,
                    status=e.status,
                    fatal=e.fatal,
                    transport=e.transport,
                )
                if e.fatal and abort_on_fatal:
                    raise
                continue

            if name != names[0]:
                log_with_context(
                    logger, logging.INFO, f"{feature} served by fallback provider {name}", provider=name
                )
            return result

        raise last_error or ProviderUnavailable(f"No provider available for {feature}", provider="none")

    def call_embeddings(self, inputs: list[str], provider: str | None = None) -> list[EmbeddingResult]:
        """Embed texts; fatal model-access errors abort without fallback."""
        if not inputs:
            return []
        return self._run_chain("embeddings", lambda a: a.embed(inputs), provider)

    def call_chat(
        self,
        system_prompt: str,
        messages: list[dict[str, str]],
        temperature: float = 0.7,
        max_tokens: int = 1000,
        provider: str | None = None,
    ) -> ChatResult:
        return self._run_chain(
            "chat",
            lambda a: a.chat(system_prompt, messages, temperature=temperature, max_tokens=max_tokens),
            provider,
        )

    def synthesize_speech(self, text: str, voice: str, provider: str | None = None) -> SpeechResult:
        """Speech never fails outright; the browser fallback always answers."""
        return self._run_chain(
            "tts", lambda a: a.synthesize(text, voice), provider, abort_on_fatal=False
        )


def build_provider_router(settings: Settings, config_store: ProviderConfigStore | None = None) -> ProviderRouter:
    """Construct a router with every built-in adapter wired from settings."""
    retry = {
        "max_attempts": settings.PROVIDER_MAX_ATTEMPTS,
        "base_delay": settings.PROVIDER_RETRY_BASE_DELAY,
        "timeout": settings.PROVIDER_TIMEOUT_SECONDS,
    }
    adapters: list[ProviderAdapter] = [
        OpenAIAdapter(
            settings.OPENAI_API_KEY,
            embedding_models=parse_model_list(
                settings.OPENAI_EMBEDDING_MODEL, settings.OPENAI_EMBEDDING_FALLBACKS
            ),
            chat_model=settings.OPENAI_CHAT_MODEL,
            tts_model=settings.OPENAI_TTS_MODEL,
            **retry,
        ),
        AnthropicAdapter(settings.ANTHROPIC_API_KEY, chat_model=settings.ANTHROPIC_CHAT_MODEL, **retry),
        GeminiAdapter(
            settings.GEMINI_API_KEY,
            embedding_models=parse_model_list(
                settings.GEMINI_EMBEDDING_MODEL, settings.GEMINI_EMBEDDING_FALLBACKS
            ),
            **retry,
        ),
        ElevenLabsAdapter(settings.ELEVENLABS_API_KEY, model=settings.ELEVENLABS_MODEL, **retry),
        BrowserSpeechAdapter(),
    ]
    return ProviderRouter(
        config_store or ProviderConfigStore(settings),
        adapters,
        aliases={BUILTIN_DEFAULT_PROVIDER: "openai"},
    )
