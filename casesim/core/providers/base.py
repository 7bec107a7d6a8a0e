"""Provider adapter contract, normalized result shapes and error classification.

Every external AI service is wrapped by an adapter that returns the same
normalized shapes, so the router can swap providers per feature.
"""

import re
import time
from abc import ABC
from dataclasses import dataclass, field
from typing import Any, Callable, TypeVar

import anthropic
import httpx
import openai

from casesim.core.errors import ProviderUnavailable
from casesim.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

# Authorization and model-access failures are never retried
_MODEL_ACCESS_PATTERN = re.compile(
    r"does not have access to model|no access to model|model [\"'`]?[\w.\-/:]+[\"'`]? not found|model_not_found",
    re.IGNORECASE,
)
_FATAL_STATUSES = frozenset({401, 403})


@dataclass
class EmbeddingResult:
    """One embedding vector and the model that produced it."""

    embedding: list[float]
    model: str


@dataclass
class ChatResult:
    """A chat completion in normalized form."""

    content: str
    model: str
    provider: str = ""


@dataclass
class SpeechResult:
    """Synthesized speech. ``audio`` is None when the client must synthesize locally."""

    provider: str
    voice: str
    audio: bytes | None = None
    content_type: str | None = None
    model: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def client_side(self) -> bool:
        return self.audio is None


def is_model_access_message(message: str) -> bool:
    return bool(_MODEL_ACCESS_PATTERN.search(message or ""))


def _status_of(exc: BaseException) -> int | None:
    status = getattr(exc, "status_code", None)
    if status is None:
        response = getattr(exc, "response", None)
        status = getattr(response, "status_code", None)
    if status is None:
        status = getattr(exc, "status", None)
    return status if isinstance(status, int) else None


def classify_provider_error(exc: BaseException, provider: str) -> ProviderUnavailable:
    """
    Translate an SDK or HTTP exception into a ProviderUnavailable.

    Args:
        exc: Exception raised by a provider SDK or httpx
        provider: Provider name for diagnostics

    Returns:
        ProviderUnavailable with fatal/transport flags set
    """
    if isinstance(exc, ProviderUnavailable):
        return exc

    message = str(exc) or type(exc).__name__

    if isinstance(
        exc, (openai.APIConnectionError, anthropic.APIConnectionError, httpx.TransportError)
    ):
        return ProviderUnavailable(message, provider=provider, transport=True)

    status = _status_of(exc)
    fatal = status in _FATAL_STATUSES or is_model_access_message(message)
    return ProviderUnavailable(message, provider=provider, status=status, fatal=fatal)


def raise_for_status(response: httpx.Response, provider: str) -> None:
    """Raise a classified ProviderUnavailable for a non-2xx HTTP response."""
    if response.is_success:
        return
    message = f"{provider} responded {response.status_code}: {response.text[:500]}"
    fatal = response.status_code in _FATAL_STATUSES or is_model_access_message(response.text)
    raise ProviderUnavailable(message, provider=provider, status=response.status_code, fatal=fatal)


def call_with_retries(
    fn: Callable[[], T],
    provider: str,
    max_attempts: int = 3,
    base_delay: float = 0.2,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call a provider, retrying only when no response was received.

    Responses carrying an error status are raised immediately so the router
    can decide whether to fall back to another provider.

    Args:
        fn: Zero-argument callable performing the provider request
        provider: Provider name for logging
        max_attempts: Total attempts including the first
        base_delay: Delay before the second attempt, doubled each time
        sleep: Sleep function (injected by tests)

    Returns:
        Whatever fn returns

    Raises:
        ProviderUnavailable: On status errors, or when transport retries are exhausted
    """
    attempt = 0
    while True:
        try:
            return fn()
        except Exception as e:
            error = classify_provider_error(e, provider)
            if not error.transport or attempt + 1 >= max_attempts:
                raise error from e

            delay = base_delay * (2 ** attempt)
            logger.warning(
                f"{provider} attempt {attempt + 1}/{max_attempts} got no response "
                f"({type(e).__name__}), retrying in {delay}s"
            )
            sleep(delay)
            attempt += 1


def parse_model_list(primary: str, fallbacks: str) -> list[str]:
    """Preferred model first, then comma-separated fallbacks without duplicates."""
    models = [primary]
    for name in (fallbacks or "").split(","):
        name = name.strip()
        if name and name not in models:
            models.append(name)
    return models


class ProviderAdapter(ABC):
    """Base class for provider adapters.

    Subclasses override the feature methods they support and list them in
    ``features``. Calls to unsupported features raise a non-fatal
    ProviderUnavailable so the router can fall through to the next provider.
    """

    name: str = ""
    features: frozenset[str] = frozenset()

    def __init__(
        self,
        api_key: str | None,
        max_attempts: int = 3,
        base_delay: float = 0.2,
        timeout: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.api_key = api_key
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.timeout = timeout
        self._sleep = sleep

    def has_credentials(self) -> bool:
        return bool(self.api_key)

    def supports(self, feature: str) -> bool:
        return feature in self.features

    def require_credentials(self) -> None:
        """Fail fast with a model-access class error when no key is configured."""
        if not self.has_credentials():
            raise ProviderUnavailable(
                f"{self.name} API key not configured",
                provider=self.name,
                status=403,
                fatal=True,
            )

    def _call(self, fn: Callable[[], T]) -> T:
        return call_with_retries(
            fn,
            provider=self.name,
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            sleep=self._sleep,
        )

    def _unsupported(self, feature: str) -> ProviderUnavailable:
        return ProviderUnavailable(f"{self.name} does not support {feature}", provider=self.name)

    def embed(self, texts: list[str], model: str | None = None) -> list[EmbeddingResult]:
        raise self._unsupported("embeddings")

    def chat(
        self,
        system_prompt: str,
        messages: list[dict[str, str]],
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> ChatResult:
        raise self._unsupported("chat")

    def synthesize(self, text: str, voice: str) -> SpeechResult:
        raise self._unsupported("tts")
