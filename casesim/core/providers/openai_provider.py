"""OpenAI adapter: embeddings, chat completions and speech."""

from openai import OpenAI

from casesim.core.errors import ProviderUnavailable
from casesim.core.logging import get_logger
from casesim.core.providers.base import (
    ChatResult,
    EmbeddingResult,
    ProviderAdapter,
    SpeechResult,
)

logger = get_logger(__name__)

OPENAI_VOICES = frozenset({"alloy", "echo", "fable", "onyx", "nova", "shimmer"})

# Persona voices are British ElevenLabs presets; map them onto the nearest OpenAI voice
_VOICE_EQUIVALENTS = {
    "charlie": "fable",
    "george": "onyx",
    "harry": "echo",
    "alice": "shimmer",
    "charlotte": "nova",
    "lily": "nova",
    "matilda": "shimmer",
}


class OpenAIAdapter(ProviderAdapter):
    name = "openai"
    features = frozenset({"embeddings", "chat", "tts"})

    def __init__(
        self,
        api_key: str | None,
        embedding_models: list[str] | None = None,
        chat_model: str = "gpt-4o-mini",
        tts_model: str = "tts-1",
        **kwargs,
    ):
        super().__init__(api_key, **kwargs)
        self.embedding_models = embedding_models or ["text-embedding-3-small"]
        self.chat_model = chat_model
        self.tts_model = tts_model
        self._client: OpenAI | None = None

    def _get_client(self) -> OpenAI:
        """Get OpenAI client instance."""
        if self._client is None:
            self._client = OpenAI(api_key=self.api_key, timeout=self.timeout, max_retries=0)
        return self._client

    def embed(self, texts: list[str], model: str | None = None) -> list[EmbeddingResult]:
        """
        Generate embeddings, walking the configured model list on model-access errors.

        Args:
            texts: Texts to embed
            model: Explicit model; disables the fallback list

        Returns:
            One EmbeddingResult per input text

        Raises:
            ProviderUnavailable: When every model fails or the key is missing
        """
        if not texts:
            return []
        self.require_credentials()
        client = self._get_client()

        models = [model] if model else self.embedding_models
        last_error: ProviderUnavailable | None = None
        for candidate in models:
            try:
                response = self._call(
                    lambda: client.embeddings.create(model=candidate, input=texts)
                )
            except ProviderUnavailable as e:
                last_error = e
                if e.fatal and candidate != models[-1]:
                    logger.warning(f"OpenAI embedding model {candidate} unavailable, trying next model: {e}")
                    continue
                raise

            results = [EmbeddingResult(embedding=item.embedding, model=candidate) for item in response.data]
            logger.debug(f"Generated {len(results)} embeddings using {candidate}")
            return results

        raise last_error

    def chat(
        self,
        system_prompt: str,
        messages: list[dict[str, str]],
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> ChatResult:
        self.require_credentials()
        client = self._get_client()

        payload = [{"role": "system", "content": system_prompt}, *messages]
        response = self._call(
            lambda: client.chat.completions.create(
                model=self.chat_model,
                messages=payload,
                temperature=temperature,
                max_tokens=max_tokens,
            )
        )
        content = response.choices[0].message.content or ""
        return ChatResult(content=content, model=response.model or self.chat_model, provider=self.name)

    def synthesize(self, text: str, voice: str) -> SpeechResult:
        self.require_credentials()
        client = self._get_client()

        openai_voice = voice if voice in OPENAI_VOICES else _VOICE_EQUIVALENTS.get(voice, "alloy")
        response = self._call(
            lambda: client.audio.speech.create(
                model=self.tts_model,
                voice=openai_voice,
                input=text,
                response_format="mp3",
            )
        )
        return SpeechResult(
            provider=self.name,
            voice=openai_voice,
            audio=response.content,
            content_type="audio/mpeg",
            model=self.tts_model,
        )
