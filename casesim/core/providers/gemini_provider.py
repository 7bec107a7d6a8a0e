"""Google Gemini adapter: embeddings over the Generative Language REST API."""

import httpx

from casesim.core.errors import ProviderUnavailable
from casesim.core.logging import get_logger
from casesim.core.providers.base import EmbeddingResult, ProviderAdapter, raise_for_status

logger = get_logger(__name__)

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


class GeminiAdapter(ProviderAdapter):
    name = "gemini"
    features = frozenset({"embeddings"})

    def __init__(
        self,
        api_key: str | None,
        embedding_models: list[str] | None = None,
        http_client: httpx.Client | None = None,
        base_url: str = GEMINI_BASE_URL,
        **kwargs,
    ):
        super().__init__(api_key, **kwargs)
        self.embedding_models = embedding_models or ["text-embedding-004"]
        self.base_url = base_url.rstrip("/")
        self._http = http_client

    def _get_client(self) -> httpx.Client:
        if self._http is None:
            self._http = httpx.Client(timeout=self.timeout)
        return self._http

    def _embed_with_model(self, texts: list[str], model: str) -> list[EmbeddingResult]:
        client = self._get_client()
        url = f"{self.base_url}/models/{model}:batchEmbedContents"
        body = {
            "requests": [
                {"model": f"models/{model}", "content": {"parts": [{"text": text}]}}
                for text in texts
            ]
        }

        def _post() -> httpx.Response:
            response = client.post(url, json=body, headers={"x-goog-api-key": self.api_key})
            raise_for_status(response, self.name)
            return response

        data = self._call(_post).json()
        embeddings = data.get("embeddings") or []
        if len(embeddings) != len(texts):
            raise ProviderUnavailable(
                f"Gemini returned {len(embeddings)} embeddings for {len(texts)} inputs",
                provider=self.name,
            )
        return [EmbeddingResult(embedding=item.get("values", []), model=model) for item in embeddings]

    def embed(self, texts: list[str], model: str | None = None) -> list[EmbeddingResult]:
        if not texts:
            return []
        self.require_credentials()

        models = [model] if model else self.embedding_models
        for index, candidate in enumerate(models):
            try:
                return self._embed_with_model(texts, candidate)
            except ProviderUnavailable as e:
                if e.fatal and index < len(models) - 1:
                    logger.warning(f"Gemini embedding model {candidate} unavailable, trying next model: {e}")
                    continue
                raise
        return []
