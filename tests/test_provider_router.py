"""Tests for provider resolution, fallback and error classification."""

import json
from unittest.mock import MagicMock, patch

import httpx
import openai
import pytest

from casesim.core.errors import ConfigurationMissing, ErrorCode, ProviderUnavailable
from casesim.core.providers.base import call_with_retries, classify_provider_error
from casesim.core.providers.config_store import ProviderConfigStore
from casesim.core.providers.gemini_provider import GeminiAdapter
from casesim.core.providers.openai_provider import OpenAIAdapter
from casesim.core.providers.router import build_provider_router
from casesim.core.schemas_providers import ProviderConfig
from tests.support import FakeChatAdapter, FakeEmbeddingAdapter, make_router


def test_resolve_provider_order(settings):
    router = make_router(settings, [], default_provider="openai", chat="anthropic")

    assert router.resolve_provider("chat") == "anthropic"
    assert router.resolve_provider("embeddings") == "openai"


def test_resolve_provider_builtin_default(settings):
    router = make_router(settings, [], default_provider=None)

    assert router.resolve_provider("embeddings") == "primary"
    assert router.candidates("embeddings") == ["openai"]


def test_resolve_provider_unknown_feature(settings):
    router = make_router(settings, [])

    with pytest.raises(ValueError):
        router.resolve_provider("vision")


def test_override_without_credentials_fails_fast(settings):
    """An embeddings override pointing at a provider with no key aborts with a model-access error."""
    gemini = GeminiAdapter(None, embedding_models=["text-embedding-004"])
    fallback = FakeEmbeddingAdapter(name="openai")
    router = make_router(
        settings, [gemini, fallback], embeddings="gemini", fallback_lists={"embeddings": ["openai"]}
    )

    with patch.object(gemini, "_call") as mock_call:
        with pytest.raises(ProviderUnavailable) as exc_info:
            router.call_embeddings(["heart rate"])

    assert exc_info.value.fatal
    assert exc_info.value.code == ErrorCode.EMBEDDING_MODEL_ACCESS
    mock_call.assert_not_called()
    assert fallback.calls == 0


def test_unknown_provider_is_config_error(settings):
    router = make_router(settings, [FakeEmbeddingAdapter()], embeddings="cohere")

    with pytest.raises(ConfigurationMissing) as exc_info:
        router.call_embeddings(["x"])

    assert exc_info.value.code == ErrorCode.CONFIG_ERROR


def test_chat_falls_back_on_status_error(settings):
    failing = FakeChatAdapter(
        name="openai", error=ProviderUnavailable("503 overloaded", provider="openai", status=503)
    )
    backup = FakeChatAdapter(name="anthropic", replies=["From backup"])
    router = make_router(settings, [failing, backup], fallback_lists={"chat": ["anthropic"]})

    result = router.call_chat("system", [{"role": "user", "content": "hi"}])

    assert result.content == "From backup"
    assert result.provider == "anthropic"


def test_tts_always_reaches_browser(settings):
    router = make_router(settings, [], default_provider="openai")

    result = router.synthesize_speech("Hello", "alice")

    assert result.provider == "browser"
    assert result.client_side


def test_tts_chain_order(settings):
    router = make_router(settings, [], default_provider="openai")

    assert router.candidates("tts") == ["openai", "elevenlabs", "browser"]


def test_call_with_retries_retries_transport_errors():
    request = httpx.Request("POST", "https://example.test")
    fn = MagicMock(side_effect=[httpx.ConnectError("down", request=request), "ok"])
    sleeps = []

    assert call_with_retries(fn, "gemini", max_attempts=3, base_delay=0.5, sleep=sleeps.append) == "ok"
    assert sleeps == [0.5]


def test_call_with_retries_gives_up_after_max_attempts():
    request = httpx.Request("POST", "https://example.test")
    fn = MagicMock(side_effect=httpx.ConnectError("down", request=request))
    sleeps = []

    with pytest.raises(ProviderUnavailable) as exc_info:
        call_with_retries(fn, "gemini", max_attempts=3, base_delay=0.1, sleep=sleeps.append)

    assert exc_info.value.transport
    assert fn.call_count == 3
    assert sleeps == [0.1, 0.2]


def test_call_with_retries_does_not_retry_status_errors():
    error = ProviderUnavailable("500 from provider", provider="openai", status=500)
    fn = MagicMock(side_effect=error)

    with pytest.raises(ProviderUnavailable):
        call_with_retries(fn, "openai", max_attempts=3, sleep=lambda _: None)

    assert fn.call_count == 1


def test_classify_model_access_message():
    error = classify_provider_error(
        Exception("Project abc does not have access to model text-embedding-3-large"), "openai"
    )

    assert error.fatal
    assert error.code == ErrorCode.EMBEDDING_MODEL_ACCESS


def test_classify_openai_connection_error():
    request = httpx.Request("POST", "https://api.openai.com/v1/embeddings")
    error = classify_provider_error(openai.APIConnectionError(request=request), "openai")

    assert error.transport
    assert not error.fatal


def test_openai_embed_walks_model_fallbacks():
    adapter = OpenAIAdapter("key", embedding_models=["text-embedding-3-large", "text-embedding-3-small"])
    client = MagicMock()
    good = MagicMock()
    good.data = [MagicMock(embedding=[0.1, 0.2])]
    client.embeddings.create.side_effect = [
        Exception("does not have access to model text-embedding-3-large"),
        good,
    ]
    adapter._client = client

    results = adapter.embed(["temperature"])

    assert results[0].model == "text-embedding-3-small"
    assert client.embeddings.create.call_count == 2


def test_gemini_embed_parses_batch_response():
    http_client = MagicMock()
    response = httpx.Response(
        200,
        request=httpx.Request("POST", "https://example.test"),
        json={"embeddings": [{"values": [0.5, 0.25]}]},
    )
    http_client.post.return_value = response
    adapter = GeminiAdapter("key", embedding_models=["text-embedding-004"], http_client=http_client)

    results = adapter.embed(["pulse"])

    assert results[0].embedding == [0.5, 0.25]
    assert results[0].model == "text-embedding-004"


def test_config_store_falls_back_to_env_on_invalid_file(settings, tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{not json", encoding="utf-8")
    store = ProviderConfigStore(settings, path=path, cache_seconds=0)

    config = store.load()

    assert config.default_provider == settings.LLM_DEFAULT_PROVIDER


def test_config_store_round_trip(settings, tmp_path):
    path = tmp_path / "nested" / "config.json"
    store = ProviderConfigStore(settings, path=path, cache_seconds=0)

    store.save(ProviderConfig.model_validate({"defaultProvider": "openai", "featureOverrides": {"chat": "anthropic"}}))

    assert json.loads(path.read_text())["featureOverrides"]["chat"] == "anthropic"
    assert store.load().override_for("chat") == "anthropic"


def test_build_provider_router_registers_adapters(settings):
    router = build_provider_router(settings)

    assert {"openai", "anthropic", "gemini", "elevenlabs", "browser"} <= set(router.provider_names)
    assert router.has_credentials("embeddings")
    assert not router.has_credentials("embeddings", provider="gemini")
