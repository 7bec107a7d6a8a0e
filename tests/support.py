"""Fake provider adapters and sample cases shared by the tests."""

import hashlib
import re
import threading

from casesim.core.errors import ProviderUnavailable
from casesim.core.providers.base import ChatResult, EmbeddingResult, ProviderAdapter
from casesim.core.providers.config_store import ProviderConfigStore
from casesim.core.providers.router import ProviderRouter
from casesim.core.schemas_cases import CaseDefinition, Stage
from casesim.core.schemas_providers import FeatureOverrides, ProviderConfig

EMBEDDING_DIMS = 16


def bag_of_words_vector(text: str) -> list[float]:
    """Deterministic embedding: hashed word counts."""
    vector = [0.0] * EMBEDDING_DIMS
    for word in re.findall(r"[a-z0-9]+", text.lower()):
        bucket = int(hashlib.md5(word.encode()).hexdigest(), 16) % EMBEDDING_DIMS
        vector[bucket] += 1.0
    return vector


class FakeEmbeddingAdapter(ProviderAdapter):
    """Embeds with hashed word counts; can be told to fail after N calls."""

    features = frozenset({"embeddings"})

    def __init__(self, name: str = "openai", api_key: str | None = "fake-key", fail_after: int | None = None,
                 fatal: bool = True, status: int | None = 403):
        super().__init__(api_key)
        self.name = name
        self.fail_after = fail_after
        self.fatal = fatal
        self.status = status
        self.calls = 0
        self._lock = threading.Lock()

    def embed(self, texts: list[str], model: str | None = None) -> list[EmbeddingResult]:
        self.require_credentials()
        with self._lock:
            if self.fail_after is not None and self.calls >= self.fail_after:
                raise ProviderUnavailable(
                    "Project does not have access to model text-embedding-3-small",
                    provider=self.name,
                    status=self.status,
                    fatal=self.fatal,
                )
            self.calls += 1
        return [EmbeddingResult(embedding=bag_of_words_vector(t), model="fake-embedding") for t in texts]


class FakeChatAdapter(ProviderAdapter):
    """Returns scripted replies and records the prompts it was given."""

    features = frozenset({"chat"})

    def __init__(self, name: str = "anthropic", replies: list[str] | None = None,
                 error: ProviderUnavailable | None = None):
        super().__init__("fake-key")
        self.name = name
        self.replies = list(replies or ["Certainly."])
        self.error = error
        self.system_prompts: list[str] = []
        self.histories: list[list[dict[str, str]]] = []

    def chat(self, system_prompt, messages, temperature=0.7, max_tokens=1000) -> ChatResult:
        self.system_prompts.append(system_prompt)
        self.histories.append(list(messages))
        if self.error:
            raise self.error
        content = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        return ChatResult(content=content, model="fake-chat", provider=self.name)


class StaticConfigStore(ProviderConfigStore):
    """Provider config held in memory."""

    def __init__(self, settings, config: ProviderConfig | None = None):
        super().__init__(settings, cache_seconds=0)
        self.config = config or ProviderConfig(default_provider="openai")

    def load(self) -> ProviderConfig:
        return self.config

    def save(self, config: ProviderConfig) -> ProviderConfig:
        self.config = config
        return config


def make_router(settings, adapters, default_provider="openai", embeddings=None, chat=None, fallback_lists=None):
    config = ProviderConfig(
        default_provider=default_provider,
        feature_overrides=FeatureOverrides(embeddings=embeddings, chat=chat),
        fallback_lists=fallback_lists or {},
    )
    return ProviderRouter(StaticConfigStore(settings, config), adapters, aliases={"primary": "openai"})


def sample_case(case_id: str = "case-1", slug: str = "equine-colic", **fields) -> CaseDefinition:
    data = {
        "id": case_id,
        "slug": slug,
        "title": "Colic in a Thoroughbred mare",
        "species": "Equine",
        "patient_name": "Catalina",
        "presenting_complaint": "Rolling and pawing since this morning.",
        "history": "Fed hay at 6am, reduced manure output overnight.",
        "physical_findings": "Heart rate 64 bpm, temperature 38.4 C, reduced gut sounds.",
        "owner_background": "Role: Horse owner (Catalina)\nHorse: Catalina (mare)",
        "stages": [
            Stage(id="history", order=0, title="History", role="Client", base_prompt="Answer history questions."),
            Stage(id="exam", order=1, title="Physical exam", role="Veterinary Nurse",
                  base_prompt="Share exam findings on request.", keywords=["heart rate", "temperature"]),
            Stage(id="diagnostics", order=2, title="Diagnostics", role="Lab technician"),
        ],
    }
    data.update(fields)
    return CaseDefinition.model_validate(data)
