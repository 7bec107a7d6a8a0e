"""Schemas for the persisted provider configuration."""

from typing import Literal

from pydantic import Field, field_validator

from casesim.core.schemas_base import CamelModel

Feature = Literal["chat", "embeddings", "tts"]
FEATURES: tuple[str, ...] = ("chat", "embeddings", "tts")

BUILTIN_DEFAULT_PROVIDER = "primary"


class FeatureOverrides(CamelModel):
    embeddings: str | None = None
    chat: str | None = None
    tts: str | None = None


class ProviderConfig(CamelModel):
    """Which provider backs each feature, plus ordered fallbacks."""

    default_provider: str | None = Field(default=None, description="Provider used when no override is set")
    feature_overrides: FeatureOverrides = Field(default_factory=FeatureOverrides)
    fallback_lists: dict[str, list[str]] = Field(
        default_factory=dict, description="Ordered providers tried after the resolved one"
    )

    @field_validator("fallback_lists")
    @classmethod
    def _known_features(cls, value: dict[str, list[str]]) -> dict[str, list[str]]:
        unknown = set(value) - set(FEATURES)
        if unknown:
            raise ValueError(f"Unknown features in fallbackLists: {sorted(unknown)}")
        return value

    def override_for(self, feature: str) -> str | None:
        return getattr(self.feature_overrides, feature, None) or None
