"""Persisted provider configuration with environment fallback."""

import json
import threading
import time
from pathlib import Path
from typing import Callable

from pydantic import ValidationError

from casesim.core.config import Settings
from casesim.core.logging import get_logger
from casesim.core.schemas_providers import FeatureOverrides, ProviderConfig

logger = get_logger(__name__)


def env_provider_config(settings: Settings) -> ProviderConfig:
    """Provider configuration derived from environment settings."""
    return ProviderConfig(
        default_provider=settings.LLM_DEFAULT_PROVIDER or None,
        feature_overrides=FeatureOverrides(
            embeddings=settings.LLM_PROVIDER_EMBEDDINGS,
            chat=settings.LLM_PROVIDER_CHAT,
            tts=settings.LLM_PROVIDER_TTS,
        ),
    )


class ProviderConfigStore:
    """JSON-file backed provider configuration.

    Reads are cached for ``cache_seconds``. A missing, unreadable or invalid
    file degrades to the environment defaults; ``load`` never raises.
    """

    def __init__(
        self,
        settings: Settings,
        path: str | Path | None = None,
        cache_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings
        self.path = Path(path or settings.PROVIDER_CONFIG_PATH)
        self.cache_seconds = (
            settings.PROVIDER_CONFIG_CACHE_SECONDS if cache_seconds is None else cache_seconds
        )
        self._clock = clock
        self._lock = threading.Lock()
        self._cached: ProviderConfig | None = None
        self._loaded_at = 0.0

    def load(self) -> ProviderConfig:
        with self._lock:
            now = self._clock()
            if self._cached is not None and now - self._loaded_at < self.cache_seconds:
                return self._cached

            config = self._read_file()
            if config is None:
                config = env_provider_config(self.settings)

            self._cached = config
            self._loaded_at = now
            return config

    def _read_file(self) -> ProviderConfig | None:
        try:
            if not self.path.exists():
                return None
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            return ProviderConfig.model_validate(raw)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Provider config at {self.path} unusable, using environment defaults: {e}")
            return None

    def save(self, config: ProviderConfig) -> ProviderConfig:
        """
        Persist a provider configuration and refresh the cache.

        Raises:
            OSError: If the file cannot be written
        """
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp_path.write_text(json.dumps(config.to_wire(), indent=2), encoding="utf-8")
            tmp_path.replace(self.path)
            self._cached = config
            self._loaded_at = self._clock()

        logger.info(f"Saved provider config to {self.path}")
        return config
