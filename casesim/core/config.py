"""Configuration management for the case simulation engine."""

from functools import lru_cache
from typing import Literal

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file (only if accessible)
try:
    load_dotenv()
except (PermissionError, OSError):
    # In sandboxed environments, .env might not be accessible
    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Environment
    CASESIM_ENV: str = Field(default="dev", description="Environment: dev, test, staging, prod")
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] | None = Field(
        default=None, description="Log level; DEBUG in dev and INFO elsewhere when unset"
    )

    # Storage
    SUPABASE_URL: str | None = Field(default=None, description="Supabase project URL")
    SUPABASE_SERVICE_ROLE_KEY: str | None = Field(default=None, description="Supabase service role key")
    STORAGE_BACKEND: str | None = Field(
        default=None, description="'supabase' or 'memory'; inferred from Supabase credentials when unset"
    )

    # Provider credentials
    OPENAI_API_KEY: str | None = Field(default=None, description="OpenAI API key")
    ANTHROPIC_API_KEY: str | None = Field(default=None, description="Anthropic API key")
    GEMINI_API_KEY: str | None = Field(default=None, description="Google Gemini API key")
    ELEVENLABS_API_KEY: str | None = Field(default=None, description="ElevenLabs API key")

    # Provider selection defaults (used when the persisted provider config is unavailable)
    LLM_DEFAULT_PROVIDER: str = Field(default="openai", description="Default provider for every feature")
    LLM_PROVIDER_EMBEDDINGS: str | None = Field(default=None, description="Embeddings provider override")
    LLM_PROVIDER_CHAT: str | None = Field(default=None, description="Chat provider override")
    LLM_PROVIDER_TTS: str | None = Field(default=None, description="Speech provider override")
    PROVIDER_CONFIG_PATH: str = Field(
        default="tmp/llm-provider-config.json", description="Persisted provider configuration file"
    )
    PROVIDER_CONFIG_CACHE_SECONDS: float = Field(
        default=5.0, description="How long a loaded provider config is reused"
    )

    # Models
    OPENAI_EMBEDDING_MODEL: str = Field(default="text-embedding-3-small", description="OpenAI embedding model")
    OPENAI_EMBEDDING_FALLBACKS: str = Field(
        default="", description="Comma-separated OpenAI embedding models tried on model-access errors"
    )
    OPENAI_CHAT_MODEL: str = Field(default="gpt-4o-mini", description="OpenAI chat model")
    OPENAI_TTS_MODEL: str = Field(default="tts-1", description="OpenAI speech model")
    ANTHROPIC_CHAT_MODEL: str = Field(default="claude-3-5-haiku-20241022", description="Anthropic chat model")
    GEMINI_EMBEDDING_MODEL: str = Field(default="text-embedding-004", description="Gemini embedding model")
    GEMINI_EMBEDDING_FALLBACKS: str = Field(
        default="", description="Comma-separated Gemini embedding models tried on model-access errors"
    )
    ELEVENLABS_MODEL: str = Field(default="eleven_multilingual_v2", description="ElevenLabs speech model")

    # Chat generation
    CHAT_TEMPERATURE: float = Field(default=0.7, description="Sampling temperature for persona replies")
    CHAT_MAX_TOKENS: int = Field(default=1000, description="Max tokens for persona replies")

    # Retries
    PROVIDER_MAX_ATTEMPTS: int = Field(default=3, description="Attempts per provider call")
    PROVIDER_RETRY_BASE_DELAY: float = Field(
        default=0.2, description="Initial retry delay in seconds (doubles per attempt)"
    )
    PROVIDER_TIMEOUT_SECONDS: float = Field(default=30.0, description="Timeout for a single provider call")

    # Ingestion
    CHUNK_SIZE: int = Field(default=1000, description="Max characters per knowledge chunk")
    CHUNK_OVERLAP: int = Field(default=100, description="Characters shared by consecutive chunks")
    MAX_UPLOAD_BYTES: int = Field(default=10 * 1024 * 1024, description="Max upload size in bytes")

    # Retrieval
    RETRIEVAL_TOP_K: int = Field(default=4, description="Chunks injected into each persona prompt")
    KNOWLEDGE_CONTEXT_MAX_CHARS: int = Field(
        default=3000, description="Hard cap on injected knowledge characters"
    )
    RETRIEVAL_STRATEGY: str = Field(default="auto", description="auto, vector or lexical")

    # Background jobs
    JOB_WORKERS: int = Field(default=2, description="Worker threads for background jobs")

    @property
    def storage_backend(self) -> str:
        """Resolved storage backend name."""
        if self.STORAGE_BACKEND:
            return self.STORAGE_BACKEND.lower()
        if self.SUPABASE_URL and self.SUPABASE_SERVICE_ROLE_KEY:
            return "supabase"
        return "memory"


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings instance

    Raises:
        ValidationError: If environment variables have invalid values
    """
    return Settings()
