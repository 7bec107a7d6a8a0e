"""Pytest configuration and fixtures."""

import os

import pytest

from casesim.core.config import Settings, get_settings


@pytest.fixture(scope="session", autouse=True)
def setup_test_env():
    """Set up test environment variables."""
    os.environ["CASESIM_ENV"] = "test"
    os.environ["STORAGE_BACKEND"] = "memory"
    os.environ["OPENAI_API_KEY"] = "test-openai-key"
    os.environ.pop("SUPABASE_URL", None)
    os.environ.pop("SUPABASE_SERVICE_ROLE_KEY", None)
    os.environ.pop("GEMINI_API_KEY", None)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings isolated from any real provider config file."""
    return Settings(
        CASESIM_ENV="test",
        STORAGE_BACKEND="memory",
        OPENAI_API_KEY="test-openai-key",
        GEMINI_API_KEY=None,
        PROVIDER_CONFIG_PATH=str(tmp_path / "provider-config.json"),
        PROVIDER_CONFIG_CACHE_SECONDS=0,
        PROVIDER_RETRY_BASE_DELAY=0,
        JOB_WORKERS=1,
    )
