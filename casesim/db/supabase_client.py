"""Supabase client construction."""

from supabase import Client, create_client

from casesim.core.config import Settings


def create_supabase(settings: Settings) -> Client:
    """
    Create a Supabase client for the configured project.

    The caller owns the client; it is built once per process by the engine
    context and passed to each store.

    Args:
        settings: Application settings with Supabase URL and service role key

    Returns:
        Supabase client configured with service role key

    Raises:
        RuntimeError: If credentials are missing or client initialization fails
    """
    if not settings.SUPABASE_URL or not settings.SUPABASE_SERVICE_ROLE_KEY:
        raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must both be set")

    try:
        return create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY)
    except Exception as e:
        raise RuntimeError(f"Failed to initialize Supabase client: {e}") from e
