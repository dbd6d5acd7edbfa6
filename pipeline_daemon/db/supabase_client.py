"""Service-role Supabase client factory."""

from supabase import Client, ClientOptions, create_client

from pipeline_daemon.config import Settings


def create_supabase(settings: Settings) -> Client:
    """Create a Supabase client using the service role key."""
    if not settings.supabase_url or not settings.supabase_service_role_key:
        raise RuntimeError(
            "SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set"
        )
    timeout = settings.request_timeout_seconds
    return create_client(
        settings.supabase_url,
        settings.supabase_service_role_key,
        options=ClientOptions(
            postgrest_client_timeout=timeout,
            storage_client_timeout=int(timeout),
        ),
    )
