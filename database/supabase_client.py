import threading

from supabase import Client, ClientOptions, create_client

from app.core.config import settings

# Webhooks and storefront script requests run in FastAPI's threadpool;
# each worker thread keeps its own client and HTTP connection pool.
_thread_local = threading.local()

POSTGREST_TIMEOUT_SECONDS = 10


def get_supabase_client() -> Client:
    """Get the calling thread's Supabase client, creating it on first use."""
    if not settings.supabase_url or not settings.supabase_secret_key:
        raise RuntimeError(
            "Supabase credentials not configured. "
            "Set SUPABASE_URL and SUPABASE_SECRET_KEY, or switch SETTINGS_BACKEND/SESSION_BACKEND to memory."
        )

    client = getattr(_thread_local, "client", None)
    if client is None:
        client = create_client(
            settings.supabase_url,
            settings.supabase_secret_key,
            options=ClientOptions(postgrest_client_timeout=POSTGREST_TIMEOUT_SECONDS),
        )
        _thread_local.client = client
    return client


def reset_supabase_client() -> None:
    """Drop this thread's client so the next call reconnects (used after connection errors)."""
    if hasattr(_thread_local, "client"):
        delattr(_thread_local, "client")
