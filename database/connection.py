import functools
import logging
import time
from typing import Callable, TypeVar

import httpx
from supabase import Client

from app.core.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_ERRORS = (httpx.RemoteProtocolError, httpx.ConnectError, httpx.ReadTimeout)


def uses_supabase() -> bool:
    """Whether any configured store lives in Supabase."""
    return settings.settings_backend == "supabase" or settings.session_backend == "supabase"


def init_db():
    """Verify the Supabase connection when a Supabase-backed store is configured.

    Note: Schema is managed via Supabase migrations (see database/schema.py), not here.
    """
    if not uses_supabase():
        logger.info("No Supabase-backed store configured, skipping database check")
        return

    if not settings.supabase_url or not settings.supabase_secret_key:
        logger.warning("Supabase credentials not configured. Database features disabled.")
        return

    try:
        from .supabase_client import get_supabase_client
        client = get_supabase_client()
        client.table("shops").select("shop_domain").limit(1).execute()
        logger.info("Supabase connection verified")
    except Exception as e:
        logger.warning(f"Supabase connection check failed: {e}")
        logger.warning("Make sure migrations have been run and credentials are correct.")


def get_db() -> Client:
    """Get database client - Supabase compatible."""
    from .supabase_client import get_supabase_client
    return get_supabase_client()


def with_retry(
    max_retries: int = 2,
    delay: float = 0.1,
    retry_on: tuple[type[Exception], ...] = RETRYABLE_ERRORS,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator that retries a repository call on transient connection errors.

    Between attempts the calling thread's Supabase client is dropped, so the
    retry runs on a fresh connection pool. The last error is re-raised once
    the retries are used up.

    Args:
        max_retries: Extra attempts after the first one (default 2)
        delay: Seconds to wait before each retry (default 0.1)
        retry_on: Exception types worth retrying
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> T:
            from .supabase_client import reset_supabase_client

            attempt = 0
            while True:
                try:
                    return func(*args, **kwargs)
                except retry_on as e:
                    if attempt >= max_retries:
                        logger.error(f"{func.__name__} failed after {max_retries} retries: {e}")
                        raise
                    attempt += 1
                    logger.warning(f"{func.__name__} hit {type(e).__name__}, retrying ({attempt}/{max_retries})")
                    reset_supabase_client()
                    time.sleep(delay)
        return wrapper
    return decorator
