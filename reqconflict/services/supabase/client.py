"""Supabase client configuration and initialization.

The backend uses the service role key when available: Celery workers run
without a user JWT, and analysis scopes are authorized by the caller.

CONNECTION STABILITY:
Uses HTTP/1.1 instead of HTTP/2 to avoid connection multiplexing issues
with Supabase/Cloudflare that cause ConnectionTerminated errors.
"""

from functools import lru_cache

import httpx
import structlog
from supabase import Client, create_client
from supabase.lib.client_options import SyncClientOptions

from reqconflict.core.config import get_settings

logger = structlog.get_logger(__name__)

_HTTP_TIMEOUT = httpx.Timeout(30.0, connect=10.0)
_HTTP_LIMITS = httpx.Limits(max_keepalive_connections=5, max_connections=10)


def _create_http_client() -> httpx.Client:
    """Create an httpx client with HTTP/1.1 and connection-level retries."""
    transport = httpx.HTTPTransport(retries=3, http2=False)
    return httpx.Client(
        transport=transport,
        timeout=_HTTP_TIMEOUT,
        limits=_HTTP_LIMITS,
    )


def _create_supabase_client() -> Client | None:
    """Create and configure the Supabase client.

    Returns:
        Configured Supabase client or None if not configured.
    """
    settings = get_settings()
    key = settings.supabase_service_key or settings.supabase_key

    if not settings.supabase_url or not key:
        logger.warning(
            "supabase_not_configured",
            has_url=bool(settings.supabase_url),
            has_key=bool(key),
        )
        return None

    try:
        options = SyncClientOptions(httpx_client=_create_http_client())
        client = create_client(
            supabase_url=settings.supabase_url,
            supabase_key=key,
            options=options,
        )
        logger.info(
            "supabase_client_created",
            using_service_key=bool(settings.supabase_service_key),
            http_version="1.1",
        )
        return client
    except Exception as e:
        logger.error("supabase_client_creation_failed", error=str(e))
        return None


@lru_cache(maxsize=1)
def get_supabase_client() -> Client | None:
    """Get cached Supabase client instance.

    Returns:
        Supabase client or None if not configured.
    """
    return _create_supabase_client()
