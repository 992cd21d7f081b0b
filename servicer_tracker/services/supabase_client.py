"""
Supabase client shared by the tracker services.

Returns None when the endpoint or key is missing; services treat that as
read-only demo mode.
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx
from postgrest.exceptions import APIError
from supabase import Client, create_client

from ..config import Settings, get_settings
from ..exceptions import StoreUnavailableError, TrackerError

logger = logging.getLogger(__name__)

# Errors a query can raise: rejected by PostgREST, or never reached it
STORE_ERRORS = (APIError, httpx.HTTPError)

DEMO_BANNER = "Demo Mode: Supabase is not configured, serving sample data (read-only)"

_client: Optional[Client] = None


def create_supabase_client(settings: Optional[Settings] = None) -> Optional[Client]:
    settings = settings or get_settings()
    if settings.demo_mode:
        logger.warning(f"⚠️ {DEMO_BANNER}")
        return None
    client = create_client(settings.SUPABASE_URL, settings.SUPABASE_ANON_KEY)
    logger.info(f"✅ Supabase client initialized: {settings.SUPABASE_URL}")
    return client


def get_supabase_client() -> Optional[Client]:
    """Get the global Supabase client (None in demo mode)"""
    global _client
    if _client is None:
        _client = create_supabase_client()
    return _client


def reset_supabase_client() -> None:
    global _client
    _client = None


def fetch_rows(action: str, build_query: Callable[[], Any],
               error_cls=StoreUnavailableError) -> Tuple[List[Dict[str, Any]], Optional[TrackerError]]:
    """Run a read query; failures are logged and returned, never raised."""
    try:
        response = build_query().execute()
    except STORE_ERRORS as e:
        error = error_cls.from_api_error(e, action)
        logger.error(f"❌ {error.message}", extra=error.as_log_fields())
        return [], error
    return list(response.data or []), None
