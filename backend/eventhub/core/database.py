"""
Database connections: Supabase client setup.
"""

from functools import lru_cache
from supabase import create_client, Client

from eventhub.config import get_settings


@lru_cache
def get_supabase_client() -> Client:
    """Get the Supabase client (singleton).

    Uses the service_role key when configured so engine writes (counters,
    recurrence instances) are not blocked by RLS; falls back to the anon key.
    """
    settings = get_settings()
    key = settings.SUPABASE_SERVICE_KEY or settings.SUPABASE_KEY
    return create_client(settings.SUPABASE_URL, key)
