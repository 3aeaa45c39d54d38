"""Supabase client and goal store wiring."""

from supabase import create_client, Client

from stakeit.config import get_settings
from stakeit.store.base import GoalStore
from stakeit.store.memory import InMemoryGoalStore
from stakeit.store.supabase_store import SupabaseGoalStore

_supabase_client: Client | None = None
_store: GoalStore | None = None


def get_supabase() -> Client:
    """Get Supabase client instance (service role, bypasses RLS)."""
    global _supabase_client
    
    if _supabase_client is None:
        settings = get_settings()
        _supabase_client = create_client(
            settings.supabase_url,
            settings.supabase_service_key or settings.supabase_key
        )
    
    return _supabase_client


def get_store() -> GoalStore:
    """Get the goal store for the configured backend."""
    global _store
    
    if _store is None:
        settings = get_settings()
        if settings.store_backend == "supabase":
            _store = SupabaseGoalStore(get_supabase())
        else:
            _store = InMemoryGoalStore()
    
    return _store
