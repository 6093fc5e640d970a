# =============================================================================
# ops_core/data/__init__.py
# Remote store contract and its Supabase implementation
# =============================================================================

from .remote_store import ChangeEvent, SubscriptionHandle, RemoteStore
from .supabase_client import (
    SupabaseRemoteStore,
    create_supabase_store,
    translate_remote_error,
    AUTH_ERROR_CODES,
)

__all__ = [
    "ChangeEvent",
    "SubscriptionHandle",
    "RemoteStore",
    "SupabaseRemoteStore",
    "create_supabase_store",
    "translate_remote_error",
    "AUTH_ERROR_CODES",
]
