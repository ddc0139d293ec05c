"""HTTP clients for the collections backend."""

from ar_sync.clients.supabase import SupabaseClient

__all__ = ["SupabaseClient"]
