"""Database clients for the ingestion service."""

from domo_ingest.db.supabase import SupabaseClient, get_supabase_client, is_unique_violation

__all__ = ["SupabaseClient", "get_supabase_client", "is_unique_violation"]
