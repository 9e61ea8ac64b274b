"""Supabase client module for database operations."""

import logging
from typing import Any

from supabase import Client, create_client

from domo_ingest.core.config import settings
from domo_ingest.core.exceptions import DatabaseError

logger = logging.getLogger(__name__)

# Postgres SQLSTATE for unique_violation
UNIQUE_VIOLATION = "23505"


class SupabaseClient:
    """Singleton Supabase client for backend operations.

    Uses the service-role key: webhook ingestion writes across tables that
    row-level security would otherwise hide from the anon role.
    """

    _client: Client | None = None

    @classmethod
    def get_client(cls) -> Client:
        """Get or create the Supabase client singleton.

        Returns:
            Initialized Supabase client.

        Raises:
            DatabaseError: If client initialization fails.
        """
        if cls._client is None:
            try:
                cls._client = create_client(
                    settings.SUPABASE_URL,
                    settings.SUPABASE_SERVICE_ROLE_KEY.get_secret_value(),
                )
                logger.info("Supabase client initialized successfully")
            except Exception as e:
                logger.exception("Failed to initialize Supabase client")
                raise DatabaseError(f"Failed to initialize database connection: {e}") from e
        return cls._client

    @classmethod
    def reset_client(cls) -> None:
        """Reset the client singleton (useful for testing)."""
        cls._client = None


def get_supabase_client() -> Client:
    """Get Supabase client for dependency injection.

    Returns:
        Supabase client instance.
    """
    return SupabaseClient.get_client()


def is_unique_violation(exc: Exception) -> bool:
    """Check whether a PostgREST error is a unique-constraint violation.

    supabase-py raises ``postgrest.exceptions.APIError`` carrying the
    Postgres SQLSTATE in ``code``; older clients only expose it in the
    message text.
    """
    code: Any = getattr(exc, "code", None)
    if code == UNIQUE_VIOLATION:
        return True
    text = str(exc)
    return UNIQUE_VIOLATION in text or "duplicate key value" in text
