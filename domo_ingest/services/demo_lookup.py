"""Read-only lookups against demo-owned tables."""

from __future__ import annotations

import logging
from typing import Any

from domo_ingest.core.circuit_breaker import breaker_for
from domo_ingest.core.exceptions import DatabaseError

logger = logging.getLogger(__name__)

DEMO_COLUMNS = "id, name, metadata, cta_title, cta_message, cta_button_text, cta_button_url"


class DemoLookup:
    """Resolves demos, videos and conversation details for webhook events."""

    def __init__(self, db: Any) -> None:
        self._db = db

    def _first(self, table: str, columns: str, filters: dict[str, Any]) -> dict[str, Any] | None:
        breaker = breaker_for(table)
        breaker.check()
        try:
            query = self._db.table(table).select(columns)
            for column, value in filters.items():
                query = query.eq(column, value)
            result = query.limit(1).execute()
        except Exception as e:
            breaker.record_failure()
            logger.exception("Lookup failed", extra={"table": table, "filters": filters})
            raise DatabaseError(f"Failed to query {table}: {e}") from e
        breaker.record_success()
        data = result.data or []
        return data[0] if data else None

    async def find_demo_by_conversation_id(self, conversation_id: str) -> dict[str, Any] | None:
        """Find the demo currently bound to a Tavus conversation.

        Args:
            conversation_id: Tavus conversation ID.

        Returns:
            The demo row, or None if no demo owns the conversation.
        """
        return self._first("demos", DEMO_COLUMNS, {"tavus_conversation_id": conversation_id})

    async def find_demo_by_id(self, demo_id: str) -> dict[str, Any] | None:
        return self._first("demos", DEMO_COLUMNS, {"id": demo_id})

    async def find_conversation_detail(self, conversation_id: str) -> dict[str, Any] | None:
        return self._first(
            "conversation_details",
            "tavus_conversation_id, status, started_at, completed_at",
            {"tavus_conversation_id": conversation_id},
        )

    async def find_demo_video(self, demo_id: str, title: str) -> dict[str, Any] | None:
        return self._first(
            "demo_videos", "id, title, storage_url", {"demo_id": demo_id, "title": title}
        )
