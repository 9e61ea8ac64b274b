"""In-memory tracker for contained ingestion failures.

Webhook failures never reach the provider as error statuses, so this is
where they become visible: each contained failure is recorded with the
pipeline stage, error type and the table/event context, and summarized for
the ``/health/ingestion`` endpoint.
"""

import logging
import threading
import time
from collections import deque
from typing import Any

logger = logging.getLogger(__name__)

MAX_ERRORS = 1000


class ErrorTracker:
    """Singleton ring buffer of recent failures, keyed by stage and type."""

    _instance: "ErrorTracker | None" = None
    _lock = threading.Lock()

    @classmethod
    def get_instance(cls) -> "ErrorTracker":
        """Return the singleton ErrorTracker instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    def __init__(self) -> None:
        self._errors: deque[dict[str, Any]] = deque(maxlen=MAX_ERRORS)
        self._write_lock = threading.Lock()

    def record_error(
        self,
        stage: str,
        error_type: str,
        message: str,
        **context: Any,
    ) -> None:
        """Record a failure.

        Args:
            stage: Pipeline stage ("verify", "idempotency", "handler", "write", "api").
            error_type: Exception class name or error code.
            message: Human-readable error description.
            **context: Extra fields such as table, event_type, conversation_id.
        """
        entry = {
            "stage": stage,
            "error_type": error_type,
            "message": message,
            "timestamp": time.time(),
            **context,
        }
        with self._write_lock:
            self._errors.append(entry)

    def get_recent_errors(self, limit: int = 50) -> list[dict[str, Any]]:
        """Return the most recent errors, newest first."""
        with self._write_lock:
            items = list(self._errors)
        items.reverse()
        return items[:limit]

    def get_error_summary(self, period_seconds: int = 3600) -> dict[str, Any]:
        """Count errors inside the window by stage, type and table."""
        cutoff = time.time() - period_seconds
        with self._write_lock:
            items = [entry for entry in self._errors if entry["timestamp"] >= cutoff]

        by_stage: dict[str, int] = {}
        by_type: dict[str, int] = {}
        by_table: dict[str, int] = {}
        for entry in items:
            by_stage[entry["stage"]] = by_stage.get(entry["stage"], 0) + 1
            by_type[entry["error_type"]] = by_type.get(entry["error_type"], 0) + 1
            table = entry.get("table")
            if table:
                by_table[table] = by_table.get(table, 0) + 1

        return {
            "total": len(items),
            "by_stage": by_stage,
            "by_type": by_type,
            "by_table": by_table,
            "period_seconds": period_seconds,
        }

    def reset(self) -> None:
        """Clear all tracked errors."""
        with self._write_lock:
            self._errors.clear()
