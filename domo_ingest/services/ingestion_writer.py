"""Multi-table writer for webhook-derived records.

Every logical row is written independently: a failure on one table is
recorded and the loop moves on, so a constraint violation on an analytics
table never undoes the conversation_details write for the same event.
"""

from __future__ import annotations

import logging
from typing import Any

from domo_ingest.core.circuit_breaker import CircuitBreakerOpen, breaker_for
from domo_ingest.core.error_tracker import ErrorTracker
from domo_ingest.models.events import IngestionReport, WriteOperation, WriteResult
from domo_ingest.security.sanitization import sanitize_analytics_payload

logger = logging.getLogger(__name__)


def union_preserving_order(existing: Any, incoming: Any) -> list[Any]:
    """Ordered union of two array values; non-list inputs count as empty."""
    merged: list[Any] = []
    for source in (existing, incoming):
        if not isinstance(source, list):
            continue
        for item in source:
            if item not in merged:
                merged.append(item)
    return merged


class IngestionWriter:
    """Persists WriteOperations through the Supabase table API.

    Args:
        db: Supabase client (or any object with the same ``table()`` API).
    """

    def __init__(self, db: Any) -> None:
        self._db = db

    async def persist(
        self,
        table: str,
        key_columns: tuple[str, ...] | list[str],
        patch: dict[str, Any],
        *,
        union_columns: tuple[str, ...] = (),
        defaults: dict[str, Any] | None = None,
        ignore_existing: bool = False,
        archive_columns: tuple[str, ...] = ("raw_payload",),
        mode: str = "upsert",
    ) -> WriteResult:
        """Write one row keyed by its natural key.

        Args:
            table: Target table.
            key_columns: Natural key columns; all must be present in ``patch``.
            patch: Column values to write.
            union_columns: Array columns merged with the stored row.
            defaults: Values applied only where the stored row has none.
            ignore_existing: Insert only if the key is absent.
            archive_columns: Columns passed through the sanitizer.
            mode: "upsert" or "update".

        Returns:
            WriteResult with ``ok`` False and the error text on failure.
        """
        key_columns = tuple(key_columns)
        missing = [col for col in key_columns if patch.get(col) in (None, "")]
        if missing:
            return self._failed(table, f"missing key column(s): {', '.join(missing)}", patch)

        breaker = breaker_for(table)
        try:
            breaker.check()
            row = self._prepare_row(patch, archive_columns)
            if union_columns or defaults:
                # Read then write, not atomic: two concurrent deliveries for the same
                # key in separate processes can each miss the other's union element.
                existing = self._fetch_existing(table, key_columns, row)
                row = self._merge_existing(row, existing, union_columns, defaults or {})
            if mode == "update":
                self._update(table, key_columns, row)
            else:
                self._upsert(table, key_columns, row, ignore_existing)
        except CircuitBreakerOpen as e:
            return self._failed(table, str(e), patch)
        except Exception as e:
            breaker.record_failure()
            return self._failed(table, str(e), patch)

        breaker.record_success()
        logger.debug("Persisted row", extra={"table": table, "mode": mode})
        return WriteResult(ok=True, table=table)

    async def apply(self, operation: WriteOperation) -> WriteResult:
        return await self.persist(
            operation.table,
            operation.key_columns,
            operation.patch,
            union_columns=operation.union_columns,
            defaults=operation.defaults,
            ignore_existing=operation.ignore_existing,
            archive_columns=operation.archive_columns,
            mode=operation.mode,
        )

    async def persist_all(self, operations: list[WriteOperation]) -> IngestionReport:
        """Apply every operation, continuing past failures.

        Returns:
            Report with one WriteResult per operation, in order.
        """
        report = IngestionReport()
        for operation in operations:
            report.results.append(await self.apply(operation))
        return report

    # ── internals ───────────────────────────────────────────────────────────

    @staticmethod
    def _prepare_row(patch: dict[str, Any], archive_columns: tuple[str, ...]) -> dict[str, Any]:
        row = dict(patch)
        for column in archive_columns:
            if column in row and row[column] is not None:
                row[column] = sanitize_analytics_payload(row[column])
        return row

    def _fetch_existing(
        self, table: str, key_columns: tuple[str, ...], row: dict[str, Any]
    ) -> dict[str, Any] | None:
        query = self._db.table(table).select("*")
        for column in key_columns:
            query = query.eq(column, row[column])
        result = query.limit(1).execute()
        data = result.data or []
        return data[0] if data else None

    @staticmethod
    def _merge_existing(
        row: dict[str, Any],
        existing: dict[str, Any] | None,
        union_columns: tuple[str, ...],
        defaults: dict[str, Any],
    ) -> dict[str, Any]:
        merged = dict(row)
        stored = existing or {}
        for column in union_columns:
            merged[column] = union_preserving_order(stored.get(column), row.get(column))
        for column, value in defaults.items():
            if stored.get(column) is None and merged.get(column) is None:
                merged[column] = value
        return merged

    def _upsert(
        self,
        table: str,
        key_columns: tuple[str, ...],
        row: dict[str, Any],
        ignore_existing: bool,
    ) -> None:
        self._db.table(table).upsert(
            row,
            on_conflict=",".join(key_columns),
            ignore_duplicates=ignore_existing,
        ).execute()

    def _update(self, table: str, key_columns: tuple[str, ...], row: dict[str, Any]) -> None:
        values = {k: v for k, v in row.items() if k not in key_columns}
        query = self._db.table(table).update(values)
        for column in key_columns:
            query = query.eq(column, row[column])
        query.execute()

    @staticmethod
    def _failed(table: str, error: str, patch: dict[str, Any]) -> WriteResult:
        conversation_id = patch.get("conversation_id") or patch.get("tavus_conversation_id")
        logger.warning(
            "Failed to persist row",
            extra={"table": table, "conversation_id": conversation_id, "error": error},
        )
        ErrorTracker.get_instance().record_error(
            stage="write",
            error_type="WriteFailed",
            message=error,
            table=table,
            conversation_id=conversation_id,
        )
        return WriteResult(ok=False, table=table, error=error)
