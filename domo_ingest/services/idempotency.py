"""Idempotency ledger for webhook side effects.

Tool calls and objective completions append to arrays and trigger
broadcasts, so a provider redelivery must not run them twice. Each such
event gets a stable ``event_id``; inserting it into
``processed_webhook_events`` is the gate. The table's unique constraint on
``event_id`` decides concurrent races, with no application lock.
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from domo_ingest.core.exceptions import DuplicateEventError, IdempotencyLedgerError
from domo_ingest.db.supabase import is_unique_violation
from domo_ingest.models.events import EventKind, IdempotencyDecision, InboundEvent
from domo_ingest.services.extraction import (
    at,
    extract_objective_name,
    extract_output_variables,
    first_found,
    parse_tool_call,
)

logger = logging.getLogger(__name__)

LEDGER_TABLE = "processed_webhook_events"

GUARDED_KINDS = frozenset({EventKind.TOOL_CALL, EventKind.OBJECTIVE_COMPLETED})

_EXPLICIT_ID_EXTRACTORS = (
    at("id"),
    at("event_id"),
    at("data", "id"),
    at("data", "event_id"),
    at("properties", "event_id"),
)


def requires_idempotency(kind: EventKind) -> bool:
    """Lifecycle and transcript upserts are naturally idempotent; only these are gated."""
    return kind in GUARDED_KINDS


def stable_hash(value: Any) -> str:
    """SHA-256 of the canonical JSON form (sorted keys, compact separators)."""
    canonical = json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def derive_event_id(event: InboundEvent, raw_body: bytes) -> str:
    """Compute the ledger key for an event.

    An explicit provider id wins. Otherwise a fingerprint is built from the
    fields that identify the logical event, so two deliveries of the same
    event agree while two different tool calls or objectives in one
    conversation do not.

    Args:
        event: The decoded event.
        raw_body: Raw request bytes, hashed when nothing else identifies the event.

    Returns:
        ``explicit:<id>``, ``fp:<sha256>`` or ``body:<sha256>``.
    """
    explicit = first_found(event.payload, _EXPLICIT_ID_EXTRACTORS)
    if isinstance(explicit, (str, int)) and str(explicit).strip():
        return f"explicit:{str(explicit).strip()}"

    tool_call = parse_tool_call(event) if "tool_call" in event.normalized_type else None
    output_variables = extract_output_variables(event)
    fields = {
        "event_type": event.normalized_type or None,
        "conversation_id": event.conversation_id,
        "objective_name": extract_objective_name(event),
        "output_variables": stable_hash(output_variables) if output_variables else None,
        "tool_name": tool_call.name if tool_call else None,
        "tool_arguments": stable_hash(tool_call.arguments) if tool_call else None,
        "tool_call_id": tool_call.call_id if tool_call else None,
        "timestamp": event.payload.get("timestamp"),
        "inference_id": first_found(
            event.payload, (at("inference_id"), at("properties", "inference_id"))
        ),
    }
    if not any(fields.values()):
        return f"body:{hashlib.sha256(raw_body).hexdigest()}"
    return f"fp:{stable_hash(fields)}"


@dataclass(frozen=True)
class LedgerRetentionPolicy:
    """How long ledger rows are kept.

    Attributes:
        retention_days: Age after which rows may be deleted; None keeps
            them forever.
    """

    retention_days: int | None = None

    def cutoff(self, now: datetime | None = None) -> datetime | None:
        if self.retention_days is None:
            return None
        return (now or datetime.now(UTC)) - timedelta(days=self.retention_days)


class IdempotencyGuard:
    """Insert-if-absent gate over the processed-events ledger."""

    def __init__(self, db: Any) -> None:
        self._db = db

    async def should_process(self, event: InboundEvent, raw_body: bytes) -> IdempotencyDecision:
        """Record the event, or report it as already handled.

        Args:
            event: The decoded event.
            raw_body: Raw request bytes.

        Returns:
            Decision with ``is_duplicate`` True when the ledger already holds
            this event id.

        Raises:
            IdempotencyLedgerError: If the ledger insert fails for any reason
                other than a unique violation.
        """
        event_id = derive_event_id(event, raw_body)
        row = {
            "event_id": event_id,
            "event_type": event.event_type or None,
            "conversation_id": event.conversation_id,
            "processed_at": event.received_at.isoformat(),
        }
        try:
            self._db.table(LEDGER_TABLE).insert(row).execute()
        except Exception as e:
            if is_unique_violation(e):
                duplicate = DuplicateEventError(event_id)
                logger.info(
                    "Duplicate webhook event - skipping handlers",
                    extra={
                        "code": duplicate.code,
                        "event_id": event_id,
                        "event_type": event.event_type,
                        "conversation_id": event.conversation_id,
                    },
                )
                return IdempotencyDecision(
                    is_duplicate=True, event_id=event_id, duplicate=duplicate
                )
            raise IdempotencyLedgerError(event_id, str(e)) from e

        return IdempotencyDecision(is_duplicate=False, event_id=event_id)

    async def prune(self, policy: LedgerRetentionPolicy, now: datetime | None = None) -> int:
        """Delete ledger rows older than the policy allows.

        Returns:
            Number of rows deleted (0 when retention is unlimited).
        """
        cutoff = policy.cutoff(now)
        if cutoff is None:
            return 0
        result = (
            self._db.table(LEDGER_TABLE)
            .delete()
            .lt("processed_at", cutoff.isoformat())
            .execute()
        )
        deleted = len(result.data or [])
        logger.info(
            "Pruned idempotency ledger",
            extra={"deleted": deleted, "cutoff": cutoff.isoformat()},
        )
        return deleted
