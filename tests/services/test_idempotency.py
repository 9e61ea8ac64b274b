"""Tests for event id derivation and the idempotency ledger."""

import json
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from domo_ingest.core.exceptions import DuplicateEventError, IdempotencyLedgerError
from domo_ingest.models.events import EventKind, InboundEvent
from domo_ingest.services.idempotency import (
    LEDGER_TABLE,
    IdempotencyGuard,
    LedgerRetentionPolicy,
    derive_event_id,
    requires_idempotency,
)
from fakes import CONVERSATION_ID, FakeSupabase


def _raw(payload: dict[str, Any]) -> tuple[InboundEvent, bytes]:
    body = json.dumps(payload).encode()
    return InboundEvent.from_payload(payload), body


def _tool_call(title: str) -> dict[str, Any]:
    return {
        "event_type": "conversation.tool_call",
        "conversation_id": CONVERSATION_ID,
        "data": {"name": "fetch_video", "args": {"title": title}},
    }


class TestRequiresIdempotency:
    def test_guarded_kinds(self) -> None:
        assert requires_idempotency(EventKind.TOOL_CALL) is True
        assert requires_idempotency(EventKind.OBJECTIVE_COMPLETED) is True

    def test_lifecycle_not_guarded(self) -> None:
        assert requires_idempotency(EventKind.CONVERSATION_ENDED) is False
        assert requires_idempotency(EventKind.TRANSCRIPTION_READY) is False


class TestDeriveEventId:
    def test_explicit_id_wins(self) -> None:
        event, body = _raw({**_tool_call("A"), "event_id": "evt_42"})
        assert derive_event_id(event, body) == "explicit:evt_42"

    def test_same_event_same_id(self) -> None:
        first, body1 = _raw(_tool_call("Dashboard Tour"))
        second, body2 = _raw(_tool_call("Dashboard Tour"))
        assert derive_event_id(first, body1) == derive_event_id(second, body2)

    def test_key_order_does_not_matter(self) -> None:
        payload = {
            "event_type": "application.objective_completed",
            "conversation_id": CONVERSATION_ID,
            "properties": {
                "objective_name": "greeting_and_qualification",
                "output_variables": {"first_name": "Jane", "email": "a@b.co"},
            },
        }
        reordered = {
            "properties": {
                "output_variables": {"email": "a@b.co", "first_name": "Jane"},
                "objective_name": "greeting_and_qualification",
            },
            "conversation_id": CONVERSATION_ID,
            "event_type": "application.objective_completed",
        }
        assert derive_event_id(*_raw(payload)) == derive_event_id(*_raw(reordered))

    def test_different_tool_arguments_differ(self) -> None:
        assert derive_event_id(*_raw(_tool_call("A"))) != derive_event_id(*_raw(_tool_call("B")))

    def test_fingerprint_prefix(self) -> None:
        assert derive_event_id(*_raw(_tool_call("A"))).startswith("fp:")

    def test_body_hash_when_nothing_identifies_event(self) -> None:
        event = InboundEvent.from_payload({})
        assert derive_event_id(event, b"{}").startswith("body:")


class TestIdempotencyGuard:
    """The ledger's unique key decides; a redelivery is reported as duplicate."""

    @pytest.mark.asyncio
    async def test_first_delivery_processed_then_duplicate(self) -> None:
        db = FakeSupabase()
        guard = IdempotencyGuard(db)
        event, body = _raw(_tool_call("Dashboard Tour"))

        first = await guard.should_process(event, body)
        second = await guard.should_process(event, body)

        assert first.is_duplicate is False
        assert first.duplicate is None
        assert second.is_duplicate is True
        assert first.event_id == second.event_id
        assert isinstance(second.duplicate, DuplicateEventError)
        assert second.duplicate.event_id == second.event_id
        assert second.duplicate.code == "DUPLICATE_EVENT"
        (row,) = db.rows(LEDGER_TABLE)
        assert row["event_id"] == first.event_id
        assert row["conversation_id"] == CONVERSATION_ID
        assert row["event_type"] == "conversation.tool_call"

    @pytest.mark.asyncio
    async def test_distinct_events_both_processed(self) -> None:
        db = FakeSupabase()
        guard = IdempotencyGuard(db)
        assert (await guard.should_process(*_raw(_tool_call("A")))).is_duplicate is False
        assert (await guard.should_process(*_raw(_tool_call("B")))).is_duplicate is False
        assert len(db.rows(LEDGER_TABLE)) == 2

    @pytest.mark.asyncio
    async def test_ledger_failure_raises(self) -> None:
        db = FakeSupabase()
        db.fail_tables.add(LEDGER_TABLE)
        with pytest.raises(IdempotencyLedgerError) as exc_info:
            await IdempotencyGuard(db).should_process(*_raw(_tool_call("A")))
        assert exc_info.value.event_id.startswith("fp:")
        assert exc_info.value.status_code == 503


class TestLedgerRetention:
    def test_unlimited_retention_has_no_cutoff(self) -> None:
        assert LedgerRetentionPolicy().cutoff() is None

    def test_cutoff(self) -> None:
        now = datetime(2025, 3, 10, tzinfo=UTC)
        assert LedgerRetentionPolicy(7).cutoff(now) == datetime(2025, 3, 3, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_prune_deletes_only_old_rows(self) -> None:
        now = datetime(2025, 3, 10, tzinfo=UTC)
        db = FakeSupabase()
        db.seed(
            LEDGER_TABLE,
            [
                {"event_id": "old", "processed_at": (now - timedelta(days=30)).isoformat()},
                {"event_id": "recent", "processed_at": (now - timedelta(days=1)).isoformat()},
            ],
        )
        deleted = await IdempotencyGuard(db).prune(LedgerRetentionPolicy(7), now)
        assert deleted == 1
        assert [r["event_id"] for r in db.rows(LEDGER_TABLE)] == ["recent"]

    @pytest.mark.asyncio
    async def test_prune_noop_without_retention(self) -> None:
        db = FakeSupabase()
        assert await IdempotencyGuard(db).prune(LedgerRetentionPolicy()) == 0
        assert db.calls == []
