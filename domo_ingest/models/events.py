"""Models for inbound Tavus webhook events and the pipeline results built from them."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field

from domo_ingest.core.exceptions import DuplicateEventError


class EventKind(str, Enum):
    """Logical family of an inbound provider event."""

    CONVERSATION_STARTED = "conversation_started"
    CONVERSATION_ENDED = "conversation_ended"
    CONVERSATION_COMPLETED = "conversation_completed"
    TRANSCRIPTION_READY = "transcription_ready"
    PERCEPTION_ANALYSIS = "perception_analysis"
    TOOL_CALL = "tool_call"
    OBJECTIVE_COMPLETED = "objective_completed"
    UNKNOWN = "unknown"


class ObjectiveKind(str, Enum):
    """Objective families that own an analytics table."""

    QUALIFICATION = "qualification"
    PRODUCT_INTEREST = "product_interest"
    VIDEO_SHOWCASE = "video_showcase"
    CTA = "cta"
    UNKNOWN = "unknown"


class ToolKind(str, Enum):
    """Agent tool calls with a server-side effect."""

    VIDEO = "video"
    CONTROL = "control"
    CTA = "cta"
    UNKNOWN = "unknown"


class ConversationStatus(str, Enum):
    """Status values stored on conversation_details."""

    ACTIVE = "active"
    COMPLETED = "completed"
    ENDED = "ended"


class InboundEvent(BaseModel):
    """A decoded webhook body.

    The provider's schema varies by event type and API version, so only the
    envelope is typed. ``payload`` keeps the full object for extraction
    strategies that look beyond ``properties`` and ``data``.
    """

    event_type: str = Field("", description="Provider event type tag")
    conversation_id: str | None = Field(None, description="Tavus conversation ID")
    properties: dict[str, Any] = Field(default_factory=dict)
    data: dict[str, Any] = Field(default_factory=dict)
    payload: dict[str, Any] = Field(default_factory=dict)
    received_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def from_payload(
        cls, payload: dict[str, Any], received_at: datetime | None = None
    ) -> InboundEvent:
        """Build an event from a decoded JSON object.

        Args:
            payload: The decoded webhook body.
            received_at: Arrival time; defaults to now.

        Returns:
            The event envelope.
        """
        properties = payload.get("properties")
        data = payload.get("data")
        properties = properties if isinstance(properties, dict) else {}
        data = data if isinstance(data, dict) else {}

        event_type = payload.get("event_type") or payload.get("type") or payload.get("event") or ""
        conversation_id = (
            payload.get("conversation_id")
            or data.get("conversation_id")
            or properties.get("conversation_id")
        )

        return cls(
            event_type=str(event_type),
            conversation_id=str(conversation_id) if conversation_id else None,
            properties=properties,
            data=data,
            payload=payload,
            received_at=received_at or datetime.now(UTC),
        )

    @property
    def normalized_type(self) -> str:
        return self.event_type.strip().lower()


class CtaClickRequest(BaseModel):
    """Click beacon posted by the demo experience page."""

    conversation_id: str = Field(..., min_length=1)
    demo_id: str = Field(..., min_length=1)
    cta_url: str | None = None


@dataclass(frozen=True)
class CtaClick:
    """A CTA click enriched with request metadata."""

    conversation_id: str
    demo_id: str
    cta_url: str | None = None
    user_agent: str | None = None
    ip_address: str | None = None


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of webhook authentication."""

    valid: bool
    method: Literal["hmac", "token", "none"]
    reason: str | None = None


@dataclass(frozen=True)
class IdempotencyDecision:
    """Result of the ledger gate for one event."""

    is_duplicate: bool
    event_id: str
    duplicate: DuplicateEventError | None = None


@dataclass(frozen=True)
class ToolCall:
    """A normalized agent tool invocation."""

    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    call_id: str | None = None


@dataclass
class WriteOperation:
    """One logical row to persist.

    Attributes:
        table: Target table.
        key_columns: Natural key; used as the upsert conflict target.
        patch: Column values to write. Omitted columns keep existing values.
        union_columns: Array columns merged with the existing row as an
            ordered, de-duplicated union.
        defaults: Values written only when the existing row lacks them.
        ignore_existing: Insert only if no row with this key exists.
        archive_columns: Columns sanitized before the write.
        mode: "upsert" by key, or "update" an existing row by key.
    """

    table: str
    key_columns: tuple[str, ...]
    patch: dict[str, Any]
    union_columns: tuple[str, ...] = ()
    defaults: dict[str, Any] = field(default_factory=dict)
    ignore_existing: bool = False
    archive_columns: tuple[str, ...] = ("raw_payload",)
    mode: Literal["upsert", "update"] = "upsert"


@dataclass(frozen=True)
class BroadcastEffect:
    """Push an event to the demo's realtime channel."""

    demo_id: str
    event: str
    payload: dict[str, Any]


@dataclass(frozen=True)
class PlayVideoEffect:
    """Resolve a demo video by title, sign its URL and broadcast play_video."""

    demo_id: str
    title: str


Effect = BroadcastEffect | PlayVideoEffect


@dataclass
class HandlerContext:
    """Lookups resolved once per event and shared by every handler.

    Attributes:
        conversation_id: Tavus conversation ID.
        demo: The owning demo row, or None if unresolved.
        conversation_detail: Existing conversation_details row, if loaded.
        received_at: Event arrival time.
    """

    conversation_id: str | None
    demo: dict[str, Any] | None = None
    conversation_detail: dict[str, Any] | None = None
    received_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def demo_id(self) -> str | None:
        if not self.demo:
            return None
        demo_id = self.demo.get("id")
        return str(demo_id) if demo_id else None


@dataclass
class HandlerResult:
    """Persistence operations and external effects produced by a handler."""

    writes: list[WriteOperation] = field(default_factory=list)
    effects: list[Effect] = field(default_factory=list)

    def extend(self, other: HandlerResult) -> None:
        self.writes.extend(other.writes)
        self.effects.extend(other.effects)


@dataclass(frozen=True)
class WriteResult:
    """Outcome of one table write."""

    ok: bool
    table: str
    error: str | None = None


@dataclass
class IngestionReport:
    """Aggregated outcome of a batch of writes."""

    results: list[WriteResult] = field(default_factory=list)

    @property
    def succeeded(self) -> list[str]:
        return [r.table for r in self.results if r.ok]

    @property
    def failures(self) -> dict[str, str]:
        return {r.table: r.error or "unknown error" for r in self.results if not r.ok}

    @property
    def ok(self) -> bool:
        return all(r.ok for r in self.results)

    @property
    def partial(self) -> bool:
        return bool(self.failures) and bool(self.succeeded)
