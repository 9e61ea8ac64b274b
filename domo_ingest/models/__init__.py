"""Models package for the ingestion service."""

from domo_ingest.models.events import (
    BroadcastEffect,
    ConversationStatus,
    CtaClick,
    CtaClickRequest,
    EventKind,
    HandlerContext,
    HandlerResult,
    IdempotencyDecision,
    InboundEvent,
    IngestionReport,
    ObjectiveKind,
    PlayVideoEffect,
    ToolCall,
    ToolKind,
    VerificationResult,
    WriteOperation,
    WriteResult,
)

__all__ = [
    "BroadcastEffect",
    "ConversationStatus",
    "CtaClick",
    "CtaClickRequest",
    "EventKind",
    "HandlerContext",
    "HandlerResult",
    "IdempotencyDecision",
    "InboundEvent",
    "IngestionReport",
    "ObjectiveKind",
    "PlayVideoEffect",
    "ToolCall",
    "ToolKind",
    "VerificationResult",
    "WriteOperation",
    "WriteResult",
]
