"""Webhook ingestion services: extraction, routing, handlers and persistence."""

from domo_ingest.services.demo_lookup import DemoLookup
from domo_ingest.services.event_router import EventRouter, RouteOutcome
from domo_ingest.services.idempotency import IdempotencyGuard, LedgerRetentionPolicy
from domo_ingest.services.ingestion_writer import IngestionWriter
from domo_ingest.services.realtime import EffectRunner, RealtimeBroadcaster

__all__ = [
    "DemoLookup",
    "EffectRunner",
    "EventRouter",
    "IdempotencyGuard",
    "IngestionWriter",
    "LedgerRetentionPolicy",
    "RealtimeBroadcaster",
    "RouteOutcome",
]
