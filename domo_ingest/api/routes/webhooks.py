"""Tavus webhook endpoint.

Receives conversation lifecycle, objective, perception and tool-call events.
The provider retries anything that is not a 2xx, so every outcome other than
an authentication failure or an undecodable body is acknowledged with 200;
processing failures are logged and tracked instead.
"""

import json
import logging
from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Query, Request

from domo_ingest.core.config import settings
from domo_ingest.core.error_tracker import ErrorTracker
from domo_ingest.core.exceptions import (
    AuthenticationError,
    DatabaseError,
    IdempotencyLedgerError,
    MalformedPayloadError,
)
from domo_ingest.db.supabase import get_supabase_client
from domo_ingest.models.events import InboundEvent
from domo_ingest.security.signature import VerifierConfig, verify_webhook
from domo_ingest.services.classification import classify_event
from domo_ingest.services.demo_lookup import DemoLookup
from domo_ingest.services.event_router import EventRouter
from domo_ingest.services.idempotency import IdempotencyGuard, requires_idempotency
from domo_ingest.services.ingestion_writer import IngestionWriter
from domo_ingest.services.realtime import EffectRunner, RealtimeBroadcaster

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])

_ACK: dict[str, Any] = {"received": True}


def get_verifier_config() -> VerifierConfig:
    return VerifierConfig.from_settings(settings)


def _decode_body(raw_body: bytes) -> dict[str, Any]:
    """Decode the request body as a JSON object.

    Raises:
        MalformedPayloadError: If the body is not valid JSON or not an object.
    """
    try:
        payload = json.loads(raw_body)
    except (ValueError, UnicodeDecodeError, RecursionError) as e:
        raise MalformedPayloadError() from e
    if not isinstance(payload, dict):
        raise MalformedPayloadError("Webhook payload must be a JSON object")
    return payload


def build_event_router(db: Any) -> EventRouter:
    """Wire the router with lookups, writer and realtime effects for one request."""
    lookup = DemoLookup(db)
    effects = EffectRunner(db, RealtimeBroadcaster.from_settings(), lookup)
    return EventRouter(lookup, IngestionWriter(db), effects)


@router.post("/webhook")
async def tavus_webhook(
    request: Request,
    t: str | None = Query(None, description="Callback URL token"),
    token: str | None = Query(None, description="Callback URL token (alias)"),
) -> dict[str, Any]:
    """Receive a Tavus webhook event.

    Steps:
        1. Authenticate the raw body (HMAC signature or callback token).
        2. Decode the JSON object.
        3. Classify the event.
        4. Gate tool calls and objective completions through the ledger.
        5. Route to handlers; failures are logged, never surfaced.

    Returns:
        ``{"received": true}`` for every accepted request.

    Raises:
        AuthenticationError: On signature or token failure (401).
        MalformedPayloadError: If the body is not a JSON object (400).
    """
    received_at = datetime.now(UTC)

    # Step 1: authenticate against the exact bytes received
    raw_body = await request.body()
    verification = verify_webhook(raw_body, request.headers, t or token, get_verifier_config())
    if not verification.valid:
        logger.warning(
            "Webhook authentication failed",
            extra={"method": verification.method, "reason": verification.reason},
        )
        ErrorTracker.get_instance().record_error(
            stage="auth",
            error_type="AuthenticationError",
            message=verification.reason or "authentication failed",
        )
        raise AuthenticationError()

    # Step 2: decode
    payload = _decode_body(raw_body)

    # Step 3: classify
    event = InboundEvent.from_payload(payload, received_at=received_at)
    kind = classify_event(event)
    logger.info(
        "Received Tavus webhook",
        extra={
            "event_type": event.event_type,
            "event_kind": kind.value,
            "conversation_id": event.conversation_id,
            "auth_method": verification.method,
        },
    )

    try:
        db = get_supabase_client()
    except DatabaseError as e:
        logger.error(
            "Database unavailable - webhook acknowledged without processing",
            extra={"event_type": event.event_type, "error": e.message},
        )
        ErrorTracker.get_instance().record_error(
            stage="router", error_type=e.code, message=e.message
        )
        return _ACK

    # Step 4: idempotency gate
    if requires_idempotency(kind):
        try:
            decision = await IdempotencyGuard(db).should_process(event, raw_body)
        except IdempotencyLedgerError as e:
            logger.error(
                "Idempotency ledger unavailable",
                extra={
                    "event_id": e.event_id,
                    "event_type": event.event_type,
                    "conversation_id": event.conversation_id,
                    "error": e.message,
                    "fail_open": settings.IDEMPOTENCY_FAIL_OPEN,
                },
            )
            ErrorTracker.get_instance().record_error(
                stage="idempotency",
                error_type=e.code,
                message=e.message,
                conversation_id=event.conversation_id,
            )
            if not settings.IDEMPOTENCY_FAIL_OPEN:
                return _ACK
        else:
            if decision.is_duplicate:
                return _ACK

    # Step 5: route
    try:
        await build_event_router(db).route(event, kind)
    except Exception as e:
        logger.exception(
            "Webhook processing failed",
            extra={
                "event_type": event.event_type,
                "conversation_id": event.conversation_id,
                "error": str(e),
            },
        )
        ErrorTracker.get_instance().record_error(
            stage="router",
            error_type=type(e).__name__,
            message=str(e),
            conversation_id=event.conversation_id,
        )

    return _ACK
