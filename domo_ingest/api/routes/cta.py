"""CTA click beacon posted by the demo experience page."""

import logging
from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Request

from domo_ingest.core.exceptions import DatabaseError
from domo_ingest.db.supabase import get_supabase_client
from domo_ingest.models.events import CtaClick, CtaClickRequest, HandlerContext
from domo_ingest.services.demo_lookup import DemoLookup
from domo_ingest.services.handlers import handle_cta_click
from domo_ingest.services.ingestion_writer import IngestionWriter

logger = logging.getLogger(__name__)

router = APIRouter(tags=["cta"])


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else None


@router.post("/track-cta-click")
async def track_cta_click(body: CtaClickRequest, request: Request) -> dict[str, Any]:
    """Record that a visitor clicked the demo's call to action.

    Args:
        body: Conversation and demo identifiers, plus the URL the page opened.
        request: Used for user agent and client IP.

    Returns:
        ``{"success": true}`` once the click is stored.

    Raises:
        DatabaseError: If the demo lookup or the cta_tracking write fails.
    """
    click = CtaClick(
        conversation_id=body.conversation_id,
        demo_id=body.demo_id,
        cta_url=body.cta_url,
        user_agent=request.headers.get("user-agent"),
        ip_address=_client_ip(request),
    )

    db = get_supabase_client()
    demo = await DemoLookup(db).find_demo_by_id(click.demo_id)
    if demo is None:
        logger.warning(
            "CTA click for unknown demo",
            extra={"demo_id": click.demo_id, "conversation_id": click.conversation_id},
        )

    ctx = HandlerContext(
        conversation_id=click.conversation_id,
        demo=demo,
        received_at=datetime.now(UTC),
    )
    report = await IngestionWriter(db).persist_all(handle_cta_click(click, ctx).writes)
    if not report.ok:
        raise DatabaseError("Failed to record CTA click")

    logger.info(
        "CTA click recorded",
        extra={"demo_id": click.demo_id, "conversation_id": click.conversation_id},
    )
    return {"success": True}
