"""Event handlers: pure transforms from events to writes and effects.

Handlers never touch the database. The router resolves the demo and the
existing conversation detail into a HandlerContext, calls the handlers,
then hands their WriteOperations to the IngestionWriter and their effects
to the EffectRunner. That keeps every handler unit-testable per payload
shape without HTTP or Supabase.

Tables written:
- conversation_details: lifecycle status, transcript, perception analysis
- qualification_data / product_interest_data: keyed by conversation + objective
- video_showcase_data: videos_shown / requested_videos accumulate by union
- cta_tracking: shown/clicked timestamps and the URL presented
- demos.metadata.analytics: denormalized per-conversation perception summary
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from domo_ingest.core.exceptions import UnresolvedConversationError, ValidationError
from domo_ingest.models.events import (
    BroadcastEffect,
    ConversationStatus,
    CtaClick,
    EventKind,
    HandlerContext,
    HandlerResult,
    InboundEvent,
    ObjectiveKind,
    PlayVideoEffect,
    ToolCall,
    ToolKind,
    WriteOperation,
)
from domo_ingest.security.sanitization import sanitize_analytics_payload
from domo_ingest.services.classification import classify_event, should_ingest_analytics
from domo_ingest.services.extraction import (
    extract_objective_name,
    extract_output_variables,
    extract_perception,
    extract_transcript,
    extract_video_title,
    normalize_string_list,
)

logger = logging.getLogger(__name__)

CONVERSATION_DETAILS = "conversation_details"
QUALIFICATION_DATA = "qualification_data"
PRODUCT_INTEREST_DATA = "product_interest_data"
VIDEO_SHOWCASE_DATA = "video_showcase_data"
CTA_TRACKING = "cta_tracking"
DEMOS = "demos"

_TERMINAL_STATUSES = {ConversationStatus.ENDED.value, ConversationStatus.COMPLETED.value}

ObjectiveHandler = Callable[[InboundEvent, HandlerContext], HandlerResult]
ToolHandler = Callable[[InboundEvent, HandlerContext, ToolCall], HandlerResult]


# ─────────────────────────────────────────────────────────────────────────────
# Shared helpers
# ─────────────────────────────────────────────────────────────────────────────


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _require_conversation_id(ctx: HandlerContext) -> str:
    if not ctx.conversation_id:
        raise ValidationError("Missing conversation_id", field="conversation_id")
    return ctx.conversation_id


def _require_output_variables(event: InboundEvent) -> dict[str, Any]:
    output_variables = extract_output_variables(event)
    if not output_variables:
        raise ValidationError("Missing output_variables", field="output_variables")
    return output_variables


def _analytics_row(
    event: InboundEvent, ctx: HandlerContext, objective_name: str | None
) -> dict[str, Any]:
    """Columns every objective analytics row carries."""
    row: dict[str, Any] = {
        "conversation_id": ctx.conversation_id,
        "event_type": event.event_type or None,
        "raw_payload": event.payload,
        "received_at": ctx.received_at.isoformat(),
    }
    if objective_name:
        row["objective_name"] = objective_name
    return row


def _parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _duration_seconds(started_at: Any, ended_at: datetime) -> int | None:
    started = _parse_timestamp(started_at)
    if started is None:
        return None
    if started.tzinfo is None:
        started = started.replace(tzinfo=ended_at.tzinfo)
    try:
        seconds = int((ended_at - started).total_seconds())
    except TypeError:
        logger.warning("Failed to compute conversation duration", extra={"started_at": started_at})
        return None
    return max(seconds, 0)


def ensure_conversation_detail(ctx: HandlerContext) -> WriteOperation | None:
    """Minimal conversation_details row, inserted only if none exists yet.

    Objective and tool events can arrive before any lifecycle event; this
    gives analytics rows a parent row without ever overwriting lifecycle data.
    """
    if not ctx.conversation_id or not ctx.demo_id:
        return None
    return WriteOperation(
        table=CONVERSATION_DETAILS,
        key_columns=("tavus_conversation_id",),
        patch={
            "tavus_conversation_id": ctx.conversation_id,
            "demo_id": ctx.demo_id,
            "status": ConversationStatus.ACTIVE.value,
        },
        ignore_existing=True,
        archive_columns=(),
    )


def resolve_cta_url(demo: dict[str, Any] | None, reported_url: str | None = None) -> str | None:
    """Pick the CTA URL actually presented to the visitor.

    Precedence: the admin-configured ``demos.cta_button_url``, then the URL
    reported by the client, then the ``metadata.ctaButtonUrl`` default.
    """
    demo = demo or {}
    metadata = demo.get("metadata") if isinstance(demo.get("metadata"), dict) else {}
    for candidate in (demo.get("cta_button_url"), reported_url, metadata.get("ctaButtonUrl")):
        url = _clean(candidate)
        if url:
            return url
    return None


# ─────────────────────────────────────────────────────────────────────────────
# Conversation lifecycle
# ─────────────────────────────────────────────────────────────────────────────


def _lifecycle_status_patch(kind: EventKind, ctx: HandlerContext) -> dict[str, Any]:
    existing = ctx.conversation_detail or {}
    now = ctx.received_at

    if kind == EventKind.CONVERSATION_STARTED:
        patch: dict[str, Any] = {}
        # Out-of-order delivery: never move an ended conversation back to active.
        if existing.get("status") not in _TERMINAL_STATUSES:
            patch["status"] = ConversationStatus.ACTIVE.value
        if not existing.get("started_at"):
            patch["started_at"] = now.isoformat()
        return patch

    if kind in (EventKind.CONVERSATION_ENDED, EventKind.CONVERSATION_COMPLETED):
        status = (
            ConversationStatus.COMPLETED
            if kind == EventKind.CONVERSATION_COMPLETED
            else ConversationStatus.ENDED
        )
        patch = {
            "status": status.value,
            "completed_at": existing.get("completed_at") or now.isoformat(),
        }
        duration = _duration_seconds(existing.get("started_at"), now)
        if duration is not None:
            patch["duration_seconds"] = duration
        return patch

    return {}


def handle_conversation_lifecycle(event: InboundEvent, ctx: HandlerContext) -> HandlerResult:
    """Upsert conversation_details from lifecycle, transcript and perception data.

    Transcript and perception are looked up across every known payload
    shape, so this also runs for objective or tool events that happen to
    carry them.

    Raises:
        UnresolvedConversationError: If there is data to store but no demo
            owns the conversation.
    """
    kind = classify_event(event)
    transcript = extract_transcript(event)
    perception = extract_perception(event)
    status_patch = _lifecycle_status_patch(kind, ctx)

    if transcript is None and perception is None and not status_patch:
        logger.info(
            "No transcript or perception data in event",
            extra={"event_type": event.event_type, "conversation_id": ctx.conversation_id},
        )
        return HandlerResult()

    conversation_id = _require_conversation_id(ctx)
    if not ctx.demo_id:
        raise UnresolvedConversationError(conversation_id)

    patch: dict[str, Any] = {
        "tavus_conversation_id": conversation_id,
        "demo_id": ctx.demo_id,
        "updated_at": ctx.received_at.isoformat(),
        **status_patch,
    }
    if transcript is not None:
        patch["transcript"] = transcript
    if perception is not None:
        patch["perception_analysis"] = perception

    return HandlerResult(
        writes=[
            WriteOperation(
                table=CONVERSATION_DETAILS,
                key_columns=("tavus_conversation_id",),
                patch=patch,
                archive_columns=(),
            )
        ]
    )


def has_conversation_data(event: InboundEvent) -> bool:
    """True if the event carries transcript or perception data."""
    return extract_transcript(event) is not None or extract_perception(event) is not None


# ─────────────────────────────────────────────────────────────────────────────
# Objective completions
# ─────────────────────────────────────────────────────────────────────────────


def handle_qualification(event: InboundEvent, ctx: HandlerContext) -> HandlerResult:
    """Store contact details captured by the greeting/qualification objective.

    Raises:
        ValidationError: If the conversation id or output variables are absent.
    """
    _require_conversation_id(ctx)
    output_variables = _require_output_variables(event)
    objective_name = extract_objective_name(event) or "greeting_and_qualification"

    patch = _analytics_row(event, ctx, objective_name)
    patch.update(
        {
            "first_name": _clean(output_variables.get("first_name")),
            "last_name": _clean(output_variables.get("last_name")),
            "email": _clean(output_variables.get("email")),
            "position": _clean(output_variables.get("position")),
        }
    )

    result = HandlerResult(
        writes=[
            WriteOperation(
                table=QUALIFICATION_DATA,
                key_columns=("conversation_id", "objective_name"),
                patch=patch,
            )
        ]
    )
    _add_parent_row(result, ctx)
    logger.info(
        "Qualification data captured",
        extra={"conversation_id": ctx.conversation_id, "objective_name": objective_name},
    )
    return result


def handle_product_interest(event: InboundEvent, ctx: HandlerContext) -> HandlerResult:
    """Store primary interest and pain points from product_interest_discovery."""
    _require_conversation_id(ctx)
    output_variables = _require_output_variables(event)
    objective_name = extract_objective_name(event) or "product_interest_discovery"

    patch = _analytics_row(event, ctx, objective_name)
    patch["primary_interest"] = _clean(output_variables.get("primary_interest"))
    patch["pain_points"] = normalize_string_list(output_variables.get("pain_points"))

    result = HandlerResult(
        writes=[
            WriteOperation(
                table=PRODUCT_INTEREST_DATA,
                key_columns=("conversation_id", "objective_name"),
                patch=patch,
            )
        ]
    )
    _add_parent_row(result, ctx)
    return result


def handle_video_showcase(event: InboundEvent, ctx: HandlerContext) -> HandlerResult:
    """Accumulate videos reported by the demo_video_showcase objective."""
    _require_conversation_id(ctx)
    output_variables = _require_output_variables(event)
    objective_name = extract_objective_name(event) or "demo_video_showcase"

    patch = _analytics_row(event, ctx, objective_name)
    patch["videos_shown"] = normalize_string_list(output_variables.get("videos_shown"))
    patch["requested_videos"] = normalize_string_list(output_variables.get("requested_videos"))

    result = HandlerResult(
        writes=[
            WriteOperation(
                table=VIDEO_SHOWCASE_DATA,
                key_columns=("conversation_id",),
                patch=patch,
                union_columns=("videos_shown", "requested_videos"),
            )
        ]
    )
    _add_parent_row(result, ctx)
    return result


def handle_cta_objective(event: InboundEvent, ctx: HandlerContext) -> HandlerResult:
    return _cta_shown(event, ctx, extract_objective_name(event) or "call_to_action")


def _add_parent_row(result: HandlerResult, ctx: HandlerContext) -> None:
    parent = ensure_conversation_detail(ctx)
    if parent is not None:
        result.writes.insert(0, parent)


OBJECTIVE_HANDLERS: dict[ObjectiveKind, ObjectiveHandler] = {
    ObjectiveKind.QUALIFICATION: handle_qualification,
    ObjectiveKind.PRODUCT_INTEREST: handle_product_interest,
    ObjectiveKind.VIDEO_SHOWCASE: handle_video_showcase,
    ObjectiveKind.CTA: handle_cta_objective,
}


# ─────────────────────────────────────────────────────────────────────────────
# Tool calls
# ─────────────────────────────────────────────────────────────────────────────


def handle_video_tool_call(
    event: InboundEvent, ctx: HandlerContext, tool_call: ToolCall
) -> HandlerResult:
    """Record a "video shown" tool call and queue playback on the demo page."""
    title = extract_video_title(tool_call.arguments)
    if not title:
        logger.warning(
            "Guardrail violation: video tool call without a title",
            extra={"conversation_id": ctx.conversation_id, "tool_name": tool_call.name},
        )
        return HandlerResult()

    _require_conversation_id(ctx)
    patch = _analytics_row(event, ctx, None)
    patch["videos_shown"] = [title]

    result = HandlerResult(
        writes=[
            WriteOperation(
                table=VIDEO_SHOWCASE_DATA,
                key_columns=("conversation_id",),
                patch=patch,
                union_columns=("videos_shown",),
                defaults={"objective_name": "video_showcase"},
            )
        ]
    )
    if ctx.demo_id:
        result.effects.append(PlayVideoEffect(demo_id=ctx.demo_id, title=title))
    return result


def handle_cta_tool_call(
    event: InboundEvent, ctx: HandlerContext, tool_call: ToolCall
) -> HandlerResult:
    return _cta_shown(event, ctx, tool_call.name)


def handle_control_tool_call(
    event: InboundEvent, ctx: HandlerContext, tool_call: ToolCall
) -> HandlerResult:
    """Relay pause/resume/next/close commands to the demo page; nothing is stored."""
    if not ctx.demo_id:
        raise UnresolvedConversationError(ctx.conversation_id)
    return HandlerResult(
        effects=[BroadcastEffect(demo_id=ctx.demo_id, event=tool_call.name, payload={})]
    )


def _cta_shown(event: InboundEvent, ctx: HandlerContext, objective_name: str) -> HandlerResult:
    """Record that the CTA was displayed, with the URL the visitor saw."""
    conversation_id = _require_conversation_id(ctx)
    if not ctx.demo_id:
        raise UnresolvedConversationError(conversation_id)

    demo = ctx.demo or {}
    cta_url = resolve_cta_url(demo)
    now = ctx.received_at.isoformat()

    patch = _analytics_row(event, ctx, None)
    patch.update({"demo_id": ctx.demo_id, "cta_shown_at": now, "updated_at": now})
    if cta_url:
        patch["cta_url"] = cta_url

    return HandlerResult(
        writes=[
            WriteOperation(
                table=CTA_TRACKING,
                key_columns=("conversation_id",),
                patch=patch,
                defaults={"objective_name": objective_name},
            )
        ],
        effects=[
            BroadcastEffect(
                demo_id=ctx.demo_id,
                event="show_trial_cta",
                payload={
                    "cta_title": demo.get("cta_title"),
                    "cta_message": demo.get("cta_message"),
                    "cta_button_text": demo.get("cta_button_text"),
                    "cta_button_url": cta_url,
                },
            )
        ],
    )


TOOL_HANDLERS: dict[ToolKind, ToolHandler] = {
    ToolKind.VIDEO: handle_video_tool_call,
    ToolKind.CTA: handle_cta_tool_call,
    ToolKind.CONTROL: handle_control_tool_call,
}


# ─────────────────────────────────────────────────────────────────────────────
# CTA click beacon
# ─────────────────────────────────────────────────────────────────────────────


def handle_cta_click(click: CtaClick, ctx: HandlerContext) -> HandlerResult:
    """Record a CTA click reported by the visitor's browser.

    Works even when the show_trial_cta tool call never reached the server:
    the row is created on first click.
    """
    now = ctx.received_at.isoformat()
    patch: dict[str, Any] = {
        "conversation_id": click.conversation_id,
        "demo_id": ctx.demo_id or click.demo_id,
        "cta_clicked_at": now,
        "updated_at": now,
        "user_agent": click.user_agent,
        "ip_address": click.ip_address,
    }
    cta_url = resolve_cta_url(ctx.demo, click.cta_url)
    if cta_url:
        patch["cta_url"] = cta_url

    return HandlerResult(
        writes=[
            WriteOperation(
                table=CTA_TRACKING,
                key_columns=("conversation_id",),
                patch=patch,
                defaults={"objective_name": "cta_click"},
                archive_columns=(),
            )
        ]
    )


# ─────────────────────────────────────────────────────────────────────────────
# Demo analytics summary
# ─────────────────────────────────────────────────────────────────────────────


def handle_demo_analytics(event: InboundEvent, ctx: HandlerContext) -> HandlerResult:
    """Merge sanitized perception data into ``demos.metadata.analytics``.

    The summary keeps one entry per conversation plus a conversation count,
    so dashboards can read it without scanning conversation_details.
    """
    if not should_ingest_analytics(event.event_type):
        return HandlerResult()
    perception = extract_perception(event)
    if perception is None or not ctx.conversation_id or not ctx.demo_id:
        return HandlerResult()

    demo = ctx.demo or {}
    metadata = dict(demo.get("metadata") or {})
    analytics = dict(metadata.get("analytics") or {})
    conversations = dict(analytics.get("conversations") or {})

    now = ctx.received_at.isoformat()
    conversations[ctx.conversation_id] = {
        "event_type": event.event_type,
        "received_at": now,
        "perception": sanitize_analytics_payload(perception),
    }
    analytics.update(
        {
            "conversations": conversations,
            "conversation_count": len(conversations),
            "last_updated": now,
        }
    )
    metadata["analytics"] = analytics

    return HandlerResult(
        writes=[
            WriteOperation(
                table=DEMOS,
                key_columns=("id",),
                patch={"id": ctx.demo_id, "metadata": metadata},
                archive_columns=(),
                mode="update",
            )
        ]
    )
