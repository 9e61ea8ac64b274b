"""Event routing: classify, resolve context, run handlers, persist, run effects.

A single event may fan out to several handlers (a completed-conversation
event carrying perception data updates conversation_details and the demo
analytics summary). Each handler runs in isolation; a failure in one is
logged and reported, never allowed to stop the others.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from domo_ingest.core.error_tracker import ErrorTracker
from domo_ingest.core.exceptions import (
    DomoException,
    PartialIngestionError,
    UnresolvedConversationError,
)
from domo_ingest.models.events import (
    EventKind,
    HandlerContext,
    HandlerResult,
    InboundEvent,
    IngestionReport,
    ToolKind,
)
from domo_ingest.services.classification import (
    LIFECYCLE_KINDS,
    classify_event,
    classify_objective,
    classify_tool,
    should_ingest_analytics,
)
from domo_ingest.services.demo_lookup import DemoLookup
from domo_ingest.services.extraction import extract_objective_name, parse_tool_call
from domo_ingest.services.handlers import (
    OBJECTIVE_HANDLERS,
    TOOL_HANDLERS,
    handle_conversation_lifecycle,
    handle_demo_analytics,
    has_conversation_data,
)
from domo_ingest.services.ingestion_writer import IngestionWriter
from domo_ingest.services.realtime import EffectRunner

logger = logging.getLogger(__name__)


@dataclass
class RouteOutcome:
    """What happened to one event.

    Attributes:
        kind: Classified event family.
        handled: Names of handlers that produced output.
        skipped: Handlers skipped because the conversation has no demo.
        handler_errors: Handler name → error message for handlers that raised.
        report: Per-table write results.
        error: PartialIngestionError when any handler or write failed.
    """

    kind: EventKind
    handled: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    handler_errors: dict[str, str] = field(default_factory=dict)
    report: IngestionReport = field(default_factory=IngestionReport)
    error: PartialIngestionError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class EventRouter:
    """Dispatches decoded events to handlers and persists their output."""

    def __init__(
        self,
        lookup: DemoLookup,
        writer: IngestionWriter,
        effects: EffectRunner | None = None,
    ) -> None:
        self._lookup = lookup
        self._writer = writer
        self._effects = effects

    async def route(self, event: InboundEvent, kind: EventKind | None = None) -> RouteOutcome:
        """Route one event through every applicable handler.

        Args:
            event: The decoded event.
            kind: Pre-computed classification, if the caller already has it.

        Returns:
            RouteOutcome describing handlers run, writes made and failures.
        """
        kind = kind or classify_event(event)
        outcome = RouteOutcome(kind=kind)

        conversation_id = event.conversation_id
        if not conversation_id:
            logger.warning(
                "Webhook event without conversation_id - nothing to route",
                extra={"event_type": event.event_type},
            )
            return outcome

        plan = self._plan(event, kind)
        if not plan:
            logger.info(
                "Unhandled webhook event accepted",
                extra={
                    "event_type": event.event_type,
                    "event_kind": kind.value,
                    "conversation_id": event.conversation_id,
                },
            )
            return outcome

        ctx = await self._build_context(conversation_id, event, kind)
        combined = HandlerResult()
        for name, run in plan:
            try:
                result = run(ctx)
            except UnresolvedConversationError:
                outcome.skipped.append(name)
                logger.warning(
                    "No demo found for conversation - skipping handler",
                    extra={
                        "handler": name,
                        "event_type": event.event_type,
                        "conversation_id": event.conversation_id,
                    },
                )
                continue
            except Exception as e:
                outcome.handler_errors[name] = str(e)
                logger.exception(
                    "Error handling webhook event",
                    extra={
                        "handler": name,
                        "event_type": event.event_type,
                        "conversation_id": event.conversation_id,
                        "error": str(e),
                    },
                )
                ErrorTracker.get_instance().record_error(
                    stage="handler",
                    error_type=e.code if isinstance(e, DomoException) else type(e).__name__,
                    message=str(e),
                    handler=name,
                    event_type=event.event_type,
                    conversation_id=event.conversation_id,
                )
                continue
            if result.writes or result.effects:
                outcome.handled.append(name)
            combined.extend(result)

        outcome.report = await self._writer.persist_all(combined.writes)
        await self._run_effects(combined, event)

        failures = {**outcome.report.failures}
        for name, message in outcome.handler_errors.items():
            failures[f"handler:{name}"] = message
        if failures:
            outcome.error = PartialIngestionError(failures, outcome.report.succeeded)
            logger.error(
                "Partial ingestion failure",
                extra={
                    "event_type": event.event_type,
                    "conversation_id": event.conversation_id,
                    "failures": failures,
                    "succeeded": outcome.report.succeeded,
                },
            )
        else:
            logger.info(
                "Webhook event ingested",
                extra={
                    "event_type": event.event_type,
                    "conversation_id": event.conversation_id,
                    "handlers": outcome.handled,
                    "tables": outcome.report.succeeded,
                },
            )
        return outcome

    def _plan(self, event: InboundEvent, kind: EventKind) -> list[tuple[str, Any]]:
        """Select (name, callable(ctx)) pairs for this event."""
        plan: list[tuple[str, Any]] = []

        if kind in LIFECYCLE_KINDS or has_conversation_data(event):
            plan.append(
                ("conversation_lifecycle", lambda ctx: handle_conversation_lifecycle(event, ctx))
            )

        if kind == EventKind.OBJECTIVE_COMPLETED:
            objective_name = extract_objective_name(event)
            objective_kind = classify_objective(objective_name)
            objective_handler = OBJECTIVE_HANDLERS.get(objective_kind)
            if objective_handler is not None:
                plan.append(
                    (
                        f"objective:{objective_kind.value}",
                        lambda ctx, h=objective_handler: h(event, ctx),
                    )
                )
            else:
                logger.info(
                    "Unknown objective - not persisted",
                    extra={
                        "objective_name": objective_name,
                        "conversation_id": event.conversation_id,
                    },
                )

        elif kind == EventKind.TOOL_CALL:
            tool_call = parse_tool_call(event)
            tool_kind = classify_tool(tool_call) if tool_call else ToolKind.UNKNOWN
            tool_handler = TOOL_HANDLERS.get(tool_kind)
            if tool_call is not None and tool_handler is not None:
                plan.append(
                    (
                        f"tool:{tool_call.name}",
                        lambda ctx, h=tool_handler, call=tool_call: h(event, ctx, call),
                    )
                )
            else:
                logger.info(
                    "Unknown tool call - not persisted",
                    extra={
                        "tool_name": tool_call.name if tool_call else None,
                        "conversation_id": event.conversation_id,
                    },
                )

        if should_ingest_analytics(event.event_type):
            plan.append(("demo_analytics", lambda ctx: handle_demo_analytics(event, ctx)))

        return plan

    async def _build_context(
        self, conversation_id: str, event: InboundEvent, kind: EventKind
    ) -> HandlerContext:
        demo: dict[str, Any] | None = None
        detail: dict[str, Any] | None = None
        try:
            demo = await self._lookup.find_demo_by_conversation_id(conversation_id)
            if kind in (
                EventKind.CONVERSATION_STARTED,
                EventKind.CONVERSATION_ENDED,
                EventKind.CONVERSATION_COMPLETED,
            ):
                detail = await self._lookup.find_conversation_detail(conversation_id)
        except Exception as e:
            # Handlers that need the demo will report the conversation as unresolved.
            logger.warning(
                "Context lookup failed",
                extra={"conversation_id": conversation_id, "error": str(e)},
            )

        return HandlerContext(
            conversation_id=conversation_id,
            demo=demo,
            conversation_detail=detail,
            received_at=event.received_at,
        )

    async def _run_effects(self, result: HandlerResult, event: InboundEvent) -> None:
        if not self._effects:
            return
        for effect in result.effects:
            try:
                await self._effects.run(effect)
            except Exception as e:
                logger.warning(
                    "Webhook effect failed",
                    extra={
                        "effect": type(effect).__name__,
                        "conversation_id": event.conversation_id,
                        "error": str(e),
                    },
                )
                ErrorTracker.get_instance().record_error(
                    stage="effect",
                    error_type=type(e).__name__,
                    message=str(e),
                    conversation_id=event.conversation_id,
                )
