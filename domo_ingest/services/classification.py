"""Classification of provider event types, objective names and tool names."""

from __future__ import annotations

from domo_ingest.models.events import EventKind, InboundEvent, ObjectiveKind, ToolCall, ToolKind
from domo_ingest.services.extraction import (
    CONTROL_TOOLS,
    CTA_TOOLS,
    VIDEO_TOOLS,
    extract_objective_name,
    extract_video_title,
)

_EVENT_TYPES: dict[str, EventKind] = {
    "system.replica_joined": EventKind.CONVERSATION_STARTED,
    "system.shutdown": EventKind.CONVERSATION_ENDED,
    "conversation.ended": EventKind.CONVERSATION_ENDED,
    "conversation_ended": EventKind.CONVERSATION_ENDED,
    "application.conversation_ended": EventKind.CONVERSATION_ENDED,
    "conversation.completed": EventKind.CONVERSATION_COMPLETED,
    "conversation_completed": EventKind.CONVERSATION_COMPLETED,
    "application.conversation_completed": EventKind.CONVERSATION_COMPLETED,
    "application.transcription_ready": EventKind.TRANSCRIPTION_READY,
    "application.perception_analysis": EventKind.PERCEPTION_ANALYSIS,
    "application.objective_completed": EventKind.OBJECTIVE_COMPLETED,
    "objective_completed": EventKind.OBJECTIVE_COMPLETED,
    "conversation.objective.completed": EventKind.OBJECTIVE_COMPLETED,
}

_OBJECTIVES: dict[str, ObjectiveKind] = {
    "greeting_and_qualification": ObjectiveKind.QUALIFICATION,
    "contact_information_collection": ObjectiveKind.QUALIFICATION,
    "product_interest_discovery": ObjectiveKind.PRODUCT_INTEREST,
    "demo_video_showcase": ObjectiveKind.VIDEO_SHOWCASE,
    "call_to_action": ObjectiveKind.CTA,
}

LIFECYCLE_KINDS = frozenset(
    {
        EventKind.CONVERSATION_STARTED,
        EventKind.CONVERSATION_ENDED,
        EventKind.CONVERSATION_COMPLETED,
        EventKind.TRANSCRIPTION_READY,
        EventKind.PERCEPTION_ANALYSIS,
    }
)

# Substrings of event types whose perception data feeds the demo analytics summary.
ANALYTICS_NEEDLES: tuple[str, ...] = (
    "conversation_completed",
    "conversation_complete",
    "conversation_ended",
    "conversation_end",
    "application_conversation_completed",
    "perception",
    "analytics",
    "summary_ready",
)


def classify_event(event: InboundEvent) -> EventKind:
    """Map an event to its logical family.

    Any type containing ``tool_call`` is a tool call. An unrecognized type
    that still carries an objective name is treated as an objective
    completion, since some persona callbacks omit a meaningful type.
    """
    event_type = event.normalized_type
    kind = _EVENT_TYPES.get(event_type)
    if kind is not None:
        return kind
    if "tool_call" in event_type.replace("-", "_"):
        return EventKind.TOOL_CALL
    if extract_objective_name(event):
        return EventKind.OBJECTIVE_COMPLETED
    return EventKind.UNKNOWN


def classify_objective(objective_name: str | None) -> ObjectiveKind:
    if not objective_name:
        return ObjectiveKind.UNKNOWN
    return _OBJECTIVES.get(objective_name.strip().lower(), ObjectiveKind.UNKNOWN)


def classify_tool(tool_call: ToolCall) -> ToolKind:
    """``play_video`` with a title plays that video; without one it resumes playback."""
    name = tool_call.name
    if name in CTA_TOOLS:
        return ToolKind.CTA
    if name in VIDEO_TOOLS and (name == "fetch_video" or extract_video_title(tool_call.arguments)):
        return ToolKind.VIDEO
    if name in CONTROL_TOOLS:
        return ToolKind.CONTROL
    return ToolKind.UNKNOWN


def should_ingest_analytics(event_type: str) -> bool:
    """True for event types whose perception data updates the demo summary."""
    normalized = event_type.strip().lower().replace(".", "_").replace("-", "_")
    return any(needle in normalized for needle in ANALYTICS_NEEDLES)
