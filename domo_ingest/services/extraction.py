"""Field extraction from loosely-typed Tavus payloads.

The same logical field shows up in different places depending on event
type and provider version (``data.transcript``, ``transcript``, an
``events[]`` sub-event, ...). Each field is described by an ordered tuple
of extractors; the first one that finds a present value wins.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable, Iterable
from typing import Any

from domo_ingest.models.events import InboundEvent, ToolCall

Extractor = Callable[[dict[str, Any]], Any]


def is_present(value: Any) -> bool:
    """True for values worth storing: not None and not an empty str/list/dict."""
    if value is None:
        return False
    if isinstance(value, (str, list, dict)) and not value:
        return False
    return True


def at(*path: str) -> Extractor:
    """Extractor that walks nested dict keys."""

    def extract(payload: dict[str, Any]) -> Any:
        current: Any = payload
        for key in path:
            if not isinstance(current, dict):
                return None
            current = current.get(key)
        return current

    extract.__name__ = "at_" + "_".join(path)
    return extract


def from_sub_event(event_type: str, *path: str) -> Extractor:
    """Extractor that searches an ``events[]`` array for a typed sub-event."""
    inner = at(*path)

    def extract(payload: dict[str, Any]) -> Any:
        events = payload.get("events")
        if not isinstance(events, list):
            return None
        for sub_event in events:
            if isinstance(sub_event, dict) and sub_event.get("event_type") == event_type:
                value = inner(sub_event)
                if is_present(value):
                    return value
        return None

    return extract


def first_found(payload: dict[str, Any], extractors: Iterable[Extractor]) -> Any:
    """Run extractors in order and return the first present value, else None."""
    for extractor in extractors:
        value = extractor(payload)
        if is_present(value):
            return value
    return None


# ─────────────────────────────────────────────────────────────────────────────
# Field strategies
# ─────────────────────────────────────────────────────────────────────────────

TRANSCRIPT_EXTRACTORS: tuple[Extractor, ...] = (
    at("data", "transcript"),
    at("transcript"),
    at("properties", "transcript"),
    at("data", "messages"),
    at("messages"),
    from_sub_event("application.transcription_ready", "properties", "transcript"),
)

PERCEPTION_EXTRACTORS: tuple[Extractor, ...] = (
    at("data", "perception"),
    at("perception"),
    at("properties", "perception"),
    at("data", "analysis"),
    at("analysis"),
    at("properties", "analysis"),
    at("data", "analytics"),
    at("analytics"),
    from_sub_event("application.perception_analysis", "properties", "analysis"),
)

OBJECTIVE_NAME_EXTRACTORS: tuple[Extractor, ...] = (
    at("properties", "objective_name"),
    at("data", "objective_name"),
    at("objective_name"),
)

# Keys in ``properties`` that are envelope fields rather than captured variables.
_PROPERTY_ENVELOPE_KEYS = frozenset(
    {
        "objective_name",
        "output_variables",
        "transcript",
        "analysis",
        "perception",
        "conversation_id",
        "event_id",
        "name",
        "function",
        "arguments",
        "args",
    }
)


def _flat_properties(payload: dict[str, Any]) -> Any:
    properties = payload.get("properties")
    if not isinstance(properties, dict):
        return None
    flat = {k: v for k, v in properties.items() if k not in _PROPERTY_ENVELOPE_KEYS}
    return flat or None


OUTPUT_VARIABLE_EXTRACTORS: tuple[Extractor, ...] = (
    at("properties", "output_variables"),
    at("data", "output_variables"),
    at("output_variables"),
    _flat_properties,
)


def extract_transcript(event: InboundEvent) -> list[dict[str, Any]] | None:
    """Return the normalized transcript, or None if the event carries none."""
    raw = first_found(event.payload, TRANSCRIPT_EXTRACTORS)
    if raw is None:
        return None
    entries = normalize_transcript(raw)
    return entries or None


def extract_perception(event: InboundEvent) -> Any:
    return first_found(event.payload, PERCEPTION_EXTRACTORS)


def extract_objective_name(event: InboundEvent) -> str | None:
    name = first_found(event.payload, OBJECTIVE_NAME_EXTRACTORS)
    return str(name).strip() if isinstance(name, str) and name.strip() else None


def extract_output_variables(event: InboundEvent) -> dict[str, Any] | None:
    """Output variables from any of the shapes the provider sends.

    ``properties.output_variables``, ``data.output_variables``, top-level
    ``output_variables`` and flat variables inside ``properties`` are all
    accepted; JSON-encoded strings are decoded.
    """
    value = first_found(event.payload, OUTPUT_VARIABLE_EXTRACTORS)
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return None
    return value if isinstance(value, dict) and value else None


def normalize_transcript(raw: Any) -> list[dict[str, Any]]:
    """Coerce transcript shapes into ``[{speaker, text, timestamp}]``.

    Accepts a list of entries keyed by ``speaker``/``role`` and
    ``text``/``content``/``message``, or a single block of text.
    """
    if isinstance(raw, str):
        return [{"speaker": None, "text": raw, "timestamp": None}] if raw.strip() else []
    if not isinstance(raw, list):
        return []

    entries: list[dict[str, Any]] = []
    for item in raw:
        if isinstance(item, str):
            if item.strip():
                entries.append({"speaker": None, "text": item, "timestamp": None})
            continue
        if not isinstance(item, dict):
            continue
        text = item.get("text") or item.get("content") or item.get("message")
        if not isinstance(text, str) or not text.strip():
            continue
        entries.append(
            {
                "speaker": item.get("speaker") or item.get("role"),
                "text": text,
                "timestamp": item.get("timestamp")
                or item.get("timestamp_ms")
                or item.get("created_at"),
            }
        )
    return entries


def normalize_string_list(value: Any) -> list[str]:
    """Turn a string or list of strings into an ordered, de-duplicated list."""
    if value is None:
        return []
    items = value if isinstance(value, (list, tuple)) else [value]
    result: list[str] = []
    for item in items:
        if not isinstance(item, str):
            continue
        cleaned = strip_quotes(item)
        if cleaned and cleaned not in result:
            result.append(cleaned)
    return result


def strip_quotes(value: str) -> str:
    return value.strip().strip("\"'").strip()


# ─────────────────────────────────────────────────────────────────────────────
# Tool calls
# ─────────────────────────────────────────────────────────────────────────────

TOOL_NAME_EXTRACTORS: tuple[Extractor, ...] = (
    at("data", "name"),
    at("data", "function", "name"),
    at("name"),
    at("function", "name"),
    at("tool_name"),
    at("data", "properties", "name"),
    at("properties", "name"),
    at("properties", "function", "name"),
    at("properties", "tool_name"),
)

TOOL_ARGUMENT_EXTRACTORS: tuple[Extractor, ...] = (
    at("data", "args"),
    at("data", "arguments"),
    at("data", "function", "arguments"),
    at("args"),
    at("arguments"),
    at("function", "arguments"),
    at("data", "properties", "args"),
    at("data", "properties", "arguments"),
    at("properties", "args"),
    at("properties", "arguments"),
    at("properties", "function", "arguments"),
)

TOOL_CALL_ID_EXTRACTORS: tuple[Extractor, ...] = (
    at("data", "tool_call_id"),
    at("tool_call_id"),
    at("properties", "tool_call_id"),
)

VIDEO_TOOLS = frozenset({"fetch_video", "play_video"})
CONTROL_TOOLS = frozenset({"pause_video", "play_video", "next_video", "close_video"})
CTA_TOOLS = frozenset({"show_trial_cta", "show_cta"})
KNOWN_TOOLS = VIDEO_TOOLS | CONTROL_TOOLS | CTA_TOOLS

_TOOL_ALIASES: dict[str, str] = {
    **dict.fromkeys(("pause", "hold", "hold on", "pause video", "pause the video"), "pause_video"),
    **dict.fromkeys(
        ("resume", "play", "continue", "unpause", "start", "resume video", "play video"),
        "play_video",
    ),
    **dict.fromkeys(("next", "skip", "skip video", "next video"), "next_video"),
    **dict.fromkeys(
        ("close", "exit", "stop", "stop video", "hide video", "close video"), "close_video"
    ),
}

_TITLE_KEYS = ("title", "video_title", "videoName", "video_name")
_KEY_VALUE_TITLE = re.compile(
    r"(?:title|video_title|videoName|video_name)\s*[:=]\s*[\"'](.+?)[\"']", re.IGNORECASE
)


def canonical_tool_name(name: str) -> str | None:
    """Map alias or spoken command names to a canonical control tool."""
    normalized = re.sub(r"[.!?]+$", "", name.strip().lower())
    normalized = re.sub(r"\s+", " ", normalized)
    return _TOOL_ALIASES.get(normalized)


def parse_tool_arguments(raw: Any) -> dict[str, Any]:
    """Decode tool arguments into a dict.

    JSON object strings are decoded, a JSON string becomes ``{"title": s}``,
    and non-JSON text is treated as a quoted title, a ``title: "..."`` pair,
    or a bare title.
    """
    if isinstance(raw, dict):
        return raw
    if not isinstance(raw, str) or not raw.strip():
        return {}

    try:
        parsed = json.loads(raw)
    except ValueError:
        text = raw.strip()
        match = _KEY_VALUE_TITLE.search(text)
        if match:
            return {"title": match.group(1)}
        return {"title": strip_quotes(text)}

    if isinstance(parsed, dict):
        return parsed
    if isinstance(parsed, str):
        return {"title": strip_quotes(parsed)}
    return {}


def extract_video_title(arguments: dict[str, Any]) -> str | None:
    for key in _TITLE_KEYS:
        value = arguments.get(key)
        if isinstance(value, str) and strip_quotes(value):
            return strip_quotes(value)
    return None


def parse_tool_call(event: InboundEvent) -> ToolCall | None:
    """Normalize the tool name and arguments of a tool-call event.

    Returns:
        The parsed call, or None if no tool name could be found.
    """
    payload = event.payload
    name = first_found(payload, TOOL_NAME_EXTRACTORS)
    if not isinstance(name, str) or not name.strip():
        return None
    name = name.strip()

    arguments = parse_tool_arguments(first_found(payload, TOOL_ARGUMENT_EXTRACTORS))
    call_id = first_found(payload, TOOL_CALL_ID_EXTRACTORS)
    call_id = str(call_id) if call_id is not None else None

    if name not in KNOWN_TOOLS:
        canonical = canonical_tool_name(name)
        if canonical:
            return ToolCall(name=canonical, arguments={}, call_id=call_id)

    # A fetch_video whose "title" is really a command ("pause") is a control call.
    if name == "fetch_video":
        title = extract_video_title(arguments)
        command = canonical_tool_name(title) if title else None
        if command:
            return ToolCall(name=command, arguments={}, call_id=call_id)

    return ToolCall(name=name, arguments=arguments, call_id=call_id)
