"""Sanitization of payloads archived for forensics and analytics.

Walks arbitrary JSON-like structures and:
- replaces values under sensitive keys with a redaction token,
- replaces email-like and phone-like substrings inside strings,
- truncates long arrays and wide objects to bound storage.

Everything else passes through untouched, including ``None`` values and
non-JSON scalars.
"""

import re
from dataclasses import dataclass, field
from typing import Any

REDACTED = "[REDACTED]"
REDACTED_EMAIL = "[REDACTED_EMAIL]"
REDACTED_PHONE = "[REDACTED_PHONE]"

# Keys whose whole value is dropped in favour of the redaction token (exact match).
PRUNE_KEYS: frozenset[str] = frozenset(
    {"transcript", "utterances", "messages", "raw", "audio", "media", "video", "frames"}
)

# Key fragments that mark personal data (substring match, case-insensitive).
SENSITIVE_KEY_FRAGMENTS: tuple[str, ...] = ("email", "phone", "name", "user", "speaker")

EMAIL_PATTERN = re.compile(r"[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}", re.IGNORECASE)
PHONE_PATTERN = re.compile(
    r"(?:\+\d{1,3}[-.\s]?)?(?:\(\d{2,4}\)|\d{2,4})[-.\s]?\d{3,4}[-.\s]?\d{3,4}"
)


@dataclass(frozen=True)
class SanitizeOptions:
    """Knobs for :func:`sanitize`.

    Attributes:
        sensitive_keys: Key fragments redacted wherever they appear in a key.
        prune_keys: Exact keys whose values are redacted (transcripts, media).
        max_array_len: Arrays are cut to this many items.
        max_object_keys: Objects keep only their first N keys.
    """

    sensitive_keys: tuple[str, ...] = SENSITIVE_KEY_FRAGMENTS
    prune_keys: frozenset[str] = field(default=PRUNE_KEYS)
    max_array_len: int = 50
    max_object_keys: int = 100

    def is_sensitive(self, key: str) -> bool:
        lowered = key.lower()
        if lowered in self.prune_keys:
            return True
        return any(fragment in lowered for fragment in self.sensitive_keys)


DEFAULT_OPTIONS = SanitizeOptions()


def redact_text(text: str) -> str:
    """Replace email and phone substrings, keeping the surrounding text."""
    text = EMAIL_PATTERN.sub(REDACTED_EMAIL, text)
    return PHONE_PATTERN.sub(REDACTED_PHONE, text)


def sanitize(value: Any, options: SanitizeOptions | None = None) -> Any:
    """Return a sanitized copy of ``value``.

    Args:
        value: Any JSON-like structure (dicts, lists, scalars).
        options: Redaction and truncation settings; defaults apply when omitted.

    Returns:
        A new structure; the input is never mutated.
    """
    return _sanitize_recursive(value, options or DEFAULT_OPTIONS)


def _sanitize_recursive(value: Any, options: SanitizeOptions) -> Any:
    if value is None:
        return None

    if isinstance(value, str):
        return redact_text(value)

    if isinstance(value, dict):
        result: dict[Any, Any] = {}
        for index, (key, item) in enumerate(value.items()):
            if index >= options.max_object_keys:
                break
            if isinstance(key, str) and options.is_sensitive(key):
                result[key] = REDACTED
            else:
                result[key] = _sanitize_recursive(item, options)
        return result

    if isinstance(value, (list, tuple)):
        return [_sanitize_recursive(item, options) for item in value[: options.max_array_len]]

    return value


def sanitize_analytics_payload(value: Any) -> Any:
    """Sanitize with the platform's configured size bounds.

    Shared by raw-payload archival and the demo analytics summary.
    """
    from domo_ingest.core.config import settings

    return sanitize(
        value,
        SanitizeOptions(
            max_array_len=settings.SANITIZE_MAX_ARRAY_LEN,
            max_object_keys=settings.SANITIZE_MAX_OBJECT_KEYS,
        ),
    )
