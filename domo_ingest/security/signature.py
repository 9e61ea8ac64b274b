"""Tavus webhook authentication.

Two schemes are accepted:

1. HMAC-SHA256 over the exact raw request body, delivered in one of several
   header names and formats (raw hex, raw base64, ``sha256=<hex>``, or a
   ``t=...,v1=...`` list).
2. A static token carried in the callback URL query string (``?t=`` or
   ``?token=``), for persona callbacks that cannot sign requests.

With neither configured, requests are only accepted when
``WEBHOOK_ALLOW_UNAUTHENTICATED`` is explicitly enabled.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Literal

from domo_ingest.models.events import VerificationResult

logger = logging.getLogger(__name__)

SIGNATURE_HEADERS: tuple[str, ...] = ("x-tavus-signature", "tavus-signature", "x-signature")

_SIGNATURE_LIST_KEYS = ("v1", "signature", "sha256")


@dataclass(frozen=True)
class VerifierConfig:
    """Authentication settings for the webhook endpoint."""

    secret: str = ""
    token: str = ""
    allow_unauthenticated: bool = False
    timestamp_tolerance_seconds: int = 300

    @classmethod
    def from_settings(cls, settings: object) -> VerifierConfig:
        return cls(
            secret=settings.TAVUS_WEBHOOK_SECRET.get_secret_value().strip(),  # type: ignore[attr-defined]
            token=settings.TAVUS_WEBHOOK_TOKEN.get_secret_value().strip(),  # type: ignore[attr-defined]
            allow_unauthenticated=settings.WEBHOOK_ALLOW_UNAUTHENTICATED,  # type: ignore[attr-defined]
            timestamp_tolerance_seconds=settings.WEBHOOK_TIMESTAMP_TOLERANCE_SECONDS,  # type: ignore[attr-defined]
        )


def extract_signature(header: str | None) -> str | None:
    """Pull the signature value out of a header.

    Args:
        header: Raw header value.

    Returns:
        The signature string, or None if the header is empty or names an
        algorithm other than SHA-256.
    """
    if not header:
        return None
    trimmed = header.strip()
    if not trimmed:
        return None

    if "," in trimmed:
        for part in trimmed.split(","):
            key, sep, value = part.strip().partition("=")
            if sep and value and key.lower() in _SIGNATURE_LIST_KEYS:
                return value.strip()

    lowered = trimmed.lower()
    if lowered.startswith("sha256="):
        return trimmed[len("sha256="):]
    if lowered.startswith(("sha1=", "md5=", "sha512=")):
        return None

    return trimmed


def extract_signature_timestamp(header: str | None) -> str | None:
    """Return the ``t=`` component of a list-style signature header, if any."""
    if not header or "," not in header:
        return None
    for part in header.split(","):
        key, sep, value = part.strip().partition("=")
        if sep and key.lower() == "t":
            return value.strip()
    return None


def generate_hmac_sha256_signature(
    payload: bytes | str,
    secret: str,
    encoding: Literal["hex", "base64"] = "hex",
) -> str:
    """Sign a payload the way the provider does.

    Args:
        payload: Raw body bytes (str is encoded as UTF-8).
        secret: Shared secret.
        encoding: Output encoding.

    Returns:
        The encoded HMAC-SHA256 digest.
    """
    body = payload.encode("utf-8") if isinstance(payload, str) else payload
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    if encoding == "base64":
        return base64.b64encode(digest).decode("ascii")
    return digest.hex()


def verify_hmac_sha256_signature(raw_body: bytes, header: str | None, secret: str) -> bool:
    """Check a signature header against the raw body.

    The signature is decoded as hex first, then as base64; either decoding
    must match the computed digest under a constant-time comparison.
    """
    if not header or not secret:
        return False
    signature = extract_signature(header)
    if not signature:
        return False

    expected = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()

    try:
        provided = bytes.fromhex(signature)
    except ValueError:
        provided = b""
    if len(provided) == len(expected) and hmac.compare_digest(provided, expected):
        return True

    try:
        provided = base64.b64decode(signature, validate=True)
    except (binascii.Error, ValueError):
        return False
    return len(provided) == len(expected) and hmac.compare_digest(provided, expected)


def validate_webhook_timestamp(
    timestamp: str | int | float,
    tolerance_seconds: int = 300,
    now: float | None = None,
) -> bool:
    """Check that a unix timestamp is within ``tolerance_seconds`` of now."""
    try:
        webhook_time = int(timestamp)
    except (TypeError, ValueError):
        return False
    current = int(now if now is not None else time.time())
    return abs(current - webhook_time) <= tolerance_seconds


def _find_signature_header(headers: Mapping[str, str]) -> str | None:
    lowered = {key.lower(): value for key, value in headers.items()}
    for name in SIGNATURE_HEADERS:
        value = lowered.get(name)
        if value and value.strip():
            return value
    return None


def verify_webhook(
    raw_body: bytes,
    headers: Mapping[str, str],
    url_token: str | None,
    config: VerifierConfig,
    now: float | None = None,
) -> VerificationResult:
    """Authenticate an inbound webhook request.

    Args:
        raw_body: Exact request body bytes.
        headers: Request headers (any casing).
        url_token: Value of the ``t`` or ``token`` query parameter.
        config: Configured secret, token and development flag.
        now: Clock override for timestamp checks.

    Returns:
        Whether the request is authentic and which scheme decided it.
    """
    signature_header = _find_signature_header(headers)

    if config.secret and signature_header:
        timestamp = extract_signature_timestamp(signature_header)
        if (
            timestamp is not None
            and config.timestamp_tolerance_seconds > 0
            and not validate_webhook_timestamp(timestamp, config.timestamp_tolerance_seconds, now)
        ):
            return VerificationResult(valid=False, method="hmac", reason="stale_timestamp")
        if verify_hmac_sha256_signature(raw_body, signature_header, config.secret):
            return VerificationResult(valid=True, method="hmac")
        return VerificationResult(valid=False, method="hmac", reason="signature_mismatch")

    if config.token:
        provided = (url_token or "").strip()
        if provided and hmac.compare_digest(provided.encode("utf-8"), config.token.encode("utf-8")):
            return VerificationResult(valid=True, method="token")
        return VerificationResult(valid=False, method="token", reason="token_mismatch")

    if config.secret:
        return VerificationResult(valid=False, method="hmac", reason="missing_signature")

    if config.allow_unauthenticated:
        logger.warning("Accepting unauthenticated webhook (no secret or token configured)")
        return VerificationResult(valid=True, method="none")

    return VerificationResult(valid=False, method="none", reason="auth_not_configured")
