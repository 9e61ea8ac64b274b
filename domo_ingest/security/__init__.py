"""Webhook authentication and payload sanitization."""

from domo_ingest.security.sanitization import SanitizeOptions, sanitize, sanitize_analytics_payload
from domo_ingest.security.signature import VerifierConfig, verify_webhook

__all__ = [
    "SanitizeOptions",
    "VerifierConfig",
    "sanitize",
    "sanitize_analytics_payload",
    "verify_webhook",
]
