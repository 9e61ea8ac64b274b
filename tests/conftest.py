"""Shared fixtures for ingestion tests.

Settings are validated at import time, so the environment is populated
before any ``domo_ingest`` module is imported.
"""

from __future__ import annotations

import os

os.environ["SUPABASE_URL"] = "https://test.supabase.co"
os.environ["SUPABASE_SERVICE_ROLE_KEY"] = "test-service-role-key"
os.environ["TAVUS_WEBHOOK_SECRET"] = "test-webhook-secret"
os.environ["TAVUS_WEBHOOK_TOKEN"] = ""
os.environ["WEBHOOK_ALLOW_UNAUTHENTICATED"] = "false"
os.environ["REALTIME_BROADCAST_ENABLED"] = "false"
os.environ["APP_ENV"] = "development"
os.environ.pop("IDEMPOTENCY_RETENTION_DAYS", None)

from collections.abc import Iterator  # noqa: E402
from typing import Any  # noqa: E402

import pytest  # noqa: E402

from domo_ingest.core.circuit_breaker import reset_breakers  # noqa: E402
from domo_ingest.core.error_tracker import ErrorTracker  # noqa: E402
from domo_ingest.models.events import HandlerContext  # noqa: E402
from fakes import CONVERSATION_ID, DEMO_ID, RECEIVED_AT, FakeSupabase  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_shared_state() -> Iterator[None]:
    """Error tracker and circuit breakers are process-wide singletons."""
    ErrorTracker.get_instance().reset()
    reset_breakers()
    yield
    ErrorTracker.get_instance().reset()
    reset_breakers()


@pytest.fixture
def demo() -> dict[str, Any]:
    """A demo row bound to the test conversation."""
    return {
        "id": DEMO_ID,
        "name": "Acme Analytics",
        "tavus_conversation_id": CONVERSATION_ID,
        "metadata": {"ctaButtonUrl": "https://acme.example/default-trial"},
        "cta_title": "Start your free trial",
        "cta_message": "Get 14 days of Acme on us.",
        "cta_button_text": "Start trial",
        "cta_button_url": "https://acme.example/admin-trial",
    }


@pytest.fixture
def fake_db(demo: dict[str, Any]) -> FakeSupabase:
    """In-memory Supabase seeded with one demo and its videos."""
    db = FakeSupabase()
    db.seed("demos", [demo])
    db.seed(
        "demo_videos",
        [
            {
                "id": "video-1",
                "demo_id": DEMO_ID,
                "title": "Dashboard Tour",
                "storage_url": "demos/demo-123/dashboard.mp4",
            }
        ],
    )
    return db


@pytest.fixture
def ctx(demo: dict[str, Any]) -> HandlerContext:
    """Handler context for a resolved conversation."""
    return HandlerContext(conversation_id=CONVERSATION_ID, demo=demo, received_at=RECEIVED_AT)
