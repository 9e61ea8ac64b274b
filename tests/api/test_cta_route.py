"""Tests for the CTA click beacon endpoint."""

from unittest.mock import patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from domo_ingest.api.errors import register_exception_handlers
from domo_ingest.api.routes import cta as _cta_mod
from fakes import CONVERSATION_ID, DEMO_ID, FakeSupabase


def create_test_app() -> FastAPI:
    """Create minimal FastAPI app for testing."""
    app = FastAPI()
    register_exception_handlers(app)
    app.include_router(_cta_mod.router, prefix="/api")
    return app


@pytest.fixture
def test_client() -> TestClient:
    """Create test client."""
    return TestClient(create_test_app())


def test_click_recorded_with_request_metadata(
    test_client: TestClient, fake_db: FakeSupabase
) -> None:
    with patch.object(_cta_mod, "get_supabase_client", return_value=fake_db):
        response = test_client.post(
            "/api/track-cta-click",
            json={
                "conversation_id": CONVERSATION_ID,
                "demo_id": DEMO_ID,
                "cta_url": "https://acme.example/reported",
            },
            headers={"x-forwarded-for": "203.0.113.9, 10.0.0.1", "user-agent": "pytest-agent"},
        )

    assert response.status_code == 200
    assert response.json() == {"success": True}
    (row,) = fake_db.rows("cta_tracking")
    assert row["conversation_id"] == CONVERSATION_ID
    assert row["demo_id"] == DEMO_ID
    assert row["cta_url"] == "https://acme.example/admin-trial"
    assert row["ip_address"] == "203.0.113.9"
    assert row["user_agent"] == "pytest-agent"
    assert row["objective_name"] == "cta_click"


def test_click_for_unknown_demo_still_recorded(
    test_client: TestClient, fake_db: FakeSupabase
) -> None:
    with patch.object(_cta_mod, "get_supabase_client", return_value=fake_db):
        response = test_client.post(
            "/api/track-cta-click",
            json={
                "conversation_id": "conv-other",
                "demo_id": "demo-missing",
                "cta_url": "https://acme.example/reported",
            },
            headers={"x-real-ip": "198.51.100.4"},
        )

    assert response.status_code == 200
    (row,) = fake_db.rows("cta_tracking")
    assert row["cta_url"] == "https://acme.example/reported"
    assert row["ip_address"] == "198.51.100.4"


def test_missing_field_returns_400(test_client: TestClient) -> None:
    response = test_client.post("/api/track-cta-click", json={"demo_id": DEMO_ID})
    assert response.status_code == 400
    assert response.json()["code"] == "REQUEST_VALIDATION_ERROR"


def test_write_failure_returns_500(test_client: TestClient, fake_db: FakeSupabase) -> None:
    fake_db.fail_tables.add("cta_tracking")
    with patch.object(_cta_mod, "get_supabase_client", return_value=fake_db):
        response = test_client.post(
            "/api/track-cta-click",
            json={"conversation_id": CONVERSATION_ID, "demo_id": DEMO_ID},
        )

    assert response.status_code == 500
    assert response.json()["code"] == "DATABASE_ERROR"
