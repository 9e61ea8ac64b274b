"""Tests for health check endpoints."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from domo_ingest import __version__
from domo_ingest.api.routes import health as _health_mod
from domo_ingest.core.circuit_breaker import breaker_for
from domo_ingest.core.error_tracker import ErrorTracker


@pytest.fixture
def test_client() -> TestClient:
    app = FastAPI()
    app.include_router(_health_mod.router)
    return TestClient(app)


def test_health_check(test_client: TestClient) -> None:
    response = test_client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_ingestion_health_healthy(test_client: TestClient) -> None:
    ErrorTracker.get_instance().record_error("write", "WriteFailed", "down", table="demos")

    response = test_client.get("/health/ingestion")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["version"] == __version__
    assert data["errors"]["by_table"] == {"demos": 1}
    assert data["recent_errors"][0]["error_type"] == "WriteFailed"


def test_ingestion_health_degraded_when_breaker_open(test_client: TestClient) -> None:
    breaker = breaker_for("conversation_details")
    for _ in range(breaker.failure_threshold):
        breaker.record_failure()

    data = test_client.get("/health/ingestion").json()

    assert data["status"] == "degraded"
    assert data["circuit_breakers"]["conversation_details"] == "open"


def test_ingestion_health_rejects_bad_period(test_client: TestClient) -> None:
    assert test_client.get("/health/ingestion?period_seconds=0").status_code == 422
