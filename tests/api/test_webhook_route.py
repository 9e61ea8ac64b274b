"""Tests for the Tavus webhook endpoint."""

import json
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from domo_ingest.api.errors import register_exception_handlers
from domo_ingest.api.routes import webhooks as _webhooks_mod
from domo_ingest.core.exceptions import DatabaseError
from domo_ingest.security.signature import VerifierConfig, generate_hmac_sha256_signature
from domo_ingest.services.idempotency import LEDGER_TABLE
from fakes import CONVERSATION_ID, FakeSupabase

WEBHOOK_SECRET = "test-webhook-secret"


def create_test_app() -> FastAPI:
    """Create minimal FastAPI app for testing."""
    app = FastAPI()
    register_exception_handlers(app)
    app.include_router(_webhooks_mod.router)
    return app


@pytest.fixture
def test_client() -> TestClient:
    """Create test client."""
    return TestClient(create_test_app())


def _signed(payload: Any) -> tuple[bytes, dict[str, str]]:
    body = json.dumps(payload).encode()
    signature = generate_hmac_sha256_signature(body, WEBHOOK_SECRET)
    return body, {"x-tavus-signature": signature, "content-type": "application/json"}


def _qualification_event() -> dict[str, Any]:
    return {
        "event_type": "application.objective_completed",
        "conversation_id": CONVERSATION_ID,
        "properties": {
            "objective_name": "greeting_and_qualification",
            "output_variables": {
                "first_name": "Jane",
                "last_name": "Doe",
                "email": "jane@acme.io",
                "position": "VP Sales",
            },
        },
    }


class TestQualificationScenarios:
    """Accepted event, redelivered duplicate and rejected signature."""

    def test_signed_qualification_event_is_stored(
        self, test_client: TestClient, fake_db: FakeSupabase
    ) -> None:
        body, headers = _signed(_qualification_event())
        with patch.object(_webhooks_mod, "get_supabase_client", return_value=fake_db):
            response = test_client.post("/webhook", content=body, headers=headers)

        assert response.status_code == 200
        assert response.json() == {"received": True}
        (row,) = fake_db.rows("qualification_data")
        assert row["email"] == "jane@acme.io"
        assert row["objective_name"] == "greeting_and_qualification"
        assert row["raw_payload"]["properties"]["output_variables"]["email"] == "[REDACTED]"
        assert len(fake_db.rows(LEDGER_TABLE)) == 1
        assert len(fake_db.rows("conversation_details")) == 1

    def test_duplicate_delivery_writes_nothing_new(
        self, test_client: TestClient, fake_db: FakeSupabase
    ) -> None:
        body, headers = _signed(_qualification_event())
        with patch.object(_webhooks_mod, "get_supabase_client", return_value=fake_db):
            first = test_client.post("/webhook", content=body, headers=headers)
            writes_after_first = [c for c in fake_db.calls if c[0] == "qualification_data"]
            second = test_client.post("/webhook", content=body, headers=headers)

        assert first.status_code == 200
        assert second.status_code == 200
        assert second.json() == {"received": True}
        assert len(fake_db.rows("qualification_data")) == 1
        assert len(fake_db.rows(LEDGER_TABLE)) == 1
        assert [c for c in fake_db.calls if c[0] == "qualification_data"] == writes_after_first

    def test_invalid_signature_rejected_before_any_write(self, test_client: TestClient) -> None:
        body = json.dumps(_qualification_event()).encode()
        headers = {"x-tavus-signature": generate_hmac_sha256_signature(body, "wrong-secret")}
        mock_db = MagicMock()
        with patch.object(_webhooks_mod, "get_supabase_client", return_value=mock_db) as get_db:
            response = test_client.post("/webhook", content=body, headers=headers)

        assert response.status_code == 401
        assert response.json()["code"] == "AUTHENTICATION_ERROR"
        assert response.json()["detail"] == "Invalid webhook signature"
        get_db.assert_not_called()
        mock_db.table.assert_not_called()


class TestAuthentication:
    def test_missing_signature_rejected(self, test_client: TestClient) -> None:
        response = test_client.post("/webhook", json=_qualification_event())
        assert response.status_code == 401

    def test_base64_signature_accepted(
        self, test_client: TestClient, fake_db: FakeSupabase
    ) -> None:
        body = json.dumps({"event_type": "system.replica_joined", "conversation_id": "c"}).encode()
        signature = generate_hmac_sha256_signature(body, WEBHOOK_SECRET, encoding="base64")
        with patch.object(_webhooks_mod, "get_supabase_client", return_value=fake_db):
            response = test_client.post(
                "/webhook", content=body, headers={"tavus-signature": f"sha256={signature}"}
            )
        assert response.status_code == 200

    def test_callback_token_in_query(self, test_client: TestClient, fake_db: FakeSupabase) -> None:
        config = VerifierConfig(token="callback-token")
        with (
            patch.object(_webhooks_mod, "get_verifier_config", return_value=config),
            patch.object(_webhooks_mod, "get_supabase_client", return_value=fake_db),
        ):
            ok = test_client.post("/webhook?t=callback-token", json=_qualification_event())
            alias = test_client.post("/webhook?token=callback-token", json=_qualification_event())
            bad = test_client.post("/webhook?t=nope", json=_qualification_event())

        assert ok.status_code == 200
        assert alias.status_code == 200
        assert bad.status_code == 401


class TestPayloadValidation:
    def test_malformed_json_returns_400(self, test_client: TestClient) -> None:
        body = b'{"event_type": "application.objective_completed",'
        headers = {"x-tavus-signature": generate_hmac_sha256_signature(body, WEBHOOK_SECRET)}
        response = test_client.post("/webhook", content=body, headers=headers)
        assert response.status_code == 400
        assert response.json()["code"] == "MALFORMED_PAYLOAD"

    def test_non_object_json_returns_400(self, test_client: TestClient) -> None:
        body, headers = _signed([1, 2, 3])
        response = test_client.post("/webhook", content=body, headers=headers)
        assert response.status_code == 400

    def test_deeply_nested_json_returns_400(self, test_client: TestClient) -> None:
        body = (
            b'{"event_type": "x", "conversation_id": "c", "properties": '
            + b"[" * 5000
            + b"]" * 5000
            + b"}"
        )
        headers = {"x-tavus-signature": generate_hmac_sha256_signature(body, WEBHOOK_SECRET)}
        response = test_client.post("/webhook", content=body, headers=headers)
        assert response.status_code == 400
        assert response.json()["code"] == "MALFORMED_PAYLOAD"

    def test_unknown_event_acknowledged(
        self, test_client: TestClient, fake_db: FakeSupabase
    ) -> None:
        body, headers = _signed({"event_type": "conversation.utterance", "conversation_id": "c"})
        with patch.object(_webhooks_mod, "get_supabase_client", return_value=fake_db):
            response = test_client.post("/webhook", content=body, headers=headers)
        assert response.status_code == 200
        assert fake_db.calls == []

    def test_missing_conversation_id_acknowledged(
        self, test_client: TestClient, fake_db: FakeSupabase
    ) -> None:
        body, headers = _signed({"event_type": "system.replica_joined"})
        with patch.object(_webhooks_mod, "get_supabase_client", return_value=fake_db):
            response = test_client.post("/webhook", content=body, headers=headers)
        assert response.status_code == 200


class TestIdempotencyGate:
    def test_lifecycle_events_not_recorded_in_ledger(
        self, test_client: TestClient, fake_db: FakeSupabase
    ) -> None:
        body, headers = _signed(
            {"event_type": "system.replica_joined", "conversation_id": CONVERSATION_ID}
        )
        with patch.object(_webhooks_mod, "get_supabase_client", return_value=fake_db):
            test_client.post("/webhook", content=body, headers=headers)
        assert fake_db.rows(LEDGER_TABLE) == []
        assert fake_db.rows("conversation_details")[0]["status"] == "active"

    def test_ledger_failure_skips_processing(
        self, test_client: TestClient, fake_db: FakeSupabase
    ) -> None:
        fake_db.fail_tables.add(LEDGER_TABLE)
        body, headers = _signed(_qualification_event())
        with patch.object(_webhooks_mod, "get_supabase_client", return_value=fake_db):
            response = test_client.post("/webhook", content=body, headers=headers)
        assert response.status_code == 200
        assert fake_db.rows("qualification_data") == []

    def test_ledger_failure_fail_open(self, test_client: TestClient, fake_db: FakeSupabase) -> None:
        fake_db.fail_tables.add(LEDGER_TABLE)
        body, headers = _signed(_qualification_event())
        with (
            patch.object(_webhooks_mod.settings, "IDEMPOTENCY_FAIL_OPEN", True),
            patch.object(_webhooks_mod, "get_supabase_client", return_value=fake_db),
        ):
            response = test_client.post("/webhook", content=body, headers=headers)
        assert response.status_code == 200
        assert len(fake_db.rows("qualification_data")) == 1


class TestFailureContainment:
    def test_router_exception_still_acknowledged(
        self, test_client: TestClient, fake_db: FakeSupabase
    ) -> None:
        failing_router = MagicMock()
        failing_router.route = AsyncMock(side_effect=RuntimeError("unexpected"))
        body, headers = _signed(
            {"event_type": "system.replica_joined", "conversation_id": CONVERSATION_ID}
        )
        with (
            patch.object(_webhooks_mod, "get_supabase_client", return_value=fake_db),
            patch.object(_webhooks_mod, "build_event_router", return_value=failing_router),
        ):
            response = test_client.post("/webhook", content=body, headers=headers)
        assert response.status_code == 200
        assert response.json() == {"received": True}

    def test_database_unavailable_still_acknowledged(self, test_client: TestClient) -> None:
        body, headers = _signed(_qualification_event())
        with patch.object(
            _webhooks_mod, "get_supabase_client", side_effect=DatabaseError("no connection")
        ):
            response = test_client.post("/webhook", content=body, headers=headers)
        assert response.status_code == 200

    def test_table_failure_still_acknowledged(
        self, test_client: TestClient, fake_db: FakeSupabase
    ) -> None:
        fake_db.fail_tables.add("qualification_data")
        body, headers = _signed(_qualification_event())
        with patch.object(_webhooks_mod, "get_supabase_client", return_value=fake_db):
            response = test_client.post("/webhook", content=body, headers=headers)
        assert response.status_code == 200
        assert len(fake_db.rows("conversation_details")) == 1
