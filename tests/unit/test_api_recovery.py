"""
Unit tests for the recovery REST API endpoints.
"""

import uuid
from unittest.mock import AsyncMock, patch

import fakeredis
import pytest

# Skip tests if fastapi is not installed
pytest.importorskip("fastapi")

from fastapi.testclient import TestClient

from recovery_engine.config import settings
from recovery_engine.main import app
from recovery_engine.services.redis_client import RedisClient


def make_offline_store() -> RedisClient:
    """Redis client backed by fakeredis, with a key unique to the test."""
    client = RedisClient(redis_url="redis://localhost:6379/0", offline_flag_key=f"test:offline:{uuid.uuid4().hex}")
    client.initialize = AsyncMock()
    client._client = fakeredis.FakeAsyncRedis(decode_responses=True)
    return client


@pytest.fixture
def client():
    """Create test client with a running orchestrator."""
    with patch("recovery_engine.main.get_redis_client", side_effect=make_offline_store):
        with TestClient(app) as test_client:
            yield test_client


PAYMENT_REPORT = {"message": "Payment declined", "http_status": 402}
VALIDATION_REPORT = {
    "message": "Name is required",
    "http_status": 422,
    "context": {"user_context": "as", "path": "/dashboard/servicios"},
}


class TestSnapshot:
    """Test the snapshot endpoint."""

    def test_empty_snapshot(self, client):
        response = client.get("/api/recovery")

        assert response.status_code == 200
        data = response.json()
        assert data["current_error"] is None
        assert data["offline_mode"] is False
        assert data["connectivity"]["status"] == "online"

    def test_engine_not_started(self):
        response = TestClient(app).get("/api/recovery")

        assert response.status_code == 503


class TestReport:
    """Test the report endpoint."""

    def test_report_payment_failure(self, client):
        response = client.post("/api/recovery/report", json=PAYMENT_REPORT)

        assert response.status_code == 200
        data = response.json()
        assert data["category"] == "payment"
        assert data["severity"] == "critical"
        assert data["escalation_level"] == 3
        assert data["recovery_strategy"] == ["retry", "manual", "contact_support"]
        assert data["code"].startswith("ERR_PAY_")

        snapshot = client.get("/api/recovery").json()
        assert snapshot["current_error"]["id"] == data["id"]
        assert snapshot["presentation"]["mode"] == "global"
        assert snapshot["presentation"]["show_escalation"] is True

    def test_report_uses_context(self, client):
        response = client.post("/api/recovery/report", json=VALIDATION_REPORT)

        data = response.json()
        assert data["category"] == "validation"
        assert data["user_context"] == "as"
        assert data["platform_area"] == "dashboard"
        assert data["can_auto_recover"] is False

    def test_report_with_details(self, client):
        payload = {
            "message": "upload rejected",
            "details": {"kind": "file_upload", "file_name": "foto.png", "failure_reason": "size_limit"},
        }

        response = client.post("/api/recovery/report", json=payload)

        data = response.json()
        assert data["category"] == "file_upload"
        assert data["details"]["file_name"] == "foto.png"
        assert "5MB" in data["user_message"]

    def test_invalid_payload(self, client):
        response = client.post("/api/recovery/report", json={"http_status": "teapot"})

        assert response.status_code == 422


class TestRetry:
    """Test the retry endpoint."""

    def test_retry_without_error(self, client):
        response = client.post("/api/recovery/retry")

        assert response.status_code == 409

    def test_retry_without_registered_action(self, client):
        client.post("/api/recovery/report", json=VALIDATION_REPORT)

        response = client.post("/api/recovery/retry")

        assert response.status_code == 409
        assert "No recovery action" in response.json()["detail"]

    def test_retry_with_registered_action(self, client):
        record = client.post("/api/recovery/report", json=VALIDATION_REPORT).json()
        app.state.orchestrator.register_action(record["operation_key"], AsyncMock())

        response = client.post("/api/recovery/retry")

        assert response.status_code == 200
        assert response.json() == {"success": True, "retry_count": 0, "error_id": record["id"]}
        assert client.get("/api/recovery").json()["current_error"] is None


class TestClearAndEscalate:
    """Test the clear and escalate endpoints."""

    def test_clear(self, client):
        client.post("/api/recovery/report", json=VALIDATION_REPORT)

        response = client.post("/api/recovery/clear")

        assert response.status_code == 200
        assert response.json()["current_error"] is None

    def test_escalate_without_error(self, client):
        response = client.post("/api/recovery/escalate")

        assert response.status_code == 409

    def test_escalate(self, client):
        record = client.post("/api/recovery/report", json=PAYMENT_REPORT).json()

        response = client.post("/api/recovery/escalate", json={"trigger": "manual"})

        assert response.status_code == 200
        data = response.json()
        assert data["error_id"] == record["id"]
        assert data["trigger"] == "manual"
        assert data["ticket"]["priority"] == "urgent"
        assert data["selected_channel"] in {"phone", "email"}
        assert data["channels"][-1]["type"] == "email"
        assert data["channels"][-1]["available"] is True

    def test_escalate_without_body(self, client):
        client.post("/api/recovery/report", json=PAYMENT_REPORT)

        response = client.post("/api/recovery/escalate")

        assert response.status_code == 200
        assert response.json()["trigger"] == "manual"


class TestActions:
    """Test the recommended actions endpoint."""

    def test_actions_for_known_error(self, client):
        record = client.post("/api/recovery/report", json=VALIDATION_REPORT).json()

        response = client.get(f"/api/recovery/errors/{record['id']}/actions")

        assert response.status_code == 200
        data = response.json()
        assert data["error_id"] == record["id"]
        assert data["actions"][0] == "Revisar los datos y corregirlos"

    def test_actions_for_unknown_error(self, client):
        response = client.get("/api/recovery/errors/err_missing/actions")

        assert response.status_code == 404


class TestConnectivity:
    """Test connectivity signals."""

    def test_offline_signal(self, client):
        response = client.post("/api/recovery/connectivity", json={"online": False})

        assert response.status_code == 200
        assert response.json()["status"] == "offline"
        assert client.get("/api/recovery").json()["offline_mode"] is True

        record = client.post("/api/recovery/report", json={"message": "Failed to fetch"}).json()
        assert record["category"] == "network"
        assert record["recovery_strategy"] == ["offline_mode"]

    def test_link_quality_signal(self, client):
        response = client.post("/api/recovery/connectivity", json={"rtt_ms": 2500, "effective_type": "3g"})

        data = response.json()
        assert data["status"] == "slow"
        assert data["rtt_ms"] == 2500
        assert data["quality_known"] is True

    def test_success_signal(self, client):
        client.post("/api/recovery/report", json=VALIDATION_REPORT)

        response = client.post("/api/recovery/success")

        assert response.status_code == 200
        assert response.json()["error_rate"] == 0.5


class TestAPIKey:
    """Test optional API key protection."""

    def test_open_when_no_key_configured(self, client):
        assert client.get("/api/recovery").status_code == 200

    def test_missing_key(self, client):
        with patch.object(settings, "api_key", "secret"):
            response = client.get("/api/recovery")

        assert response.status_code == 401

    def test_wrong_key(self, client):
        with patch.object(settings, "api_key", "secret"):
            response = client.get("/api/recovery", headers={"X-API-Key": "nope"})

        assert response.status_code == 401

    def test_valid_key(self, client):
        with patch.object(settings, "api_key", "secret"):
            response = client.get("/api/recovery", headers={"X-API-Key": "secret"})

        assert response.status_code == 200
