"""Tests for the HTTP endpoints."""

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from voice_crm.api.main import app, get_webhook_service

from .fakes import make_settings


@pytest.fixture
def service():
    mock = MagicMock()
    mock.settings = make_settings()
    mock.status.return_value = {"counters": {"received": 3}}
    app.dependency_overrides[get_webhook_service] = lambda: mock
    yield mock
    app.dependency_overrides.clear()


@pytest.fixture
def client():
    # Not used as a context manager, so startup does not build real clients
    return TestClient(app)


class TestEndpoints:
    """Routes delegate to the webhook service."""

    def test_health(self, client) -> None:
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_webhook_acknowledges_and_queues(self, client, service) -> None:
        response = client.post(
            "/webhook",
            content=b'{"message": {"type": "call-started"}}',
            headers={"x-vapi-signature": "abc123"},
        )

        assert response.status_code == 200
        assert response.json() == {"received": True}
        raw_body, signature, _received_at = service.submit.call_args.args
        assert raw_body == b'{"message": {"type": "call-started"}}'
        assert signature == "abc123"

    def test_webhook_generic_signature_header(self, client, service) -> None:
        client.post("/webhook", content=b"{}", headers={"x-provider-signature": "def456"})
        assert service.submit.call_args.args[1] == "def456"

    def test_webhook_accepts_garbage_body(self, client, service) -> None:
        response = client.post("/webhook", content=b"not json")
        assert response.status_code == 200
        assert service.submit.call_args.args[1] is None

    def test_status(self, client, service) -> None:
        response = client.get("/status")
        assert response.json() == {"counters": {"received": 3}}

    def test_process_call(self, client, service) -> None:
        response = client.post("/process-call/call-1")

        assert response.json() == {"status": "queued", "call_id": "call-1", "queue": "call-processing"}
        service.schedule_processing.assert_called_once_with("call-1")

    def test_uninitialized_service(self, client) -> None:
        app.dependency_overrides.clear()
        assert client.get("/status").status_code == 503
