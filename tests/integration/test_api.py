"""Integration tests for the transition, history and job endpoints."""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from api.dependencies import get_booking_actions, get_document_store, get_transition_service
from api.main import app
from lifecycle.services.booking_actions import build_booking_actions
from lifecycle.services.transition_service import TransitionService
from tests.factories import NOW, TENANT, booking_logs, stored_booking

AUTH = {"Authorization": "Bearer test-cron-secret"}


@pytest.fixture
def client(store, orchestrator):
    app.dependency_overrides[get_document_store] = lambda: store
    app.dependency_overrides[get_transition_service] = lambda: TransitionService(store, orchestrator)
    app.dependency_overrides[get_booking_actions] = lambda: build_booking_actions(store, orchestrator=orchestrator)
    yield TestClient(app)
    app.dependency_overrides.clear()


def transition(client, event_type, calendar_event_id="evt-1", **extra):
    body = {"calendarEventId": calendar_event_id, "eventType": event_type, "email": "admin@example.edu", "tenant": TENANT}
    body.update(extra)
    return client.post("/api/xstate-transition", json=body)


class TestPostTransition:
    """Tests for POST /api/xstate-transition."""

    def test_accepted_event(self, client, seed_booking, store):
        seed_booking()

        response = transition(client, "approve")

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert response.json()["newState"] == "Pre-approved"
        assert stored_booking(store)["status"] == "PENDING"

    def test_unknown_event_type(self, client, seed_booking):
        seed_booking()

        response = transition(client, "teleport")

        assert response.status_code == 400
        assert "teleport" in response.json()["error"]

    def test_rejected_event(self, client, seed_booking, store):
        seed_booking(status="CANCELED")

        response = transition(client, "checkIn")

        assert response.status_code == 400
        assert response.json()["rejected"] is True
        assert response.json()["currentState"] == "Canceled"
        assert booking_logs(store) == []

    def test_unknown_booking(self, client):
        assert transition(client, "approve", calendar_event_id="missing").status_code == 404

    def test_missing_fields(self, client):
        response = client.post("/api/xstate-transition", json={"eventType": "approve"})
        assert response.status_code == 400

    def test_persistence_failure_reports_state(self, client, seed_booking, store):
        seed_booking(status="APPROVED")
        store.update = AsyncMock(side_effect=RuntimeError("store unavailable"))

        response = transition(client, "noShow")

        assert response.status_code == 500
        assert response.json()["success"] is False
        assert response.json()["newState"] == "Closed"


class TestGetTransition:
    """Tests for GET /api/xstate-transition."""

    def test_current_state(self, client, seed_booking):
        seed_booking()

        response = client.get("/api/xstate-transition", params={"calendarEventId": "evt-1", "tenant": TENANT})

        assert response.status_code == 200
        body = response.json()
        assert body["currentState"] == "Requested"
        assert body["status"] == "REQUESTED"
        assert "approve" in body["availableEvents"]

    def test_unknown_booking(self, client):
        response = client.get("/api/xstate-transition", params={"calendarEventId": "missing", "tenant": TENANT})
        assert response.status_code == 404


class TestBookingLogs:
    """Tests for GET /api/booking-logs."""

    def test_history_after_transitions(self, client, seed_booking):
        seed_booking()
        transition(client, "approve")
        transition(client, "approve")

        response = client.get("/api/booking-logs", params={"requestNumber": 1001, "tenant": TENANT})

        assert response.status_code == 200
        assert [row["status"] for row in response.json()] == ["PENDING", "APPROVED"]
        assert response.json()[0]["changedBy"] == "admin@example.edu"

    def test_legacy_history(self, client, seed_booking):
        seed_booking(status="PENDING", firstApprovedAt=NOW.isoformat(), firstApprovedBy="liaison@example.edu")

        response = client.get("/api/booking-logs", params={"requestNumber": 1001, "tenant": TENANT})

        assert [row["status"] for row in response.json()] == ["REQUESTED", "PENDING"]


class TestJobs:
    """Tests for the scheduled job endpoints."""

    def test_requires_cron_secret(self, client):
        response = client.post("/api/jobs/auto-checkout", params={"tenant": TENANT})
        assert response.status_code == 401

        response = client.post(
            "/api/jobs/auto-checkout", params={"tenant": TENANT}, headers={"Authorization": "Bearer wrong"}
        )
        assert response.status_code == 401

    def test_auto_cancel_dry_run(self, client, seed_booking, store):
        seed_booking(status="DECLINED", declinedAt=(NOW - timedelta(days=30)).isoformat())

        response = client.post(
            "/api/jobs/auto-cancel-declined", params={"tenant": TENANT, "dry_run": True}, headers=AUTH
        )

        assert response.status_code == 200
        assert response.json()["calendarEventIds"] == ["evt-1"]
        assert response.json()["dryRun"] is True
        assert stored_booking(store)["status"] == "DECLINED"

    def test_auto_checkout(self, client, seed_booking, store):
        seed_booking(status="CHECKED-IN", endDate=(NOW - timedelta(days=1)).isoformat())

        response = client.post("/api/jobs/auto-checkout", params={"tenant": TENANT}, headers=AUTH)

        assert response.status_code == 200
        assert response.json()["calendarEventIds"] == ["evt-1"]
        assert stored_booking(store)["status"] == "CLOSED"


class TestHealth:
    """Tests for the health endpoint."""

    def test_health_reports_breakers(self, client):
        response = client.get("/health")

        assert response.status_code in (200, 503)
        assert set(response.json()["breakers"]) >= {"transition_api", "calendar", "email"}
