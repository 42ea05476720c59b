"""
Unit tests for the transition gateways.

Tests cover:
- HTTP response mapping (success, rejection, failure with reported state)
- Transport errors and the circuit breaker
- In-process gateway error capture
- TransitionResult.recover semantics
"""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from lifecycle.exceptions import PersistenceError
from lifecycle.services.transition_gateway import (
    HttpTransitionGateway,
    InProcessTransitionGateway,
    TransitionResult,
)
from shared.circuit_breaker import get_breaker_status
from tests.factories import TENANT

API_URL = "http://machine.test/api/xstate-transition"


@pytest.fixture
def gateway() -> HttpTransitionGateway:
    return HttpTransitionGateway(api_url=API_URL, timeout=1.0)


class TestHttpTransitionGateway:
    """Tests for HttpTransitionGateway response mapping."""

    @pytest.mark.asyncio
    async def test_success(self, gateway):
        response = httpx.Response(200, json={"success": True, "newState": "Approved", "entered": ["Approved"]})
        with patch.object(gateway, "_post", AsyncMock(return_value=response)) as post:
            result = await gateway.transition("evt-1", "approve", "admin@example.edu", TENANT)

        assert result.success is True
        assert result.new_state == "Approved"
        assert result.entered == ["Approved"]
        payload = post.await_args.args[0]
        assert payload["calendarEventId"] == "evt-1"
        assert payload["eventType"] == "approve"
        assert payload["tenant"] == TENANT

    @pytest.mark.asyncio
    async def test_rejected_event(self, gateway):
        response = httpx.Response(
            400,
            json={"success": False, "error": "not valid", "rejected": True, "currentState": "Canceled"},
        )
        with patch.object(gateway, "_post", AsyncMock(return_value=response)):
            result = await gateway.transition("evt-1", "approve", "admin@example.edu", TENANT)

        assert result.rejected is True
        assert result.new_state == "Canceled"

    @pytest.mark.asyncio
    async def test_server_error_keeps_reported_state(self, gateway):
        response = httpx.Response(
            500, json={"success": False, "error": "Failed to update booking evt-1", "newState": "Canceled"}
        )
        with patch.object(gateway, "_post", AsyncMock(return_value=response)):
            result = await gateway.transition("evt-1", "noShow", "pa@example.edu", TENANT)

        assert result.success is False
        assert result.rejected is False
        assert result.new_state == "Canceled"
        assert result.error == "Failed to update booking evt-1"

    @pytest.mark.asyncio
    async def test_non_json_error_body(self, gateway):
        with patch.object(gateway, "_post", AsyncMock(return_value=httpx.Response(502, text="Bad gateway"))):
            result = await gateway.transition("evt-1", "approve", "admin@example.edu", TENANT)

        assert result.success is False
        assert result.error == "Transition API returned 502"

    @pytest.mark.asyncio
    async def test_transport_error_is_a_failure(self, gateway):
        with patch.object(gateway, "_post", AsyncMock(side_effect=httpx.ConnectError("refused"))):
            result = await gateway.transition("evt-1", "approve", "admin@example.edu", TENANT)

        assert result.success is False
        assert result.rejected is False
        assert "refused" in result.error

    @pytest.mark.asyncio
    async def test_open_circuit_fails_fast(self, gateway):
        post = AsyncMock(side_effect=httpx.ConnectError("refused"))
        with patch.object(gateway, "_post", post):
            for _ in range(5):
                await gateway.transition("evt-1", "approve", "admin@example.edu", TENANT)
            result = await gateway.transition("evt-1", "approve", "admin@example.edu", TENANT)

        assert post.await_count == 5
        assert result.error == "Transition API circuit open"
        assert get_breaker_status()["transition_api"]["state"] == "open"


class TestInProcessTransitionGateway:
    """Tests for InProcessTransitionGateway."""

    @pytest.mark.asyncio
    async def test_passes_service_result_through(self):
        service = MagicMock()
        service.transition = AsyncMock(return_value=TransitionResult.ok("Pre-approved"))

        result = await InProcessTransitionGateway(service).transition("evt-1", "approve", "a@example.edu", TENANT)

        assert result.new_state == "Pre-approved"
        service.transition.assert_awaited_once_with("evt-1", "approve", "a@example.edu", TENANT, None)

    @pytest.mark.asyncio
    async def test_persistence_error_becomes_failure_with_state(self):
        error = PersistenceError("Failed to update booking evt-1")
        error.new_state = "Canceled"
        service = MagicMock()
        service.transition = AsyncMock(side_effect=error)

        result = await InProcessTransitionGateway(service).transition("evt-1", "noShow", "pa@example.edu", TENANT)

        assert result.success is False
        assert result.new_state == "Canceled"


class TestRecover:
    """Tests for TransitionResult.recover."""

    @pytest.mark.asyncio
    async def test_failure_runs_handler(self):
        handler = AsyncMock(return_value=TransitionResult.ok("Declined", via_fallback=True))
        failed = TransitionResult.failure("down")

        result = await failed.recover(handler)

        assert result.via_fallback is True
        handler.assert_awaited_once_with(failed)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "result",
        [TransitionResult.ok("Approved"), TransitionResult.rejection("not valid", "Closed")],
    )
    async def test_success_and_rejection_pass_through(self, result):
        handler = AsyncMock()
        assert await result.recover(handler) is result
        handler.assert_not_called()
