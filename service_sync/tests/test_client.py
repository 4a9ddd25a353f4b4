"""
Unit tests for client wiring and logging context.
"""

import httpx
import pytest
from unittest.mock import AsyncMock

from shared.config import SyncConfig
from shared.logging import add_correlation_context, clear_context, set_request_id, set_user_context
from service_sync.app.main import SyncClient
from service_sync.app.persistence.local_state import InMemoryStateStore, RedisStateStore
from service_sync.app.view import WorkspaceView


def _backend(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/api/workspaces/":
        return httpx.Response(200, json=[{"id": "W1", "name": "Main", "is_default": True}])
    return httpx.Response(404, json={"detail": "Not Found"})


class TestSyncClient:
    """Test cases for SyncClient."""

    def test_wires_store_from_config(self):
        config = SyncConfig(api_base_url="http://backend.test", gateway_failure_threshold=7)

        client = SyncClient(AsyncMock(return_value="token"), config)

        assert client.gateway.base_url == "http://backend.test"
        assert client.gateway.circuit_breaker.failure_threshold == 7
        assert isinstance(client.store.local_state, InMemoryStateStore)
        assert client.store.metrics is client.metrics
        assert isinstance(client.new_view(), WorkspaceView)

    def test_redis_local_state_when_configured(self):
        config = SyncConfig(redis_url="redis://localhost:6379/1", local_state_namespace="tests")

        client = SyncClient(AsyncMock(return_value="token"), config)

        assert isinstance(client.store.local_state, RedisStateStore)
        assert client.store.local_state.namespace == "tests"

    @pytest.mark.asyncio
    async def test_sign_out_clears_cache(self):
        client = SyncClient(
            AsyncMock(return_value="token"),
            SyncConfig(api_base_url="http://backend.test"),
            transport=httpx.MockTransport(_backend),
        )
        workspace = await client.store.resolve_current_workspace()
        assert workspace.id == "W1"
        assert client.store.cache.stats()["total_entries"] == 1

        client.sign_out()

        assert client.store.cache.stats()["total_entries"] == 0
        await client.aclose()


class TestLoggingContext:
    """Test cases for correlation context processors."""

    def test_correlation_fields_added(self):
        request_id = set_request_id()
        set_user_context(user_id="user-1", workspace_id="W1")

        event = add_correlation_context(None, "info", {"event": "x"})

        assert event["request_id"] == request_id
        assert event["user_id"] == "user-1"
        assert event["workspace_id"] == "W1"

        clear_context()
        assert add_correlation_context(None, "info", {"event": "x"}) == {"event": "x"}
