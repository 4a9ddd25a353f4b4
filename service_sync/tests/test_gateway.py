"""
Unit tests for the HTTP gateway.
"""

import json

import httpx
import pytest
from unittest.mock import AsyncMock

from shared.errors import AuthenticationError, ExternalServiceError, NotFoundError
from shared.metrics import MetricsCollector
from shared.retry import RetryConfig
from service_sync.app.adapters.gateway import GatewayUnavailableError, HttpGateway
from service_sync.app.domain.models import DatasourceStatus, MessageRole

DATASOURCE = {
    "id": "D1",
    "name": "sales.csv",
    "status": "READY",
    "created_at": "2024-01-01T00:00:00Z",
    "updated_at": "2024-01-02T00:00:00Z",
    "workspace_id": "W1",
}

MESSAGE = {
    "id": "M1",
    "session_id": "S1",
    "role": "assistant",
    "content": "Hello",
    "message_metadata": {"rows": 3},
    "created_at": "2024-01-01T00:00:00Z",
}


class Backend:
    """Scripted responses keyed by (method, path)."""

    def __init__(self):
        self.routes = {}
        self.requests = []

    def add(self, method, path, *responses):
        self.routes.setdefault((method, path), []).extend(responses)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json={"detail": "Not Found"})
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, Exception):
            raise response
        return httpx.Response(response.status_code, headers=response.headers, content=response.content)


class TestHttpGateway:
    """Test cases for HttpGateway."""

    @pytest.fixture
    def backend(self):
        return Backend()

    @pytest.fixture
    def token_provider(self):
        return AsyncMock(return_value="token-1")

    @pytest.fixture
    def sleep(self):
        return AsyncMock()

    @pytest.fixture
    def gateway(self, backend, token_provider, sleep):
        return HttpGateway(
            "http://backend.test/",
            token_provider,
            transport=httpx.MockTransport(backend.handler),
            retry_config=RetryConfig(max_attempts=3, base_delay=0.01, jitter=False),
            metrics=MetricsCollector(),
            sleep=sleep,
        )

    @pytest.mark.asyncio
    async def test_get_datasources_parses_models(self, gateway, backend):
        backend.add("GET", "/api/datasets/workspaces/W1/datasources", httpx.Response(200, json=[DATASOURCE]))

        datasources = await gateway.get_datasources("W1")

        assert datasources[0].id == "D1"
        assert datasources[0].status == DatasourceStatus.READY
        assert backend.requests[0].headers["Authorization"] == "Bearer token-1"

    @pytest.mark.asyncio
    async def test_list_workspaces_accepts_envelope(self, gateway, backend):
        backend.add("GET", "/api/workspaces/", httpx.Response(200, json={"items": [{"id": "W1", "name": "Main"}]}))

        workspaces = await gateway.list_workspaces()

        assert [w.id for w in workspaces] == ["W1"]

    @pytest.mark.asyncio
    async def test_get_messages_sends_paging_params(self, gateway, backend):
        backend.add("GET", "/api/sessions/S1/messages", httpx.Response(200, json={
            "items": [MESSAGE],
            "page": 2,
            "page_size": 20,
            "total_items": 21,
            "total_pages": 2,
            "has_next": False,
            "has_previous": True,
        }))

        page = await gateway.get_messages("S1", 2, 20)

        assert page.items[0].role == MessageRole.ASSISTANT
        assert page.has_previous is True
        params = backend.requests[0].url.params
        assert params["page"] == "2"
        assert params["page_size"] == "20"

    @pytest.mark.asyncio
    async def test_update_context_state_patches(self, gateway, backend):
        backend.add("PATCH", "/api/workspaces/W1/state", httpx.Response(204))

        await gateway.update_context_state("W1", {"last_active_dataset_id": "D1", "last_active_session_id": None})

        body = json.loads(backend.requests[0].content)
        assert body == {"last_active_dataset_id": "D1", "last_active_session_id": None}

    @pytest.mark.asyncio
    async def test_send_message_posts_prompt(self, gateway, backend):
        backend.add("POST", "/api/sessions/S1/messages", httpx.Response(200, json={
            "session_id": "S1",
            "message_id": "M2",
            "insight": {"summary": "Sales went up"},
        }))

        result = await gateway.send_message("S1", "How are sales?", "D1")

        assert result.summary_text() == "Sales went up"
        assert json.loads(backend.requests[0].content) == {"prompt": "How are sales?", "dataset_id": "D1"}

    @pytest.mark.asyncio
    async def test_401_refreshes_token_once(self, gateway, backend, token_provider):
        """Test token refresh and replay after a 401."""
        token_provider.side_effect = ["stale", "fresh"]
        backend.add(
            "GET",
            "/api/workspaces/W1/context",
            httpx.Response(401, json={"detail": "expired"}),
            httpx.Response(200, json={"workspace": {"id": "W1", "name": "Main"}, "state": {"workspace_id": "W1"}}),
        )

        context = await gateway.get_context("W1")

        assert context.workspace.id == "W1"
        assert token_provider.await_args_list[1].args == (True,)
        assert backend.requests[1].headers["Authorization"] == "Bearer fresh"

    @pytest.mark.asyncio
    async def test_second_401_raises_authentication_error(self, gateway, backend):
        backend.add("GET", "/api/workspaces/W1/context", httpx.Response(401, json={"detail": "expired"}))

        with pytest.raises(AuthenticationError):
            await gateway.get_context("W1")

        assert len(backend.requests) == 2

    @pytest.mark.asyncio
    async def test_missing_token_raises(self, gateway, token_provider, backend):
        token_provider.return_value = None

        with pytest.raises(AuthenticationError):
            await gateway.list_workspaces()

        assert backend.requests == []

    @pytest.mark.asyncio
    async def test_404_maps_to_not_found(self, gateway, backend):
        backend.add("DELETE", "/api/sessions/S1", httpx.Response(404, json={"detail": "Session not found"}))

        with pytest.raises(NotFoundError) as exc_info:
            await gateway.delete_session("S1")

        assert exc_info.value.message == "Session not found"

    @pytest.mark.asyncio
    async def test_4xx_carries_backend_detail(self, gateway, backend):
        backend.add("POST", "/api/datasets/D1/sessions", httpx.Response(400, json={"detail": "Dataset not ready"}))

        with pytest.raises(ExternalServiceError) as exc_info:
            await gateway.create_session("D1", "Chat")

        assert "Dataset not ready" in exc_info.value.message
        assert exc_info.value.details["status_code"] == 400

    @pytest.mark.asyncio
    async def test_reads_retry_on_5xx(self, gateway, backend, sleep):
        """Test that transient read failures are retried."""
        backend.add(
            "GET",
            "/api/datasets/D1/sessions",
            httpx.Response(503, json={"detail": "busy"}),
            httpx.Response(200, json=[]),
        )

        sessions = await gateway.get_sessions("D1")

        assert sessions == []
        assert len(backend.requests) == 2
        sleep.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_reads_give_up_after_max_attempts(self, gateway, backend):
        backend.add("GET", "/api/datasets/D1/sessions", httpx.ConnectError("refused"))

        with pytest.raises(GatewayUnavailableError):
            await gateway.get_sessions("D1")

        assert len(backend.requests) == 3

    @pytest.mark.asyncio
    async def test_writes_are_not_retried(self, gateway, backend):
        backend.add("DELETE", "/api/sessions/S1", httpx.Response(500, json={"detail": "boom"}))

        with pytest.raises(GatewayUnavailableError):
            await gateway.delete_session("S1")

        assert len(backend.requests) == 1

    @pytest.mark.asyncio
    async def test_open_circuit_short_circuits(self, gateway, backend):
        """Test that repeated failures open the breaker."""
        backend.add("DELETE", "/api/sessions/S1", httpx.Response(500, json={"detail": "boom"}))
        for _ in range(3):
            with pytest.raises(GatewayUnavailableError):
                await gateway.delete_session("S1")

        with pytest.raises(ExternalServiceError) as exc_info:
            await gateway.delete_session("S1")

        assert "temporarily unavailable" in exc_info.value.message
        assert len(backend.requests) == 3
