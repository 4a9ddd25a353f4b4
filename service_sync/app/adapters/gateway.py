"""
Remote data gateway for the sync core.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, TYPE_CHECKING

import httpx

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from shared.errors import AuthenticationError, ExternalServiceError, NotFoundError
from shared.logging import get_logger
from shared.retry import RetryConfig, RetryError, retry_async
from ..domain.models import (
    ChatMessage,
    ChatSession,
    Datasource,
    Page,
    SendMessageResult,
    Workspace,
    WorkspaceContext,
)

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector

# Called with force_refresh=True after a 401; returns None when the user is signed out.
TokenProvider = Callable[[bool], Awaitable[Optional[str]]]


class RemoteGateway(Protocol):
    """Asynchronous request functions the sync core depends on.

    Every call raises on transport/HTTP failure and returns typed payloads
    on success. Message pages are ordered newest-first.
    """

    async def list_workspaces(self) -> List[Workspace]: ...

    async def get_context(self, workspace_id: str) -> WorkspaceContext: ...

    async def get_datasources(self, workspace_id: str) -> List[Datasource]: ...

    async def get_sessions(self, dataset_id: str) -> List[ChatSession]: ...

    async def get_messages(self, session_id: str, page: int, page_size: int) -> Page[ChatMessage]: ...

    async def update_context_state(self, workspace_id: str, fields: Dict[str, Any]) -> None: ...

    async def create_session(self, dataset_id: str, title: Optional[str] = None) -> ChatSession: ...

    async def delete_session(self, session_id: str) -> None: ...

    async def send_message(self, session_id: str, prompt: str, dataset_id: str) -> SendMessageResult: ...


class GatewayUnavailableError(ExternalServiceError):
    """Transport failure or 5xx; safe to retry for reads."""


class HttpGateway:
    """REST implementation of :class:`RemoteGateway` over httpx."""

    def __init__(
        self,
        base_url: str,
        token_provider: TokenProvider,
        *,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_config: Optional[RetryConfig] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        metrics: Optional["MetricsCollector"] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.base_url = base_url.rstrip('/')
        self.token_provider = token_provider
        self.timeout = timeout
        self.transport = transport
        self.metrics = metrics
        self.sleep = sleep
        self.logger = get_logger("sync.gateway")

        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=3,
            recovery_timeout=30.0,
            name="backend",
            ignored_exceptions=(AuthenticationError, NotFoundError),
        )

        self.retry_config = retry_config or RetryConfig(
            max_attempts=3,
            base_delay=0.5,
            max_delay=5.0,
            jitter=True,
        )

    # Reads

    async def list_workspaces(self) -> List[Workspace]:
        payload = await self._read("workspaces", "/api/workspaces/")
        return [Workspace.model_validate(item) for item in _items(payload)]

    async def get_context(self, workspace_id: str) -> WorkspaceContext:
        payload = await self._read("context", f"/api/workspaces/{workspace_id}/context")
        return WorkspaceContext.model_validate(payload)

    async def get_datasources(self, workspace_id: str) -> List[Datasource]:
        payload = await self._read("datasources", f"/api/datasets/workspaces/{workspace_id}/datasources")
        return [Datasource.model_validate(item) for item in _items(payload)]

    async def get_sessions(self, dataset_id: str) -> List[ChatSession]:
        payload = await self._read("sessions", f"/api/datasets/{dataset_id}/sessions")
        return [ChatSession.model_validate(item) for item in _items(payload)]

    async def get_messages(self, session_id: str, page: int, page_size: int) -> Page[ChatMessage]:
        payload = await self._read(
            "messages",
            f"/api/sessions/{session_id}/messages",
            params={"page": page, "page_size": page_size},
        )
        return Page[ChatMessage].model_validate(payload)

    # Writes

    async def update_context_state(self, workspace_id: str, fields: Dict[str, Any]) -> None:
        await self._write("PATCH", "context_state", f"/api/workspaces/{workspace_id}/state", json_body=fields)

    async def create_session(self, dataset_id: str, title: Optional[str] = None) -> ChatSession:
        body = {"title": title} if title else {}
        payload = await self._write("POST", "sessions", f"/api/datasets/{dataset_id}/sessions", json_body=body)
        return ChatSession.model_validate(payload)

    async def delete_session(self, session_id: str) -> None:
        await self._write("DELETE", "session", f"/api/sessions/{session_id}")

    async def send_message(self, session_id: str, prompt: str, dataset_id: str) -> SendMessageResult:
        payload = await self._write(
            "POST",
            "messages",
            f"/api/sessions/{session_id}/messages",
            json_body={"prompt": prompt, "dataset_id": dataset_id},
        )
        return SendMessageResult.model_validate(payload or {})

    # Plumbing

    async def _read(self, endpoint: str, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """GET with circuit breaker and retry on transient failures."""
        try:
            return await retry_async(
                self._guarded,
                "GET",
                endpoint,
                path,
                params=params,
                exceptions=(GatewayUnavailableError,),
                config=self.retry_config,
                sleep=self.sleep,
            )
        except RetryError as exc:
            raise exc.last_exception

    async def _write(self, method: str, endpoint: str, path: str, json_body: Optional[Dict[str, Any]] = None) -> Any:
        """Mutations are not retried; the caller decides."""
        return await self._guarded(method, endpoint, path, json_body=json_body)

    async def _guarded(self, method: str, endpoint: str, path: str, **kwargs) -> Any:
        try:
            return await self.circuit_breaker.call(self._send, method, endpoint, path, **kwargs)
        except CircuitBreakerOpenException as exc:
            self.logger.warning("Backend circuit open", method=method, path=path)
            raise ExternalServiceError(
                service="backend",
                message="Service temporarily unavailable",
                details={"path": path, "reason": str(exc)},
            )

    async def _send(
        self,
        method: str,
        endpoint: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> Any:
        token = await self.token_provider(False)
        if not token:
            raise AuthenticationError("Not signed in")

        response = await self._perform(method, endpoint, path, token, params, json_body)

        if response.status_code == 401:
            self.logger.info("Access token rejected, refreshing", path=path)
            token = await self.token_provider(True)
            if not token:
                raise AuthenticationError("Authentication session expired. Please sign in again.")
            response = await self._perform(method, endpoint, path, token, params, json_body)
            if response.status_code == 401:
                raise AuthenticationError(
                    "Authentication session expired. Please sign in again.",
                    details={"path": path},
                )

        if response.status_code >= 400:
            self._raise_for_status(response, path)

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    async def _perform(
        self,
        method: str,
        endpoint: str,
        path: str,
        token: str,
        params: Optional[Dict[str, Any]],
        json_body: Optional[Dict[str, Any]],
    ) -> httpx.Response:
        url = f"{self.base_url}{path}"
        headers = {"Authorization": f"Bearer {token}"}
        try:
            if self.metrics:
                with self.metrics.time_operation("gateway_request_duration_seconds", method=method, endpoint=endpoint):
                    return await self._request(method, url, headers, params, json_body)
            return await self._request(method, url, headers, params, json_body)
        except httpx.HTTPError as exc:
            self.logger.error("Backend transport error", method=method, url=url, error=str(exc))
            raise GatewayUnavailableError(
                service="backend",
                message=str(exc) or exc.__class__.__name__,
                details={"path": path},
            )

    async def _request(self, method, url, headers, params, json_body) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            return await client.request(method, url, headers=headers, params=params, json=json_body)

    def _raise_for_status(self, response: httpx.Response, path: str) -> None:
        detail = _error_detail(response)
        details = {"status_code": response.status_code, "path": path}

        if response.status_code == 404:
            raise NotFoundError(detail or "Resource not found", details=details)

        self.logger.error(
            "Backend request failed",
            path=path,
            status_code=response.status_code,
            detail=detail,
        )
        message = detail or f"HTTP error! status: {response.status_code}"
        if response.status_code >= 500:
            raise GatewayUnavailableError(service="backend", message=message, details=details)
        raise ExternalServiceError(service="backend", message=message, details=details)


def _items(payload: Any) -> List[Any]:
    """List endpoints return either a bare list or a paginated envelope."""
    if payload is None:
        return []
    if isinstance(payload, dict):
        return list(payload.get("items", []))
    return list(payload)


def _error_detail(response: httpx.Response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        return response.text or None
    if isinstance(body, dict) and body.get("detail"):
        detail = body["detail"]
        return detail if isinstance(detail, str) else str(detail)
    return None
