"""
Client wiring for the workspace sync core.
"""

from typing import Optional

import httpx

from shared.circuit_breaker import CircuitBreaker
from shared.config import SyncConfig, get_config
from shared.errors import AuthenticationError, NotFoundError
from shared.logging import clear_context, configure_logging, get_logger, set_request_id, set_user_context
from shared.metrics import MetricsCollector
from shared.retry import RetryConfig
from .adapters.gateway import HttpGateway, TokenProvider
from .messages.history import Viewport
from .persistence.local_state import InMemoryStateStore, LocalStateStore, RedisStateStore
from .store import SyncStore
from .view import WorkspaceView


class SyncClient:
    """Builds the gateway, local state store and ``SyncStore`` from configuration."""

    def __init__(
        self,
        token_provider: TokenProvider,
        config: Optional[SyncConfig] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        local_state: Optional[LocalStateStore] = None,
    ):
        self.config = config or get_config()
        self.client_name = self.config.client_name

        configure_logging(self.client_name, self.config.log_level)
        self.logger = get_logger("sync.client")
        self.metrics = MetricsCollector(self.client_name)
        self.session_id = set_request_id()

        self.gateway = HttpGateway(
            self.config.api_base_url,
            token_provider,
            timeout=self.config.request_timeout_seconds,
            transport=transport,
            retry_config=RetryConfig(max_attempts=self.config.gateway_retry_attempts),
            circuit_breaker=CircuitBreaker(
                failure_threshold=self.config.gateway_failure_threshold,
                recovery_timeout=self.config.gateway_recovery_timeout,
                name="backend",
                ignored_exceptions=(AuthenticationError, NotFoundError),
            ),
            metrics=self.metrics,
        )

        if local_state is None:
            if self.config.redis_url:
                local_state = RedisStateStore(self.config.redis_url, namespace=self.config.local_state_namespace)
            else:
                local_state = InMemoryStateStore()

        self.store = SyncStore(
            self.gateway,
            config=self.config,
            local_state=local_state,
            metrics=self.metrics,
        )

        self.logger.info(
            "Sync client configured",
            env=self.config.env,
            api_base_url=self.config.api_base_url,
            local_state=type(local_state).__name__,
        )

    def new_view(self, viewport: Optional[Viewport] = None) -> WorkspaceView:
        return WorkspaceView(self.store, viewport=viewport)

    def sign_in(self, user_id: str) -> None:
        set_user_context(user_id=user_id)
        self.logger.info("User signed in", user_id=user_id)

    def sign_out(self) -> None:
        """Forget every cached resource and pending write."""
        self.store.clear_all()
        self.logger.info("User signed out")
        clear_context()

    async def aclose(self, flush: bool = True) -> None:
        await self.store.aclose(flush=flush)
        self.logger.info("Sync client closed", flushed=flush)
