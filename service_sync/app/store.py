"""
Composition root of the sync core.

One ``SyncStore`` per signed-in application lifetime (or per test). It owns
the cache, the debounced persister, the generation tracker and the local
selection memory, and exposes typed fetchers over the remote gateway.
"""

from typing import Any, Dict, List, Optional, TYPE_CHECKING

from shared.config import SyncConfig, get_config
from shared.logging import get_logger
from .adapters.gateway import RemoteGateway
from .caching.cache_store import CacheStore
from .clock import Clock, SYSTEM_CLOCK
from .domain.models import ChatMessage, ChatSession, Datasource, Page, Workspace, WorkspaceContext
from .domain.selection import pick_workspace
from .hydration.generations import GenerationTracker
from .persistence.debounced_persister import DebouncedPersister
from .persistence.local_state import (
    ACTIVE_WORKSPACE_KEY,
    InMemoryStateStore,
    LocalStateStore,
    active_dataset_key,
    active_session_key,
)

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector

WORKSPACES = "workspaces"
CONTEXT = "context"
DATASOURCES = "datasources"
SESSIONS = "sessions"
MESSAGES = "messages"


class SyncStore:
    """Cached, coalesced access to workspace resources."""

    def __init__(
        self,
        gateway: RemoteGateway,
        *,
        clock: Optional[Clock] = None,
        config: Optional[SyncConfig] = None,
        local_state: Optional[LocalStateStore] = None,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.gateway = gateway
        self.config = config or get_config()
        self.clock = clock or SYSTEM_CLOCK
        self.metrics = metrics
        self.local_state = local_state if local_state is not None else InMemoryStateStore()
        self.logger = get_logger("sync.store")

        self.cache = CacheStore(self.clock, ttls=self.config.cache_ttls(), metrics=metrics)
        self.persister = DebouncedPersister(
            self._write_context_state,
            delay=self.config.persist_debounce_seconds,
            clock=self.clock,
            on_flushed=self._on_context_state_flushed,
            metrics=metrics,
        )
        self.generations = GenerationTracker()

    # Typed fetchers

    async def get_workspaces(self, force_refresh: bool = False) -> List[Workspace]:
        return await self.cache.fetch(
            WORKSPACES, (), self.gateway.list_workspaces, ttl_override=_ttl(force_refresh)
        )

    async def get_context(self, workspace_id: str, force_refresh: bool = False) -> WorkspaceContext:
        return await self.cache.fetch(
            CONTEXT, (workspace_id,), self.gateway.get_context, ttl_override=_ttl(force_refresh)
        )

    async def get_datasources(self, workspace_id: str, force_refresh: bool = False) -> List[Datasource]:
        return await self.cache.fetch(
            DATASOURCES, (workspace_id,), self.gateway.get_datasources, ttl_override=_ttl(force_refresh)
        )

    async def get_sessions(self, dataset_id: str, force_refresh: bool = False) -> List[ChatSession]:
        return await self.cache.fetch(
            SESSIONS, (dataset_id,), self.gateway.get_sessions, ttl_override=_ttl(force_refresh)
        )

    async def get_message_page(self, session_id: str, page: int, page_size: int) -> Page[ChatMessage]:
        """Always a fresh read; identical concurrent page requests still share one call."""
        return await self.cache.fetch(
            MESSAGES, (session_id, page, page_size), self.gateway.get_messages, ttl_override=0, retain=False
        )

    def peek_context(self, workspace_id: str) -> Optional[WorkspaceContext]:
        return self.cache.peek(CONTEXT, (workspace_id,))

    # Invalidation

    def invalidate_workspaces(self) -> None:
        self.cache.invalidate(WORKSPACES, ())

    def invalidate_context(self, workspace_id: str) -> None:
        self.cache.invalidate(CONTEXT, (workspace_id,))

    def invalidate_datasources(self, workspace_id: str) -> None:
        self.cache.invalidate(DATASOURCES, (workspace_id,))

    def invalidate_sessions(self, dataset_id: str) -> None:
        self.cache.invalidate(SESSIONS, (dataset_id,))

    # Remote selection state

    def save_context_state(self, workspace_id: str, fields: Dict[str, Any]) -> Optional[WorkspaceContext]:
        """Optimistically patch the cached context and schedule the remote write.

        Returns the patched context, or ``None`` when none was cached.
        """
        patched = None
        cached = self.peek_context(workspace_id)
        if cached is not None:
            patched = cached.with_state(fields)
            self.cache.replace(CONTEXT, (workspace_id,), patched)
        self.persister.schedule(workspace_id, fields)
        return patched

    async def _write_context_state(self, workspace_id: str, fields: Dict[str, Any]) -> None:
        await self.gateway.update_context_state(workspace_id, fields)

    def _on_context_state_flushed(self, workspace_id: str, fields: Dict[str, Any]) -> None:
        self.invalidate_context(workspace_id)

    # Local selection memory

    async def remember_workspace(self, workspace_id: Optional[str]) -> None:
        await self._remember(ACTIVE_WORKSPACE_KEY, workspace_id)

    async def recall_workspace(self) -> Optional[str]:
        return await self.local_state.get(ACTIVE_WORKSPACE_KEY)

    async def remember_dataset(self, workspace_id: str, dataset_id: Optional[str]) -> None:
        await self._remember(active_dataset_key(workspace_id), dataset_id)

    async def recall_dataset(self, workspace_id: str) -> Optional[str]:
        return await self.local_state.get(active_dataset_key(workspace_id))

    async def remember_session(self, dataset_id: str, session_id: Optional[str]) -> None:
        await self._remember(active_session_key(dataset_id), session_id)

    async def recall_session(self, dataset_id: str) -> Optional[str]:
        return await self.local_state.get(active_session_key(dataset_id))

    async def _remember(self, key: str, value: Optional[str]) -> None:
        if value is None:
            await self.local_state.delete(key)
        else:
            await self.local_state.set(key, value)

    async def resolve_current_workspace(self) -> Optional[Workspace]:
        """Remembered workspace if still listed, else the default, else the first."""
        workspaces = await self.get_workspaces()
        remembered = await self.recall_workspace()
        workspace = pick_workspace(workspaces, remembered)
        self.logger.debug(
            "Resolved current workspace",
            remembered=remembered,
            workspace_id=workspace.id if workspace else None,
        )
        return workspace

    # Lifecycle

    def clear_all(self) -> None:
        """Sign-out: forget cached data, drop pending writes and stale every in-flight hydration.

        Locally remembered selections are kept.
        """
        self.generations.cancel_all()
        self.cache.clear_all()
        self.persister.cancel_all()

    async def aclose(self, flush: bool = False) -> None:
        await self.persister.close(flush=flush)
        close = getattr(self.local_state, "close", None)
        if close is not None:
            await close()


def _ttl(force_refresh: bool) -> Optional[float]:
    return 0 if force_refresh else None
