"""
Workspace hydration: context, datasources, sessions, first message page.

A run walks the steps in order and checks its generation token after every
await. A run whose token went stale ends as ``SUPERSEDED`` without touching
anything; a failed run ends as ``SYNC_FAILED`` and remembers the step so
``retry`` can resume there with everything resolved before it.
"""

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, TYPE_CHECKING

from shared.errors import ErrorResponse, SyncClientError, SyncFailedError, ValidationError
from shared.logging import get_logger
from ..domain.models import ChatSession, Datasource, WorkspaceContext
from ..domain.selection import pick_dataset, pick_session
from ..messages.history import MessageHistory, Viewport
from .generations import GenerationToken

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from ..store import SyncStore


class HydrationStep(str, Enum):
    CONTEXT_FETCH = "context_fetch"
    DATASOURCE_ENSURE = "datasource_ensure"
    DATASET_SELECTION = "dataset_selection"
    SESSION_ENSURE = "session_ensure"
    SESSION_SELECTION = "session_selection"
    MESSAGE_PAGE_FETCH = "message_page_fetch"
    RECONCILE = "reconcile"


class HydrationStatus(str, Enum):
    READY = "ready"
    EMPTY = "empty"
    SYNC_FAILED = "sync_failed"
    SUPERSEDED = "superseded"


STEP_ORDER: List[HydrationStep] = list(HydrationStep)

_FAILURE_MESSAGES: Dict[HydrationStep, str] = {
    HydrationStep.CONTEXT_FETCH: "Failed to load workspace",
    HydrationStep.DATASOURCE_ENSURE: "Failed to load datasources",
    HydrationStep.SESSION_ENSURE: "Failed to load chat sessions",
    HydrationStep.MESSAGE_PAGE_FETCH: "Failed to load messages",
}


@dataclass
class HydrationResult:
    """Outcome of a hydration run; also the resume point for ``retry``."""

    workspace_id: str
    generation: GenerationToken
    status: HydrationStatus = HydrationStatus.READY
    step: HydrationStep = HydrationStep.CONTEXT_FETCH
    context: Optional[WorkspaceContext] = None
    datasources: List[Datasource] = field(default_factory=list)
    dataset_id: Optional[str] = None
    sessions: List[ChatSession] = field(default_factory=list)
    session_id: Optional[str] = None
    history: Optional[MessageHistory] = None
    error: Optional[ErrorResponse] = None

    @property
    def failed(self) -> bool:
        return self.status == HydrationStatus.SYNC_FAILED


class HydrationPipeline:
    """Runs hydration for one view scope.

    Every ``run``/``retry``/``resume`` starts a new generation of ``scope``,
    which makes any earlier run of the same scope stale.
    """

    def __init__(
        self,
        store: "SyncStore",
        *,
        scope: str,
        page_size: Optional[int] = None,
        viewport: Optional[Viewport] = None,
    ):
        self.store = store
        self.scope = scope
        self.page_size = page_size or store.config.message_page_size
        self.viewport = viewport
        self.logger = get_logger("sync.hydration")
        self.last_result: Optional[HydrationResult] = None

        self._handlers: Dict[HydrationStep, Callable[[HydrationResult, bool], Awaitable[Optional[HydrationStatus]]]] = {
            HydrationStep.CONTEXT_FETCH: self._fetch_context,
            HydrationStep.DATASOURCE_ENSURE: self._ensure_datasources,
            HydrationStep.DATASET_SELECTION: self._select_dataset,
            HydrationStep.SESSION_ENSURE: self._ensure_sessions,
            HydrationStep.SESSION_SELECTION: self._select_session,
            HydrationStep.MESSAGE_PAGE_FETCH: self._fetch_first_page,
            HydrationStep.RECONCILE: self._reconcile,
        }

    async def run(
        self,
        workspace_id: str,
        *,
        force_refresh: bool = False,
        token: Optional[GenerationToken] = None,
    ) -> HydrationResult:
        """Hydrate a workspace from scratch.

        Callers that await anything before running pass the ``token`` they
        took up front, so a later switch always holds the newer generation.
        """
        token = token or self.store.generations.begin(self.scope)
        self.logger.info("Hydration started", workspace_id=workspace_id, generation=token.value)
        result = HydrationResult(workspace_id=workspace_id, generation=token)
        return await self._advance(result, HydrationStep.CONTEXT_FETCH, force_refresh)

    async def retry(self, *, token: Optional[GenerationToken] = None) -> HydrationResult:
        """Resume the last failed run from the step that failed."""
        last = self.last_result
        if last is None:
            raise ValidationError("Nothing to retry")
        if not last.failed:
            return await self.run(last.workspace_id, token=token)
        self.logger.info("Retrying hydration", workspace_id=last.workspace_id, step=last.step.value)
        return await self.resume(last, last.step, token=token)

    async def resume(
        self,
        base: HydrationResult,
        step: HydrationStep,
        *,
        force_refresh: bool = False,
        token: Optional[GenerationToken] = None,
    ) -> HydrationResult:
        """Continue from ``step`` with everything ``base`` resolved before it."""
        token = token or self.store.generations.begin(self.scope)
        result = dataclasses.replace(
            base,
            generation=token,
            status=HydrationStatus.READY,
            step=step,
            history=None,
            error=None,
        )
        return await self._advance(result, step, force_refresh)

    def is_current(self, result: HydrationResult) -> bool:
        return self.store.generations.is_current(result.generation)

    async def _advance(
        self,
        result: HydrationResult,
        start: HydrationStep,
        force_refresh: bool,
    ) -> HydrationResult:
        for step in STEP_ORDER[STEP_ORDER.index(start):]:
            if not self.is_current(result):
                return self._superseded(result)
            result.step = step
            try:
                terminal = await self._handlers[step](result, force_refresh)
            except Exception as exc:
                if not self.is_current(result):
                    return self._superseded(result)
                return self._failed(result, exc)
            if not self.is_current(result):
                return self._superseded(result)
            if terminal is not None:
                result.status = terminal
                break

        self.logger.info(
            "Hydration finished",
            workspace_id=result.workspace_id,
            status=result.status.value,
            dataset_id=result.dataset_id,
            session_id=result.session_id,
        )
        self.last_result = result
        return result

    def _superseded(self, result: HydrationResult) -> HydrationResult:
        self.logger.debug(
            "Discarding stale hydration result",
            workspace_id=result.workspace_id,
            step=result.step.value,
            generation=result.generation.value,
        )
        if self.store.metrics:
            self.store.metrics.increment_counter("stale_generation_discards_total", step=result.step.value)
        if result.history is not None:
            result.history.close()
        result.status = HydrationStatus.SUPERSEDED
        return result

    def _failed(self, result: HydrationResult, exc: Exception) -> HydrationResult:
        message = _FAILURE_MESSAGES.get(result.step, "Failed to synchronize workspace")
        details = exc.to_response().model_dump() if isinstance(exc, SyncClientError) else {"reason": str(exc)}
        self.logger.error(
            "Hydration step failed",
            workspace_id=result.workspace_id,
            step=result.step.value,
            error=str(exc),
        )
        if result.history is not None:
            result.history.close()
            result.history = None
        result.status = HydrationStatus.SYNC_FAILED
        result.error = SyncFailedError(result.step.value, message, {"cause": details}).to_response()
        self.last_result = result
        return result

    # Steps

    async def _fetch_context(self, result: HydrationResult, force_refresh: bool) -> None:
        result.context = await self.store.get_context(result.workspace_id, force_refresh=force_refresh)

    async def _ensure_datasources(self, result: HydrationResult, force_refresh: bool) -> None:
        result.datasources = await self.store.get_datasources(result.workspace_id, force_refresh=force_refresh)

    async def _select_dataset(self, result: HydrationResult, force_refresh: bool) -> Optional[HydrationStatus]:
        candidate = result.context.last_active_dataset_id if result.context else None
        if not candidate:
            candidate = await self.store.recall_dataset(result.workspace_id)
        result.dataset_id = pick_dataset(result.datasources, [candidate])
        if result.dataset_id is None:
            self.logger.info("No ready datasource", workspace_id=result.workspace_id)
            result.sessions = []
            result.session_id = None
            return HydrationStatus.EMPTY
        return None

    async def _ensure_sessions(self, result: HydrationResult, force_refresh: bool) -> None:
        result.sessions = await self.store.get_sessions(result.dataset_id, force_refresh=force_refresh)

    async def _select_session(self, result: HydrationResult, force_refresh: bool) -> None:
        remote = result.context.last_active_session_id if result.context else None
        local = await self.store.recall_session(result.dataset_id)
        result.session_id = pick_session(result.sessions, [remote, local])

    async def _fetch_first_page(self, result: HydrationResult, force_refresh: bool) -> None:
        if result.session_id is None:
            return
        token = result.generation
        history = MessageHistory(
            result.session_id,
            self.store.get_message_page,
            page_size=self.page_size,
            viewport=self.viewport,
            is_current=lambda: self.store.generations.is_current(token),
        )
        result.history = history
        await history.load_initial()

    async def _reconcile(self, result: HydrationResult, force_refresh: bool) -> None:
        await self.store.remember_dataset(result.workspace_id, result.dataset_id)
        if result.session_id is not None:
            await self.store.remember_session(result.dataset_id, result.session_id)

        context = result.context
        remembered = (
            (context.last_active_dataset_id, context.last_active_session_id) if context else (None, None)
        )
        effective = (result.dataset_id, result.session_id)
        if effective == remembered or not self.is_current(result):
            return

        fields = {
            "last_active_dataset_id": result.dataset_id,
            "last_active_session_id": result.session_id,
        }
        self.logger.debug("Reconciling remote selection", workspace_id=result.workspace_id, **fields)
        patched = self.store.save_context_state(result.workspace_id, fields)
        if context is not None:
            result.context = patched or context.with_state(fields)
