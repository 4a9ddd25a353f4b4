"""
Workspace view state owner.

A ``WorkspaceView`` is the one place that mutates what the UI shows for a
workspace. Local selection changes are applied optimistically and then
reconciled to the backend through the store's debounced persister; every
switch starts a new generation so late results of the previous selection
are dropped.
"""

import itertools
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

from shared.errors import ErrorResponse, NotFoundError, SyncClientError, ValidationError
from shared.logging import get_logger, set_user_context
from .domain.models import (
    ChatMessage,
    ChatSession,
    Datasource,
    MessageRole,
    MessageStatus,
    WorkspaceContext,
)
from .domain.selection import pick_session
from .hydration.generations import GenerationToken
from .hydration.pipeline import HydrationPipeline, HydrationResult, HydrationStatus, HydrationStep
from .messages.history import MessageHistory, Viewport
from .store import SyncStore

_view_ids = itertools.count(1)


@dataclass
class ViewState:
    """What the UI renders for one workspace."""

    workspace_id: Optional[str] = None
    status: Optional[HydrationStatus] = None
    context: Optional[WorkspaceContext] = None
    datasources: List[Datasource] = field(default_factory=list)
    dataset_id: Optional[str] = None
    sessions: List[ChatSession] = field(default_factory=list)
    session_id: Optional[str] = None
    history: Optional[MessageHistory] = None
    sync_error: Optional[ErrorResponse] = None
    action_error: Optional[ErrorResponse] = None
    is_hydrating: bool = False

    @property
    def messages(self) -> List[ChatMessage]:
        return list(self.history.messages) if self.history is not None else []


class WorkspaceView:
    """Single logical owner of UI state for one workspace view."""

    def __init__(
        self,
        store: SyncStore,
        *,
        viewport: Optional[Viewport] = None,
        scope: Optional[str] = None,
    ):
        self.store = store
        self.scope = scope or f"workspace-view:{next(_view_ids)}"
        self.viewport = viewport
        self.pipeline = HydrationPipeline(store, scope=self.scope, viewport=viewport)
        self.state = ViewState()
        self.closed = False
        self.logger = get_logger("sync.view")
        self._workspaces: Set[str] = set()

    # Workspace lifecycle

    async def open(self, workspace_id: str, force_refresh: bool = False) -> ViewState:
        """Show ``workspace_id``; data of the previously shown workspace is dropped at once."""
        token = self._supersede()
        self._close_history()
        self.state = ViewState(workspace_id=workspace_id, is_hydrating=True)
        self._workspaces.add(workspace_id)
        set_user_context(workspace_id=workspace_id)
        self.logger.info("Opening workspace", workspace_id=workspace_id, scope=self.scope)

        result = await self.pipeline.run(workspace_id, force_refresh=force_refresh, token=token)
        if self._commit(result):
            await self.store.remember_workspace(workspace_id)
        return self.state

    switch_workspace = open

    async def open_current(self, force_refresh: bool = False) -> ViewState:
        """Open the remembered, default or first workspace."""
        workspace = await self.store.resolve_current_workspace()
        if workspace is None:
            raise NotFoundError("No workspace available")
        return await self.open(workspace.id, force_refresh=force_refresh)

    async def retry(self) -> ViewState:
        """Resume hydration from the step that failed."""
        token = self._supersede()
        self.state.is_hydrating = True
        result = await self.pipeline.retry(token=token)
        self._commit(result)
        return self.state

    def dismiss_error(self) -> None:
        self.state.sync_error = None

    async def close(self, flush: bool = False) -> None:
        """Tear down: stale every in-flight load and cancel (or flush) pending writes."""
        self.closed = True
        self.store.generations.cancel_current(self.scope)
        for workspace_id in self._workspaces:
            if flush:
                await self.store.persister.flush(workspace_id)
            else:
                self.store.persister.cancel(workspace_id)
        self._close_history()
        self.state.is_hydrating = False
        self.logger.debug("View closed", scope=self.scope, flushed=flush)

    # Selection

    async def select_dataset(self, dataset_id: str) -> ViewState:
        workspace_id = self._require_workspace()
        datasource = next((ds for ds in self.state.datasources if ds.id == dataset_id), None)
        if datasource is None or not datasource.is_ready:
            raise ValidationError("Datasource is not ready", details={"dataset_id": dataset_id})

        token = self._supersede()
        self.state.action_error = None
        context = self._save_selection(
            workspace_id,
            {"last_active_dataset_id": dataset_id, "last_active_session_id": None},
        )
        self._close_history()
        self.state.dataset_id = dataset_id
        self.state.sessions = []
        self.state.session_id = None
        self.state.is_hydrating = True

        base = self._base_result(workspace_id, context)
        result = await self.pipeline.resume(base, HydrationStep.SESSION_ENSURE, token=token)
        if self._commit(result):
            await self.store.remember_dataset(workspace_id, dataset_id)
        return self.state

    async def select_session(self, session_id: str) -> ViewState:
        workspace_id = self._require_workspace()
        dataset_id = self._require_dataset()
        if session_id not in {session.id for session in self.state.sessions}:
            raise ValidationError("Unknown chat session", details={"session_id": session_id})

        token = self._supersede()
        context = self._save_selection(
            workspace_id,
            {"last_active_dataset_id": dataset_id, "last_active_session_id": session_id},
        )
        self._close_history()
        self.state.session_id = session_id
        self.state.is_hydrating = True

        base = self._base_result(workspace_id, context)
        result = await self.pipeline.resume(base, HydrationStep.MESSAGE_PAGE_FETCH, token=token)
        if self._commit(result):
            await self.store.remember_session(dataset_id, session_id)
        return self.state

    async def refresh_datasources(self) -> ViewState:
        """Reload the datasource list; picks a dataset if none was usable before."""
        workspace_id = self._require_workspace()
        try:
            datasources = await self.store.get_datasources(workspace_id, force_refresh=True)
        except SyncClientError as exc:
            if self.state.workspace_id == workspace_id:
                self.state.sync_error = exc.to_response()
            return self.state

        if self.closed or self.state.workspace_id != workspace_id:
            return self.state
        self.state.datasources = list(datasources)

        if self.state.dataset_id is None and any(ds.is_ready for ds in datasources):
            token = self._supersede()
            base = self._base_result(workspace_id, self.state.context)
            result = await self.pipeline.resume(base, HydrationStep.DATASET_SELECTION, token=token)
            self._commit(result)
        return self.state

    # Paging

    async def load_older(self) -> bool:
        return await self._page(lambda history: history.load_older())

    async def on_sentinel_visible(self) -> bool:
        return await self._page(lambda history: history.on_sentinel_visible())

    async def _page(self, action) -> bool:
        history = self.state.history
        if history is None:
            return False
        try:
            return await action(history)
        except SyncClientError as exc:
            if history.is_active:
                self.state.sync_error = exc.to_response()
            return False

    # User actions

    async def send_message(self, prompt: str) -> ChatMessage:
        """Post a prompt with an optimistic user message and reply placeholder.

        Raises on failure after marking the user message as errored.
        """
        prompt = prompt.strip()
        if not prompt:
            raise ValidationError("Message is empty")
        workspace_id = self._require_workspace()
        dataset_id = self.state.dataset_id
        if dataset_id is None:
            raise ValidationError("Please select a dataset first")

        self.state.action_error = None
        try:
            if self.state.session_id is None:
                await self.create_session()
            session_id = self.state.session_id
            history = self.state.history
            if session_id is None or history is None:
                raise ValidationError("Chat session is not loaded")

            now = datetime.now(timezone.utc)
            user_message = ChatMessage(
                id=f"local-{uuid.uuid4().hex}",
                session_id=session_id,
                role=MessageRole.USER,
                content=prompt,
                created_at=now,
                status=MessageStatus.SENDING,
            )
            placeholder = ChatMessage(
                id=f"pending-{uuid.uuid4().hex}",
                session_id=session_id,
                role=MessageRole.ASSISTANT,
                created_at=now,
                is_pending=True,
            )
            await history.append(user_message, placeholder)

            try:
                result = await self.store.gateway.send_message(session_id, prompt, dataset_id)
            except Exception as exc:
                self.logger.error("Send message failed", session_id=session_id, error=str(exc))
                await history.replace(
                    user_message.id,
                    user_message.model_copy(update={"status": MessageStatus.ERROR}),
                )
                await history.replace(
                    placeholder.id,
                    placeholder.model_copy(update={
                        "content": f"Sorry, I couldn't process that request: {_error_message(exc)}",
                        "status": MessageStatus.ERROR,
                        "is_pending": False,
                    }),
                )
                self.state.action_error = _error_response(exc)
                raise

            await history.replace(user_message.id, user_message.model_copy(update={"status": MessageStatus.SENT}))
            reply = ChatMessage(
                id=result.message_id or placeholder.id,
                session_id=session_id,
                role=MessageRole.ASSISTANT,
                content=result.summary_text(),
                message_metadata=result.metadata(),
                created_at=datetime.now(timezone.utc),
                status=MessageStatus.SENT,
            )
            await history.replace(placeholder.id, reply)
            return reply
        finally:
            self.store.invalidate_sessions(dataset_id)
            self.store.invalidate_datasources(workspace_id)

    async def create_session(self, title: Optional[str] = None) -> ChatSession:
        self._require_workspace()
        dataset_id = self._require_dataset()
        title = title or f"Chat {datetime.now().strftime('%Y-%m-%d %H:%M')}"

        self.state.action_error = None
        try:
            session = await self.store.gateway.create_session(dataset_id, title)
        except SyncClientError as exc:
            self.state.action_error = exc.to_response()
            raise
        self.store.invalidate_sessions(dataset_id)
        self.logger.info("Chat session created", dataset_id=dataset_id, session_id=session.id)

        if self.state.dataset_id == dataset_id:
            self.state.sessions = [session] + [s for s in self.state.sessions if s.id != session.id]
            await self.select_session(session.id)
        return session

    async def delete_session(self, session_id: str) -> None:
        workspace_id = self._require_workspace()
        dataset_id = self._require_dataset()

        self.state.action_error = None
        try:
            await self.store.gateway.delete_session(session_id)
        except SyncClientError as exc:
            self.state.action_error = exc.to_response()
            raise
        self.store.invalidate_sessions(dataset_id)
        self.logger.info("Chat session deleted", dataset_id=dataset_id, session_id=session_id)

        if self.state.dataset_id != dataset_id:
            return
        remaining = [s for s in self.state.sessions if s.id != session_id]
        self.state.sessions = remaining
        if self.state.session_id != session_id:
            return

        next_session_id = pick_session(remaining)
        if next_session_id is not None:
            await self.select_session(next_session_id)
            return

        self._supersede()
        self._close_history()
        self.state.session_id = None
        self._save_selection(
            workspace_id,
            {"last_active_dataset_id": dataset_id, "last_active_session_id": None},
        )
        await self.store.remember_session(dataset_id, None)

    # Internals

    def _supersede(self) -> GenerationToken:
        """Start this view's next generation before the first await of an action."""
        return self.store.generations.begin(self.scope)

    def _commit(self, result: HydrationResult) -> bool:
        """Apply a pipeline result; stale and superseded results are ignored."""
        if self.closed or result.status == HydrationStatus.SUPERSEDED or not self.pipeline.is_current(result):
            return False
        state = self.state
        state.workspace_id = result.workspace_id
        state.status = result.status
        state.context = result.context
        state.datasources = list(result.datasources)
        state.dataset_id = result.dataset_id
        state.sessions = list(result.sessions)
        state.session_id = result.session_id
        state.history = result.history
        state.sync_error = result.error
        state.is_hydrating = False
        return True

    def _base_result(self, workspace_id: str, context: Optional[WorkspaceContext]) -> HydrationResult:
        token = self.store.generations.current(self.scope) or GenerationToken(self.scope, 0)
        return HydrationResult(
            workspace_id=workspace_id,
            generation=token,
            context=context,
            datasources=list(self.state.datasources),
            dataset_id=self.state.dataset_id,
            sessions=list(self.state.sessions),
            session_id=self.state.session_id,
        )

    def _save_selection(self, workspace_id: str, fields: Dict[str, Any]) -> Optional[WorkspaceContext]:
        patched = self.store.save_context_state(workspace_id, fields)
        if patched is None and self.state.context is not None:
            patched = self.state.context.with_state(fields)
        self.state.context = patched
        return patched

    def _close_history(self) -> None:
        if self.state.history is not None:
            self.state.history.close()
            self.state.history = None

    def _require_workspace(self) -> str:
        if self.state.workspace_id is None:
            raise ValidationError("No workspace is open")
        return self.state.workspace_id

    def _require_dataset(self) -> str:
        if self.state.dataset_id is None:
            raise ValidationError("Please select a dataset first")
        return self.state.dataset_id


def _error_response(exc: Exception) -> ErrorResponse:
    if isinstance(exc, SyncClientError):
        return exc.to_response()
    return ErrorResponse(code="UNEXPECTED_ERROR", message=str(exc) or exc.__class__.__name__)


def _error_message(exc: Exception) -> str:
    return exc.message if isinstance(exc, SyncClientError) else str(exc)
