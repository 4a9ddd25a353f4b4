"""
Paginated, reverse-chronological message history for one chat session.

The gateway pages newest-first; the history keeps messages oldest-first for
display. Loading an older page prepends above what the user is reading, so
the viewport offset is shifted by the height the new content added.
"""

import asyncio
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Protocol, Tuple

from shared.logging import get_logger
from ..domain.models import ChatMessage, MessageStatus, Page

DEFAULT_PAGE_SIZE = 20
INITIAL_PAGE = 1

PageLoader = Callable[[str, int, int], Awaitable[Page[ChatMessage]]]


class HistoryEvent(str, Enum):
    INITIAL_PAGE_LOADED = "initial_page_loaded"
    OLDER_PAGE_PREPENDED = "older_page_prepended"
    MESSAGE_APPENDED = "message_appended"
    MESSAGE_REPLACED = "message_replaced"


HistoryListener = Callable[[HistoryEvent, "MessageHistory"], None]


class Viewport(Protocol):
    """The scrollable container showing a history.

    ``rendered`` resolves once the container reflects the latest state.
    """

    @property
    def content_height(self) -> float: ...

    @property
    def scroll_offset(self) -> float: ...

    def scroll_to(self, offset: float) -> None: ...

    def scroll_to_bottom(self) -> None: ...

    async def rendered(self) -> None: ...


class MessageHistory:
    """Owner of the materialized message list of a single session.

    Appending new messages and prepending older pages both mutate the list
    under one lock, and the lock is never held across a gateway call; appends
    always land at the tail of whatever is materialized at that moment.
    """

    def __init__(
        self,
        session_id: str,
        page_loader: PageLoader,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
        viewport: Optional[Viewport] = None,
        is_current: Optional[Callable[[], bool]] = None,
    ):
        self.session_id = session_id
        self.page_loader = page_loader
        self.page_size = page_size
        self.viewport = viewport
        self._is_current = is_current
        self.logger = get_logger("sync.history")

        self.messages: List[ChatMessage] = []
        self.page = 0
        self.has_next = False
        self.is_loading_initial = False
        self.is_loading_more = False
        self.closed = False

        self._lock = asyncio.Lock()
        self._listeners: List[HistoryListener] = []

    @property
    def is_active(self) -> bool:
        """False once closed or superseded by a newer generation."""
        if self.closed:
            return False
        return self._is_current() if self._is_current is not None else True

    @property
    def can_load_older(self) -> bool:
        return self.is_active and self.has_next and not self.is_loading_more

    def attach_viewport(self, viewport: Optional[Viewport]) -> None:
        self.viewport = viewport

    def subscribe(self, listener: HistoryListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def message_ids(self) -> List[str]:
        return [message.id for message in self.messages]

    async def load_initial(self) -> bool:
        """Load page 1 and replace the list; returns False if the result was discarded."""
        self.is_loading_initial = True
        try:
            page = await self.page_loader(self.session_id, INITIAL_PAGE, self.page_size)
        finally:
            self.is_loading_initial = False

        if not self.is_active:
            self.logger.debug("Discarding initial page for inactive history", session_id=self.session_id)
            return False

        async with self._lock:
            loaded = list(reversed(page.items))
            loaded_ids = {message.id for message in loaded}
            # Sends still in flight stay at the tail.
            in_flight = [
                message for message in self.messages
                if (message.is_pending or message.status == MessageStatus.SENDING)
                and message.id not in loaded_ids
            ]
            self.messages = loaded + in_flight
            self.page = INITIAL_PAGE
            self.has_next = page.has_next

        self.logger.debug(
            "Initial page loaded",
            session_id=self.session_id,
            count=len(page.items),
            has_next=page.has_next,
        )
        self._emit(HistoryEvent.INITIAL_PAGE_LOADED)
        if self.viewport is not None:
            self.viewport.scroll_to_bottom()
        return True

    async def load_older(self) -> bool:
        """Prepend the next older page, keeping the visible content in place.

        Returns False when nothing was loaded: a load is already running,
        there are no older pages, or the history became inactive meanwhile.
        """
        if not self.can_load_older:
            return False

        self.is_loading_more = True
        try:
            next_page = self.page + 1
            page = await self.page_loader(self.session_id, next_page, self.page_size)

            if not self.is_active:
                self.logger.debug("Discarding older page for inactive history", session_id=self.session_id)
                return False

            # Held through the render so an append cannot grow the tail
            # between measuring and re-anchoring.
            async with self._lock:
                anchor = await self._capture_anchor()
                known = {message.id for message in self.messages}
                # Pages shift when new messages arrive; skip the overlap.
                older = [message for message in reversed(page.items) if message.id not in known]
                self.messages[:0] = older
                self.page = next_page
                self.has_next = page.has_next
                await self._restore_anchor(anchor)

            self.logger.debug(
                "Older page prepended",
                session_id=self.session_id,
                page=next_page,
                added=len(older),
                has_next=page.has_next,
            )
            self._emit(HistoryEvent.OLDER_PAGE_PREPENDED)
            return True
        finally:
            self.is_loading_more = False

    async def on_sentinel_visible(self) -> bool:
        """Hook for the view's top-of-list visibility trigger."""
        if not self.can_load_older:
            return False
        return await self.load_older()

    async def append(self, *messages: ChatMessage) -> None:
        """Append at the tail of the current list."""
        async with self._lock:
            self.messages.extend(messages)
        self._emit(HistoryEvent.MESSAGE_APPENDED)

    async def replace(self, message_id: str, message: ChatMessage) -> bool:
        """Swap a message in place, e.g. an optimistic placeholder for the reply."""
        async with self._lock:
            for index, existing in enumerate(self.messages):
                if existing.id == message_id:
                    self.messages[index] = message
                    break
            else:
                return False
        self._emit(HistoryEvent.MESSAGE_REPLACED)
        return True

    def close(self) -> None:
        self.closed = True
        self._listeners.clear()

    async def _capture_anchor(self) -> Optional[Tuple[float, float]]:
        if self.viewport is None:
            return None
        await self.viewport.rendered()
        return self.viewport.content_height, self.viewport.scroll_offset

    async def _restore_anchor(self, anchor: Optional[Tuple[float, float]]) -> None:
        if anchor is None or self.viewport is None:
            return
        old_height, old_offset = anchor
        await self.viewport.rendered()
        delta = self.viewport.content_height - old_height
        if delta > 0:
            self.viewport.scroll_to(old_offset + delta)

    def _emit(self, event: HistoryEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, self)
            except Exception as exc:
                self.logger.error("History listener failed", listener_event=event.value, error=str(exc))
