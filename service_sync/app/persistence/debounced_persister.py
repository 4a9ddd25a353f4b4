"""
Debounced write-back of remote-owned state.

Rapid selection changes collapse into one remote write per owner: each
``schedule`` merges its fields into the owner's pending record and restarts
the owner's quiet-period timer. Writes are advisory; a failed write is
logged and dropped, and the next write or hydration reconciles anyway.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional, Set, TYPE_CHECKING

from shared.logging import get_logger
from ..clock import Clock, SYSTEM_CLOCK

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector

Writer = Callable[[str, Dict[str, Any]], Awaitable[Any]]
FlushHook = Callable[[str, Dict[str, Any]], Any]

DEFAULT_DEBOUNCE_SECONDS = 0.5


class DebouncedPersister:
    """Per-owner debounced, merging remote writer."""

    def __init__(
        self,
        writer: Writer,
        *,
        delay: float = DEFAULT_DEBOUNCE_SECONDS,
        clock: Optional[Clock] = None,
        on_flushed: Optional[FlushHook] = None,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.writer = writer
        self.delay = delay
        self.clock = clock or SYSTEM_CLOCK
        self.on_flushed = on_flushed
        self.metrics = metrics
        self.logger = get_logger("sync.persister")

        self._pending: Dict[str, Dict[str, Any]] = {}
        # Timers still in their quiet period; only these may be cancelled.
        self._timers: Dict[str, "asyncio.Task[None]"] = {}
        self._tasks: Set["asyncio.Task[None]"] = set()

    def schedule(self, owner_id: str, fields: Dict[str, Any]) -> None:
        """Merge ``fields`` into the owner's pending write and restart its timer."""
        merged = self._pending.setdefault(owner_id, {})
        merged.update(fields)

        timer = self._timers.pop(owner_id, None)
        if timer is not None:
            timer.cancel()

        task = asyncio.ensure_future(self._run_timer(owner_id))
        self._timers[owner_id] = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def pending(self, owner_id: str) -> Optional[Dict[str, Any]]:
        fields = self._pending.get(owner_id)
        return dict(fields) if fields is not None else None

    def has_pending(self) -> bool:
        return bool(self._pending)

    async def _run_timer(self, owner_id: str) -> None:
        await self.clock.sleep(self.delay)
        if self._timers.get(owner_id) is asyncio.current_task():
            del self._timers[owner_id]
        fields = self._pending.pop(owner_id, None)
        if fields is not None:
            await self._write(owner_id, fields)

    async def _write(self, owner_id: str, fields: Dict[str, Any]) -> bool:
        try:
            await self.writer(owner_id, fields)
        except Exception as exc:
            self._record("error")
            self.logger.error(
                "Failed to persist state",
                owner_id=owner_id,
                fields=fields,
                error=str(exc),
            )
            return False

        self._record("success")
        self.logger.debug("Persisted state", owner_id=owner_id, fields=fields)
        if self.on_flushed is not None:
            self.on_flushed(owner_id, fields)
        return True

    async def flush(self, owner_id: Optional[str] = None) -> None:
        """Write pending records now instead of waiting for their timers."""
        owners = [owner_id] if owner_id is not None else list(self._pending)
        for owner in owners:
            timer = self._timers.pop(owner, None)
            if timer is not None:
                timer.cancel()
            fields = self._pending.pop(owner, None)
            if fields is not None:
                await self._write(owner, fields)

    def cancel(self, owner_id: str) -> None:
        """Drop the owner's pending write and stop its timer."""
        timer = self._timers.pop(owner_id, None)
        if timer is not None:
            timer.cancel()
        if self._pending.pop(owner_id, None) is not None:
            self.logger.debug("Pending write cancelled", owner_id=owner_id)

    def cancel_all(self) -> None:
        for owner_id in list(self._timers):
            self.cancel(owner_id)
        self._pending.clear()

    async def close(self, flush: bool = False) -> None:
        """Tear down: flush or cancel every pending write."""
        if flush:
            await self.flush()
        self.cancel_all()

    def _record(self, result: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("persister_writes_total", result=result)
