"""
In-process TTL cache with per-key request coalescing.
"""

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, Iterable, Optional, Tuple, TypeVar, TYPE_CHECKING

from shared.logging import get_logger
from ..clock import Clock, SYSTEM_CLOCK

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector

T = TypeVar("T")
CacheKey = Tuple[str, str]

DEFAULT_TTL = 300.0
DEFAULT_TTLS: Dict[str, float] = {
    "workspaces": 300.0,
    "context": 300.0,
    "datasources": 300.0,
    "sessions": 120.0,
    "messages": 60.0,
}


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """A cached value and the clock reading at which it was fetched."""

    value: T
    fetched_at: float

    def is_fresh(self, now: float, ttl: float) -> bool:
        return now - self.fetched_at < ttl


class CacheStore:
    """Keyed cache of remote resources.

    Entries are keyed by ``(resource_type, params)``. A stale entry is never
    served: once its TTL has elapsed the next :meth:`fetch` loads again.
    Concurrent fetches for a key share a single loader call.
    """

    def __init__(
        self,
        clock: Optional[Clock] = None,
        *,
        ttls: Optional[Dict[str, float]] = None,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.clock = clock or SYSTEM_CLOCK
        self.metrics = metrics
        self.logger = get_logger("sync.cache")

        self._ttls: Dict[str, float] = dict(DEFAULT_TTLS)
        if ttls:
            self._ttls.update(ttls)

        self._entries: Dict[CacheKey, CacheEntry[Any]] = {}
        self._pending: Dict[CacheKey, "asyncio.Task[Any]"] = {}
        # Bumped by clear_all so loads started before a clear never write back.
        self._epoch = 0

    def configure(self, resource_type: str, ttl: float) -> None:
        """Set the TTL (seconds) for a resource type."""
        self._ttls[resource_type] = ttl

    def ttl_for(self, resource_type: str) -> float:
        return self._ttls.get(resource_type, DEFAULT_TTL)

    @staticmethod
    def make_key(resource_type: str, params: Iterable[Any]) -> CacheKey:
        """Serialize params into a stable key component."""
        return resource_type, json.dumps(list(params), default=str, separators=(",", ":"))

    async def fetch(
        self,
        resource_type: str,
        params: Iterable[Any],
        loader: Callable[..., Awaitable[T]],
        *,
        ttl_override: Optional[float] = None,
        retain: bool = True,
    ) -> T:
        """Return a fresh cached value, join an in-flight load, or start one.

        ``loader`` is called as ``loader(*params)``. ``ttl_override=0`` treats
        any existing entry as stale but still joins an in-flight load.
        With ``retain=False`` the loaded value is handed to its waiters but
        never stored. Loader errors propagate to every waiter and nothing is
        cached.
        """
        params = tuple(params)
        key = self.make_key(resource_type, params)
        ttl = self.ttl_for(resource_type) if ttl_override is None else ttl_override

        entry = self._entries.get(key)
        if entry is not None and entry.is_fresh(self.clock.now(), ttl):
            self._record_lookup(resource_type, "hit")
            return entry.value

        task = self._pending.get(key)
        if task is not None:
            self._record_lookup(resource_type, "coalesced")
            self.logger.debug("Joined in-flight request", resource_type=resource_type, key=key[1])
        else:
            self._record_lookup(resource_type, "miss")
            self.logger.debug("Cache miss, fetching", resource_type=resource_type, key=key[1])
            task = self._start_load(key, resource_type, params, loader, retain)

        # Shielded so a cancelled waiter never cancels the shared load.
        return await asyncio.shield(task)

    def _start_load(
        self,
        key: CacheKey,
        resource_type: str,
        params: Tuple[Any, ...],
        loader: Callable[..., Awaitable[T]],
        retain: bool = True,
    ) -> "asyncio.Task[T]":
        epoch = self._epoch

        async def _load() -> T:
            try:
                value = await loader(*params)
            except Exception as exc:
                if self.metrics:
                    self.metrics.increment_counter("cache_load_failures_total", resource_type=resource_type)
                self.logger.warning(
                    "Cache load failed",
                    resource_type=resource_type,
                    key=key[1],
                    error=str(exc),
                )
                raise
            finally:
                if self._pending.get(key) is asyncio.current_task():
                    del self._pending[key]

            if not retain:
                return value
            if epoch == self._epoch:
                self._entries[key] = CacheEntry(value, self.clock.now())
            else:
                self.logger.debug("Dropping result loaded before cache clear", resource_type=resource_type)
            return value

        task = asyncio.ensure_future(_load())
        task.add_done_callback(_consume_exception)
        self._pending[key] = task
        return task

    def peek(self, resource_type: str, params: Iterable[Any]) -> Optional[Any]:
        """Return the fresh cached value for a key without loading."""
        entry = self._entries.get(self.make_key(resource_type, params))
        if entry is None or not entry.is_fresh(self.clock.now(), self.ttl_for(resource_type)):
            return None
        return entry.value

    def replace(self, resource_type: str, params: Iterable[Any], value: Any) -> bool:
        """Overwrite an existing entry's value, keeping its fetch time."""
        key = self.make_key(resource_type, params)
        entry = self._entries.get(key)
        if entry is None:
            return False
        self._entries[key] = CacheEntry(value, entry.fetched_at)
        return True

    def is_pending(self, resource_type: str, params: Iterable[Any]) -> bool:
        return self.make_key(resource_type, params) in self._pending

    def invalidate(self, resource_type: str, params: Iterable[Any]) -> bool:
        """Drop the cached entry for a key. An in-flight load is left alone."""
        key = self.make_key(resource_type, params)
        removed = self._entries.pop(key, None) is not None
        if removed:
            self.logger.debug("Cache invalidated", resource_type=resource_type, key=key[1])
        return removed

    def invalidate_all(self, resource_type: str) -> int:
        """Drop every cached entry of a resource type."""
        keys = [key for key in self._entries if key[0] == resource_type]
        for key in keys:
            del self._entries[key]
        if keys:
            self.logger.debug("Cache invalidated for resource type", resource_type=resource_type, count=len(keys))
        return len(keys)

    def clear_all(self) -> None:
        """Forget every entry and every in-flight load (sign-out).

        Loads already running still resolve for their current waiters, but
        their results are not written back.
        """
        self._epoch += 1
        self._entries.clear()
        self._pending.clear()
        self.logger.info("Cache cleared")

    def stats(self) -> Dict[str, Any]:
        """Entry and pending counts per resource type."""
        details: Dict[str, Dict[str, int]] = {}
        for resource_type, _ in self._entries:
            details.setdefault(resource_type, {"entries": 0, "pending": 0})["entries"] += 1
        for resource_type, _ in self._pending:
            details.setdefault(resource_type, {"entries": 0, "pending": 0})["pending"] += 1
        return {
            "resource_types": sorted(details),
            "total_entries": len(self._entries),
            "pending_requests": len(self._pending),
            "details": details,
        }

    def _record_lookup(self, resource_type: str, result: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("cache_lookups_total", resource_type=resource_type, result=result)


def _consume_exception(task: "asyncio.Task[Any]") -> None:
    # Loader errors are delivered to waiters; this keeps asyncio from warning
    # when every waiter went away first.
    if not task.cancelled():
        task.exception()
