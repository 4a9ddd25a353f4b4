"""
Best-effort local memory of the last selections.

Used as a fallback when the remote context snapshot is unavailable or does
not (yet) carry a value. Never authoritative over the remote snapshot.
"""

from typing import Dict, Optional, Protocol

import redis.asyncio as redis

from shared.logging import get_logger

ACTIVE_WORKSPACE_KEY = "active_workspace"


def active_dataset_key(workspace_id: str) -> str:
    return f"active_dataset:{workspace_id}"


def active_session_key(datasource_id: str) -> str:
    return f"active_session:{datasource_id}"


class LocalStateStore(Protocol):
    """Durable key-value store surviving client restarts."""

    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str) -> bool: ...

    async def delete(self, key: str) -> bool: ...


class InMemoryStateStore:
    """Process-local store; durable only for the life of the process."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> bool:
        self._data[key] = value
        return True

    async def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    def snapshot(self) -> Dict[str, str]:
        return dict(self._data)


class RedisStateStore:
    """Redis-backed store with namespaced keys.

    Errors are logged and reported as misses; a broken store only degrades
    the "resume where you left off" fallback.
    """

    def __init__(self, redis_url: str, namespace: str = "sync", ttl: Optional[int] = None):
        self.redis_url = redis_url
        self.namespace = namespace
        self.ttl = ttl
        self.logger = get_logger("sync.local_state")
        self._redis: Optional[redis.Redis] = None

    async def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url)
        return self._redis

    def _make_key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    async def get(self, key: str) -> Optional[str]:
        try:
            client = await self._get_redis()
            value = await client.get(self._make_key(key))
        except Exception as exc:
            self.logger.error("Local state get error", key=key, error=str(exc))
            return None
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def set(self, key: str, value: str) -> bool:
        try:
            client = await self._get_redis()
            if self.ttl:
                await client.setex(self._make_key(key), self.ttl, value)
            else:
                await client.set(self._make_key(key), value)
            return True
        except Exception as exc:
            self.logger.error("Local state set error", key=key, error=str(exc))
            return False

    async def delete(self, key: str) -> bool:
        try:
            client = await self._get_redis()
            return bool(await client.delete(self._make_key(key)))
        except Exception as exc:
            self.logger.error("Local state delete error", key=key, error=str(exc))
            return False

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
