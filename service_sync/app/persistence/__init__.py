"""
Persistence helpers: debounced remote write-back and local selection memory.
"""

from .debounced_persister import DebouncedPersister
from .local_state import (
    ACTIVE_WORKSPACE_KEY,
    InMemoryStateStore,
    LocalStateStore,
    RedisStateStore,
    active_dataset_key,
    active_session_key,
)

__all__ = [
    "ACTIVE_WORKSPACE_KEY",
    "DebouncedPersister",
    "InMemoryStateStore",
    "LocalStateStore",
    "RedisStateStore",
    "active_dataset_key",
    "active_session_key",
]
