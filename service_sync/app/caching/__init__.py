"""
Sync caching package.

Provides the in-process cache used by the sync core to avoid redundant
gateway calls. Entries are short-lived, never served past their TTL, and
invalidated explicitly whenever the owning entity is mutated.
"""

from .cache_store import CacheEntry, CacheStore, DEFAULT_TTLS

__all__ = ["CacheEntry", "CacheStore", "DEFAULT_TTLS"]
