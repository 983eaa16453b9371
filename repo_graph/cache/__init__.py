"""TTL caches and the orchestration layer that composes them."""

from .store import CacheEntry, CacheStats, CacheStore
from .persistent import PersistentCacheStore
from .manager import CacheManager, CacheReport
from .upstream import CachedUpstream

__all__ = [
    "CacheEntry",
    "CacheStats",
    "CacheStore",
    "PersistentCacheStore",
    "CacheManager",
    "CacheReport",
    "CachedUpstream",
]
