"""Cache orchestration: named categories over independent TTL stores."""

from __future__ import annotations

import asyncio
import logging
import re
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterator

from repo_graph.cache.persistent import PersistentCacheStore
from repo_graph.cache.store import CacheStats, CacheStore, Clock
from repo_graph.config import (
    CACHE_TTLS,
    MEMORY_CATEGORIES,
    PERSISTED_CATEGORIES,
    EngineConfig,
)

logger = logging.getLogger(__name__)

FetchFn = Callable[[], Awaitable[Any]]


@dataclass
class CacheReport:
    per_category: dict[str, CacheStats] = field(default_factory=dict)
    combined_total: int = 0
    combined_expired: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "perCategory": {name: s.to_dict() for name, s in self.per_category.items()},
            "combinedTotal": self.combined_total,
            "combinedExpired": self.combined_expired,
        }


@dataclass
class CategoryCounters:
    hits: int = 0
    misses: int = 0


@dataclass
class AccessTally:
    """Cache and upstream traffic attributed to one unit of work."""

    hits: int = 0
    misses: int = 0
    upstream_calls: int = 0


_current_tally: ContextVar[AccessTally | None] = ContextVar("repo_graph_access_tally", default=None)


@contextmanager
def track_access() -> Iterator[AccessTally]:
    """Count cache hits, misses and upstream calls made in the current context.

    Tasks started inside the block inherit the tally, so concurrent fetches
    of one analysis add to it while other analyses keep their own.
    """
    tally = AccessTally()
    token = _current_tally.set(tally)
    try:
        yield tally
    finally:
        _current_tally.reset(token)


def current_tally() -> AccessTally | None:
    return _current_tally.get()


def _repository_pattern(full_name: str) -> re.Pattern[str]:
    # "org/repo" must not match "org/repo2" or "other-org/repo"
    return re.compile(rf"(?<![\w.-]){re.escape(full_name)}(?=[:@/]|$)")


class CacheManager:
    """The only cache surface the rest of the engine talks to.

    Each category owns a separate :class:`CacheStore`, so identical keys in
    two categories never collide. :meth:`get_or_fetch` is a plain
    check, fetch, store sequence: two concurrent callers on the same cold key
    both fetch and the last write wins.
    """

    def __init__(
        self,
        stores: dict[str, CacheStore],
        ttls: dict[str, float] | None = None,
    ):
        if not stores:
            raise ValueError("CacheManager needs at least one category")
        self._stores = dict(stores)
        self._ttls = {**CACHE_TTLS, **(ttls or {})}
        self._counters: dict[str, CategoryCounters] = {
            name: CategoryCounters() for name in self._stores
        }

    @classmethod
    def in_memory(cls, ttls: dict[str, float] | None = None, clock: Clock | None = None) -> CacheManager:
        names = PERSISTED_CATEGORIES + MEMORY_CATEGORIES
        return cls({name: CacheStore(clock=clock) for name in names}, ttls=ttls)

    @classmethod
    def from_config(cls, config: EngineConfig, clock: Clock | None = None) -> CacheManager:
        """Persisted categories go to ``config.cache_dir``; the rest stay in-process."""
        stores: dict[str, CacheStore] = {}
        for name in PERSISTED_CATEGORIES:
            if config.persist_cache:
                stores[name] = PersistentCacheStore(Path(config.cache_dir) / f"{name}.json", clock=clock)
            else:
                stores[name] = CacheStore(clock=clock)
        for name in MEMORY_CATEGORIES:
            stores[name] = CacheStore(clock=clock)
        return cls(stores, ttls=config.cache_ttls)

    @property
    def categories(self) -> list[str]:
        return list(self._stores)

    def store(self, category: str) -> CacheStore:
        try:
            return self._stores[category]
        except KeyError:
            raise KeyError(f"Unknown cache category: {category!r}") from None

    def ttl(self, category: str) -> float:
        return self._ttls.get(category, CACHE_TTLS["metadata"])

    # ── Read-through access ─────────────────────────────────

    def get(self, category: str, key: str) -> Any | None:
        return self.store(category).get(key)

    def set(self, category: str, key: str, value: Any, ttl: float | None = None) -> None:
        self.store(category).set(key, value, self.ttl(category) if ttl is None else ttl)

    async def get_or_fetch(
        self,
        category: str,
        key: str,
        fetch_fn: FetchFn,
        ttl: float | None = None,
    ) -> Any:
        """Return the cached value for ``key`` or await ``fetch_fn`` and cache it.

        Exceptions from ``fetch_fn`` propagate and nothing is cached.
        """
        store = self.store(category)
        counters = self._counters[category]
        tally = _current_tally.get()
        cached = store.get(key)
        if cached is not None:
            counters.hits += 1
            if tally is not None:
                tally.hits += 1
            logger.debug("cache hit [%s] %s", category, key)
            return cached

        counters.misses += 1
        if tally is not None:
            tally.misses += 1
        logger.debug("cache miss [%s] %s", category, key)
        value = await fetch_fn()
        if value is not None:
            store.set(key, value, self.ttl(category) if ttl is None else ttl)
        return value

    # ── Invalidation ────────────────────────────────────────

    def invalidate_category(self, category: str) -> None:
        self.store(category).clear()
        self.flush()
        logger.info("Cache category cleared: %s", category)

    def invalidate_repository(self, full_name: str) -> int:
        """Drop every entry whose key mentions ``org/repo``, in every category."""
        pattern = _repository_pattern(full_name)
        removed = sum(
            store.delete_matching(lambda k: pattern.search(k) is not None)
            for store in self._stores.values()
        )
        self.flush()
        logger.info("Cache invalidated for repository %s (%d entries)", full_name, removed)
        return removed

    def clear_all(self) -> None:
        for store in self._stores.values():
            store.clear()
        for counters in self._counters.values():
            counters.hits = counters.misses = 0
        self.flush()
        logger.info("All caches cleared")

    def cleanup(self) -> dict[str, int]:
        removed = {name: store.cleanup() for name, store in self._stores.items()}
        self.flush()
        logger.info("Expired cache entries cleaned: %d", sum(removed.values()))
        return removed

    # ── Persistence ─────────────────────────────────────────

    def flush(self) -> int:
        """Write every dirty persisted category to disk; return how many were written."""
        written = 0
        for store in self._stores.values():
            if isinstance(store, PersistentCacheStore) and store.flush():
                written += 1
        return written

    async def persist(self) -> int:
        """:meth:`flush` on a worker thread, off the event loop."""
        if not any(isinstance(s, PersistentCacheStore) and s.dirty for s in self._stores.values()):
            return 0
        return await asyncio.to_thread(self.flush)

    # ── Statistics ──────────────────────────────────────────

    def stats(self) -> CacheReport:
        report = CacheReport()
        for name, store in self._stores.items():
            stats = store.stats()
            report.per_category[name] = stats
            report.combined_total += stats.total
            report.combined_expired += stats.expired
        return report

    def counters(self) -> dict[str, CategoryCounters]:
        return {name: CategoryCounters(c.hits, c.misses) for name, c in self._counters.items()}

    def total_hits(self) -> int:
        return sum(c.hits for c in self._counters.values())

    def total_misses(self) -> int:
        return sum(c.misses for c in self._counters.values())
