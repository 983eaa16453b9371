"""Tests for the cache orchestration layer and the cache-first upstream view."""

import asyncio

import pytest

from repo_graph.cache.manager import CacheManager, current_tally, track_access
from repo_graph.cache.persistent import PersistentCacheStore
from repo_graph.cache.store import CacheStore
from repo_graph.cache.upstream import CachedUpstream
from repo_graph.errors import UpstreamUnavailableError
from repo_graph.models import RepositoryRef

from conftest import FakeClient, make_config

REPO = RepositoryRef("acme", "core")
FILES = {"acme/core": {"force-app/main/default/classes/Foo.cls": "public class Foo {}"}}


def _fetcher(value, calls):
    async def fetch():
        calls.append(1)
        return value
    return fetch


class TestCacheManager:
    def test_get_or_fetch_caches(self, clock):
        cache = CacheManager.in_memory(clock=clock)
        calls = []
        assert asyncio.run(cache.get_or_fetch("files", "k", _fetcher("v", calls))) == "v"
        assert asyncio.run(cache.get_or_fetch("files", "k", _fetcher("other", calls))) == "v"
        assert len(calls) == 1
        counters = cache.counters()["files"]
        assert (counters.hits, counters.misses) == (1, 1)

    def test_get_or_fetch_refetches_after_ttl(self, clock):
        cache = CacheManager.in_memory(clock=clock)
        calls = []
        asyncio.run(cache.get_or_fetch("metadata", "k", _fetcher("v", calls)))
        clock.advance(cache.ttl("metadata") + 1)
        asyncio.run(cache.get_or_fetch("metadata", "k", _fetcher("v2", calls)))
        assert len(calls) == 2
        assert cache.get("metadata", "k") == "v2"

    def test_errors_are_not_cached(self, clock):
        cache = CacheManager.in_memory(clock=clock)

        async def failing():
            raise UpstreamUnavailableError("down")

        with pytest.raises(UpstreamUnavailableError):
            asyncio.run(cache.get_or_fetch("files", "k", failing))
        assert cache.get("files", "k") is None

    def test_categories_are_isolated(self, clock):
        cache = CacheManager.in_memory(clock=clock)
        cache.set("files", "same", 1)
        cache.set("symbols", "same", 2)
        assert cache.get("files", "same") == 1
        assert cache.get("symbols", "same") == 2

    def test_default_ttls(self):
        cache = CacheManager.in_memory()
        assert cache.ttl("repositories") == 300
        assert cache.ttl("contents") == 600
        assert cache.ttl("files") == 1800

    def test_unknown_category(self):
        with pytest.raises(KeyError):
            CacheManager.in_memory().store("nope")

    def test_invalidate_repository(self, clock):
        cache = CacheManager.in_memory(clock=clock)
        cache.set("files", "file:acme/core@main:a.cls", 1)
        cache.set("contents", "tree:acme/core@main", 2)
        cache.set("repositories", "catalog:acme/core", 3)
        cache.set("repositories", "catalog:acme/core2", 4)
        cache.set("files", "file:other/core@main:a.cls", 5)
        assert cache.invalidate_repository("acme/core") == 3
        assert cache.get("repositories", "catalog:acme/core2") == 4
        assert cache.get("files", "file:other/core@main:a.cls") == 5

    def test_clear_all(self, clock):
        cache = CacheManager.in_memory(clock=clock)
        keys = [(c, f"k-{c}") for c in cache.categories]
        for category, key in keys:
            cache.set(category, key, "v")
        cache.clear_all()
        assert all(cache.get(c, k) is None for c, k in keys)
        assert cache.total_hits() == 0

    def test_cleanup_and_stats(self, clock):
        cache = CacheManager.in_memory(ttls={"metadata": 1}, clock=clock)
        cache.set("metadata", "short", True)
        cache.set("files", "long", "v")
        clock.advance(2)
        report = cache.stats()
        assert report.combined_total == 2
        assert report.combined_expired == 1
        assert cache.cleanup()["metadata"] == 1
        assert cache.stats().to_dict()["combinedTotal"] == 1

    def test_from_config_persists_selected_categories(self, tmp_path):
        config = make_config(persist_cache=True, cache_dir=tmp_path)
        cache = CacheManager.from_config(config)
        assert isinstance(cache.store("files"), PersistentCacheStore)
        assert not isinstance(cache.store("symbols"), PersistentCacheStore)
        assert isinstance(cache.store("symbols"), CacheStore)

    def test_from_config_without_persistence(self):
        cache = CacheManager.from_config(make_config(persist_cache=False))
        assert not any(isinstance(cache.store(c), PersistentCacheStore) for c in cache.categories)

    def test_persist_writes_each_dirty_category_once(self, tmp_path):
        cache = CacheManager.from_config(make_config(persist_cache=True, cache_dir=tmp_path))

        async def run():
            for i in range(20):
                await cache.get_or_fetch("files", f"file:acme/core@main:C{i}.cls", _fetcher(f"body {i}", []))
            assert not (tmp_path / "files.json").exists()
            return await cache.persist(), await cache.persist()

        assert asyncio.run(run()) == (1, 0)
        reloaded = CacheManager.from_config(make_config(persist_cache=True, cache_dir=tmp_path))
        assert reloaded.get("files", "file:acme/core@main:C7.cls") == "body 7"
        assert not (tmp_path / "symbols.json").exists()

    def test_admin_operations_flush(self, tmp_path):
        config = make_config(persist_cache=True, cache_dir=tmp_path)
        cache = CacheManager.from_config(config)
        cache.set("files", "file:acme/core@main:Foo.cls", "v")
        cache.flush()
        cache.invalidate_repository("acme/core")
        assert CacheManager.from_config(config).get("files", "file:acme/core@main:Foo.cls") is None

    def test_track_access_is_scoped(self):
        cache = CacheManager.in_memory()

        async def run():
            await cache.get_or_fetch("files", "outside", _fetcher("v", []))
            with track_access() as tally:
                await cache.get_or_fetch("files", "k", _fetcher("v", []))
                await cache.get_or_fetch("files", "k", _fetcher("v", []))
            await cache.get_or_fetch("files", "k", _fetcher("v", []))
            return tally

        tally = asyncio.run(run())
        assert (tally.hits, tally.misses) == (1, 1)
        assert current_tally() is None


class TestCachedUpstream:
    def test_content_served_from_cache(self, clock):
        client = FakeClient(FILES)
        upstream = CachedUpstream(client, CacheManager.in_memory(clock=clock))

        async def run():
            first = await upstream.get_content(REPO, "force-app/main/default/classes/Foo.cls", "main")
            second = await upstream.get_content(REPO, "force-app/main/default/classes/Foo.cls", "main")
            return first, second

        first, second = asyncio.run(run())
        assert first == second
        assert client.calls["content"] == 1

    def test_default_branch_cached(self, clock):
        client = FakeClient(FILES)
        upstream = CachedUpstream(client, CacheManager.in_memory(clock=clock))

        async def run():
            return [await upstream.default_branch(REPO) for _ in range(3)]

        assert asyncio.run(run()) == ["main"] * 3
        assert client.calls["branch"] == 1

    def test_known_branch_skips_upstream(self):
        client = FakeClient(FILES)
        upstream = CachedUpstream(client, CacheManager.in_memory())
        assert asyncio.run(upstream.default_branch(REPO.with_branch("dev"))) == "dev"
        assert client.call_count == 0

    def test_probe_caches_misses(self, clock):
        client = FakeClient(FILES)
        upstream = CachedUpstream(client, CacheManager.in_memory(clock=clock))

        async def run():
            return [await upstream.probe(REPO, "classes/Missing.cls", "main") for _ in range(2)]

        assert asyncio.run(run()) == [None, None]
        assert client.calls["content"] == 1

    def test_probe_hit_returns_content(self):
        client = FakeClient(FILES)
        upstream = CachedUpstream(client, CacheManager.in_memory())
        found = asyncio.run(upstream.probe(REPO, "force-app/main/default/classes/Foo.cls", "main"))
        assert found.content == "public class Foo {}"
