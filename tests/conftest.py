"""Shared fakes: an in-memory upstream client and a manual clock."""

from __future__ import annotations

import asyncio
import hashlib
from collections import Counter

import pytest

from repo_graph.analysis.analyzer import DependencyAnalyzer
from repo_graph.cache.manager import CacheManager
from repo_graph.cache.upstream import CachedUpstream
from repo_graph.config import EngineConfig
from repo_graph.errors import NotFoundError, UpstreamUnavailableError
from repo_graph.models import (
    DirectoryItem,
    DirectoryListing,
    FileContent,
    RepositoryRef,
    TreeItem,
    TreeListing,
)


def _sha(content: str) -> str:
    return hashlib.sha1(content.encode("utf-8")).hexdigest()


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeClient:
    """Upstream client over ``{"org/repo": {path: content}}``.

    ``hidden`` paths exist for content fetches but are left out of the tree
    listing, which is then reported as truncated.
    """

    def __init__(self, repos: dict[str, dict[str, str]], hidden: dict[str, set[str]] | None = None):
        self.repos = repos
        self.hidden = hidden or {}
        self.calls: Counter[str] = Counter()
        self.failures: dict[tuple[str, str], Exception] = {}
        self.tree_errors: set[str] = set()
        self.delays: dict[tuple[str, str], float] = {}

    @property
    def call_count(self) -> int:
        return sum(self.calls.values())

    def _files(self, repo: RepositoryRef) -> dict[str, str]:
        try:
            return self.repos[repo.full_name]
        except KeyError:
            raise NotFoundError(f"Not found: {repo.full_name}", repo.full_name) from None

    async def get_default_branch(self, repo: RepositoryRef) -> str:
        self.calls["branch"] += 1
        self._files(repo)
        return "main"

    async def list_tree(self, repo: RepositoryRef, branch: str) -> TreeListing:
        self.calls["tree"] += 1
        if repo.full_name in self.tree_errors:
            raise UpstreamUnavailableError("GitHub API error: 502", 502)
        hidden = self.hidden.get(repo.full_name, set())
        items = tuple(
            TreeItem(path=path, type="blob", sha=_sha(content), size=len(content))
            for path, content in sorted(self._files(repo).items())
            if path not in hidden
        )
        return TreeListing(items=items, truncated=bool(hidden))

    async def list_directory(self, repo: RepositoryRef, path: str, branch: str | None = None) -> DirectoryListing:
        self.calls["directory"] += 1
        prefix = path.rstrip("/") + "/"
        children: dict[str, DirectoryItem] = {}
        for file_path, content in self._files(repo).items():
            if not file_path.startswith(prefix):
                continue
            head, _, rest = file_path[len(prefix):].partition("/")
            if rest:
                children[head] = DirectoryItem(head, prefix + head, "dir")
            else:
                children[head] = DirectoryItem(head, file_path, "file", _sha(content), len(content))
        if not children:
            raise NotFoundError(f"Not found: {path}", repo.full_name, path)
        return DirectoryListing(path=path, items=tuple(children[k] for k in sorted(children)))

    async def get_content(self, repo: RepositoryRef, path: str, branch: str | None = None) -> FileContent:
        self.calls["content"] += 1
        key = (repo.full_name, path)
        if key in self.delays:
            await asyncio.sleep(self.delays[key])
        if key in self.failures:
            raise self.failures[key]
        files = self._files(repo)
        if path not in files:
            raise NotFoundError(f"Not found: {path}", repo.full_name, path)
        content = files[path]
        return FileContent(path=path, content=content, sha=_sha(content), size=len(content))

    async def close(self) -> None:
        self.calls["close"] += 1


def make_config(**overrides) -> EngineConfig:
    values = dict(
        api_base="https://api.example.test",
        token="test-token",
        default_organization="acme",
        persist_cache=False,
        retry_backoff=0.0,
        max_backoff=0.0,
    )
    values.update(overrides)
    return EngineConfig(**values)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_analyzer():
    """Build ``(analyzer, client)`` over the given repositories with an isolated cache."""

    def _make(repos, hidden=None, cache=None, **config_overrides):
        client = FakeClient(repos, hidden=hidden)
        cache = cache or CacheManager.in_memory()
        analyzer = DependencyAnalyzer(
            CachedUpstream(client, cache), cache, config=make_config(**config_overrides)
        )
        return analyzer, client

    return _make
