"""Cache-first view of the upstream client used by the catalog builder and analyzer."""

from __future__ import annotations

import logging

from repo_graph.cache.manager import CacheManager, current_tally
from repo_graph.errors import NotFoundError
from repo_graph.models import DirectoryListing, FileContent, RepositoryRef, TreeListing

logger = logging.getLogger(__name__)

# Negative probe results are cached as this marker so repeated misses stay local
_MISSING = False


def _ref(branch: str | None) -> str:
    return branch or "HEAD"


class CachedUpstream:
    """Routes every upstream call through :meth:`CacheManager.get_or_fetch`.

    ``client`` is anything exposing ``get_default_branch``, ``list_tree``,
    ``list_directory`` and ``get_content`` coroutines, normally a
    :class:`~repo_graph.github.client.GitHubClient`.
    """

    def __init__(self, client, cache: CacheManager):
        self.client = client
        self.cache = cache

    async def _call(self, fetch):
        tally = current_tally()
        if tally is not None:
            tally.upstream_calls += 1
        return await fetch()

    async def default_branch(self, repo: RepositoryRef) -> str:
        if repo.default_branch:
            return repo.default_branch
        return await self.cache.get_or_fetch(
            "contents",
            f"branch:{repo.full_name}",
            lambda: self._call(lambda: self.client.get_default_branch(repo)),
        )

    async def list_tree(self, repo: RepositoryRef, branch: str) -> TreeListing:
        return await self.cache.get_or_fetch(
            "contents",
            f"tree:{repo.full_name}@{branch}",
            lambda: self._call(lambda: self.client.list_tree(repo, branch)),
        )

    async def list_directory(
        self, repo: RepositoryRef, path: str, branch: str | None = None
    ) -> DirectoryListing:
        return await self.cache.get_or_fetch(
            "contents",
            f"dir:{repo.full_name}@{_ref(branch)}:{path}",
            lambda: self._call(lambda: self.client.list_directory(repo, path, branch)),
        )

    async def get_content(
        self, repo: RepositoryRef, path: str, branch: str | None = None
    ) -> FileContent:
        return await self.cache.get_or_fetch(
            "files",
            f"file:{repo.full_name}@{_ref(branch)}:{path}",
            lambda: self._call(lambda: self.client.get_content(repo, path, branch)),
        )

    async def probe(
        self, repo: RepositoryRef, path: str, branch: str | None = None
    ) -> FileContent | None:
        """Fetch ``path`` if it exists; ``None`` (cached) when it does not."""
        key = f"probe:{repo.full_name}@{_ref(branch)}:{path}"

        async def _fetch():
            try:
                await self.get_content(repo, path, branch)
            except NotFoundError:
                return _MISSING
            return True

        found = await self.cache.get_or_fetch("metadata", key, _fetch)
        if found is _MISSING:
            return None
        return await self.get_content(repo, path, branch)
