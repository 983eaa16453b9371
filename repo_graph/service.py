"""Service facade: wires the client, caches, catalog builder and analyzer together.

One instance is created per process (the web app keeps it on
``app.state``, the CLI creates one per command) and shared by every caller.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from repo_graph.analysis.analyzer import DependencyAnalyzer
from repo_graph.analysis.catalog import CatalogBuilder, catalog_to_listing
from repo_graph.analysis.graph_models import DependencyGraph
from repo_graph.analysis.resolver import SymbolResolver
from repo_graph.cache.manager import CacheManager
from repo_graph.cache.upstream import CachedUpstream
from repo_graph.config import EngineConfig
from repo_graph.errors import ValidationError
from repo_graph.github.client import GitHubClient
from repo_graph.models import AnalysisRequest, Catalog, RepositoryRef

logger = logging.getLogger(__name__)


class DependencyService:
    def __init__(
        self,
        config: EngineConfig | None = None,
        client=None,
        cache: CacheManager | None = None,
        resolver: SymbolResolver | None = None,
    ):
        self.config = config or EngineConfig.from_env()
        self.client = client if client is not None else GitHubClient(self.config)
        self.cache = cache or CacheManager.from_config(self.config)
        self.upstream = CachedUpstream(self.client, self.cache)
        self.catalog_builder = CatalogBuilder(self.upstream)
        self.analyzer = DependencyAnalyzer(
            self.upstream,
            self.cache,
            catalog_builder=self.catalog_builder,
            resolver=resolver,
            config=self.config,
        )

    def parse_repository(self, value: str, organization: str | None = None) -> RepositoryRef:
        """Turn ``repo`` or ``org/repo`` into a :class:`RepositoryRef`."""
        if not value or not value.strip():
            raise ValidationError("Repository name is required")
        repo = RepositoryRef.parse(value, organization or self.config.default_organization)
        if not repo.organization or not repo.name:
            raise ValidationError(
                f"Repository {value!r} needs an organization (use org/repo or set REPO_GRAPH_ORG)"
            )
        return repo

    # ── Catalogs ────────────────────────────────────────────

    async def get_catalog(self, repository: RepositoryRef, force_refresh: bool = False) -> Catalog:
        if force_refresh:
            logger.info("Refreshing cached listings for %s", repository)
            self.cache.invalidate_repository(repository.full_name)
        catalog = await self.cache.get_or_fetch(
            "repositories",
            f"catalog:{repository.full_name}",
            lambda: self.catalog_builder.list_files(repository),
        )
        await self.cache.persist()
        return catalog

    async def list_repository_files(
        self, repo: str, organization: str | None = None, force_refresh: bool = False,
    ) -> dict[str, Any]:
        """Catalog listing grouped by kind, as returned by ``GET /api/dependencies``."""
        repository = self.parse_repository(repo, organization)
        catalog = await self.get_catalog(repository, force_refresh=force_refresh)
        return catalog_to_listing(catalog)

    # ── Analysis ────────────────────────────────────────────

    async def analyze(
        self, request: AnalysisRequest, cancel_event: asyncio.Event | None = None,
    ) -> DependencyGraph:
        if not request.repositories:
            raise ValidationError("At least one repository to search is required")
        if request.target_repo is None:
            raise ValidationError("A target repository is required")
        return await self.analyzer.analyze(
            request.target_file,
            request.target_repo,
            request.repositories,
            max_depth=request.max_depth,
            method_level=request.include_method_level,
            include_content=request.include_content,
            include_dependents=request.include_dependents,
            cancel_event=cancel_event,
        )

    # ── Cache administration ────────────────────────────────

    def cache_stats(self) -> dict[str, Any]:
        data = self.cache.stats().to_dict()
        data["counters"] = {
            name: {"hits": c.hits, "misses": c.misses}
            for name, c in self.cache.counters().items()
        }
        return data

    def clean_expired(self) -> dict[str, int]:
        return self.cache.cleanup()

    def clear_all(self) -> None:
        self.cache.clear_all()

    def invalidate_repository(self, repository: str) -> int:
        repo = self.parse_repository(repository)
        return self.cache.invalidate_repository(repo.full_name)

    async def close(self) -> None:
        await self.cache.persist()
        close = getattr(self.client, "close", None)
        if close is not None:
            await close()
