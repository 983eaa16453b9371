"""Cross-repository dependency analysis.

The analyzer walks outward from one root file, level by level. For every
file on the current frontier it fetches the content (concurrently, bounded
by a semaphore), extracts the references, resolves each one against the
repository catalogs, and adds the resolved targets as nodes of the next
level. Results of a level are processed in frontier order, so the same
inputs always produce the same graph.

Per-file failures never abort the walk. They are collected as
:class:`~repo_graph.models.FetchOutcome` values and end up in
``metadata.failures`` with ``truncated`` set.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import posixpath
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Sequence

from repo_graph.analysis.catalog import CatalogBuilder, classify_path
from repo_graph.analysis.dependency_graph import GraphBuilder
from repo_graph.analysis.graph_models import (
    DependencyGraph,
    DependencyLink,
    DependencyNode,
    GraphMetadata,
    node_id,
)
from repo_graph.analysis.references import (
    CLASS_SUFFIXES,
    ClassSummary,
    Reference,
    TargetType,
    extract_references,
    summarize_class,
)
from repo_graph.analysis.resolver import ConventionResolver, SymbolResolver, candidate_paths
from repo_graph.cache.manager import CacheManager, track_access
from repo_graph.cache.upstream import CachedUpstream
from repo_graph.config import EngineConfig
from repo_graph.errors import (
    NotFoundError,
    ResourceLimitExceeded,
    UpstreamUnavailableError,
    ValidationError,
)
from repo_graph.models import (
    Catalog,
    FetchOutcome,
    FileContent,
    FileEntry,
    RelationKind,
    RepositoryRef,
    SourceKind,
)

logger = logging.getLogger(__name__)

# Files scanned when looking for dependents of the root
_DEPENDENT_KINDS = (SourceKind.PRIMARY_CLASS, SourceKind.COMPONENT, SourceKind.TEST)
_DEPENDENT_SUFFIXES = (".cls", ".trigger", ".js", ".html", ".cmp", ".app", ".evt", ".intf")


class _Cancelled(Exception):
    pass


@dataclass
class _Unit:
    """A file scheduled for expansion at a BFS depth."""
    repository: RepositoryRef
    path: str
    kind: SourceKind
    depth: int

    @property
    def id(self) -> str:
        return node_id(self.repository, self.path)


def _stem(path: str) -> str:
    return posixpath.basename(path).split(".", 1)[0]


def _unique(repositories: Sequence[RepositoryRef]) -> list[RepositoryRef]:
    seen: list[RepositoryRef] = []
    for repo in repositories:
        if repo not in seen:
            seen.append(repo)
    return seen


class DependencyAnalyzer:
    """Build dependency graphs from a root file across several repositories.

    ``upstream`` is the cache-first upstream view; catalogs are cached in the
    ``repositories`` category and parsed references in ``symbols``, so a
    repeated analysis inside the TTLs is served without upstream calls.
    """

    def __init__(
        self,
        upstream: CachedUpstream,
        cache: CacheManager,
        catalog_builder: CatalogBuilder | None = None,
        resolver: SymbolResolver | None = None,
        config: EngineConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.upstream = upstream
        self.cache = cache
        self.catalog_builder = catalog_builder or CatalogBuilder(upstream)
        self.resolver = resolver or ConventionResolver()
        self.config = config or EngineConfig()
        self.clock = clock

    async def analyze(
        self,
        root_file: str,
        root_repository: RepositoryRef | None,
        search_repositories: Sequence[RepositoryRef],
        max_depth: int = 2,
        method_level: bool = True,
        include_content: bool = False,
        include_dependents: bool = False,
        cancel_event: asyncio.Event | None = None,
    ) -> DependencyGraph:
        """Analyze ``root_file`` and return its dependency graph.

        Raises :class:`ValidationError` for a malformed request and
        :class:`NotFoundError` when the root file cannot be read. Every other
        problem is reported through ``metadata.truncated``.
        """
        root_file = (root_file or "").strip().strip("/")
        if not root_file:
            raise ValidationError("A target file is required")
        if root_repository is None or not root_repository.name:
            raise ValidationError("A target repository is required")
        if not search_repositories:
            raise ValidationError("At least one repository to search is required")
        if max_depth is None or max_depth < 0:
            raise ValidationError("maxDepth must be zero or greater")

        started = self.clock()
        logger.info("Analyzing %s:%s across %d repositories (depth %d)",
                    root_repository, root_file, len(search_repositories), max_depth)

        with track_access() as tally:
            root_repository, root_content = await self._fetch_root(root_repository, root_file)
            repositories = _unique([*search_repositories, root_repository])

            traversal = _Traversal(
                self,
                max_depth=max_depth,
                method_level=method_level,
                include_content=include_content,
                cancel_event=cancel_event or asyncio.Event(),
                deadline=started + self.config.time_budget,
            )
            root = _Unit(root_repository, root_file, classify_path(root_file), 0)
            traversal.add_root(root)
            try:
                await traversal.load_catalogs(repositories)
                await traversal.run(root, root_content)
                if include_dependents:
                    await traversal.find_dependents(root)
            except ResourceLimitExceeded as e:
                logger.warning("Analysis of %s stopped early: %s", root_file, e.reason)
                traversal.truncate(e.reason)
            except _Cancelled:
                logger.info("Analysis of %s cancelled", root_file)
                traversal.truncate("cancelled")

        metadata = GraphMetadata(
            truncated=bool(traversal.reasons),
            unresolved_reference_count=len(traversal.unresolved),
            repositories=[r.full_name for r in repositories],
            analyzed_file=root_file,
            max_depth=max_depth,
            timestamp=datetime.now(timezone.utc).isoformat(),
            truncation_reasons=list(traversal.reasons),
            failures=list(traversal.failures),
            metrics={
                "upstream_calls": tally.upstream_calls,
                "cache_hits": tally.hits,
                "cache_misses": tally.misses,
                "files_fetched": traversal.files_fetched,
                "elapsed_seconds": round(self.clock() - started, 3),
            },
        )
        graph = traversal.graph.build(metadata)
        await self.cache.persist()
        logger.info("Analysis of %s finished: %d nodes, %d links%s", root_file,
                    metadata.node_count, metadata.link_count,
                    " (truncated)" if metadata.truncated else "")
        return graph

    async def _fetch_root(self, repository: RepositoryRef, path: str) -> tuple[RepositoryRef, FileContent]:
        timeout = min(self.config.fetch_timeout, self.config.time_budget)
        try:
            return await asyncio.wait_for(self._read_root(repository, path), timeout)
        except asyncio.TimeoutError:
            raise UpstreamUnavailableError(
                f"Timed out after {timeout:g}s fetching {repository}:{path}"
            ) from None

    async def _read_root(self, repository: RepositoryRef, path: str) -> tuple[RepositoryRef, FileContent]:
        branch = await self.upstream.default_branch(repository)
        repository = repository.with_branch(branch)
        content = await self.upstream.get_content(repository, path, branch)
        if content.is_binary:
            raise NotFoundError(f"{path} is not a text file", repository.full_name, path)
        return repository, content


class _Traversal:
    """State of a single :meth:`DependencyAnalyzer.analyze` call."""

    def __init__(
        self,
        analyzer: DependencyAnalyzer,
        max_depth: int,
        method_level: bool,
        include_content: bool,
        cancel_event: asyncio.Event,
        deadline: float,
    ):
        self.analyzer = analyzer
        self.config = analyzer.config
        self.max_depth = max_depth
        self.method_level = method_level
        self.include_content = include_content
        self.cancel_event = cancel_event
        self.deadline = deadline

        self.graph = GraphBuilder(max_nodes=max(1, self.config.max_nodes))
        self.semaphore = asyncio.Semaphore(max(1, self.config.max_concurrency))
        self.catalogs: list[Catalog] = []
        self.scheduled: set[str] = set()
        self.unresolved: set[tuple[str, str]] = set()
        self.reasons: list[str] = []
        self.failures: list[dict[str, str]] = []
        self.files_fetched = 0
        self._details: dict[str, tuple[ClassSummary | None, str | None]] = {}
        self._members: dict[str, list[str]] = {}

    # ── Bookkeeping ─────────────────────────────────────────

    def truncate(self, reason: str) -> None:
        if reason not in self.reasons:
            self.reasons.append(reason)

    def _record_failure(self, repository: RepositoryRef, path: str, error: str) -> None:
        logger.warning("Skipping %s:%s: %s", repository, path or "<catalog>", error)
        self.failures.append({"repository": repository.full_name, "path": path, "error": error})
        self.truncate("fetch-failure")

    def _check(self) -> None:
        if self.cancel_event.is_set():
            raise _Cancelled()
        if self.analyzer.clock() >= self.deadline:
            raise ResourceLimitExceeded("time-limit")

    # ── Concurrent fetching ─────────────────────────────────

    async def _gather(self, coros: list[Awaitable[FetchOutcome]]) -> list[FetchOutcome]:
        """Run fetches concurrently, giving up on cancellation or the time budget."""
        tasks = [asyncio.ensure_future(c) for c in coros]
        if not tasks:
            return []
        cancel_wait = asyncio.ensure_future(self.cancel_event.wait())
        pending = set(tasks)
        try:
            while pending:
                remaining = self.deadline - self.analyzer.clock()
                if remaining <= 0:
                    raise ResourceLimitExceeded("time-limit")
                done, pending = await asyncio.wait(
                    pending | {cancel_wait}, timeout=remaining,
                    return_when=asyncio.FIRST_COMPLETED,
                )
                if cancel_wait in done:
                    raise _Cancelled()
                pending.discard(cancel_wait)
        finally:
            leftovers = [t for t in (*pending, cancel_wait) if not t.done()]
            for task in leftovers:
                task.cancel()
            if leftovers:
                await asyncio.gather(*leftovers, return_exceptions=True)
        return [t.result() for t in tasks]

    async def _bounded(self, fetch: Callable[[], Awaitable[Any]]) -> FetchOutcome:
        async with self.semaphore:
            if self.cancel_event.is_set():
                return FetchOutcome.failure("cancelled")
            timeout = self.config.fetch_timeout
            try:
                value = await asyncio.wait_for(fetch(), timeout)
            except asyncio.TimeoutError:
                return FetchOutcome.timeout(f"timed out after {timeout:g}s")
            except (NotFoundError, UpstreamUnavailableError) as e:
                return FetchOutcome.failure(str(e))
        return FetchOutcome.success(value)

    async def _fetch_file(self, repository: RepositoryRef, path: str) -> FetchOutcome:
        upstream = self.analyzer.upstream
        outcome = await self._bounded(
            lambda: upstream.get_content(repository, path, repository.default_branch)
        )
        if outcome.ok:
            self.files_fetched += 1
        return outcome

    async def _fetch_catalog(self, repository: RepositoryRef) -> FetchOutcome:
        cache = self.analyzer.cache
        builder = self.analyzer.catalog_builder
        return await self._bounded(
            lambda: cache.get_or_fetch(
                "repositories",
                f"catalog:{repository.full_name}",
                lambda: builder.list_files(repository),
            )
        )

    async def load_catalogs(self, repositories: Sequence[RepositoryRef]) -> None:
        self._check()
        outcomes = await self._gather([self._fetch_catalog(r) for r in repositories])
        for repository, outcome in zip(repositories, outcomes):
            if outcome.ok:
                self.catalogs.append(outcome.value)
            else:
                self._record_failure(repository, "", outcome.error)

    # ── Nodes ───────────────────────────────────────────────

    def _make_node(
        self, repository: RepositoryRef, path: str, kind: SourceKind, depth: int,
        member: str | None = None,
    ) -> DependencyNode:
        stem = _stem(path)
        node = DependencyNode(
            id=node_id(repository, path, member),
            repository=repository,
            path=path,
            kind=kind,
            name=f"{stem}.{member}" if member else stem,
            depth=depth,
            symbol_name=member,
        )
        self._apply_details(node)
        return node

    def _add(self, node: DependencyNode) -> DependencyNode:
        node = self.graph.add_node(node)
        if node.symbol_name:
            file_id = node_id(node.repository, node.path)
            members = self._members.setdefault(file_id, [])
            if node.id not in members:
                members.append(node.id)
        return node

    def _apply_details(self, node: DependencyNode) -> None:
        summary, excerpt = self._details.get(node_id(node.repository, node.path), (None, None))
        if summary is not None and node.symbol_name is None:
            node.methods = list(summary.methods)
            node.properties = list(summary.properties)
            node.is_interface = summary.is_interface
            node.is_abstract = summary.is_abstract
        if excerpt is not None:
            node.content_excerpt = excerpt

    def _describe(self, unit: _Unit, content: FileContent) -> None:
        """Attach class shape and content excerpt to the nodes of ``unit``'s file."""
        summary = summarize_class(content.content) if unit.path.lower().endswith(CLASS_SUFFIXES) else None
        excerpt = content.content[: self.config.excerpt_chars] if self.include_content else None
        self._details[unit.id] = (summary, excerpt)
        for nid in (unit.id, *self._members.get(unit.id, ())):
            node = self.graph.get(nid)
            if node is not None:
                self._apply_details(node)

    def add_root(self, root: _Unit) -> None:
        self.scheduled.add(root.id)
        self._add(self._make_node(root.repository, root.path, root.kind, 0))

    # ── Traversal ───────────────────────────────────────────

    async def run(self, root: _Unit, root_content: FileContent) -> None:
        frontier = [root]
        outcomes: dict[str, FetchOutcome] = {root.id: FetchOutcome.success(root_content)}
        while frontier:
            self._check()
            pending = [u for u in frontier if u.id not in outcomes]
            fetched = await self._gather([self._fetch_file(u.repository, u.path) for u in pending])
            outcomes.update(zip((u.id for u in pending), fetched))

            next_level: list[_Unit] = []
            for unit in frontier:
                self._check()
                outcome = outcomes.pop(unit.id)
                if not outcome.ok:
                    self._record_failure(unit.repository, unit.path, outcome.error)
                    continue
                next_level.extend(await self._expand(unit, outcome.value))
            logger.debug("Level done: %d expanded, %d scheduled", len(frontier), len(next_level))
            frontier = next_level

    async def _references(self, unit: _Unit, content: FileContent) -> tuple[Reference, ...]:
        sha = content.sha or hashlib.sha1(content.content.encode("utf-8")).hexdigest()
        mode = "method" if self.method_level else "file"
        key = f"refs:{sha}:{unit.kind.value}:{mode}:{unit.path}"

        async def _parse() -> tuple[Reference, ...]:
            return extract_references(content.content, unit.path, unit.kind, self.method_level)

        return await self.analyzer.cache.get_or_fetch("symbols", key, _parse)

    async def _expand(self, unit: _Unit, content: FileContent) -> list[_Unit]:
        if content.is_binary:
            return []
        self._describe(unit, content)
        scheduled: list[_Unit] = []
        for ref in await self._references(unit, content):
            entry = await self._resolve(unit, ref)
            if entry is None:
                continue
            new_unit = self._link(unit, ref, entry)
            if new_unit is not None:
                scheduled.append(new_unit)
        return scheduled

    async def _resolve(self, unit: _Unit, ref: Reference) -> FileEntry | None:
        entry = self.analyzer.resolver.resolve(ref.symbol, ref.target, self.catalogs, unit.repository)
        if entry is not None:
            return entry

        incomplete = [c for c in self.catalogs if c.truncated]
        incomplete.sort(key=lambda c: c.repository != unit.repository)
        for catalog in incomplete:
            for path in candidate_paths(ref.symbol, ref.target):
                found = await self._probe(catalog.repository, path)
                if found is not None:
                    logger.debug("Probe found %s in %s:%s", ref.symbol, catalog.repository, path)
                    return FileEntry(
                        repository=catalog.repository,
                        path=path,
                        kind=classify_path(path),
                        size=found.size,
                        content_hash=found.sha,
                    )

        if (unit.id, ref.symbol) not in self.unresolved:
            logger.debug("Unresolved reference %s in %s", ref.symbol, unit.id)
            self.unresolved.add((unit.id, ref.symbol))
        if incomplete:
            self.truncate("catalog-truncated")
        return None

    async def _probe(self, repository: RepositoryRef, path: str) -> FileContent | None:
        self._check()
        upstream = self.analyzer.upstream
        outcome = await self._bounded(
            lambda: upstream.probe(repository, path, repository.default_branch)
        )
        if not outcome.ok:
            self._record_failure(repository, path, outcome.error)
            return None
        return outcome.value

    def _source_id(self, unit: _Unit, ref: Reference) -> str:
        if self.method_level and ref.source_symbol:
            member_id = node_id(unit.repository, unit.path, ref.source_symbol)
            if member_id in self.graph:
                return member_id
        return unit.id

    def _link(self, unit: _Unit, ref: Reference, entry: FileEntry) -> _Unit | None:
        """Add the link for a resolved reference; return the target file if newly scheduled."""
        target_file_id = node_id(entry.repository, entry.path)
        if target_file_id == unit.id:
            return None
        member = ref.member if self.method_level and ref.relation is RelationKind.CALLS else None
        target_id = node_id(entry.repository, entry.path, member)
        source_id = self._source_id(unit, ref)

        target_missing = target_id not in self.graph
        if target_missing and unit.depth >= self.max_depth:
            self.truncate("depth")
            return None
        self.graph.reserve(int(target_missing) + int(source_id not in self.graph))

        scheduled = None
        if target_missing:
            self._add(self._make_node(entry.repository, entry.path, entry.kind, unit.depth + 1, member))
            if target_file_id not in self.scheduled:
                self.scheduled.add(target_file_id)
                scheduled = _Unit(entry.repository, entry.path, entry.kind, unit.depth + 1)
        source = self.graph.get(source_id) or self._add(
            self._make_node(unit.repository, unit.path, unit.kind, unit.depth)
        )
        self.graph.add_link(self._make_link(source, self.graph.get(target_id), ref))
        return scheduled

    @staticmethod
    def _make_link(source: DependencyNode, target: DependencyNode, ref: Reference) -> DependencyLink:
        details = f"{ref.relation.value} {ref.symbol}"
        if ref.member:
            details += f".{ref.member}"
        return DependencyLink.between(
            source, target, ref.relation,
            source_symbol=ref.source_symbol,
            target_symbol=ref.member,
            line_number=ref.line_number or None,
            code_snippet=ref.snippet or None,
            details=details,
        )

    # ── Dependents ──────────────────────────────────────────

    async def find_dependents(self, root: _Unit) -> None:
        """Link every catalog file that references the root's own symbol to the root."""
        if root.path.lower().endswith(CLASS_SUFFIXES):
            symbol, target = _stem(root.path), TargetType.CLASS
        elif root.kind is SourceKind.COMPONENT:
            symbol, target = posixpath.basename(posixpath.dirname(root.path)), TargetType.COMPONENT
        else:
            return
        root_node = self.graph.get(root.id)

        candidates = [
            entry
            for catalog in self.catalogs
            for entry in catalog.entries
            if entry.kind in _DEPENDENT_KINDS
            and entry.path.lower().endswith(_DEPENDENT_SUFFIXES)
            and node_id(entry.repository, entry.path) != root.id
        ]
        logger.info("Scanning %d files for dependents of %s", len(candidates), symbol)
        self._check()
        outcomes = await self._gather([self._fetch_file(e.repository, e.path) for e in candidates])

        for entry, outcome in zip(candidates, outcomes):
            self._check()
            if not outcome.ok:
                self._record_failure(entry.repository, entry.path, outcome.error)
                continue
            if outcome.value.is_binary:
                continue
            unit = _Unit(entry.repository, entry.path, entry.kind, 1)
            for ref in await self._references(unit, outcome.value):
                if ref.symbol != symbol or ref.target is not target:
                    continue
                resolved = self.analyzer.resolver.resolve(ref.symbol, ref.target, self.catalogs, entry.repository)
                if resolved is None or node_id(resolved.repository, resolved.path) != root.id:
                    continue
                source_id = self._source_id(unit, ref)
                source = self.graph.get(source_id)
                if source is None:
                    if self.max_depth < 1:
                        self.truncate("depth")
                        break
                    source = self._add(self._make_node(entry.repository, entry.path, entry.kind, 1))
                self.graph.add_link(self._make_link(source, root_node, ref))
