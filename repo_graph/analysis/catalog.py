"""Repository catalog: list a repository tree and classify each source file."""

from __future__ import annotations

import logging
import posixpath

from repo_graph.errors import NotFoundError, UpstreamUnavailableError
from repo_graph.models import Catalog, FileEntry, RepositoryRef, SourceKind

logger = logging.getLogger(__name__)

# Directory names that hold metadata-source files
SOURCE_DIRS: frozenset[str] = frozenset({
    "classes", "triggers", "lwc", "aura", "components", "test", "tests",
})

SOURCE_EXTENSIONS: tuple[str, ...] = (
    ".cls", ".trigger", ".js", ".html", ".css", ".xml",
    ".cmp", ".evt", ".app", ".intf",
)

CLASS_EXTENSIONS: tuple[str, ...] = (".cls", ".trigger")
BUNDLE_EXTENSIONS: tuple[str, ...] = (".js", ".html", ".css", ".xml")
AURA_EXTENSIONS: tuple[str, ...] = (".cmp", ".evt", ".app", ".intf")

# Directories walked when the recursive tree endpoint is unavailable
LEGACY_SOURCE_DIRS: tuple[str, ...] = (
    "force-app/main/default/classes",
    "force-app/main/default/lwc",
    "force-app/main/default/triggers",
    "force-app/main/default/aura",
    "src/classes",
    "src/lwc",
    "src/triggers",
    "src/aura",
)


def is_test_path(path: str) -> bool:
    parts = path.split("/")
    directories = [p.lower() for p in parts[:-1]]
    if "test" in directories or "tests" in directories or "__tests__" in directories:
        return True
    stem = parts[-1].split(".", 1)[0]
    # CamelCase suffixes only, so "Contest" or "Latest" stay ordinary classes
    return (
        stem.endswith(("Test", "Tests", "_test", "_Test"))
        or stem.startswith(("Test_", "test_"))
        or ".test" in parts[-1].lower()
    )


def classify_path(path: str) -> SourceKind:
    """Classify a repository path. Tests win over every other kind."""
    lower = path.lower()
    parts = lower.split("/")
    if is_test_path(path):
        return SourceKind.TEST
    if lower.endswith(CLASS_EXTENSIONS):
        return SourceKind.PRIMARY_CLASS
    if ("lwc" in parts[:-1] or "aura" in parts[:-1]) and lower.endswith(BUNDLE_EXTENSIONS):
        return SourceKind.COMPONENT
    if lower.endswith(AURA_EXTENSIONS):
        return SourceKind.COMPONENT
    return SourceKind.OTHER


def is_source_path(path: str) -> bool:
    """True for files under a recognised source directory with a known extension."""
    lower = path.lower()
    if lower.endswith("-meta.xml"):
        return False
    if not lower.endswith(SOURCE_EXTENSIONS):
        return False
    directories = lower.split("/")[:-1]
    return any(part in SOURCE_DIRS for part in directories)


class CatalogBuilder:
    """Build :class:`Catalog` objects from the upstream tree listing.

    The builder does no caching of its own; ``upstream`` is expected to be
    a :class:`~repo_graph.cache.upstream.CachedUpstream` when caching is
    wanted.
    """

    def __init__(self, upstream):
        self.upstream = upstream

    async def list_files(self, repository: RepositoryRef) -> Catalog:
        branch = await self.upstream.default_branch(repository)
        repository = repository.with_branch(branch)
        try:
            tree = await self.upstream.list_tree(repository, branch)
        except UpstreamUnavailableError as e:
            logger.warning("Tree listing failed for %s (%s); walking source directories", repository, e)
            return await self._list_files_by_directory(repository, branch)

        entries = tuple(
            FileEntry(
                repository=repository,
                path=item.path,
                kind=classify_path(item.path),
                size=item.size,
                content_hash=item.sha,
            )
            for item in tree.items
            if item.type == "blob" and is_source_path(item.path)
        )
        logger.info("Catalog for %s: %d source files%s", repository, len(entries),
                    " (truncated)" if tree.truncated else "")
        return Catalog(repository=repository, entries=entries, truncated=tree.truncated)

    async def _list_files_by_directory(self, repository: RepositoryRef, branch: str) -> Catalog:
        """Walk the well-known source directories one level (two for bundles)."""
        entries: list[FileEntry] = []
        for directory in LEGACY_SOURCE_DIRS:
            try:
                listing = await self.upstream.list_directory(repository, directory, branch)
            except NotFoundError:
                continue
            for item in listing.items:
                if item.type == "file":
                    if not item.name.endswith("-meta.xml"):
                        entries.append(self._entry(repository, item))
                elif item.type == "dir" and posixpath.basename(directory) in ("lwc", "aura"):
                    try:
                        bundle = await self.upstream.list_directory(repository, item.path, branch)
                    except (NotFoundError, UpstreamUnavailableError) as e:
                        logger.warning("Failed to list component %s: %s", item.path, e)
                        continue
                    entries.extend(
                        self._entry(repository, f)
                        for f in bundle.items
                        if f.type == "file" and not f.name.endswith("-meta.xml")
                    )
        logger.info("Directory catalog for %s: %d source files", repository, len(entries))
        # The walk only sees the known directories, so it is never exhaustive
        return Catalog(repository=repository, entries=tuple(entries), truncated=True)

    @staticmethod
    def _entry(repository: RepositoryRef, item) -> FileEntry:
        return FileEntry(
            repository=repository,
            path=item.path,
            kind=classify_path(item.path),
            size=item.size,
            content_hash=item.sha,
        )


def catalog_to_listing(catalog: Catalog) -> dict:
    """Serialise a catalog as the grouped file listing returned to callers."""
    return {
        "repository": catalog.repository.full_name,
        "files": {
            kind: [
                {
                    "name": e.name,
                    "path": e.path,
                    "type": e.kind.value,
                    "size": e.size,
                    "repo": e.repository.full_name,
                }
                for e in items
            ]
            for kind, items in catalog.by_kind().items()
        },
        "totalCount": catalog.total_count,
        "truncated": catalog.truncated,
    }
