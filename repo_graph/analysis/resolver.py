"""Symbol resolution against repository catalogs."""

from __future__ import annotations

import abc
import posixpath
from typing import Sequence

from repo_graph.analysis.references import TargetType
from repo_graph.models import Catalog, FileEntry, RepositoryRef, SourceKind

_KIND_RANK = {
    SourceKind.PRIMARY_CLASS: 0,
    SourceKind.COMPONENT: 0,
    SourceKind.TEST: 1,
    SourceKind.OTHER: 2,
}


def candidate_paths(symbol: str, target: TargetType) -> list[str]:
    """Conventional locations for ``symbol``, used to probe incomplete catalogs."""
    if target is TargetType.COMPONENT:
        return [
            f"force-app/main/default/lwc/{symbol}/{symbol}.js",
            f"src/lwc/{symbol}/{symbol}.js",
            f"force-app/main/default/aura/{symbol}/{symbol}.cmp",
            f"src/aura/{symbol}/{symbol}.cmp",
        ]
    return [
        f"force-app/main/default/classes/{symbol}.cls",
        f"force-app/main/default/triggers/{symbol}.trigger",
        f"src/classes/{symbol}.cls",
        f"src/triggers/{symbol}.trigger",
    ]


class SymbolResolver(abc.ABC):
    """Maps a referenced symbol to the file that defines it."""

    @abc.abstractmethod
    def resolve(
        self,
        symbol: str,
        target: TargetType,
        catalogs: Sequence[Catalog],
        source_repository: RepositoryRef | None = None,
    ) -> FileEntry | None:
        """Return the defining entry, or ``None`` when no catalog has one."""


class ConventionResolver(SymbolResolver):
    """Name and path based resolver.

    Classes match ``<Symbol>.cls`` / ``<Symbol>.trigger`` by file stem.
    Components match the bundle entry point ``<dir>/<symbol>/<symbol>.js``
    (or ``.cmp`` for Aura). When several repositories define the symbol the
    source's own repository wins, then the first repository in the order
    the catalogs were given. Within one repository classes and components
    beat tests, tests beat anything else, and ties fall back to the path.
    """

    max_indexes = 64

    def __init__(self):
        # id(catalog) -> (catalog, index); holding the catalog keeps its id stable
        self._indexes: dict[int, tuple[Catalog, dict[tuple[str, TargetType], list[FileEntry]]]] = {}

    def resolve(
        self,
        symbol: str,
        target: TargetType,
        catalogs: Sequence[Catalog],
        source_repository: RepositoryRef | None = None,
    ) -> FileEntry | None:
        ordered = list(catalogs)
        if source_repository is not None:
            ordered.sort(key=lambda c: c.repository != source_repository)
        for catalog in ordered:
            matches = self._index(catalog).get((symbol, target))
            if matches:
                return matches[0]
        return None

    def _index(self, catalog: Catalog) -> dict[tuple[str, TargetType], list[FileEntry]]:
        cached = self._indexes.get(id(catalog))
        if cached is not None and cached[0] is catalog:
            return cached[1]
        index: dict[tuple[str, TargetType], list[FileEntry]] = {}
        for entry in catalog.entries:
            match = self._match_key(entry)
            if match:
                index.setdefault(match, []).append(entry)
        for entries in index.values():
            entries.sort(key=lambda e: (_KIND_RANK[e.kind], e.path))
        if len(self._indexes) >= self.max_indexes:
            self._indexes.pop(next(iter(self._indexes)))
        self._indexes[id(catalog)] = (catalog, index)
        return index

    @staticmethod
    def _match_key(entry: FileEntry) -> tuple[str, TargetType] | None:
        lower = entry.path.lower()
        if lower.endswith((".cls", ".trigger")):
            return entry.stem, TargetType.CLASS
        parent = posixpath.basename(posixpath.dirname(entry.path))
        if lower.endswith((".js", ".cmp")) and entry.stem == parent and "__tests__" not in lower:
            return entry.stem, TargetType.COMPONENT
        return None
