"""Data models for the dependency graph."""

from __future__ import annotations

from dataclasses import InitVar, dataclass, field
from typing import Any

from repo_graph.models import RelationKind, RepositoryRef, SourceKind


def node_id(repository: RepositoryRef, path: str, symbol: str | None = None) -> str:
    base = f"{repository.full_name}:{path}"
    return f"{base}#{symbol}" if symbol else base


@dataclass
class DependencyNode:
    id: str
    repository: RepositoryRef
    path: str
    kind: SourceKind
    name: str
    depth: int = 0
    symbol_name: str | None = None
    content_excerpt: str | None = None
    methods: list[str] = field(default_factory=list)
    properties: list[str] = field(default_factory=list)
    is_interface: bool = False
    is_abstract: bool = False

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "path": self.path,
            "type": self.kind.value,
            "repo": self.repository.full_name,
            "depth": self.depth,
        }
        if self.symbol_name:
            data["symbolName"] = self.symbol_name
        if self.content_excerpt is not None:
            data["contentExcerpt"] = self.content_excerpt
        if self.methods:
            data["methods"] = list(self.methods)
        if self.properties:
            data["properties"] = list(self.properties)
        if self.is_interface:
            data["isInterface"] = True
        if self.is_abstract:
            data["isAbstract"] = True
        return data


@dataclass(frozen=True)
class DependencyLink:
    """A directed edge. ``cross_repository`` is derived from the endpoint repositories."""
    source_id: str
    target_id: str
    relation: RelationKind
    source_repository: InitVar[RepositoryRef]
    target_repository: InitVar[RepositoryRef]
    source_symbol: str | None = None
    target_symbol: str | None = None
    line_number: int | None = None
    code_snippet: str | None = None
    details: str | None = None
    cross_repository: bool = field(init=False, default=False)

    def __post_init__(self, source_repository: RepositoryRef, target_repository: RepositoryRef):
        object.__setattr__(self, "cross_repository", source_repository != target_repository)

    @classmethod
    def between(
        cls,
        source: DependencyNode,
        target: DependencyNode,
        relation: RelationKind,
        **details: Any,
    ) -> DependencyLink:
        return cls(source.id, target.id, relation, source.repository, target.repository, **details)

    @property
    def identity(self) -> tuple[str, str, RelationKind]:
        return (self.source_id, self.target_id, self.relation)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "source": self.source_id,
            "target": self.target_id,
            "type": self.relation.value,
            "crossRepository": self.cross_repository,
        }
        for key, value in (
            ("sourceMethod", self.source_symbol),
            ("targetMethod", self.target_symbol),
            ("lineNumber", self.line_number),
            ("codeSnippet", self.code_snippet),
            ("details", self.details),
        ):
            if value is not None:
                data[key] = value
        return data


@dataclass
class GraphInsights:
    """Heuristic summary of a graph's size and coupling."""

    complexity_score: float = 0.0
    risk_factors: list[str] = field(default_factory=list)
    patterns: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "complexityScore": self.complexity_score,
            "riskFactors": list(self.risk_factors),
            "patterns": dict(self.patterns),
        }


@dataclass
class GraphMetadata:
    node_count: int = 0
    link_count: int = 0
    cross_repository_link_count: int = 0
    truncated: bool = False
    unresolved_reference_count: int = 0
    repositories: list[str] = field(default_factory=list)
    analyzed_file: str = ""
    max_depth: int = 0
    timestamp: str = ""
    truncation_reasons: list[str] = field(default_factory=list)
    failures: list[dict[str, str]] = field(default_factory=list)
    repository_relationships: dict[str, list[str]] = field(default_factory=dict)
    shared_components: list[str] = field(default_factory=list)
    metrics: dict[str, float] = field(default_factory=dict)
    insights: GraphInsights = field(default_factory=GraphInsights)

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodeCount": self.node_count,
            "linkCount": self.link_count,
            "crossRepositoryLinkCount": self.cross_repository_link_count,
            "truncated": self.truncated,
            "unresolvedReferenceCount": self.unresolved_reference_count,
            "repositories": list(self.repositories),
            "analyzedFile": self.analyzed_file,
            "analysisDepth": self.max_depth,
            "timestamp": self.timestamp,
            "truncationReasons": list(self.truncation_reasons),
            "failures": [dict(f) for f in self.failures],
            "repositoryRelationships": {k: list(v) for k, v in self.repository_relationships.items()},
            "sharedComponents": list(self.shared_components),
            "metrics": dict(self.metrics),
            "insights": self.insights.to_dict(),
        }


@dataclass
class DependencyGraph:
    nodes: list[DependencyNode] = field(default_factory=list)
    links: list[DependencyLink] = field(default_factory=list)
    metadata: GraphMetadata = field(default_factory=GraphMetadata)

    def node(self, id: str) -> DependencyNode | None:
        return next((n for n in self.nodes if n.id == id), None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodes": [n.to_dict() for n in self.nodes],
            "links": [link.to_dict() for link in self.links],
            "metadata": self.metadata.to_dict(),
        }
