"""Dependency graph builder: node registry, duplicate-free links, derived metadata."""

from __future__ import annotations

from collections import Counter

from repo_graph.analysis.graph_models import (
    DependencyGraph,
    DependencyLink,
    DependencyNode,
    GraphInsights,
    GraphMetadata,
)
from repo_graph.errors import ResourceLimitExceeded
from repo_graph.models import RelationKind


class GraphBuilder:
    """Accumulate nodes and links while a traversal runs.

    Node ids are unique, identical links (same source, target and relation)
    are added once, and the node cap is enforced on insertion.
    """

    def __init__(self, max_nodes: int | None = None):
        self.max_nodes = max_nodes
        self._nodes: dict[str, DependencyNode] = {}
        self._links: list[DependencyLink] = []
        self._link_ids: set[tuple[str, str, RelationKind]] = set()

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def get(self, node_id: str) -> DependencyNode | None:
        return self._nodes.get(node_id)

    @property
    def nodes(self) -> list[DependencyNode]:
        return list(self._nodes.values())

    @property
    def links(self) -> list[DependencyLink]:
        return list(self._links)

    def reserve(self, count: int) -> None:
        """Raise unless ``count`` more nodes fit under the cap."""
        if self.max_nodes is not None and len(self._nodes) + count > self.max_nodes:
            raise ResourceLimitExceeded("node-limit")

    def add_node(self, node: DependencyNode) -> DependencyNode:
        existing = self._nodes.get(node.id)
        if existing is not None:
            return existing
        self.reserve(1)
        self._nodes[node.id] = node
        return node

    def add_link(self, link: DependencyLink) -> bool:
        # Avoid self loops and duplicate edges
        if link.source_id == link.target_id or link.identity in self._link_ids:
            return False
        if link.source_id not in self._nodes or link.target_id not in self._nodes:
            raise KeyError(f"link endpoints must be graph nodes: {link.source_id} -> {link.target_id}")
        self._link_ids.add(link.identity)
        self._links.append(link)
        return True

    def repository_relationships(self) -> dict[str, list[str]]:
        """Source repository -> sorted target repositories over cross-repository links."""
        related: dict[str, set[str]] = {}
        for link in self._links:
            if not link.cross_repository:
                continue
            source = self._nodes[link.source_id].repository.full_name
            target = self._nodes[link.target_id].repository.full_name
            related.setdefault(source, set()).add(target)
        return {repo: sorted(targets) for repo, targets in sorted(related.items())}

    def shared_components(self) -> list[str]:
        """Names of file nodes that appear in more than one repository."""
        seen: dict[str, set[str]] = {}
        for node in self._nodes.values():
            if node.symbol_name:
                continue
            seen.setdefault(node.name, set()).add(node.repository.full_name)
        return sorted(name for name, repos in seen.items() if len(repos) > 1)

    def insights(self, shared_components: list[str] | None = None) -> GraphInsights:
        """Complexity score, risk factors and a per-relation link tally."""
        if shared_components is None:
            shared_components = self.shared_components()
        nodes, links = len(self._nodes), len(self._links)
        cross = sum(1 for link in self._links if link.cross_repository)
        score = min(100.0, nodes * 2 + links * 1.5 + cross * 5 + len(shared_components) * 3)

        risks = []
        if cross:
            risks.append(f"{cross} cross-repository dependencies detected")
        if links > nodes * 3:
            risks.append("High coupling detected - many dependencies per component")
        if shared_components:
            risks.append(f"{len(shared_components)} components with duplicate names across repositories")

        tally = Counter(link.relation for link in self._links)
        patterns = {kind.value: tally[kind] for kind in RelationKind if tally[kind]}
        return GraphInsights(complexity_score=score, risk_factors=risks, patterns=patterns)

    def build(self, metadata: GraphMetadata | None = None) -> DependencyGraph:
        """Freeze the current state, filling in the count fields of ``metadata``."""
        metadata = metadata or GraphMetadata()
        links = self.links
        metadata.node_count = len(self._nodes)
        metadata.link_count = len(links)
        metadata.cross_repository_link_count = sum(1 for link in links if link.cross_repository)
        metadata.repository_relationships = self.repository_relationships()
        metadata.shared_components = self.shared_components()
        metadata.insights = self.insights(metadata.shared_components)
        return DependencyGraph(nodes=self.nodes, links=links, metadata=metadata)
