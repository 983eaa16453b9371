"""Catalogs, reference extraction, symbol resolution and graph traversal."""

from .analyzer import DependencyAnalyzer
from .catalog import CatalogBuilder
from .graph_models import DependencyGraph, DependencyLink, DependencyNode, GraphInsights, GraphMetadata
from .resolver import ConventionResolver, SymbolResolver

__all__ = [
    "DependencyAnalyzer",
    "CatalogBuilder",
    "DependencyGraph",
    "DependencyLink",
    "DependencyNode",
    "GraphInsights",
    "GraphMetadata",
    "ConventionResolver",
    "SymbolResolver",
]
