"""repo-graph: cross-repository dependency graphs with a multi-tier cache."""

__version__ = "0.1.0"
