"""Engine configuration: upstream endpoint, budgets and cache TTLs."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

# Cache categories and their default TTLs in seconds
CACHE_TTLS: dict[str, float] = {
    "repositories": 5 * 60,
    "contents": 10 * 60,
    "files": 30 * 60,
    "symbols": 30 * 60,
    "metadata": 5 * 60,
}

PERSISTED_CATEGORIES: tuple[str, ...] = ("repositories", "contents", "files")
MEMORY_CATEGORIES: tuple[str, ...] = ("symbols", "metadata")

DEFAULT_API_BASE = "https://api.github.com"


def _default_api_base() -> str:
    explicit = os.getenv("GITHUB_API_URL", "")
    if explicit:
        return explicit.rstrip("/")
    enterprise = os.getenv("GITHUB_URL", "")
    if enterprise:
        return f"{enterprise.rstrip('/')}/api/v3"
    return DEFAULT_API_BASE


@dataclass
class EngineConfig:
    api_base: str = ""
    token: str = ""
    default_organization: str = ""

    # Upstream client
    request_timeout: float = 20.0
    max_retries: int = 3
    retry_backoff: float = 1.0
    max_backoff: float = 5.0
    rate_limit_requests: int = 60
    rate_limit_window: float = 60.0

    # Traversal budgets
    max_concurrency: int = 5
    max_nodes: int = 200
    time_budget: float = 60.0
    fetch_timeout: float = 30.0
    excerpt_chars: int = 4000

    # Caches
    cache_ttls: dict[str, float] = field(default_factory=lambda: dict(CACHE_TTLS))
    persist_cache: bool = True
    cache_dir: Path = field(default_factory=lambda: Path.home() / ".repo-graph" / "cache")

    def __post_init__(self):
        if not self.api_base:
            self.api_base = _default_api_base()
        if not self.token:
            self.token = os.getenv("GITHUB_TOKEN", "")
        if not self.default_organization:
            self.default_organization = os.getenv("REPO_GRAPH_ORG", "")

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Build a config, letting ``REPO_GRAPH_*`` variables override defaults."""
        config = cls()
        cache_dir = os.getenv("REPO_GRAPH_CACHE_DIR")
        if cache_dir:
            config.cache_dir = Path(cache_dir).expanduser()
        if os.getenv("REPO_GRAPH_PERSIST_CACHE", "").lower() in ("0", "false", "no"):
            config.persist_cache = False
        for attr, cast in (
            ("max_nodes", int),
            ("max_concurrency", int),
            ("time_budget", float),
            ("fetch_timeout", float),
            ("request_timeout", float),
        ):
            raw = os.getenv(f"REPO_GRAPH_{attr.upper()}")
            if raw:
                setattr(config, attr, cast(raw))
        return config

    def ttl(self, category: str) -> float:
        return self.cache_ttls.get(category, CACHE_TTLS["metadata"])
