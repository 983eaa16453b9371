"""Upstream code-hosting API client."""

from .client import GitHubClient
from .rate_limiter import RateLimiter

__all__ = ["GitHubClient", "RateLimiter"]
