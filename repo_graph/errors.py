"""Error taxonomy for the dependency engine."""

from __future__ import annotations


class RepoGraphError(Exception):
    """Base class for all engine errors."""


class ValidationError(RepoGraphError):
    """A request is missing required fields or carries invalid values."""


class NotFoundError(RepoGraphError):
    """The upstream service reports that a repository or file does not exist."""

    def __init__(self, message: str, repository: str = "", path: str = ""):
        super().__init__(message)
        self.repository = repository
        self.path = path


class UpstreamUnavailableError(RepoGraphError):
    """Auth, rate-limit, timeout or transport failure against the upstream API."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ResourceLimitExceeded(RepoGraphError):
    """Raised inside a traversal when a node or time budget is exhausted."""

    def __init__(self, reason: str):
        super().__init__(f"resource limit exceeded: {reason}")
        self.reason = reason
