"""Data models shared by the catalog builder, the analyzer and the caches."""

from __future__ import annotations

import enum
import posixpath
from dataclasses import dataclass, field
from typing import Any


class SourceKind(enum.Enum):
    PRIMARY_CLASS = "primary-class"
    COMPONENT = "component"
    TEST = "test"
    OTHER = "other"


class RelationKind(enum.Enum):
    REFERENCES = "references"
    EXTENDS = "extends"
    TESTS = "tests"
    CALLS = "calls"


class FetchStatus(enum.Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class RepositoryRef:
    """A searchable repository. The branch is informational and not part of identity."""
    organization: str
    name: str
    default_branch: str | None = field(default=None, compare=False)

    @property
    def full_name(self) -> str:
        return f"{self.organization}/{self.name}"

    def with_branch(self, branch: str) -> RepositoryRef:
        return RepositoryRef(self.organization, self.name, branch)

    @classmethod
    def parse(cls, value: str, default_org: str = "") -> RepositoryRef:
        """Accept ``repo`` or ``org/repo``; bare names use ``default_org``."""
        value = (value or "").strip().strip("/")
        if "/" in value:
            org, name = value.split("/", 1)
            return cls(org, name)
        return cls(default_org, value)

    def __str__(self) -> str:
        return self.full_name

    def to_dict(self) -> dict[str, Any]:
        return {
            "organization": self.organization,
            "name": self.name,
            "default_branch": self.default_branch,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RepositoryRef:
        return cls(data["organization"], data["name"], data.get("default_branch"))


@dataclass(frozen=True)
class FileEntry:
    """One classified file of a repository catalog."""
    repository: RepositoryRef
    path: str
    kind: SourceKind
    size: int = 0
    content_hash: str = ""

    @property
    def name(self) -> str:
        return posixpath.basename(self.path)

    @property
    def stem(self) -> str:
        return self.name.split(".", 1)[0]

    def to_dict(self) -> dict[str, Any]:
        return {
            "repository": self.repository.to_dict(),
            "path": self.path,
            "kind": self.kind.value,
            "size": self.size,
            "content_hash": self.content_hash,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FileEntry:
        return cls(
            repository=RepositoryRef.from_dict(data["repository"]),
            path=data["path"],
            kind=SourceKind(data["kind"]),
            size=data.get("size", 0),
            content_hash=data.get("content_hash", ""),
        )


@dataclass(frozen=True)
class Catalog:
    """Classified file listing for one repository."""
    repository: RepositoryRef
    entries: tuple[FileEntry, ...] = ()
    truncated: bool = False

    @property
    def total_count(self) -> int:
        return len(self.entries)

    def by_kind(self) -> dict[str, list[FileEntry]]:
        grouped: dict[str, list[FileEntry]] = {kind.value: [] for kind in SourceKind}
        for entry in self.entries:
            grouped[entry.kind.value].append(entry)
        for items in grouped.values():
            items.sort(key=lambda e: (e.name, e.path))
        return grouped

    def to_dict(self) -> dict[str, Any]:
        return {
            "repository": self.repository.to_dict(),
            "entries": [e.to_dict() for e in self.entries],
            "truncated": self.truncated,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Catalog:
        return cls(
            repository=RepositoryRef.from_dict(data["repository"]),
            entries=tuple(FileEntry.from_dict(e) for e in data.get("entries", [])),
            truncated=data.get("truncated", False),
        )


# ── Upstream shapes ──────────────────────────────────────────

@dataclass(frozen=True)
class TreeItem:
    path: str
    type: str  # "blob" | "tree"
    sha: str = ""
    size: int = 0


@dataclass(frozen=True)
class TreeListing:
    items: tuple[TreeItem, ...] = ()
    truncated: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": [[i.path, i.type, i.sha, i.size] for i in self.items],
            "truncated": self.truncated,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TreeListing:
        return cls(
            items=tuple(TreeItem(*row) for row in data.get("items", [])),
            truncated=data.get("truncated", False),
        )


@dataclass(frozen=True)
class DirectoryItem:
    name: str
    path: str
    type: str  # "file" | "dir"
    sha: str = ""
    size: int = 0


@dataclass(frozen=True)
class DirectoryListing:
    path: str
    items: tuple[DirectoryItem, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "items": [[i.name, i.path, i.type, i.sha, i.size] for i in self.items],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DirectoryListing:
        return cls(
            path=data["path"],
            items=tuple(DirectoryItem(*row) for row in data.get("items", [])),
        )


@dataclass(frozen=True)
class FileContent:
    path: str
    content: str
    is_binary: bool = False
    sha: str = ""
    size: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "content": self.content,
            "is_binary": self.is_binary,
            "sha": self.sha,
            "size": self.size,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FileContent:
        return cls(
            path=data["path"],
            content=data.get("content", ""),
            is_binary=data.get("is_binary", False),
            sha=data.get("sha", ""),
            size=data.get("size", 0),
        )


@dataclass(frozen=True)
class FetchOutcome:
    """Result of a single per-file fetch inside a traversal."""
    status: FetchStatus
    value: Any = None
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.status is FetchStatus.SUCCESS

    @classmethod
    def success(cls, value: Any) -> FetchOutcome:
        return cls(FetchStatus.SUCCESS, value)

    @classmethod
    def failure(cls, error: str) -> FetchOutcome:
        return cls(FetchStatus.FAILURE, error=error)

    @classmethod
    def timeout(cls, error: str = "timed out") -> FetchOutcome:
        return cls(FetchStatus.TIMEOUT, error=error)


@dataclass
class AnalysisRequest:
    """Caller-facing analysis options."""
    repositories: list[RepositoryRef]
    target_file: str
    target_repo: RepositoryRef | None
    max_depth: int = 2
    include_method_level: bool = True
    include_content: bool = False
    include_dependents: bool = False
