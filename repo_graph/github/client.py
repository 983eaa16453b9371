"""Async client for the code-hosting REST API (GitHub and GitHub Enterprise)."""

from __future__ import annotations

import asyncio
import base64
import binascii
import hashlib
import logging
import time
from typing import Any
from urllib.parse import quote

import httpx

from repo_graph.config import EngineConfig
from repo_graph.errors import NotFoundError, UpstreamUnavailableError
from repo_graph.github.rate_limiter import RateLimiter
from repo_graph.models import (
    DirectoryItem,
    DirectoryListing,
    FileContent,
    RepositoryRef,
    TreeItem,
    TreeListing,
)

logger = logging.getLogger(__name__)


def _decode_text(raw: bytes) -> tuple[str, bool]:
    """Return ``(text, is_binary)`` for raw file bytes."""
    if b"\x00" in raw[:8192]:
        return "", True
    try:
        return raw.decode("utf-8"), False
    except UnicodeDecodeError:
        return "", True


class GitHubClient:
    """Thin async wrapper over the repository endpoints the engine consumes.

    Every call is throttled by a per-caller :class:`RateLimiter`, retried with
    exponential backoff on timeouts, transport errors and 5xx responses, and
    retried once after a rate-limit response. Failures surface as
    :class:`NotFoundError` (404) or :class:`UpstreamUnavailableError`.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        rate_limiter: RateLimiter | None = None,
    ):
        self.config = config or EngineConfig()
        headers = {"Accept": "application/vnd.github.v3+json"}
        if self.config.token:
            headers["Authorization"] = f"Bearer {self.config.token}"
        self.client = httpx.AsyncClient(
            base_url=self.config.api_base,
            timeout=self.config.request_timeout,
            headers=headers,
            transport=transport,
            follow_redirects=True,
        )
        self.rate_limiter = rate_limiter or RateLimiter(
            max_requests=self.config.rate_limit_requests,
            window_seconds=self.config.rate_limit_window,
        )
        token = self.config.token or "anonymous"
        self._caller_key = hashlib.sha256(token.encode()).hexdigest()[:16]
        self.call_count = 0

    async def close(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> GitHubClient:
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    # ── Endpoints ───────────────────────────────────────────

    async def get_default_branch(self, repo: RepositoryRef) -> str:
        data = await self._get_json(self._repo_url(repo), repo=repo)
        return data.get("default_branch") or "main"

    async def list_tree(self, repo: RepositoryRef, branch: str) -> TreeListing:
        """Recursive listing of every path on ``branch``."""
        url = f"{self._repo_url(repo)}/git/trees/{quote(branch, safe='')}"
        data = await self._get_json(url, params={"recursive": "1"}, repo=repo)
        items = tuple(
            TreeItem(
                path=item["path"],
                type=item.get("type", "blob"),
                sha=item.get("sha", ""),
                size=item.get("size") or 0,
            )
            for item in data.get("tree", [])
        )
        truncated = bool(data.get("truncated", False))
        if truncated:
            logger.warning("Repository %s tree was truncated; some files may not be visible", repo)
        return TreeListing(items=items, truncated=truncated)

    async def list_directory(
        self, repo: RepositoryRef, path: str, branch: str | None = None
    ) -> DirectoryListing:
        """One level of a directory, following ``Link: rel="next"`` pages."""
        url: str | None = self._contents_url(repo, path)
        params: dict[str, str] | None = {"ref": branch} if branch else None
        items: list[DirectoryItem] = []
        while url:
            response = await self._request(url, params=params, repo=repo, path=path)
            data = response.json()
            if isinstance(data, dict):
                data = [data]
            for item in data:
                items.append(DirectoryItem(
                    name=item.get("name", ""),
                    path=item.get("path", ""),
                    type=item.get("type", "file"),
                    sha=item.get("sha", ""),
                    size=item.get("size") or 0,
                ))
            next_link = response.links.get("next")
            url = next_link["url"] if next_link else None
            params = None  # the next link already carries the query
        return DirectoryListing(path=path, items=tuple(items))

    async def get_content(
        self, repo: RepositoryRef, path: str, branch: str | None = None
    ) -> FileContent:
        params = {"ref": branch} if branch else None
        data = await self._get_json(self._contents_url(repo, path), params=params, repo=repo, path=path)
        if isinstance(data, list) or data.get("type") == "dir":
            raise NotFoundError(f"{path} is a directory", repository=repo.full_name, path=path)

        sha = data.get("sha", "")
        size = data.get("size") or 0
        if data.get("encoding") == "base64" and data.get("content") is not None:
            try:
                raw = base64.b64decode(data["content"])
            except (binascii.Error, ValueError) as e:
                raise UpstreamUnavailableError(f"Malformed content for {repo}/{path}: {e}") from e
        elif data.get("download_url"):
            # Large files come back without inline content
            response = await self._request(data["download_url"], repo=repo, path=path)
            raw = response.content
        else:
            raw = b""

        text, is_binary = _decode_text(raw)
        return FileContent(path=path, content=text, is_binary=is_binary, sha=sha, size=size or len(raw))

    # ── Transport ───────────────────────────────────────────

    def _repo_url(self, repo: RepositoryRef) -> str:
        return f"/repos/{quote(repo.organization, safe='')}/{quote(repo.name, safe='')}"

    def _contents_url(self, repo: RepositoryRef, path: str) -> str:
        return f"{self._repo_url(repo)}/contents/{quote(path.strip('/'))}"

    async def _get_json(
        self,
        url: str,
        params: dict[str, str] | None = None,
        repo: RepositoryRef | None = None,
        path: str = "",
    ) -> Any:
        response = await self._request(url, params=params, repo=repo, path=path)
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamUnavailableError(f"Invalid JSON from {url}") from e

    async def _request(
        self,
        url: str,
        params: dict[str, str] | None = None,
        repo: RepositoryRef | None = None,
        path: str = "",
    ) -> httpx.Response:
        attempt = 0
        retried_rate_limit = False
        while True:
            await self.rate_limiter.acquire(self._caller_key)
            self.call_count += 1
            logger.debug("GitHub API request (attempt %d): %s", attempt + 1, url)
            try:
                response = await self.client.get(url, params=params)
            except httpx.TimeoutException:
                error = UpstreamUnavailableError(f"Request timeout for {url}")
            except httpx.TransportError as e:
                error = UpstreamUnavailableError(f"Network error for {url}: {e}")
            else:
                status = response.status_code
                if status == 404:
                    raise NotFoundError(
                        f"Not found: {url}",
                        repository=repo.full_name if repo else "",
                        path=path,
                    )
                if status in (403, 429) and self._is_rate_limited(response):
                    if retried_rate_limit:
                        raise UpstreamUnavailableError(f"Rate limit exceeded for {url}", status)
                    retried_rate_limit = True
                    delay = self._rate_limit_delay(response)
                    logger.warning("Rate limit hit for %s, retrying in %.1fs", url, delay)
                    await asyncio.sleep(delay)
                    continue
                if status >= 500:
                    error = UpstreamUnavailableError(f"GitHub API error: {status}", status)
                elif status >= 400:
                    raise UpstreamUnavailableError(f"GitHub API error: {status} for {url}", status)
                else:
                    return response

            if attempt >= self.config.max_retries:
                raise error
            delay = min(self.config.retry_backoff * 2 ** attempt, self.config.max_backoff)
            logger.warning(
                "Request failed (attempt %d/%d), retrying in %.1fs: %s",
                attempt + 1, self.config.max_retries + 1, delay, error,
            )
            attempt += 1
            await asyncio.sleep(delay)

    @staticmethod
    def _is_rate_limited(response: httpx.Response) -> bool:
        if response.status_code == 429:
            return True
        if response.headers.get("x-ratelimit-remaining") == "0":
            return True
        if "retry-after" in response.headers:
            return True
        return "rate limit" in response.text.lower()

    def _rate_limit_delay(self, response: httpx.Response) -> float:
        delay = 2.0
        retry_after = response.headers.get("retry-after")
        reset = response.headers.get("x-ratelimit-reset")
        try:
            if retry_after:
                delay = float(retry_after)
            elif reset:
                delay = float(reset) - time.time()
        except ValueError:
            pass
        return max(0.0, min(delay, self.config.max_backoff))
