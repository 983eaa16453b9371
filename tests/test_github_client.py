"""Tests for the upstream client, driven through httpx.MockTransport."""

import asyncio
import base64

import httpx
import pytest

from repo_graph.errors import NotFoundError, UpstreamUnavailableError
from repo_graph.github.client import GitHubClient
from repo_graph.models import RepositoryRef

from conftest import make_config

REPO = RepositoryRef("acme", "core")


def _run(handler, action, **config):
    """Run ``action(client)`` against a client whose transport calls ``handler``."""
    async def main():
        async with GitHubClient(make_config(**config), transport=httpx.MockTransport(handler)) as client:
            result = await action(client)
            return result, client.call_count
    return asyncio.run(main())


def _b64(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


class TestEndpoints:
    def test_default_branch_and_auth_header(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("authorization")
            seen["path"] = request.url.path
            return httpx.Response(200, json={"default_branch": "develop"})

        branch, _ = _run(handler, lambda c: c.get_default_branch(REPO))
        assert branch == "develop"
        assert seen == {"auth": "Bearer test-token", "path": "/repos/acme/core"}

    def test_list_tree(self):
        def handler(request):
            assert request.url.params["recursive"] == "1"
            return httpx.Response(200, json={
                "tree": [
                    {"path": "force-app/main/default/classes/Foo.cls", "type": "blob", "sha": "a", "size": 10},
                    {"path": "force-app", "type": "tree", "sha": "b"},
                ],
                "truncated": True,
            })

        tree, _ = _run(handler, lambda c: c.list_tree(REPO, "main"))
        assert [i.path for i in tree.items] == ["force-app/main/default/classes/Foo.cls", "force-app"]
        assert tree.truncated is True

    def test_get_content_decodes_base64(self):
        def handler(request):
            assert request.url.params["ref"] == "main"
            return httpx.Response(200, json={
                "type": "file", "encoding": "base64", "sha": "s", "size": 19,
                "content": _b64(b"public class Foo {}"),
            })

        content, _ = _run(handler, lambda c: c.get_content(REPO, "classes/Foo.cls", "main"))
        assert content.content == "public class Foo {}"
        assert content.is_binary is False
        assert content.sha == "s"

    def test_get_content_binary(self):
        def handler(request):
            return httpx.Response(200, json={
                "type": "file", "encoding": "base64", "content": _b64(b"\x89PNG\x00\x01"),
            })

        content, _ = _run(handler, lambda c: c.get_content(REPO, "logo.png"))
        assert content.is_binary is True

    def test_get_content_of_directory_is_not_found(self):
        def handler(request):
            return httpx.Response(200, json=[{"name": "Foo.cls", "path": "classes/Foo.cls", "type": "file"}])

        with pytest.raises(NotFoundError):
            _run(handler, lambda c: c.get_content(REPO, "classes"))

    def test_list_directory_follows_pagination(self):
        def handler(request):
            if request.url.params.get("page") == "2":
                return httpx.Response(200, json=[{"name": "B.cls", "path": "src/classes/B.cls", "type": "file"}])
            next_url = "https://api.example.test/repos/acme/core/contents/src/classes?page=2"
            return httpx.Response(
                200,
                json=[{"name": "A.cls", "path": "src/classes/A.cls", "type": "file"}],
                headers={"Link": f'<{next_url}>; rel="next"'},
            )

        listing, calls = _run(handler, lambda c: c.list_directory(REPO, "src/classes"))
        assert [i.name for i in listing.items] == ["A.cls", "B.cls"]
        assert calls == 2


class TestErrors:
    def test_not_found(self):
        with pytest.raises(NotFoundError) as exc:
            _run(lambda r: httpx.Response(404, json={"message": "Not Found"}),
                 lambda c: c.get_content(REPO, "classes/Missing.cls"))
        assert exc.value.repository == "acme/core"
        assert exc.value.path == "classes/Missing.cls"

    def test_retries_server_errors(self):
        responses = iter([httpx.Response(502), httpx.Response(200, json={"default_branch": "main"})])
        branch, calls = _run(lambda r: next(responses), lambda c: c.get_default_branch(REPO))
        assert branch == "main"
        assert calls == 2

    def test_gives_up_after_max_retries(self):
        with pytest.raises(UpstreamUnavailableError) as exc:
            _run(lambda r: httpx.Response(503), lambda c: c.get_default_branch(REPO), max_retries=2)
        assert exc.value.status_code == 503

    def test_retries_timeouts(self):
        attempts = []

        def handler(request):
            attempts.append(1)
            if len(attempts) == 1:
                raise httpx.ReadTimeout("slow", request=request)
            return httpx.Response(200, json={"default_branch": "main"})

        branch, _ = _run(handler, lambda c: c.get_default_branch(REPO))
        assert branch == "main"
        assert len(attempts) == 2

    def test_rate_limit_retried_once(self):
        responses = iter([
            httpx.Response(429, headers={"Retry-After": "0"}),
            httpx.Response(200, json={"default_branch": "main"}),
        ])
        branch, calls = _run(lambda r: next(responses), lambda c: c.get_default_branch(REPO))
        assert branch == "main"
        assert calls == 2

    def test_rate_limit_twice_fails(self):
        def handler(request):
            return httpx.Response(403, headers={"x-ratelimit-remaining": "0"}, text="API rate limit exceeded")

        with pytest.raises(UpstreamUnavailableError):
            _run(handler, lambda c: c.get_default_branch(REPO))

    def test_auth_failure_not_retried(self):
        attempts = []

        def handler(request):
            attempts.append(1)
            return httpx.Response(401, json={"message": "Bad credentials"})

        with pytest.raises(UpstreamUnavailableError) as exc:
            _run(handler, lambda c: c.get_default_branch(REPO))
        assert exc.value.status_code == 401
        assert len(attempts) == 1
