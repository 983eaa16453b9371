"""Tests for path classification and catalog building."""

import asyncio

import pytest

from repo_graph.analysis.catalog import CatalogBuilder, catalog_to_listing, classify_path, is_source_path
from repo_graph.cache.manager import CacheManager
from repo_graph.cache.upstream import CachedUpstream
from repo_graph.models import RepositoryRef, SourceKind

from conftest import FakeClient

REPO = RepositoryRef("acme", "core")
CLASSES = "force-app/main/default/classes"
LWC = "force-app/main/default/lwc"

FILES = {
    f"{CLASSES}/AccountService.cls": "public class AccountService {}",
    f"{CLASSES}/AccountService.cls-meta.xml": "<ApexClass/>",
    f"{CLASSES}/AccountServiceTest.cls": "@isTest class AccountServiceTest {}",
    "force-app/main/default/triggers/AccountTrigger.trigger": "trigger AccountTrigger on Account (before insert) {}",
    f"{LWC}/accountCard/accountCard.js": "import { LightningElement } from 'lwc';",
    f"{LWC}/accountCard/accountCard.html": "<template></template>",
    "README.md": "# core",
    "scripts/deploy.sh": "sfdx deploy",
}


def _builder(client):
    return CatalogBuilder(CachedUpstream(client, CacheManager.in_memory()))


class TestClassifyPath:
    @pytest.mark.parametrize("path,kind", [
        (f"{CLASSES}/Foo.cls", SourceKind.PRIMARY_CLASS),
        ("src/triggers/FooTrigger.trigger", SourceKind.PRIMARY_CLASS),
        (f"{CLASSES}/FooTest.cls", SourceKind.TEST),
        (f"{LWC}/fooCard/__tests__/fooCard.test.js", SourceKind.TEST),
        (f"{LWC}/fooCard/fooCard.js", SourceKind.COMPONENT),
        ("force-app/main/default/aura/fooApp/fooApp.cmp", SourceKind.COMPONENT),
        ("force-app/main/default/staticresources/lib.js", SourceKind.OTHER),
    ])
    def test_kinds(self, path, kind):
        assert classify_path(path) is kind

    def test_contest_is_not_a_test(self):
        assert classify_path(f"{CLASSES}/Contest.cls") is SourceKind.PRIMARY_CLASS

    def test_source_paths(self):
        assert is_source_path(f"{CLASSES}/Foo.cls")
        assert not is_source_path(f"{CLASSES}/Foo.cls-meta.xml")
        assert not is_source_path("README.md")
        assert not is_source_path("scripts/deploy.js")


class TestCatalogBuilder:
    def test_lists_and_classifies(self):
        catalog = asyncio.run(_builder(FakeClient({"acme/core": FILES})).list_files(REPO))
        paths = {e.path: e.kind for e in catalog.entries}
        assert paths == {
            f"{CLASSES}/AccountService.cls": SourceKind.PRIMARY_CLASS,
            f"{CLASSES}/AccountServiceTest.cls": SourceKind.TEST,
            "force-app/main/default/triggers/AccountTrigger.trigger": SourceKind.PRIMARY_CLASS,
            f"{LWC}/accountCard/accountCard.js": SourceKind.COMPONENT,
            f"{LWC}/accountCard/accountCard.html": SourceKind.COMPONENT,
        }
        assert catalog.truncated is False
        assert catalog.repository.default_branch == "main"

    def test_truncated_tree_propagates(self):
        client = FakeClient({"acme/core": FILES}, hidden={"acme/core": {"README.md"}})
        assert asyncio.run(_builder(client).list_files(REPO)).truncated is True

    def test_falls_back_to_directory_walk(self):
        client = FakeClient({"acme/core": FILES})
        client.tree_errors.add("acme/core")
        catalog = asyncio.run(_builder(client).list_files(REPO))
        paths = sorted(e.path for e in catalog.entries)
        assert f"{CLASSES}/AccountService.cls" in paths
        assert f"{LWC}/accountCard/accountCard.js" in paths
        assert f"{CLASSES}/AccountService.cls-meta.xml" not in paths
        assert catalog.truncated is True
        assert client.calls["directory"] > 0

    def test_listing_groups_by_kind(self):
        catalog = asyncio.run(_builder(FakeClient({"acme/core": FILES})).list_files(REPO))
        listing = catalog_to_listing(catalog)
        assert listing["repository"] == "acme/core"
        assert listing["totalCount"] == 5
        assert [f["name"] for f in listing["files"]["primary-class"]] == [
            "AccountService.cls", "AccountTrigger.trigger",
        ]
        assert len(listing["files"]["component"]) == 2
        assert listing["files"]["other"] == []
