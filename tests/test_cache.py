"""Tests for the existing-resource caches."""

from __future__ import annotations

from collections.abc import Iterator

from hydrator.cache import ExistingResourceRef, ResourceCache, build_name_index, display_name
from hydrator.graph_client import GraphPage


def two_pages() -> Iterator[GraphPage]:
    yield GraphPage(items=[{"id": "1", "displayName": "First"}], next_link="https://next/page2")
    yield GraphPage(items=[{"id": "2", "displayName": "Second"}], next_link=None)


def failing_listing() -> Iterator[GraphPage]:
    yield GraphPage(items=[{"id": "1", "displayName": "First"}], next_link="https://next/page2")
    raise RuntimeError("listing failed")


class TestBuildNameIndex:
    """Tests for build_name_index."""

    def test_two_pages_drained(self) -> None:
        index = build_name_index(two_pages)
        assert index == {"First": "1", "Second": "2"}

    def test_first_seen_wins(self) -> None:
        def pages() -> Iterator[GraphPage]:
            yield GraphPage(items=[{"id": "1", "displayName": "Dup"}], next_link="x")
            yield GraphPage(items=[{"id": "2", "displayName": "Dup"}], next_link=None)

        assert build_name_index(pages) == {"Dup": "1"}

    def test_failure_returns_empty_map(self) -> None:
        assert build_name_index(failing_listing) == {}

    def test_failure_before_first_page(self) -> None:
        def broken() -> Iterator[GraphPage]:
            raise ConnectionError("unreachable")

        assert build_name_index(broken) == {}

    def test_objects_without_name_or_id_ignored(self) -> None:
        def pages() -> Iterator[GraphPage]:
            yield GraphPage(
                items=[{"id": "1"}, {"displayName": "No id"}, {"id": "3", "displayName": "Ok"}]
            )

        assert build_name_index(pages) == {"Ok": "3"}

    def test_custom_name_extractor(self) -> None:
        def pages() -> Iterator[GraphPage]:
            yield GraphPage(items=[{"id": "1", "name": "Catalog policy"}])

        index = build_name_index(pages, lambda obj: obj.get("name"))
        assert index == {"Catalog policy": "1"}


class TestDisplayName:
    def test_prefers_display_name(self) -> None:
        assert display_name({"displayName": "a", "name": "b"}) == "a"

    def test_falls_back_to_name(self) -> None:
        assert display_name({"name": "b"}) == "b"

    def test_empty_is_none(self) -> None:
        assert display_name({"displayName": ""}) is None


class TestResourceCache:
    """Tests for ResourceCache."""

    def test_build_keeps_attributes(self) -> None:
        cache = ResourceCache.build(two_pages)

        ref = cache.lookup("Second")
        assert ref is not None
        assert ref.remote_id == "2"
        assert ref.attributes == {"id": "2", "displayName": "Second"}
        assert len(cache) == 2
        assert cache.degraded is False

    def test_failed_build_is_empty_and_degraded(self) -> None:
        cache = ResourceCache.build(failing_listing, collection="groups")

        assert len(cache) == 0
        assert cache.degraded is True
        assert cache.lookup("First") is None

    def test_remember_and_forget(self) -> None:
        cache = ResourceCache()
        cache.remember(ExistingResourceRef(name="New", remote_id="9"))

        assert "New" in cache
        assert cache.ids == {"New": "9"}

        cache.forget("New")
        assert "New" not in cache
        cache.forget("Never there")

    def test_find_by_predicate(self) -> None:
        cache = ResourceCache.build(two_pages)

        found = cache.find(lambda ref: ref.remote_id == "2")

        assert found is not None
        assert found.name == "Second"
        assert cache.find(lambda ref: False) is None
