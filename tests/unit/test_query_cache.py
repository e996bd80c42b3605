"""Tests for the query cache and read cancellation."""

import asyncio

import pytest

from tests.unit.fakes import GatedLoader
from workspace_tree.cache.query_cache import QueryCache


def test_set_get_remove_and_listeners() -> None:
    cache = QueryCache()
    seen: list[str] = []
    unsubscribe = cache.subscribe(seen.append)

    cache.set("entity:1", "one")
    assert cache.get("entity:1") == "one"
    assert "entity:1" in cache
    cache.remove("entity:1")
    cache.remove("entity:1")
    assert cache.get("entity:1") is None

    unsubscribe()
    cache.set("entity:2", "two")
    assert seen == ["entity:1", "entity:1"]


def test_invalidate_marks_only_present_keys_stale() -> None:
    cache = QueryCache()
    cache.set("children:root", ())
    cache.invalidate("children:root")
    cache.invalidate("children:9")
    assert cache.stale_keys() == ["children:root"]

    cache.set("children:root", ())
    assert not cache.is_stale("children:root")


def test_invalidate_prefix() -> None:
    cache = QueryCache()
    for key in ("entity:1", "entity:2", "children:root"):
        cache.set(key, key)
    cache.invalidate_prefix("entity:")
    assert cache.stale_keys() == ["entity:1", "entity:2"]


def test_snapshot_is_a_copy() -> None:
    cache = QueryCache()
    cache.set("entity:1", "one")
    snap = cache.snapshot()
    cache.set("entity:1", "changed")
    assert snap == {"entity:1": "one"}


@pytest.mark.anyio
async def test_fetch_caches_loader_value() -> None:
    cache = QueryCache()

    async def loader() -> str:
        return "fresh"

    assert await cache.fetch("entity:1", loader) == "fresh"
    assert cache.get("entity:1") == "fresh"
    assert not cache.is_fetching("entity:1")


@pytest.mark.anyio
async def test_fetch_error_leaves_cache_untouched() -> None:
    cache = QueryCache()
    cache.set("entity:1", "old")

    async def loader() -> str:
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError, match="boom"):
        await cache.fetch("entity:1", loader)
    assert cache.get("entity:1") == "old"


@pytest.mark.anyio
async def test_cancelled_read_cannot_overwrite_newer_value() -> None:
    cache = QueryCache()
    cache.set("children:root", "before")
    loader = GatedLoader("stale read")

    reader = asyncio.create_task(cache.fetch("children:root", loader))
    await loader.started.wait()
    assert cache.is_fetching("children:root")

    await cache.cancel("children:root")
    cache.set("children:root", "optimistic")
    loader.release.set()

    assert await reader != "stale read"
    assert cache.get("children:root") == "optimistic"
    assert not loader.finished
    assert not cache.is_fetching("children:root")


@pytest.mark.anyio
async def test_cancel_without_inflight_reads_is_a_no_op() -> None:
    cache = QueryCache()
    await cache.cancel("entity:1")
    await cache.cancel_many(["entity:1", "children:root"])
    assert cache.snapshot() == {}
