"""Shared test fixtures."""

import json
from pathlib import Path

import pytest

from tests.unit.fakes import WORKSPACE, FakeTransport, prime_cache
from workspace_tree.cache.queries import TreeQueries
from workspace_tree.cache.query_cache import QueryCache
from workspace_tree.core.coordinator import MutationCoordinator
from workspace_tree.models.entity import entity_to_dict
from workspace_tree.store.adapter import EntityStoreAdapter
from workspace_tree.store.memory import MemoryBackend


@pytest.fixture(params=["asyncio"])
def anyio_backend(request):
    """Restrict anyio tests to asyncio only (trio is not installed)."""
    return request.param


@pytest.fixture
def backend() -> MemoryBackend:
    return MemoryBackend(WORKSPACE, clock=lambda: 1_700_000_000)


@pytest.fixture
def transport(backend: MemoryBackend) -> FakeTransport:
    return FakeTransport(backend)


@pytest.fixture
def adapter(transport: FakeTransport) -> EntityStoreAdapter:
    return EntityStoreAdapter(transport)


@pytest.fixture
def cache(backend: MemoryBackend) -> QueryCache:
    """A cache holding the whole workspace, as after a full load."""
    return prime_cache(QueryCache(), backend)


@pytest.fixture
def queries(adapter: EntityStoreAdapter, cache: QueryCache) -> TreeQueries:
    return TreeQueries(adapter, cache)


@pytest.fixture
def coordinator(adapter: EntityStoreAdapter, cache: QueryCache) -> MutationCoordinator:
    return MutationCoordinator(adapter, cache, clock=lambda: 1_700_000_100)


@pytest.fixture
def seed_file(tmp_path: Path) -> Path:
    path = tmp_path / "workspace.json"
    path.write_text(json.dumps([entity_to_dict(e) for e in WORKSPACE]))
    return path
