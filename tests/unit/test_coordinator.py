"""Tests for optimistic mutations: patch, commit, rollback and settle."""

import asyncio

import pytest

from tests.unit.fakes import FakeTransport, make_entity, prime_cache
from workspace_tree.cache.keys import children_key, entity_key
from workspace_tree.cache.queries import TreeQueries
from workspace_tree.cache.query_cache import QueryCache
from workspace_tree.core.coordinator import MutationCoordinator
from workspace_tree.errors import CycleError, MutationError, NotFoundError, ValidationError
from workspace_tree.models.entity import Entity, EntityKind
from workspace_tree.store.adapter import EntityStoreAdapter
from workspace_tree.store.memory import MemoryBackend


def _setup(*entities: Entity) -> tuple[MutationCoordinator, QueryCache, FakeTransport]:
    backend = MemoryBackend(entities)
    transport = FakeTransport(backend)
    cache = prime_cache(QueryCache(), backend)
    return MutationCoordinator(EntityStoreAdapter(transport), cache), cache, transport


def _names(cache: QueryCache, parent_id: int | None) -> list[tuple[str, int]]:
    return [(e.name, e.position) for e in cache.get(children_key(parent_id))]


async def _until_called(transport: FakeTransport, command: str) -> None:
    while command not in transport.commands():
        await asyncio.sleep(0)


# -- scenarios --


@pytest.mark.anyio
async def test_create_then_reorder_root_folders() -> None:
    coordinator, cache, transport = _setup(make_entity(1, "A", None, 0), make_entity(2, "B", None, 1))

    created = await coordinator.create_entity("C")
    assert created.id == 3
    assert _names(cache, None) == [("A", 0), ("B", 1), ("C", 2)]

    await coordinator.reorder_children(None, [3, 1, 2])
    assert _names(cache, None) == [("C", 0), ("A", 1), ("B", 2)]
    assert cache.get(entity_key(1)).position == 1
    assert [(e.name, e.position) for e in transport.backend.group(None)] == [("C", 0), ("A", 1), ("B", 2)]


@pytest.mark.anyio
async def test_move_child_to_another_folder() -> None:
    coordinator, cache, _ = _setup(
        make_entity(1, "A", None, 0),
        make_entity(2, "B", 1, 0),
        make_entity(3, "C", None, 1),
    )

    moved = await coordinator.move_entity(2, 3)

    assert cache.get(children_key(1)) == ()
    assert _names(cache, 3) == [("B", 0)]
    assert moved.parent_id == 3
    assert cache.get(entity_key(2)).parent_id == 3


@pytest.mark.anyio
async def test_move_under_own_descendant_is_rejected() -> None:
    coordinator, cache, transport = _setup(
        make_entity(1, "A", None, 0),
        make_entity(2, "B", 1, 0),
        make_entity(3, "deep", 2, 0),
    )
    before = cache.snapshot()

    with pytest.raises(CycleError):
        await coordinator.move_entity(1, 2)
    with pytest.raises(CycleError):
        await coordinator.move_entity(1, 3)
    with pytest.raises(CycleError):
        await coordinator.move_entity(1, 1)

    assert cache.snapshot() == before
    assert transport.calls == []


@pytest.mark.anyio
async def test_failed_create_leaves_no_trace() -> None:
    coordinator, cache, transport = _setup(make_entity(1, "A", None, 0), make_entity(2, "B", None, 1))
    transport.fail("create_entity", "disk full")
    before = cache.snapshot()

    with pytest.raises(MutationError, match="Failed to create folder 'C': disk full"):
        await coordinator.create_entity("C")

    assert cache.snapshot() == before
    assert _names(cache, None) == [("A", 0), ("B", 1)]
    assert cache.is_stale(children_key(None))


# -- optimistic visibility --


@pytest.mark.anyio
async def test_created_entity_is_visible_before_store_answers(
    coordinator: MutationCoordinator, cache: QueryCache, transport: FakeTransport
) -> None:
    gate = transport.gate("create_entity")
    task = asyncio.create_task(coordinator.create_entity("Inbox"))
    await _until_called(transport, "create_entity")

    pending = cache.get(children_key(None))[-1]
    assert pending.id < 0
    assert (pending.name, pending.position) == ("Inbox", 2)
    assert cache.get(entity_key(pending.id)) == pending
    assert coordinator.is_pending(pending.id)

    gate.set()
    created = await task

    assert entity_key(pending.id) not in cache
    assert [e.id for e in cache.get(children_key(None))] == [1, 2, created.id]
    assert cache.get(entity_key(created.id)) == created
    assert not coordinator.is_pending(pending.id)


@pytest.mark.anyio
async def test_sequential_creates_keep_sibling_order(coordinator: MutationCoordinator, cache: QueryCache) -> None:
    first = await coordinator.create_entity("one", parent_id=2)
    second = await coordinator.create_entity("two", parent_id=2, position=0)
    assert [e.id for e in cache.get(children_key(2))] == [second.id, first.id]
    assert [e.position for e in cache.get(children_key(2))] == [0, 1]
    assert not [k for k in cache.keys("entity:-")]


@pytest.mark.anyio
async def test_soft_delete_removes_immediately(
    coordinator: MutationCoordinator, cache: QueryCache, transport: FakeTransport
) -> None:
    gate = transport.gate("delete_entity")
    task = asyncio.create_task(coordinator.delete_entity(4))
    await _until_called(transport, "delete_entity")

    assert entity_key(4) not in cache
    assert [e.id for e in cache.get(children_key(1))] == [3]

    gate.set()
    await task
    assert transport.backend.get(4) is None


@pytest.mark.anyio
async def test_hard_delete_waits_for_store(
    coordinator: MutationCoordinator, cache: QueryCache, transport: FakeTransport
) -> None:
    gate = transport.gate("delete_entity")
    task = asyncio.create_task(coordinator.delete_entity(4, optimistic=False))
    await _until_called(transport, "delete_entity")

    assert entity_key(4) in cache
    assert coordinator.is_pending(4)

    gate.set()
    await task
    assert entity_key(4) not in cache
    assert [(e.id, e.position) for e in cache.get(children_key(1))] == [(3, 0)]


@pytest.mark.anyio
async def test_forced_delete_drops_the_cached_subtree(
    coordinator: MutationCoordinator, cache: QueryCache, transport: FakeTransport
) -> None:
    await coordinator.delete_entity(1, force=True)

    for key in (entity_key(1), entity_key(3), entity_key(4), entity_key(5), children_key(1), children_key(3)):
        assert key not in cache
    assert [(e.name, e.position) for e in cache.get(children_key(None))] == [("Archive", 0)]
    assert [e.id for e in transport.backend.entities()] == [2]


# -- rollback --


@pytest.mark.anyio
@pytest.mark.parametrize(
    ("command", "mutation"),
    [
        ("update_entity", lambda c: c.rename_entity(3, "Jobs")),
        ("update_entity", lambda c: c.toggle_favorite(5)),
        ("move_entity", lambda c: c.move_entity(5, 2)),
        ("move_entity", lambda c: c.move_entity(4, 1, 0)),
        ("reorder_entities", lambda c: c.reorder_children(1, [4, 3])),
        ("delete_entity", lambda c: c.delete_entity(4)),
        ("delete_entity", lambda c: c.delete_entity(1, force=True)),
        ("create_entity", lambda c: c.create_entity("Child", parent_id=3, kind=EntityKind.NOTE)),
    ],
)
async def test_rollback_restores_exact_cache(
    coordinator: MutationCoordinator,
    cache: QueryCache,
    transport: FakeTransport,
    command: str,
    mutation,
) -> None:
    transport.fail(command)
    before = cache.snapshot()

    with pytest.raises(MutationError) as exc:
        await mutation(coordinator)

    assert cache.snapshot() == before
    assert exc.value.cause == "backend unavailable"
    assert exc.value.code == "SERVER_ERROR"


@pytest.mark.anyio
async def test_failure_message_names_operation_and_entity(
    coordinator: MutationCoordinator, transport: FakeTransport
) -> None:
    transport.break_link("move_entity")
    with pytest.raises(MutationError) as exc:
        await coordinator.move_entity(3, 2)
    assert str(exc.value) == "Failed to move folder 'Work': connection reset during move_entity"
    assert exc.value.operation == "move"
    assert exc.value.code == "TRANSPORT_ERROR"


@pytest.mark.anyio
async def test_store_side_not_found_rolls_back(
    coordinator: MutationCoordinator, cache: QueryCache, transport: FakeTransport
) -> None:
    await transport.backend.invoke("delete_entity", {"id": 2})
    before = cache.snapshot()

    with pytest.raises(NotFoundError, match="Failed to rename folder 'Archive'"):
        await coordinator.rename_entity(2, "Old")

    assert cache.snapshot() == before


@pytest.mark.anyio
async def test_uncached_entity_is_not_found(coordinator: MutationCoordinator, transport: FakeTransport) -> None:
    with pytest.raises(NotFoundError, match="Failed to rename entity 404: not loaded"):
        await coordinator.rename_entity(404, "x")
    with pytest.raises(NotFoundError, match="Failed to delete entity 404") as exc:
        await coordinator.delete_entity(404)
    assert (exc.value.operation, exc.value.code) == ("delete", "NOT_FOUND")
    with pytest.raises(NotFoundError, match="Failed to move entity 404"):
        await coordinator.move_entity(404, None)
    assert transport.calls == []


# -- validation and no-ops --


@pytest.mark.anyio
async def test_rename_to_same_trimmed_name_is_a_no_op(
    coordinator: MutationCoordinator, cache: QueryCache, transport: FakeTransport
) -> None:
    writes: list[str] = []
    cache.subscribe(writes.append)

    result = await coordinator.rename_entity(3, "  Work ")

    assert result == cache.get(entity_key(3))
    assert writes == []
    assert transport.calls == []
    assert cache.stale_keys() == []


@pytest.mark.anyio
async def test_reorder_to_current_order_is_a_no_op(
    coordinator: MutationCoordinator, transport: FakeTransport
) -> None:
    await coordinator.reorder_children(1, [3, 4])
    assert transport.calls == []


@pytest.mark.anyio
@pytest.mark.parametrize(
    "mutation",
    [
        lambda c: c.rename_entity(3, ""),
        lambda c: c.rename_entity(3, "a:b"),
        lambda c: c.create_entity("NUL"),
        lambda c: c.create_entity("inside note", parent_id=4),
        lambda c: c.move_entity(3, 5),
        lambda c: c.reorder_children(1, [3]),
        lambda c: c.update_entity(1, content="folders have no text"),
    ],
)
async def test_validation_errors_touch_nothing(
    coordinator: MutationCoordinator, cache: QueryCache, transport: FakeTransport, mutation
) -> None:
    before = cache.snapshot()
    with pytest.raises(ValidationError):
        await mutation(coordinator)
    assert cache.snapshot() == before
    assert cache.stale_keys() == []
    assert transport.calls == []


# -- updates --


@pytest.mark.anyio
async def test_rename_updates_entity_and_group(coordinator: MutationCoordinator, cache: QueryCache) -> None:
    renamed = await coordinator.rename_entity(3, " Jobs ")
    assert renamed.name == "Jobs"
    assert cache.get(entity_key(3)).name == "Jobs"
    assert [e.name for e in cache.get(children_key(1))] == ["Jobs", "ideas"]
    assert cache.is_stale(entity_key(3))
    assert cache.is_stale(children_key(1))


@pytest.mark.anyio
async def test_toggle_favorite_and_note_content(
    coordinator: MutationCoordinator, cache: QueryCache, transport: FakeTransport
) -> None:
    unfav = await coordinator.toggle_favorite(5)
    assert not unfav.is_favorite
    assert not cache.get(children_key(3))[0].is_favorite

    edited = await coordinator.update_entity(4, content="rewritten")
    assert edited.content == "rewritten"
    assert transport.backend.get(4).content == "rewritten"


@pytest.mark.anyio
async def test_move_within_parent(coordinator: MutationCoordinator, cache: QueryCache) -> None:
    await coordinator.move_entity(3, 1, 1)
    assert [(e.name, e.position) for e in cache.get(children_key(1))] == [("ideas", 0), ("Work", 1)]


@pytest.mark.anyio
async def test_positions_stay_dense_through_a_session(
    coordinator: MutationCoordinator, cache: QueryCache, transport: FakeTransport
) -> None:
    a = await coordinator.create_entity("a", parent_id=2)
    b = await coordinator.create_entity("b", parent_id=2, position=0)
    c = await coordinator.create_entity("c", parent_id=2, position=1)
    await coordinator.delete_entity(b.id)
    await coordinator.reorder_children(2, [a.id, c.id])
    await coordinator.move_entity(4, 2, 1)

    group = cache.get(children_key(2))
    assert [e.position for e in group] == list(range(len(group)))
    assert [e.id for e in group] == [a.id, 4, c.id]
    assert [e.id for e in transport.backend.group(2)] == [a.id, 4, c.id]


# -- read cancellation --


@pytest.mark.anyio
async def test_mutation_cancels_inflight_read_of_its_region(
    coordinator: MutationCoordinator, queries: TreeQueries, cache: QueryCache, transport: FakeTransport
) -> None:
    gate = transport.gate("list_root")
    reader = asyncio.create_task(queries.load_children(None))
    await _until_called(transport, "list_root")

    created = await coordinator.create_entity("Inbox")
    gate.set()
    await reader

    assert [e.id for e in cache.get(children_key(None))] == [1, 2, created.id]
    assert not cache.is_fetching(children_key(None))


@pytest.mark.anyio
async def test_settle_invalidates_affected_groups(coordinator: MutationCoordinator, cache: QueryCache) -> None:
    await coordinator.move_entity(5, 2)
    assert cache.is_stale(children_key(3))
    assert cache.is_stale(children_key(2))
    assert cache.is_stale(children_key(None))
    assert not cache.is_stale(children_key(1))


@pytest.mark.anyio
async def test_optimistic_update_uses_injected_clock(
    coordinator: MutationCoordinator, cache: QueryCache, transport: FakeTransport
) -> None:
    gate = transport.gate("update_entity")
    task = asyncio.create_task(coordinator.rename_entity(2, "Attic"))
    await _until_called(transport, "update_entity")

    optimistic = cache.get(entity_key(2))
    assert optimistic.name == "Attic"
    assert optimistic.updated_at == 1_700_000_100
    assert coordinator.is_pending(2)

    gate.set()
    committed = await task
    assert committed.updated_at == 1_700_000_000
    assert not coordinator.is_pending(2)


# -- batches --


@pytest.mark.anyio
async def test_batch_move_failure_rolls_back_only_that_item(
    coordinator: MutationCoordinator, cache: QueryCache, transport: FakeTransport, backend: MemoryBackend
) -> None:
    transport.fail("move_entity", when=lambda args: args["id"] == 5)
    progress: list[tuple[int, int]] = []

    result = await coordinator.batch_move(
        [4, 5, 3], 2, on_progress=lambda done, total: progress.append((done, total))
    )

    assert result.succeeded == [4, 3]
    assert list(result.errors) == [5]
    assert isinstance(result.errors[5], MutationError)
    assert (result.success, result.failed) == (2, 1)
    assert "plan" in result.messages[0]
    assert progress == [(1, 3), (2, 3), (3, 3)]

    assert [(e.id, e.position) for e in cache.get(children_key(2))] == [(4, 0), (3, 1)]
    assert cache.get(children_key(1)) == ()
    assert [e.id for e in cache.get(children_key(3))] == [5]
    assert cache.get(entity_key(5)).parent_id == 3
    assert [e.id for e in backend.group(2)] == [4, 3]
    assert [e.id for e in backend.group(3)] == [5]
    assert not any(coordinator.is_pending(i) for i in (3, 4, 5))


@pytest.mark.anyio
async def test_batch_move_collects_cycle_errors_without_store_calls(
    coordinator: MutationCoordinator, cache: QueryCache, transport: FakeTransport
) -> None:
    result = await coordinator.batch_move([1, 2], 3)

    assert isinstance(result.errors[1], CycleError)
    assert result.succeeded == [2]
    assert [e.id for e in cache.get(children_key(3))] == [5, 2]
    assert transport.commands() == ["move_entity"]


@pytest.mark.anyio
async def test_batch_delete_skips_unknown_entities(
    coordinator: MutationCoordinator, cache: QueryCache
) -> None:
    result = await coordinator.batch_delete([5, 404, 2])

    assert result.succeeded == [5, 2]
    assert isinstance(result.errors[404], NotFoundError)
    assert [e.id for e in cache.get(children_key(None))] == [1]
    assert cache.get(children_key(3)) == ()


@pytest.mark.anyio
async def test_batch_update_privacy(coordinator: MutationCoordinator, cache: QueryCache) -> None:
    result = await coordinator.batch_update([1, 2], is_public=False)

    assert result.succeeded == [1, 2]
    assert not cache.get(entity_key(1)).is_public
    assert not cache.get(entity_key(2)).is_public
