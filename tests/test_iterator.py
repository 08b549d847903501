"""Tests for the paginated object iterator."""

import asyncio

import pytest

from cloudstore.core.errors import BackendError, ListExhaustedError
from cloudstore.storage.iterator import IteratorDone
from cloudstore.storage.query import Query


def fill(backend, count, prefix="obj-"):
    names = [f"{prefix}{i:02d}" for i in range(count)]
    for name in names:
        backend.put(name, name.encode())
    return names


@pytest.mark.unit
@pytest.mark.asyncio
async def test_iterates_every_page_in_order(store, backend):
    names = fill(backend, 12)

    seen = [obj.name async for obj in store.objects(Query.all())]

    assert seen == names
    cursors = [call[2] for call in backend.list_calls]
    assert cursors == ["", "obj-04", "obj-09"]
    assert all(call[3] == 5 for call in backend.list_calls)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_cursor_advances_only_after_page_is_consumed(store, backend):
    fill(backend, 7)
    iterator = store.objects(Query.all())

    for _ in range(5):
        await iterator.next()
        assert iterator.query.cursor == ""

    obj = await iterator.next()
    assert obj.name == "obj-05"
    assert iterator.query.cursor == "obj-04"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_query_is_not_mutated(store, backend):
    fill(backend, 7)
    query = Query.all()

    [obj async for obj in store.objects(query)]

    assert query.cursor == ""


@pytest.mark.unit
@pytest.mark.asyncio
async def test_pages_emptied_by_filters_are_skipped(store, backend):
    fill(backend, 10)

    seen = [obj.name async for obj in store.objects(Query(start_offset="obj-07"))]

    assert seen == ["obj-07", "obj-08", "obj-09"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_done_is_sticky(store, backend):
    fill(backend, 1)
    iterator = store.objects()

    assert (await iterator.next()).name == "obj-00"
    with pytest.raises(IteratorDone):
        await iterator.next()
    with pytest.raises(IteratorDone):
        await iterator.next()
    assert backend.calls["list"] == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_empty_listing(store):
    with pytest.raises(IteratorDone):
        await store.objects().next()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_page_fetch_is_retried(store, backend, sleeps):
    fill(backend, 3)
    backend.fail("list", BackendError("503"))

    seen = [obj.name async for obj in store.objects()]

    assert seen == ["obj-00", "obj-01", "obj-02"]
    assert sleeps == [1.0]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_page_fetch_exhausted(store, backend):
    fill(backend, 3)
    backend.fail("list", BackendError("503"), times=3)

    with pytest.raises(ListExhaustedError):
        await store.objects().next()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_prefix_is_pushed_down(store, backend):
    fill(backend, 3, prefix="logs/")
    fill(backend, 3, prefix="data/")

    seen = [obj.name async for obj in store.objects(Query.for_prefix("logs/"))]

    assert seen == ["logs/00", "logs/01", "logs/02"]
    assert backend.list_calls[0][0] == "logs/"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_close_ends_iteration(store, backend):
    fill(backend, 3)
    iterator = store.objects()
    await iterator.next()

    iterator.close()

    with pytest.raises(IteratorDone):
        await iterator.next()


@pytest.mark.unit
@pytest.mark.asyncio
@pytest.mark.parametrize("count", [5, 11, 15])
async def test_yields_exactly_k_objects_then_done(store, backend, count):
    names = fill(backend, count)
    iterator = store.objects()

    seen = [(await iterator.next()).name for _ in range(count)]

    assert seen == names
    assert len(set(seen)) == count
    with pytest.raises(IteratorDone):
        await iterator.next()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_cancelled_page_fetch_is_not_retried(store, backend, sleeps):
    fill(backend, 3)
    entered, _ = backend.block("list")
    iterator = store.objects()

    pending = asyncio.create_task(iterator.next())
    await entered.wait()
    pending.cancel()

    with pytest.raises(asyncio.CancelledError):
        await pending
    assert backend.calls["list"] == 1
    assert sleeps == []
