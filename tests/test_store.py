"""Tests for Store operations over the in-memory backend."""

import random

import pytest

from cloudstore.core.errors import (
    BackendError,
    FetchExhaustedError,
    ObjectExistsError,
    ObjectNotFoundError,
)
from cloudstore.storage.cachepath import CONTENT_TYPE_KEY
from cloudstore.storage.object import ObjectState
from cloudstore.storage.protocol import AccessLevel
from cloudstore.storage.query import Query
from cloudstore.storage.store import get_and_open


# ============================================================================
# Lookup
# ============================================================================

@pytest.mark.unit
@pytest.mark.asyncio
async def test_new_object_for_existing_name_fails(store, backend):
    backend.put("taken.txt", b"x")

    with pytest.raises(ObjectExistsError):
        await store.new_object("taken.txt")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_new_object_seeds_content_type(store):
    obj = await store.new_object("table.csv")

    assert obj.metadata[CONTENT_TYPE_KEY] == "text/csv"
    assert obj.state == ObjectState.UNOPENED


@pytest.mark.unit
@pytest.mark.asyncio
async def test_new_object_retries_existence_check(store, backend, sleeps):
    backend.fail("get", BackendError("503"))

    obj = await store.new_object("fresh.txt")

    assert obj.name == "fresh.txt"
    assert backend.calls["get"] == 2
    assert sleeps == [1.0]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_new_object_existence_check_exhausted(store, backend):
    backend.fail("get", BackendError("503"), times=3)

    with pytest.raises(FetchExhaustedError):
        await store.new_object("fresh.txt")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_get_missing_is_not_retried(store, backend, sleeps):
    with pytest.raises(ObjectNotFoundError):
        await store.get("missing.txt")

    assert backend.calls["get"] == 1
    assert sleeps == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_get_retries_transient_errors(store, backend):
    backend.put("a.txt", b"x", {"k": "v"})
    backend.fail("get", BackendError("timeout"), times=2)

    obj = await store.get("a.txt")

    assert obj.metadata == {"k": "v"}
    assert backend.calls["get"] == 3


@pytest.mark.unit
@pytest.mark.asyncio
async def test_get_exhausted(store, backend):
    backend.put("a.txt", b"x")
    backend.fail("get", BackendError("timeout"), times=3)

    with pytest.raises(FetchExhaustedError):
        await store.get("a.txt")


# ============================================================================
# Listing
# ============================================================================

@pytest.mark.unit
@pytest.mark.asyncio
async def test_list_sorted_returns_every_object(store, backend):
    names = [f"list-test-{i:02d}" for i in range(20)]
    for name in random.sample(names, len(names)):
        backend.put(name, b"")

    response = await store.list(Query(page_size=100).sorted())

    assert [o.name for o in response.objects] == names
    assert response.is_final


@pytest.mark.unit
@pytest.mark.asyncio
async def test_list_offsets(store, backend):
    for name in "abcde":
        backend.put(name, b"")

    response = await store.list(Query(start_offset="b", end_offset="d"))

    assert {o.name for o in response.objects} == {"b", "c"}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_list_returns_one_page_with_token(store, backend):
    for i in range(7):
        backend.put(f"k{i}", b"")

    first = await store.list(Query.all())
    second = await store.list(Query(cursor=first.next_token))

    assert len(first) == 5
    assert first.next_token == "k4"
    assert [o.name for o in second.objects] == ["k5", "k6"]
    assert second.is_final


@pytest.mark.unit
@pytest.mark.asyncio
async def test_folders(store, backend):
    for name in ("data/2024/a", "data/2024/b", "data/2025/a", "data/top.txt", "other/x"):
        backend.put(name, b"")

    folders = await store.folders(Query.for_prefix("data/"))

    assert folders == ["data/2024/", "data/2025/"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_folders_follow_pages(store, backend):
    for i in range(8):
        backend.put(f"dir{i}/file", b"")

    folders = await store.folders(Query.for_folders(""))

    assert folders == [f"dir{i}/" for i in range(8)]
    assert backend.calls["list"] == 2


# ============================================================================
# Streaming
# ============================================================================

@pytest.mark.unit
@pytest.mark.asyncio
async def test_writer_then_reader(store, backend):
    async with store.new_writer("stream/out.json", {"source": "test"}) as writer:
        for i in range(10):
            await writer.write(f"{i},".encode())

    assert backend.data("stream/out.json") == b"0,1,2,3,4,5,6,7,8,9,"
    assert backend.metadata("stream/out.json") == {
        "source": "test",
        CONTENT_TYPE_KEY: "application/json",
    }

    async with await store.new_reader("stream/out.json") as reader:
        assert await reader.read() == b"0,1,2,3,4,5,6,7,8,9,"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_writer_upload_failure_reported_on_close(store, backend):
    backend.fail("upload", BackendError("refused"))
    writer = store.new_writer("w.txt")
    await writer.write(b"data")

    with pytest.raises(BackendError):
        await writer.close()

    assert "w.txt" not in backend.objects
    assert backend.calls["upload"] == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_reader_missing_object(store):
    with pytest.raises(ObjectNotFoundError):
        await store.new_reader("missing")


# ============================================================================
# Copy, move, delete
# ============================================================================

@pytest.mark.unit
@pytest.mark.asyncio
async def test_copy(store, backend):
    backend.put("src.txt", b"payload", {"owner": "a"})
    src = await store.get("src.txt")
    dst = await store.new_object("dst.txt")

    await store.copy(src, dst)

    assert backend.data("dst.txt") == b"payload"
    assert backend.data("src.txt") == b"payload"
    assert src.state == ObjectState.CLOSED
    assert dst.state == ObjectState.CLOSED


@pytest.mark.unit
@pytest.mark.asyncio
async def test_copy_over_longer_object_truncates(store, backend):
    backend.put("short.txt", b"abc")
    backend.put("long.txt", b"0123456789")

    await store.copy(await store.get("short.txt"), await store.get("long.txt"))

    assert backend.data("long.txt") == b"abc"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_move(store, backend):
    backend.put("from.txt", b"moving")
    src = await store.get("from.txt")

    await store.move(src, await store.new_object("to.txt"))

    assert backend.data("to.txt") == b"moving"
    assert "from.txt" not in backend.objects


@pytest.mark.unit
@pytest.mark.asyncio
async def test_delete_by_name(store, backend):
    backend.put("x", b"")

    await store.delete("x")

    assert "x" not in backend.objects
    with pytest.raises(ObjectNotFoundError):
        await store.delete("x")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_get_and_open(store, backend):
    backend.put("doc.txt", b"contents")

    obj = await get_and_open(store, "doc.txt", AccessLevel.READ_ONLY)

    assert obj.state == ObjectState.OPENED_READ_ONLY
    assert await obj.read() == b"contents"
    await obj.close()


# ============================================================================
# Descriptors
# ============================================================================

@pytest.mark.unit
def test_store_descriptors(store):
    assert store.type == "memory"
    assert store.id == "teststore"
    assert "memory://test-bucket/" in str(store)
