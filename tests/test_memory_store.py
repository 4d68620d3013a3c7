import asyncio

import pytest

from feedsync.store import (
    SERVER_TIMESTAMP,
    AlreadyExistsError,
    Increment,
    NotFoundError,
    Query,
    WriteOp,
)
from tests.conftest import T0


@pytest.mark.asyncio
async def test_create_rejects_existing(store):
    await store.create("usernames", "alice", {"user_id": "u1"})
    with pytest.raises(AlreadyExistsError):
        await store.create("usernames", "alice", {"user_id": "u2"})
    assert (await store.get("usernames", "alice")).get("user_id") == "u1"


@pytest.mark.asyncio
async def test_update_missing_raises(store):
    with pytest.raises(NotFoundError):
        await store.update("posts", "nope", {"content": "x"})


@pytest.mark.asyncio
async def test_server_timestamp_and_increment(store):
    await store.set("posts", "p1", {"like_count": 0, "created_at": SERVER_TIMESTAMP})
    await store.update("posts", "p1", {"like_count": Increment(1)})
    await store.update("posts", "p1", {"like_count": Increment(1)})
    doc = await store.get("posts", "p1")
    assert doc.get("like_count") == 2
    assert doc.get("created_at") == T0


@pytest.mark.asyncio
async def test_merge_keeps_other_fields(store):
    await store.set("profiles", "u1", {"name": "A", "username": "a"})
    await store.set("profiles", "u1", {"name": "B"}, merge=True)
    assert (await store.get("profiles", "u1")).data == {"name": "B", "username": "a"}


@pytest.mark.asyncio
async def test_failed_batch_leaves_no_trace(store):
    await store.create("likes", "p1_u1", {})
    with pytest.raises(AlreadyExistsError):
        await store.batch_commit([
            WriteOp.set("posts", "p1", {"like_count": 1}),
            WriteOp.create("likes", "p1_u1", {}),
        ])
    assert await store.get("posts", "p1") is None


@pytest.mark.asyncio
async def test_get_returns_copies(store):
    await store.set("posts", "p1", {"tags": ["a"]})
    doc = await store.get("posts", "p1")
    doc.data["tags"].append("b")
    assert (await store.get("posts", "p1")).get("tags") == ["a"]


@pytest.mark.asyncio
async def test_listen_delivers_initial_and_coalesced_snapshots(store):
    seen = []
    unsubscribe = store.listen(Query("posts").order("n"), lambda docs: seen.append([d.id for d in docs]))
    await asyncio.sleep(0)
    assert seen == [[]]

    await store.batch_commit([WriteOp.set("posts", "a", {"n": 2}), WriteOp.set("posts", "b", {"n": 1})])
    await asyncio.sleep(0)
    assert seen[-1] == ["b", "a"]
    assert len(seen) == 2

    unsubscribe()
    unsubscribe()
    await store.set("posts", "c", {"n": 0})
    await asyncio.sleep(0)
    assert len(seen) == 2
    assert store.listener_count == 0


@pytest.mark.asyncio
async def test_listen_ignores_other_collections(store):
    seen = []
    store.listen(Query("posts"), seen.append)
    await asyncio.sleep(0)
    await store.set("comments", "c1", {})
    await asyncio.sleep(0)
    assert len(seen) == 1


@pytest.mark.asyncio
async def test_listen_rejected_query_reports_error(store):
    errors = []
    snapshots = []
    query = Query("stories").where("expires_at", ">", T0).order("created_at")
    unsubscribe = store.listen(query, snapshots.append, errors.append)
    await asyncio.sleep(0)
    assert snapshots == []
    assert len(errors) == 1
    unsubscribe()
    assert store.listener_count == 0


@pytest.mark.asyncio
async def test_batch_depending_on_earlier_op_rolls_back(store):
    await store.set("posts", "p1", {"like_count": 1})
    with pytest.raises(NotFoundError):
        await store.batch_commit([
            WriteOp.delete("posts", "p1"),
            WriteOp.update("posts", "p1", {"like_count": Increment(1)}),
        ])
    assert (await store.get("posts", "p1")).get("like_count") == 1


@pytest.mark.asyncio
async def test_batch_creating_same_key_twice_writes_nothing(store):
    seen = []
    unsubscribe = store.listen(Query("likes"), lambda docs: seen.append([d.id for d in docs]))
    await asyncio.sleep(0)
    with pytest.raises(AlreadyExistsError):
        await store.batch_commit([WriteOp.create("likes", "p1_u1", {}), WriteOp.create("likes", "p1_u1", {})])
    await asyncio.sleep(0)
    assert await store.get("likes", "p1_u1") is None
    assert seen == [[]]
    unsubscribe()


@pytest.mark.asyncio
async def test_delete_must_exist(store):
    await store.set("likes", "p1_u1", {})
    await store.batch_commit([WriteOp.delete("likes", "p1_u1", must_exist=True)])
    assert await store.get("likes", "p1_u1") is None
    with pytest.raises(NotFoundError):
        await store.batch_commit([
            WriteOp.delete("likes", "p1_u1", must_exist=True),
            WriteOp.set("posts", "p1", {"like_count": 0}),
        ])
    assert await store.get("posts", "p1") is None
    # the plain form stays a no-op on absent documents
    await store.delete("likes", "p1_u1")


@pytest.mark.asyncio
async def test_rejected_listen_without_error_callback_is_logged(store, caplog):
    snapshots = []
    query = Query("stories").where("expires_at", ">", T0).order("created_at")
    store.listen(query, snapshots.append)
    await asyncio.sleep(0)
    assert snapshots == []
    assert "rejected without error callback" in caplog.text
