import asyncio
from unittest.mock import MagicMock

import pytest

from feedsync.store import Query, StoreError
from feedsync.subscriber import LiveCollection, Subscription, SubscriptionScope
from tests.conftest import T0


def test_subscription_cancel_is_idempotent():
    unsubscribe = MagicMock()
    sub = Subscription("posts", unsubscribe)
    sub.cancel()
    sub.cancel()
    assert sub.cancelled
    unsubscribe.assert_called_once_with()


def test_attach_after_cancel_releases_immediately():
    sub = Subscription("posts")
    sub.cancel()
    unsubscribe = MagicMock()
    sub.attach(unsubscribe)
    unsubscribe.assert_called_once_with()


@pytest.mark.asyncio
async def test_snapshots_follow_writes(store):
    live = LiveCollection(store, Query("posts").order("n"))
    seen = []
    sub = live.subscribe(lambda docs: seen.append([d.id for d in docs]))
    await asyncio.sleep(0)
    await store.set("posts", "a", {"n": 1})
    await asyncio.sleep(0)
    assert seen == [[], ["a"]]
    sub.cancel()
    assert store.listener_count == 0


@pytest.mark.asyncio
async def test_unsupported_query_yields_one_empty_snapshot(store):
    live = LiveCollection(store, Query("stories").where("expires_at", ">", T0).order("created_at"))
    seen = []
    sub = live.subscribe(seen.append)
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    assert seen == [[]]
    assert sub.cancelled
    sub.cancel()


@pytest.mark.asyncio
async def test_synchronous_listen_failure_yields_empty_snapshot():
    store = MagicMock()
    store.listen.side_effect = StoreError("boom")
    seen = []
    LiveCollection(store, Query("posts")).subscribe(seen.append)
    await asyncio.sleep(0)
    assert seen == [[]]


@pytest.mark.asyncio
async def test_cancel_before_first_snapshot_delivers_nothing(store):
    seen = []
    sub = LiveCollection(store, Query("posts")).subscribe(seen.append)
    sub.cancel()
    await asyncio.sleep(0)
    await store.set("posts", "a", {})
    await asyncio.sleep(0)
    assert seen == []


@pytest.mark.asyncio
async def test_async_iteration_releases_subscription(store):
    live = LiveCollection(store, Query("posts"))
    await store.set("posts", "a", {})
    stream = live.snapshots()
    docs = await stream.__anext__()
    assert [d.id for d in docs] == ["a"]
    assert store.listener_count == 1
    await stream.aclose()
    assert store.listener_count == 0


def test_scope_releases_in_reverse_order_exactly_once():
    order = []
    scope = SubscriptionScope("view")
    scope.add(lambda: order.append("first"))
    scope.add(Subscription("second", lambda: order.append("second")))
    scope.close()
    scope.close()
    assert order == ["second", "first"]
    assert scope.closed


def test_scope_add_after_close_releases_immediately():
    scope = SubscriptionScope()
    scope.close()
    released = []
    scope.add(lambda: released.append("callback"))
    assert released == ["callback"]

    late = scope.add(Subscription("late", lambda: released.append("late")))
    assert late.cancelled
    assert released == ["callback", "late"]


@pytest.mark.asyncio
async def test_scope_cancels_tasks():
    async def forever():
        await asyncio.sleep(3600)

    async with SubscriptionScope() as scope:
        task = scope.add(asyncio.get_running_loop().create_task(forever()))
    await asyncio.sleep(0)
    assert task.cancelled()
