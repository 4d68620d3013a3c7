import asyncio

import pytest

from feedsync.auth import MemoryAuthProvider
from feedsync.data_models import ThemePreference
from feedsync.db_seed import DEMO_EMAIL, DEMO_PASSWORD, seed
from feedsync.session import AppContext


@pytest.fixture
def context(api):
    return AppContext(MemoryAuthProvider(), api)


async def _settle(ctx):
    for _ in range(20):
        await asyncio.sleep(0)
        if ctx.account is None or ctx.profile is not None:
            return


@pytest.mark.asyncio
async def test_sign_in_loads_profile(context):
    await context.auth_service.register("a@example.com", "secret1", "Ann", "ann")
    context.start()
    await _settle(context)
    assert context.signed_in
    assert context.profile.username == "ann"
    assert context.theme == ThemePreference.LIGHT


@pytest.mark.asyncio
async def test_start_subscribes_once(context):
    seen = []
    context.watch(lambda ctx: seen.append(ctx.signed_in))
    context.start()
    context.start()
    assert seen == [False]


@pytest.mark.asyncio
async def test_set_theme_round_trips(context):
    context.start()
    await context.auth_service.register("a@example.com", "secret1", "Ann", "ann")
    await _settle(context)
    await context.set_theme(ThemePreference.DARK)
    assert context.theme == ThemePreference.DARK


@pytest.mark.asyncio
async def test_sign_out_releases_scope(context, store):
    context.start()
    await context.auth_service.register("a@example.com", "secret1", "Ann", "ann")
    await _settle(context)
    sub = context.api.live(context.api.posts_query()).subscribe(lambda docs: None)
    context.scope.add(sub)
    await asyncio.sleep(0)
    assert store.listener_count == 1

    await context.sign_out()
    assert sub.cancelled
    assert store.listener_count == 0
    assert not context.signed_in
    assert context.profile is None


@pytest.mark.asyncio
async def test_demo_seed(api, store):
    auth = MemoryAuthProvider()
    ids = await seed(api, auth)
    assert set(ids) == {"you", "alice", "bob", "charlie", "dana"}
    assert auth.current_account() is None

    account = await auth.sign_in(DEMO_EMAIL, DEMO_PASSWORD)
    assert account.id == ids["you"]
    rows = await api.load_conversations(ids["you"])
    assert {r.friend.username for r in rows} == {"alice", "bob", "dana"}
    pending = await store.query(api.incoming_requests_query(ids["you"]))
    assert [d.get("sender_id") for d in pending] == [ids["charlie"]]
    assert len(store.dump("stories")) == 1
