from datetime import datetime, timezone

import pytest

from feedsync.api_interface import SocialAPI
from feedsync.blob_store import MemoryBlobStore
from feedsync.memory_store import MemoryDocumentStore

T0 = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock shared by the store and the API."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return MemoryDocumentStore(clock=clock)


@pytest.fixture
def blobs():
    return MemoryBlobStore()


@pytest.fixture
def api(store, blobs, clock):
    return SocialAPI(store, blobs, clock=clock)


async def make_user(store, user_id: str, name: str = "", username: str = "") -> str:
    username = username or user_id
    await store.set("profiles", user_id, {
        "name": name or user_id.title(),
        "username": username,
        "email": f"{username}@example.com",
        "theme_preference": "light",
    })
    await store.create("usernames", username, {"user_id": user_id})
    return user_id
