# db_seed.py
"""Demo data for the in-process backend (used when BACKEND_URL is unset)."""
import datetime as dt
from typing import Dict

from .api_interface import SocialAPI, pair_key
from .auth import AuthService, MemoryAuthProvider
from .data_models import FriendshipStatus
from .debug_log import get_logger
from .store import utcnow

logger = get_logger("db_seed")

DEMO_EMAIL = "you@feedsync.local"
DEMO_PASSWORD = "password"

_PEOPLE = [
    ("you", "You"),
    ("alice", "Alice"),
    ("bob", "Bob"),
    ("charlie", "Charlie"),
    ("dana", "Dana"),
]

_POSTS = [
    ("alice", "Just shipped a new feature! Live feeds are looking great 🚀"),
    ("bob", "Working on a new CLI tool for developers. Any testers?"),
    ("charlie", "Refactoring is like cleaning your room."),
    ("dana", "Terminal UIs are underrated. Fight me."),
    ("you", "Hello from feedsync!"),
]


async def seed(api: SocialAPI, auth: MemoryAuthProvider) -> Dict[str, str]:
    """Create demo accounts and content; returns username -> user id."""
    service = AuthService(auth, api.store)
    ids: Dict[str, str] = {}
    for username, name in _PEOPLE:
        email = DEMO_EMAIL if username == "you" else f"{username}@feedsync.local"
        profile = await service.register(email, DEMO_PASSWORD, name, username)
        ids[username] = profile.id
    await auth.sign_out()

    me = ids["you"]

    # Friendships: alice and bob accepted, charlie pending towards you
    for friend in ("alice", "bob"):
        key = await api.send_friend_request(me, ids[friend])
        await api.accept_friend_request(key, ids[friend])
    await api.send_friend_request(ids["charlie"], me)

    post_ids = {}
    for username, text in _POSTS:
        post_ids[username] = await api.create_post(ids[username], text)

    await api.add_comment(post_ids["alice"], ids["bob"], "Looks great! What lib?")
    await api.add_comment(post_ids["alice"], me, "Textual + a live snapshot layer.")
    await api.like_post(post_ids["alice"], me)
    await api.like_post(post_ids["you"], ids["alice"])

    # Conversation with alice spread over two days
    now = utcnow()
    history = [
        (ids["alice"], me, "Hey! Did you see the new feature I pushed?", now - dt.timedelta(days=1, hours=2)),
        (me, ids["alice"], "Yes! It looks amazing! 🎉", now - dt.timedelta(days=1, hours=1)),
        (ids["alice"], me, "Want to pair on the messages view today?", now - dt.timedelta(minutes=30)),
    ]
    for i, (sender, receiver, content, at) in enumerate(history):
        await api.store.set("messages", f"seed-{i}", {
            "sender_id": sender,
            "receiver_id": receiver,
            "participants": sorted((sender, receiver)),
            "conversation_id": pair_key(sender, receiver),
            "content": content,
            "read": sender == me,
            "created_at": at,
        })

    await api.store.set("friends", pair_key(me, ids["dana"]), {
        "sender_id": me,
        "receiver_id": ids["dana"],
        "participants": sorted((me, ids["dana"])),
        "status": FriendshipStatus.ACCEPTED.value,
        "created_at": now,
        "updated_at": now,
    })

    if api.blobs is not None:
        await api.create_story(ids["alice"], [("sunrise.jpg", b"\xff\xd8demo", "Morning run")])

    logger.debug("seed complete: %d users", len(ids))
    return ids
