from datetime import datetime, timezone

import pytest

from feedsync.config import Settings
from feedsync.data_models import (
    NOTIFICATION_LABELS,
    Friendship,
    FriendshipStatus,
    NotificationType,
    Profile,
    ThemePreference,
)
from feedsync.store import Document


def test_every_notification_type_has_a_label():
    assert set(NOTIFICATION_LABELS) == set(NotificationType)


def test_profile_decodes_iso_timestamps_and_bad_theme():
    doc = Document("u1", {"name": "Ann", "username": "ann", "theme_preference": "neon",
                          "created_at": "2024-03-10T12:00:00Z"})
    profile = Profile.from_document(doc)
    assert profile.theme_preference == ThemePreference.LIGHT
    assert profile.created_at == datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)
    assert profile.as_author().username == "ann"


def test_friendship_helpers():
    f = Friendship.from_document(Document("a_b", {"sender_id": "a", "receiver_id": "b", "status": "accepted"}))
    assert f.status == FriendshipStatus.ACCEPTED
    assert f.other("a") == "b" and f.other("b") == "a"
    assert f.involves("a") and not f.involves("c")


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("BACKEND_URL", "http://backend")
    monkeypatch.setenv("FIREBASE_API_KEY", "key")
    monkeypatch.setenv("FEEDSYNC_POLL_INTERVAL", "nope")
    settings = Settings.from_env()
    assert not settings.demo_mode
    assert settings.poll_interval == 2.0

    monkeypatch.delenv("BACKEND_URL")
    assert Settings.from_env().demo_mode


@pytest.mark.parametrize("raw", [1710072000, datetime(2024, 3, 10, 12, 0)])
def test_profile_timestamps_from_epoch_and_naive(raw):
    profile = Profile.from_document(Document("u1", {"created_at": raw}))
    assert profile.created_at == datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)
