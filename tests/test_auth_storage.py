from unittest.mock import patch

import pytest
from keyring.errors import KeyringError, PasswordDeleteError

from feedsync import auth_storage


class FakeKeyring:
    def __init__(self):
        self.items = {}

    def get_password(self, service, key):
        return self.items.get((service, key))

    def set_password(self, service, key, value):
        self.items[(service, key)] = value

    def delete_password(self, service, key):
        if (service, key) not in self.items:
            raise PasswordDeleteError(key)
        del self.items[(service, key)]


@pytest.fixture
def fake_keyring():
    fake = FakeKeyring()
    with patch.object(auth_storage, "keyring", fake):
        yield fake


def test_large_value_round_trips_in_chunks(fake_keyring):
    token = "x" * 2500
    auth_storage.store_chunked_value("id_token", token)
    assert fake_keyring.get_password("feedsync", "id_token.parts") == "3"
    assert auth_storage.read_chunked_value("id_token") == token


def test_rewriting_drops_stale_chunks(fake_keyring):
    auth_storage.store_chunked_value("id_token", "y" * 2500)
    auth_storage.store_chunked_value("id_token", "short")
    parts = [k for (_, k) in fake_keyring.items if k.startswith("id_token.part")]
    assert sorted(parts) == ["id_token.part0", "id_token.parts"]
    assert auth_storage.read_chunked_value("id_token") == "short"


def test_missing_chunk_is_an_error(fake_keyring):
    auth_storage.store_chunked_value("id_token", "z" * 1500)
    fake_keyring.delete_password("feedsync", "id_token.part1")
    with pytest.raises(KeyringError):
        auth_storage.read_chunked_value("id_token")


def test_session_lifecycle(fake_keyring):
    assert auth_storage.load_session() is None
    auth_storage.save_session({"idToken": "id", "refreshToken": "ref"}, "uid-1", "a@example.com")
    assert auth_storage.load_session() == {
        "tokens": {"id_token": "id", "refresh_token": "ref"},
        "user_id": "uid-1",
        "email": "a@example.com",
    }
    auth_storage.clear_session()
    assert auth_storage.load_session() is None
    assert fake_keyring.items == {}


def test_unreadable_keyring_loads_nothing(fake_keyring):
    with patch.object(fake_keyring, "get_password", side_effect=KeyringError("locked")):
        assert auth_storage.load_session() is None
