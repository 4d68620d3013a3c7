"""Session token persistence in the system keyring.

One canonical writer and reader for the signed-in session:

  - save_session(tokens: dict, user_id, email) -> None
  - load_session() -> Optional[dict]  # {'tokens': {...}, 'user_id': ..., 'email': ...}
  - clear_session() -> None

ID tokens can exceed per-credential size limits of some backends (Windows
Credential Manager), so large values are split into base64 chunks stored
under ``{key}.part{i}`` with a ``{key}.parts`` count.
"""

from __future__ import annotations

import base64
from typing import Optional

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from .config import KEYRING_SERVICE
from .debug_log import get_logger

logger = get_logger("auth_storage")

_CHUNK_SIZE = 1000
_TOKEN_KEYS = ("id_token", "refresh_token")
_PLAIN_KEYS = ("user_id", "email")


def _delete(key: str) -> None:
    try:
        keyring.delete_password(KEYRING_SERVICE, key)
    except PasswordDeleteError:
        pass


def _delete_chunked(key: str) -> None:
    count_s = keyring.get_password(KEYRING_SERVICE, f"{key}.parts")
    if count_s and count_s.isdigit():
        for i in range(int(count_s)):
            _delete(f"{key}.part{i}")
    _delete(f"{key}.parts")


def store_chunked_value(key: str, value: str) -> None:
    _delete_chunked(key)
    data = value.encode("utf-8")
    parts = [data[i : i + _CHUNK_SIZE] for i in range(0, len(data), _CHUNK_SIZE)] or [b""]
    for idx, part in enumerate(parts):
        keyring.set_password(KEYRING_SERVICE, f"{key}.part{idx}", base64.b64encode(part).decode("ascii"))
    keyring.set_password(KEYRING_SERVICE, f"{key}.parts", str(len(parts)))
    logger.debug("stored %s in %d chunk(s)", key, len(parts))


def read_chunked_value(key: str) -> Optional[str]:
    count_s = keyring.get_password(KEYRING_SERVICE, f"{key}.parts")
    if not count_s:
        return None
    if not count_s.isdigit():
        logger.debug("invalid parts index for %s: %r", key, count_s)
        return None
    chunks = []
    for i in range(int(count_s)):
        b64 = keyring.get_password(KEYRING_SERVICE, f"{key}.part{i}")
        if b64 is None:
            raise KeyringError(f"missing chunk {key}.part{i}")
        chunks.append(base64.b64decode(b64.encode("ascii")))
    return b"".join(chunks).decode("utf-8")


def save_session(tokens: dict, user_id: str, email: Optional[str] = None) -> None:
    """Persist tokens and the identity they belong to.

    Raises KeyringError when no usable keyring backend exists so callers can
    surface it; the session then simply lives in memory.
    """
    try:
        for key in _TOKEN_KEYS:
            value = tokens.get(key) or tokens.get(key.replace("_t", "T"))
            if value:
                store_chunked_value(key, value)
        keyring.set_password(KEYRING_SERVICE, "user_id", user_id)
        if email:
            keyring.set_password(KEYRING_SERVICE, "email", email)
        logger.debug("session for %s written to keyring", user_id)
    except KeyringError:
        logger.exception("failed to write session to keyring")
        raise


def load_session() -> Optional[dict]:
    try:
        user_id = keyring.get_password(KEYRING_SERVICE, "user_id")
        if not user_id:
            return None
        tokens = {}
        for key in _TOKEN_KEYS:
            value = read_chunked_value(key)
            if value:
                tokens[key] = value
        email = keyring.get_password(KEYRING_SERVICE, "email")
    except KeyringError:
        logger.exception("failed to read session from keyring")
        return None
    if not tokens:
        return None
    return {"tokens": tokens, "user_id": user_id, "email": email}


def clear_session() -> None:
    """Remove stored tokens and identity (best-effort)."""
    try:
        for key in _TOKEN_KEYS:
            _delete_chunked(key)
        for key in _PLAIN_KEYS:
            _delete(key)
    except KeyringError:
        logger.exception("unexpected error while clearing keyring entries")
