"""Configuration constants and environment-driven settings."""
import os
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv(override=True)

# Identity Toolkit (Firebase Auth) REST endpoints
IDENTITY_TOOLKIT_URL = "https://identitytoolkit.googleapis.com/v1"
SECURE_TOKEN_URL = "https://securetoken.googleapis.com/v1/token"

# Storage settings
KEYRING_SERVICE = "feedsync"

# Logging
DEBUG_ENV = "FEEDSYNC_DEBUG"
DEBUG_LOG_FILE = Path.home() / ".feedsync_debug.log"

# Sync behaviour
USERNAME_CHECK_DELAY = 0.5  # seconds of quiet typing before the remote lookup
USERNAME_MIN_LENGTH = 3
SEARCH_DELAY = 0.3  # seconds of quiet typing before a user search
SEARCH_MIN_LENGTH = 2
SEARCH_LIMIT = 10
PASSWORD_MIN_LENGTH = 6
STORY_LIFETIME = timedelta(hours=24)
DEFAULT_POLL_INTERVAL = 2.0
HTTP_TIMEOUT = 5.0


@dataclass
class Settings:
    backend_url: Optional[str] = None
    firebase_api_key: Optional[str] = None
    poll_interval: float = DEFAULT_POLL_INTERVAL
    http_timeout: float = HTTP_TIMEOUT
    debug: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        poll = os.environ.get("FEEDSYNC_POLL_INTERVAL")
        try:
            poll_interval = float(poll) if poll else DEFAULT_POLL_INTERVAL
        except ValueError:
            poll_interval = DEFAULT_POLL_INTERVAL
        return cls(
            backend_url=os.environ.get("BACKEND_URL") or None,
            firebase_api_key=os.environ.get("FIREBASE_API_KEY") or None,
            poll_interval=poll_interval,
            debug=bool(os.environ.get(DEBUG_ENV)),
        )

    @property
    def demo_mode(self) -> bool:
        """True when no backend is configured and the in-process store is used."""
        return not self.backend_url
