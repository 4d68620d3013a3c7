"""Logger factory shared by every feedsync module.

Debug output is opt-in: set FEEDSYNC_DEBUG=1 to get DEBUG level on stderr
and in ~/.feedsync_debug.log (Textual captures stdout/stderr, so the file is
the only place to read traces while the TUI is running).
"""
import logging
import os
import sys

from .config import DEBUG_ENV, DEBUG_LOG_FILE

_ROOT = "feedsync"
_configured = False


def _configure_root() -> None:
    global _configured
    if _configured:
        return
    _configured = True

    root = logging.getLogger(_ROOT)
    level = logging.DEBUG if os.getenv(DEBUG_ENV) else logging.WARNING
    root.setLevel(level)
    if root.handlers:
        return

    fmt = logging.Formatter("[%(name)s] %(levelname)s: %(message)s")
    stream = logging.StreamHandler(sys.stderr)
    stream.setLevel(level)
    stream.setFormatter(fmt)
    root.addHandler(stream)

    if os.getenv(DEBUG_ENV):
        try:
            fh = logging.FileHandler(DEBUG_LOG_FILE, encoding="utf-8")
            fh.setLevel(level)
            fh.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
            root.addHandler(fh)
        except OSError:
            root.warning("could not open debug log file %s", DEBUG_LOG_FILE)


def get_logger(name: str) -> logging.Logger:
    """Return the ``feedsync.<name>`` logger, configuring the root once."""
    _configure_root()
    if name.startswith(_ROOT + ".") or name == _ROOT:
        return logging.getLogger(name)
    return logging.getLogger(f"{_ROOT}.{name}")
