"""
Username validation: synchronous format rules plus a debounced, cancellable
remote availability check.

State machine per keystroke::

    len < 3            -> IDLE
    bad format         -> INVALID
    otherwise          -> (quiet period) -> CHECKING -> AVAILABLE | TAKEN

Only the most recent keystroke may set the final state: a lookup that
resolves after a newer keystroke is discarded. ``DebouncedSearch`` applies
the same rule to free-text user search.
"""
import asyncio
import re
from typing import Awaitable, Callable, Generic, List, Optional, TypeVar

from .config import SEARCH_DELAY, SEARCH_MIN_LENGTH, USERNAME_CHECK_DELAY, USERNAME_MIN_LENGTH
from .data_models import UsernameStatus
from .debug_log import get_logger

logger = get_logger("validator")

T = TypeVar("T")

USERNAME_PATTERN = re.compile(r"[a-zA-Z0-9_]+")

USERNAME_MESSAGES = {
    UsernameStatus.IDLE: "",
    UsernameStatus.INVALID: "Username can only contain letters, numbers, and underscores",
    UsernameStatus.CHECKING: "Checking availability...",
    UsernameStatus.AVAILABLE: "Username is available",
    UsernameStatus.TAKEN: "Username is already taken",
}


class ValidationError(ValueError):
    """Input rejected before any remote call; shown next to the field."""

    def __init__(self, message: str, field: str = ""):
        super().__init__(message)
        self.field = field


def validate_username_format(value: str) -> bool:
    return len(value) >= USERNAME_MIN_LENGTH and bool(USERNAME_PATTERN.fullmatch(value))


def can_submit(status: UsernameStatus) -> bool:
    return status not in (UsernameStatus.CHECKING, UsernameStatus.TAKEN, UsernameStatus.INVALID)


class UsernameValidator:
    """Debounced availability check for one username field.

    ``exists(value)`` is the remote predicate; it receives the lowercase
    value. ``on_change(status, value)`` is called on every state change.
    """

    def __init__(
        self,
        exists: Callable[[str], Awaitable[bool]],
        delay: float = USERNAME_CHECK_DELAY,
        on_change: Optional[Callable[[UsernameStatus, str], None]] = None,
    ):
        self.exists = exists
        self.delay = delay
        self.on_change = on_change
        self.status = UsernameStatus.IDLE
        self.value = ""
        self.checks_issued = 0
        self._seq = 0
        self._timer: Optional[asyncio.TimerHandle] = None
        self._task: Optional[asyncio.Task] = None

    def _set(self, status: UsernameStatus) -> None:
        if status == self.status:
            return
        self.status = status
        logger.debug("username %r -> %s", self.value, status.value)
        if self.on_change is not None:
            self.on_change(status, self.value)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def on_input(self, value: str) -> UsernameStatus:
        """Feed one keystroke's worth of field content."""
        self._seq += 1
        self._cancel_timer()
        self.value = value

        if len(value) < USERNAME_MIN_LENGTH:
            self._set(UsernameStatus.IDLE)
            return self.status
        if not USERNAME_PATTERN.fullmatch(value):
            self._set(UsernameStatus.INVALID)
            return self.status

        self._set(UsernameStatus.IDLE)
        seq = self._seq
        self._timer = asyncio.get_running_loop().call_later(self.delay, self._start_check, seq, value)
        return self.status

    def _start_check(self, seq: int, value: str) -> None:
        self._timer = None
        if seq != self._seq:
            return
        self._set(UsernameStatus.CHECKING)
        self.checks_issued += 1
        self._task = asyncio.get_running_loop().create_task(self._check(seq, value))

    async def _check(self, seq: int, value: str) -> None:
        try:
            taken = await self.exists(value.lower())
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.warning("username availability check failed for %r", value, exc_info=True)
            if seq == self._seq:
                self._set(UsernameStatus.IDLE)
            return
        if seq != self._seq:
            logger.debug("discarding stale availability result for %r", value)
            return
        self._set(UsernameStatus.TAKEN if taken else UsernameStatus.AVAILABLE)

    @property
    def message(self) -> str:
        return USERNAME_MESSAGES[self.status]

    def cancel(self) -> None:
        """Tear down the pending timer and any in-flight check."""
        self._seq += 1
        self._cancel_timer()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None


class DebouncedSearch(Generic[T]):
    """Runs ``search(term)`` once typing pauses and keeps the newest results.

    Terms shorter than ``min_length`` clear the results without a lookup.
    ``on_results(results)`` is called whenever the results are replaced.
    """

    def __init__(
        self,
        search: Callable[[str], Awaitable[List[T]]],
        delay: float = SEARCH_DELAY,
        min_length: int = SEARCH_MIN_LENGTH,
        on_results: Optional[Callable[[List[T]], None]] = None,
    ):
        self.search = search
        self.delay = delay
        self.min_length = min_length
        self.on_results = on_results
        self.term = ""
        self.results: List[T] = []
        self.searching = False
        self.lookups_issued = 0
        self._seq = 0
        self._timer: Optional[asyncio.TimerHandle] = None
        self._task: Optional[asyncio.Task] = None

    def on_input(self, value: str) -> None:
        self._seq += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self.term = value.strip()
        if len(self.term) < self.min_length:
            self._publish([])
            return
        self._timer = asyncio.get_running_loop().call_later(self.delay, self._start, self._seq, self.term)

    def _start(self, seq: int, term: str) -> None:
        self._timer = None
        if seq != self._seq:
            return
        self.searching = True
        self.lookups_issued += 1
        self._task = asyncio.get_running_loop().create_task(self._run(seq, term))

    async def _run(self, seq: int, term: str) -> None:
        try:
            results = await self.search(term)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.warning("search for %r failed", term, exc_info=True)
            results = []
        if seq != self._seq:
            logger.debug("discarding stale results for %r", term)
            return
        self._publish(results)

    def _publish(self, results: List[T]) -> None:
        self.searching = False
        self.results = list(results)
        if self.on_results is not None:
            self.on_results(self.results)

    def cancel(self) -> None:
        self._seq += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        self.searching = False
