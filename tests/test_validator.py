import asyncio

import pytest

from feedsync.data_models import UsernameStatus
from feedsync.validator import DebouncedSearch, UsernameValidator, can_submit, validate_username_format

DELAY = 0.01


class FakeLookup:
    def __init__(self, taken=(), gate=None):
        self.taken = set(taken)
        self.calls = []
        self.gate = gate

    async def __call__(self, value):
        self.calls.append(value)
        if self.gate is not None and len(self.calls) == 1:
            await self.gate.wait()
        return value in self.taken


def test_format_rules():
    assert validate_username_format("ab_1")
    assert not validate_username_format("ab!1")
    assert not validate_username_format("ab")
    assert not validate_username_format("abc\n")


def test_can_submit():
    assert can_submit(UsernameStatus.AVAILABLE)
    assert can_submit(UsernameStatus.IDLE)
    assert not can_submit(UsernameStatus.TAKEN)
    assert not can_submit(UsernameStatus.CHECKING)
    assert not can_submit(UsernameStatus.INVALID)


@pytest.mark.asyncio
async def test_rapid_typing_checks_only_final_value():
    lookup = FakeLookup()
    validator = UsernameValidator(lookup, delay=DELAY)
    for value in ("a", "ab", "abc"):
        validator.on_input(value)
    await asyncio.sleep(DELAY * 5)
    assert lookup.calls == ["abc"]
    assert validator.checks_issued == 1
    assert validator.status == UsernameStatus.AVAILABLE


@pytest.mark.asyncio
async def test_short_value_stays_idle_without_lookup():
    lookup = FakeLookup()
    validator = UsernameValidator(lookup, delay=DELAY)
    assert validator.on_input("ab") == UsernameStatus.IDLE
    await asyncio.sleep(DELAY * 3)
    assert lookup.calls == []


@pytest.mark.asyncio
async def test_invalid_characters_skip_lookup():
    lookup = FakeLookup()
    validator = UsernameValidator(lookup, delay=DELAY)
    assert validator.on_input("ab!1") == UsernameStatus.INVALID
    await asyncio.sleep(DELAY * 3)
    assert lookup.calls == []
    assert validator.message == "Username can only contain letters, numbers, and underscores"


@pytest.mark.asyncio
async def test_taken_username_is_checked_lowercase():
    lookup = FakeLookup(taken={"alice"})
    changes = []
    validator = UsernameValidator(lookup, delay=DELAY, on_change=lambda status, value: changes.append(status))
    validator.on_input("Alice")
    await asyncio.sleep(DELAY * 5)
    assert lookup.calls == ["alice"]
    assert validator.status == UsernameStatus.TAKEN
    assert changes == [UsernameStatus.CHECKING, UsernameStatus.TAKEN]


@pytest.mark.asyncio
async def test_stale_result_is_discarded():
    gate = asyncio.Event()
    lookup = FakeLookup(taken={"first"}, gate=gate)
    validator = UsernameValidator(lookup, delay=DELAY)

    validator.on_input("first")
    await asyncio.sleep(DELAY * 3)
    assert validator.status == UsernameStatus.CHECKING

    validator.on_input("second")
    await asyncio.sleep(DELAY * 5)
    assert validator.status == UsernameStatus.AVAILABLE

    # The slow lookup for "first" resolves TAKEN after the newer keystroke.
    gate.set()
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    assert validator.status == UsernameStatus.AVAILABLE
    assert validator.value == "second"


@pytest.mark.asyncio
async def test_lookup_failure_returns_to_idle():
    async def broken(value):
        raise ConnectionError("offline")

    validator = UsernameValidator(broken, delay=DELAY)
    validator.on_input("carol")
    await asyncio.sleep(DELAY * 5)
    assert validator.status == UsernameStatus.IDLE


@pytest.mark.asyncio
async def test_cancel_stops_pending_check():
    lookup = FakeLookup()
    validator = UsernameValidator(lookup, delay=DELAY)
    validator.on_input("dave")
    validator.cancel()
    await asyncio.sleep(DELAY * 3)
    assert lookup.calls == []


@pytest.mark.asyncio
async def test_trailing_newline_is_invalid():
    lookup = FakeLookup()
    validator = UsernameValidator(lookup, delay=DELAY)
    assert validator.on_input("abc\n") == UsernameStatus.INVALID
    await asyncio.sleep(DELAY * 3)
    assert lookup.calls == []


class FakeSearch:
    def __init__(self, names):
        self.names = names
        self.calls = []

    async def __call__(self, term):
        self.calls.append(term)
        return [n for n in self.names if n.startswith(term)]


@pytest.mark.asyncio
async def test_search_runs_once_for_final_term():
    search = FakeSearch(["alan", "alice", "bob"])
    published = []
    debounced = DebouncedSearch(search, delay=DELAY, on_results=published.append)
    for value in ("a", "al", "ali"):
        debounced.on_input(value)
    await asyncio.sleep(DELAY * 5)
    assert search.calls == ["ali"]
    assert debounced.lookups_issued == 1
    assert debounced.results == ["alice"]
    assert published[-1] == ["alice"]


@pytest.mark.asyncio
async def test_short_search_term_clears_results_without_lookup():
    search = FakeSearch(["alan"])
    debounced = DebouncedSearch(search, delay=DELAY)
    debounced.on_input("al")
    await asyncio.sleep(DELAY * 5)
    assert debounced.results == ["alan"]
    debounced.on_input("a")
    assert debounced.results == []
    await asyncio.sleep(DELAY * 3)
    assert search.calls == ["al"]


@pytest.mark.asyncio
async def test_stale_search_results_are_dropped():
    gate = asyncio.Event()

    async def slow_first(term):
        if term == "al":
            await gate.wait()
            return ["stale"]
        return ["fresh"]

    debounced = DebouncedSearch(slow_first, delay=DELAY)
    debounced.on_input("al")
    await asyncio.sleep(DELAY * 3)
    assert debounced.searching
    debounced.on_input("bo")
    await asyncio.sleep(DELAY * 5)
    assert debounced.results == ["fresh"]
    gate.set()
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    assert debounced.results == ["fresh"]


@pytest.mark.asyncio
async def test_failed_search_publishes_empty_results():
    async def broken(term):
        raise ConnectionError("offline")

    debounced = DebouncedSearch(broken, delay=DELAY)
    debounced.on_input("al")
    await asyncio.sleep(DELAY * 5)
    assert debounced.results == []
    assert not debounced.searching
