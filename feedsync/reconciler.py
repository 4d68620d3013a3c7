"""
Local view state fed by live snapshots.

``ViewState`` holds what a view renders and only ever changes by full
replacement. ``SyncedView`` wires a ``LiveCollection`` through an async
transform (usually a join) into a ``ViewState``:

    snapshot -> transform (whole batch) -> publish

Each snapshot gets a generation number. When a newer snapshot arrives while
an older one is still being transformed, the older transform is cancelled
and its result would be dropped anyway, so renders never go backwards.
``CombinedView`` does the same for a view built from several collections.
"""
import asyncio
from functools import partial
from typing import Awaitable, Callable, Generic, List, Optional, Sequence, TypeVar

from .debug_log import get_logger
from .store import Document
from .subscriber import LiveCollection, SubscriptionScope

logger = get_logger("reconciler")

T = TypeVar("T")

Transform = Callable[[List[Document]], Awaitable[List[T]]]


class ViewState(Generic[T]):
    def __init__(self, name: str = "view"):
        self.name = name
        self.items: List[T] = []
        self.loaded = False
        self.error: Optional[str] = None
        self.version = 0
        self._listeners: List[Callable[["ViewState[T]"], None]] = []

    def publish(self, items: List[T]) -> None:
        """Replace the current items wholesale."""
        self.items = list(items)
        self.loaded = True
        self.error = None
        self.version += 1
        self._notify()

    def fail(self, message: str) -> None:
        # Prior items stay on screen.
        self.loaded = True
        self.error = message
        self.version += 1
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("%s: listener failed", self.name)

    def watch(self, listener: Callable[["ViewState[T]"], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unwatch() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unwatch

    async def wait_for(self, predicate: Callable[["ViewState[T]"], bool], timeout: float = 2.0) -> "ViewState[T]":
        """Wait until ``predicate(state)`` holds after some publish."""
        changed = asyncio.Event()
        unwatch = self.watch(lambda _: changed.set())
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        try:
            while not predicate(self):
                changed.clear()
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise asyncio.TimeoutError(f"{self.name}: condition not reached")
                await asyncio.wait_for(changed.wait(), remaining)
        finally:
            unwatch()
        return self


def mapped(convert: Callable[[Document], T]) -> Transform:
    """Transform converting each document, skipping ones that do not decode."""

    async def transform(docs: List[Document]) -> List[T]:
        out = []
        for doc in docs:
            try:
                out.append(convert(doc))
            except (ValueError, KeyError, TypeError):
                logger.warning("skipping undecodable document %s", doc.id, exc_info=True)
        return out

    return transform


class SyncedView(Generic[T]):
    def __init__(
        self,
        live: LiveCollection,
        transform: Transform,
        state: Optional[ViewState[T]] = None,
        name: Optional[str] = None,
    ):
        self.live = live
        self.name = name or live.name
        self.transform = transform
        self.state: ViewState[T] = state or ViewState(self.name)
        self.scope = SubscriptionScope(f"view:{self.name}")
        self._generation = 0
        self._pending: Optional[asyncio.Task] = None
        self._started = False

    def start(self) -> "SyncedView[T]":
        if self._started:
            return self
        self._started = True
        self.scope.add(self.live.subscribe(self._on_snapshot))
        return self

    def _on_snapshot(self, docs: List[Document]) -> None:
        if self.scope.closed:
            return
        self._schedule(docs)

    def _schedule(self, *snapshots: List[Document]) -> None:
        self._generation += 1
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        task = asyncio.get_running_loop().create_task(self._apply(self._generation, snapshots))
        self._pending = task
        self.scope.add(task)
        task.add_done_callback(self.scope.discard)

    async def _apply(self, generation: int, snapshots: Sequence[List[Document]]) -> None:
        try:
            items = await self.transform(*snapshots)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("%s: transform failed", self.name)
            if generation == self._generation and not self.scope.closed:
                self.state.fail(str(e) or e.__class__.__name__)
            return
        if generation != self._generation or self.scope.closed:
            logger.debug("%s: dropping stale generation %d", self.name, generation)
            return
        self.state.publish(items)

    def close(self) -> None:
        self.scope.close()

    async def __aenter__(self) -> "SyncedView[T]":
        return self.start()

    async def __aexit__(self, *exc) -> None:
        self.close()


class CombinedView(SyncedView[T]):
    """A SyncedView fed by several live collections.

    The transform is called with the latest snapshot of every source, in
    source order. Nothing runs until each source has delivered once; after
    that a snapshot from any source rebuilds the view.
    """

    def __init__(
        self,
        sources: Sequence[LiveCollection],
        transform: Callable[..., Awaitable[List[T]]],
        state: Optional[ViewState[T]] = None,
        name: Optional[str] = None,
    ):
        if not sources:
            raise ValueError("CombinedView needs at least one source")
        super().__init__(sources[0], transform, state, name or "+".join(s.name for s in sources))
        self.sources = list(sources)
        self._latest: List[Optional[List[Document]]] = [None] * len(self.sources)

    def start(self) -> "CombinedView[T]":
        if self._started:
            return self
        self._started = True
        for index, source in enumerate(self.sources):
            self.scope.add(source.subscribe(partial(self._on_source, index)))
        return self

    def _on_source(self, index: int, docs: List[Document]) -> None:
        if self.scope.closed:
            return
        self._latest[index] = docs
        if any(snapshot is None for snapshot in self._latest):
            return
        self._schedule(*self._latest)
