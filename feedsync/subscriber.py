"""
Live collection subscriptions.

A ``LiveCollection`` turns a store query into a standing stream of full
snapshots. Every emission is the complete current result set, so consumers
replace their state wholesale. Establishment failures never propagate: they
are logged and surface as one empty snapshot.
"""
import asyncio
from typing import Any, AsyncIterator, Callable, List, Optional

from .debug_log import get_logger
from .store import Document, DocumentStore, Query, StoreError

logger = get_logger("subscriber")


class Subscription:
    """Cancellation handle for one open subscription.

    ``cancel`` runs the teardown exactly once; later calls are no-ops.
    """

    def __init__(self, name: str, unsubscribe: Optional[Callable[[], None]] = None):
        self.name = name
        self._unsubscribe = unsubscribe
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def attach(self, unsubscribe: Callable[[], None]) -> None:
        if self._cancelled:
            unsubscribe()
            return
        self._unsubscribe = unsubscribe

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            try:
                unsubscribe()
            except Exception:
                logger.exception("unsubscribe failed for %s", self.name)
        logger.debug("subscription %s cancelled", self.name)


class LiveCollection:
    def __init__(self, store: DocumentStore, query: Query, name: Optional[str] = None):
        self.store = store
        self.query = query
        self.name = name or query.collection

    def subscribe(self, callback: Callable[[List[Document]], None]) -> Subscription:
        sub = Subscription(self.name)

        def on_snapshot(docs: List[Document]) -> None:
            if sub.cancelled:
                return
            callback(docs)

        def on_error(exc: Exception) -> None:
            if sub.cancelled:
                return
            logger.warning("subscription %s failed: %s; falling back to empty result", self.name, exc)
            sub.cancel()
            callback([])

        try:
            unsubscribe = self.store.listen(self.query, on_snapshot, on_error)
        except StoreError as e:
            logger.warning("could not subscribe to %s: %s", self.name, e)
            asyncio.get_running_loop().call_soon(on_error, e)
            return sub
        sub.attach(unsubscribe)
        logger.debug("subscribed to %s", self.query.describe())
        return sub

    async def snapshots(self) -> AsyncIterator[List[Document]]:
        """Yield full snapshots until the consumer stops iterating.

        Each call opens its own subscription, and leaving the ``async for``
        (normally, by exception or by cancellation) releases it.
        """
        queue: asyncio.Queue = asyncio.Queue()
        sub = self.subscribe(queue.put_nowait)
        try:
            while True:
                yield await queue.get()
        finally:
            sub.cancel()


class SubscriptionScope:
    """Resources owned by one view, released together exactly once.

    Accepts ``Subscription`` handles, asyncio tasks, timer handles and plain
    callables. Anything registered after ``close`` is released immediately.
    """

    def __init__(self, name: str = "scope"):
        self.name = name
        self._resources: List[Any] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def add(self, resource: Any) -> Any:
        if self._closed:
            self._release(resource)
        else:
            self._resources.append(resource)
        return resource

    def discard(self, resource: Any) -> None:
        try:
            self._resources.remove(resource)
        except ValueError:
            pass

    def _release(self, resource: Any) -> None:
        try:
            if hasattr(resource, "cancel"):
                resource.cancel()
            elif callable(resource):
                resource()
        except Exception:
            logger.exception("%s: releasing %r failed", self.name, resource)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        resources, self._resources = self._resources, []
        for resource in reversed(resources):
            self._release(resource)
        logger.debug("%s closed (%d resources)", self.name, len(resources))

    def __enter__(self) -> "SubscriptionScope":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    async def __aenter__(self) -> "SubscriptionScope":
        return self

    async def __aexit__(self, *exc) -> None:
        self.close()
