"""
In-process document store.

Implements the full ``DocumentStore`` contract, including push-based full
snapshots, on top of plain dicts. Used by the test-suite and by the demo
mode of the terminal client (no BACKEND_URL configured).
"""
import asyncio
import copy
from typing import Any, Callable, Dict, List, Optional

from .debug_log import get_logger
from .store import (
    AlreadyExistsError,
    Document,
    DocumentStore,
    ErrorCallback,
    NotFoundError,
    Query,
    SnapshotCallback,
    StoreError,
    Unsubscribe,
    WriteOp,
    new_id,
    resolve_sentinels,
    utcnow,
)

logger = get_logger("memory_store")


class _Listener:
    def __init__(self, query: Query, on_snapshot: SnapshotCallback, on_error: Optional[ErrorCallback]):
        self.query = query
        self.on_snapshot = on_snapshot
        self.on_error = on_error
        self.active = True
        self.pending = False


class MemoryDocumentStore(DocumentStore):
    def __init__(self, latency: float = 0.0, clock: Callable = utcnow):
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._listeners: List[_Listener] = []
        self.latency = latency
        self.clock = clock
        self.reads = 0

    # --- helpers ---
    async def _roundtrip(self) -> None:
        await asyncio.sleep(self.latency)

    def _docs(self, collection: str) -> Dict[str, Dict[str, Any]]:
        return self._collections.setdefault(collection, {})

    def _snapshot(self, query: Query) -> List[Document]:
        docs = [Document(doc_id, copy.deepcopy(data)) for doc_id, data in self._docs(query.collection).items()]
        return query.apply(docs)

    def _changed(self, collections: set) -> None:
        for listener in self._listeners:
            if listener.active and listener.query.collection in collections:
                self._schedule(listener)

    def _schedule(self, listener: _Listener) -> None:
        # Coalesce several writes in one tick into one delivery.
        if listener.pending:
            return
        listener.pending = True
        asyncio.get_running_loop().call_soon(self._deliver, listener)

    def _deliver(self, listener: _Listener) -> None:
        listener.pending = False
        if not listener.active:
            return
        snapshot = self._snapshot(listener.query)
        logger.debug("snapshot %s -> %d docs", listener.query.describe(), len(snapshot))
        listener.on_snapshot(snapshot)

    @staticmethod
    def _apply(docs: Dict[str, Dict[str, Any]], op: WriteOp, now) -> None:
        # Documents are replaced, never mutated, so staged copies stay isolated.
        current = docs.get(op.doc_id)
        if op.kind == "create":
            if current is not None:
                raise AlreadyExistsError(f"{op.collection}/{op.doc_id} already exists")
            docs[op.doc_id] = resolve_sentinels(None, op.data, now)
        elif op.kind == "set":
            docs[op.doc_id] = resolve_sentinels(None, op.data, now)
        elif op.kind in ("merge", "update"):
            if current is None and op.kind == "update":
                raise NotFoundError(f"{op.collection}/{op.doc_id} not found")
            merged = dict(current or {})
            merged.update(resolve_sentinels(current, op.data, now))
            docs[op.doc_id] = merged
        elif op.kind == "delete":
            docs.pop(op.doc_id, None)
        elif op.kind == "delete_existing":
            if docs.pop(op.doc_id, None) is None:
                raise NotFoundError(f"{op.collection}/{op.doc_id} not found")
        else:
            raise StoreError(f"unknown write kind {op.kind!r}")

    def _commit(self, ops: List[WriteOp]) -> None:
        # Ops run in order against staged copies; a failing batch leaves no trace.
        now = self.clock()
        staged: Dict[str, Dict[str, Dict[str, Any]]] = {}
        for op in ops:
            if op.collection not in staged:
                staged[op.collection] = dict(self._docs(op.collection))
            self._apply(staged[op.collection], op, now)
        self._collections.update(staged)
        self._changed(set(staged))

    # --- reads ---
    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        await self._roundtrip()
        self.reads += 1
        data = self._docs(collection).get(doc_id)
        if data is None:
            return None
        return Document(doc_id, copy.deepcopy(data))

    async def query(self, query: Query) -> List[Document]:
        query.validate()
        await self._roundtrip()
        self.reads += 1
        return self._snapshot(query)

    # --- writes ---
    async def add(self, collection: str, data: Dict[str, Any]) -> str:
        doc_id = new_id()
        await self.create(collection, doc_id, data)
        return doc_id

    async def set(self, collection: str, doc_id: str, data: Dict[str, Any], merge: bool = False) -> None:
        await self._roundtrip()
        self._commit([WriteOp("merge" if merge else "set", collection, doc_id, data)])

    async def create(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        await self._roundtrip()
        self._commit([WriteOp.create(collection, doc_id, data)])

    async def update(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        await self._roundtrip()
        self._commit([WriteOp.update(collection, doc_id, data)])

    async def delete(self, collection: str, doc_id: str) -> None:
        await self._roundtrip()
        self._commit([WriteOp.delete(collection, doc_id)])

    async def batch_commit(self, ops: List[WriteOp]) -> None:
        await self._roundtrip()
        if ops:
            self._commit(list(ops))

    # --- subscriptions ---
    def listen(
        self,
        query: Query,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Unsubscribe:
        loop = asyncio.get_running_loop()
        listener = _Listener(query, on_snapshot, on_error)
        try:
            query.validate()
        except StoreError as e:
            listener.active = False
            loop.call_soon(self._reject, query, on_error, e)
            return lambda: None

        self._listeners.append(listener)
        self._schedule(listener)
        logger.debug("listen %s (%d active)", query.describe(), len(self._listeners))

        def unsubscribe() -> None:
            if not listener.active:
                return
            listener.active = False
            self._listeners.remove(listener)
            logger.debug("unlisten %s", query.describe())

        return unsubscribe

    @staticmethod
    def _reject(query: Query, on_error: Optional[ErrorCallback], error: StoreError) -> None:
        if on_error is not None:
            on_error(error)
        else:
            logger.warning("listen on %s rejected without error callback: %s", query.describe(), error)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def dump(self, collection: str) -> Dict[str, Dict[str, Any]]:
        """Raw copy of one collection, for seeding checks and tests."""
        return copy.deepcopy(self._docs(collection))
