"""
Document store contract shared by the in-process and HTTP backends.

A store holds collections of schemaless documents. Reads return ``Document``
snapshots (copies, never live references); writes may contain the
``SERVER_TIMESTAMP`` and ``Increment`` sentinels, which the store resolves at
write time so clients never read-modify-write a timestamp or a counter.
"""
import copy
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

ASC = "asc"
DESC = "desc"

EQUALITY_OPS = ("==", "in", "array-contains")
RANGE_OPS = ("<", "<=", ">", ">=", "!=")
SUPPORTED_OPS = EQUALITY_OPS + RANGE_OPS


class StoreError(Exception):
    """Base class for document store failures."""
    pass


class NotFoundError(StoreError):
    pass


class AlreadyExistsError(StoreError):
    pass


class UnsupportedQueryError(StoreError):
    """The backend cannot serve the query (bad operator or missing composite index)."""
    pass


class _ServerTimestamp:
    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


@dataclass(frozen=True)
class Increment:
    """Store-side atomic add on a numeric field."""
    amount: int = 1


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex[:20]


def resolve_sentinels(current: Optional[Dict[str, Any]], updates: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    """Return ``updates`` with sentinels replaced by concrete values."""
    out = {}
    for key, value in updates.items():
        if value is SERVER_TIMESTAMP:
            out[key] = now
        elif isinstance(value, Increment):
            base = (current or {}).get(key) or 0
            out[key] = base + value.amount
        else:
            out[key] = copy.deepcopy(value)
    return out


@dataclass
class Document:
    id: str
    data: Dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def __getitem__(self, key: str) -> Any:
        return self.data[key]


@dataclass(frozen=True)
class Filter:
    field: str
    op: str
    value: Any

    def matches(self, data: Dict[str, Any]) -> bool:
        # A missing field compares as None.
        actual = data.get(self.field)
        try:
            if self.op == "==":
                return actual == self.value
            if self.op == "!=":
                return actual != self.value
            if self.op == "in":
                return actual in self.value
            if self.op == "array-contains":
                return isinstance(actual, (list, tuple)) and self.value in actual
            if actual is None:
                return False
            if self.op == "<":
                return actual < self.value
            if self.op == "<=":
                return actual <= self.value
            if self.op == ">":
                return actual > self.value
            if self.op == ">=":
                return actual >= self.value
        except TypeError:
            return False
        raise UnsupportedQueryError(f"unsupported operator {self.op!r}")


def _sort_key(value: Any) -> Tuple:
    # None sorts before any value
    return (0,) if value is None else (1, value)


@dataclass(frozen=True)
class Query:
    """An ordered, filtered view of one collection."""
    collection: str
    filters: Tuple[Filter, ...] = ()
    order_by: Tuple[Tuple[str, str], ...] = ()
    limit: Optional[int] = None

    def where(self, field_name: str, op: str, value: Any) -> "Query":
        return Query(self.collection, self.filters + (Filter(field_name, op, value),), self.order_by, self.limit)

    def order(self, field_name: str, direction: str = ASC) -> "Query":
        return Query(self.collection, self.filters, self.order_by + ((field_name, direction),), self.limit)

    def take(self, n: int) -> "Query":
        return Query(self.collection, self.filters, self.order_by, n)

    def validate(self) -> None:
        """Reject queries a document database cannot index.

        Range filters may target a single field only, and when the query is
        ordered that field must be the first ordering.
        """
        for f in self.filters:
            if f.op not in SUPPORTED_OPS:
                raise UnsupportedQueryError(f"unsupported operator {f.op!r} on {self.collection}.{f.field}")
        for _, direction in self.order_by:
            if direction not in (ASC, DESC):
                raise UnsupportedQueryError(f"unsupported direction {direction!r}")
        range_fields = {f.field for f in self.filters if f.op in RANGE_OPS}
        if len(range_fields) > 1:
            raise UnsupportedQueryError(
                f"range filters on multiple fields {sorted(range_fields)} in {self.collection}"
            )
        if range_fields and self.order_by and self.order_by[0][0] not in range_fields:
            raise UnsupportedQueryError(
                f"first ordering of {self.collection} must be on range field {next(iter(range_fields))!r}"
            )

    def matches(self, data: Dict[str, Any]) -> bool:
        return all(f.matches(data) for f in self.filters)

    def apply(self, docs: Iterable[Document]) -> List[Document]:
        """Filter, sort and limit ``docs`` the way the backend would."""
        out = [d for d in docs if self.matches(d.data)]
        # Stable sorts applied from the least significant ordering.
        for field_name, direction in reversed(self.order_by):
            out.sort(key=lambda d: _sort_key(d.data.get(field_name)), reverse=direction == DESC)
        if self.limit is not None:
            out = out[: self.limit]
        return out

    def describe(self) -> str:
        parts = [self.collection]
        parts += [f"{f.field} {f.op} {f.value!r}" for f in self.filters]
        parts += [f"order {name} {direction}" for name, direction in self.order_by]
        if self.limit is not None:
            parts.append(f"limit {self.limit}")
        return " | ".join(parts)


@dataclass
class WriteOp:
    kind: str  # 'create', 'set', 'merge', 'update', 'delete', 'delete_existing'
    collection: str
    doc_id: str
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def add(cls, collection: str, data: Dict[str, Any]) -> "WriteOp":
        # Ids for batched adds are allocated client-side, like the SDK does.
        return cls("create", collection, new_id(), data)

    @classmethod
    def create(cls, collection: str, doc_id: str, data: Dict[str, Any]) -> "WriteOp":
        return cls("create", collection, doc_id, data)

    @classmethod
    def set(cls, collection: str, doc_id: str, data: Dict[str, Any]) -> "WriteOp":
        return cls("set", collection, doc_id, data)

    @classmethod
    def update(cls, collection: str, doc_id: str, data: Dict[str, Any]) -> "WriteOp":
        return cls("update", collection, doc_id, data)

    @classmethod
    def delete(cls, collection: str, doc_id: str, must_exist: bool = False) -> "WriteOp":
        """With ``must_exist`` the whole batch fails with NotFoundError if the document is gone."""
        return cls("delete_existing" if must_exist else "delete", collection, doc_id)


SnapshotCallback = Callable[[List[Document]], None]
ErrorCallback = Callable[[Exception], None]
Unsubscribe = Callable[[], None]


class DocumentStore:
    """Interface every backend implements. All I/O methods are coroutines."""

    async def get(self, collection: str, doc_id: str) -> Optional[Document]: ...
    async def query(self, query: Query) -> List[Document]: ...
    async def add(self, collection: str, data: Dict[str, Any]) -> str: ...
    async def set(self, collection: str, doc_id: str, data: Dict[str, Any], merge: bool = False) -> None: ...
    async def create(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None: ...
    async def update(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None: ...
    async def delete(self, collection: str, doc_id: str) -> None: ...
    async def batch_commit(self, ops: List[WriteOp]) -> None: ...

    def listen(
        self,
        query: Query,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Unsubscribe:
        """Deliver the full result set of ``query`` now and after every change."""
        ...
