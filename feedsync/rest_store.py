"""
HTTP document store.

Talks to a JSON backend at BACKEND_URL. The backend has no push channel, so
``listen`` polls the query endpoint and emits the full result set whenever
it differs from the previous one (and always once on establishment).
Blocking ``requests`` calls run in worker threads so the event loop keeps
rendering.
"""
import asyncio
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

import requests
from requests import Session

from .config import DEFAULT_POLL_INTERVAL, HTTP_TIMEOUT
from .debug_log import get_logger
from .store import (
    SERVER_TIMESTAMP,
    AlreadyExistsError,
    Document,
    DocumentStore,
    ErrorCallback,
    Increment,
    NotFoundError,
    Query,
    SnapshotCallback,
    StoreError,
    Unsubscribe,
    UnsupportedQueryError,
    WriteOp,
)

logger = get_logger("rest_store")


def encode_value(value: Any) -> Any:
    if value is SERVER_TIMESTAMP:
        return {"__op__": "server_timestamp"}
    if isinstance(value, Increment):
        return {"__op__": "increment", "amount": value.amount}
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: encode_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode_value(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    return value


def encode_query(query: Query) -> Dict[str, Any]:
    return {
        "filters": [{"field": f.field, "op": f.op, "value": encode_value(f.value)} for f in query.filters],
        "order_by": [[name, direction] for name, direction in query.order_by],
        "limit": query.limit,
    }


class RestDocumentStore(DocumentStore):
    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = HTTP_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        session: Optional[Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.session: Session = session or requests.Session()
        if token:
            self.set_token(token)

    # --- helpers ---
    def set_token(self, token: Optional[str]) -> None:
        if token:
            self.session.headers.update({"Authorization": f"Bearer {token}"})
        else:
            self.session.headers.pop("Authorization", None)

    def _request(self, method: str, path: str, json_payload: Any = None) -> Any:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            resp = self.session.request(method, url, json=json_payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise StoreError(f"{method} {path} failed: {e}") from e
        if resp.status_code == 404:
            raise NotFoundError(f"{path} not found")
        if resp.status_code == 409:
            raise AlreadyExistsError(f"{path} already exists")
        if resp.status_code == 400 and path.endswith("/query"):
            raise UnsupportedQueryError(resp.text or "query rejected")
        try:
            resp.raise_for_status()
        except requests.HTTPError as e:
            raise StoreError(f"{method} {path}: HTTP {resp.status_code}") from e
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise StoreError(f"{method} {path}: malformed response body") from e

    async def _call(self, method: str, path: str, json_payload: Any = None) -> Any:
        return await asyncio.to_thread(self._request, method, path, json_payload)

    @staticmethod
    def _doc_path(collection: str, doc_id: str) -> str:
        return f"/collections/{collection}/docs/{doc_id}"

    @staticmethod
    def _to_document(raw: Dict[str, Any]) -> Document:
        return Document(str(raw.get("id")), dict(raw.get("data") or {}))

    # --- reads ---
    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        try:
            raw = await self._call("GET", self._doc_path(collection, doc_id))
        except NotFoundError:
            return None
        return self._to_document(raw)

    async def query(self, query: Query) -> List[Document]:
        query.validate()
        data = await self._call("POST", f"/collections/{query.collection}/query", encode_query(query))
        return [self._to_document(d) for d in data or []]

    # --- writes ---
    async def add(self, collection: str, data: Dict[str, Any]) -> str:
        body = await self._call("POST", f"/collections/{collection}/docs", {"data": encode_value(data)})
        return str(body["id"])

    async def set(self, collection: str, doc_id: str, data: Dict[str, Any], merge: bool = False) -> None:
        await self._call("PUT", self._doc_path(collection, doc_id), {"data": encode_value(data), "merge": merge})

    async def create(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        await self._call("PUT", self._doc_path(collection, doc_id), {"data": encode_value(data), "create": True})

    async def update(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        await self._call("PATCH", self._doc_path(collection, doc_id), {"data": encode_value(data)})

    async def delete(self, collection: str, doc_id: str) -> None:
        try:
            await self._call("DELETE", self._doc_path(collection, doc_id))
        except NotFoundError:
            # deleting an absent document is a no-op, as in the SDK
            pass

    async def batch_commit(self, ops: List[WriteOp]) -> None:
        if not ops:
            return
        payload = {
            "ops": [
                {"kind": op.kind, "collection": op.collection, "doc_id": op.doc_id, "data": encode_value(op.data)}
                for op in ops
            ]
        }
        await self._call("POST", "/batch", payload)

    # --- subscriptions ---
    def listen(
        self,
        query: Query,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Unsubscribe:
        query.validate()
        task = asyncio.get_running_loop().create_task(self._poll(query, on_snapshot, on_error))

        def unsubscribe() -> None:
            task.cancel()

        return unsubscribe

    async def _poll(self, query: Query, on_snapshot: SnapshotCallback, on_error: Optional[ErrorCallback]) -> None:
        last = None
        established = False
        while True:
            try:
                docs = await self.query(query)
            except StoreError as e:
                if not established:
                    if on_error is not None:
                        on_error(e)
                    else:
                        logger.warning("poll of %s failed: %s", query.describe(), e)
                    return
                logger.warning("poll of %s failed, retrying next tick: %s", query.describe(), e)
            else:
                signature = [(d.id, d.data) for d in docs]
                if not established or signature != last:
                    established = True
                    last = signature
                    try:
                        on_snapshot(docs)
                    except Exception:
                        logger.exception("snapshot handler for %s failed", query.describe())
            await asyncio.sleep(self.poll_interval)
