import asyncio
from unittest.mock import MagicMock

import pytest
import requests

from feedsync.rest_store import RestDocumentStore, encode_query, encode_value
from feedsync.store import (
    SERVER_TIMESTAMP,
    AlreadyExistsError,
    Increment,
    NotFoundError,
    Query,
    StoreError,
    UnsupportedQueryError,
    WriteOp,
)
from tests.conftest import T0


def _response(status, body=None):
    resp = MagicMock()
    resp.status_code = status
    resp.content = b"{}" if body is not None else b""
    resp.json.return_value = body
    resp.text = ""
    if status >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(str(status))
    return resp


@pytest.fixture
def session():
    s = MagicMock()
    s.headers = {}
    return s


@pytest.fixture
def rest(session):
    return RestDocumentStore("http://backend/", session=session, poll_interval=0.01)


def test_encode_value_handles_sentinels_and_dates():
    encoded = encode_value({"at": SERVER_TIMESTAMP, "n": Increment(2), "when": T0, "tags": ("a",)})
    assert encoded == {
        "at": {"__op__": "server_timestamp"},
        "n": {"__op__": "increment", "amount": 2},
        "when": T0.isoformat(),
        "tags": ["a"],
    }


def test_encode_query():
    q = Query("posts").where("user_id", "==", "u1").order("created_at", "desc").take(5)
    assert encode_query(q) == {
        "filters": [{"field": "user_id", "op": "==", "value": "u1"}],
        "order_by": [["created_at", "desc"]],
        "limit": 5,
    }


def test_token_sets_bearer_header(rest, session):
    rest.set_token("tok")
    assert session.headers["Authorization"] == "Bearer tok"
    rest.set_token(None)
    assert "Authorization" not in session.headers


@pytest.mark.asyncio
async def test_get_maps_404_to_none(rest, session):
    session.request.return_value = _response(404)
    assert await rest.get("posts", "p1") is None
    method, url = session.request.call_args[0]
    assert (method, url) == ("GET", "http://backend/collections/posts/docs/p1")


@pytest.mark.asyncio
async def test_create_conflict_raises(rest, session):
    session.request.return_value = _response(409)
    with pytest.raises(AlreadyExistsError):
        await rest.create("usernames", "alice", {"user_id": "u1"})
    assert session.request.call_args[1]["json"] == {"data": {"user_id": "u1"}, "create": True}


@pytest.mark.asyncio
async def test_update_missing_raises(rest, session):
    session.request.return_value = _response(404)
    with pytest.raises(NotFoundError):
        await rest.update("posts", "p1", {"content": "x"})


@pytest.mark.asyncio
async def test_server_error_and_network_error(rest, session):
    session.request.return_value = _response(500)
    with pytest.raises(StoreError):
        await rest.add("posts", {})
    session.request.side_effect = requests.ConnectionError("down")
    with pytest.raises(StoreError):
        await rest.get("posts", "p1")


@pytest.mark.asyncio
async def test_delete_of_absent_document_is_ignored(rest, session):
    session.request.return_value = _response(404)
    await rest.delete("posts", "p1")


@pytest.mark.asyncio
async def test_query_decodes_documents(rest, session):
    session.request.return_value = _response(200, [{"id": "a", "data": {"n": 1}}])
    docs = await rest.query(Query("posts"))
    assert [(d.id, d.data) for d in docs] == [("a", {"n": 1})]


@pytest.mark.asyncio
async def test_batch_payload(rest, session):
    session.request.return_value = _response(200, {})
    await rest.batch_commit([WriteOp.update("posts", "p1", {"like_count": Increment(1)})])
    method, url = session.request.call_args[0]
    assert (method, url) == ("POST", "http://backend/batch")
    assert session.request.call_args[1]["json"] == {
        "ops": [{"kind": "update", "collection": "posts", "doc_id": "p1",
                 "data": {"like_count": {"__op__": "increment", "amount": 1}}}]
    }


def test_listen_rejects_unindexable_query_synchronously(rest):
    with pytest.raises(UnsupportedQueryError):
        rest.listen(Query("stories").where("expires_at", ">", T0).order("created_at"), lambda docs: None)


@pytest.mark.asyncio
async def test_listen_polls_and_emits_only_changes(rest, session):
    session.request.side_effect = [
        _response(200, [{"id": "a", "data": {}}]),
        _response(200, [{"id": "a", "data": {}}]),
        _response(200, [{"id": "a", "data": {}}, {"id": "b", "data": {}}]),
    ] + [_response(200, [{"id": "a", "data": {}}, {"id": "b", "data": {}}])] * 50
    seen = []
    unsubscribe = rest.listen(Query("posts"), lambda docs: seen.append([d.id for d in docs]))
    for _ in range(100):
        if len(seen) >= 2:
            break
        await asyncio.sleep(0.01)
    unsubscribe()
    assert seen[:2] == [["a"], ["a", "b"]]


@pytest.mark.asyncio
async def test_listen_failure_on_establishment_reports_error(rest, session):
    session.request.return_value = _response(500)
    errors = []
    rest.listen(Query("posts"), lambda docs: None, errors.append)
    for _ in range(100):
        if errors:
            break
        await asyncio.sleep(0.01)
    assert len(errors) == 1
    assert isinstance(errors[0], StoreError)


@pytest.mark.asyncio
async def test_malformed_body_raises_store_error(rest, session):
    resp = _response(200, {})
    resp.json.side_effect = ValueError("Expecting value")
    session.request.return_value = resp
    with pytest.raises(StoreError):
        await rest.get("posts", "p1")


@pytest.mark.asyncio
async def test_failing_snapshot_handler_keeps_polling(rest, session):
    session.request.side_effect = [
        _response(200, [{"id": "a", "data": {}}]),
    ] + [_response(200, [{"id": "a", "data": {}}, {"id": "b", "data": {}}])] * 50
    seen = []

    def handler(docs):
        seen.append([d.id for d in docs])
        if len(seen) == 1:
            raise RuntimeError("render failed")

    unsubscribe = rest.listen(Query("posts"), handler)
    for _ in range(100):
        if len(seen) >= 2:
            break
        await asyncio.sleep(0.01)
    unsubscribe()
    assert seen[:2] == [["a"], ["a", "b"]]
