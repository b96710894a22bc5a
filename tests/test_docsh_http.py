import json

import httpx
import pytest

import docsh.docsh_http as docsh_http_mod
from docsh.docsh_datatypes import BackendError
from docsh.docsh_http import HttpServiceProvider


class DummyResp:
    def __init__(self, status, body):
        self.status_code = status
        self.text = body if isinstance(body, str) else json.dumps(body)

    def json(self):
        return json.loads(self.text)


def install_client(monkeypatch, handler):
    calls = []

    class DummyAsyncClient:
        instances = 0

        def __init__(self, *args, **kwargs):
            DummyAsyncClient.instances += 1
            self.kwargs = kwargs
            self.closed = False

        async def request(self, method, url, json=None):
            calls.append((method, url, json))
            return handler(method, url, json)

        async def aclose(self):
            self.closed = True

    monkeypatch.setattr(docsh_http_mod.httpx, "AsyncClient", DummyAsyncClient)
    return calls, DummyAsyncClient


@pytest.mark.asyncio
async def test_endpoints_and_payloads(monkeypatch):
    replies = {
        "find": {"documents": [{"_id": 1}]},
        "insert": {"inserted_ids": [7, 8]},
        "delete": {"deleted_count": 2},
        "count": {"count": 4},
        "collections": {"collections": ["a", "b"]},
    }
    calls, client_cls = install_client(monkeypatch, lambda m, url, body: DummyResp(200, replies[url.rsplit("/", 1)[1]]))
    p = HttpServiceProvider("http://example/api/", headers={"X-Key": "k"})

    assert await p.find("test", "people", {"a": 1}, skip=2, limit=3) == [{"_id": 1}]
    assert await p.insert_many("test", "people", [{"x": 1}, {"x": 2}]) == [7, 8]
    assert await p.delete_many("test", "people", {}) == 2
    assert await p.count_documents("test", "people", {"a": 1}) == 4
    assert await p.list_collection_names("test") == ["a", "b"]

    assert calls[0] == ("POST", "http://example/api/test/people/find", {"filter": {"a": 1}, "skip": 2, "limit": 3})
    assert calls[1] == ("POST", "http://example/api/test/people/insert", {"documents": [{"x": 1}, {"x": 2}]})
    assert calls[2] == ("POST", "http://example/api/test/people/delete", {"filter": {}})
    assert calls[3] == ("POST", "http://example/api/test/people/count", {"filter": {"a": 1}})
    assert calls[4] == ("GET", "http://example/api/test/collections", None)
    # one client is reused across requests
    assert client_cls.instances == 1
    assert p._client.kwargs["headers"] == {"X-Key": "k"}


@pytest.mark.asyncio
async def test_names_are_quoted(monkeypatch):
    calls, _ = install_client(monkeypatch, lambda m, url, body: DummyResp(200, {"count": 0}))
    p = HttpServiceProvider("http://example")
    await p.count_documents("my db", "a/b", {})
    assert calls[0][1] == "http://example/my%20db/a%2Fb/count"


@pytest.mark.asyncio
async def test_error_status_raises_backend_error(monkeypatch):
    install_client(monkeypatch, lambda m, url, body: DummyResp(404, "no such collection"))
    p = HttpServiceProvider("http://example")
    with pytest.raises(BackendError) as exc:
        await p.find("test", "people", {})
    assert exc.value.status == 404
    assert "no such collection" in str(exc.value)


@pytest.mark.asyncio
async def test_invalid_json_raises_backend_error(monkeypatch):
    install_client(monkeypatch, lambda m, url, body: DummyResp(200, "<html>"))
    p = HttpServiceProvider("http://example")
    with pytest.raises(BackendError) as exc:
        await p.count_documents("test", "people", {})
    assert "invalid JSON" in str(exc.value)


@pytest.mark.asyncio
async def test_transport_error_raises_backend_error(monkeypatch):
    def boom(method, url, body):
        raise httpx.ConnectError("connection refused")

    install_client(monkeypatch, boom)
    p = HttpServiceProvider("http://example")
    with pytest.raises(BackendError) as exc:
        await p.list_collection_names("test")
    assert "connection refused" in str(exc.value)
    assert isinstance(exc.value.__cause__, httpx.ConnectError)


@pytest.mark.asyncio
async def test_close(monkeypatch):
    install_client(monkeypatch, lambda m, url, body: DummyResp(200, {"count": 1}))
    p = HttpServiceProvider("http://example")
    await p.close()
    await p.count_documents("test", "people", {})
    client = p._client
    await p.close()
    assert client.closed
    assert p._client is None
