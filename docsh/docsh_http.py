"""
A ServiceProvider that talks to a JSON data API over HTTP.

Endpoints (relative to base_url):
  POST /{db}/{coll}/find     {"filter", "skip", "limit"} -> {"documents": [...]}
  POST /{db}/{coll}/insert   {"documents"}               -> {"inserted_ids": [...]}
  POST /{db}/{coll}/delete   {"filter"}                  -> {"deleted_count": n}
  POST /{db}/{coll}/count    {"filter"}                  -> {"count": n}
  GET  /{db}/collections                                 -> {"collections": [...]}
"""
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from docsh.docsh_config import dbg
from docsh.docsh_datatypes import BackendError
from docsh.docsh_shell_api import ServiceProvider


class HttpServiceProvider(ServiceProvider):
    def __init__(self, base_url: str, *, timeout: float = 5.0, headers: Optional[Dict[str, str]] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers = dict(headers or {})
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self):
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, follow_redirects=True, headers=self.headers)
        return self._client

    async def _request(self, method: str, path: str, payload: Optional[Dict] = None) -> Any:
        url = f"{self.base_url}/{path}"
        dbg("http:", method, url)
        try:
            resp = await self._get_client().request(method, url, json=payload)
        except httpx.HTTPError as e:
            raise BackendError(f"{method} {url} failed: {e}") from e
        if not (200 <= resp.status_code < 300):
            raise BackendError(f"{method} {url} -> {resp.status_code}: {resp.text}", resp.status_code)
        try:
            return resp.json()
        except ValueError as e:
            raise BackendError(f"{method} {url} returned invalid JSON", resp.status_code) from e

    @staticmethod
    def _path(database: str, collection: str, op: str) -> str:
        return f"{quote(database, safe='')}/{quote(collection, safe='')}/{op}"

    async def find(self, database, collection, filter, *, skip=0, limit=0) -> List[Dict]:
        body = await self._request("POST", self._path(database, collection, "find"),
                                   {"filter": filter, "skip": skip, "limit": limit})
        return list(body.get("documents", []))

    async def insert_many(self, database, collection, documents) -> List[Any]:
        body = await self._request("POST", self._path(database, collection, "insert"), {"documents": documents})
        return list(body.get("inserted_ids", []))

    async def delete_many(self, database, collection, filter) -> int:
        body = await self._request("POST", self._path(database, collection, "delete"), {"filter": filter})
        return int(body.get("deleted_count", 0))

    async def count_documents(self, database, collection, filter) -> int:
        body = await self._request("POST", self._path(database, collection, "count"), {"filter": filter})
        return int(body.get("count", 0))

    async def list_collection_names(self, database) -> List[str]:
        body = await self._request("GET", f"{quote(database, safe='')}/collections")
        return list(body.get("collections", []))

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None
