"""
The objects a shell user talks to: `db`, collections, cursors, and the
built-in verbs. Everything that reaches the backend is a coroutine marked
with `suspending`, so the evaluator can find and await those calls.
"""
from __future__ import annotations

import copy
import itertools
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import pystache

from docsh.docsh_datatypes import EvaluationSession, ReplRenderable
from docsh.docsh_printer import Printer
from docsh.docsh_suspend import current_session, suspending

HELP_TEMPLATE = """Shell Help:
{{#verbs}}
  {{name}}{{pad}}{{text}}
{{/verbs}}

Collection methods (db.<collection>.<method>):
{{#methods}}
  {{name}}{{pad}}{{text}}
{{/methods}}
Backend calls are awaited for you; `edit <name|code>` opens an external editor."""

HELP_VERBS = [
    ("use <db>", "switch the current database"),
    ("it", "show the next batch of the last cursor"),
    ("help", "show this help"),
    ("edit [code]", "edit code or a name in $EDITOR"),
    ("var <name> = ...", "bind a cursor without iterating it"),
    ("config.get(key)", "read a setting; config.set(key, value) changes it"),
    ("exit", "quit the shell"),
]

HELP_METHODS = [
    ("find(filter)", "lazy cursor over matching documents"),
    ("find_one(filter)", "first matching document or None"),
    ("insert_one(doc)", "insert a document"),
    ("insert_many(docs)", "insert several documents"),
    ("delete_many(filter)", "delete matching documents"),
    ("count_documents(filter)", "count matching documents"),
]


def _help_rows(rows):
    width = max(len(name) for name, _ in rows) + 2
    return [{"name": name, "pad": " " * (width - len(name)), "text": text} for name, text in rows]


class ServiceProvider(ABC):
    """Backend operations the shell needs. Implemented by the driver layer."""

    @abstractmethod
    async def find(self, database: str, collection: str, filter: Dict, *,
                   skip: int = 0, limit: int = 0) -> List[Dict]: raise NotImplementedError
    @abstractmethod
    async def insert_many(self, database: str, collection: str, documents: List[Dict]) -> List[Any]: raise NotImplementedError
    @abstractmethod
    async def delete_many(self, database: str, collection: str, filter: Dict) -> int: raise NotImplementedError
    @abstractmethod
    async def count_documents(self, database: str, collection: str, filter: Dict) -> int: raise NotImplementedError
    @abstractmethod
    async def list_collection_names(self, database: str) -> List[str]: raise NotImplementedError

    async def close(self):
        pass


def _matches(doc: Dict, filter: Dict) -> bool:
    return all(doc.get(k) == v for k, v in filter.items())


class InMemoryServiceProvider(ServiceProvider):
    """Dict-backed provider; equality filters only."""

    def __init__(self, data: Optional[Dict[str, Dict[str, List[Dict]]]] = None):
        self.data: Dict[str, Dict[str, List[Dict]]] = data if data is not None else {}
        self._ids = itertools.count(1)

    def _coll(self, database, collection):
        return self.data.setdefault(database, {}).setdefault(collection, [])

    async def find(self, database, collection, filter, *, skip=0, limit=0):
        docs = [copy.deepcopy(d) for d in self._coll(database, collection) if _matches(d, filter)]
        docs = docs[skip:]
        return docs[:limit] if limit else docs

    async def insert_many(self, database, collection, documents):
        ids = []
        for doc in documents:
            doc = dict(doc)
            doc.setdefault("_id", next(self._ids))
            self._coll(database, collection).append(doc)
            ids.append(doc["_id"])
        return ids

    async def delete_many(self, database, collection, filter):
        coll = self._coll(database, collection)
        keep = [d for d in coll if not _matches(d, filter)]
        deleted = len(coll) - len(keep)
        coll[:] = keep
        return deleted

    async def count_documents(self, database, collection, filter):
        return sum(1 for d in self._coll(database, collection) if _matches(d, filter))

    async def list_collection_names(self, database):
        return sorted(self.data.get(database, {}))


class _Shared:
    # Handles onto the live backend are the same object in every snapshot.
    def __deepcopy__(self, memo):
        return self


class CursorBatch(ReplRenderable):
    def __init__(self, documents: List[Dict], has_more: bool, printer: Printer):
        self.documents = documents
        self.has_more = has_more
        self._printer = printer

    def to_repl_string(self) -> str:
        if not self.documents:
            return "no more results" if not self.has_more else ""
        lines = [self._printer.pformat(d) for d in self.documents]
        if self.has_more:
            lines.append('Type "it" for more')
        return "\n".join(lines)

    def __repr__(self):
        return f"CursorBatch({len(self.documents)} documents, has_more={self.has_more})"


class Cursor:
    """A lazy query. Batches are fetched by `it`, `to_list`, or printing."""

    def __init__(self, collection: "Collection", filter: Dict):
        self._collection = collection
        self._filter = dict(filter)
        self._skip = 0
        self._limit = 0
        self._position = 0
        self._exhausted = False

    def skip(self, n: int) -> "Cursor":
        self._skip = n
        return self

    def limit(self, n: int) -> "Cursor":
        self._limit = n
        return self

    async def next_batch(self, size: Optional[int] = None) -> CursorBatch:
        api = self._collection._database._api
        size = size or api.batch_size
        remaining = size
        if self._limit:
            remaining = min(size, self._limit - self._position)
        if self._exhausted or remaining <= 0:
            self._exhausted = True
            return CursorBatch([], False, api.printer)
        # Fetch one extra to know whether another batch exists
        docs = await api.provider.find(
            self._collection._database.name, self._collection.name, self._filter,
            skip=self._skip + self._position, limit=remaining + 1,
        )
        batch = docs[:remaining]
        self._position += len(batch)
        has_more = len(docs) > remaining and not (self._limit and self._position >= self._limit)
        self._exhausted = not has_more
        return CursorBatch(batch, has_more, api.printer)

    @suspending
    async def to_list(self) -> List[Dict]:
        api = self._collection._database._api
        docs = await api.provider.find(
            self._collection._database.name, self._collection.name, self._filter,
            skip=self._skip, limit=self._limit,
        )
        self._exhausted = True
        return docs

    def __repr__(self):
        return f"Cursor({self._collection!r}, {self._filter!r})"


class Collection(_Shared):
    def __init__(self, database: "Database", name: str):
        self._database = database
        self.name = name

    @property
    def _provider(self) -> ServiceProvider:
        return self._database._api.provider

    def find(self, filter: Optional[Dict] = None) -> Cursor:
        return Cursor(self, filter or {})

    @suspending
    async def find_one(self, filter: Optional[Dict] = None) -> Optional[Dict]:
        docs = await self._provider.find(self._database.name, self.name, filter or {}, limit=1)
        return docs[0] if docs else None

    @suspending
    async def insert_one(self, document: Dict) -> Dict:
        ids = await self._provider.insert_many(self._database.name, self.name, [document])
        return {"acknowledged": True, "inserted_id": ids[0]}

    @suspending
    async def insert_many(self, documents: List[Dict]) -> Dict:
        ids = await self._provider.insert_many(self._database.name, self.name, list(documents))
        return {"acknowledged": True, "inserted_ids": ids}

    @suspending
    async def delete_many(self, filter: Dict) -> Dict:
        n = await self._provider.delete_many(self._database.name, self.name, filter)
        return {"acknowledged": True, "deleted_count": n}

    @suspending
    async def count_documents(self, filter: Optional[Dict] = None) -> int:
        return await self._provider.count_documents(self._database.name, self.name, filter or {})

    def __repr__(self):
        return f"{self._database.name}.{self.name}"


class Database(_Shared):
    def __init__(self, api: "ShellApi", name: str):
        self._api = api
        self.name = name

    def __getattr__(self, name: str) -> Collection:
        if name.startswith("_"):
            raise AttributeError(name)
        return Collection(self, name)

    def __getitem__(self, name: str) -> Collection:
        return Collection(self, name)

    def get_collection(self, name: str) -> Collection:
        return Collection(self, name)

    @suspending
    async def list_collection_names(self) -> List[str]:
        return await self._api.provider.list_collection_names(self.name)

    def __repr__(self):
        return self.name


class ShellHelp(_Shared, ReplRenderable):
    """`help` as a value: prints the help screen, `help()` works too."""

    def __init__(self, api: "ShellApi"):
        self._api = api

    def __call__(self):
        return self

    def to_repl_string(self) -> str:
        return self._api.help

    def __repr__(self):
        return self._api.help


class ShellApi(_Shared):
    """Built-in verbs plus the `db` handle bound into the shell namespace."""

    def __init__(self, provider: ServiceProvider, batch_size: int = 20, database: str = "test"):
        self.provider = provider
        self.batch_size = batch_size
        self.printer = Printer()
        self.db = Database(self, database)
        self.current_cursor: Optional[Cursor] = None
        self._namespace: Optional[Dict[str, Any]] = None

    def use(self, name: str) -> str:
        session = current_session.get()
        # the discovery pass must not switch the live database
        if session is None or not session.tracking:
            self.db = Database(self, name)
            if self._namespace is not None:
                self._namespace["db"] = self.db
        return f"switched to db {name}"

    async def it(self):
        if self.current_cursor is None:
            return "no cursor"
        return await self.current_cursor.next_batch()

    @property
    def help(self) -> str:
        renderer = pystache.Renderer(escape=lambda u: u)
        return renderer.render(HELP_TEMPLATE, {
            "verbs": _help_rows(HELP_VERBS),
            "methods": _help_rows(HELP_METHODS),
        })

    async def present(self, value: Any, session: Optional[EvaluationSession] = None) -> Any:
        """Turn a bare cursor result into its first batch and remember it for `it`."""
        if not isinstance(value, Cursor):
            return value
        if session is not None and session.cursor_assigned:
            return value
        self.current_cursor = value
        return await value.next_batch()

    def namespace(self, **extra) -> Dict[str, Any]:
        ns = {"db": self.db, "use": self.use, "it": self.it, "help": ShellHelp(self)}
        ns.update(extra)
        self._namespace = ns
        return ns
