import copy

import pytest

from docsh.docsh_datatypes import EvaluationSession
from docsh.docsh_shell_api import (
    Collection, Cursor, CursorBatch, Database, InMemoryServiceProvider, ShellApi,
)
from docsh.docsh_suspend import current_session


@pytest.fixture
def api():
    return ShellApi(InMemoryServiceProvider(), batch_size=2)


async def _seed(api, n=5):
    await api.db.people.insert_many([{"n": i} for i in range(1, n + 1)])


@pytest.mark.asyncio
async def test_insert_and_find_one(api):
    result = await api.db.people.insert_one({"name": "ann"})
    assert result == {"acknowledged": True, "inserted_id": 1}
    assert await api.db.people.find_one({"name": "ann"}) == {"name": "ann", "_id": 1}
    assert await api.db.people.find_one({"name": "bob"}) is None


@pytest.mark.asyncio
async def test_insert_many_count_and_delete(api):
    result = await api.db.people.insert_many([{"team": "a"}, {"team": "b"}, {"team": "a"}])
    assert result["inserted_ids"] == [1, 2, 3]
    assert await api.db.people.count_documents() == 3
    assert await api.db.people.count_documents({"team": "a"}) == 2
    deleted = await api.db.people.delete_many({"team": "a"})
    assert deleted == {"acknowledged": True, "deleted_count": 2}
    assert await api.db.people.count_documents() == 1


@pytest.mark.asyncio
async def test_find_returns_copies(api):
    await api.db.people.insert_one({"tags": ["x"]})
    doc = await api.db.people.find_one()
    doc["tags"].append("y")
    assert (await api.db.people.find_one())["tags"] == ["x"]


@pytest.mark.asyncio
async def test_list_collection_names(api):
    await api.db.b.insert_one({})
    await api.db.a.insert_one({})
    assert await api.db.list_collection_names() == ["a", "b"]


@pytest.mark.asyncio
async def test_present_pages_cursor_in_batches(api):
    await _seed(api)
    first = await api.present(api.db.people.find())
    assert isinstance(first, CursorBatch)
    assert [d["n"] for d in first.documents] == [1, 2]
    assert first.to_repl_string().endswith('Type "it" for more')

    second = await api.it()
    assert [d["n"] for d in second.documents] == [3, 4]
    assert second.has_more

    third = await api.it()
    assert [d["n"] for d in third.documents] == [5]
    assert not third.has_more
    assert "Type" not in third.to_repl_string()

    assert (await api.it()).to_repl_string() == "no more results"


@pytest.mark.asyncio
async def test_cursor_limit_and_skip(api):
    await _seed(api)
    first = await api.present(api.db.people.find().limit(3))
    assert [d["n"] for d in first.documents] == [1, 2]
    assert first.has_more
    second = await api.it()
    assert [d["n"] for d in second.documents] == [3]
    assert not second.has_more

    batch = await api.present(api.db.people.find().skip(3))
    assert [d["n"] for d in batch.documents] == [4, 5]
    assert not batch.has_more


@pytest.mark.asyncio
async def test_cursor_to_list(api):
    await _seed(api)
    docs = await api.db.people.find().skip(1).limit(2).to_list()
    assert [d["n"] for d in docs] == [2, 3]


@pytest.mark.asyncio
async def test_present_leaves_assigned_cursor_alone(api):
    await _seed(api)
    cursor = api.db.people.find()
    session = EvaluationSession(raw_input="var c = x", source="c = x", filename="<t>", cursor_assigned=True)
    assert await api.present(cursor, session) is cursor
    assert api.current_cursor is None
    assert await api.present(42) == 42


@pytest.mark.asyncio
async def test_it_without_cursor(api):
    assert await api.it() == "no cursor"


def test_use_switches_database(api):
    assert api.use("sales") == "switched to db sales"
    assert api.db.name == "sales"
    assert repr(api.db.orders) == "sales.orders"


def test_database_handles(api):
    db = api.db
    assert isinstance(db.people, Collection)
    assert db["with-dash"].name == "with-dash"
    assert db.get_collection("x").name == "x"
    with pytest.raises(AttributeError):
        db._private
    assert isinstance(db.people.find(), Cursor)


def test_backend_handles_survive_deepcopy(api):
    assert copy.deepcopy(api.db) is api.db
    assert copy.deepcopy(api) is api
    coll = api.db.people
    assert copy.deepcopy(coll) is coll


def test_help_lists_verbs_and_methods(api):
    text = api.help
    assert text.startswith("Shell Help:")
    assert "use <db>" in text
    assert "it" in text
    assert "find_one(filter)" in text
    assert "&lt;" not in text


def test_namespace(api):
    ns = api.namespace(config="cfg")
    assert ns["db"] is api.db
    assert ns["use"] == api.use
    assert ns["config"] == "cfg"
    assert isinstance(ns["db"], Database)
    assert ns["help"].to_repl_string() == api.help
    assert repr(ns["help"]) == api.help
    assert ns["help"]() is ns["help"]
    assert copy.deepcopy(ns["help"]) is ns["help"]


def test_use_updates_the_namespace_it_handed_out(api):
    ns = api.namespace()
    api.use("reports")
    assert ns["db"].name == "reports"
    assert ns["db"] is api.db


def test_use_during_discovery_keeps_the_live_database(api):
    ns = api.namespace()
    session = EvaluationSession(raw_input="use('x')", source="use('x')", filename="<t>")
    session.start_tracking()
    token = current_session.set(session)
    try:
        assert ns["use"]("x") == "switched to db x"
    finally:
        current_session.reset(token)
    assert api.db.name == "test"
    assert ns["db"].name == "test"


def test_empty_batch_with_more():
    assert CursorBatch([], True, None).to_repl_string() == ""
