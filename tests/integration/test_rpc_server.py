import asyncio
import json
import sqlite3

import pytest

from rpc.server import connect, introspect, mcp, query


@pytest.fixture
def db_file(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("QUERYGATE_CONFIG_HOME", str(tmp_path / "global"))
    db_path = tmp_path / "inventory.db"
    conn = sqlite3.connect(str(db_path))
    try:
        conn.execute("CREATE TABLE items (sku TEXT PRIMARY KEY, qty INTEGER)")
        conn.execute("CREATE VIEW low_stock AS SELECT sku FROM items WHERE qty < 5")
        conn.execute("INSERT INTO items VALUES ('A', 1), ('B', 9)")
        conn.commit()
    finally:
        conn.close()
    return str(db_path)


def test_tools_are_registered():
    tools = asyncio.run(mcp.list_tools())
    assert sorted(tool.name for tool in tools) == ["connect", "introspect", "query"]
    query_tool = next(tool for tool in tools if tool.name == "query")
    assert "sql" in query_tool.inputSchema["required"]


def test_query_tool_returns_envelope_text(db_file):
    envelope = json.loads(asyncio.run(query(sql="SELECT sku FROM items ORDER BY sku", engine="sqlite", file=db_file)))
    assert envelope["ok"] is True
    assert envelope["data"]["rows"] == [["A"], ["B"]]


def test_query_tool_reports_rejection_as_envelope(db_file):
    envelope = json.loads(asyncio.run(query(sql="UPDATE items SET qty = 0", engine="sqlite", file=db_file)))
    assert envelope["ok"] is False
    assert envelope["error"]["code"] == "CAPABILITY_VIOLATION"
    assert "UPDATE items SET qty = 0" in envelope["error"]["message"]


def test_connect_tool_saves_and_introspect_uses_current(db_file, tmp_path):
    saved = json.loads(asyncio.run(connect(engine="sqlite", file=db_file, name="inv", save="local")))
    assert saved["ok"] is True
    assert saved["data"]["saved"]["location"] == "local"

    views = json.loads(asyncio.run(introspect(operation="list_views")))
    assert views["data"] == {"kind": "view_list", "views": ["low_stock"]}

    details = json.loads(asyncio.run(introspect(operation="view_details", target="low_stock", name="inv")))
    assert details["data"]["view"]["columns"][0]["name"] == "sku"


def test_introspect_tool_validates_operation(db_file):
    envelope = json.loads(asyncio.run(introspect(operation="table_details", engine="sqlite", file=db_file)))
    assert envelope["error"]["code"] == "INVALID_INPUT"
