import asyncio

import pymysql
import pytest

from adapters.errors import ConnectionFailed, InvalidInput, QueryFailed
from adapters.models import Capabilities, ConnectionDescriptor
from adapters.mysql import MySQLAdapter, parse_mysql_version
from adapters.normalize import MYSQL_JSON_TYPE_CODE


class FakeCursor:
    def __init__(self, conn):
        self.conn = conn
        self.description = None
        self.rowcount = -1
        self._rows = []

    def execute(self, sql, params=None):
        self.conn.executed.append((" ".join(sql.split()), params))
        for needle, outcome in self.conn.responses:
            if needle in sql:
                if isinstance(outcome, Exception):
                    raise outcome
                self.description, rows = outcome
                self._rows = list(rows)
                return
        self.description = None
        self._rows = []

    def fetchall(self):
        return self._rows

    def fetchone(self):
        return self._rows[0] if self._rows else None

    def close(self):
        pass


class FakeConnection:
    def __init__(self, responses):
        self.responses = responses
        self.executed = []
        self.closed = False

    def cursor(self):
        return FakeCursor(self)

    def close(self):
        self.closed = True


def _install(monkeypatch, responses=(), error=None):
    calls = []
    conn = FakeConnection(list(responses))

    def fake_connect(**kwargs):
        calls.append(kwargs)
        if error is not None:
            raise error
        return conn

    monkeypatch.setattr("adapters.mysql.pymysql.connect", fake_connect)
    return conn, calls


DESCRIPTOR = ConnectionDescriptor.mysql("db.internal", 3306, "analyst", "s3cret", "shop")


def test_parse_mysql_version():
    assert parse_mysql_version("8.0.35") == ("8.0.35", "MySQL 8.0.35")
    assert parse_mysql_version("10.11.2-MariaDB-1:10.11.2+maria~ubu2204") == ("10.11.2", "MariaDB 10.11.2")


def test_validate_connection_reports_mariadb(monkeypatch):
    conn, calls = _install(
        monkeypatch,
        [("SELECT VERSION()", (None, [("10.11.2-MariaDB-1:10.11.2+maria~ubu2204", "shop", "analyst@%")]))],
    )

    info = asyncio.run(MySQLAdapter().validate_connection(DESCRIPTOR))

    assert info.database_version == "10.11.2"
    assert info.server_info == "MariaDB 10.11.2"
    assert info.user == "analyst@%"
    assert conn.executed[0] == ("SET SESSION TRANSACTION READ ONLY", None)
    assert calls[0]["database"] == "shop"
    assert calls[0]["charset"] == "utf8mb4"
    assert conn.closed


def test_execute_decodes_json_columns_and_caps_runtime(monkeypatch):
    description = [("payload", MYSQL_JSON_TYPE_CODE), ("qty", 3)]
    conn, _ = _install(monkeypatch, [("FROM events", (description, [('{"sku": "A-1", "tags": [1, 2]}', 4)]))])

    result = asyncio.run(
        MySQLAdapter().execute(DESCRIPTOR, "SELECT payload, qty FROM events", Capabilities(timeout_ms=2000))
    )

    assert ("SET SESSION MAX_EXECUTION_TIME=2000", None) in conn.executed
    assert result.rows == [[{"sku": "A-1", "tags": [1, 2]}, 4]]


def test_show_statements_are_permitted(monkeypatch):
    _install(monkeypatch, [("SHOW TABLES", ([("Tables_in_shop",)], [("orders",)]))])
    result = asyncio.run(MySQLAdapter().execute(DESCRIPTOR, "SHOW TABLES"))
    assert result.rows == [["orders"]]


def test_list_schemas_is_unsupported_without_connecting(monkeypatch):
    _, calls = _install(monkeypatch)
    with pytest.raises(InvalidInput, match="MySQL does not support ListSchemas"):
        asyncio.run(MySQLAdapter().introspect(DESCRIPTOR, {"op": "list_schemas"}))
    assert calls == []


def test_schema_filter_selects_another_database(monkeypatch):
    conn, _ = _install(monkeypatch, [("information_schema.tables", (None, [("audit_log",)]))])
    result = asyncio.run(MySQLAdapter().introspect(DESCRIPTOR, {"op": "list_tables"}, schema_filter="audit"))
    assert result.tables == ["audit_log"]
    assert conn.executed[-1][1] == ("audit",)


def test_table_details_groups_composite_foreign_keys(monkeypatch):
    _install(
        monkeypatch,
        [
            ("SELECT DATABASE()", (None, [("shop",)])),
            ("SELECT 1", (None, [(1,)])),
            ("column_type", (None, [("order_id", "int", "NO", None), ("line_no", "smallint", "NO", "1")])),
            ("constraint_name = 'PRIMARY'", (None, [("order_id",), ("line_no",)])),
            (
                "referenced_table_name IS NOT NULL",
                (None, [("fk_lines_order", "order_id", "orders", "id"), ("fk_lines_order", "line_no", "orders", "rev")]),
            ),
            ("information_schema.statistics", (None, [("ix_lines_sku", "order_lines", "sku", 1)])),
        ],
    )

    result = asyncio.run(MySQLAdapter().introspect(DESCRIPTOR, {"op": "table_details", "name": "order_lines"}))

    table = result.table
    assert table.schema_name == "shop"
    assert table.primary_key == ["order_id", "line_no"]
    assert len(table.foreign_keys) == 1
    assert table.foreign_keys[0].columns == ["order_id", "line_no"]
    assert table.foreign_keys[0].referenced_columns == ["id", "rev"]
    assert table.indexes[0].unique is True
    assert table.columns[1].default == "1"


def test_empty_view_definition_is_null(monkeypatch):
    _install(
        monkeypatch,
        [
            ("SELECT DATABASE()", (None, [("shop",)])),
            ("view_definition", (None, [("",)])),
            ("column_type", (None, [("total", "decimal(10,2)", "YES", None)])),
        ],
    )
    result = asyncio.run(MySQLAdapter().introspect(DESCRIPTOR, {"op": "view_details", "name": "daily_totals"}))
    assert result.view.definition is None
    assert result.view.columns[0].data_type == "decimal(10,2)"


def test_driver_errors_are_translated(monkeypatch):
    _install(monkeypatch, error=pymysql.err.OperationalError(1045, "Access denied for user 'analyst'"))
    with pytest.raises(ConnectionFailed, match="Access denied"):
        asyncio.run(MySQLAdapter().validate_connection(DESCRIPTOR))


def test_statement_errors_are_query_failed(monkeypatch):
    _install(monkeypatch, [("FROM ghost", pymysql.err.ProgrammingError(1146, "Table 'shop.ghost' doesn't exist"))])
    with pytest.raises(QueryFailed, match="doesn't exist"):
        asyncio.run(MySQLAdapter().execute(DESCRIPTOR, "SELECT * FROM ghost"))
