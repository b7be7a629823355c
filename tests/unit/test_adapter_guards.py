import asyncio
import threading

import pytest

from adapters.base import DatabaseAdapter
from adapters.errors import CapabilityViolation, ConnectionFailed, InternalError, InvalidInput, QueryFailed
from adapters.models import Capabilities, ConnectionDescriptor, ConnectionInfo, EngineKind


class FakeDriverError(Exception):
    pass


class FakeCursor:
    def __init__(self, conn):
        self.conn = conn
        self.description = None
        self.rowcount = -1
        self._rows = []

    def execute(self, sql, params=None):
        self.conn.executed.append(sql)
        if self.conn.block:
            self.conn.release.wait(5)
            raise FakeDriverError("interrupted")
        if self.conn.fail_with is not None:
            raise self.conn.fail_with
        if sql.strip().upper().startswith("BEGIN"):
            self.rowcount = 0
            return
        self.description = [("id",), ("label",)]
        self._rows = list(self.conn.rows)

    def fetchall(self):
        return self._rows

    def close(self):
        pass


class FakeConnection:
    def __init__(self, rows=(), block=False, fail_with=None):
        self.rows = rows
        self.block = block
        self.fail_with = fail_with
        self.executed = []
        self.interrupted = False
        self.release = threading.Event()
        self.closed = threading.Event()

    def cursor(self):
        return FakeCursor(self)

    def close(self):
        self.closed.set()


class FakeAdapter(DatabaseAdapter):
    engine = EngineKind.SQLITE
    required_fields = ("file",)
    driver_errors = (FakeDriverError,)

    def __init__(self, conn=None, connect_error=None):
        self.conn = conn or FakeConnection()
        self.connect_error = connect_error
        self.connects = 0

    def _connect(self, descriptor, database=None):
        self.connects += 1
        if self.connect_error is not None:
            raise self.connect_error
        return self.conn

    def _server_info(self, conn, descriptor):
        return ConnectionInfo(database_version="1", server_info="Fake 1", connected_database="fake.db", user="N/A")

    def _catalog(self, conn):
        raise NotImplementedError

    def _interrupt(self, conn):
        conn.interrupted = True
        conn.release.set()


DESCRIPTOR = ConnectionDescriptor.sqlite("fake.db")


def test_wrong_engine_is_rejected_before_connecting():
    adapter = FakeAdapter()
    descriptor = ConnectionDescriptor.postgres("db", 5432, "bob", "pw", "app")
    with pytest.raises(InvalidInput, match="Expected SQLite engine, got postgres"):
        asyncio.run(adapter.execute(descriptor, "SELECT 1"))
    assert adapter.connects == 0


def test_rejected_statement_never_opens_a_connection():
    adapter = FakeAdapter()
    with pytest.raises(CapabilityViolation):
        asyncio.run(adapter.execute(DESCRIPTOR, "DROP TABLE orders"))
    with pytest.raises(InvalidInput, match="Multi-statement"):
        asyncio.run(adapter.execute(DESCRIPTOR, "SELECT 1; SELECT 2"))
    assert adapter.connects == 0


def test_missing_required_field_is_invalid_input():
    adapter = FakeAdapter()
    with pytest.raises(InvalidInput, match="SQLite requires 'file' parameter"):
        asyncio.run(adapter.validate_connection(ConnectionDescriptor(engine="sqlite")))
    assert adapter.connects == 0


def test_connect_failure_is_translated_and_redacted():
    descriptor = ConnectionDescriptor(engine="sqlite", file="fake.db", password="hunter2")
    adapter = FakeAdapter(connect_error=FakeDriverError("login refused for hunter2 (password=hunter2)"))
    with pytest.raises(ConnectionFailed) as excinfo:
        asyncio.run(adapter.validate_connection(descriptor))
    assert "hunter2" not in excinfo.value.message
    assert excinfo.value.message.startswith("Connection failed: login refused")


def test_validate_connection_closes_the_connection():
    adapter = FakeAdapter()
    info = asyncio.run(adapter.validate_connection(DESCRIPTOR))
    assert info.server_info == "Fake 1"
    assert adapter.conn.closed.is_set()


def test_execute_truncates_to_max_rows():
    conn = FakeConnection(rows=[(i, f"row{i}") for i in range(5)])
    adapter = FakeAdapter(conn)
    result = asyncio.run(adapter.execute(DESCRIPTOR, "SELECT id, label FROM t", Capabilities(max_rows=2)))
    assert result.columns == ["id", "label"]
    assert result.rows == [[0, "row0"], [1, "row1"]]
    assert result.truncated is True
    assert result.execution_ms >= 0
    assert conn.closed.is_set()


def test_execute_without_limit_keeps_every_row():
    conn = FakeConnection(rows=[(1, "a")])
    result = asyncio.run(FakeAdapter(conn).execute(DESCRIPTOR, "SELECT id, label FROM t", Capabilities(max_rows=1)))
    assert result.rows == [[1, "a"]]
    assert result.truncated is False


def test_statement_without_result_set_reports_no_rows():
    result = asyncio.run(FakeAdapter().execute(DESCRIPTOR, "BEGIN"))
    assert result.columns == []
    assert result.rows == []
    assert result.rows_affected == 0


def test_statement_failure_is_query_failed_and_closes():
    conn = FakeConnection(fail_with=FakeDriverError('no such table: "ghost"'))
    with pytest.raises(QueryFailed, match="no such table"):
        asyncio.run(FakeAdapter(conn).execute(DESCRIPTOR, "SELECT * FROM ghost"))
    assert conn.closed.is_set()


def test_timeout_interrupts_and_detaches_the_statement():
    conn = FakeConnection(block=True)
    adapter = FakeAdapter(conn)
    with pytest.raises(QueryFailed, match="Query exceeded timeout of 50ms"):
        asyncio.run(adapter.execute(DESCRIPTOR, "SELECT id, label FROM big", Capabilities(timeout_ms=50)))
    assert conn.interrupted is True
    # The abandoned worker finishes on its own thread and closes the connection.
    assert conn.closed.wait(5)


def test_unexpected_fault_becomes_internal_error_without_its_text():
    conn = FakeConnection(fail_with=KeyError("password=hunter2"))
    with pytest.raises(InternalError) as excinfo:
        asyncio.run(FakeAdapter(conn).execute(DESCRIPTOR, "SELECT 1"))
    assert excinfo.value.message == "Internal error: unexpected failure during execute"
    assert conn.closed.is_set()


def test_introspect_rejects_unknown_operation_dict():
    with pytest.raises(InvalidInput, match="invalid introspection operation"):
        asyncio.run(FakeAdapter().introspect(DESCRIPTOR, {"op": "drop_everything"}))


class SlowConnectAdapter(FakeAdapter):
    def __init__(self, conn):
        super().__init__(conn)
        self.connecting = threading.Event()
        self.proceed = threading.Event()

    def _connect(self, descriptor, database=None):
        self.connecting.set()
        self.proceed.wait(5)
        return super()._connect(descriptor, database)


def test_cancel_while_connecting_closes_the_late_connection():
    conn = FakeConnection()
    adapter = SlowConnectAdapter(conn)

    async def cancel_during_connect():
        task = asyncio.create_task(adapter.execute(DESCRIPTOR, "SELECT id, label FROM t"))
        assert await asyncio.to_thread(adapter.connecting.wait, 5)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        adapter.proceed.set()

    asyncio.run(cancel_during_connect())

    assert conn.closed.wait(5)
    assert conn.executed == []
