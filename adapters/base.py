from __future__ import annotations

import asyncio
import concurrent.futures
import contextlib
import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Iterator, List, Mapping, NamedTuple, Optional, Sequence, Tuple, Type

from adapters.catalog import CatalogQueries, run_operation
from adapters.classifier import ensure_permitted
from adapters.errors import (
    AdapterError,
    ConnectionFailed,
    EngineSpecific,
    InternalError,
    InvalidInput,
    QueryFailed,
    redact,
)
from adapters.models import (
    Capabilities,
    ConnectionDescriptor,
    ConnectionInfo,
    EngineKind,
    QueryResult,
    parse_operation,
)
from adapters.normalize import ColumnConverter, column_names, normalize_rows

logger = logging.getLogger(__name__)


class Fetched(NamedTuple):
    columns: List[str]
    rows: List[Sequence[Any]]
    rows_affected: Optional[int]
    converters: Optional[List[ColumnConverter]]


class DatabaseAdapter(ABC):
    """One engine behind the connect, do one thing, close contract.

    Nothing is kept between calls: every public coroutine opens its own
    connection and closes it before returning, on the error path too.
    """

    engine: EngineKind
    required_fields: Tuple[str, ...] = ()
    driver_errors: Tuple[Type[BaseException], ...] = ()
    # operation name -> reason it cannot run on this engine
    unsupported_operations: Mapping[str, str] = {}
    supports_database_override: bool = True
    supports_schema_filter: bool = True

    # Hooks each engine fills in.

    @abstractmethod
    def _connect(self, descriptor: ConnectionDescriptor, database: Optional[str] = None) -> Any:
        raise NotImplementedError

    def _prepare_session(self, conn: Any, timeout_ms: Optional[int]) -> None:
        return None

    @abstractmethod
    def _server_info(self, conn: Any, descriptor: ConnectionDescriptor) -> ConnectionInfo:
        raise NotImplementedError

    @abstractmethod
    def _catalog(self, conn: Any) -> CatalogQueries:
        raise NotImplementedError

    def _interrupt(self, conn: Any) -> None:
        return None

    def _converters(self, description: Any) -> Optional[List[ColumnConverter]]:
        return None

    def _send_statement(self, cur: Any, sql: str) -> None:
        cur.execute(sql)

    # Public contract.

    async def validate_connection(self, descriptor: ConnectionDescriptor) -> ConnectionInfo:
        return await self._guarded("validate_connection", self._validate_connection, descriptor)

    async def introspect(
        self,
        descriptor: ConnectionDescriptor,
        operation: Any,
        database_override: Optional[str] = None,
        schema_filter: Optional[str] = None,
    ):
        return await self._guarded(
            "introspect", self._introspect, descriptor, operation, database_override, schema_filter
        )

    async def execute(self, descriptor: ConnectionDescriptor, sql: str, capabilities: Optional[Capabilities] = None) -> QueryResult:
        return await self._guarded("execute", self._execute, descriptor, sql, capabilities or Capabilities())

    async def _guarded(self, op_name: str, func: Callable[..., Any], *args: Any) -> Any:
        try:
            return await func(*args)
        except AdapterError:
            raise
        except Exception as exc:
            # The fault text may quote connection parameters, so only its type is reported.
            logger.error("%s %s failed with unexpected %s", self.engine.value, op_name, type(exc).__name__)
            raise InternalError(f"unexpected failure during {op_name}") from None

    # Guards that run before any network I/O.

    def _check_engine(self, descriptor: ConnectionDescriptor) -> None:
        if descriptor.engine != self.engine:
            raise InvalidInput(f"Expected {self.engine.label} engine, got {descriptor.engine.value}")

    def _check_fields(self, descriptor: ConnectionDescriptor) -> None:
        for field_name in self.required_fields:
            if getattr(descriptor, field_name) in (None, ""):
                raise InvalidInput(f"{self.engine.label} requires '{field_name}' parameter")

    def _check_introspect_args(self, operation: Any, database_override: Optional[str], schema_filter: Optional[str]) -> None:
        if operation.op in self.unsupported_operations:
            raise InvalidInput(self.unsupported_operations[operation.op])
        if database_override and not self.supports_database_override:
            raise InvalidInput(f"{self.engine.label} does not support a database override")
        if schema_filter and not self.supports_schema_filter:
            raise InvalidInput(f"{self.engine.label} does not support a schema filter")

    # Driver error translation.

    def _wrap(self, error_cls: Type[AdapterError], descriptor: ConnectionDescriptor, exc: BaseException) -> AdapterError:
        message = redact(exc, descriptor.secret()) or type(exc).__name__
        if error_cls is EngineSpecific:
            return EngineSpecific(self.engine.value, message)
        return error_cls(message)

    @contextlib.contextmanager
    def _translate(self, descriptor: ConnectionDescriptor, error_cls: Type[AdapterError]) -> Iterator[None]:
        try:
            yield
        except AdapterError:
            raise
        except self.driver_errors as exc:
            raise self._wrap(error_cls, descriptor, exc) from None

    # Connection lifecycle.

    def _open(self, descriptor: ConnectionDescriptor, database: Optional[str] = None, timeout_ms: Optional[int] = None) -> Any:
        logger.debug("Opening %s connection", self.engine.value, extra={"target": descriptor.describe()})
        with self._translate(descriptor, ConnectionFailed):
            conn = self._connect(descriptor, database)
        try:
            with self._translate(descriptor, ConnectionFailed):
                self._prepare_session(conn, timeout_ms)
        except BaseException:
            self._close_quietly(conn)
            raise
        return conn

    @staticmethod
    def _close_quietly(conn: Any) -> None:
        with contextlib.suppress(Exception):
            conn.close()

    # validate_connection

    async def _validate_connection(self, descriptor: ConnectionDescriptor) -> ConnectionInfo:
        self._check_engine(descriptor)
        self._check_fields(descriptor)
        return await asyncio.to_thread(self._validate_sync, descriptor)

    def _validate_sync(self, descriptor: ConnectionDescriptor) -> ConnectionInfo:
        conn = self._open(descriptor)
        try:
            with self._translate(descriptor, ConnectionFailed):
                return self._server_info(conn, descriptor)
        finally:
            self._close_quietly(conn)

    # introspect

    async def _introspect(
        self,
        descriptor: ConnectionDescriptor,
        operation: Any,
        database_override: Optional[str],
        schema_filter: Optional[str],
    ):
        self._check_engine(descriptor)
        if isinstance(operation, dict):
            try:
                operation = parse_operation(operation)
            except ValueError as exc:
                raise InvalidInput(f"invalid introspection operation: {exc}") from None
        self._check_introspect_args(operation, database_override, schema_filter)
        self._check_fields(descriptor)
        return await asyncio.to_thread(
            self._introspect_sync, descriptor, operation, database_override, schema_filter
        )

    def _introspect_sync(
        self,
        descriptor: ConnectionDescriptor,
        operation: Any,
        database_override: Optional[str],
        schema_filter: Optional[str],
    ):
        conn = self._open(descriptor, database=database_override)
        try:
            with self._translate(descriptor, EngineSpecific):
                catalog = self._catalog(conn)
                schema = schema_filter or catalog.default_schema()
                return run_operation(catalog, operation, schema)
        finally:
            self._close_quietly(conn)

    # execute

    async def _execute(self, descriptor: ConnectionDescriptor, sql: str, capabilities: Capabilities) -> QueryResult:
        self._check_engine(descriptor)
        ensure_permitted(sql, self.engine)
        self._check_fields(descriptor)
        logger.debug("Executing statement on %s: %s", self.engine.value, sql)

        opening = self._start_worker("connect", self._open, descriptor, None, capabilities.timeout_ms)
        try:
            conn = await asyncio.wrap_future(opening)
        except asyncio.CancelledError:
            # The open still completes on its thread; close whatever it yields.
            opening.add_done_callback(_close_opened)
            raise
        started = time.perf_counter()
        fetched = await self._run_detachable(conn, descriptor, sql, capabilities.timeout_ms)
        elapsed_ms = (time.perf_counter() - started) * 1000.0

        rows = fetched.rows
        truncated = False
        if capabilities.max_rows is not None and len(rows) > capabilities.max_rows:
            rows = rows[: capabilities.max_rows]
            truncated = True

        return QueryResult(
            columns=fetched.columns,
            rows=normalize_rows(rows, fetched.converters),
            rows_affected=fetched.rows_affected,
            execution_ms=round(elapsed_ms, 3),
            truncated=truncated,
        )

    def _run_statement(self, conn: Any, descriptor: ConnectionDescriptor, sql: str) -> Fetched:
        with self._translate(descriptor, QueryFailed):
            cur = conn.cursor()
            try:
                self._send_statement(cur, sql)
                if cur.description is None:
                    affected = cur.rowcount if cur.rowcount is not None and cur.rowcount >= 0 else None
                    return Fetched([], [], affected, None)
                return Fetched(
                    column_names(cur.description),
                    list(cur.fetchall()),
                    None,
                    self._converters(cur.description),
                )
            finally:
                with contextlib.suppress(Exception):
                    cur.close()

    async def _run_detachable(
        self,
        conn: Any,
        descriptor: ConnectionDescriptor,
        sql: str,
        timeout_ms: Optional[int],
    ) -> Fetched:
        """Run the statement on its own daemon thread and race it against timeout_ms.

        A statement that loses the race is interrupted where the driver allows it
        and left to finish on its thread; the connection is closed when it does.
        """
        future = self._start_worker("statement", self._run_statement, conn, descriptor, sql)
        timeout = timeout_ms / 1000.0 if timeout_ms else None
        try:
            fetched = await asyncio.wait_for(asyncio.wrap_future(future), timeout=timeout)
        except asyncio.TimeoutError:
            self._abandon(conn, future)
            raise QueryFailed(f"Query exceeded timeout of {timeout_ms}ms") from None
        except asyncio.CancelledError:
            self._abandon(conn, future)
            raise
        except BaseException:
            await asyncio.to_thread(self._close_quietly, conn)
            raise
        await asyncio.to_thread(self._close_quietly, conn)
        return fetched

    def _start_worker(self, role: str, func: Callable[..., Any], *args: Any) -> concurrent.futures.Future:
        """Run func on a daemon thread that outlives the awaiting task if it has to."""
        future: concurrent.futures.Future = concurrent.futures.Future()

        def worker() -> None:
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(func(*args))
            except BaseException as exc:
                future.set_exception(exc)

        threading.Thread(target=worker, name=f"querygate-{self.engine.value}-{role}", daemon=True).start()
        return future

    def _abandon(self, conn: Any, future: concurrent.futures.Future) -> None:
        with contextlib.suppress(Exception):
            self._interrupt(conn)
        future.add_done_callback(lambda done: _discard(conn, done))


def _close_opened(done: concurrent.futures.Future) -> None:
    if done.cancelled() or done.exception() is not None:
        return
    DatabaseAdapter._close_quietly(done.result())


def _discard(conn: Any, done: concurrent.futures.Future) -> None:
    # Outcome of an abandoned statement is dropped unread; its text may echo credentials.
    DatabaseAdapter._close_quietly(conn)
    if not done.cancelled():
        done.exception()
