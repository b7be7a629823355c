from __future__ import annotations

from typing import Any, Dict, Optional, Type

from adapters.base import DatabaseAdapter
from adapters.errors import InvalidInput
from adapters.models import Capabilities, ConnectionDescriptor, ConnectionInfo, EngineKind, QueryResult
from adapters.mysql import MySQLAdapter
from adapters.postgres import PostgresAdapter
from adapters.sqlite import SQLiteAdapter

ADAPTERS: Dict[EngineKind, Type[DatabaseAdapter]] = {
    EngineKind.POSTGRES: PostgresAdapter,
    EngineKind.MYSQL: MySQLAdapter,
    EngineKind.SQLITE: SQLiteAdapter,
}


def get_adapter(db_engine: Any) -> DatabaseAdapter:
    try:
        engine = EngineKind.parse(db_engine)
    except ValueError as exc:
        raise InvalidInput(str(exc)) from None
    return ADAPTERS[engine]()


async def validate_connection(descriptor: ConnectionDescriptor) -> ConnectionInfo:
    return await get_adapter(descriptor.engine).validate_connection(descriptor)


async def introspect(
    descriptor: ConnectionDescriptor,
    operation: Any,
    database_override: Optional[str] = None,
    schema_filter: Optional[str] = None,
):
    return await get_adapter(descriptor.engine).introspect(descriptor, operation, database_override, schema_filter)


async def execute(descriptor: ConnectionDescriptor, sql: str, capabilities: Optional[Capabilities] = None) -> QueryResult:
    return await get_adapter(descriptor.engine).execute(descriptor, sql, capabilities)
