"""Stdio JSON-RPC tool server exposing connect, introspect and query.

Each tool returns the same JSON envelope the CLI prints; a failed call is an
envelope with ``"ok": false`` rather than a transport error.
"""

from typing import Any, Dict, Optional

from mcp.server.fastmcp import FastMCP

from service.commands import connect_command, introspect_command, query_command
from utils.envelope import render

mcp = FastMCP("querygate")


def _fields(
    engine: Optional[str],
    host: Optional[str],
    port: Optional[int],
    user: Optional[str],
    password: Optional[str],
    database: Optional[str],
    file: Optional[str],
    password_env: Optional[str] = None,
) -> Dict[str, Any]:
    return {
        "engine": engine,
        "host": host,
        "port": port,
        "user": user,
        "password": password,
        "database": database,
        "file": file,
        "password_env": password_env,
    }


@mcp.tool()
async def connect(
    engine: Optional[str] = None,
    name: Optional[str] = None,
    host: Optional[str] = None,
    port: Optional[int] = None,
    user: Optional[str] = None,
    password: Optional[str] = None,
    database: Optional[str] = None,
    file: Optional[str] = None,
    password_env: Optional[str] = None,
    save: Optional[str] = None,
    make_current: bool = False,
) -> str:
    """Validate connection parameters by opening and immediately closing a connection.

    Pass save='local' (./.querygate/config.json) or save='global' (user config
    directory) together with name to store the connection for later calls.
    Without save, name refers to an existing saved connection.
    """
    envelope = await connect_command(
        _fields(engine, host, port, user, password, database, file, password_env),
        name=name,
        save=bool(save),
        make_current=make_current,
        location=save or "local",
    )
    return render(envelope)


@mcp.tool()
async def introspect(
    operation: str = "list_tables",
    target: Optional[str] = None,
    fields: Optional[str] = None,
    name: Optional[str] = None,
    engine: Optional[str] = None,
    host: Optional[str] = None,
    port: Optional[int] = None,
    user: Optional[str] = None,
    password: Optional[str] = None,
    database: Optional[str] = None,
    file: Optional[str] = None,
    schema: Optional[str] = None,
) -> str:
    """Describe the database schema, one operation per call.

    operation is one of list_databases, list_schemas, list_tables, list_views,
    list_indexes (target = optional table), table_details (target = table,
    fields = comma list of columns,primary_key,foreign_keys,indexes) or
    view_details (target = view). Use name for a saved connection, explicit
    parameters, or both (explicit parameters override the saved ones).
    """
    envelope = await introspect_command(
        operation,
        _fields(engine, host, port, user, password, database, file),
        name=name,
        schema=schema,
        target=target,
        table_fields=fields,
    )
    return render(envelope)


@mcp.tool()
async def query(
    sql: str,
    name: Optional[str] = None,
    engine: Optional[str] = None,
    host: Optional[str] = None,
    port: Optional[int] = None,
    user: Optional[str] = None,
    password: Optional[str] = None,
    database: Optional[str] = None,
    file: Optional[str] = None,
    max_rows: Optional[int] = None,
    timeout_ms: Optional[int] = None,
) -> str:
    """Run one read-only SQL statement and return its rows.

    Only SELECT, WITH, EXPLAIN, transaction control and the engine's
    read-only commands (SHOW/DESCRIBE on MySQL, PRAGMA on SQLite) are accepted;
    anything else fails with CAPABILITY_VIOLATION and must be run manually.
    max_rows truncates the result; timeout_ms abandons a slow statement.
    """
    envelope = await query_command(
        sql,
        _fields(engine, host, port, user, password, database, file),
        name=name,
        max_rows=max_rows,
        timeout_ms=timeout_ms,
    )
    return render(envelope)


def serve() -> None:
    mcp.run(transport="stdio")
