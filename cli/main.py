import argparse
import asyncio
import sys
from typing import Any, Dict, List, Optional

from adapters.errors import AdapterError
from profiles.store import current_connection_name, list_connections
from service.commands import connect_command, introspect_command, query_command
from utils.envelope import from_error, render, success
from utils.logging_config import configure_logging
from utils.settings import get_settings

EXIT_OK = 0
EXIT_ERROR = 1


def _add_connection_args(parser: argparse.ArgumentParser) -> None:
    group = parser.add_argument_group("connection")
    group.add_argument("--name", help="Saved connection to use (explicit flags override its fields).")
    group.add_argument("--engine", help="postgres, mysql or sqlite.")
    group.add_argument("--host")
    group.add_argument("--port", type=int)
    group.add_argument("--user")
    group.add_argument("--password", help="Prefer --password-env; flags show up in process listings.")
    group.add_argument("--password-env", help="Environment variable holding the password.")
    group.add_argument("--database")
    group.add_argument("--file", help="SQLite database file.")


def _connection_fields(args: argparse.Namespace) -> Dict[str, Any]:
    return {
        "engine": args.engine,
        "host": args.host,
        "port": args.port,
        "user": args.user,
        "password": args.password,
        "password_env": args.password_env,
        "database": args.database,
        "file": args.file,
    }


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="querygate",
        description="Read-only SQL execution and schema introspection for PostgreSQL, MySQL and SQLite.",
    )
    parser.add_argument("--pretty", action="store_true", help="Pretty-print JSON output.")
    parser.add_argument("--log-level", default=None, help="Override QUERYGATE_LOG_LEVEL (logs go to stderr).")
    sub = parser.add_subparsers(dest="command", required=True)

    connect = sub.add_parser("connect", help="Validate a connection and optionally save it.")
    _add_connection_args(connect)
    connect.add_argument("--save", choices=["local", "global"], default=None, help="Registry to save the connection in.")
    connect.add_argument("--default", action="store_true", help="Make the saved connection the current one.")

    sub.add_parser("connections", help="List saved connections.")

    introspect = sub.add_parser("introspect", help="Describe the database schema.")
    _add_connection_args(introspect)
    target = introspect.add_mutually_exclusive_group(required=True)
    target.add_argument("--list-databases", action="store_true")
    target.add_argument("--list-schemas", action="store_true")
    target.add_argument("--list-tables", action="store_true")
    target.add_argument("--list-views", action="store_true")
    target.add_argument("--list-indexes", nargs="?", const="", default=None, metavar="TABLE")
    target.add_argument("--table", metavar="NAME")
    target.add_argument("--view", metavar="NAME")
    introspect.add_argument("--fields", help="Comma list of columns,primary_key,foreign_keys,indexes (with --table).")
    introspect.add_argument("--schema", help="Schema to inspect (PostgreSQL schema, MySQL database).")

    query = sub.add_parser("query", help="Run one read-only SQL statement.")
    _add_connection_args(query)
    query.add_argument("--sql", required=True, help="Statement to run.")
    query.add_argument("--max-rows", type=int, default=None)
    query.add_argument("--timeout-ms", type=int, default=None)

    sub.add_parser("mcp", help="Serve the connect, introspect and query tools over stdio JSON-RPC.")

    serve = sub.add_parser("serve", help="Run the HTTP API.")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    return parser


def _introspect_target(args: argparse.Namespace):
    if args.list_databases:
        return "list_databases", None
    if args.list_schemas:
        return "list_schemas", None
    if args.list_tables:
        return "list_tables", None
    if args.list_views:
        return "list_views", None
    if args.list_indexes is not None:
        return "list_indexes", args.list_indexes or None
    if args.table:
        return "table_details", args.table
    return "view_details", args.view


def _connections_envelope() -> Dict[str, Any]:
    try:
        current = current_connection_name()
        items = [
            {"name": name, "current": name == current, **descriptor.describe()}
            for name, descriptor in list_connections()
        ]
    except AdapterError as exc:
        return from_error("", "connections", exc)
    return success("", "connections", {"connections": items, "current": current}, 0.0)


def _run(args: argparse.Namespace) -> Dict[str, Any]:
    if args.command == "connect":
        return asyncio.run(
            connect_command(
                _connection_fields(args),
                name=args.name,
                save=args.save is not None,
                make_current=args.default,
                location=args.save or "local",
            )
        )
    if args.command == "connections":
        return _connections_envelope()
    if args.command == "introspect":
        op, target = _introspect_target(args)
        return asyncio.run(
            introspect_command(
                op,
                _connection_fields(args),
                name=args.name,
                database=args.database,
                schema=args.schema,
                target=target,
                table_fields=args.fields,
            )
        )
    return asyncio.run(
        query_command(
            args.sql,
            _connection_fields(args),
            name=args.name,
            max_rows=args.max_rows,
            timeout_ms=args.timeout_ms,
        )
    )


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = get_settings()
    configure_logging(level=args.log_level or settings.log_level, json_format=settings.log_json)

    if args.command == "mcp":
        from rpc.server import serve as serve_rpc

        serve_rpc()
        return EXIT_OK
    if args.command == "serve":
        import uvicorn

        uvicorn.run("api.main:app", host=args.host, port=args.port, log_level=settings.log_level.lower())
        return EXIT_OK

    envelope = _run(args)
    print(render(envelope, pretty=args.pretty))
    return EXIT_OK if envelope.get("ok") else EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
