from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Any, List, Optional, Tuple

from adapters.base import DatabaseAdapter
from adapters.catalog import CatalogQueries, ForeignKeyRow
from adapters.errors import ConnectionFailed
from adapters.models import ColumnInfo, ConnectionDescriptor, ConnectionInfo, EngineKind, IndexInfo, IndexSummary
from adapters.normalize import as_text
from utils.settings import get_settings

MEMORY_DATABASE = ":memory:"
# SQLite creates these to back PRIMARY KEY and UNIQUE table constraints.
AUTOINDEX_PREFIX = "sqlite_autoindex_"


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


class SQLiteCatalog(CatalogQueries):
    engine = EngineKind.SQLITE

    def default_schema(self) -> Optional[str]:
        return None

    def _master_names(self, kind: str) -> List[str]:
        return self.fetch_names(
            """
            SELECT name
            FROM sqlite_master
            WHERE type = ?
              AND name NOT LIKE 'sqlite\\_%' ESCAPE '\\'
            ORDER BY name
            """,
            (kind,),
        )

    def list_tables(self, schema: Optional[str]) -> List[str]:
        return self._master_names("table")

    def list_views(self, schema: Optional[str]) -> List[str]:
        return self._master_names("view")

    def _index_list(self, table: str) -> List[Tuple[str, bool]]:
        # PRAGMA index_list: seq, name, unique, origin, partial
        found = []
        for row in self.fetch(f"PRAGMA index_list({quote_identifier(table)})"):
            name = as_text(row[1]) or ""
            if name.startswith(AUTOINDEX_PREFIX):
                continue
            found.append((name, bool(row[2])))
        return sorted(found)

    def _index_columns(self, index: str) -> List[str]:
        # PRAGMA index_info: seqno, cid, name; name is NULL for expression columns.
        rows = sorted(self.fetch(f"PRAGMA index_info({quote_identifier(index)})"), key=lambda row: row[0])
        return [as_text(row[2]) for row in rows if row[2] is not None]

    def list_indexes(self, schema: Optional[str], table: Optional[str]) -> List[IndexSummary]:
        tables = [table] if table else self.list_tables(schema)
        summaries: List[IndexSummary] = []
        for table_name in tables:
            for index_name, unique in self._index_list(table_name):
                summaries.append(
                    IndexSummary(
                        name=index_name,
                        table=table_name,
                        columns=self._index_columns(index_name),
                        unique=unique,
                    )
                )
        return summaries

    def table_exists(self, schema: Optional[str], table: str) -> bool:
        rows = self.fetch("SELECT COUNT(*) FROM sqlite_master WHERE type = 'table' AND name = ? COLLATE NOCASE", (table,))
        return bool(rows and rows[0][0])

    def columns(self, schema: Optional[str], table: str) -> List[ColumnInfo]:
        # PRAGMA table_info: cid, name, type, notnull, dflt_value, pk
        rows = self.fetch(f"PRAGMA table_info({quote_identifier(table)})")
        return [
            ColumnInfo(
                name=as_text(row[1]) or "",
                data_type=as_text(row[2]) or "",
                nullable=not bool(row[3]),
                default=as_text(row[4]),
            )
            for row in sorted(rows, key=lambda row: row[0])
        ]

    def primary_key_columns(self, schema: Optional[str], table: str) -> List[str]:
        rows = self.fetch(f"PRAGMA table_info({quote_identifier(table)})")
        keyed = sorted((row[5], as_text(row[1]) or "") for row in rows if row[5])
        return [name for _position, name in keyed]

    def foreign_key_rows(self, schema: Optional[str], table: str) -> List[ForeignKeyRow]:
        # PRAGMA foreign_key_list: id, seq, table, from, to, on_update, on_delete, match
        rows = sorted(self.fetch(f"PRAGMA foreign_key_list({quote_identifier(table)})"), key=lambda row: (row[0], row[1]))
        return [(f"fk_{table}_{row[0]}", row[3], row[2], row[4]) for row in rows]

    def indexes(self, schema: Optional[str], table: str) -> List[IndexInfo]:
        return [
            IndexInfo(name=index_name, columns=self._index_columns(index_name), unique=unique)
            for index_name, unique in self._index_list(table)
        ]

    def view_definition(self, schema: Optional[str], view: str) -> Tuple[bool, Optional[str]]:
        rows = self.fetch("SELECT sql FROM sqlite_master WHERE type = 'view' AND name = ? COLLATE NOCASE", (view,))
        if not rows:
            return False, None
        return True, as_text(rows[0][0])


class SQLiteAdapter(DatabaseAdapter):
    engine = EngineKind.SQLITE
    required_fields = ("file",)
    driver_errors = (sqlite3.Error,)
    unsupported_operations = {
        "list_databases": "SQLite does not support ListDatabases operation (each file is a separate database)",
        "list_schemas": "SQLite does not support ListSchemas operation (a file has a single schema)",
    }
    supports_database_override = False
    supports_schema_filter = False

    def _connect(self, descriptor: ConnectionDescriptor, database: Optional[str] = None):
        file_name = descriptor.file or ""
        timeout = float(get_settings().connect_timeout_sec)
        if file_name == MEMORY_DATABASE:
            return sqlite3.connect(MEMORY_DATABASE, timeout=timeout, isolation_level=None, check_same_thread=False)
        db_path = Path(file_name).expanduser()
        if not db_path.is_file():
            raise ConnectionFailed(f"SQLite database file does not exist: {db_path}")
        return sqlite3.connect(
            db_path.resolve().as_uri() + "?mode=ro",
            uri=True,
            timeout=timeout,
            isolation_level=None,
            check_same_thread=False,
        )

    def _prepare_session(self, conn: Any, timeout_ms: Optional[int]) -> None:
        conn.execute("PRAGMA query_only = ON")
        if timeout_ms:
            conn.execute(f"PRAGMA busy_timeout = {int(timeout_ms)}")

    def _server_info(self, conn: Any, descriptor: ConnectionDescriptor) -> ConnectionInfo:
        version = as_text(conn.execute("SELECT sqlite_version()").fetchone()[0]) or ""
        file_name = descriptor.file or ""
        connected = file_name if file_name == MEMORY_DATABASE else (Path(file_name).name or file_name)
        return ConnectionInfo(
            database_version=version,
            server_info=f"SQLite {version}",
            connected_database=connected,
            user="N/A",
        )

    def _catalog(self, conn: Any) -> CatalogQueries:
        return SQLiteCatalog(conn)

    def _interrupt(self, conn: Any) -> None:
        conn.interrupt()
