from __future__ import annotations

from typing import Any, List, Optional, Tuple

import pymysql

from adapters.base import DatabaseAdapter
from adapters.catalog import CatalogQueries, ForeignKeyRow, group_index_columns, yes_no
from adapters.models import ColumnInfo, ConnectionDescriptor, ConnectionInfo, EngineKind, IndexInfo, IndexSummary
from adapters.normalize import ColumnConverter, as_text, mysql_converters
from utils.settings import get_settings


def parse_mysql_version(version_string: str) -> Tuple[str, str]:
    """Split VERSION() into (version, server label).

    "8.0.35" -> ("8.0.35", "MySQL 8.0.35")
    "10.11.2-MariaDB-1:10.11.2+maria~ubu2204" -> ("10.11.2", "MariaDB 10.11.2")
    """
    if "MARIADB" in version_string.upper():
        version = version_string.split("-", 1)[0] or "unknown"
        return version, f"MariaDB {version}"
    parts = version_string.split()
    version = parts[0] if parts else version_string
    return version, f"MySQL {version}"


class MySQLCatalog(CatalogQueries):
    """information_schema lookups; the schema argument is always a database name.

    Rows are read positionally because MySQL 8 reports information_schema
    column labels in upper case while MariaDB keeps them lower case.
    """

    engine = EngineKind.MYSQL

    def default_schema(self) -> Optional[str]:
        rows = self.fetch("SELECT DATABASE()")
        return as_text(rows[0][0]) if rows else None

    def list_databases(self) -> List[str]:
        return self.fetch_names(
            """
            SELECT schema_name
            FROM information_schema.schemata
            ORDER BY schema_name
            """
        )

    def list_tables(self, schema: Optional[str]) -> List[str]:
        return self.fetch_names(
            """
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = %s
              AND table_type = 'BASE TABLE'
            ORDER BY table_name
            """,
            (schema,),
        )

    def list_views(self, schema: Optional[str]) -> List[str]:
        return self.fetch_names(
            """
            SELECT table_name
            FROM information_schema.views
            WHERE table_schema = %s
            ORDER BY table_name
            """,
            (schema,),
        )

    def list_indexes(self, schema: Optional[str], table: Optional[str]) -> List[IndexSummary]:
        sql = """
            SELECT index_name, table_name, column_name, non_unique = 0
            FROM information_schema.statistics
            WHERE table_schema = %s
              AND index_name <> 'PRIMARY'
        """
        params: List[Any] = [schema]
        if table:
            sql += "  AND table_name = %s\n"
            params.append(table)
        sql += "ORDER BY table_name, index_name, seq_in_index"
        return group_index_columns(self.fetch(sql, params))

    def table_exists(self, schema: Optional[str], table: str) -> bool:
        rows = self.fetch(
            """
            SELECT 1
            FROM information_schema.tables
            WHERE table_schema = %s
              AND table_name = %s
              AND table_type = 'BASE TABLE'
            """,
            (schema, table),
        )
        return bool(rows)

    def columns(self, schema: Optional[str], table: str) -> List[ColumnInfo]:
        rows = self.fetch(
            """
            SELECT column_name, column_type, is_nullable, column_default
            FROM information_schema.columns
            WHERE table_schema = %s
              AND table_name = %s
            ORDER BY ordinal_position
            """,
            (schema, table),
        )
        return [
            ColumnInfo(
                name=as_text(name) or "",
                data_type=as_text(data_type) or "",
                nullable=yes_no(nullable),
                default=as_text(default),
            )
            for name, data_type, nullable, default in rows
        ]

    def primary_key_columns(self, schema: Optional[str], table: str) -> List[str]:
        return self.fetch_names(
            """
            SELECT column_name
            FROM information_schema.key_column_usage
            WHERE table_schema = %s
              AND table_name = %s
              AND constraint_name = 'PRIMARY'
            ORDER BY ordinal_position
            """,
            (schema, table),
        )

    def foreign_key_rows(self, schema: Optional[str], table: str) -> List[ForeignKeyRow]:
        return self.fetch(
            """
            SELECT constraint_name, column_name, referenced_table_name, referenced_column_name
            FROM information_schema.key_column_usage
            WHERE table_schema = %s
              AND table_name = %s
              AND referenced_table_name IS NOT NULL
            ORDER BY constraint_name, ordinal_position
            """,
            (schema, table),
        )

    def indexes(self, schema: Optional[str], table: str) -> List[IndexInfo]:
        return [
            IndexInfo(name=summary.name, columns=summary.columns, unique=summary.unique)
            for summary in self.list_indexes(schema, table)
        ]

    def view_definition(self, schema: Optional[str], view: str) -> Tuple[bool, Optional[str]]:
        rows = self.fetch(
            """
            SELECT view_definition
            FROM information_schema.views
            WHERE table_schema = %s
              AND table_name = %s
            """,
            (schema, view),
        )
        if not rows:
            return False, None
        # Empty when the current user lacks SHOW VIEW on it.
        return True, as_text(rows[0][0]) or None


class MySQLAdapter(DatabaseAdapter):
    engine = EngineKind.MYSQL
    required_fields = ("host", "port", "user", "password", "database")
    driver_errors = (pymysql.MySQLError,)
    unsupported_operations = {
        "list_schemas": "MySQL does not support ListSchemas operation (schemas are databases; use list_databases)",
    }

    def _connect(self, descriptor: ConnectionDescriptor, database: Optional[str] = None):
        return pymysql.connect(
            host=descriptor.host,
            port=descriptor.port,
            user=descriptor.user,
            password=descriptor.secret() or "",
            database=database or descriptor.database,
            connect_timeout=get_settings().connect_timeout_sec,
            autocommit=True,
            charset="utf8mb4",
        )

    def _prepare_session(self, conn: Any, timeout_ms: Optional[int]) -> None:
        cur = conn.cursor()
        try:
            cur.execute("SET SESSION TRANSACTION READ ONLY")
            if timeout_ms:
                cur.execute(f"SET SESSION MAX_EXECUTION_TIME={int(timeout_ms)}")
        finally:
            cur.close()

    def _server_info(self, conn: Any, descriptor: ConnectionDescriptor) -> ConnectionInfo:
        cur = conn.cursor()
        try:
            cur.execute("SELECT VERSION(), DATABASE(), CURRENT_USER()")
            version_string, database, user = cur.fetchone()
        finally:
            cur.close()
        version, server_info = parse_mysql_version(as_text(version_string) or "")
        return ConnectionInfo(
            database_version=version,
            server_info=server_info,
            connected_database=as_text(database) or "",
            user=as_text(user) or "",
        )

    def _catalog(self, conn: Any) -> CatalogQueries:
        return MySQLCatalog(conn)

    def _converters(self, description: Any) -> Optional[List[ColumnConverter]]:
        return mysql_converters(description)
