from __future__ import annotations

from typing import Any, List, Optional, Tuple

import psycopg

from adapters.base import DatabaseAdapter
from adapters.catalog import CatalogQueries, ForeignKeyRow, group_index_columns, yes_no
from adapters.models import ColumnInfo, ConnectionDescriptor, ConnectionInfo, EngineKind, IndexInfo, IndexSummary
from adapters.normalize import as_text
from utils.settings import get_settings


def parse_postgres_version(version_string: str) -> str:
    # "PostgreSQL 16.2 on x86_64-pc-linux-gnu, ..." -> "16.2"
    parts = version_string.split()
    return parts[1].rstrip(",") if len(parts) > 1 else version_string


class PostgresCatalog(CatalogQueries):
    engine = EngineKind.POSTGRES

    def default_schema(self) -> Optional[str]:
        rows = self.fetch("SELECT current_schema()")
        return as_text(rows[0][0]) if rows and rows[0][0] is not None else "public"

    def list_databases(self) -> List[str]:
        return self.fetch_names(
            """
            SELECT datname
            FROM pg_database
            WHERE NOT datistemplate
            ORDER BY datname
            """
        )

    def list_schemas(self) -> List[str]:
        return self.fetch_names(
            """
            SELECT schema_name
            FROM information_schema.schemata
            WHERE schema_name NOT LIKE 'pg\\_%%'
              AND schema_name <> 'information_schema'
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
            SELECT
                i.relname AS index_name,
                t.relname AS table_name,
                COALESCE(a.attname, pg_get_indexdef(ix.indexrelid, k.ord::int, true)) AS column_name,
                ix.indisunique
            FROM pg_index ix
            JOIN pg_class i ON i.oid = ix.indexrelid
            JOIN pg_class t ON t.oid = ix.indrelid
            JOIN pg_namespace n ON n.oid = t.relnamespace
            CROSS JOIN LATERAL unnest(ix.indkey::int2[]) WITH ORDINALITY AS k(attnum, ord)
            LEFT JOIN pg_attribute a
              ON a.attrelid = t.oid
             AND a.attnum = k.attnum
             AND k.attnum > 0
            WHERE n.nspname = %s
              AND NOT ix.indisprimary
              AND k.ord <= ix.indnkeyatts
        """
        params: List[Any] = [schema]
        if table:
            sql += "  AND t.relname = %s\n"
            params.append(table)
        sql += "ORDER BY t.relname, i.relname, k.ord"
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
            SELECT
                column_name,
                CASE WHEN data_type IN ('USER-DEFINED', 'ARRAY') THEN udt_name ELSE data_type END,
                is_nullable,
                column_default
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
            SELECT kcu.column_name
            FROM information_schema.table_constraints tc
            JOIN information_schema.key_column_usage kcu
              ON tc.constraint_name = kcu.constraint_name
             AND tc.table_schema = kcu.table_schema
             AND tc.table_name = kcu.table_name
            WHERE tc.table_schema = %s
              AND tc.table_name = %s
              AND tc.constraint_type = 'PRIMARY KEY'
            ORDER BY kcu.ordinal_position
            """,
            (schema, table),
        )

    def foreign_key_rows(self, schema: Optional[str], table: str) -> List[ForeignKeyRow]:
        return self.fetch(
            """
            SELECT
                c.conname,
                a.attname,
                rt.relname,
                ra.attname
            FROM pg_constraint c
            JOIN pg_class t ON t.oid = c.conrelid
            JOIN pg_namespace n ON n.oid = t.relnamespace
            JOIN pg_class rt ON rt.oid = c.confrelid
            CROSS JOIN LATERAL unnest(c.conkey, c.confkey) WITH ORDINALITY AS k(attnum, ref_attnum, ord)
            JOIN pg_attribute a
              ON a.attrelid = c.conrelid
             AND a.attnum = k.attnum
            JOIN pg_attribute ra
              ON ra.attrelid = c.confrelid
             AND ra.attnum = k.ref_attnum
            WHERE c.contype = 'f'
              AND n.nspname = %s
              AND t.relname = %s
            ORDER BY c.conname, k.ord
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
        return True, as_text(rows[0][0])


class PostgresAdapter(DatabaseAdapter):
    engine = EngineKind.POSTGRES
    required_fields = ("host", "port", "user", "password", "database")
    driver_errors = (psycopg.Error,)

    def _connect(self, descriptor: ConnectionDescriptor, database: Optional[str] = None):
        conn = psycopg.connect(
            host=descriptor.host,
            port=descriptor.port,
            user=descriptor.user,
            password=descriptor.secret(),
            dbname=database or descriptor.database,
            connect_timeout=get_settings().connect_timeout_sec,
            options="-c default_transaction_read_only=on",
            autocommit=True,
        )
        return conn

    def _prepare_session(self, conn: Any, timeout_ms: Optional[int]) -> None:
        if timeout_ms:
            with conn.cursor() as cur:
                cur.execute(f"SET statement_timeout = '{int(timeout_ms)}ms'")

    def _server_info(self, conn: Any, descriptor: ConnectionDescriptor) -> ConnectionInfo:
        with conn.cursor() as cur:
            cur.execute("SELECT version(), current_database(), current_user")
            version_string, database, user = cur.fetchone()
        version_string = as_text(version_string) or ""
        return ConnectionInfo(
            database_version=parse_postgres_version(version_string),
            server_info=version_string,
            connected_database=as_text(database) or "",
            user=as_text(user) or "",
        )

    def _send_statement(self, cur: Any, sql: str) -> None:
        # A prepared statement goes over the extended protocol, which refuses batches.
        cur.execute(sql, prepare=True)

    def _catalog(self, conn: Any) -> CatalogQueries:
        return PostgresCatalog(conn)

    def _interrupt(self, conn: Any) -> None:
        conn.cancel()
