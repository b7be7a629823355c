from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from adapters.errors import InvalidInput
from adapters.models import (
    ColumnInfo,
    DatabaseList,
    EngineKind,
    ForeignKeyInfo,
    IndexInfo,
    IndexList,
    IndexSummary,
    ListDatabases,
    ListIndexes,
    ListSchemas,
    ListTables,
    ListViews,
    SchemaList,
    TableDetails,
    TableDetailsResult,
    TableInfo,
    TableList,
    ViewDetails,
    ViewDetailsResult,
    ViewInfo,
    ViewList,
)
from adapters.normalize import as_text

# (constraint name, column, referenced table, referenced column), in ordinal order.
ForeignKeyRow = Tuple[Any, Any, Any, Any]


def group_foreign_keys(rows: Iterable[ForeignKeyRow]) -> List[ForeignKeyInfo]:
    grouped: Dict[str, Dict[str, Any]] = {}
    for constraint, column, ref_table, ref_column in rows:
        key = as_text(constraint) or ""
        entry = grouped.get(key)
        if entry is None:
            entry = {"name": key, "columns": [], "referenced_table": as_text(ref_table) or "", "referenced_columns": []}
            grouped[key] = entry
        entry["columns"].append(as_text(column) or "")
        entry["referenced_columns"].append(as_text(ref_column) or "")
    return [ForeignKeyInfo(**entry) for entry in grouped.values()]


def group_index_columns(rows: Iterable[Tuple[Any, Any, Any, Any]]) -> List[IndexSummary]:
    """Fold (index, table, column, unique) rows, already in index order, into summaries."""
    grouped: Dict[Tuple[str, str], Dict[str, Any]] = {}
    for index_name, table_name, column, unique in rows:
        key = (as_text(table_name) or "", as_text(index_name) or "")
        entry = grouped.get(key)
        if entry is None:
            entry = {"name": key[1], "table": key[0], "columns": [], "unique": bool(unique)}
            grouped[key] = entry
        if column is not None:
            entry["columns"].append(as_text(column))
    return [IndexSummary(**entry) for entry in grouped.values()]


def yes_no(value: Any) -> bool:
    return str(as_text(value) or "").strip().upper() in {"YES", "Y", "TRUE", "1"}


class CatalogQueries(ABC):
    """Catalog lookups for one engine over one already-open connection.

    Subclasses hold the engine's SQL; the control flow for every
    introspection operation lives in ``run_operation`` below.
    """

    engine: EngineKind

    def __init__(self, conn: Any):
        self.conn = conn

    def fetch(self, sql: str, params: Sequence[Any] = ()) -> List[Tuple[Any, ...]]:
        cur = self.conn.cursor()
        try:
            cur.execute(sql, tuple(params))
            return [tuple(row) for row in cur.fetchall()]
        finally:
            cur.close()

    def fetch_names(self, sql: str, params: Sequence[Any] = ()) -> List[str]:
        return [as_text(row[0]) or "" for row in self.fetch(sql, params)]

    def list_databases(self) -> List[str]:
        raise InvalidInput(f"{self.engine.label} does not support listing databases")

    def list_schemas(self) -> List[str]:
        raise InvalidInput(f"{self.engine.label} does not support listing schemas")

    @abstractmethod
    def default_schema(self) -> Optional[str]:
        raise NotImplementedError

    @abstractmethod
    def list_tables(self, schema: Optional[str]) -> List[str]:
        raise NotImplementedError

    @abstractmethod
    def list_views(self, schema: Optional[str]) -> List[str]:
        raise NotImplementedError

    @abstractmethod
    def list_indexes(self, schema: Optional[str], table: Optional[str]) -> List[IndexSummary]:
        raise NotImplementedError

    @abstractmethod
    def table_exists(self, schema: Optional[str], table: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def columns(self, schema: Optional[str], table: str) -> List[ColumnInfo]:
        raise NotImplementedError

    @abstractmethod
    def primary_key_columns(self, schema: Optional[str], table: str) -> List[str]:
        raise NotImplementedError

    @abstractmethod
    def foreign_key_rows(self, schema: Optional[str], table: str) -> List[ForeignKeyRow]:
        raise NotImplementedError

    @abstractmethod
    def indexes(self, schema: Optional[str], table: str) -> List[IndexInfo]:
        raise NotImplementedError

    @abstractmethod
    def view_definition(self, schema: Optional[str], view: str) -> Tuple[bool, Optional[str]]:
        raise NotImplementedError

    def view_columns(self, schema: Optional[str], view: str) -> List[ColumnInfo]:
        return self.columns(schema, view)

    def primary_key(self, schema: Optional[str], table: str) -> Optional[List[str]]:
        columns = self.primary_key_columns(schema, table)
        return columns or None

    def foreign_keys(self, schema: Optional[str], table: str) -> List[ForeignKeyInfo]:
        return group_foreign_keys(self.foreign_key_rows(schema, table))


def _table_details(catalog: CatalogQueries, operation: TableDetails, schema: Optional[str]) -> TableInfo:
    if not catalog.table_exists(schema, operation.name):
        raise InvalidInput(f"Table '{operation.name}' not found")
    fields = operation.fields
    return TableInfo(
        name=operation.name,
        schema_name=schema,
        columns=catalog.columns(schema, operation.name) if fields.columns else [],
        primary_key=catalog.primary_key(schema, operation.name) if fields.primary_key else None,
        foreign_keys=catalog.foreign_keys(schema, operation.name) if fields.foreign_keys else [],
        indexes=catalog.indexes(schema, operation.name) if fields.indexes else [],
    )


def _view_details(catalog: CatalogQueries, operation: ViewDetails, schema: Optional[str]) -> ViewInfo:
    found, definition = catalog.view_definition(schema, operation.name)
    if not found:
        raise InvalidInput(f"View '{operation.name}' not found")
    return ViewInfo(
        name=operation.name,
        schema_name=schema,
        definition=definition,
        columns=catalog.view_columns(schema, operation.name),
    )


def run_operation(catalog: CatalogQueries, operation: Any, schema: Optional[str]):
    if isinstance(operation, ListDatabases):
        return DatabaseList(databases=catalog.list_databases())
    if isinstance(operation, ListSchemas):
        return SchemaList(schemas=catalog.list_schemas())
    if isinstance(operation, ListTables):
        return TableList(tables=catalog.list_tables(schema))
    if isinstance(operation, ListViews):
        return ViewList(views=catalog.list_views(schema))
    if isinstance(operation, ListIndexes):
        return IndexList(indexes=catalog.list_indexes(schema, operation.table))
    if isinstance(operation, TableDetails):
        return TableDetailsResult(table=_table_details(catalog, operation, schema))
    if isinstance(operation, ViewDetails):
        return ViewDetailsResult(view=_view_details(catalog, operation, schema))
    raise InvalidInput(f"Unsupported introspection operation: {type(operation).__name__}")
